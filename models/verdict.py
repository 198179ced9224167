"""
Verdict — the structured result of one usability audit.

Shape:
    {
        "overall_score":     int 0–100,
        "summary_reasoning": str,
        "top_severe_issues": [{title, severity, evidence, current_state, recommended_fix}],
        "category_breakdown": {
            "clarity" | "layout" | "navigation" | "accessibility" | "trust":
                [{issue, impact}]
        }
    }

Anything that does not validate against these models is rejected as a whole;
there is no partial acceptance. Types are strict ("72" is not a score) and
unknown keys are errors.
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr

CATEGORIES: tuple[str, ...] = ("clarity", "layout", "navigation", "accessibility", "trust")

# "critical" is legal but neither the prompt nor the demo verdict emits it
Severity = Literal["critical", "high", "medium", "low"]


class SevereIssue(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: StrictStr
    severity: Severity
    evidence: StrictStr
    current_state: StrictStr
    recommended_fix: StrictStr


class CategoryIssue(BaseModel):
    model_config = ConfigDict(extra="forbid")

    issue: StrictStr
    impact: StrictStr


class CategoryBreakdown(BaseModel):
    model_config = ConfigDict(extra="forbid")

    clarity: list[CategoryIssue]
    layout: list[CategoryIssue]
    navigation: list[CategoryIssue]
    accessibility: list[CategoryIssue]
    trust: list[CategoryIssue]


class Verdict(BaseModel):
    model_config = ConfigDict(extra="forbid")

    overall_score: StrictInt = Field(ge=0, le=100)
    summary_reasoning: StrictStr
    top_severe_issues: list[SevereIssue]
    category_breakdown: CategoryBreakdown
