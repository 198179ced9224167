"""
Usability evaluator — asks a vision model to critique a captured page.

Two modes, fixed when the Evaluator is built:
    configured  ANTHROPIC_API_KEY is set: one Messages call with the instruction
                prompt, the extracted content and the JPEG snapshot; the reply
                must be a JSON Verdict or the audit fails
    demo        no key (or a placeholder key): a fixed Verdict, no network,
                score always computed from the same 8 demo issues
"""

import base64
import json
import logging
import os
import re
import time

import anthropic
from pydantic import ValidationError as PydanticValidationError

from agent.capture import ExtractedContent
from models.errors import EvaluationError
from models.verdict import Verdict

logger = logging.getLogger(__name__)

ANTHROPIC_API_KEY: str = os.getenv("ANTHROPIC_API_KEY", "")
EVAL_MODEL: str = os.getenv("EVAL_MODEL", "claude-sonnet-4-5")
EVAL_TIMEOUT: float = float(os.getenv("EVAL_TIMEOUT", "60"))
EVAL_MAX_TOKENS: int = int(os.getenv("EVAL_MAX_TOKENS", "2000"))

_SYSTEM = "You are a UX auditing assistant. Output JSON only."

_PROMPT = """\
You are a senior UX reviewer.

Analyze the provided webpage using ONLY the given content and rendered page context.

Tasks:
1. Identify 8–12 UX issues grouped across:
   clarity, layout, navigation, accessibility, trust.
2. Each issue MUST cite concrete evidence (exact text or element description).
3. Avoid generic advice. No assumptions.
4. Identify the top 3 most severe issues and provide before/after fixes.
5. Derive a UX score (0–100) based on issue severity and spread.

Return ONLY valid JSON with this structure:
{
  "overall_score": number,
  "summary_reasoning": "string",
  "top_severe_issues": [
    {
      "title": "string",
      "severity": "high | medium | low",
      "evidence": "string",
      "current_state": "string",
      "recommended_fix": "string"
    }
  ],
  "category_breakdown": {
    "clarity": [{ "issue": "string", "impact": "string" }],
    "layout": [{ "issue": "string", "impact": "string" }],
    "navigation": [{ "issue": "string", "impact": "string" }],
    "accessibility": [{ "issue": "string", "impact": "string" }],
    "trust": [{ "issue": "string", "impact": "string" }]
  }
}
"""

# ```json ... ``` wrapper some models put around the body
_FENCE = re.compile(r"^\s*```[a-zA-Z]*\s*\n?(.*?)\n?\s*```\s*$", re.DOTALL)


# ── Demo mode ─────────────────────────────────────────────────────────────────

DEMO_ISSUES: list[dict] = [
    {"severity": "high",   "category": "accessibility"},
    {"severity": "high",   "category": "clarity"},
    {"severity": "medium", "category": "navigation"},
    {"severity": "medium", "category": "layout"},
    {"severity": "medium", "category": "trust"},
    {"severity": "low",    "category": "layout"},
    {"severity": "low",    "category": "clarity"},
    {"severity": "low",    "category": "navigation"},
]

SEVERITY_PENALTY = {"high": 10, "medium": 5, "low": 2}
DEMO_SCORE_FLOOR = 40
DEMO_SCORE_CEILING = 95


def demo_score(issues: list[dict] = DEMO_ISSUES) -> int:
    score = 100
    for issue in issues:
        score -= SEVERITY_PENALTY.get(issue["severity"], 0)
    return max(DEMO_SCORE_FLOOR, min(score, DEMO_SCORE_CEILING))


def demo_verdict() -> Verdict:
    return Verdict.model_validate({
        "overall_score": demo_score(),
        "summary_reasoning": (
            "The page demonstrates a solid baseline UX but shows several simulated "
            "issues across clarity, navigation, and accessibility. This score "
            "reflects the cumulative severity of those findings."
        ),
        "top_severe_issues": [
            {
                "title": "Low Contrast Primary CTA",
                "severity": "high",
                "evidence": "Primary button text appears light against a white background",
                "current_state": "The primary call-to-action lacks sufficient contrast, reducing visibility.",
                "recommended_fix": "Increase contrast to meet WCAG AA standards by darkening the button text or background.",
            },
            {
                "title": "Overloaded Top Navigation",
                "severity": "medium",
                "evidence": "Top navigation contains more than 7 visible menu items",
                "current_state": "Too many navigation options increase cognitive load for users.",
                "recommended_fix": "Group secondary links under a dropdown or move them to the footer.",
            },
            {
                "title": "Unclear Hero Value Proposition",
                "severity": "medium",
                "evidence": "Hero headline does not clearly describe user benefit",
                "current_state": "Users may not immediately understand what the product offers.",
                "recommended_fix": "Rewrite the headline to emphasize a clear outcome or benefit.",
            },
        ],
        "category_breakdown": {
            "clarity": [
                {"issue": "Vague headline", "impact": "Users may struggle to understand the product quickly."},
                {"issue": "Generic CTA labels", "impact": "Reduced conversion intent."},
            ],
            "layout": [
                {"issue": "Hero image scaling", "impact": "Content may crop on small screens."},
                {"issue": "Inconsistent spacing", "impact": "Visual hierarchy is weakened."},
            ],
            "navigation": [
                {"issue": "Too many menu items", "impact": "Increases cognitive load."},
                {"issue": "No search option", "impact": "Harder to find specific content."},
            ],
            "accessibility": [
                {"issue": "Low contrast text", "impact": "Fails accessibility guidelines."},
            ],
            "trust": [
                {"issue": "Missing social proof", "impact": "Reduces credibility for first-time visitors."},
            ],
        },
    })


# ── Request / response ────────────────────────────────────────────────────────

def is_placeholder_key(api_key: str) -> bool:
    return not api_key.strip() or "XXXX" in api_key


def build_messages(snapshot: bytes, content: ExtractedContent) -> list[dict]:
    text = _PROMPT + "\n\nExtracted Content:\n" + json.dumps(content.to_dict(), indent=2)
    return [
        {
            "role": "user",
            "content": [
                {"type": "text", "text": text},
                {
                    "type": "image",
                    "source": {
                        "type": "base64",
                        "media_type": "image/jpeg",
                        "data": base64.b64encode(snapshot).decode("ascii"),
                    },
                },
            ],
        }
    ]


def parse_verdict(body: str) -> Verdict:
    """Parse the model reply. Only a surrounding code fence is removed."""
    m = _FENCE.match(body)
    text = (m.group(1) if m else body).strip()
    if not text:
        raise EvaluationError("Evaluation service returned an empty response")

    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise EvaluationError(f"Evaluation response is not valid JSON: {exc}") from exc

    try:
        return Verdict.model_validate(data)
    except PydanticValidationError as exc:
        raise EvaluationError(
            f"Evaluation response does not match the verdict schema "
            f"({exc.error_count()} error(s))"
        ) from exc


class Evaluator:
    def __init__(
        self,
        api_key: str | None = None,
        model: str = EVAL_MODEL,
        timeout: float = EVAL_TIMEOUT,
        max_tokens: int = EVAL_MAX_TOKENS,
        client: anthropic.AsyncAnthropic | None = None,
    ):
        key = ANTHROPIC_API_KEY if api_key is None else api_key
        self.model = model
        self.max_tokens = max_tokens
        self.configured = client is not None or not is_placeholder_key(key)
        self._client = client
        if self._client is None and self.configured:
            # single attempt; a failed call fails the audit
            self._client = anthropic.AsyncAnthropic(
                api_key=key, timeout=timeout, max_retries=0
            )

    @property
    def mode(self) -> str:
        return "configured" if self.configured else "demo_mode"

    async def evaluate(self, snapshot: bytes, content: ExtractedContent) -> Verdict:
        if self._client is None:
            raise EvaluationError("Evaluation credential is not configured")

        started = time.monotonic()
        try:
            resp = await self._client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                system=_SYSTEM,
                messages=build_messages(snapshot, content),
            )
        except anthropic.APIError as exc:
            raise EvaluationError(f"Evaluation request failed: {exc}") from exc

        body = "".join(
            block.text for block in resp.content if getattr(block, "type", None) == "text"
        )
        verdict = parse_verdict(body)
        logger.info(
            "Evaluation received",
            extra={
                "model": self.model,
                "score": verdict.overall_score,
                "duration_ms": int((time.monotonic() - started) * 1000),
            },
        )
        return verdict
