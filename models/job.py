import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from models.errors import InvalidTransitionError
from models.verdict import Verdict

PENDING = "pending"
PROCESSING = "processing"
COMPLETED = "completed"
FAILED = "failed"

STATUSES = (PENDING, PROCESSING, COMPLETED, FAILED)
TERMINAL = frozenset({COMPLETED, FAILED})

# status -> the only statuses it may be written over
PREDECESSORS: dict[str, tuple[str, ...]] = {
    PENDING: (),
    PROCESSING: (PENDING,),
    COMPLETED: (PROCESSING,),
    FAILED: (PENDING, PROCESSING),
}


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def new_job_id() -> str:
    return uuid.uuid4().hex


def check_transition(job_id: str, current: str, new: str) -> None:
    if current not in PREDECESSORS.get(new, ()):
        raise InvalidTransitionError(
            f"Job {job_id}: cannot move from '{current}' to '{new}'"
        )


def check_fields(status: str, result: Optional[Verdict], score: Optional[int], error: Optional[str]) -> None:
    """Enforce which fields may accompany each status write."""
    if status == COMPLETED:
        if result is None or score is None or error is not None:
            raise ValueError("'completed' requires result and score, and no error")
        if score != result.overall_score:
            raise ValueError("score must equal result.overall_score")
    elif status == FAILED:
        if error is None or result is not None or score is not None:
            raise ValueError("'failed' requires an error and no result")
    elif result is not None or score is not None or error is not None:
        raise ValueError(f"'{status}' carries no result, score or error")


@dataclass
class Job:
    id: str
    url: str
    status: str = PENDING     # pending | processing | completed | failed
    created_at: str = field(default_factory=utc_now)
    updated_at: Optional[str] = None
    score: Optional[int] = None
    result: Optional[Verdict] = None
    error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL

    def to_status(self) -> dict:
        """Projection served to polling clients; absent fields are omitted."""
        out: dict = {
            "id":        self.id,
            "url":       self.url,
            "status":    self.status,
            "createdAt": self.created_at,
        }
        if self.score is not None:
            out["score"] = self.score
        if self.result is not None:
            out["result"] = self.result.model_dump()
        if self.error is not None:
            out["error"] = self.error
        return out

    def to_summary(self) -> dict:
        out = {
            "id":        self.id,
            "url":       self.url,
            "status":    self.status,
            "createdAt": self.created_at,
        }
        if self.score is not None:
            out["score"] = self.score
        return out
