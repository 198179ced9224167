"""
Error taxonomy for the audit pipeline.

    ValidationError        bad submission input, rejected before a job exists
    CaptureError           browser launch / navigation / extraction failures
    EvaluationError        evaluation transport failure or malformed verdict
    PersistenceError       job store unreachable during a required read/write
    NotFoundError          unknown job id
    InvalidTransitionError status write that would move a job backwards

Everything raised after a job reaches 'processing' ends up as the job's
`error` text; nothing here is shown to the submitter directly except
ValidationError, NotFoundError and PersistenceError on the HTTP read paths.
"""


class AuditError(Exception):
    """Base class for all pipeline errors."""


class ValidationError(AuditError):
    """Raised when a submission is missing or has a malformed URL."""


class CaptureError(AuditError):
    """Raised when the page cannot be loaded, snapshotted or read."""

    def __init__(self, message: str, reason: str = "navigation") -> None:
        super().__init__(message)
        self.reason = reason


class EvaluationError(AuditError):
    """Raised when the evaluation service fails or returns an unusable verdict."""


class PersistenceError(AuditError):
    """Raised when the job store cannot complete a read or write."""


class NotFoundError(AuditError):
    """Raised when a job id is unknown to every backend."""


class InvalidTransitionError(AuditError):
    """Raised when a status write would break the job state machine."""
