"""Caller-facing error kinds raised by the scheduling engine.

All of them are recoverable: the unit of work that raised one has been rolled
back, and the HTTP layer renders them as JSON with the status code below.
"""
from typing import Any


class SchedulingError(Exception):
    status_code: int = 400
    code: str = "SCHEDULING_ERROR"

    def __init__(self, detail: str, errors: list[dict[str, Any]] | None = None) -> None:
        super().__init__(detail)
        self.detail = detail
        self.errors = errors or []

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"detail": self.detail, "code": self.code}
        if self.errors:
            body["errors"] = self.errors
        return body


class ValidationError(SchedulingError):
    """Malformed input: bad time format, out-of-range duration, missing field."""

    status_code = 400
    code = "VALIDATION_ERROR"


class PastDateError(ValidationError):
    code = "PAST_DATE"


class MissingCancellationReasonError(ValidationError):
    code = "MISSING_CANCELLATION_REASON"


class NotFoundError(SchedulingError):
    status_code = 404
    code = "NOT_FOUND"


class NotADoctorError(SchedulingError):
    status_code = 400
    code = "NOT_A_DOCTOR"


class SlotConflictError(SchedulingError):
    status_code = 409
    code = "SLOT_CONFLICT"


class InvalidTransitionError(SchedulingError):
    status_code = 409
    code = "INVALID_TRANSITION"


class ImmutableStateError(InvalidTransitionError):
    """Edit attempted on a completed or cancelled appointment."""

    code = "IMMUTABLE_STATE"
