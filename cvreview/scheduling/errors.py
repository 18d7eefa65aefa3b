"""Typed errors raised by the scheduling services.

Each error carries the HTTP status it maps to and a stable machine-readable
`kind`; the API layer renders them as `{"error": kind, "message": ...}`.
"""

from __future__ import annotations

from typing import Any


class SchedulingError(Exception):
    """Base class for every error the scheduling core raises on purpose."""

    status_code: int = 500
    kind: str = "scheduling_error"

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": self.kind, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(SchedulingError):
    """Malformed or out-of-range input."""

    status_code = 400
    kind = "validation_error"


class PermissionDeniedError(SchedulingError):
    """The actor may not perform this operation on this resource."""

    status_code = 403
    kind = "permission_error"


class NotFoundError(SchedulingError):
    """The booking or preference does not exist, or is not the actor's."""

    status_code = 404
    kind = "not_found"


class ConflictError(SchedulingError):
    """A uniqueness rule was violated."""

    status_code = 409
    kind = "conflict"


class SlotAlreadyBookedError(ConflictError):
    """Another scheduled booking already holds this slot. Re-fetch slots and pick another."""

    kind = "slot_already_booked"


class InvalidStateError(SchedulingError):
    """The booking's status does not allow this transition."""

    status_code = 400
    kind = "invalid_state"


class PastMeetingError(SchedulingError):
    """The meeting has already started."""

    status_code = 400
    kind = "past_meeting"


class DependencyError(SchedulingError):
    """Storage or another required collaborator is unavailable."""

    status_code = 500
    kind = "dependency_error"


class RateLimitedError(SchedulingError):
    """Too many attempts in the current window."""

    status_code = 429
    kind = "rate_limited"

    def __init__(self, message: str, *, retry_after: int) -> None:
        super().__init__(message, details={"retry_after": retry_after})
        self.retry_after = retry_after
