"""Authorization policy for scheduling operations.

Every service asks `authorize` before touching a booking or preference, so
the rules for who may do what live in one table.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from enum import Enum

from cvreview.models.enums import ActorRole
from cvreview.scheduling.errors import PermissionDeniedError


@dataclass(frozen=True)
class Actor:
    """Authenticated caller as asserted by the authentication gateway."""

    id: uuid.UUID
    role: ActorRole

    @property
    def is_expert(self) -> bool:
        return self.role == ActorRole.EXPERT

    @property
    def is_applicant(self) -> bool:
        return self.role == ActorRole.APPLICANT


class Operation(str, Enum):
    CREATE_BOOKING = "create_booking"
    CANCEL = "cancel"
    COMPLETE = "complete"
    ANNOTATE = "annotate"
    RESCHEDULE = "reschedule"
    VIEW = "view"
    MANAGE_PREFERENCES = "manage_preferences"


# Which parties of a booking (or owner of a preference) may run each operation.
_EXPERT_OWNER = "expert_owner"
_APPLICANT_OWNER = "applicant_owner"
_ANY_APPLICANT = "any_applicant"

_RULES: dict[Operation, frozenset[str]] = {
    Operation.CREATE_BOOKING: frozenset({_ANY_APPLICANT}),
    Operation.CANCEL: frozenset({_EXPERT_OWNER, _APPLICANT_OWNER}),
    Operation.RESCHEDULE: frozenset({_EXPERT_OWNER, _APPLICANT_OWNER}),
    Operation.VIEW: frozenset({_EXPERT_OWNER, _APPLICANT_OWNER}),
    Operation.COMPLETE: frozenset({_EXPERT_OWNER}),
    Operation.ANNOTATE: frozenset({_EXPERT_OWNER}),
    Operation.MANAGE_PREFERENCES: frozenset({_EXPERT_OWNER}),
}


def is_allowed(
    actor: Actor,
    operation: Operation,
    *,
    expert_id: uuid.UUID | None,
    applicant_id: uuid.UUID | None = None,
) -> bool:
    """Decide whether `actor` may perform `operation` on a resource owned by
    `expert_id` (and, for bookings, `applicant_id`)."""
    rules = _RULES[operation]
    if _ANY_APPLICANT in rules and actor.is_applicant:
        return True
    if _EXPERT_OWNER in rules and actor.is_expert and actor.id == expert_id:
        return True
    if _APPLICANT_OWNER in rules and actor.is_applicant and applicant_id is not None and actor.id == applicant_id:
        return True
    return False


def authorize(
    actor: Actor,
    operation: Operation,
    *,
    expert_id: uuid.UUID | None,
    applicant_id: uuid.UUID | None = None,
) -> None:
    """Raise PermissionDeniedError unless `is_allowed`."""
    if not is_allowed(actor, operation, expert_id=expert_id, applicant_id=applicant_id):
        msg = f"{actor.role.value} {actor.id} may not {operation.value} this resource"
        raise PermissionDeniedError(msg, details={"operation": operation.value})
