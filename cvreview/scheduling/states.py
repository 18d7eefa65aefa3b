"""Booking status machine.

    scheduled ──► completed
        │
        └──────► cancelled

Completed and cancelled are terminal. Reschedule is a cancel followed by a new
booking, never a transition back to scheduled.
"""

from __future__ import annotations

from cvreview.models.enums import MeetingStatus
from cvreview.scheduling.errors import InvalidStateError

TRANSITIONS: dict[MeetingStatus, frozenset[MeetingStatus]] = {
    MeetingStatus.SCHEDULED: frozenset({MeetingStatus.COMPLETED, MeetingStatus.CANCELLED}),
    MeetingStatus.COMPLETED: frozenset(),
    MeetingStatus.CANCELLED: frozenset(),
}


def can_transition(current: MeetingStatus | str, target: MeetingStatus | str) -> bool:
    return MeetingStatus(target) in TRANSITIONS[MeetingStatus(current)]


def is_terminal(status: MeetingStatus | str) -> bool:
    return not TRANSITIONS[MeetingStatus(status)]


def ensure_transition(current: MeetingStatus | str, target: MeetingStatus | str) -> None:
    """Raise InvalidStateError when `current` cannot move to `target`."""
    if not can_transition(current, target):
        current_value = MeetingStatus(current).value
        target_value = MeetingStatus(target).value
        if is_terminal(current):
            msg = f"A {current_value} meeting can no longer change status"
        else:
            msg = f"Cannot move a {current_value} meeting to {target_value}"
        raise InvalidStateError(msg, details={"status": current_value, "target": target_value})
