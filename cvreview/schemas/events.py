"""SystemEvent schema: the event type emitted by every scheduling action.

Subscribers (audit log, calendar release, meeting e-mails) consume these
asynchronously.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """All event types emitted by the system."""

    # Availability preferences
    PREFERENCE_CREATED = "preference.created"
    PREFERENCE_UPDATED = "preference.updated"
    PREFERENCE_DEACTIVATED = "preference.deactivated"

    # Bookings
    MEETING_BOOKED = "meeting.booked"
    MEETING_CANCELLED = "meeting.cancelled"
    MEETING_COMPLETED = "meeting.completed"
    MEETING_NOTES_UPDATED = "meeting.notes_updated"
    MEETING_RESCHEDULED = "meeting.rescheduled"
    SLOT_CONFLICT = "meeting.slot_conflict"

    # Conferencing
    CONFERENCING_LINK_CREATED = "conferencing.link_created"
    CONFERENCING_FALLBACK = "conferencing.fallback"
    CONFERENCING_EVENT_RELEASED = "conferencing.event_released"
    EXTERNAL_API_CALL = "conferencing.external_api_call"
    EXTERNAL_API_RESPONSE = "conferencing.external_api_response"

    # Notifications
    NOTIFICATION_SENT = "notification.sent"
    NOTIFICATION_FAILED = "notification.failed"

    # System
    SYSTEM_STARTUP = "system.startup"
    SYSTEM_SHUTDOWN = "system.shutdown"


class SystemEvent(BaseModel):
    """Core event flowing through the scheduler.

    Immutable once created. Consumed by:
    - audit_on_event: every event, written to audit_log
    - ConferencingBridge.release_on_event: cancellations and reschedules
    - MeetingNotifier.on_event: bookings, cancellations and reschedules
    """

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    event_type: EventType
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    # Context (optional; system events have no entity or actor)
    entity_id: uuid.UUID | None = None
    actor_id: str | None = None
    actor_role: str | None = None

    # Flexible payload
    data: dict[str, Any] = Field(default_factory=dict)

    # Metadata
    source_module: str | None = Field(default=None, description="Module that emitted this event")

    model_config = {"frozen": True}
