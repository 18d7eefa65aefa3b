"""Pydantic schemas for availability, slots and meeting bookings.

Request and response bodies use camelCase on the wire (`dayOfWeek`,
`meetingId`) and snake_case in Python.
"""

from __future__ import annotations

import datetime as dt
import uuid

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from cvreview.models.booking import MeetingBooking
from cvreview.models.enums import MeetingStatus


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# ── Availability preferences ─────────────────────────────────────────


class PreferenceCreate(CamelModel):
    """Body of POST /availability-preferences. Omitted shape fields take configured defaults."""

    day_of_week: int
    start_time: dt.time
    end_time: dt.time
    timezone: str | None = None
    slot_duration: int | None = None
    buffer_time: int | None = None


class PreferenceUpdate(CamelModel):
    """Body of PUT /availability-preferences. Only the given fields change."""

    id: uuid.UUID
    day_of_week: int | None = None
    start_time: dt.time | None = None
    end_time: dt.time | None = None
    timezone: str | None = None
    slot_duration: int | None = None
    buffer_time: int | None = None


class PreferenceOut(CamelModel):
    id: uuid.UUID
    expert_id: uuid.UUID
    day_of_week: int
    start_time: dt.time
    end_time: dt.time
    timezone: str
    slot_duration: int
    buffer_time: int
    is_active: bool


class PreferenceList(CamelModel):
    preferences: list[PreferenceOut]


class DeleteResult(CamelModel):
    success: bool = True


# ── Slots ────────────────────────────────────────────────────────────


class TimeSlot(CamelModel):
    """One bookable occurrence derived from a preference. Never persisted."""

    model_config = ConfigDict(frozen=True)

    expert_id: uuid.UUID
    preference_id: uuid.UUID
    date: dt.date
    start_time: dt.time
    end_time: dt.time
    duration: int  # minutes
    timezone: str
    expert_name: str | None = None


class SlotList(CamelModel):
    slots: list[TimeSlot]
    total: int
    date_from: dt.date
    date_to: dt.date


# ── Bookings ─────────────────────────────────────────────────────────


class BookingCreate(CamelModel):
    """Body of POST /meetings."""

    expert_id: uuid.UUID
    date: dt.date
    start_time: dt.time
    end_time: dt.time
    title: str | None = Field(default=None, max_length=255)
    description: str | None = None


class CancelRequest(CamelModel):
    meeting_id: uuid.UUID
    cancellation_reason: str | None = Field(default=None, max_length=500)


class CompleteRequest(CamelModel):
    meeting_id: uuid.UUID


class NotesRequest(CamelModel):
    meeting_id: uuid.UUID
    notes: str


class RescheduleRequest(CamelModel):
    meeting_id: uuid.UUID
    date: dt.date
    start_time: dt.time
    end_time: dt.time


class BookingOut(CamelModel):
    id: uuid.UUID
    expert_id: uuid.UUID
    applicant_id: uuid.UUID
    meeting_date: dt.date
    start_time: dt.time
    end_time: dt.time
    timezone: str
    status: MeetingStatus
    title: str
    description: str | None = None
    notes: str | None = None
    meeting_link: str | None = None
    conferencing_provider: str | None = None
    cancelled_by: uuid.UUID | None = None
    cancelled_at: dt.datetime | None = None
    cancellation_reason: str | None = None
    rescheduled_from_id: uuid.UUID | None = None
    created_at: dt.datetime | None = None

    # Computed against the injected clock, in the business timezone
    is_upcoming: bool = False
    is_today: bool = False

    expert_name: str | None = None
    applicant_name: str | None = None

    @classmethod
    def from_booking(
        cls,
        booking: MeetingBooking,
        now_local: dt.datetime,
        *,
        expert_name: str | None = None,
        applicant_name: str | None = None,
    ) -> BookingOut:
        starts_at = dt.datetime.combine(booking.meeting_date, booking.start_time)
        return cls(
            id=booking.id,
            expert_id=booking.expert_id,
            applicant_id=booking.applicant_id,
            meeting_date=booking.meeting_date,
            start_time=booking.start_time,
            end_time=booking.end_time,
            timezone=booking.timezone,
            status=MeetingStatus(booking.status),
            title=booking.title,
            description=booking.description,
            notes=booking.notes,
            meeting_link=booking.meeting_link,
            conferencing_provider=booking.conferencing_provider,
            cancelled_by=booking.cancelled_by,
            cancelled_at=booking.cancelled_at,
            cancellation_reason=booking.cancellation_reason,
            rescheduled_from_id=booking.rescheduled_from_id,
            created_at=booking.created_at,
            is_upcoming=booking.status == MeetingStatus.SCHEDULED.value and starts_at > now_local,
            is_today=booking.meeting_date == now_local.date(),
            expert_name=expert_name,
            applicant_name=applicant_name,
        )


class BookingPage(CamelModel):
    meetings: list[BookingOut]
    total: int
    limit: int
    offset: int
    has_more: bool


# ── Conferencing ─────────────────────────────────────────────────────


class ConferencingStatus(CamelModel):
    """Whether Google Meet links can be produced for the caller's meetings."""

    user_connected: bool
    system_connected: bool
    policy: str
    provider: str
    google_email: str | None = None
    expires_at: dt.datetime | None = None
