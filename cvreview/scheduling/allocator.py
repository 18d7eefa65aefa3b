"""Booking allocator: claims a free slot for an applicant.

Exclusivity lives in the database: the partial unique index on
(expert_id, meeting_date, start_time) among scheduled bookings rejects the
second of two concurrent inserts for the same slot. The loser gets
SlotAlreadyBookedError and is expected to re-list slots; nothing retries.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, time

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from cvreview.config import settings
from cvreview.conferencing.bridge import ConferencingBridge, conferencing_bridge
from cvreview.events import emit, emit_on_commit
from cvreview.models.base import constraint_name
from cvreview.models.booking import ACTIVE_SLOT_INDEX, MeetingBooking
from cvreview.models.enums import MeetingStatus
from cvreview.models.preference import AvailabilityPreference
from cvreview.scheduling.clock import Clock, SystemClock, has_started, local_now
from cvreview.scheduling.errors import DependencyError, PastMeetingError, SlotAlreadyBookedError, ValidationError
from cvreview.scheduling.policy import Actor, Operation, authorize
from cvreview.scheduling.slots import expand_preference, weekday_index
from cvreview.schemas.events import EventType, SystemEvent

logger = logging.getLogger(__name__)


class BookingAllocator:
    """Creates bookings for slots produced by an expert's active preferences."""

    def __init__(self, clock: Clock | None = None, bridge: ConferencingBridge | None = None) -> None:
        self._clock = clock or SystemClock()
        self._bridge = bridge or conferencing_bridge

    async def create_booking(
        self,
        db: AsyncSession,
        actor: Actor,
        *,
        expert_id: uuid.UUID,
        meeting_date: date,
        start_time: time,
        end_time: time,
        title: str | None = None,
        description: str | None = None,
    ) -> MeetingBooking:
        """Book the slot (expert_id, meeting_date, start_time-end_time) for the applicant `actor`.

        Raises:
            PermissionDeniedError: actor is not an applicant.
            PastMeetingError: the slot has already started.
            ValidationError: no active preference produces this exact slot.
            SlotAlreadyBookedError: another scheduled booking holds the slot.
        """
        authorize(actor, Operation.CREATE_BOOKING, expert_id=expert_id)

        booking = await self._allocate(
            db,
            expert_id=expert_id,
            applicant_id=actor.id,
            meeting_date=meeting_date,
            start_time=start_time,
            end_time=end_time,
            title=title,
            description=description,
        )

        emit_on_commit(db, SystemEvent(
            event_type=EventType.MEETING_BOOKED,
            entity_id=booking.id,
            actor_id=str(actor.id),
            actor_role=actor.role.value,
            data={
                "expert_id": str(expert_id),
                "applicant_id": str(booking.applicant_id),
                "meeting_date": meeting_date.isoformat(),
                "start_time": start_time.isoformat(),
                "provider": booking.conferencing_provider,
            },
            source_module="scheduling.allocator",
        ))

        logger.info(
            "Meeting booked: id=%s expert=%s applicant=%s at %s %s (%s)",
            booking.id,
            expert_id,
            actor.id,
            meeting_date,
            start_time,
            booking.conferencing_provider,
        )
        return booking

    async def _allocate(
        self,
        db: AsyncSession,
        *,
        expert_id: uuid.UUID,
        applicant_id: uuid.UUID,
        meeting_date: date,
        start_time: time,
        end_time: time,
        title: str | None = None,
        description: str | None = None,
        rescheduled_from_id: uuid.UUID | None = None,
    ) -> MeetingBooking:
        """Insert the booking, claim the slot, then attach a join link.

        Authorization is the caller's job; reschedule reuses this for either party.
        """
        preference = await self.check_slot(db, expert_id, meeting_date, start_time, end_time)

        booking = MeetingBooking(
            id=uuid.uuid4(),
            expert_id=expert_id,
            applicant_id=applicant_id,
            preference_id=preference.id,
            rescheduled_from_id=rescheduled_from_id,
            meeting_date=meeting_date,
            start_time=start_time,
            end_time=end_time,
            timezone=preference.timezone,
            status=MeetingStatus.SCHEDULED.value,
            title=(title or "").strip() or settings.scheduling.default_meeting_title,
            description=description or settings.scheduling.default_meeting_description,
        )
        db.add(booking)
        await self._claim(db, booking)

        link = await self._bridge.obtain_meeting_link(db, booking)
        booking.meeting_link = link.url
        booking.conferencing_provider = link.provider.value
        booking.external_event_id = link.external_event_id
        await db.flush()
        return booking

    async def check_slot(
        self,
        db: AsyncSession,
        expert_id: uuid.UUID,
        meeting_date: date,
        start_time: time,
        end_time: time,
    ) -> AvailabilityPreference:
        """Run every pre-insert guard for a slot and return the preference backing it."""
        if start_time >= end_time:
            raise ValidationError("endTime must be after startTime")
        if has_started(meeting_date, start_time, local_now(self._clock)):
            raise PastMeetingError(
                "Cannot book a slot that has already started",
                details={"date": meeting_date.isoformat(), "startTime": start_time.isoformat()},
            )
        return await self._resolve_slot(db, expert_id, meeting_date, start_time, end_time)

    async def _resolve_slot(
        self,
        db: AsyncSession,
        expert_id: uuid.UUID,
        meeting_date: date,
        start_time: time,
        end_time: time,
    ) -> AvailabilityPreference:
        """The active preference that yields exactly this slot, else ValidationError."""
        preference = await self._load_active_preference(db, expert_id, weekday_index(meeting_date))
        if preference is not None:
            for slot in expand_preference(preference, meeting_date):
                if slot.start_time == start_time and slot.end_time == end_time:
                    return preference
        raise ValidationError(
            "The requested time is not an available slot for this expert",
            details={
                "expertId": str(expert_id),
                "date": meeting_date.isoformat(),
                "startTime": start_time.isoformat(),
                "endTime": end_time.isoformat(),
            },
        )

    async def _load_active_preference(
        self,
        db: AsyncSession,
        expert_id: uuid.UUID,
        day_of_week: int,
    ) -> AvailabilityPreference | None:
        result = await db.execute(
            select(AvailabilityPreference).where(
                AvailabilityPreference.expert_id == expert_id,
                AvailabilityPreference.day_of_week == day_of_week,
                AvailabilityPreference.is_active.is_(True),
            )
        )
        return result.scalar_one_or_none()

    async def _claim(self, db: AsyncSession, booking: MeetingBooking) -> None:
        try:
            await db.flush()
        except IntegrityError as exc:
            if ACTIVE_SLOT_INDEX not in constraint_name(exc):
                logger.exception("Unexpected integrity error inserting booking %s", booking.id)
                raise DependencyError("Could not save the booking") from exc

            await emit(SystemEvent(
                event_type=EventType.SLOT_CONFLICT,
                data={
                    "expert_id": str(booking.expert_id),
                    "meeting_date": booking.meeting_date.isoformat(),
                    "start_time": booking.start_time.isoformat(),
                },
                source_module="scheduling.allocator",
            ))
            logger.info(
                "Slot already booked: expert=%s at %s %s",
                booking.expert_id,
                booking.meeting_date,
                booking.start_time,
            )
            raise SlotAlreadyBookedError(
                "This time slot is already booked. Please choose another slot.",
                details={
                    "expertId": str(booking.expert_id),
                    "date": booking.meeting_date.isoformat(),
                    "startTime": booking.start_time.isoformat(),
                },
            ) from exc


# Module-level singleton
booking_allocator = BookingAllocator()
