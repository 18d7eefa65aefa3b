"""Meeting lifecycle manager: cancel, complete, annotate, reschedule and read bookings.

Every guard (ownership, status, timing) runs before anything is written. The
status write itself is a conditional UPDATE that only matches scheduled rows,
so of two racing transitions on the same booking exactly one wins and the
other gets InvalidStateError.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, time
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from cvreview.events import emit_on_commit
from cvreview.models.booking import MeetingBooking
from cvreview.models.enums import MeetingStatus
from cvreview.scheduling.allocator import BookingAllocator, booking_allocator
from cvreview.scheduling.clock import Clock, SystemClock, has_started, local_now
from cvreview.scheduling.errors import InvalidStateError, NotFoundError, PastMeetingError, ValidationError
from cvreview.scheduling.policy import Actor, Operation, authorize
from cvreview.scheduling.states import ensure_transition
from cvreview.schemas.events import EventType, SystemEvent

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


class MeetingLifecycleManager:
    """State transitions and role-scoped reads for meeting bookings."""

    def __init__(
        self,
        clock: Clock | None = None,
        allocator: BookingAllocator | None = None,
    ) -> None:
        self._clock = clock or SystemClock()
        self._allocator = allocator or booking_allocator

    def now_local(self) -> datetime:
        return local_now(self._clock)

    # ── Transitions ──────────────────────────────────────────────────

    async def cancel(
        self,
        db: AsyncSession,
        booking_id: uuid.UUID,
        actor: Actor,
        reason: str | None = None,
    ) -> MeetingBooking:
        """Cancel a scheduled, not-yet-started booking on behalf of either party.

        The slot becomes listable again. Once the cancellation commits, the
        calendar event, if any, is deleted best-effort by the conferencing
        bridge.
        """
        booking = await self._get_booking(db, booking_id)
        authorize(actor, Operation.CANCEL, expert_id=booking.expert_id, applicant_id=booking.applicant_id)
        self._ensure_cancellable(booking)

        reason = (reason or "").strip() or f"Cancelled by {actor.role.value}"
        cancelled = await self._apply_transition(
            db,
            booking_id,
            MeetingStatus.CANCELLED,
            cancelled_by=actor.id,
            cancelled_at=self._clock.now(),
            cancellation_reason=reason,
        )
        emit_on_commit(db, SystemEvent(
            event_type=EventType.MEETING_CANCELLED,
            entity_id=cancelled.id,
            actor_id=str(actor.id),
            actor_role=actor.role.value,
            data={"reason": reason, **_booking_refs(cancelled)},
            source_module="scheduling.lifecycle",
        ))
        logger.info("Meeting cancelled: id=%s by %s %s", cancelled.id, actor.role.value, actor.id)
        return cancelled

    async def complete(self, db: AsyncSession, booking_id: uuid.UUID, actor: Actor) -> MeetingBooking:
        """Mark a scheduled booking as completed. Owning expert only."""
        booking = await self._get_booking(db, booking_id)
        authorize(actor, Operation.COMPLETE, expert_id=booking.expert_id, applicant_id=booking.applicant_id)
        ensure_transition(booking.status, MeetingStatus.COMPLETED)

        completed = await self._apply_transition(db, booking_id, MeetingStatus.COMPLETED)

        emit_on_commit(db, SystemEvent(
            event_type=EventType.MEETING_COMPLETED,
            entity_id=completed.id,
            actor_id=str(actor.id),
            actor_role=actor.role.value,
            source_module="scheduling.lifecycle",
        ))
        logger.info("Meeting completed: id=%s", completed.id)
        return completed

    async def annotate(
        self,
        db: AsyncSession,
        booking_id: uuid.UUID,
        actor: Actor,
        notes: str,
    ) -> MeetingBooking:
        """Overwrite the booking's notes, whatever its status. Owning expert only."""
        booking = await self._get_booking(db, booking_id)
        authorize(actor, Operation.ANNOTATE, expert_id=booking.expert_id, applicant_id=booking.applicant_id)

        booking.notes = notes.strip()
        await db.flush()

        emit_on_commit(db, SystemEvent(
            event_type=EventType.MEETING_NOTES_UPDATED,
            entity_id=booking.id,
            actor_id=str(actor.id),
            actor_role=actor.role.value,
            data={"length": len(booking.notes)},
            source_module="scheduling.lifecycle",
        ))
        return booking

    async def reschedule(
        self,
        db: AsyncSession,
        booking_id: uuid.UUID,
        actor: Actor,
        *,
        meeting_date: date,
        start_time: time,
        end_time: time,
    ) -> MeetingBooking:
        """Move a booking to another slot of the same expert.

        The old booking is cancelled and a new one created in the same
        transaction, linked through `rescheduled_from_id`. If the new slot is
        taken, SlotAlreadyBookedError propagates and the request's rollback
        restores the old booking. The old calendar event is released only
        after the reschedule commits.
        """
        booking = await self._get_booking(db, booking_id)
        authorize(actor, Operation.RESCHEDULE, expert_id=booking.expert_id, applicant_id=booking.applicant_id)
        self._ensure_cancellable(booking)
        if (meeting_date, start_time) == (booking.meeting_date, booking.start_time):
            raise ValidationError("The meeting is already scheduled at that time")
        await self._allocator.check_slot(db, booking.expert_id, meeting_date, start_time, end_time)

        old = await self._apply_transition(
            db,
            booking_id,
            MeetingStatus.CANCELLED,
            cancelled_by=actor.id,
            cancelled_at=self._clock.now(),
            cancellation_reason=f"Rescheduled by {actor.role.value}",
        )
        new = await self._allocator._allocate(
            db,
            expert_id=old.expert_id,
            applicant_id=old.applicant_id,
            meeting_date=meeting_date,
            start_time=start_time,
            end_time=end_time,
            title=old.title,
            description=old.description,
            rescheduled_from_id=old.id,
        )
        emit_on_commit(db, SystemEvent(
            event_type=EventType.MEETING_RESCHEDULED,
            entity_id=new.id,
            actor_id=str(actor.id),
            actor_role=actor.role.value,
            data={
                "rescheduled_from": str(old.id),
                "meeting_date": meeting_date.isoformat(),
                "start_time": start_time.isoformat(),
                **_booking_refs(old),
            },
            source_module="scheduling.lifecycle",
        ))
        logger.info("Meeting rescheduled: %s -> %s (%s %s)", old.id, new.id, meeting_date, start_time)
        return new

    # ── Reads ────────────────────────────────────────────────────────

    async def get_meeting(self, db: AsyncSession, booking_id: uuid.UUID, actor: Actor) -> MeetingBooking:
        """A single booking, visible to its expert and applicant only."""
        booking = await self._get_booking(db, booking_id, with_parties=True)
        authorize(actor, Operation.VIEW, expert_id=booking.expert_id, applicant_id=booking.applicant_id)
        return booking

    async def list_meetings(
        self,
        db: AsyncSession,
        actor: Actor,
        *,
        status: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[MeetingBooking], int]:
        """The actor's own bookings, newest first, with the total matching count."""
        if not 1 <= limit <= MAX_PAGE_SIZE:
            raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}", details={"limit": limit})
        if offset < 0:
            raise ValidationError("offset cannot be negative", details={"offset": offset})

        owner = MeetingBooking.expert_id if actor.is_expert else MeetingBooking.applicant_id
        filters: list[Any] = [owner == actor.id]
        if status:
            try:
                filters.append(MeetingBooking.status == MeetingStatus(status).value)
            except ValueError as exc:
                raise ValidationError(
                    f"Unknown status: {status}",
                    details={"allowed": [s.value for s in MeetingStatus]},
                ) from exc

        total = (await db.execute(select(func.count(MeetingBooking.id)).where(*filters))).scalar_one()
        result = await db.execute(
            select(MeetingBooking)
            .where(*filters)
            .options(selectinload(MeetingBooking.expert), selectinload(MeetingBooking.applicant))
            .order_by(MeetingBooking.meeting_date.desc(), MeetingBooking.start_time.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all()), total

    # ── Internals ────────────────────────────────────────────────────

    def _ensure_cancellable(self, booking: MeetingBooking) -> None:
        ensure_transition(booking.status, MeetingStatus.CANCELLED)
        if has_started(booking.meeting_date, booking.start_time, self.now_local()):
            raise PastMeetingError(
                "Cannot cancel or reschedule a meeting that has already started",
                details={"date": booking.meeting_date.isoformat(), "startTime": booking.start_time.isoformat()},
            )

    async def _get_booking(
        self,
        db: AsyncSession,
        booking_id: uuid.UUID,
        *,
        with_parties: bool = False,
    ) -> MeetingBooking:
        stmt = select(MeetingBooking).where(MeetingBooking.id == booking_id)
        if with_parties:
            stmt = stmt.options(selectinload(MeetingBooking.expert), selectinload(MeetingBooking.applicant))
        result = await db.execute(stmt)
        booking = result.scalar_one_or_none()
        if booking is None:
            raise NotFoundError("Meeting not found", details={"id": str(booking_id)})
        return booking

    async def _apply_transition(
        self,
        db: AsyncSession,
        booking_id: uuid.UUID,
        target: MeetingStatus,
        **values: Any,
    ) -> MeetingBooking:
        """UPDATE ... WHERE status = 'scheduled' RETURNING; no row means someone else moved it first."""
        result = await db.execute(
            update(MeetingBooking)
            .where(
                MeetingBooking.id == booking_id,
                MeetingBooking.status == MeetingStatus.SCHEDULED.value,
            )
            .values(status=target.value, **values)
            .returning(MeetingBooking)
            .execution_options(populate_existing=True, synchronize_session=False)
        )
        updated = result.scalar_one_or_none()
        if updated is None:
            raise InvalidStateError(
                f"Meeting is no longer scheduled and cannot become {target.value}",
                details={"id": str(booking_id), "target": target.value},
            )
        return updated


def _booking_refs(booking: MeetingBooking) -> dict[str, Any]:
    """Parties and calendar event of `booking`, for post-commit subscribers."""
    return {
        "expert_id": str(booking.expert_id),
        "applicant_id": str(booking.applicant_id),
        "conferencing_provider": booking.conferencing_provider,
        "external_event_id": booking.external_event_id,
    }


# Module-level singleton
meeting_lifecycle = MeetingLifecycleManager()
