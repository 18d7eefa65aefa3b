"""Tests for the booking allocator.

Covers:
- Successful booking: fields, join link from the bridge, MEETING_BOOKED published on commit
- Guards: applicant-only, past slots, slots not produced by a preference
- Exclusivity: a unique-index violation becomes SlotAlreadyBookedError
- Two concurrent bookings for one slot: exactly one wins
"""

from __future__ import annotations

import asyncio
import uuid
from datetime import UTC, date, datetime, time
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.exc import IntegrityError

from cvreview.conferencing.bridge import MeetingLink
from cvreview.models.booking import ACTIVE_SLOT_INDEX, MeetingBooking
from cvreview.models.enums import ConferencingProvider, MeetingStatus
from cvreview.models.preference import AvailabilityPreference
from cvreview.scheduling.allocator import BookingAllocator
from cvreview.scheduling.errors import (
    DependencyError,
    PastMeetingError,
    PermissionDeniedError,
    SlotAlreadyBookedError,
    ValidationError,
)
from cvreview.schemas.events import EventType

MONDAY = date(2026, 10, 19)

# ── Helpers ──────────────────────────────────────────────────────────


class _DriverError(Exception):
    """Mimics asyncpg's UniqueViolationError, which names the violated constraint."""

    def __init__(self, constraint: str) -> None:
        super().__init__(f'duplicate key value violates unique constraint "{constraint}"')
        self.constraint_name = constraint


def _integrity_error(constraint: str) -> IntegrityError:
    return IntegrityError("INSERT INTO meeting_bookings ...", {}, _DriverError(constraint))


def _make_preference(expert_id: uuid.UUID) -> AvailabilityPreference:
    return AvailabilityPreference(
        id=uuid.uuid4(),
        expert_id=expert_id,
        day_of_week=1,
        start_time=time(9, 0),
        end_time=time(13, 0),
        timezone="UTC",
        slot_duration=60,
        buffer_time=15,
        is_active=True,
    )


def _make_bridge(link: MeetingLink | None = None) -> MagicMock:
    bridge = MagicMock()
    bridge.obtain_meeting_link = AsyncMock(
        return_value=link or MeetingLink(url="https://meet.jit.si/cv-review-abc-123456", provider=ConferencingProvider.JITSI)
    )
    return bridge


class _SlotIndex:
    """In-memory stand-in for the partial unique index on scheduled slots.

    Each session buffers added bookings; flush claims their keys and raises the
    same IntegrityError PostgreSQL would for a key that is already claimed.
    """

    def __init__(self) -> None:
        self.claimed: set[tuple[uuid.UUID, date, time]] = set()

    def session(self) -> AsyncMock:
        pending: list[MeetingBooking] = []
        db = AsyncMock()
        db.add = MagicMock(side_effect=pending.append)

        async def flush() -> None:
            await asyncio.sleep(0)
            while pending:
                booking = pending.pop()
                key = (booking.expert_id, booking.meeting_date, booking.start_time)
                if key in self.claimed:
                    raise _integrity_error(ACTIVE_SLOT_INDEX)
                self.claimed.add(key)

        db.flush = AsyncMock(side_effect=flush)
        return db


# ── Successful booking ───────────────────────────────────────────────


class TestCreateBooking:
    @pytest.mark.asyncio()
    async def test_books_slot_and_attaches_link(self, clock, applicant):
        expert_id = uuid.uuid4()
        preference = _make_preference(expert_id)
        link = MeetingLink(
            url="https://meet.google.com/abc-defg-hij",
            provider=ConferencingProvider.GOOGLE_MEET,
            external_event_id="evt-1",
        )
        bridge = _make_bridge(link)
        allocator = BookingAllocator(clock=clock, bridge=bridge)
        db = AsyncMock()
        db.add = MagicMock()

        with (
            patch.object(allocator, "_load_active_preference", AsyncMock(return_value=preference)),
            patch("cvreview.scheduling.allocator.emit_on_commit") as mock_emit,
        ):
            booking = await allocator.create_booking(
                db,
                applicant,
                expert_id=expert_id,
                meeting_date=MONDAY,
                start_time=time(10, 15),
                end_time=time(11, 15),
            )

        db.add.assert_called_once_with(booking)
        assert db.flush.await_count == 2
        assert booking.status == MeetingStatus.SCHEDULED.value
        assert booking.applicant_id == applicant.id
        assert booking.expert_id == expert_id
        assert booking.preference_id == preference.id
        assert booking.title == "CV Review Meeting"
        assert booking.meeting_link == "https://meet.google.com/abc-defg-hij"
        assert booking.conferencing_provider == "google_meet"
        assert booking.external_event_id == "evt-1"
        bridge.obtain_meeting_link.assert_awaited_once_with(db, booking)

        assert mock_emit.call_args.args[0] is db
        event = mock_emit.call_args.args[1]
        assert event.event_type == EventType.MEETING_BOOKED
        assert event.entity_id == booking.id
        assert event.actor_id == str(applicant.id)

    @pytest.mark.asyncio()
    async def test_custom_title_is_kept(self, clock, applicant):
        expert_id = uuid.uuid4()
        allocator = BookingAllocator(clock=clock, bridge=_make_bridge())
        db = AsyncMock()
        db.add = MagicMock()

        with (
            patch.object(allocator, "_load_active_preference", AsyncMock(return_value=_make_preference(expert_id))),
            patch("cvreview.scheduling.allocator.emit_on_commit"),
        ):
            booking = await allocator.create_booking(
                db,
                applicant,
                expert_id=expert_id,
                meeting_date=MONDAY,
                start_time=time(9, 0),
                end_time=time(10, 0),
                title="  Senior backend CV  ",
            )

        assert booking.title == "Senior backend CV"
        assert booking.conferencing_provider == "jitsi"


# ── Guards ───────────────────────────────────────────────────────────


class TestCreateBookingGuards:
    @pytest.mark.asyncio()
    async def test_expert_cannot_book(self, clock, expert):
        allocator = BookingAllocator(clock=clock, bridge=_make_bridge())
        db = AsyncMock()

        with pytest.raises(PermissionDeniedError):
            await allocator.create_booking(
                db, expert, expert_id=expert.id, meeting_date=MONDAY, start_time=time(9, 0), end_time=time(10, 0)
            )
        db.add.assert_not_called()

    @pytest.mark.asyncio()
    async def test_past_slot_rejected_before_lookup(self, clock, applicant):
        clock.current = datetime(2026, 10, 19, 9, 30, tzinfo=UTC)
        allocator = BookingAllocator(clock=clock, bridge=_make_bridge())
        loader = AsyncMock()

        with patch.object(allocator, "_load_active_preference", loader), pytest.raises(PastMeetingError):
            await allocator.create_booking(
                AsyncMock(), applicant, expert_id=uuid.uuid4(),
                meeting_date=MONDAY, start_time=time(9, 0), end_time=time(10, 0),
            )
        loader.assert_not_awaited()

    @pytest.mark.asyncio()
    async def test_off_grid_time_rejected(self, clock, applicant):
        """10:00 is not a slot start when slots are 60 minutes with a 15-minute buffer."""
        expert_id = uuid.uuid4()
        allocator = BookingAllocator(clock=clock, bridge=_make_bridge())

        with (
            patch.object(allocator, "_load_active_preference", AsyncMock(return_value=_make_preference(expert_id))),
            pytest.raises(ValidationError),
        ):
            await allocator.create_booking(
                AsyncMock(), applicant, expert_id=expert_id,
                meeting_date=MONDAY, start_time=time(10, 0), end_time=time(11, 0),
            )

    @pytest.mark.asyncio()
    async def test_wrong_end_time_rejected(self, clock, applicant):
        expert_id = uuid.uuid4()
        allocator = BookingAllocator(clock=clock, bridge=_make_bridge())

        with (
            patch.object(allocator, "_load_active_preference", AsyncMock(return_value=_make_preference(expert_id))),
            pytest.raises(ValidationError),
        ):
            await allocator.create_booking(
                AsyncMock(), applicant, expert_id=expert_id,
                meeting_date=MONDAY, start_time=time(9, 0), end_time=time(9, 30),
            )

    @pytest.mark.asyncio()
    async def test_no_active_preference_rejected(self, clock, applicant):
        allocator = BookingAllocator(clock=clock, bridge=_make_bridge())

        with (
            patch.object(allocator, "_load_active_preference", AsyncMock(return_value=None)),
            pytest.raises(ValidationError),
        ):
            await allocator.create_booking(
                AsyncMock(), applicant, expert_id=uuid.uuid4(),
                meeting_date=MONDAY, start_time=time(9, 0), end_time=time(10, 0),
            )

    @pytest.mark.asyncio()
    async def test_end_before_start_rejected(self, clock, applicant):
        allocator = BookingAllocator(clock=clock, bridge=_make_bridge())
        with pytest.raises(ValidationError):
            await allocator.create_booking(
                AsyncMock(), applicant, expert_id=uuid.uuid4(),
                meeting_date=MONDAY, start_time=time(10, 0), end_time=time(9, 0),
            )


# ── Exclusivity ──────────────────────────────────────────────────────


class TestExclusivity:
    @pytest.mark.asyncio()
    async def test_unique_violation_becomes_slot_already_booked(self, clock, applicant):
        expert_id = uuid.uuid4()
        bridge = _make_bridge()
        allocator = BookingAllocator(clock=clock, bridge=bridge)
        db = AsyncMock()
        db.add = MagicMock()
        db.flush.side_effect = _integrity_error(ACTIVE_SLOT_INDEX)

        with (
            patch.object(allocator, "_load_active_preference", AsyncMock(return_value=_make_preference(expert_id))),
            patch("cvreview.scheduling.allocator.emit", new_callable=AsyncMock) as mock_emit,
            pytest.raises(SlotAlreadyBookedError) as exc_info,
        ):
            await allocator.create_booking(
                db, applicant, expert_id=expert_id,
                meeting_date=MONDAY, start_time=time(9, 0), end_time=time(10, 0),
            )

        assert exc_info.value.status_code == 409
        assert exc_info.value.kind == "slot_already_booked"
        bridge.obtain_meeting_link.assert_not_awaited()
        assert mock_emit.call_args.args[0].event_type == EventType.SLOT_CONFLICT

    @pytest.mark.asyncio()
    async def test_other_integrity_error_is_dependency_error(self, clock, applicant):
        expert_id = uuid.uuid4()
        allocator = BookingAllocator(clock=clock, bridge=_make_bridge())
        db = AsyncMock()
        db.add = MagicMock()
        db.flush.side_effect = _integrity_error("fk_meeting_bookings_applicant_id_users")

        with (
            patch.object(allocator, "_load_active_preference", AsyncMock(return_value=_make_preference(expert_id))),
            pytest.raises(DependencyError),
        ):
            await allocator.create_booking(
                db, applicant, expert_id=expert_id,
                meeting_date=MONDAY, start_time=time(9, 0), end_time=time(10, 0),
            )

    @pytest.mark.asyncio()
    async def test_concurrent_bookings_exactly_one_wins(self, clock, applicant, other_applicant):
        expert_id = uuid.uuid4()
        index = _SlotIndex()
        allocator = BookingAllocator(clock=clock, bridge=_make_bridge())

        async def book(actor):
            return await allocator.create_booking(
                index.session(), actor, expert_id=expert_id,
                meeting_date=MONDAY, start_time=time(11, 30), end_time=time(12, 30),
            )

        with (
            patch.object(allocator, "_load_active_preference", AsyncMock(return_value=_make_preference(expert_id))),
            patch("cvreview.scheduling.allocator.emit_on_commit"),
        ):
            results = await asyncio.gather(book(applicant), book(other_applicant), return_exceptions=True)

        winners = [r for r in results if isinstance(r, MeetingBooking)]
        losers = [r for r in results if isinstance(r, SlotAlreadyBookedError)]
        assert len(winners) == 1
        assert len(losers) == 1
        assert index.claimed == {(expert_id, MONDAY, time(11, 30))}

    @pytest.mark.asyncio()
    async def test_different_slots_both_succeed(self, clock, applicant, other_applicant):
        expert_id = uuid.uuid4()
        index = _SlotIndex()
        allocator = BookingAllocator(clock=clock, bridge=_make_bridge())

        with (
            patch.object(allocator, "_load_active_preference", AsyncMock(return_value=_make_preference(expert_id))),
            patch("cvreview.scheduling.allocator.emit_on_commit"),
        ):
            first, second = await asyncio.gather(
                allocator.create_booking(
                    index.session(), applicant, expert_id=expert_id,
                    meeting_date=MONDAY, start_time=time(9, 0), end_time=time(10, 0),
                ),
                allocator.create_booking(
                    index.session(), other_applicant, expert_id=expert_id,
                    meeting_date=MONDAY, start_time=time(10, 15), end_time=time(11, 15),
                ),
            )

        assert first.start_time == time(9, 0)
        assert second.start_time == time(10, 15)
        assert len(index.claimed) == 2
