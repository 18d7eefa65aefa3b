"""Tests for slot generation.

Covers:
- Weekday numbering (Sunday = 0)
- Expansion of one preference on one date (duration, buffer, short windows)
- Exclusion of booked and already-started slots
- The booked-slot query only counts scheduled bookings
- Ordering across experts and dates, idempotence
- dateRange parsing and range guards
"""

from __future__ import annotations

import uuid
from datetime import UTC, date, datetime, time, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.dialects import postgresql

from cvreview.models.preference import AvailabilityPreference
from cvreview.scheduling.errors import ValidationError
from cvreview.scheduling.slots import SlotGenerator, expand_preference, parse_date_range, weekday_index

MONDAY = date(2026, 10, 19)
TUESDAY = date(2026, 10, 20)

# ── Helpers ──────────────────────────────────────────────────────────


def _make_preference(
    day_of_week: int = 1,
    start: time = time(9, 0),
    end: time = time(11, 0),
    slot_duration: int = 30,
    buffer_time: int = 0,
    expert_id: uuid.UUID | None = None,
    is_active: bool = True,
) -> AvailabilityPreference:
    return AvailabilityPreference(
        id=uuid.uuid4(),
        expert_id=expert_id or uuid.uuid4(),
        day_of_week=day_of_week,
        start_time=start,
        end_time=end,
        timezone="Europe/Rome",
        slot_duration=slot_duration,
        buffer_time=buffer_time,
        is_active=is_active,
    )


def _starts(slots) -> list[time]:
    return [s.start_time for s in slots]


# ── Weekday numbering ────────────────────────────────────────────────


class TestWeekdayIndex:
    def test_sunday_is_zero(self):
        assert weekday_index(date(2026, 10, 18)) == 0

    def test_monday_is_one(self):
        assert weekday_index(MONDAY) == 1

    def test_saturday_is_six(self):
        assert weekday_index(date(2026, 10, 17)) == 6


# ── Expansion ────────────────────────────────────────────────────────


class TestExpandPreference:
    def test_duration_and_buffer(self):
        """60-minute slots with a 15-minute buffer start every 75 minutes."""
        pref = _make_preference(start=time(9, 0), end=time(13, 0), slot_duration=60, buffer_time=15)
        slots = expand_preference(pref, MONDAY)
        assert _starts(slots) == [time(9, 0), time(10, 15), time(11, 30)]
        assert [s.end_time for s in slots] == [time(10, 0), time(11, 15), time(12, 30)]

    def test_back_to_back_slots(self):
        pref = _make_preference()
        slots = expand_preference(pref, MONDAY)
        assert _starts(slots) == [time(9, 0), time(9, 30), time(10, 0), time(10, 30)]

    def test_last_slot_may_end_exactly_at_window_end(self):
        pref = _make_preference(start=time(9, 0), end=time(10, 0), slot_duration=60)
        assert _starts(expand_preference(pref, MONDAY)) == [time(9, 0)]

    def test_window_shorter_than_slot_yields_nothing(self):
        pref = _make_preference(start=time(9, 0), end=time(9, 45), slot_duration=60)
        assert expand_preference(pref, MONDAY) == []

    def test_other_weekday_yields_nothing(self):
        assert expand_preference(_make_preference(day_of_week=1), TUESDAY) == []

    def test_inactive_preference_yields_nothing(self):
        assert expand_preference(_make_preference(is_active=False), MONDAY) == []

    def test_slot_carries_preference_fields(self):
        pref = _make_preference()
        slot = expand_preference(pref, MONDAY, expert_name="Ada Lovelace")[0]
        assert slot.expert_id == pref.expert_id
        assert slot.preference_id == pref.id
        assert slot.date == MONDAY
        assert slot.duration == 30
        assert slot.timezone == "Europe/Rome"
        assert slot.expert_name == "Ada Lovelace"


# ── Listing ──────────────────────────────────────────────────────────


class TestListAvailableSlots:
    @pytest.mark.asyncio()
    async def test_booked_slot_is_excluded(self, clock):
        pref = _make_preference()
        generator = SlotGenerator(clock=clock)
        booked = {(pref.expert_id, MONDAY, time(9, 30))}

        with (
            patch.object(generator, "_load_preferences", AsyncMock(return_value=[pref])),
            patch.object(generator, "_load_booked_keys", AsyncMock(return_value=booked)),
        ):
            slots = await generator.list_available_slots(AsyncMock(), MONDAY, MONDAY)

        assert _starts(slots) == [time(9, 0), time(10, 0), time(10, 30)]

    @pytest.mark.asyncio()
    async def test_started_slots_are_excluded(self, clock):
        clock.current = datetime(2026, 10, 19, 9, 45, tzinfo=UTC)
        generator = SlotGenerator(clock=clock)

        with (
            patch.object(generator, "_load_preferences", AsyncMock(return_value=[_make_preference()])),
            patch.object(generator, "_load_booked_keys", AsyncMock(return_value=set())),
        ):
            slots = await generator.list_available_slots(AsyncMock(), MONDAY, MONDAY)

        assert _starts(slots) == [time(10, 0), time(10, 30)]

    @pytest.mark.asyncio()
    async def test_slot_starting_now_is_excluded(self, clock):
        clock.current = datetime(2026, 10, 19, 10, 0, tzinfo=UTC)
        generator = SlotGenerator(clock=clock)

        with (
            patch.object(generator, "_load_preferences", AsyncMock(return_value=[_make_preference()])),
            patch.object(generator, "_load_booked_keys", AsyncMock(return_value=set())),
        ):
            slots = await generator.list_available_slots(AsyncMock(), MONDAY, MONDAY)

        assert _starts(slots) == [time(10, 30)]

    @pytest.mark.asyncio()
    async def test_ordered_by_date_then_start_then_expert(self, clock):
        expert_a = uuid.UUID("00000000-0000-0000-0000-00000000000a")
        expert_b = uuid.UUID("00000000-0000-0000-0000-00000000000b")
        prefs = [
            _make_preference(day_of_week=2, start=time(8, 0), end=time(9, 0), slot_duration=60, expert_id=expert_a),
            _make_preference(day_of_week=1, start=time(10, 0), end=time(11, 0), slot_duration=60, expert_id=expert_b),
            _make_preference(day_of_week=1, start=time(10, 0), end=time(11, 0), slot_duration=60, expert_id=expert_a),
        ]
        generator = SlotGenerator(clock=clock)

        with (
            patch.object(generator, "_load_preferences", AsyncMock(return_value=prefs)),
            patch.object(generator, "_load_booked_keys", AsyncMock(return_value=set())),
        ):
            slots = await generator.list_available_slots(AsyncMock(), MONDAY, TUESDAY)

        assert [(s.date, s.start_time, s.expert_id) for s in slots] == [
            (MONDAY, time(10, 0), expert_a),
            (MONDAY, time(10, 0), expert_b),
            (TUESDAY, time(8, 0), expert_a),
        ]

    @pytest.mark.asyncio()
    async def test_repeated_listing_is_identical(self, clock):
        generator = SlotGenerator(clock=clock)

        with (
            patch.object(generator, "_load_preferences", AsyncMock(return_value=[_make_preference()])),
            patch.object(generator, "_load_booked_keys", AsyncMock(return_value=set())),
        ):
            first = await generator.list_available_slots(AsyncMock(), MONDAY, MONDAY + timedelta(days=14))
            second = await generator.list_available_slots(AsyncMock(), MONDAY, MONDAY + timedelta(days=14))

        assert first == second
        assert len(first) == 12  # three Mondays, four slots each

    @pytest.mark.asyncio()
    async def test_no_preferences_skips_booking_lookup(self, clock):
        generator = SlotGenerator(clock=clock)
        booked_loader = AsyncMock(return_value=set())

        with (
            patch.object(generator, "_load_preferences", AsyncMock(return_value=[])),
            patch.object(generator, "_load_booked_keys", booked_loader),
        ):
            slots = await generator.list_available_slots(AsyncMock(), MONDAY, TUESDAY)

        assert slots == []
        booked_loader.assert_not_awaited()

    @pytest.mark.asyncio()
    async def test_reversed_range_rejected(self, clock):
        with pytest.raises(ValidationError):
            await SlotGenerator(clock=clock).list_available_slots(AsyncMock(), TUESDAY, MONDAY)

    @pytest.mark.asyncio()
    async def test_overlong_range_rejected(self, clock):
        with pytest.raises(ValidationError):
            await SlotGenerator(clock=clock).list_available_slots(AsyncMock(), MONDAY, MONDAY + timedelta(days=400))

    def test_today_uses_clock(self, clock):
        assert SlotGenerator(clock=clock).today() == date(2026, 10, 17)


# ── Booked-slot query ─────────────────────────────────────────────────


class TestBookedKeysQuery:
    """Only scheduled bookings hold a slot; completed and cancelled ones do not."""

    @staticmethod
    def _db(rows) -> AsyncMock:
        result = MagicMock()
        result.all.return_value = rows
        db = AsyncMock()
        db.execute.return_value = result
        return db

    @pytest.mark.asyncio()
    async def test_filters_on_scheduled_status(self, clock):
        db = self._db([])

        await SlotGenerator(clock=clock)._load_booked_keys(db, MONDAY, TUESDAY, None)

        compiled = db.execute.call_args.args[0].compile(dialect=postgresql.dialect())
        sql = str(compiled)
        status_params = [name for name, value in compiled.params.items() if value == "scheduled"]
        assert len(status_params) == 1
        assert f"meeting_bookings.status = %({status_params[0]})s" in sql
        assert MONDAY in compiled.params.values()
        assert TUESDAY in compiled.params.values()
        assert "meeting_bookings.expert_id =" not in sql

    @pytest.mark.asyncio()
    async def test_narrows_to_one_expert(self, clock):
        expert_id = uuid.uuid4()
        db = self._db([(expert_id, MONDAY, time(9, 30))])

        keys = await SlotGenerator(clock=clock)._load_booked_keys(db, MONDAY, MONDAY, expert_id)

        assert keys == {(expert_id, MONDAY, time(9, 30))}
        compiled = db.execute.call_args.args[0].compile(dialect=postgresql.dialect())
        assert "meeting_bookings.expert_id =" in str(compiled)
        assert expert_id in compiled.params.values()


# ── dateRange parsing ────────────────────────────────────────────────


class TestParseDateRange:
    TODAY = date(2026, 10, 17)

    def test_default_range(self):
        date_from, date_to = parse_date_range(None, self.TODAY)
        assert date_from == self.TODAY
        assert date_to == self.TODAY + timedelta(days=14)

    def test_blank_is_default(self):
        assert parse_date_range("  ", self.TODAY) == parse_date_range(None, self.TODAY)

    def test_single_day(self):
        assert parse_date_range("2026-10-19", self.TODAY) == (MONDAY, MONDAY)

    def test_explicit_range(self):
        assert parse_date_range("2026-10-19..2026-10-20", self.TODAY) == (MONDAY, TUESDAY)

    def test_garbage_rejected(self):
        with pytest.raises(ValidationError):
            parse_date_range("next week", self.TODAY)

    def test_impossible_date_rejected(self):
        with pytest.raises(ValidationError):
            parse_date_range("2026-02-30", self.TODAY)
