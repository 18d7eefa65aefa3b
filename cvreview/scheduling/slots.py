"""Slot generator: expands weekly preferences into concrete bookable slots.

A preference for weekday D with window [start, end) produces, on every date
falling on D, slots of `slot_duration` minutes starting at `start` and
advancing by `slot_duration + buffer_time` while the slot still ends by `end`.
Slots already held by a scheduled booking, and slots that have already
started, are left out.

Listing is read-only; two calls with no writes in between return the same list.
"""

from __future__ import annotations

import logging
import re
import uuid
from datetime import date, datetime, time, timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from cvreview.config import settings
from cvreview.models.booking import MeetingBooking
from cvreview.models.enums import MeetingStatus
from cvreview.models.preference import AvailabilityPreference
from cvreview.scheduling.clock import Clock, SystemClock, local_now
from cvreview.scheduling.errors import ValidationError
from cvreview.schemas.scheduling import TimeSlot

logger = logging.getLogger(__name__)

SlotKey = tuple[uuid.UUID, date, time]

_RANGE_RE = re.compile(r"^(\d{4}-\d{2}-\d{2})(?:\.\.(\d{4}-\d{2}-\d{2}))?$")


def weekday_index(d: date) -> int:
    """Day of week counted from Sunday = 0, as stored on preferences."""
    return (d.weekday() + 1) % 7


def expand_preference(
    preference: AvailabilityPreference,
    on_date: date,
    *,
    expert_name: str | None = None,
) -> list[TimeSlot]:
    """All slots `preference` yields on `on_date`, ignoring bookings and the clock."""
    if not preference.is_active or weekday_index(on_date) != preference.day_of_week:
        return []
    if preference.slot_duration <= 0 or preference.buffer_time < 0:
        return []

    duration = timedelta(minutes=preference.slot_duration)
    step = duration + timedelta(minutes=preference.buffer_time)
    cursor = datetime.combine(on_date, preference.start_time)
    window_end = datetime.combine(on_date, preference.end_time)

    slots: list[TimeSlot] = []
    while cursor + duration <= window_end:
        slots.append(TimeSlot(
            expert_id=preference.expert_id,
            preference_id=preference.id,
            date=on_date,
            start_time=cursor.time(),
            end_time=(cursor + duration).time(),
            duration=preference.slot_duration,
            timezone=preference.timezone,
            expert_name=expert_name,
        ))
        cursor += step
    return slots


def parse_date_range(raw: str | None, today: date) -> tuple[date, date]:
    """Parse `YYYY-MM-DD` or `YYYY-MM-DD..YYYY-MM-DD` into an inclusive range.

    No value means today through the configured default horizon. A single
    date is a one-day range.
    """
    if raw is None or not raw.strip():
        return today, today + timedelta(days=settings.scheduling.default_range_days)

    match = _RANGE_RE.match(raw.strip())
    if match is None:
        raise ValidationError(
            "dateRange must be YYYY-MM-DD or YYYY-MM-DD..YYYY-MM-DD",
            details={"dateRange": raw},
        )
    try:
        date_from = date.fromisoformat(match.group(1))
        date_to = date.fromisoformat(match.group(2)) if match.group(2) else date_from
    except ValueError as exc:
        raise ValidationError(f"Invalid date in dateRange: {exc}", details={"dateRange": raw}) from exc
    return date_from, date_to


def validate_range(date_from: date, date_to: date) -> None:
    if date_to < date_from:
        raise ValidationError(
            "dateRange end is before its start",
            details={"dateFrom": date_from.isoformat(), "dateTo": date_to.isoformat()},
        )
    max_days = settings.scheduling.max_range_days
    if (date_to - date_from).days > max_days:
        raise ValidationError(
            f"dateRange may span at most {max_days} days",
            details={"maxDays": max_days},
        )


class SlotGenerator:
    """Lists free slots for a date range, optionally for one expert."""

    def __init__(self, clock: Clock | None = None) -> None:
        self._clock = clock or SystemClock()

    def today(self) -> date:
        """Current date in the business timezone."""
        return local_now(self._clock).date()

    async def list_available_slots(
        self,
        db: AsyncSession,
        date_from: date,
        date_to: date,
        expert_id: uuid.UUID | None = None,
    ) -> list[TimeSlot]:
        """Free, not-yet-started slots in [date_from, date_to], ordered by date, start, expert."""
        validate_range(date_from, date_to)

        preferences = await self._load_preferences(db, expert_id)
        if not preferences:
            return []
        booked = await self._load_booked_keys(db, date_from, date_to, expert_id)
        now_local = local_now(self._clock)

        by_weekday: dict[int, list[AvailabilityPreference]] = {}
        for pref in preferences:
            by_weekday.setdefault(pref.day_of_week, []).append(pref)

        slots: list[TimeSlot] = []
        day = date_from
        while day <= date_to:
            for pref in by_weekday.get(weekday_index(day), []):
                for slot in expand_preference(pref, day, expert_name=_expert_name(pref)):
                    if (slot.expert_id, slot.date, slot.start_time) in booked:
                        continue
                    if datetime.combine(slot.date, slot.start_time) <= now_local:
                        continue
                    slots.append(slot)
            day += timedelta(days=1)

        slots.sort(key=lambda s: (s.date, s.start_time, str(s.expert_id)))
        logger.debug(
            "Listed %d slots for %s..%s (expert=%s, %d preferences, %d booked)",
            len(slots),
            date_from,
            date_to,
            expert_id,
            len(preferences),
            len(booked),
        )
        return slots

    async def _load_preferences(
        self,
        db: AsyncSession,
        expert_id: uuid.UUID | None,
    ) -> list[AvailabilityPreference]:
        stmt = (
            select(AvailabilityPreference)
            .where(AvailabilityPreference.is_active.is_(True))
            .options(selectinload(AvailabilityPreference.expert))
        )
        if expert_id is not None:
            stmt = stmt.where(AvailabilityPreference.expert_id == expert_id)
        result = await db.execute(stmt)
        return list(result.scalars().all())

    async def _load_booked_keys(
        self,
        db: AsyncSession,
        date_from: date,
        date_to: date,
        expert_id: uuid.UUID | None,
    ) -> set[SlotKey]:
        """(expert, date, start) of every scheduled booking in the range."""
        stmt = select(
            MeetingBooking.expert_id,
            MeetingBooking.meeting_date,
            MeetingBooking.start_time,
        ).where(
            MeetingBooking.status == MeetingStatus.SCHEDULED.value,
            MeetingBooking.meeting_date >= date_from,
            MeetingBooking.meeting_date <= date_to,
        )
        if expert_id is not None:
            stmt = stmt.where(MeetingBooking.expert_id == expert_id)
        result = await db.execute(stmt)
        return {(row[0], row[1], row[2]) for row in result.all()}


def _expert_name(preference: AvailabilityPreference) -> str | None:
    expert = preference.expert
    return expert.display_name if expert is not None else None


# Module-level singleton
slot_generator = SlotGenerator()
