"""Time source for past/upcoming decisions.

Services never read the system clock directly; they receive a Clock so tests
can pin "now". Stored meeting dates and times are wall-clock values in the
business timezone, so comparisons happen in that zone.
"""

from __future__ import annotations

import logging
from datetime import UTC, date, datetime, time
from typing import Protocol
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from cvreview.config import settings

logger = logging.getLogger(__name__)


class Clock(Protocol):
    def now(self) -> datetime:
        """Current instant, timezone-aware."""
        ...


class SystemClock:
    """Reads the real time in UTC."""

    def now(self) -> datetime:
        return datetime.now(UTC)


def business_zone(name: str | None = None) -> ZoneInfo:
    """Resolve the configured business timezone, defaulting to UTC on a bad name."""
    name = name or settings.scheduling.business_timezone
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown business timezone %r, falling back to UTC", name)
        return ZoneInfo("UTC")


def local_now(clock: Clock, zone: ZoneInfo | None = None) -> datetime:
    """Current wall-clock time in the business zone, as a naive datetime."""
    return clock.now().astimezone(zone or business_zone()).replace(tzinfo=None)


def has_started(meeting_date: date, start_time: time, now_local: datetime) -> bool:
    """True once the wall-clock start of a meeting is not after `now_local`."""
    return datetime.combine(meeting_date, start_time) <= now_local
