"""Shared fixtures: a pinned clock and the two kinds of actor."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

import pytest

from cvreview.models.enums import ActorRole
from cvreview.scheduling.policy import Actor

# Saturday 17 October 2026, noon UTC. The next Monday is 19 October.
DEFAULT_NOW = datetime(2026, 10, 17, 12, 0, tzinfo=UTC)


class FixedClock:
    """Clock whose current time only changes when a test sets it."""

    def __init__(self, current: datetime = DEFAULT_NOW) -> None:
        self.current = current

    def now(self) -> datetime:
        return self.current


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def expert() -> Actor:
    return Actor(id=uuid.uuid4(), role=ActorRole.EXPERT)


@pytest.fixture
def applicant() -> Actor:
    return Actor(id=uuid.uuid4(), role=ActorRole.APPLICANT)


@pytest.fixture
def other_applicant() -> Actor:
    return Actor(id=uuid.uuid4(), role=ActorRole.APPLICANT)
