"""Domain enums used across SQLAlchemy models and Pydantic schemas.

All enums use str mixin for JSON serialization; columns store `.value`.
"""

from __future__ import annotations

from enum import Enum


class ActorRole(str, Enum):
    """Role of the authenticated user making a request."""

    APPLICANT = "applicant"
    EXPERT = "expert"


class MeetingStatus(str, Enum):
    """Meeting booking lifecycle states."""

    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ConferencingProvider(str, Enum):
    """Where a booking's join link came from."""

    GOOGLE_MEET = "google_meet"
    JITSI = "jitsi"


class CredentialPolicy(str, Enum):
    """Which calendar credentials may back an expert's meeting."""

    USER_ONLY = "user_only"
    SYSTEM_FALLBACK = "system_fallback"
