"""SQLAlchemy ORM models for the meeting scheduler.

Import all models here so Alembic and Base.metadata.create_all() discover them.
"""

from __future__ import annotations

from cvreview.models.audit import AuditLog
from cvreview.models.base import Base
from cvreview.models.booking import MeetingBooking
from cvreview.models.calendar_credential import CalendarCredential
from cvreview.models.enums import ActorRole, ConferencingProvider, CredentialPolicy, MeetingStatus
from cvreview.models.preference import AvailabilityPreference
from cvreview.models.user import User

__all__ = [
    # Base
    "Base",
    # Models
    "User",
    "AvailabilityPreference",
    "MeetingBooking",
    "CalendarCredential",
    "AuditLog",
    # Enums
    "ActorRole",
    "MeetingStatus",
    "ConferencingProvider",
    "CredentialPolicy",
]
