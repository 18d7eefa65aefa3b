"""CalendarCredential model: a user's Google Calendar OAuth tokens (encrypted)."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, ForeignKey, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from cvreview.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from cvreview.models.user import User


class CalendarCredential(TimestampMixin, Base):
    """Google OAuth tokens that let the system create Meet events for a user."""

    __tablename__ = "calendar_credentials"

    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, unique=True
    )

    # OAuth tokens
    access_token_encrypted: Mapped[str] = mapped_column(Text, nullable=False, comment="AES-256-GCM encrypted")
    refresh_token_encrypted: Mapped[str | None] = mapped_column(Text, comment="AES-256-GCM encrypted")
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # Google account
    google_email: Mapped[str | None] = mapped_column(String(255))
    calendar_id: Mapped[str | None] = mapped_column(String(500))

    user: Mapped[User] = relationship("User", back_populates="calendar_credential")

    def __repr__(self) -> str:
        return f"<CalendarCredential user={self.user_id} expires_at={self.expires_at}>"
