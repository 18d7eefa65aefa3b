"""User model: applicants and experts, owned by the authentication service.

This subsystem only reads users: for foreign keys, display names and
calendar-credential lookup.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from cvreview.models.base import Base, TimestampMixin
from cvreview.models.enums import ActorRole

if TYPE_CHECKING:
    from cvreview.models.calendar_credential import CalendarCredential


class User(TimestampMixin, Base):
    """An applicant or an expert on the marketplace."""

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    first_name: Mapped[str | None] = mapped_column(String(100))
    last_name: Mapped[str | None] = mapped_column(String(100))
    role: Mapped[str] = mapped_column(String(20), default=ActorRole.APPLICANT.value, nullable=False, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    calendar_credential: Mapped[CalendarCredential | None] = relationship(
        "CalendarCredential", back_populates="user", uselist=False
    )

    @property
    def display_name(self) -> str:
        """First and last name, falling back to the email address."""
        name = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return name or self.email

    def __repr__(self) -> str:
        return f"<User id={self.id} role={self.role}>"
