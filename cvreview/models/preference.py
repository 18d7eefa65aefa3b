"""AvailabilityPreference model: an expert's recurring weekly availability rule."""

from __future__ import annotations

import uuid
from datetime import time
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Index, Integer, String, Time, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from cvreview.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from cvreview.models.user import User

ACTIVE_DAY_INDEX = "uq_availability_preferences_active_day"


class AvailabilityPreference(TimestampMixin, Base):
    """Weekly rule: on `day_of_week`, the expert takes meetings between
    `start_time` and `end_time`, in slots of `slot_duration` minutes separated
    by `buffer_time` minutes.

    `day_of_week` counts from Sunday (0) to Saturday (6).
    """

    __tablename__ = "availability_preferences"
    __table_args__ = (
        # One active rule per expert and weekday; deactivated rows are history.
        Index(
            ACTIVE_DAY_INDEX,
            "expert_id",
            "day_of_week",
            unique=True,
            postgresql_where=text("is_active"),
        ),
        CheckConstraint("day_of_week BETWEEN 0 AND 6", name="day_of_week_range"),
        CheckConstraint("start_time < end_time", name="window_order"),
        CheckConstraint("slot_duration > 0", name="slot_duration_positive"),
        CheckConstraint("buffer_time >= 0", name="buffer_time_non_negative"),
    )

    expert_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True
    )

    # Weekly window
    day_of_week: Mapped[int] = mapped_column(Integer, nullable=False)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)
    timezone: Mapped[str] = mapped_column(String(64), default="UTC", nullable=False)

    # Slot shape (minutes)
    slot_duration: Mapped[int] = mapped_column(Integer, default=60, nullable=False)
    buffer_time: Mapped[int] = mapped_column(Integer, default=15, nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    expert: Mapped[User] = relationship("User")

    def __repr__(self) -> str:
        return (
            f"<AvailabilityPreference expert={self.expert_id} day={self.day_of_week} "
            f"{self.start_time}-{self.end_time} active={self.is_active}>"
        )
