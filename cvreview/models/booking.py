"""MeetingBooking model: one applicant booked into one expert slot."""

from __future__ import annotations

import uuid
from datetime import date, datetime, time
from typing import TYPE_CHECKING

from sqlalchemy import CheckConstraint, Date, DateTime, ForeignKey, Index, String, Text, Time, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from cvreview.models.base import Base, TimestampMixin
from cvreview.models.enums import MeetingStatus

if TYPE_CHECKING:
    from cvreview.models.preference import AvailabilityPreference
    from cvreview.models.user import User

ACTIVE_SLOT_INDEX = "uq_meeting_bookings_active_slot"


class MeetingBooking(TimestampMixin, Base):
    """A scheduled, completed or cancelled meeting between an expert and an applicant.

    The partial unique index on (expert_id, meeting_date, start_time) among
    scheduled rows is what makes a slot exclusive: two concurrent inserts for
    the same slot cannot both commit. Cancelling a booking takes it out of the
    index and frees the slot.
    """

    __tablename__ = "meeting_bookings"
    __table_args__ = (
        Index(
            ACTIVE_SLOT_INDEX,
            "expert_id",
            "meeting_date",
            "start_time",
            unique=True,
            postgresql_where=text("status = 'scheduled'"),
        ),
        Index("ix_meeting_bookings_applicant_date", "applicant_id", "meeting_date"),
        CheckConstraint("start_time < end_time", name="time_order"),
        CheckConstraint(
            "status IN ('scheduled', 'completed', 'cancelled')",
            name="status_values",
        ),
        CheckConstraint(
            "(status = 'cancelled') = (cancelled_by IS NOT NULL AND cancellation_reason IS NOT NULL)",
            name="cancellation_metadata",
        ),
    )

    # Parties
    expert_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True
    )
    applicant_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True
    )
    preference_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("availability_preferences.id")
    )
    rescheduled_from_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("meeting_bookings.id")
    )

    # Slot occurrence
    meeting_date: Mapped[date] = mapped_column(Date, nullable=False)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)
    timezone: Mapped[str] = mapped_column(String(64), default="UTC", nullable=False)

    status: Mapped[str] = mapped_column(
        String(20), default=MeetingStatus.SCHEDULED.value, nullable=False, index=True
    )

    # Content
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    notes: Mapped[str | None] = mapped_column(Text)

    # Conferencing
    meeting_link: Mapped[str | None] = mapped_column(String(500))
    conferencing_provider: Mapped[str | None] = mapped_column(String(20))
    external_event_id: Mapped[str | None] = mapped_column(String(255), comment="Google Calendar event ID")

    # Cancellation
    cancelled_by: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id"))
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancellation_reason: Mapped[str | None] = mapped_column(String(500))

    # Relationships
    expert: Mapped[User] = relationship("User", foreign_keys=[expert_id])
    applicant: Mapped[User] = relationship("User", foreign_keys=[applicant_id])
    preference: Mapped[AvailabilityPreference | None] = relationship("AvailabilityPreference")

    def __repr__(self) -> str:
        return (
            f"<MeetingBooking id={self.id} status={self.status} "
            f"at={self.meeting_date} {self.start_time}>"
        )
