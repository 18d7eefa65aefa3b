"""AuditLog model: append-only trail of every scheduling event.

Each emitted SystemEvent (booking made, meeting cancelled, link fallback, ...)
is persisted here by the audit subscriber. Rows are never updated or deleted.
"""

from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import String
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from cvreview.models.base import Base, TimestampMixin


class AuditLog(TimestampMixin, Base):
    """Audit trail entry for one SystemEvent."""

    __tablename__ = "audit_log"

    event_type: Mapped[str] = mapped_column(String(100), nullable=False, index=True)

    # Booking or preference the event is about, when there is one
    entity_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), index=True)
    actor_id: Mapped[str | None] = mapped_column(String(100), comment="User ID or 'system'")
    actor_role: Mapped[str | None] = mapped_column(String(50), comment="applicant, expert, system")

    data: Mapped[dict[str, Any] | None] = mapped_column(JSONB)

    def __repr__(self) -> str:
        return f"<AuditLog event={self.event_type} entity={self.entity_id}>"
