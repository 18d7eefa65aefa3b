"""Audit log subscriber: persists every SystemEvent to the audit_log table.

Registered as a global subscriber at startup. Failures are logged and never
propagate: a lost audit row must not fail a booking.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError

from cvreview.db.engine import async_session_factory
from cvreview.models.audit import AuditLog
from cvreview.schemas.events import SystemEvent

logger = logging.getLogger(__name__)


async def audit_on_event(event: SystemEvent) -> None:
    """Write a SystemEvent to the audit_log table in its own transaction."""
    try:
        async with async_session_factory() as db:
            db.add(AuditLog(
                event_type=event.event_type.value,
                entity_id=event.entity_id,
                actor_id=event.actor_id,
                actor_role=event.actor_role,
                data={**event.data, "source_module": event.source_module},
            ))
            await db.commit()
    except SQLAlchemyError:
        logger.exception(
            "Failed to persist audit event: %s (entity=%s)",
            event.event_type.value,
            event.entity_id,
        )
