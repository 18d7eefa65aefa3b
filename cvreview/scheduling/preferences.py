"""Availability preference store: an expert's recurring weekly rules.

Preferences are soft-deleted (`is_active = False`) so bookings that reference
them keep their history. At most one active preference exists per expert and
weekday; the partial unique index enforces it and the violation surfaces as
ConflictError.
"""

from __future__ import annotations

import logging
import uuid
from datetime import time
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from cvreview.config import settings
from cvreview.events import emit_on_commit
from cvreview.models.base import constraint_name
from cvreview.models.preference import ACTIVE_DAY_INDEX, AvailabilityPreference
from cvreview.scheduling.errors import ConflictError, DependencyError, NotFoundError, ValidationError
from cvreview.scheduling.policy import Actor, Operation, authorize
from cvreview.schemas.events import EventType, SystemEvent

logger = logging.getLogger(__name__)

_DAY_NAMES = ("Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday")


def validate_window(
    day_of_week: int,
    start_time: time,
    end_time: time,
    slot_duration: int,
    buffer_time: int,
) -> None:
    """Raise ValidationError if the rule cannot describe a weekly window."""
    errors: dict[str, str] = {}
    if not 0 <= day_of_week <= 6:
        errors["dayOfWeek"] = "must be between 0 (Sunday) and 6 (Saturday)"
    if start_time >= end_time:
        errors["endTime"] = "must be after startTime"
    if slot_duration <= 0:
        errors["slotDuration"] = "must be a positive number of minutes"
    if buffer_time < 0:
        errors["bufferTime"] = "cannot be negative"
    if errors:
        raise ValidationError("Invalid availability preference", details=errors)


class PreferenceStore:
    """CRUD over availability preferences, scoped to the owning expert."""

    async def upsert_preference(
        self,
        db: AsyncSession,
        actor: Actor,
        *,
        day_of_week: int | None = None,
        start_time: time | None = None,
        end_time: time | None = None,
        timezone: str | None = None,
        slot_duration: int | None = None,
        buffer_time: int | None = None,
        preference_id: uuid.UUID | None = None,
    ) -> AvailabilityPreference:
        """Create a preference, or update the actor's preference `preference_id`.

        On create, `day_of_week`, `start_time` and `end_time` are required and
        the remaining fields fall back to configured defaults. On update, only
        the fields passed change.
        """
        authorize(actor, Operation.MANAGE_PREFERENCES, expert_id=actor.id)

        if preference_id is None:
            if day_of_week is None or start_time is None or end_time is None:
                raise ValidationError(
                    "dayOfWeek, startTime and endTime are required",
                    details={"required": ["dayOfWeek", "startTime", "endTime"]},
                )
            preference = AvailabilityPreference(
                expert_id=actor.id,
                day_of_week=day_of_week,
                start_time=start_time,
                end_time=end_time,
                timezone=timezone or settings.scheduling.default_timezone_label,
                slot_duration=settings.scheduling.default_slot_duration if slot_duration is None else slot_duration,
                buffer_time=settings.scheduling.default_buffer_time if buffer_time is None else buffer_time,
                is_active=True,
            )
            event_type = EventType.PREFERENCE_CREATED
        else:
            preference = await self._get_owned(db, actor.id, preference_id)
            changes: dict[str, Any] = {
                "day_of_week": day_of_week,
                "start_time": start_time,
                "end_time": end_time,
                "timezone": timezone,
                "slot_duration": slot_duration,
                "buffer_time": buffer_time,
            }
            # Validate the merged rule before mutating the tracked instance.
            merged = {k: v if v is not None else getattr(preference, k) for k, v in changes.items()}
            validate_window(
                merged["day_of_week"],
                merged["start_time"],
                merged["end_time"],
                merged["slot_duration"],
                merged["buffer_time"],
            )
            for field, value in merged.items():
                setattr(preference, field, value)
            event_type = EventType.PREFERENCE_UPDATED

        if preference_id is None:
            validate_window(
                preference.day_of_week,
                preference.start_time,
                preference.end_time,
                preference.slot_duration,
                preference.buffer_time,
            )
            db.add(preference)
        await self._flush(db, preference.day_of_week)

        emit_on_commit(db, SystemEvent(
            event_type=event_type,
            entity_id=preference.id,
            actor_id=str(actor.id),
            actor_role=actor.role.value,
            data={
                "day_of_week": preference.day_of_week,
                "start_time": preference.start_time.isoformat(),
                "end_time": preference.end_time.isoformat(),
                "slot_duration": preference.slot_duration,
                "buffer_time": preference.buffer_time,
            },
            source_module="scheduling.preferences",
        ))

        logger.info(
            "Preference %s: id=%s expert=%s day=%s %s-%s",
            "created" if event_type == EventType.PREFERENCE_CREATED else "updated",
            preference.id,
            actor.id,
            preference.day_of_week,
            preference.start_time,
            preference.end_time,
        )
        return preference

    async def list_preferences(
        self,
        db: AsyncSession,
        expert_id: uuid.UUID,
        *,
        include_inactive: bool = False,
    ) -> list[AvailabilityPreference]:
        """Return the expert's preferences ordered by weekday, then start time."""
        stmt = select(AvailabilityPreference).where(AvailabilityPreference.expert_id == expert_id)
        if not include_inactive:
            stmt = stmt.where(AvailabilityPreference.is_active.is_(True))
        result = await db.execute(
            stmt.order_by(AvailabilityPreference.day_of_week, AvailabilityPreference.start_time)
        )
        return list(result.scalars().all())

    async def deactivate_preference(
        self,
        db: AsyncSession,
        actor: Actor,
        preference_id: uuid.UUID,
    ) -> None:
        """Soft-delete one of the actor's preferences. Existing bookings are untouched."""
        authorize(actor, Operation.MANAGE_PREFERENCES, expert_id=actor.id)
        preference = await self._get_owned(db, actor.id, preference_id)
        if not preference.is_active:
            return

        preference.is_active = False
        await self._flush(db, preference.day_of_week)

        emit_on_commit(db, SystemEvent(
            event_type=EventType.PREFERENCE_DEACTIVATED,
            entity_id=preference.id,
            actor_id=str(actor.id),
            actor_role=actor.role.value,
            data={"day_of_week": preference.day_of_week},
            source_module="scheduling.preferences",
        ))
        logger.info("Preference deactivated: id=%s expert=%s", preference.id, actor.id)

    async def _get_owned(
        self,
        db: AsyncSession,
        expert_id: uuid.UUID,
        preference_id: uuid.UUID,
    ) -> AvailabilityPreference:
        """Load a preference owned by `expert_id`; anything else is reported as missing."""
        result = await db.execute(
            select(AvailabilityPreference).where(
                AvailabilityPreference.id == preference_id,
                AvailabilityPreference.expert_id == expert_id,
            )
        )
        preference = result.scalar_one_or_none()
        if preference is None:
            raise NotFoundError(
                "Availability preference not found",
                details={"id": str(preference_id)},
            )
        return preference

    @staticmethod
    async def _flush(db: AsyncSession, day_of_week: int) -> None:
        try:
            await db.flush()
        except IntegrityError as exc:
            name = constraint_name(exc)
            if ACTIVE_DAY_INDEX in name:
                day = _DAY_NAMES[day_of_week] if 0 <= day_of_week <= 6 else str(day_of_week)
                raise ConflictError(
                    f"An active availability preference already exists for {day}",
                    details={"dayOfWeek": day_of_week},
                ) from exc
            if name.startswith("ck_availability_preferences"):
                raise ValidationError("Invalid availability preference", details={"constraint": name}) from exc
            logger.exception("Unexpected integrity error saving preference")
            raise DependencyError("Could not save availability preference") from exc


# Module-level singleton
preference_store = PreferenceStore()
