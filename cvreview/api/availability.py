"""Availability routes: free slot listing and the expert's weekly preferences."""

# ruff: noqa: B008

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from cvreview.api.auth import get_actor
from cvreview.db.engine import get_session
from cvreview.scheduling.policy import Actor, Operation, authorize
from cvreview.scheduling.preferences import preference_store
from cvreview.scheduling.slots import parse_date_range, slot_generator
from cvreview.schemas.scheduling import (
    DeleteResult,
    PreferenceCreate,
    PreferenceList,
    PreferenceOut,
    PreferenceUpdate,
    SlotList,
)

router = APIRouter(tags=["availability"])


@router.get("/availability", response_model=SlotList)
async def list_availability(
    expert_id: uuid.UUID | None = Query(default=None, alias="expertId"),
    date_range: str | None = Query(default=None, alias="dateRange"),
    db: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_actor),
) -> SlotList:
    """Free slots in the range, for one expert or all of them."""
    date_from, date_to = parse_date_range(date_range, slot_generator.today())
    slots = await slot_generator.list_available_slots(db, date_from, date_to, expert_id=expert_id)
    return SlotList(slots=slots, total=len(slots), date_from=date_from, date_to=date_to)


@router.get("/availability-preferences", response_model=PreferenceList)
async def list_preferences(
    include_inactive: bool = Query(default=False, alias="includeInactive"),
    db: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_actor),
) -> PreferenceList:
    """The expert's weekly rules; deactivated ones only with includeInactive=true."""
    authorize(actor, Operation.MANAGE_PREFERENCES, expert_id=actor.id)
    preferences = await preference_store.list_preferences(db, actor.id, include_inactive=include_inactive)
    return PreferenceList(preferences=[PreferenceOut.model_validate(p) for p in preferences])


@router.post("/availability-preferences", response_model=PreferenceOut, status_code=status.HTTP_201_CREATED)
async def create_preference(
    body: PreferenceCreate,
    db: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_actor),
) -> PreferenceOut:
    preference = await preference_store.upsert_preference(
        db,
        actor,
        day_of_week=body.day_of_week,
        start_time=body.start_time,
        end_time=body.end_time,
        timezone=body.timezone,
        slot_duration=body.slot_duration,
        buffer_time=body.buffer_time,
    )
    return PreferenceOut.model_validate(preference)


@router.put("/availability-preferences", response_model=PreferenceOut)
async def update_preference(
    body: PreferenceUpdate,
    db: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_actor),
) -> PreferenceOut:
    preference = await preference_store.upsert_preference(
        db,
        actor,
        preference_id=body.id,
        day_of_week=body.day_of_week,
        start_time=body.start_time,
        end_time=body.end_time,
        timezone=body.timezone,
        slot_duration=body.slot_duration,
        buffer_time=body.buffer_time,
    )
    return PreferenceOut.model_validate(preference)


@router.delete("/availability-preferences", response_model=DeleteResult)
async def delete_preference(
    preference_id: uuid.UUID = Query(alias="id"),
    db: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_actor),
) -> DeleteResult:
    """Deactivate a preference. Existing bookings keep referencing it."""
    await preference_store.deactivate_preference(db, actor, preference_id)
    return DeleteResult(success=True)
