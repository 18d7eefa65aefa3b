"""Conferencing status route."""

# ruff: noqa: B008

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from cvreview.api.auth import get_actor
from cvreview.conferencing.bridge import conferencing_bridge
from cvreview.db.engine import get_session
from cvreview.scheduling.policy import Actor
from cvreview.schemas.scheduling import ConferencingStatus

router = APIRouter(prefix="/conferencing", tags=["conferencing"])


@router.get("/status", response_model=ConferencingStatus)
async def conferencing_status(
    db: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_actor),
) -> ConferencingStatus:
    """Whether the caller's (or a shared) Google calendar can host Meet links."""
    return await conferencing_bridge.connection_status(db, actor.id)
