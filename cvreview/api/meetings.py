"""Meeting routes: booking, lifecycle transitions and role-scoped listing."""

# ruff: noqa: B008

from __future__ import annotations

import uuid
from datetime import datetime

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from cvreview.api.auth import get_actor
from cvreview.config import settings
from cvreview.db.engine import get_session
from cvreview.models.booking import MeetingBooking
from cvreview.scheduling.allocator import booking_allocator
from cvreview.scheduling.errors import RateLimitedError
from cvreview.scheduling.lifecycle import meeting_lifecycle
from cvreview.scheduling.policy import Actor
from cvreview.schemas.scheduling import (
    BookingCreate,
    BookingOut,
    BookingPage,
    CancelRequest,
    CompleteRequest,
    NotesRequest,
    RescheduleRequest,
)
from cvreview.security.rate_limiter import rate_limiter

router = APIRouter(prefix="/meetings", tags=["meetings"])


def _with_parties(booking: MeetingBooking, now_local: datetime) -> BookingOut:
    """Serialize a booking whose expert and applicant were eagerly loaded."""
    return BookingOut.from_booking(
        booking,
        now_local,
        expert_name=booking.expert.display_name if booking.expert else None,
        applicant_name=booking.applicant.display_name if booking.applicant else None,
    )


@router.post("", response_model=BookingOut, status_code=status.HTTP_201_CREATED)
async def book_meeting(
    body: BookingCreate,
    db: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_actor),
) -> BookingOut:
    allowed, retry_after = await rate_limiter.check(
        f"rate:{actor.id}:booking",
        limit=settings.scheduling.booking_rate_limit,
        window=settings.scheduling.booking_rate_window,
    )
    if not allowed:
        raise RateLimitedError("Too many booking attempts, please wait", retry_after=retry_after)

    booking = await booking_allocator.create_booking(
        db,
        actor,
        expert_id=body.expert_id,
        meeting_date=body.date,
        start_time=body.start_time,
        end_time=body.end_time,
        title=body.title,
        description=body.description,
    )
    return BookingOut.from_booking(booking, meeting_lifecycle.now_local())


@router.post("/cancel", response_model=BookingOut)
async def cancel_meeting(
    body: CancelRequest,
    db: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_actor),
) -> BookingOut:
    booking = await meeting_lifecycle.cancel(db, body.meeting_id, actor, body.cancellation_reason)
    return BookingOut.from_booking(booking, meeting_lifecycle.now_local())


@router.post("/complete", response_model=BookingOut)
async def complete_meeting(
    body: CompleteRequest,
    db: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_actor),
) -> BookingOut:
    booking = await meeting_lifecycle.complete(db, body.meeting_id, actor)
    return BookingOut.from_booking(booking, meeting_lifecycle.now_local())


@router.post("/notes", response_model=BookingOut)
async def update_notes(
    body: NotesRequest,
    db: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_actor),
) -> BookingOut:
    booking = await meeting_lifecycle.annotate(db, body.meeting_id, actor, body.notes)
    return BookingOut.from_booking(booking, meeting_lifecycle.now_local())


@router.post("/reschedule", response_model=BookingOut, status_code=status.HTTP_201_CREATED)
async def reschedule_meeting(
    body: RescheduleRequest,
    db: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_actor),
) -> BookingOut:
    booking = await meeting_lifecycle.reschedule(
        db,
        body.meeting_id,
        actor,
        meeting_date=body.date,
        start_time=body.start_time,
        end_time=body.end_time,
    )
    return BookingOut.from_booking(booking, meeting_lifecycle.now_local())


@router.get("", response_model=BookingPage)
async def list_meetings(
    status_filter: str | None = Query(default=None, alias="status"),
    limit: int = Query(default=50),
    offset: int = Query(default=0),
    db: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_actor),
) -> BookingPage:
    """The caller's meetings, newest first."""
    bookings, total = await meeting_lifecycle.list_meetings(
        db, actor, status=status_filter, limit=limit, offset=offset
    )
    now_local = meeting_lifecycle.now_local()
    return BookingPage(
        meetings=[_with_parties(b, now_local) for b in bookings],
        total=total,
        limit=limit,
        offset=offset,
        has_more=offset + len(bookings) < total,
    )


@router.get("/{meeting_id}", response_model=BookingOut)
async def get_meeting(
    meeting_id: uuid.UUID,
    db: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_actor),
) -> BookingOut:
    booking = await meeting_lifecycle.get_meeting(db, meeting_id, actor)
    return _with_parties(booking, meeting_lifecycle.now_local())
