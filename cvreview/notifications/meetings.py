"""Meeting e-mail subscriber.

Listens for committed bookings, cancellations and reschedules and e-mails
both parties. Runs on the event worker in a session of its own, after the
request that changed the booking has already returned.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import date, time
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from cvreview.config import settings
from cvreview.db.engine import async_session_factory
from cvreview.events import emit
from cvreview.models.booking import MeetingBooking
from cvreview.models.user import User
from cvreview.notifications.email import EmailResult, EmailSender
from cvreview.notifications.templates import render
from cvreview.schemas.events import EventType, SystemEvent

logger = logging.getLogger(__name__)

NOTIFIED_EVENTS = [EventType.MEETING_BOOKED, EventType.MEETING_CANCELLED, EventType.MEETING_RESCHEDULED]


@dataclass(frozen=True)
class Email:
    to: str
    recipient_role: str
    subject: str
    html: str


def format_date(d: date) -> str:
    """`Monday, October 19, 2026`."""
    return f"{d:%A}, {d:%B} {d.day}, {d.year}"


def format_times(start: time, end: time, zone: str) -> str:
    return f"{start:%H:%M} - {end:%H:%M} {zone}"


def _meeting(booking: MeetingBooking) -> dict[str, Any]:
    return {
        "title": booking.title,
        "date": format_date(booking.meeting_date),
        "time": format_times(booking.start_time, booking.end_time, booking.timezone),
        "description": booking.description,
        "link": booking.meeting_link,
    }


def _person(user: User) -> dict[str, str]:
    return {"name": user.display_name, "email": user.email}


def invitation_emails(booking: MeetingBooking) -> list[Email]:
    expert, applicant = booking.expert, booking.applicant
    meeting = _meeting(booking)
    return [
        Email(
            to=expert.email,
            recipient_role="expert",
            subject=f"New CV Review Meeting - {meeting['date']}",
            html=render(
                "invitation_expert.html",
                heading="New CV Review Meeting Scheduled",
                accent="#2563eb",
                meeting=meeting,
                recipient=_person(expert),
                counterpart=_person(applicant),
                counterpart_label="Applicant",
            ),
        ),
        Email(
            to=applicant.email,
            recipient_role="applicant",
            subject=f"CV Review Meeting Confirmed - {meeting['date']}",
            html=render(
                "invitation_applicant.html",
                heading="CV Review Meeting Confirmed",
                accent="#059669",
                meeting=meeting,
                recipient=_person(applicant),
                counterpart=_person(expert),
                counterpart_label="Expert",
            ),
        ),
    ]


def cancellation_emails(booking: MeetingBooking, *, cancelled_by: str, reason: str | None) -> list[Email]:
    meeting = {**_meeting(booking), "link": None}
    subject = f"Meeting Cancelled - {meeting['date']}"
    return [
        Email(
            to=user.email,
            recipient_role=role,
            subject=subject,
            html=render(
                "cancellation.html",
                heading="Meeting Cancelled",
                accent="#dc2626",
                meeting=meeting,
                recipient=_person(user),
                counterpart=None,
                cancelled_by=cancelled_by,
                reason=reason,
            ),
        )
        for role, user in (("expert", booking.expert), ("applicant", booking.applicant))
    ]


def reschedule_emails(booking: MeetingBooking, previous: MeetingBooking | None) -> list[Email]:
    meeting = _meeting(booking)
    earlier = _meeting(previous) if previous is not None else None
    subject = f"CV Review Meeting Rescheduled - {meeting['date']}"
    emails = []
    for role, user, other, label in (
        ("expert", booking.expert, booking.applicant, "Applicant"),
        ("applicant", booking.applicant, booking.expert, "Expert"),
    ):
        emails.append(Email(
            to=user.email,
            recipient_role=role,
            subject=subject,
            html=render(
                "rescheduled.html",
                heading="CV Review Meeting Rescheduled",
                accent="#2563eb",
                meeting=meeting,
                previous=earlier,
                recipient=_person(user),
                counterpart=_person(other),
                counterpart_label=label,
            ),
        ))
    return emails


class MeetingNotifier:
    """Typed subscriber for NOTIFIED_EVENTS."""

    def __init__(
        self,
        sender: EmailSender | None = None,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
    ) -> None:
        self._sender = sender or EmailSender()
        self._session_factory = session_factory or async_session_factory

    async def on_event(self, event: SystemEvent) -> None:
        if not settings.notifications.meeting_emails_enabled or event.entity_id is None:
            return

        async with self._session_factory() as db:
            booking = await self._load_booking(db, event.entity_id)
            if booking is None:
                logger.warning("No booking %s to notify about (%s)", event.entity_id, event.event_type.value)
                return

            if event.event_type == EventType.MEETING_BOOKED:
                emails = invitation_emails(booking)
                kind = "invitation"
            elif event.event_type == EventType.MEETING_CANCELLED:
                emails = cancellation_emails(
                    booking,
                    cancelled_by=event.actor_role or "platform",
                    reason=event.data.get("reason"),
                )
                kind = "cancellation"
            elif event.event_type == EventType.MEETING_RESCHEDULED:
                previous_id = event.data.get("rescheduled_from")
                previous = await self._load_booking(db, uuid.UUID(previous_id)) if previous_id else None
                emails = reschedule_emails(booking, previous)
                kind = "reschedule"
            else:
                return

        for email in emails:
            result = await self._sender.send(email.to, email.subject, email.html)
            await self._record(booking.id, kind, email.recipient_role, result)

    async def _record(self, booking_id: uuid.UUID, kind: str, recipient_role: str, result: EmailResult) -> None:
        failed = not result.delivered and not result.simulated
        data: dict[str, Any] = {"kind": kind, "recipient_role": recipient_role, "simulated": result.simulated}
        if failed:
            data["error"] = result.error
        await emit(SystemEvent(
            event_type=EventType.NOTIFICATION_FAILED if failed else EventType.NOTIFICATION_SENT,
            entity_id=booking_id,
            data=data,
            source_module="notifications.meetings",
        ))

    async def _load_booking(self, db: AsyncSession, booking_id: uuid.UUID) -> MeetingBooking | None:
        result = await db.execute(
            select(MeetingBooking)
            .where(MeetingBooking.id == booking_id)
            .options(selectinload(MeetingBooking.expert), selectinload(MeetingBooking.applicant))
        )
        return result.scalar_one_or_none()


# Module-level singleton
meeting_notifier = MeetingNotifier()
