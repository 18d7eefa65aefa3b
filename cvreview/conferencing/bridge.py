"""Conferencing bridge: gives every new booking a usable join link.

With a usable calendar credential the bridge creates a Google Calendar event
with a Meet conference. Without one, or when Google fails, misbehaves or
exceeds the configured timeout, it returns a Jitsi room instead. Callers
treat both outcomes the same way.

Calendar events follow the booking transaction. An event created for a
booking whose transaction then rolls back is deleted again, and the event
behind a cancelled or rescheduled booking is only deleted once that change
has committed (see `release_on_event`).
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from functools import partial

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cvreview.config import settings
from cvreview.conferencing.credentials import CredentialResolver, ResolvedCredential, credential_resolver
from cvreview.conferencing.google import GoogleCalendarClient, GoogleCalendarError, google_calendar_client
from cvreview.conferencing.jitsi import jitsi_room_link
from cvreview.db.engine import after_rollback, async_session_factory
from cvreview.events import emit
from cvreview.models.booking import MeetingBooking
from cvreview.models.enums import ConferencingProvider
from cvreview.models.user import User
from cvreview.scheduling.clock import Clock, SystemClock, business_zone
from cvreview.schemas.events import EventType, SystemEvent
from cvreview.schemas.scheduling import ConferencingStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MeetingLink:
    url: str
    provider: ConferencingProvider
    external_event_id: str | None = None


class ConferencingBridge:
    def __init__(
        self,
        resolver: CredentialResolver | None = None,
        client: GoogleCalendarClient | None = None,
        clock: Clock | None = None,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
    ) -> None:
        self._resolver = resolver or credential_resolver
        self._client = client or google_calendar_client
        self._clock = clock or SystemClock()
        self._session_factory = session_factory or async_session_factory

    async def obtain_meeting_link(self, db: AsyncSession, booking: MeetingBooking) -> MeetingLink:
        """Return a Meet link for `booking` when possible, otherwise a Jitsi room.

        Nothing that goes wrong on the Google side escapes: the booking still
        gets a link. A Meet event created here is deleted again if the
        transaction on `db` rolls back.
        """
        reason = "no_credential"
        credential = await self._resolver.resolve(db, booking.expert_id)

        if credential is not None:
            attendees = await self._load_attendee_emails(db, booking)
            zone = business_zone()
            try:
                created = await asyncio.wait_for(
                    self._client.create_meet_event(
                        credential.access_token,
                        calendar_id=credential.calendar_id,
                        request_id=f"cv-review-{booking.id}",
                        summary=booking.title,
                        description=booking.description,
                        start=datetime.combine(booking.meeting_date, booking.start_time, tzinfo=zone),
                        end=datetime.combine(booking.meeting_date, booking.end_time, tzinfo=zone),
                        timezone=zone.key,
                        attendees=attendees,
                    ),
                    timeout=settings.conferencing.link_timeout,
                )
            except TimeoutError:
                logger.warning("Google Meet link for booking %s timed out", booking.id)
                reason = "timeout"
            except GoogleCalendarError as exc:
                logger.warning("Google Meet link for booking %s failed: %s", booking.id, exc)
                reason = "google_error"
            except Exception:
                logger.exception("Unexpected failure creating a Google Meet link for booking %s", booking.id)
                reason = "unexpected_error"
            else:
                after_rollback(db, partial(self._discard_event, credential, created.event_id, booking.id))
                await emit(SystemEvent(
                    event_type=EventType.CONFERENCING_LINK_CREATED,
                    entity_id=booking.id,
                    data={
                        "provider": ConferencingProvider.GOOGLE_MEET.value,
                        "event_id": created.event_id,
                        "shared_credential": credential.shared,
                    },
                    source_module="conferencing.bridge",
                ))
                return MeetingLink(
                    url=created.meet_link,
                    provider=ConferencingProvider.GOOGLE_MEET,
                    external_event_id=created.event_id,
                )

        link = MeetingLink(url=jitsi_room_link(self._clock.now()), provider=ConferencingProvider.JITSI)
        await emit(SystemEvent(
            event_type=EventType.CONFERENCING_FALLBACK,
            entity_id=booking.id,
            data={"provider": ConferencingProvider.JITSI.value, "reason": reason},
            source_module="conferencing.bridge",
        ))
        logger.info("Jitsi room assigned to booking %s (%s)", booking.id, reason)
        return link

    async def release_on_event(self, event: SystemEvent) -> None:
        """Subscriber for committed cancellations and reschedules.

        Deletes the Google Calendar event of the booking that was cancelled
        (or replaced by a reschedule), in a session of its own. Jitsi
        bookings have nothing to release.
        """
        if event.data.get("conferencing_provider") != ConferencingProvider.GOOGLE_MEET.value:
            return
        event_id = event.data.get("external_event_id")
        expert_id = event.data.get("expert_id")
        if not event_id or not expert_id:
            return

        released_booking = event.data.get("rescheduled_from") or event.entity_id
        async with self._session_factory() as db:
            await self.release_calendar_event(
                db,
                expert_id=uuid.UUID(str(expert_id)),
                event_id=event_id,
                booking_id=uuid.UUID(str(released_booking)) if released_booking else None,
            )
            # A refreshed access token is stored back on the credential.
            await db.commit()

    async def release_calendar_event(
        self,
        db: AsyncSession,
        *,
        expert_id: uuid.UUID,
        event_id: str,
        booking_id: uuid.UUID | None = None,
    ) -> bool:
        """Delete `event_id` from the calendar backing `expert_id`'s meetings. False on any failure."""
        credential = await self._resolver.resolve(db, expert_id)
        if credential is None:
            logger.info("No calendar credential to release event %s", event_id)
            return False
        return await self._delete(credential, event_id, booking_id, reason="cancelled")

    async def connection_status(self, db: AsyncSession, user_id: uuid.UUID) -> ConferencingStatus:
        return await self._resolver.connection_status(db, user_id)

    async def _discard_event(self, credential: ResolvedCredential, event_id: str, booking_id: uuid.UUID) -> None:
        """Rollback hook: the booking never persisted, so neither should its calendar event."""
        if not await self._delete(credential, event_id, booking_id, reason="rolled_back"):
            logger.error("Calendar event %s of rolled-back booking %s could not be deleted", event_id, booking_id)

    async def _delete(
        self,
        credential: ResolvedCredential,
        event_id: str,
        booking_id: uuid.UUID | None,
        *,
        reason: str,
    ) -> bool:
        try:
            await asyncio.wait_for(
                self._client.delete_event(
                    credential.access_token,
                    calendar_id=credential.calendar_id,
                    event_id=event_id,
                ),
                timeout=settings.conferencing.link_timeout,
            )
        except (TimeoutError, GoogleCalendarError) as exc:
            logger.warning("Could not release calendar event %s: %s", event_id, exc)
            return False

        await emit(SystemEvent(
            event_type=EventType.CONFERENCING_EVENT_RELEASED,
            entity_id=booking_id,
            data={"event_id": event_id, "reason": reason},
            source_module="conferencing.bridge",
        ))
        return True

    async def _load_attendee_emails(self, db: AsyncSession, booking: MeetingBooking) -> list[str]:
        result = await db.execute(
            select(User.email).where(User.id.in_([booking.expert_id, booking.applicant_id]))
        )
        return [email for email in result.scalars().all() if email]


# Module-level singleton
conferencing_bridge = ConferencingBridge()
