"""Calendar credential resolution.

Finds an access token that can create a Meet event for an expert's booking.
Under the `user_only` policy only the expert's own credential counts. Under
`system_fallback` any expert's usable credential may back the meeting, most
recently updated first: one expert's calendar then hosts events for another
expert's bookings.

Access tokens expiring within five minutes are refreshed through the OAuth
token endpoint and stored back encrypted.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import timedelta

from cryptography.exceptions import InvalidTag
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cvreview.config import settings
from cvreview.conferencing.google import GoogleCalendarClient, GoogleCalendarError, google_calendar_client
from cvreview.models.calendar_credential import CalendarCredential
from cvreview.models.enums import ActorRole, ConferencingProvider, CredentialPolicy
from cvreview.models.user import User
from cvreview.scheduling.clock import Clock, SystemClock
from cvreview.schemas.scheduling import ConferencingStatus
from cvreview.security.encryption import TokenEncryptor, token_encryptor

logger = logging.getLogger(__name__)

_REFRESH_MARGIN = timedelta(minutes=5)
_SYSTEM_CANDIDATES = 5


@dataclass(frozen=True)
class ResolvedCredential:
    owner_id: uuid.UUID
    access_token: str
    calendar_id: str
    shared: bool  # owned by someone other than the booking's expert


class CredentialResolver:
    def __init__(
        self,
        client: GoogleCalendarClient | None = None,
        encryptor: TokenEncryptor | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._client = client or google_calendar_client
        self._encryptor = encryptor or token_encryptor
        self._clock = clock or SystemClock()

    @property
    def policy(self) -> CredentialPolicy:
        return CredentialPolicy(settings.conferencing.credential_policy)

    async def resolve(self, db: AsyncSession, expert_id: uuid.UUID) -> ResolvedCredential | None:
        """Return a usable credential for `expert_id`'s meetings, or None."""
        own = await self._load_user_credential(db, expert_id)
        if own is not None:
            resolved = await self._usable(own, shared=False)
            if resolved is not None:
                return resolved

        if self.policy is not CredentialPolicy.SYSTEM_FALLBACK:
            return None

        for credential in await self._load_system_credentials(db, exclude=expert_id):
            resolved = await self._usable(credential, shared=True)
            if resolved is not None:
                logger.info(
                    "Using shared calendar credential of user %s for expert %s",
                    credential.user_id,
                    expert_id,
                )
                return resolved
        return None

    async def connection_status(self, db: AsyncSession, user_id: uuid.UUID) -> ConferencingStatus:
        """Report whether Meet links are available, without calling Google."""
        own = await self._load_user_credential(db, user_id)
        user_connected = own is not None and self._looks_valid(own)

        system = await self._load_system_credentials(db, exclude=None)
        system_connected = any(self._looks_valid(c) for c in system)

        meet_available = user_connected or (
            system_connected and self.policy is CredentialPolicy.SYSTEM_FALLBACK
        )
        return ConferencingStatus(
            user_connected=user_connected,
            system_connected=system_connected,
            policy=self.policy.value,
            provider=(ConferencingProvider.GOOGLE_MEET if meet_available else ConferencingProvider.JITSI).value,
            google_email=own.google_email if own is not None else None,
            expires_at=own.expires_at if own is not None else None,
        )

    async def _usable(self, credential: CalendarCredential, *, shared: bool) -> ResolvedCredential | None:
        """Decrypt the access token, refreshing it first when it is about to expire."""
        try:
            if self._needs_refresh(credential):
                access_token = await self._refresh(credential)
                if access_token is None:
                    return None
            else:
                access_token = self._encryptor.decrypt(credential.access_token_encrypted)
        except (InvalidTag, ValueError):
            logger.warning("Calendar credential of user %s cannot be decrypted", credential.user_id)
            return None

        return ResolvedCredential(
            owner_id=credential.user_id,
            access_token=access_token,
            calendar_id=credential.calendar_id or settings.conferencing.google_calendar_id,
            shared=shared,
        )

    def _needs_refresh(self, credential: CalendarCredential) -> bool:
        if credential.expires_at is None:
            return False
        return credential.expires_at <= self._clock.now() + _REFRESH_MARGIN

    def _looks_valid(self, credential: CalendarCredential) -> bool:
        """Not expired, or expired but refreshable."""
        if not self._needs_refresh(credential):
            return True
        return bool(credential.refresh_token_encrypted) and self._client.can_refresh

    async def _refresh(self, credential: CalendarCredential) -> str | None:
        if not credential.refresh_token_encrypted:
            logger.info("Calendar credential of user %s expired with no refresh token", credential.user_id)
            return None
        refresh_token = self._encryptor.decrypt(credential.refresh_token_encrypted)
        try:
            refreshed = await self._client.refresh_access_token(refresh_token)
        except GoogleCalendarError:
            logger.warning("Could not refresh calendar credential of user %s", credential.user_id)
            return None

        credential.access_token_encrypted = self._encryptor.encrypt(refreshed.access_token)
        credential.expires_at = refreshed.expires_at(self._clock.now())
        logger.info("Calendar credential of user %s refreshed", credential.user_id)
        return refreshed.access_token

    async def _load_user_credential(self, db: AsyncSession, user_id: uuid.UUID) -> CalendarCredential | None:
        result = await db.execute(select(CalendarCredential).where(CalendarCredential.user_id == user_id))
        return result.scalar_one_or_none()

    async def _load_system_credentials(
        self,
        db: AsyncSession,
        exclude: uuid.UUID | None,
    ) -> list[CalendarCredential]:
        """Credentials of active experts, most recently updated first."""
        stmt = (
            select(CalendarCredential)
            .join(User, User.id == CalendarCredential.user_id)
            .where(User.role == ActorRole.EXPERT.value, User.is_active.is_(True))
            .order_by(CalendarCredential.updated_at.desc())
            .limit(_SYSTEM_CANDIDATES)
        )
        if exclude is not None:
            stmt = stmt.where(CalendarCredential.user_id != exclude)
        result = await db.execute(stmt)
        return list(result.scalars().all())


# Module-level singleton
credential_resolver = CredentialResolver()
