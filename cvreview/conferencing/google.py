"""Async httpx client for the Google Calendar REST API and OAuth token endpoint.

Only the three calls the bridge needs: create an event with a Meet
conference, delete an event, and refresh an access token.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

import httpx

from cvreview.config import settings
from cvreview.events import emit
from cvreview.schemas.events import EventType, SystemEvent

logger = logging.getLogger(__name__)


class GoogleCalendarError(Exception):
    """A Google API call failed or returned something unusable."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class CreatedEvent:
    event_id: str
    meet_link: str


@dataclass(frozen=True)
class RefreshedToken:
    access_token: str
    expires_in: int

    def expires_at(self, now: datetime) -> datetime:
        return now + timedelta(seconds=self.expires_in)


class GoogleCalendarClient:
    """Thin async wrapper around Calendar v3 and the OAuth token endpoint.

    Create: POST {api}/calendars/{calendarId}/events?conferenceDataVersion=1&sendUpdates=all
    Delete: DELETE {api}/calendars/{calendarId}/events/{eventId}
    Auth: Bearer access token
    """

    def __init__(self) -> None:
        self._api_url = settings.conferencing.google_calendar_api_url.rstrip("/")
        self._token_url = settings.conferencing.google_token_url
        self._client_id = settings.conferencing.google_client_id
        self._client_secret = settings.conferencing.google_client_secret
        self._timeout = httpx.Timeout(settings.conferencing.link_timeout, connect=5.0)

    @property
    def can_refresh(self) -> bool:
        return bool(self._client_id and self._client_secret)

    async def create_meet_event(
        self,
        access_token: str,
        *,
        calendar_id: str,
        request_id: str,
        summary: str,
        description: str | None,
        start: datetime,
        end: datetime,
        timezone: str,
        attendees: list[str],
    ) -> CreatedEvent:
        """Create a calendar event with a Meet conference and return its id and video link."""
        body: dict[str, Any] = {
            "summary": summary,
            "description": description or "",
            "start": {"dateTime": start.isoformat(), "timeZone": timezone},
            "end": {"dateTime": end.isoformat(), "timeZone": timezone},
            "attendees": [{"email": email} for email in attendees],
            "conferenceData": {
                "createRequest": {
                    "requestId": request_id,
                    "conferenceSolutionKey": {"type": "hangoutsMeet"},
                },
            },
            "reminders": {
                "useDefault": False,
                "overrides": [
                    {"method": "email", "minutes": 24 * 60},
                    {"method": "popup", "minutes": 15},
                ],
            },
        }
        payload = await self._request(
            "POST",
            f"{self._api_url}/calendars/{calendar_id}/events",
            access_token,
            operation="create_event",
            params={"conferenceDataVersion": 1, "sendUpdates": "all"},
            json=body,
        )

        event_id = payload.get("id")
        conference = payload.get("conferenceData")
        entry_points = conference.get("entryPoints") if isinstance(conference, dict) else None
        meet_link = next(
            (
                ep.get("uri")
                for ep in entry_points or []
                if isinstance(ep, dict) and ep.get("entryPointType") == "video"
            ),
            None,
        ) or payload.get("hangoutLink")
        if not event_id or not meet_link:
            raise GoogleCalendarError("Calendar event created without a Meet video entry point")

        logger.info("Google Calendar event created: %s", event_id)
        return CreatedEvent(event_id=event_id, meet_link=meet_link)

    async def delete_event(self, access_token: str, *, calendar_id: str, event_id: str) -> None:
        """Delete an event; an event that is already gone counts as deleted."""
        try:
            await self._request(
                "DELETE",
                f"{self._api_url}/calendars/{calendar_id}/events/{event_id}",
                access_token,
                operation="delete_event",
                params={"sendUpdates": "all"},
            )
        except GoogleCalendarError as exc:
            if exc.status_code in (404, 410):
                logger.info("Google Calendar event %s already deleted", event_id)
                return
            raise
        logger.info("Google Calendar event deleted: %s", event_id)

    async def refresh_access_token(self, refresh_token: str) -> RefreshedToken:
        """Exchange a refresh token for a new access token."""
        if not self.can_refresh:
            raise GoogleCalendarError("Google OAuth client is not configured")
        await self._record_call("refresh_token")
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(
                    self._token_url,
                    data={
                        "client_id": self._client_id,
                        "client_secret": self._client_secret,
                        "refresh_token": refresh_token,
                        "grant_type": "refresh_token",
                    },
                )
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            logger.warning("Google token refresh failed: HTTP %s", status)
            await self._record_response("refresh_token", error=f"http_{status}")
            raise GoogleCalendarError(f"Token refresh failed: HTTP {status}", status_code=status) from exc
        except httpx.HTTPError as exc:
            logger.warning("Google token refresh failed: %s", exc)
            await self._record_response("refresh_token", error=_transport_error(exc))
            raise GoogleCalendarError(f"Token refresh failed: {exc}") from exc

        tokens = await self._json_object(response, "refresh_token")
        access_token = tokens.get("access_token")
        if not access_token or not isinstance(access_token, str):
            raise GoogleCalendarError("No access token in refresh response")
        try:
            expires_in = int(tokens.get("expires_in", 3600))
        except (TypeError, ValueError):
            expires_in = 3600
        return RefreshedToken(access_token=access_token, expires_in=expires_in)

    async def _request(
        self,
        method: str,
        url: str,
        access_token: str,
        *,
        operation: str,
        **kwargs: Any,
    ) -> dict[str, Any]:
        """Authorized Calendar API call; every failure surfaces as GoogleCalendarError."""
        await self._record_call(operation)
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.request(
                    method,
                    url,
                    headers={"Authorization": f"Bearer {access_token}"},
                    **kwargs,
                )
                response.raise_for_status()
        except httpx.TimeoutException as exc:
            logger.warning("Google Calendar API timeout: %s %s", method, url)
            await self._record_response(operation, error="timeout")
            raise GoogleCalendarError("Google Calendar API timeout") from exc
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            logger.warning("Google Calendar API HTTP error %s: %s %s", status, method, url)
            await self._record_response(operation, error=f"http_{status}")
            raise GoogleCalendarError(f"Google Calendar API returned HTTP {status}", status_code=status) from exc
        except httpx.HTTPError as exc:
            logger.warning("Google Calendar API request failed: %s", exc)
            await self._record_response(operation, error=_transport_error(exc))
            raise GoogleCalendarError(f"Google Calendar API request failed: {exc}") from exc

        return await self._json_object(response, operation)

    async def _json_object(self, response: httpx.Response, operation: str) -> dict[str, Any]:
        """Decode a 2xx body as a JSON object. Empty bodies decode to {}."""
        if response.status_code == 204 or not response.content:
            await self._record_response(operation, status_code=response.status_code)
            return {}
        try:
            payload = response.json()
        except ValueError as exc:
            logger.warning("Google %s returned a non-JSON body (HTTP %s)", operation, response.status_code)
            await self._record_response(operation, error="invalid_json")
            raise GoogleCalendarError(f"Google {operation} returned a non-JSON body") from exc
        if not isinstance(payload, dict):
            logger.warning("Google %s returned JSON %s, expected an object", operation, type(payload).__name__)
            await self._record_response(operation, error="unexpected_json")
            raise GoogleCalendarError(f"Google {operation} returned JSON that is not an object")
        await self._record_response(operation, status_code=response.status_code)
        return payload

    @staticmethod
    async def _record_call(operation: str) -> None:
        await emit(SystemEvent(
            event_type=EventType.EXTERNAL_API_CALL,
            data={"integration": "google_calendar", "operation": operation},
            source_module="conferencing.google",
        ))

    @staticmethod
    async def _record_response(
        operation: str,
        *,
        status_code: int | None = None,
        error: str | None = None,
    ) -> None:
        data: dict[str, Any] = {"integration": "google_calendar", "operation": operation}
        if error is not None:
            data["error"] = error
        else:
            data["status_code"] = status_code
        await emit(SystemEvent(
            event_type=EventType.EXTERNAL_API_RESPONSE,
            data=data,
            source_module="conferencing.google",
        ))


def _transport_error(exc: httpx.HTTPError) -> str:
    return "timeout" if isinstance(exc, httpx.TimeoutException) else "transport"


# Module-level singleton
google_calendar_client = GoogleCalendarClient()
