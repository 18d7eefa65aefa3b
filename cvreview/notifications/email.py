"""Resend e-mail sender.

Without a RESEND_API_KEY nothing is sent: the message is logged and reported
as simulated, so development and test environments never reach Resend.
Delivery problems are returned, not raised. A meeting never fails because
an e-mail did.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

import resend

from cvreview.config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EmailResult:
    delivered: bool
    simulated: bool = False
    message_id: str | None = None
    error: str | None = None


class EmailSender:
    def __init__(self, api_key: str | None = None, from_email: str | None = None) -> None:
        self._api_key = settings.notifications.resend_api_key if api_key is None else api_key
        self._from_email = from_email or settings.notifications.from_email

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    async def send(self, to: str, subject: str, html: str) -> EmailResult:
        """Send one HTML e-mail to `to`."""
        if not self.configured:
            logger.info("RESEND_API_KEY not set, simulating e-mail to %s: %s", to, subject)
            return EmailResult(delivered=False, simulated=True)

        params: dict[str, Any] = {
            "from": self._from_email,
            "to": [to],
            "subject": subject,
            "html": html,
        }
        try:
            # The Resend SDK is synchronous.
            response = await asyncio.to_thread(self._send_now, params)
        except Exception as exc:
            logger.warning("Resend could not send e-mail to %s (%s): %s", to, subject, exc)
            return EmailResult(delivered=False, error=str(exc))

        message_id = response.get("id") if isinstance(response, dict) else None
        logger.info("E-mail sent via Resend to %s: %s", to, message_id)
        return EmailResult(delivered=True, message_id=message_id)

    def _send_now(self, params: dict[str, Any]) -> Any:
        resend.api_key = self._api_key
        return resend.Emails.send(params)
