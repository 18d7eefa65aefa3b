"""Jitsi room links, used whenever no Google Meet link can be produced."""

from __future__ import annotations

import secrets
import string
from datetime import datetime

from cvreview.config import settings

_BASE36 = string.digits + string.ascii_lowercase


def _base36(value: int) -> str:
    if value == 0:
        return "0"
    digits: list[str] = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def jitsi_room_link(now: datetime) -> str:
    """Unguessable public room URL: `{base}/{prefix}-{ms timestamp, base36}-{6 random chars}`."""
    stamp = _base36(int(now.timestamp() * 1000))
    suffix = "".join(secrets.choice(_BASE36) for _ in range(6))
    base = settings.conferencing.jitsi_base_url.rstrip("/")
    return f"{base}/{settings.conferencing.jitsi_room_prefix}-{stamp}-{suffix}"
