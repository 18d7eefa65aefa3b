"""Actor identity from the authentication gateway.

The gateway authenticates the user and forwards `X-Actor-Id` and
`X-Actor-Role`. When GATEWAY_TOKEN is configured the gateway must also send
it as `X-Gateway-Token`; requests without it are rejected.
"""

from __future__ import annotations

import secrets
import uuid

from fastapi import Header, HTTPException, status

from cvreview.config import settings
from cvreview.models.enums import ActorRole
from cvreview.scheduling.policy import Actor


async def get_actor(
    x_actor_id: str | None = Header(default=None),
    x_actor_role: str | None = Header(default=None),
    x_gateway_token: str | None = Header(default=None),
) -> Actor:
    """FastAPI dependency: the authenticated actor, or 401."""
    expected = settings.security.gateway_token
    if expected:
        token_ok = x_gateway_token is not None and secrets.compare_digest(
            x_gateway_token.encode("utf-8"),
            expected.encode("utf-8"),
        )
        if not token_ok:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid gateway token")

    if not x_actor_id or not x_actor_role:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")

    try:
        return Actor(id=uuid.UUID(x_actor_id), role=ActorRole(x_actor_role.lower()))
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid actor identity",
        ) from None
