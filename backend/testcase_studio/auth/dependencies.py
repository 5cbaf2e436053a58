"""
FastAPI dependency for bearer-token authentication.

Flow:
  1. Extract Bearer token from Authorization header
  2. Verify the JWT (signature + expiry)
  3. Return an Actor carrying the verified identity

Security:
  • Generic 401 for ALL failure modes (missing, malformed, expired)
  • Raw tokens are NEVER logged
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from fastapi import Header, HTTPException, status

from testcase_studio.auth.errors import AuthenticationError
from testcase_studio.auth.tokens import decode_access_token

logger = logging.getLogger(__name__)

# Generic 401 — same message for all auth failures to avoid leaking info
_AUTH_FAILED = HTTPException(
    status_code=status.HTTP_401_UNAUTHORIZED,
    detail="Invalid or missing authorization token.",
    headers={"WWW-Authenticate": "Bearer"},
)


@dataclass(frozen=True, slots=True)
class Actor:
    """Authenticated identity injected into every protected route.

    Attributes:
        user_id: Subject of the token.
        email:   Identity used for ownership and publication stamps.
        name:    Optional display name.
    """

    user_id: str
    email: str
    name: str | None = None


async def get_current_actor(
    authorization: str | None = Header(default=None, alias="Authorization"),
) -> Actor:
    """
    FastAPI dependency — resolves a Bearer token to an Actor.

    Usage in routers:
        CurrentActor = Annotated[Actor, Depends(get_current_actor)]
    """
    if not authorization:
        raise _AUTH_FAILED

    parts = authorization.split(" ", maxsplit=1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise _AUTH_FAILED

    try:
        payload = decode_access_token(parts[1])
    except AuthenticationError as exc:
        logger.info("Rejected bearer token: %s", exc)
        raise _AUTH_FAILED

    return Actor(
        user_id=str(payload["sub"]),
        email=payload["email"],
        name=payload.get("name"),
    )
