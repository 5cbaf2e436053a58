"""
JWT access token creation and verification.

Tokens are HS256-signed with JWT_SECRET_KEY. The identity service issues
them after login; this service only needs to verify them (and, for local
development and tests, to mint one).

Payload:
  sub   — user id
  email — actor identity used for ownership checks
  name  — display name (optional)
  exp / iat
"""

from __future__ import annotations

import datetime
from typing import Any

import jwt

from testcase_studio.auth.errors import AuthenticationError
from testcase_studio.core.config import settings


def _secret() -> str:
    if not settings.JWT_SECRET_KEY:
        raise AuthenticationError("JWT_SECRET_KEY is not configured")
    return settings.JWT_SECRET_KEY


def issue_access_token(
    user_id: str,
    email: str,
    name: str | None = None,
    ttl_seconds: int | None = None,
) -> str:
    """Sign an access token for `email`."""
    now = datetime.datetime.now(datetime.timezone.utc)
    ttl = ttl_seconds if ttl_seconds is not None else settings.JWT_ACCESS_TOKEN_TTL_SEC
    payload: dict[str, Any] = {
        "sub": str(user_id),
        "email": email,
        "name": name,
        "iat": now,
        "exp": now + datetime.timedelta(seconds=ttl),
    }
    return jwt.encode(payload, _secret(), algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> dict[str, Any]:
    """
    Verify signature and expiry, returning the payload.

    Raises:
        AuthenticationError: Expired, malformed, or wrongly signed token,
                             or a payload without an email claim.
    """
    try:
        payload = jwt.decode(
            token,
            _secret(),
            algorithms=[settings.JWT_ALGORITHM],
            options={"require": ["exp", "sub"]},
        )
    except jwt.ExpiredSignatureError as exc:
        raise AuthenticationError("Token has expired") from exc
    except jwt.InvalidTokenError as exc:
        raise AuthenticationError(f"Invalid token: {exc}") from exc

    if not payload.get("email"):
        raise AuthenticationError("Token has no email claim")
    return payload
