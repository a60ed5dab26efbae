"""Signed access tokens (JWT, PyJWT)

A token carries only the user id (`sub`) and a random token id (`jti`).
Role and reward counters are always read from the database on verification.
"""
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt

from app.core.config import settings
from app.core.exceptions import TokenExpiredError, TokenInvalidError

TOKEN_TYPE_ACCESS = "access"


def access_token_ttl_seconds() -> int:
    return settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60


def create_access_token(user_id: int, now: Optional[datetime] = None) -> str:
    """
    Create a short-lived access token.

    Args:
        user_id: The user's database ID.
        now: Issue time (defaults to the current UTC time).

    Returns:
        Encoded JWT string.
    """
    issued_at = now or datetime.now(timezone.utc)
    payload: Dict[str, Any] = {
        "sub": str(user_id),
        "jti": secrets.token_urlsafe(16),
        "iat": issued_at,
        "exp": issued_at + timedelta(seconds=access_token_ttl_seconds()),
        "type": TOKEN_TYPE_ACCESS,
    }
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> Dict[str, Any]:
    """
    Verify signature and expiry and return the payload.

    Raises:
        TokenExpiredError: If the token is past its expiry.
        TokenInvalidError: If the token is malformed, tampered with, or of the wrong type.
    """
    try:
        payload = jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
            options={"require": ["sub", "exp", "jti"]},
        )
    except jwt.ExpiredSignatureError:
        raise TokenExpiredError()
    except jwt.InvalidTokenError:
        raise TokenInvalidError()

    if payload.get("type") != TOKEN_TYPE_ACCESS:
        raise TokenInvalidError()
    return payload


def get_user_id(payload: Dict[str, Any]) -> int:
    """Extract the numeric user id from a decoded payload"""
    try:
        return int(payload["sub"])
    except (KeyError, TypeError, ValueError):
        raise TokenInvalidError()
