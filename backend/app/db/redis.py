"""Redis client for rate limiting and CSRF tokens"""
import redis
import logging
import secrets
from typing import Optional
from app.core.config import settings

logger = logging.getLogger(__name__)

# Lazy initialization - no connection at import time
_client = None


def get_redis_client():
    """Get or create Redis client (lazy initialization)

    This prevents connection attempts during import, allowing mocks to be applied first.
    """
    global _client
    if _client is None:
        _client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    return _client


def set_csrf_token(token_id: str, csrf_token: str, ttl: int) -> None:
    """Store CSRF token for an access token (keyed by its jti)"""
    key = f"csrf:{token_id}"
    get_redis_client().setex(key, ttl, csrf_token)


def get_csrf_token(token_id: str) -> Optional[str]:
    """Get CSRF token from Redis"""
    key = f"csrf:{token_id}"
    return get_redis_client().get(key)


def create_csrf_token(token_id: str, ttl: int) -> str:
    """Generate and store a fresh CSRF token bound to an access token

    Args:
        token_id: jti claim of the access token
        ttl: Seconds until the access token expires

    Returns:
        str: CSRF token
    """
    csrf_token = secrets.token_urlsafe(32)
    set_csrf_token(token_id, csrf_token, ttl)
    return csrf_token


def delete_csrf_token(token_id: str) -> None:
    """Delete CSRF token from Redis"""
    key = f"csrf:{token_id}"
    get_redis_client().delete(key)


def increment_rate_limit(identifier: str, window: int) -> int:
    """Increment rate limit counter and return current count.
    The TTL is only set when the key is created (fixed window rate limiting)."""
    key = f"ratelimit:{identifier}"
    client = get_redis_client()

    count = client.incr(key)
    if count == 1:
        client.expire(key, window)
    return int(count)


def check_rate_limit(identifier: str, strict: bool = False) -> bool:
    """Check if request is within rate limit using Redis. Returns True if allowed, False if rate limited."""
    window = settings.RATE_LIMIT_STRICT_WINDOW if strict else settings.RATE_LIMIT_WINDOW
    max_requests = settings.RATE_LIMIT_STRICT_REQUESTS if strict else settings.RATE_LIMIT_REQUESTS

    # Strict and normal budgets are counted separately
    bucket = f"strict:{identifier}" if strict else identifier
    current_count = increment_rate_limit(bucket, window)

    # Check if limit exceeded
    if current_count > max_requests:
        return False

    return True

