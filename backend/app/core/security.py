"""Security dependencies, authorization gate, and request helpers"""
import json
import logging
from datetime import datetime, timezone
from typing import Optional
from fastapi import Depends, Header, Request, Response
from sqlalchemy.orm import Session

from app.core.config import settings, STATE_CHANGING_METHODS
from app.core.exceptions import AuthenticationError, ForbiddenError
from app.core.tokens import access_token_ttl_seconds, decode_access_token
from app.db.redis import get_csrf_token, check_rate_limit as redis_check_rate_limit
from app.db.session import get_db
from app.models.user import User, UserRole
from app.services.auth_service import verify_token

security_logger = logging.getLogger("security")
api_access_logger = logging.getLogger("api_access")


def require_role(user: User, role: UserRole) -> User:
    """Authorization gate: the user's stored role must equal `role`

    Always called with the row loaded during token verification, never with a token claim.
    """
    if user is None or user.role != role:
        security_logger.warning(
            f"Authorization denied - User: {user.id if user else None}, required role: {role.value}"
        )
        raise ForbiddenError("Admin access required" if role == UserRole.ADMIN else "Forbidden")
    return user


def extract_token(request: Request) -> tuple[Optional[str], bool]:
    """Find the access token on a request

    Returns:
        tuple: (token or None, True if it came from the cookie)
    """
    authorization = request.headers.get("Authorization", "")
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() == "bearer" and credentials.strip():
        return credentials.strip(), False

    cookie_token = request.cookies.get(settings.AUTH_COOKIE_NAME)
    if cookie_token:
        return cookie_token, True
    return None, False


def verify_csrf(request: Request, token: str, csrf_header: Optional[str]) -> None:
    """Cookie-authenticated state-changing requests must echo the CSRF token bound to the access token"""
    token_id = decode_access_token(token)["jti"]
    expected_csrf = get_csrf_token(token_id)
    if not expected_csrf or csrf_header != expected_csrf:
        security_logger.warning(
            f"CSRF validation failed - "
            f"IP: {request.client.host if request.client else 'unknown'}, "
            f"Path: {request.url.path}"
        )
        raise ForbiddenError("Invalid or missing CSRF token")


def require_auth(
    request: Request,
    db: Session = Depends(get_db),
    x_csrf_token: Optional[str] = Header(None, alias="X-CSRF-Token")
) -> User:
    """Dependency: Require authentication, return the current user record"""
    token, from_cookie = extract_token(request)
    if not token:
        raise AuthenticationError()

    user = verify_token(token, db)

    if from_cookie and request.method in STATE_CHANGING_METHODS:
        verify_csrf(request, token, x_csrf_token)

    return user


def require_admin(user: User = Depends(require_auth)) -> User:
    """Dependency: Require admin role (runs after token verification)"""
    return require_role(user, UserRole.ADMIN)


def get_client_identifier(request: Request) -> str:
    """Get a unique identifier for rate limiting"""
    client_ip = request.headers.get("X-Forwarded-For", "").split(",")[0].strip()
    if not client_ip:
        client_ip = request.client.host if request.client else "unknown"
    return f"ip:{client_ip}"


def check_rate_limit(identifier: str, strict: bool = False) -> bool:
    """Check if request is within rate limit

    Args:
        identifier: Client identifier
        strict: If True, use stricter rate limits for state-changing operations

    Returns:
        True if within limit (or Redis is unavailable), False if exceeded
    """
    if not settings.RATE_LIMIT_ENABLED:
        return True
    try:
        return redis_check_rate_limit(identifier, strict=strict)
    except Exception as e:
        security_logger.warning(f"Rate limit check skipped, Redis unavailable: {e}")
        return True


def log_api_access(
    request: Request,
    status_code: int = 200,
    error: Optional[str] = None
):
    """Log detailed API access information"""
    client_ip = request.headers.get("X-Forwarded-For", "").split(",")[0].strip()
    if not client_ip:
        client_ip = request.client.host if request.client else "unknown"

    log_data = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "method": request.method,
        "path": request.url.path,
        "query": str(request.url.query) if request.url.query else None,
        "client_ip": client_ip,
        "user_agent": request.headers.get("User-Agent", "unknown"),
        "origin": request.headers.get("Origin", "none"),
        "status_code": status_code,
        "error": error
    }

    if error or status_code >= 400:
        api_access_logger.warning(f"API Access: {json.dumps(log_data)}")
    else:
        api_access_logger.info(f"API Access: {json.dumps(log_data)}")


def set_auth_cookie(response: Response, token: str) -> None:
    """Set the access token cookie (same lifetime as the token)"""
    response.set_cookie(
        key=settings.AUTH_COOKIE_NAME,
        value=token,
        httponly=True,
        secure=settings.ENVIRONMENT == "production",
        samesite="lax",
        max_age=access_token_ttl_seconds()
    )


def clear_auth_cookie(response: Response) -> None:
    response.delete_cookie(settings.AUTH_COOKIE_NAME)
