"""Middleware configuration for FastAPI application"""
import logging
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.core.config import settings, STATE_CHANGING_METHODS
from app.core.exceptions import AppError
from app.core.security import get_client_identifier, check_rate_limit, log_api_access

logger = logging.getLogger(__name__)
security_logger = logging.getLogger("security")

SECURITY_HEADERS = {
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
    "Cross-Origin-Opener-Policy": "same-origin",
}


def get_allowed_origins():
    """Get list of allowed CORS origins"""
    allowed_origins = [settings.FRONTEND_URL]
    if settings.ENVIRONMENT == "development":
        allowed_origins.extend([
            "http://localhost:3000",
            "http://localhost:8000",
            "http://127.0.0.1:3000",
            "http://127.0.0.1:8000"
        ])
    return allowed_origins


def setup_cors_middleware(app: FastAPI):
    """Setup CORS middleware for FastAPI app"""
    app.add_middleware(
        CORSMiddleware,
        allow_origins=get_allowed_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-CSRF-Token"],
    )


def apply_security_headers(response: Response) -> Response:
    """Helmet-style hardening headers"""
    for header, value in SECURITY_HEADERS.items():
        response.headers.setdefault(header, value)
    if settings.ENVIRONMENT == "production":
        response.headers.setdefault("Strict-Transport-Security", "max-age=31536000; includeSubDomains")
    return response


async def security_middleware(request: Request, call_next):
    """Middleware for rate limiting, security headers and API access logging"""
    status_code = 500
    error = None

    try:
        path = request.url.path
        identifier = get_client_identifier(request)
        is_state_changing = request.method in STATE_CHANGING_METHODS

        if path != "/health" and not check_rate_limit(identifier, strict=is_state_changing):
            error = "Rate limit exceeded"
            status_code = 429
            security_logger.warning(f"Rate limit exceeded - Identifier: {identifier}, Path: {path}")
            response = JSONResponse(
                status_code=429,
                content={"error": "Rate limit exceeded. Please try again later."}
            )
            return apply_security_headers(response)

        response = await call_next(request)
        status_code = response.status_code
        return apply_security_headers(response)

    except Exception as e:
        error = str(e)
        security_logger.error(f"Security middleware error: {error}", exc_info=True)
        raise
    finally:
        log_api_access(request, status_code, error)


async def app_error_handler(request: Request, exc: AppError):
    """Render caller-facing errors"""
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
        headers=headers
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed request bodies are a caller error (400)"""
    errors = [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={"detail": "Validation error", "errors": errors}
    )


async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler"""
    logger.error(f"Unhandled exception on {request.method} {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error"}
    )


def setup_error_handlers(app: FastAPI):
    """Register exception handlers"""
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)
