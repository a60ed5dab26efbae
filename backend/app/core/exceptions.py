"""Application error taxonomy

Services raise these; the handlers registered in app.core.middleware turn them
into JSON responses. Anything else that escapes a route is an internal error.
"""


class AppError(Exception):
    """Base class for caller-facing errors"""
    status_code = 400
    default_detail = "Bad request"

    def __init__(self, detail: str = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class ValidationError(AppError):
    """Malformed or missing input"""
    status_code = 400
    default_detail = "Invalid input"


class DuplicateIdentityError(AppError):
    """Username or email already taken"""
    status_code = 400
    default_detail = "Username or email already registered"


class AuthenticationError(AppError):
    """Caller could not be authenticated"""
    status_code = 401
    default_detail = "Not authenticated. Please log in."


class InvalidCredentialsError(AuthenticationError):
    # Same message for unknown identifier and wrong password
    default_detail = "Invalid credentials"


class TokenInvalidError(AuthenticationError):
    default_detail = "Invalid token"


class TokenExpiredError(AuthenticationError):
    default_detail = "Token expired. Please log in again."


class ForbiddenError(AppError):
    """Authenticated but not allowed"""
    status_code = 403
    default_detail = "Forbidden"


class NotFoundError(AppError):
    status_code = 404
    default_detail = "Not found"
