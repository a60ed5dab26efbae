"""Auth API routes"""
import logging
from fastapi import APIRouter, Depends, Request, Response, status
from sqlalchemy.orm import Session
from app.schemas.auth import (
    RegisterRequest, LoginRequest, ForgotPasswordRequest, ResetPasswordRequest, ChangePasswordRequest
)
from app.services.auth_service import (
    register_user, login_user, serialize_user, initiate_password_reset,
    complete_password_reset, change_password
)
from app.core.config import settings
from app.core.exceptions import AuthenticationError
from app.core.security import require_auth, set_auth_cookie, clear_auth_cookie, extract_token
from app.core.tokens import access_token_ttl_seconds, decode_access_token
from app.db.redis import create_csrf_token, delete_csrf_token
from app.db.session import get_db
from app.models.user import User

router = APIRouter(tags=["auth"])
logger = logging.getLogger(__name__)


def issue_session(response: Response, user: User, token: str) -> dict:
    """Attach the token cookie and a CSRF token bound to it, and build the auth response body"""
    csrf_token = create_csrf_token(decode_access_token(token)["jti"], access_token_ttl_seconds())
    set_auth_cookie(response, token)
    response.headers["X-CSRF-Token"] = csrf_token
    return {
        "access_token": token,
        "token_type": "bearer",
        "expires_in": access_token_ttl_seconds(),
        "csrf_token": csrf_token,
        "user": serialize_user(user),
    }


@router.post("/register", status_code=status.HTTP_201_CREATED)
def register(request_data: RegisterRequest, response: Response, db: Session = Depends(get_db)):
    """Create an account and log it in"""
    user, token = register_user(request_data.username, request_data.email, request_data.password, db)
    return issue_session(response, user, token)


@router.post("/login")
def login(request_data: LoginRequest, response: Response, db: Session = Depends(get_db)):
    """Login user"""
    user, token = login_user(request_data.identifier, request_data.password, db)
    return issue_session(response, user, token)


@router.post("/logout")
def logout(request: Request, response: Response):
    """Logout user"""
    token, _ = extract_token(request)
    if token:
        try:
            delete_csrf_token(decode_access_token(token)["jti"])
        except AuthenticationError:
            # Expired or forged tokens have nothing left to revoke
            pass
    clear_auth_cookie(response)
    return {"message": "Logged out"}


@router.get("/me")
def get_current_user(user: User = Depends(require_auth)):
    """Get current logged-in user"""
    return {"user": serialize_user(user)}


@router.post("/forgot-password")
def forgot_password(request_data: ForgotPasswordRequest, db: Session = Depends(get_db)):
    """Start a password reset; the response does not reveal whether the email exists"""
    reset_token = initiate_password_reset(request_data.email, db)
    result = {"message": "If an account exists for that email, a reset link has been issued."}
    # No mail delivery here, so the token is only surfaced to developers
    if reset_token and settings.ENVIRONMENT == "development":
        result["reset_token"] = reset_token
    return result


@router.post("/reset-password")
def reset_password(request_data: ResetPasswordRequest, db: Session = Depends(get_db)):
    """Complete password reset using the issued token"""
    complete_password_reset(request_data.token, request_data.new_password, db)
    return {"message": "Password has been reset. Please log in."}


@router.post("/change-password")
def change_password_route(
    request_data: ChangePasswordRequest,
    user: User = Depends(require_auth),
    db: Session = Depends(get_db)
):
    """Change password for authenticated user"""
    change_password(user, request_data.current_password, request_data.new_password, db)
    return {"message": "Password changed"}
