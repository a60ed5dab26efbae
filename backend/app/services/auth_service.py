"""Authentication service - business logic for user authentication"""
import bcrypt
import hashlib
import logging
import re
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

from email_validator import EmailNotValidError, validate_email
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import (
    DuplicateIdentityError, InvalidCredentialsError, TokenInvalidError, ValidationError
)
from app.core.tokens import create_access_token, decode_access_token, get_user_id
from app.models.base import is_storable_id
from app.models.user import User, UserRole

logger = logging.getLogger(__name__)
security_logger = logging.getLogger("security")

USERNAME_PATTERN = re.compile(r"^[A-Za-z0-9_.-]{3,30}$")
PASSWORD_MIN_LENGTH = 8
# bcrypt rejects longer inputs
PASSWORD_MAX_BYTES = 72

# Compared against when the identifier is unknown so both failure paths cost one bcrypt check
_dummy_password_hash = None


# --- Field validation (called explicitly before every write) ---

def validate_password_strength(password: str) -> str:
    """Enforce the password policy: at least 8 characters with a letter and a digit"""
    if not password or len(password) < PASSWORD_MIN_LENGTH:
        raise ValidationError(f"Password must be at least {PASSWORD_MIN_LENGTH} characters long")
    if len(password.encode("utf-8")) > PASSWORD_MAX_BYTES:
        raise ValidationError(f"Password must be at most {PASSWORD_MAX_BYTES} bytes long")
    if not re.search(r"[A-Za-z]", password) or not re.search(r"\d", password):
        raise ValidationError("Password must contain at least one letter and one digit")
    return password


def validate_username(username: str) -> str:
    username = (username or "").strip()
    if not USERNAME_PATTERN.match(username):
        raise ValidationError(
            "Username must be 3-30 characters of letters, digits, '.', '_' or '-'"
        )
    return username


def validate_email_address(email: str) -> str:
    """Check email syntax and return the normalized, lower-cased address"""
    try:
        result = validate_email((email or "").strip(), check_deliverability=False)
    except EmailNotValidError as e:
        raise ValidationError(f"Invalid email address: {e}")
    return result.normalized.lower()


# --- Password hashing ---

def hash_password(password: str) -> str:
    """Hash a password using bcrypt"""
    salt = bcrypt.gensalt(rounds=settings.BCRYPT_ROUNDS)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """Verify a password against its hash

    Over-long passwords never match but still cost one bcrypt check.
    """
    if not password_hash or not password:
        return False
    password_bytes = password.encode('utf-8')
    matched = bcrypt.checkpw(password_bytes[:PASSWORD_MAX_BYTES], password_hash.encode('utf-8'))
    return matched and len(password_bytes) <= PASSWORD_MAX_BYTES


def _get_dummy_password_hash() -> str:
    global _dummy_password_hash
    if _dummy_password_hash is None:
        _dummy_password_hash = hash_password(secrets.token_urlsafe(16))
    return _dummy_password_hash


# --- Lookups ---

def get_user_by_id(user_id: int, db: Session) -> Optional[User]:
    """Get user by ID"""
    if not is_storable_id(user_id):
        return None
    return db.query(User).filter(User.id == user_id).first()


def get_user_by_email(email: str, db: Session) -> Optional[User]:
    """Get user by email"""
    return db.query(User).filter(User.email == email.strip().lower()).first()


def get_user_by_username(username: str, db: Session) -> Optional[User]:
    return db.query(User).filter(User.username == username.strip()).first()


def get_user_by_identifier(identifier: str, db: Session) -> Optional[User]:
    """Look up a user by the configured login identifier field"""
    if not identifier:
        return None
    if settings.LOGIN_IDENTIFIER_FIELD == "username":
        return get_user_by_username(identifier, db)
    return get_user_by_email(identifier, db)


# --- Registration / login ---

def create_user(
    username: str,
    email: str,
    password: str,
    db: Session,
    role: UserRole = UserRole.USER
) -> User:
    """Create a new user.

    Args:
        username: Unique username.
        email: Unique email address.
        password: Raw password; hashed once here and never stored.
        db: Database session.
        role: Authorization tier for the new account.

    Raises:
        ValidationError: If any field fails validation.
        DuplicateIdentityError: If the username or email is taken.
    """
    username = validate_username(username)
    email = validate_email_address(email)
    validate_password_strength(password)

    existing_user = db.query(User).filter(
        (User.username == username) | (User.email == email)
    ).first()
    if existing_user:
        raise DuplicateIdentityError()

    user = User(
        username=username,
        email=email,
        password_hash=hash_password(password),
        role=role,
        xp=0,
        level=1,
        entries=0,
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        # Lost a race against a concurrent registration
        db.rollback()
        raise DuplicateIdentityError()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Database error creating user {username}: {e}", exc_info=True)
        raise
    db.refresh(user)
    return user


def register_user(username: str, email: str, password: str, db: Session) -> Tuple[User, str]:
    """Registration flow: validate, persist, issue a token

    Returns:
        tuple: (User, access token)
    """
    user = create_user(username, email, password, db)
    logger.info(f"User registered: {user.username} (ID: {user.id})")
    return user, create_access_token(user.id)


def authenticate_user(identifier: str, password: str, db: Session) -> User:
    """Authenticate a user by the configured identifier and password

    Raises:
        InvalidCredentialsError: Unknown identifier or wrong password (indistinguishable).
    """
    user = get_user_by_identifier(identifier, db)
    if not user:
        verify_password(password or "x", _get_dummy_password_hash())
        raise InvalidCredentialsError()
    if not verify_password(password, user.password_hash):
        raise InvalidCredentialsError()
    return user


def login_user(identifier: str, password: str, db: Session) -> Tuple[User, str]:
    """Login flow: authenticate and issue a token

    Returns:
        tuple: (User, access token)
    """
    try:
        user = authenticate_user(identifier, password, db)
    except InvalidCredentialsError:
        security_logger.warning(f"Failed login attempt for {settings.LOGIN_IDENTIFIER_FIELD} identifier")
        raise

    logger.info(f"User logged in: {user.username} (ID: {user.id})")
    return user, create_access_token(user.id)


def verify_token(token: str, db: Session) -> User:
    """Decode a token and resolve it to the user's current stored record

    Raises:
        TokenExpiredError: Token is past its expiry.
        TokenInvalidError: Bad signature/shape, or the user no longer exists.
    """
    payload = decode_access_token(token)
    user = get_user_by_id(get_user_id(payload), db)
    if not user:
        raise TokenInvalidError()
    return user


def serialize_user(user: User) -> dict:
    """Public representation of a user (never includes the password hash)"""
    return {
        "id": user.id,
        "username": user.username,
        "email": user.email,
        "role": user.role.value,
        "xp": user.xp,
        "level": user.level,
        "entries": user.entries,
        "is_email_verified": user.is_email_verified,
        "created_at": user.created_at.isoformat() if user.created_at else None,
    }


# --- Password management ---

def _hash_reset_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def initiate_password_reset(email: str, db: Session, now: Optional[datetime] = None) -> Optional[str]:
    """Initiate password reset by generating a reset token

    Only the token's SHA-256 is stored on the user.

    Returns:
        str: Raw reset token if the user exists, None otherwise
    """
    user = get_user_by_email(email or "", db)
    if not user:
        return None

    now = now or datetime.now(timezone.utc)
    reset_token = secrets.token_urlsafe(32)
    user.password_reset_token_hash = _hash_reset_token(reset_token)
    user.password_reset_expires_at = now + timedelta(minutes=settings.PASSWORD_RESET_EXPIRE_MINUTES)
    db.commit()

    security_logger.info(f"Password reset issued for user {user.id}")
    return reset_token


def complete_password_reset(token: str, new_password: str, db: Session, now: Optional[datetime] = None) -> User:
    """Complete password reset using token

    Raises:
        ValidationError: Weak password, or unknown/expired token.
    """
    validate_password_strength(new_password)
    if not token:
        raise ValidationError("Invalid or expired reset token")

    user = db.query(User).filter(User.password_reset_token_hash == _hash_reset_token(token)).first()
    now = now or datetime.now(timezone.utc)
    if not user or not user.password_reset_expires_at or _as_utc(user.password_reset_expires_at) < now:
        raise ValidationError("Invalid or expired reset token")

    user.password_hash = hash_password(new_password)
    user.password_reset_token_hash = None
    user.password_reset_expires_at = None
    db.commit()
    db.refresh(user)

    security_logger.info(f"Password reset completed for user {user.id}")
    return user


def change_password(user: User, current_password: str, new_password: str, db: Session) -> User:
    """Change password for an authenticated user

    The hash is recomputed only when the plaintext actually changes.
    """
    if not verify_password(current_password, user.password_hash):
        raise InvalidCredentialsError("Current password is incorrect")
    validate_password_strength(new_password)
    if verify_password(new_password, user.password_hash):
        raise ValidationError("New password must be different from the current password")

    user.password_hash = hash_password(new_password)
    db.commit()
    db.refresh(user)

    security_logger.info(f"Password changed for user {user.id}")
    return user
