"""Shared pytest fixtures for test suite"""
import os
import sys
from pathlib import Path
from typing import Generator
from unittest.mock import patch

import fakeredis
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Must be set before app settings are imported
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("LOG_LEVEL", "WARNING")

# Add backend directory to Python path
backend_dir = Path(__file__).parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

from app.main import app
from app.core.tokens import create_access_token
from app.db.session import get_db
from app.db import redis as redis_module
from app.models import Base
from app.models.user import User, UserRole
from app.services.auth_service import create_user


# SQLite in-memory database for testing
TEST_DATABASE_URL = "sqlite:///:memory:"

# Create test engine with StaticPool for in-memory database
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

# Create test session factory
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)

TEST_PASSWORD = "TestPassword123"


@pytest.fixture(scope="function")
def db_session() -> Generator[Session, None, None]:
    """Create a fresh SQLite in-memory database session for each test"""
    Base.metadata.create_all(bind=test_engine)

    session = TestSessionLocal()

    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture(scope="function")
def mock_redis():
    """Swap the lazily created Redis client for fakeredis"""
    fake_redis = fakeredis.FakeStrictRedis(server=fakeredis.FakeServer(), decode_responses=True)
    with patch.object(redis_module, "_client", fake_redis):
        yield fake_redis


@pytest.fixture(scope="function")
def client(db_session: Session, mock_redis) -> Generator[TestClient, None, None]:
    """FastAPI test client with test database and mocked Redis"""

    def override_get_db():
        try:
            yield db_session
        finally:
            pass  # Don't close session here, handled by fixture

    app.dependency_overrides[get_db] = override_get_db

    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def test_user(db_session: Session) -> User:
    """Create a regular test user"""
    return create_user(
        username="delivered",
        email="delivered@example.com",
        password=TEST_PASSWORD,
        db=db_session
    )


@pytest.fixture(scope="function")
def test_user_2(db_session: Session) -> User:
    """Create a second regular user for ownership tests"""
    return create_user(
        username="second",
        email="second@example.com",
        password=TEST_PASSWORD,
        db=db_session
    )


@pytest.fixture(scope="function")
def admin_user(db_session: Session) -> User:
    """Create an admin user"""
    return create_user(
        username="admin",
        email="admin@example.com",
        password=TEST_PASSWORD,
        db=db_session,
        role=UserRole.ADMIN
    )


def bearer_headers(user: User) -> dict:
    """Authorization header carrying a fresh access token for the user"""
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


@pytest.fixture(scope="function")
def user_headers(test_user: User) -> dict:
    return bearer_headers(test_user)


@pytest.fixture(scope="function")
def admin_headers(admin_user: User) -> dict:
    return bearer_headers(admin_user)
