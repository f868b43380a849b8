"""Pytest configuration and fixtures."""

import os
import uuid

# Set test environment variables BEFORE importing app modules
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("JWT_SECRET", "test-access-secret-for-testing-only")
os.environ.setdefault("JWT_REFRESH_SECRET", "test-refresh-secret-for-testing-only")
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("REVOCATION_BACKEND", "database")

# Disable rate limiting for tests by monkey-patching BEFORE imports
from slowapi import Limiter
from slowapi.util import get_remote_address

_disabled_limiter = Limiter(key_func=get_remote_address, enabled=False)

import app.core.rate_limit as rate_limit_module
rate_limit_module.limiter = _disabled_limiter
rate_limit_module.public_limiter = _disabled_limiter

# Patch PostgreSQL types for SQLite compatibility BEFORE importing models
from sqlalchemy import String, TypeDecorator, JSON
import sqlalchemy.dialects.postgresql as pg_dialect


class SQLiteUUID(TypeDecorator):
    """Platform-independent UUID type that works with SQLite."""
    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None:
            if isinstance(value, uuid.UUID):
                return str(value)
            return str(uuid.UUID(value))
        return value

    def process_result_value(self, value, dialect):
        if value is not None:
            return uuid.UUID(value)
        return value


class MockUUID(SQLiteUUID):
    """Mock PostgreSQL UUID that works with SQLite for testing."""
    cache_ok = True

    def __init__(self, as_uuid=True):
        super().__init__()
        self.as_uuid = as_uuid


class MockJSONB(TypeDecorator):
    """Mock PostgreSQL JSONB that works with SQLite for testing."""
    impl = JSON
    cache_ok = True

    def __init__(self, astext_type=None, none_as_null=False):
        super().__init__()


pg_dialect.UUID = MockUUID
pg_dialect.JSONB = MockJSONB

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.database import Base
from app.core.security import get_password_hash
from app.api.deps import get_db, get_notification_gateway
from app.models import User, UserRole
from app.services.notifications import NotificationGateway
from main import app

# Create in-memory SQLite database for testing
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

TEST_PHONE = "+250788000111"
TEST_PASSWORD = "Passw0rd!"
ADMIN_PHONE = "+250788999000"
ADMIN_PASSWORD = "Adm1nPass!"


class RecordingNotificationGateway(NotificationGateway):
    """Keeps every outbound notification in memory."""

    def __init__(self):
        self.sent = []

    def send_verification_code(self, user, code, channel):
        self.sent.append({"kind": "verification", "user_id": user.id, "code": code, "channel": channel.value})

    def send_password_reset(self, user, token, channel):
        self.sent.append({"kind": "password_reset", "user_id": user.id, "token": token, "channel": channel.value})

    def send_welcome(self, user):
        self.sent.append({"kind": "welcome", "user_id": user.id})

    def of_kind(self, kind):
        return [n for n in self.sent if n["kind"] == kind]

    def last_code(self):
        return self.of_kind("verification")[-1]["code"]

    def last_reset_token(self):
        return self.of_kind("password_reset")[-1]["token"]


@pytest.fixture(scope="function")
def db_session():
    """Create a fresh database session for each test."""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def notifications():
    return RecordingNotificationGateway()


@pytest.fixture(scope="function")
def client(db_session, notifications):
    """Create a test client with database and notification overrides."""
    app.dependency_overrides[get_db] = lambda: db_session
    app.dependency_overrides[get_notification_gateway] = lambda: notifications
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def registration_data():
    """Sample self-registration payload."""
    return {
        "phone": TEST_PHONE,
        "password": TEST_PASSWORD,
        "full_name": "Aline Uwase",
        "email": "aline.uwase@gmail.com",
    }


@pytest.fixture
def verified_user(client, notifications, registration_data):
    """Register and verify a beneficiary; returns the registration payload."""
    response = client.post("/api/auth/register", json=registration_data)
    assert response.status_code == 201
    response = client.post("/api/auth/verify", json={"code": notifications.last_code()})
    assert response.status_code == 200
    return registration_data


@pytest.fixture
def login_tokens(client, verified_user):
    """Access and refresh token of a fresh login of the verified user."""
    response = client.post(
        "/api/auth/login",
        json={"phone": verified_user["phone"], "password": verified_user["password"]},
    )
    assert response.status_code == 200
    return response.json()["tokens"]


@pytest.fixture
def admin_user(db_session):
    """An active staff admin created directly in the database."""
    user = User(
        phone=ADMIN_PHONE,
        full_name="Staff Admin",
        password_hash=get_password_hash(ADMIN_PASSWORD),
        role=UserRole.ADMIN.value,
        is_verified=True,
        is_active=True,
    )
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture
def admin_headers(client, admin_user):
    response = client.post("/api/auth/login", json={"phone": ADMIN_PHONE, "password": ADMIN_PASSWORD})
    assert response.status_code == 200
    return {"Authorization": f"Bearer {response.json()['tokens']['access_token']}"}
