"""
Pytest configuration and fixtures for testing.

This file provides reusable test fixtures for:
- Database setup/teardown (in-memory SQLite)
- FastAPI test client with the mailer and captcha verifier stubbed
- A file-backed database for concurrency tests
"""

import os

# Must be set before the app modules read their settings
os.environ.setdefault("APP_ENV", "testing")
os.environ.setdefault("SQLALCHEMY_DATABASE_URI", "sqlite://")
os.environ.setdefault("JSON_LOGS", "false")
os.environ.setdefault("BASE_URL", "https://optin.example.com")
os.environ.setdefault("EMAIL_FROM", "noreply@example.com")
os.environ.setdefault("EMAIL_FROM_NAME", "Example Newsletter")

import re
import uuid

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.database import Base, get_db
from app.models import CsrfToken, VerificationRecord  # noqa: F401
from app.services.captcha_service import RecaptchaVerifier, get_captcha_verifier
from app.services.email_service import EmailService, get_email_service
from main import app


# Use in-memory SQLite for testing (fast, isolated)
SQLALCHEMY_TEST_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

CSRF_FIELD_RE = re.compile(r'name="csrf_token" value="([^"]+)"')


class FakeSesClient:
    """Records send_email calls instead of talking to AWS"""

    def __init__(self):
        self.sent = []
        self.error = None

    def send_email(self, **kwargs):
        if self.error is not None:
            raise self.error
        self.sent.append(kwargs)
        return {"MessageId": f"test-{uuid.uuid4()}"}


class CaptchaStub:
    """Answers siteverify requests through an httpx MockTransport"""

    def __init__(self):
        self.success = True
        self.error_codes = []
        self.raise_error = None
        self.requests = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.raise_error is not None:
            raise self.raise_error
        return httpx.Response(200, json={"success": self.success, "error-codes": self.error_codes})


@pytest.fixture
def db_session():
    """
    Create a fresh database session for each test.
    Tables are dropped after the test completes.
    """
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def session_factory():
    """Session factory bound to the in-memory test database"""
    return TestingSessionLocal


@pytest.fixture
def ses_client():
    return FakeSesClient()


@pytest.fixture
def captcha_stub():
    return CaptchaStub()


@pytest.fixture
def client(db_session, ses_client, captcha_stub):
    """
    FastAPI test client with overridden database, mailer and captcha dependencies.
    """
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    verifier = RecaptchaVerifier(
        secret="test-secret",
        verify_url="https://captcha.test/siteverify",
        transport=httpx.MockTransport(captcha_stub.handler),
    )
    mailer = EmailService(ses_client=ses_client)

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_captcha_verifier] = lambda: verifier
    app.dependency_overrides[get_email_service] = lambda: mailer

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
def csrf_token(client):
    """Render the registration form and return the embedded CSRF token"""
    response = client.get("/register")
    assert response.status_code == 200
    match = CSRF_FIELD_RE.search(response.text)
    assert match is not None
    return match.group(1)


@pytest.fixture
def file_session_factory(tmp_path):
    """
    Session factory over a file-backed SQLite database.

    Every transaction starts with BEGIN IMMEDIATE so concurrent writers
    queue on the busy timeout instead of failing with "database is locked".
    """
    file_engine = create_engine(
        f"sqlite:///{tmp_path / 'concurrency.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )

    @event.listens_for(file_engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(file_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    Base.metadata.create_all(bind=file_engine)
    try:
        yield sessionmaker(autocommit=False, autoflush=False, bind=file_engine)
    finally:
        Base.metadata.drop_all(bind=file_engine)
        file_engine.dispose()


@pytest.fixture
def sample_registration():
    """Sample registration form data"""
    return {
        "name": "Ann",
        "email": "ann@example.com",
        "subscribe": "on",
        "g-recaptcha-response": "captcha-ok",
    }
