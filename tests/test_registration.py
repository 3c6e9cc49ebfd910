"""
End-to-end tests for the registration and verification endpoints.

Tests:
- Form rendering and CSRF issuance
- Submission ordering (CSRF before captcha, mail and database)
- Confirmation email and link
- Verification outcomes and enumeration resistance
- Infrastructure failures
"""

import re
from urllib.parse import parse_qs, urlparse

import httpx
import pytest
from botocore.exceptions import ClientError
from sqlalchemy.exc import OperationalError

from app.core.config import settings
from app.core.csrf import SqlCsrfStore
from app.core.errors import REGISTRATION_FAILED_MESSAGE
from app.models.verification_record import VerificationRecord


def _link_from(sent_email):
    body = sent_email["Message"]["Body"]["Text"]["Data"]
    match = re.search(r"https?://\S+", body)
    assert match is not None
    return match.group(0)


def _token_from(sent_email):
    return parse_qs(urlparse(_link_from(sent_email)).query)["t"][0]


class TestRegistrationForm:
    """Tests for GET /register"""

    def test_form_contains_csrf_field_and_captcha(self, client):
        response = client.get("/register")

        assert response.status_code == 200
        assert 'name="csrf_token"' in response.text
        assert 'class="g-recaptcha"' in response.text
        assert settings.SESSION_COOKIE_NAME in response.cookies

    def test_rendering_again_replaces_token(self, client):
        first = re.search(r'name="csrf_token" value="([^"]+)"', client.get("/register").text).group(1)
        second = re.search(r'name="csrf_token" value="([^"]+)"', client.get("/register").text).group(1)
        assert first != second


class TestSubmission:
    """Tests for POST /register"""

    def test_successful_submission(self, client, db_session, csrf_token, sample_registration, ses_client, captcha_stub):
        response = client.post("/register", data={**sample_registration, "csrf_token": csrf_token})

        assert response.status_code == 200
        assert "Email has been sent" in response.text

        record = db_session.query(VerificationRecord).one()
        assert record.verified is False
        assert re.fullmatch(r"[0-9a-f]{64}", record.token)
        assert record.email == "ann@example.com"
        assert record.name == "Ann"
        assert record.subscribed is True
        assert record.source_ip

        assert len(ses_client.sent) == 1
        sent = ses_client.sent[0]
        assert sent["Destination"] == {"ToAddresses": ["ann@example.com"]}
        assert sent["Source"] == "Example Newsletter <noreply@example.com>"
        assert _link_from(sent) == f"https://optin.example.com/verify?t={record.token}"
        assert "id=" not in _link_from(sent)

        assert len(captcha_stub.requests) == 1
        assert b"response=captcha-ok" in captcha_stub.requests[0].content

    def test_inputs_are_sanitized(self, client, db_session, csrf_token, sample_registration):
        data = {**sample_registration, "csrf_token": csrf_token, "name": "  O\\'Brien  ", "email": " ann@example.com "}
        data.pop("subscribe")

        response = client.post("/register", data=data)

        assert response.status_code == 200
        record = db_session.query(VerificationRecord).one()
        assert record.name == "O'Brien"
        assert record.email == "ann@example.com"
        assert record.subscribed is False

    def test_missing_csrf_rejected_before_any_side_effect(self, client, db_session, sample_registration, ses_client, captcha_stub):
        client.get("/register")

        response = client.post("/register", data=sample_registration)

        assert response.status_code == 403
        assert captcha_stub.requests == []
        assert ses_client.sent == []
        assert db_session.query(VerificationRecord).count() == 0

    def test_wrong_csrf_rejected(self, client, csrf_token, sample_registration, captcha_stub):
        response = client.post("/register", data={**sample_registration, "csrf_token": "0" * 64})

        assert response.status_code == 403
        assert captcha_stub.requests == []

    def test_csrf_without_session_cookie_rejected(self, client, csrf_token, sample_registration):
        client.cookies.clear()
        response = client.post("/register", data={**sample_registration, "csrf_token": csrf_token})
        assert response.status_code == 403

    def test_csrf_token_is_single_use(self, client, db_session, csrf_token, sample_registration):
        first = client.post("/register", data={**sample_registration, "csrf_token": csrf_token})
        second = client.post("/register", data={**sample_registration, "csrf_token": csrf_token})

        assert first.status_code == 200
        assert second.status_code == 403
        assert db_session.query(VerificationRecord).count() == 1

    def test_missing_captcha_rejected(self, client, csrf_token, sample_registration, ses_client):
        data = {**sample_registration, "csrf_token": csrf_token}
        data.pop("g-recaptcha-response")

        response = client.post("/register", data=data)

        assert response.status_code == 400
        assert ses_client.sent == []

    def test_failed_captcha_is_generic(self, client, db_session, csrf_token, sample_registration, captcha_stub):
        captcha_stub.success = False
        captcha_stub.error_codes = ["invalid-input-response"]

        response = client.post("/register", data={**sample_registration, "csrf_token": csrf_token})

        assert response.status_code == 400
        assert "invalid-input-response" not in response.text
        assert db_session.query(VerificationRecord).count() == 0

    def test_captcha_service_down(self, client, db_session, csrf_token, sample_registration, captcha_stub):
        captcha_stub.raise_error = httpx.ConnectError("connection refused")

        response = client.post("/register", data={**sample_registration, "csrf_token": csrf_token})

        assert response.status_code == 503
        assert "connection refused" not in response.text
        assert db_session.query(VerificationRecord).count() == 0

    def test_invalid_email_rejected(self, client, db_session, csrf_token, sample_registration, captcha_stub):
        response = client.post("/register", data={**sample_registration, "csrf_token": csrf_token, "email": "not-an-email"})

        assert response.status_code == 400
        assert captcha_stub.requests == []
        assert db_session.query(VerificationRecord).count() == 0

    def test_mail_failure_is_generic(self, client, csrf_token, sample_registration, ses_client):
        ses_client.error = ClientError(
            {"Error": {"Code": "MessageRejected", "Message": "Email address is not verified"}},
            "SendEmail",
        )

        response = client.post("/register", data={**sample_registration, "csrf_token": csrf_token})

        assert response.status_code == 503
        assert "Failed to send email" in response.text
        assert "MessageRejected" not in response.text

    def test_mail_failure_detail_in_development(self, client, csrf_token, sample_registration, ses_client, monkeypatch):
        monkeypatch.setattr(settings, "APP_ENV", "development")
        ses_client.error = ClientError(
            {"Error": {"Code": "MessageRejected", "Message": "Email address is not verified"}},
            "SendEmail",
        )

        response = client.post("/register", data={**sample_registration, "csrf_token": csrf_token})

        assert response.status_code == 503
        assert "MessageRejected" in response.text


class TestCsrfStoreFailures:
    """Database errors in the CSRF store become 503 responses"""

    @staticmethod
    def _connection_lost(*args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("connection lost"))

    def test_form_render_store_failure(self, client, monkeypatch):
        monkeypatch.setattr(SqlCsrfStore, "put", self._connection_lost)

        response = client.get("/register")

        assert response.status_code == 503
        assert response.text == REGISTRATION_FAILED_MESSAGE
        assert "connection lost" not in response.text
        assert response.headers["X-Frame-Options"] == "DENY"

    def test_submission_store_failure(self, client, db_session, csrf_token, sample_registration, captcha_stub, ses_client, monkeypatch):
        monkeypatch.setattr(SqlCsrfStore, "get", self._connection_lost)

        response = client.post("/register", data={**sample_registration, "csrf_token": csrf_token})

        assert response.status_code == 503
        assert response.text == REGISTRATION_FAILED_MESSAGE
        assert "Content-Security-Policy" in response.headers
        assert captcha_stub.requests == []
        assert ses_client.sent == []
        assert db_session.query(VerificationRecord).count() == 0


class TestVerificationEndpoint:
    """Tests for GET /verify"""

    @pytest.fixture
    def issued_token(self, client, csrf_token, sample_registration, ses_client):
        response = client.post("/register", data={**sample_registration, "csrf_token": csrf_token})
        assert response.status_code == 200
        return _token_from(ses_client.sent[0])

    def test_verify_then_already_verified(self, client, db_session, issued_token):
        first = client.get("/verify", params={"t": issued_token})
        assert first.status_code == 200
        assert "successfully validated" in first.text

        record = db_session.query(VerificationRecord).one()
        db_session.refresh(record)
        assert record.verified is True
        verified_at = record.verified_at

        second = client.get("/verify", params={"t": issued_token})
        assert second.status_code == 200
        assert "already been validated" in second.text

        db_session.refresh(record)
        assert record.verified_at == verified_at

    def test_unknown_and_mismatched_identity_are_identical(self, client, db_session, issued_token):
        record = db_session.query(VerificationRecord).one()

        unknown = client.get("/verify", params={"t": "f" * 64})
        wrong_owner = client.get("/verify", params={"t": issued_token, "id": str(record.id + 1)})

        assert unknown.status_code == wrong_owner.status_code == 404
        assert unknown.content == wrong_owner.content

        db_session.refresh(record)
        assert record.verified is False

    def test_matching_identity_accepted(self, client, db_session, issued_token):
        record = db_session.query(VerificationRecord).one()
        response = client.get("/verify", params={"t": issued_token, "id": str(record.id)})
        assert "successfully validated" in response.text

    def test_malformed_token_looks_like_not_found(self, client):
        unknown = client.get("/verify", params={"t": "f" * 64})
        malformed = client.get("/verify", params={"t": "<script>"})
        bad_id = client.get("/verify", params={"t": "f" * 64, "id": "abc"})

        assert malformed.status_code == bad_id.status_code == 404
        assert malformed.content == unknown.content == bad_id.content

    def test_missing_token(self, client):
        response = client.get("/verify")
        assert response.status_code == 400

    def test_expired_token_looks_like_not_found(self, client, db_session, issued_token):
        from datetime import datetime, timedelta, timezone

        record = db_session.query(VerificationRecord).one()
        record.expires_at = datetime.now(timezone.utc) - timedelta(minutes=1)
        db_session.commit()

        expired = client.get("/verify", params={"t": issued_token})
        unknown = client.get("/verify", params={"t": "f" * 64})

        assert expired.status_code == 404
        assert expired.content == unknown.content

    def test_verify_response_is_plain_text(self, client, issued_token):
        response = client.get("/verify", params={"t": issued_token})
        assert response.headers["content-type"].startswith("text/plain")


class TestHealth:
    """Tests for health endpoints"""

    def test_basic_health_check(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_detailed_health_check(self, client):
        response = client.get("/health/detailed")
        assert response.status_code == 200
        assert response.json()["checks"]["database"]["status"] == "healthy"
