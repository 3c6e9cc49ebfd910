"""
CSRF protection for the registration form.

Synchronizer token pattern:
1. issue_token() when rendering a form, embedded via csrf_token_field()
2. verify_csrf_from_form() when processing the submission

Tokens are scoped to (session_id, form_name), expire after
CSRF_TOKEN_TTL_SECONDS and are consumed on first successful use. Storage
goes through the CsrfStore interface so the protocol has no ambient
session state.
"""

import hmac
import html
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional, Protocol, Tuple

from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.tokens import generate_token
from app.models.csrf_token import CsrfToken

logger = logging.getLogger(__name__)

DEFAULT_FORM_NAME = "default"
CSRF_FIELD_NAME = "csrf_token"


@dataclass(frozen=True)
class CsrfEntry:
    token: str
    issued_at: datetime


class CsrfStore(Protocol):
    """Session-scoped storage for CSRF entries."""

    def get(self, session_id: str, form_name: str) -> Optional[CsrfEntry]: ...

    def put(self, session_id: str, form_name: str, entry: CsrfEntry) -> None: ...

    def delete(self, session_id: str, form_name: str) -> None: ...

    def consume(self, session_id: str, form_name: str, token: str) -> bool: ...

    def delete_expired(self, cutoff: datetime) -> int: ...


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class MemoryCsrfStore:
    """
    In-process store guarded by a lock.

    Only suitable for a single worker process (development and tests).
    """

    def __init__(self):
        self._entries: Dict[Tuple[str, str], CsrfEntry] = {}
        self._lock = threading.Lock()

    def get(self, session_id: str, form_name: str) -> Optional[CsrfEntry]:
        with self._lock:
            return self._entries.get((session_id, form_name))

    def put(self, session_id: str, form_name: str, entry: CsrfEntry) -> None:
        with self._lock:
            self._entries[(session_id, form_name)] = entry

    def delete(self, session_id: str, form_name: str) -> None:
        with self._lock:
            self._entries.pop((session_id, form_name), None)

    def consume(self, session_id: str, form_name: str, token: str) -> bool:
        with self._lock:
            entry = self._entries.get((session_id, form_name))
            if entry is None or entry.token != token:
                return False
            del self._entries[(session_id, form_name)]
            return True

    def delete_expired(self, cutoff: datetime) -> int:
        with self._lock:
            stale = [key for key, entry in self._entries.items() if entry.issued_at < cutoff]
            for key in stale:
                del self._entries[key]
            return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class SqlCsrfStore:
    """CSRF entries in the csrf_tokens table."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, session_id: str, form_name: str) -> Optional[CsrfEntry]:
        row = self.db.query(CsrfToken).filter(
            CsrfToken.session_id == session_id,
            CsrfToken.form_name == form_name
        ).first()
        if row is None:
            return None
        return CsrfEntry(token=row.token, issued_at=_as_utc(row.issued_at))

    def put(self, session_id: str, form_name: str, entry: CsrfEntry) -> None:
        updated = self._overwrite(session_id, form_name, entry)
        if updated:
            return

        self.db.add(CsrfToken(
            session_id=session_id,
            form_name=form_name,
            token=entry.token,
            issued_at=entry.issued_at,
        ))
        try:
            self.db.commit()
        except IntegrityError:
            # Another request inserted the same (session, form) first
            self.db.rollback()
            self._overwrite(session_id, form_name, entry)

    def _overwrite(self, session_id: str, form_name: str, entry: CsrfEntry) -> int:
        updated = self.db.query(CsrfToken).filter(
            CsrfToken.session_id == session_id,
            CsrfToken.form_name == form_name
        ).update(
            {"token": entry.token, "issued_at": entry.issued_at},
            synchronize_session=False
        )
        self.db.commit()
        return updated

    def delete(self, session_id: str, form_name: str) -> None:
        self.db.execute(
            delete(CsrfToken).where(
                CsrfToken.session_id == session_id,
                CsrfToken.form_name == form_name
            )
        )
        self.db.commit()

    def consume(self, session_id: str, form_name: str, token: str) -> bool:
        result = self.db.execute(
            delete(CsrfToken).where(
                CsrfToken.session_id == session_id,
                CsrfToken.form_name == form_name,
                CsrfToken.token == token
            )
        )
        self.db.commit()
        return result.rowcount == 1

    def delete_expired(self, cutoff: datetime) -> int:
        result = self.db.execute(delete(CsrfToken).where(CsrfToken.issued_at < cutoff))
        self.db.commit()
        return result.rowcount


def _ttl() -> timedelta:
    return timedelta(seconds=settings.CSRF_TOKEN_TTL_SECONDS)


def issue_token(
    store: CsrfStore,
    session_id: str,
    form_name: str = DEFAULT_FORM_NAME,
    now: Optional[datetime] = None,
) -> str:
    """
    Generate a CSRF token for a form, replacing any previous one.

    Args:
        store: CSRF entry storage
        session_id: Id of the visitor's session
        form_name: Form identifier (one live token per form)
        now: Issue time (defaults to current UTC time)

    Returns:
        str: The new token
    """
    token = generate_token()
    store.put(session_id, form_name, CsrfEntry(token=token, issued_at=now or datetime.now(timezone.utc)))
    return token


def csrf_token_field(token: str) -> str:
    """Hidden input carrying the token, HTML-escaped."""
    return f'<input type="hidden" name="{CSRF_FIELD_NAME}" value="{html.escape(token, quote=True)}">'


def tokens_match(expected: str, candidate: str) -> bool:
    """Constant-time comparison of two token strings."""
    return hmac.compare_digest(expected.encode("utf-8"), candidate.encode("utf-8"))


def validate_token(
    store: CsrfStore,
    session_id: Optional[str],
    candidate: Optional[str],
    form_name: str = DEFAULT_FORM_NAME,
    consume_on_success: bool = True,
    now: Optional[datetime] = None,
) -> bool:
    """
    Validate a submitted CSRF token.

    Fails closed when the session, candidate or stored entry is missing.
    An expired entry is deleted. On success the entry is consumed unless
    consume_on_success is False; the consuming delete is conditional, so
    two concurrent submissions of the same token cannot both pass.

    Returns:
        bool: True if the token is valid
    """
    if not session_id or not candidate:
        return False

    entry = store.get(session_id, form_name)
    if entry is None:
        return False

    now = now or datetime.now(timezone.utc)
    if now - entry.issued_at > _ttl():
        # Only the stale token; a newer one issued meanwhile stays
        store.consume(session_id, form_name, entry.token)
        return False

    if not tokens_match(entry.token, candidate):
        return False

    if consume_on_success:
        return store.consume(session_id, form_name, entry.token)

    return True


def verify_csrf_from_form(
    store: CsrfStore,
    session_id: Optional[str],
    candidate: Optional[str],
    form_name: str = DEFAULT_FORM_NAME,
    client_ip: str = "unknown",
) -> bool:
    """
    Validate the token submitted with a form, logging failures.

    Returns:
        bool: True if the token is valid
    """
    if not candidate:
        logger.warning(f"CSRF token missing from POST request - IP: {client_ip}, Form: {form_name}")
        return False

    is_valid = validate_token(store, session_id, candidate, form_name)

    if not is_valid:
        logger.warning(f"CSRF token validation failed - IP: {client_ip}, Form: {form_name}")

    return is_valid


def cleanup_expired(store: CsrfStore, now: Optional[datetime] = None) -> int:
    """
    Remove every entry older than the expiry window.

    Idempotent; intended for the periodic maintenance task rather than
    the request path.

    Returns:
        int: Number of entries removed
    """
    cutoff = (now or datetime.now(timezone.utc)) - _ttl()
    return store.delete_expired(cutoff)
