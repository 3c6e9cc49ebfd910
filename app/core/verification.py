"""
Core email verification logic.

Handles issuance and single-use redemption of 256-bit confirmation tokens.

State machine per record:
    Issued --redeem--> Verified (terminal)
    Issued --redeem after expires_at--> stays Issued, reported as EXPIRED
Redeeming a Verified record reports ALREADY_VERIFIED and changes nothing.

Database failures are returned as STORE_ERROR results instead of raised,
so endpoints can pick the user-facing message from the outcome alone.
"""

import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional
from urllib.parse import urlencode
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.tokens import generate_token
from app.crud import verification_record as record_crud
from app.models.verification_record import VerificationRecord

logger = logging.getLogger(__name__)


class RedeemOutcome(str, enum.Enum):
    VERIFIED = "verified"
    ALREADY_VERIFIED = "already_verified"
    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    STORE_ERROR = "store_error"


@dataclass
class RegistrationPayload:
    """Sanitized form input attached to a new record"""
    email: str
    name: Optional[str] = None
    subscribed: bool = False
    source_ip: Optional[str] = None


@dataclass
class IssueResult:
    record: Optional[VerificationRecord] = None
    error: Optional[SQLAlchemyError] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.record is not None

    @property
    def token(self) -> Optional[str]:
        return self.record.token if self.record is not None else None


@dataclass
class RedeemResult:
    outcome: RedeemOutcome
    record_id: Optional[int] = None
    error: Optional[SQLAlchemyError] = None


def _as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; everything stored is UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def issue(
    db: Session,
    payload: RegistrationPayload,
    now: Optional[datetime] = None,
    ttl: Optional[timedelta] = None,
) -> IssueResult:
    """
    Create a new unverified record with a fresh token.

    Args:
        db: Database session
        payload: Sanitized registration data
        now: Issuance time (defaults to current UTC time)
        ttl: Token lifetime (defaults to VERIFICATION_TOKEN_TTL_HOURS)

    Returns:
        IssueResult: record on success, error on storage failure
    """
    now = now or datetime.now(timezone.utc)
    ttl = ttl if ttl is not None else timedelta(hours=settings.VERIFICATION_TOKEN_TTL_HOURS)

    token = generate_token(settings.VERIFICATION_TOKEN_BYTES)

    try:
        record = record_crud.create(
            db,
            token=token,
            email=payload.email,
            name=payload.name,
            subscribed=payload.subscribed,
            source_ip=payload.source_ip,
            created_at=now,
            expires_at=now + ttl,
        )
    except SQLAlchemyError as e:
        db.rollback()
        return IssueResult(error=e)

    logger.info(f"Issued verification token for record {record.id}")
    return IssueResult(record=record)


def redeem(
    db: Session,
    token: str,
    identity: Optional[int] = None,
    now: Optional[datetime] = None,
) -> RedeemResult:
    """
    Redeem a verification token.

    The verified flag is flipped by a conditional UPDATE; the follow-up read
    only classifies why nothing was updated.

    Args:
        db: Database session
        token: Token from the confirmation link
        identity: Optional record id that must also match
        now: Redemption time (defaults to current UTC time)

    Returns:
        RedeemResult: outcome plus record id when one was matched
    """
    now = now or datetime.now(timezone.utc)

    try:
        updated = record_crud.mark_verified(db, token, now, identity=identity)
        if updated == 1:
            record = record_crud.get_by_token(db, token, identity=identity)
            record_id = record.id if record is not None else None
            logger.info(f"Record {record_id} verified")
            return RedeemResult(outcome=RedeemOutcome.VERIFIED, record_id=record_id)

        record = record_crud.get_by_token(db, token, identity=identity)
    except SQLAlchemyError as e:
        db.rollback()
        return RedeemResult(outcome=RedeemOutcome.STORE_ERROR, error=e)

    if record is None:
        return RedeemResult(outcome=RedeemOutcome.NOT_FOUND)

    if record.verified:
        return RedeemResult(outcome=RedeemOutcome.ALREADY_VERIFIED, record_id=record.id)

    if _as_utc(record.expires_at) <= now:
        return RedeemResult(outcome=RedeemOutcome.EXPIRED, record_id=record.id)

    # Unverified and unexpired yet the UPDATE matched nothing: the row
    # changed between the two statements. Treat it as unmatched.
    logger.warning(f"Record {record.id} changed during redemption")
    return RedeemResult(outcome=RedeemOutcome.NOT_FOUND)


def build_verification_link(token: str, base_url: Optional[str] = None) -> str:
    """
    Build the confirmation link embedded in the outbound email.

    Only the token is included; the record id is never exposed.
    """
    base_url = (base_url or settings.BASE_URL).rstrip("/")
    return f"{base_url}/verify?{urlencode({'t': token})}"
