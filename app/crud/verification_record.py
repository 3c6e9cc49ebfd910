"""
CRUD operations for VerificationRecord.

Encapsulates every query the verification protocol needs. All statements
are parameterized through the SQLAlchemy expression layer. Errors from the
database propagate as SQLAlchemyError; the protocol layer turns them into
explicit result kinds.
"""

from datetime import datetime
from typing import Optional
from sqlalchemy import update
from sqlalchemy.orm import Session
from app.models.verification_record import VerificationRecord


def create(
    db: Session,
    token: str,
    email: str,
    expires_at: datetime,
    created_at: datetime,
    name: Optional[str] = None,
    subscribed: bool = False,
    source_ip: Optional[str] = None,
) -> VerificationRecord:
    """
    Insert a new unverified record.

    Raises:
        IntegrityError: If the token collides with an existing one
    """
    record = VerificationRecord(
        token=token,
        email=email,
        name=name,
        subscribed=subscribed,
        source_ip=source_ip,
        verified=False,
        created_at=created_at,
        expires_at=expires_at,
    )

    db.add(record)
    db.commit()
    db.refresh(record)

    return record


def get_by_token(db: Session, token: str, identity: Optional[int] = None) -> Optional[VerificationRecord]:
    """
    Look up a record by token, optionally also requiring a matching id.

    Returns:
        VerificationRecord if found, None otherwise
    """
    query = db.query(VerificationRecord).filter(VerificationRecord.token == token)
    if identity is not None:
        query = query.filter(VerificationRecord.id == identity)
    return query.first()


def mark_verified(
    db: Session,
    token: str,
    now: datetime,
    identity: Optional[int] = None,
) -> int:
    """
    Atomically flip verified from false to true.

    Runs a single conditional UPDATE; only an unverified, unexpired row
    matches, so concurrent callers cannot both succeed.

    Returns:
        int: Number of rows updated (0 or 1)
    """
    stmt = (
        update(VerificationRecord)
        .where(
            VerificationRecord.token == token,
            VerificationRecord.verified.is_(False),
            VerificationRecord.expires_at > now,
        )
        .values(verified=True, verified_at=now)
        .execution_options(synchronize_session=False)
    )
    if identity is not None:
        stmt = stmt.where(VerificationRecord.id == identity)

    result = db.execute(stmt)
    db.commit()
    return result.rowcount
