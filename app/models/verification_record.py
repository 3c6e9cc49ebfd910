"""
Verification record model for opt-in email confirmation.

Each record holds a single-use 256-bit token. The token alone identifies
the record, so the unique constraint on it is load-bearing.
"""

from datetime import datetime, timezone
from sqlalchemy import Column, String, Boolean, DateTime, Integer, Index
from app.core.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class VerificationRecord(Base):
    """
    Registration awaiting (or having completed) email confirmation.

    Features:
    - 64-character hex token, unique across all records
    - Expiration timestamp (unverified tokens stop working after it)
    - verified flag flipped at most once by a conditional UPDATE
    - Audit payload (email, name, subscription choice, source IP)
    """
    __tablename__ = "verification_records"

    id = Column(Integer, primary_key=True, autoincrement=True)

    token = Column(String(64), nullable=False, unique=True, index=True)

    verified = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    verified_at = Column(DateTime(timezone=True), nullable=True)

    # Audit payload
    email = Column(String(255), nullable=False)
    name = Column(String(255), nullable=True)
    subscribed = Column(Boolean, nullable=False, default=False)
    source_ip = Column(String(255), nullable=True)

    __table_args__ = (
        Index('ix_verification_records_email', 'email'),
        Index('ix_verification_records_created_at', 'created_at'),
    )

    def __repr__(self):
        # Never print the full token
        return f"<VerificationRecord(id={self.id}, token={self.token[:8] if self.token else None}..., verified={self.verified})>"
