"""
CSRF token model.

One row per (session, form). Issuing a new token for the same form
overwrites the previous row.
"""

from sqlalchemy import Column, String, DateTime, Integer, UniqueConstraint, Index
from app.core.database import Base


class CsrfToken(Base):
    __tablename__ = "csrf_tokens"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(String(64), nullable=False)
    form_name = Column(String(100), nullable=False)
    token = Column(String(64), nullable=False)
    issued_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint('session_id', 'form_name', name='uq_csrf_tokens_session_form'),
        Index('ix_csrf_tokens_issued_at', 'issued_at'),
    )

    def __repr__(self):
        return f"<CsrfToken(session_id={self.session_id[:8]}..., form_name='{self.form_name}', issued_at={self.issued_at})>"
