"""
Database models package.
"""

from app.models.verification_record import VerificationRecord
from app.models.csrf_token import CsrfToken

__all__ = ["VerificationRecord", "CsrfToken"]
