"""
Email verification endpoint.

GET /verify?t=<token>[&id=<identity>] redeems a confirmation token.
Unknown, mismatched and expired tokens get the same status and body.
"""

import logging
import re
from typing import Optional
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import PlainTextResponse
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.deps import get_client_ip
from app.core.errors import handle_database_error
from app.core.security_headers import apply_no_cache_headers
from app.core.verification import RedeemOutcome, redeem

router = APIRouter(tags=["Email Verification"])
logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"^[0-9a-f]{64}$")
_MAX_IDENTITY = 2 ** 31 - 1

VERIFIED_MESSAGE = "Email address successfully validated"
ALREADY_VERIFIED_MESSAGE = "Email address has already been validated"
NOT_MATCHED_MESSAGE = "This verification link is invalid or has expired."
MISSING_TOKEN_MESSAGE = "Missing verification token."


def _text(message: str, status_code: int = 200) -> PlainTextResponse:
    response = PlainTextResponse(message, status_code=status_code)
    apply_no_cache_headers(response)
    return response


def _parse_identity(value: Optional[str]) -> Optional[int]:
    if value is None or value.strip() == "":
        return None
    value = value.strip()
    if not value.isdigit() or int(value) > _MAX_IDENTITY:
        raise ValueError("identity must be a positive integer")
    return int(value)


@router.get("/verify", response_class=PlainTextResponse)
def verify_email(
    request: Request,
    t: Optional[str] = Query(default=None),
    identity_param: Optional[str] = Query(default=None, alias="id"),
    db: Session = Depends(get_db)
):
    """
    Confirm an email address with the token from the confirmation link.

    The optional id parameter is accepted for links that carry it; when
    present it must match the token's record.

    Returns:
        200 on success or when already confirmed, 404 when nothing matched
        (including expiry), 400 when the token is missing, 503 on database failure
    """
    client_ip = get_client_ip(request)

    if t is None or t.strip() == "":
        return _text(MISSING_TOKEN_MESSAGE, status_code=400)

    token = t.strip().lower()
    try:
        identity = _parse_identity(identity_param)
    except ValueError:
        identity = None
        token = ""

    if not _TOKEN_RE.match(token):
        logger.warning(f"Malformed verification request - IP: {client_ip}")
        return _text(NOT_MATCHED_MESSAGE, status_code=404)

    result = redeem(db, token, identity=identity)

    if result.outcome == RedeemOutcome.VERIFIED:
        return _text(VERIFIED_MESSAGE)

    if result.outcome == RedeemOutcome.ALREADY_VERIFIED:
        logger.info(f"Record {result.record_id} already verified")
        return _text(ALREADY_VERIFIED_MESSAGE)

    if result.outcome == RedeemOutcome.STORE_ERROR:
        return _text(handle_database_error(result.error, "verification"), status_code=503)

    if result.outcome == RedeemOutcome.EXPIRED:
        logger.info(f"Expired token presented for record {result.record_id} - IP: {client_ip}")
    else:
        logger.warning(f"Verification token not matched - IP: {client_ip}")
    return _text(NOT_MATCHED_MESSAGE, status_code=404)
