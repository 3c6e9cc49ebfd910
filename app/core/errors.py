"""
Error handling policy.

Three kinds of failure, all scoped to a single request and never retried here:
- INPUT: missing or malformed fields. Generic message, no detail.
- INTEGRITY: CSRF mismatch, unknown/expired/used token. Distinct in logs,
  information-minimal to the client.
- INFRASTRUCTURE: database, mail transport, captcha service. Full detail to
  the operator log; generic apology to the client unless APP_ENV is
  "development".
"""

import html
import logging
from typing import Optional

from app.core.config import settings

logger = logging.getLogger(__name__)

GENERIC_ERROR_MESSAGE = "An error occurred. Please try again later."
REGISTRATION_FAILED_MESSAGE = "Registration failed. Please try again later."
VERIFICATION_FAILED_MESSAGE = "Email verification failed. Please try again later."
DATABASE_ERROR_MESSAGE = "A database error occurred. Please try again later."
MAIL_FAILED_MESSAGE = "Failed to send email. Please contact support if this issue persists."
CAPTCHA_UNAVAILABLE_MESSAGE = "Captcha verification is temporarily unavailable. Please try again later."


def is_development() -> bool:
    """Check if we're in development mode"""
    return settings.APP_ENV == "development"


def handle_error(e: BaseException, user_message: str = GENERIC_ERROR_MESSAGE) -> str:
    """
    Log an exception with traceback and return the message to show the user.

    Args:
        e: The exception to handle
        user_message: The message to display to the user

    Returns:
        str: HTML-escaped user message
    """
    logger.error(f"{type(e).__name__}: {e}", exc_info=(type(e), e, e.__traceback__))
    return html.escape(user_message, quote=True)


def handle_database_error(e: BaseException, context: Optional[str] = None) -> str:
    """
    Message for a database failure.

    Args:
        e: The database exception
        context: "registration" or "verification" for a more specific message

    Returns:
        str: Message to show the user
    """
    if is_development():
        logger.error(f"Database error ({context or 'unknown'}): {e}")
        return html.escape(str(e), quote=True)

    if context == "registration":
        user_message = REGISTRATION_FAILED_MESSAGE
    elif context == "verification":
        user_message = VERIFICATION_FAILED_MESSAGE
    else:
        user_message = DATABASE_ERROR_MESSAGE
    return handle_error(e, user_message)


def handle_mail_error(error_info: str) -> str:
    """
    Message for a mail transport failure.

    Args:
        error_info: Error description returned by the mailer

    Returns:
        str: Message to show the user
    """
    logger.error(f"Mail Error: {error_info}")

    if is_development():
        return "Mail Error: " + html.escape(error_info, quote=True)
    return MAIL_FAILED_MESSAGE


def handle_captcha_error(error_info: str) -> str:
    """Message for an unreachable or misbehaving captcha service."""
    logger.error(f"Captcha service error: {error_info}")

    if is_development():
        return "Captcha Error: " + html.escape(error_info, quote=True)
    return CAPTCHA_UNAVAILABLE_MESSAGE
