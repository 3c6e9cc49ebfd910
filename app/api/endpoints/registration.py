"""
Registration endpoints.

- GET /register: render the opt-in form with a fresh CSRF token
- POST /register: validate CSRF and captcha, issue a verification token,
  email the confirmation link

The CSRF check runs before any captcha call, database write or mail send.
"""

import html
import logging
from typing import Optional
from fastapi import APIRouter, Depends, Form, Request
from fastapi.responses import HTMLResponse, PlainTextResponse
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.csrf import CsrfStore, csrf_token_field, issue_token, verify_csrf_from_form
from app.core.database import get_db
from app.core.deps import get_client_ip, get_csrf_store
from app.core.errors import handle_captcha_error, handle_database_error, handle_mail_error
from app.core.security_headers import apply_no_cache_headers, set_session_cookie
from app.core.session import new_session_id, read_session_id
from app.core.verification import RegistrationPayload, build_verification_link, issue
from app.schemas.registration import RegistrationForm
from app.services.captcha_service import RecaptchaVerifier, get_captcha_verifier
from app.services.email_service import EmailService, build_confirmation_message, get_email_service

router = APIRouter(tags=["Registration"])
logger = logging.getLogger(__name__)

FORM_NAME = "registration"

CSRF_REJECTED_MESSAGE = "Your form session has expired or is invalid. Please reload the page and try again."
CAPTCHA_MISSING_MESSAGE = "Please complete the captcha."
CAPTCHA_FAILED_MESSAGE = "Captcha verification failed. Please try again."
INVALID_INPUT_MESSAGE = "Please provide a valid name and email address."
EMAIL_SENT_MESSAGE = "Email has been sent; please validate your email before continuing"


def render_registration_form(csrf_field: str, sitekey: str) -> str:
    """HTML page with the opt-in form. csrf_field must already be escaped."""
    return f"""<!doctype html>
<html lang="en">
    <head>
        <meta charset="utf-8">
        <title>{html.escape(settings.PROJECT_NAME)}</title>
        <meta name="viewport" content="width=device-width, initial-scale=1">
        <script src="https://www.google.com/recaptcha/api.js" async defer></script>
    </head>
    <body>
        <form method="POST" action="/register">
            {csrf_field}
            <label for="name">Name:</label>
            <input id="name" name="name" type="text" required>
            <label for="email">Email:</label>
            <input id="email" name="email" type="email" required>
            <label>
                <input id="subscribe" name="subscribe" type="checkbox">
                Subscribe
            </label>
            <div class="g-recaptcha" data-sitekey="{html.escape(sitekey, quote=True)}"></div>
            <input type="submit">
        </form>
    </body>
</html>
"""


def _text(message: str, status_code: int = 200) -> PlainTextResponse:
    response = PlainTextResponse(message, status_code=status_code)
    apply_no_cache_headers(response)
    return response


@router.get("/register", response_class=HTMLResponse)
def registration_form(
    request: Request,
    db: Session = Depends(get_db),
    csrf_store: CsrfStore = Depends(get_csrf_store)
):
    """
    Render the registration form.

    Starts a session if the visitor has none and issues a new CSRF token,
    replacing any earlier token for this form.
    """
    session_id = read_session_id(request)
    is_new_session = session_id is None
    if is_new_session:
        session_id = new_session_id()

    try:
        token = issue_token(csrf_store, session_id, FORM_NAME)
    except SQLAlchemyError as e:
        db.rollback()
        return _text(handle_database_error(e, "registration"), status_code=503)

    response = HTMLResponse(render_registration_form(csrf_token_field(token), settings.RECAPTCHA_SITEKEY))
    apply_no_cache_headers(response)
    if is_new_session:
        set_session_cookie(request, response, session_id)
    return response


@router.post("/register", response_class=PlainTextResponse)
def submit_registration(
    request: Request,
    name: Optional[str] = Form(default=None),
    email: Optional[str] = Form(default=None),
    subscribe: Optional[str] = Form(default=None),
    csrf_token: Optional[str] = Form(default=None),
    captcha_response: Optional[str] = Form(default=None, alias="g-recaptcha-response"),
    db: Session = Depends(get_db),
    csrf_store: CsrfStore = Depends(get_csrf_store),
    captcha: RecaptchaVerifier = Depends(get_captcha_verifier),
    mailer: EmailService = Depends(get_email_service),
):
    """
    Process the registration form.

    Flow:
    1. CSRF token validated and consumed (403 on failure, nothing else runs)
    2. Captcha field present and inputs valid (400 otherwise)
    3. Captcha verified with Google
    4. Verification record created with a fresh token
    5. Confirmation link emailed

    Returns:
        Plain-text status message
    """
    client_ip = get_client_ip(request)

    try:
        csrf_ok = verify_csrf_from_form(csrf_store, read_session_id(request), csrf_token, FORM_NAME, client_ip)
    except SQLAlchemyError as e:
        db.rollback()
        return _text(handle_database_error(e, "registration"), status_code=503)
    if not csrf_ok:
        return _text(CSRF_REJECTED_MESSAGE, status_code=403)

    if not captcha_response:
        logger.warning(f"Registration without captcha response - IP: {client_ip}")
        return _text(CAPTCHA_MISSING_MESSAGE, status_code=400)

    try:
        form = RegistrationForm(email=email or "", name=name, subscribe=subscribe)
    except ValidationError:
        logger.info(f"Registration input rejected - IP: {client_ip}")
        return _text(INVALID_INPUT_MESSAGE, status_code=400)

    captcha_result = captcha.verify(captcha_response, client_ip)
    if captcha_result.service_error:
        return _text(handle_captcha_error(captcha_result.service_error), status_code=503)
    if not captcha_result.success:
        logger.warning(f"Captcha failed - IP: {client_ip}, codes: {captcha_result.error_codes}")
        return _text(CAPTCHA_FAILED_MESSAGE, status_code=400)

    result = issue(db, RegistrationPayload(
        email=str(form.email),
        name=form.name,
        subscribed=form.subscribe,
        source_ip=client_ip,
    ))
    if not result.ok:
        return _text(handle_database_error(result.error, "registration"), status_code=503)

    link = build_verification_link(result.token)
    mail_result = mailer.send(build_confirmation_message(str(form.email), link))
    if not mail_result.ok:
        return _text(handle_mail_error(mail_result.error or "unknown error"), status_code=503)

    logger.info(f"Confirmation email sent for record {result.record.id}")
    return _text(EMAIL_SENT_MESSAGE)
