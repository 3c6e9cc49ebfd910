"""
Visitor session identifier.

The only session state this service keeps is the CSRF table, keyed by a
random id carried in a cookie. The cookie itself is written by
security_headers.set_session_cookie so its attributes stay in one place.
"""

import re
from typing import Optional
from fastapi import Request

from app.core.config import settings
from app.core.tokens import generate_token

_SESSION_ID_RE = re.compile(r"^[0-9a-f]{64}$")


def read_session_id(request: Request) -> Optional[str]:
    """Session id from the request cookie, or None if absent or malformed."""
    value = request.cookies.get(settings.SESSION_COOKIE_NAME)
    if value and _SESSION_ID_RE.match(value):
        return value
    return None


def new_session_id() -> str:
    return generate_token()
