"""
HTTP security headers.

SecurityHeadersMiddleware applies the policy once per response before the
body is sent:
- Content-Security-Policy (optionally with a per-request script nonce)
- X-Frame-Options / frame-ancestors against clickjacking
- X-Content-Type-Options against MIME sniffing
- Referrer-Policy and Permissions-Policy
- Strict-Transport-Security when the request arrived over HTTPS

The policy is best-effort hardening: failures are logged and the response
goes out unchanged. The nonce is stored on request.state.csp_nonce for
pages that render inline scripts.
"""

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from app.core.config import settings
from app.core.tokens import generate_nonce

logger = logging.getLogger(__name__)

HSTS_VALUE = "max-age=31536000; includeSubDomains"

PERMISSIONS_POLICY = ", ".join([
    "accelerometer=()",
    "camera=()",
    "geolocation=()",
    "gyroscope=()",
    "magnetometer=()",
    "microphone=()",
    "payment=()",
    "usb=()",
])


@dataclass
class SecurityHeaderOptions:
    csp_report_only: bool = False
    allow_inline_scripts: bool = False
    allow_inline_styles: bool = True
    frame_ancestors: str = "'none'"
    enable_hsts: bool = True
    trust_proxy_headers: bool = False

    @classmethod
    def from_settings(cls) -> "SecurityHeaderOptions":
        return cls(
            csp_report_only=settings.CSP_REPORT_ONLY,
            allow_inline_scripts=settings.CSP_ALLOW_INLINE_SCRIPTS,
            allow_inline_styles=settings.CSP_ALLOW_INLINE_STYLES,
            frame_ancestors=settings.CSP_FRAME_ANCESTORS,
            enable_hsts=settings.ENABLE_HSTS,
            trust_proxy_headers=settings.TRUST_PROXY_HEADERS,
        )


def build_csp_policy(options: SecurityHeaderOptions, nonce: Optional[str] = None) -> str:
    """
    Build the Content-Security-Policy value.

    Args:
        options: Header policy options
        nonce: Per-request nonce, added to script-src when inline scripts are allowed

    Returns:
        CSP policy string ready for the header
    """
    script_src = "script-src 'self' https://www.google.com/recaptcha/ https://www.gstatic.com/recaptcha/"
    if options.allow_inline_scripts and nonce:
        script_src += f" 'nonce-{nonce}'"

    style_src = "style-src 'self'"
    if options.allow_inline_styles:
        style_src += " 'unsafe-inline'"

    directives = [
        "default-src 'self'",
        script_src,
        style_src,
        "img-src 'self' data: https:",
        "font-src 'self' data:",
        "connect-src 'self'",
        "frame-src https://www.google.com/recaptcha/ https://recaptcha.google.com/recaptcha/",
        f"frame-ancestors {options.frame_ancestors}",
        "form-action 'self'",
        "base-uri 'self'",
        "object-src 'none'",
        "upgrade-insecure-requests",
    ]
    return "; ".join(directives)


def is_secure_request(request: Request, trust_proxy_headers: bool = False) -> bool:
    """True when the request reached us (or the trusted proxy) over HTTPS."""
    if request.url.scheme == "https":
        return True
    if trust_proxy_headers:
        forwarded = request.headers.get("X-Forwarded-Proto", "")
        return forwarded.split(",")[0].strip().lower() == "https"
    return False


def apply_security_headers(
    request: Request,
    response: Response,
    nonce: Optional[str],
    options: SecurityHeaderOptions,
) -> None:
    """Set the security headers on a response. Never raises."""
    try:
        csp_header = "Content-Security-Policy-Report-Only" if options.csp_report_only else "Content-Security-Policy"
        response.headers[csp_header] = build_csp_policy(options, nonce)

        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Permissions-Policy"] = PERMISSIONS_POLICY
        response.headers["X-XSS-Protection"] = "1; mode=block"

        if options.enable_hsts and is_secure_request(request, options.trust_proxy_headers):
            response.headers["Strict-Transport-Security"] = HSTS_VALUE

        if "x-powered-by" in response.headers:
            del response.headers["x-powered-by"]
    except Exception:
        logger.exception(f"Failed to apply security headers for {request.url.path}")


def apply_no_cache_headers(response: Response) -> None:
    """Prevent caching of dynamic pages (forms, verification results)."""
    response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate, max-age=0"
    response.headers["Pragma"] = "no-cache"
    response.headers["Expires"] = "0"


def set_session_cookie(request: Request, response: Response, value: str) -> None:
    """
    Issue the session cookie with hardened attributes.

    HttpOnly and SameSite=Strict always; Secure when the connection is encrypted.
    """
    response.set_cookie(
        key=settings.SESSION_COOKIE_NAME,
        value=value,
        httponly=True,
        samesite="strict",
        secure=is_secure_request(request, settings.TRUST_PROXY_HEADERS),
        path="/",
    )


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Adds the security header policy to every response."""

    def __init__(self, app: FastAPI, options: Optional[SecurityHeaderOptions] = None) -> None:
        super().__init__(app)
        self.options = options or SecurityHeaderOptions.from_settings()

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        nonce = None
        if self.options.allow_inline_scripts:
            nonce = generate_nonce()
        request.state.csp_nonce = nonce or ""

        response = await call_next(request)
        apply_security_headers(request, response, nonce, self.options)
        return response
