"""
Google reCAPTCHA verification.

Posts the widget response and the client IP to the siteverify endpoint.
Network failures are reported through CaptchaResult.service_error so the
caller can treat them as infrastructure errors.
"""

import logging
from dataclasses import dataclass, field
from functools import lru_cache
from typing import List, Optional
import httpx
from app.core.config import settings

logger = logging.getLogger(__name__)


@dataclass
class CaptchaResult:
    success: bool
    error_codes: List[str] = field(default_factory=list)
    service_error: Optional[str] = None


class RecaptchaVerifier:
    """Client for the reCAPTCHA siteverify API."""

    def __init__(
        self,
        secret: str,
        verify_url: str,
        timeout: float = 5.0,
        transport: Optional[httpx.BaseTransport] = None
    ):
        self.secret = secret
        self.verify_url = verify_url
        self.timeout = timeout
        self.transport = transport

    def verify(self, response: str, remote_ip: Optional[str] = None) -> CaptchaResult:
        """
        Verify a captcha response token.

        Args:
            response: Value of the g-recaptcha-response form field
            remote_ip: Client IP address passed on to Google

        Returns:
            CaptchaResult: success flag and error codes from Google
        """
        data = {"secret": self.secret, "response": response}
        if remote_ip:
            data["remoteip"] = remote_ip

        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                resp = client.post(self.verify_url, data=data)
                resp.raise_for_status()
                payload = resp.json()
        except httpx.HTTPError as e:
            return CaptchaResult(success=False, service_error=f"{type(e).__name__}: {e}")
        except ValueError as e:
            return CaptchaResult(success=False, service_error=f"Invalid siteverify response: {e}")

        success = payload.get("success") is True
        error_codes = [str(code) for code in payload.get("error-codes", [])]
        if not success:
            logger.info(f"reCAPTCHA rejected response: {error_codes}")
        return CaptchaResult(success=success, error_codes=error_codes)


@lru_cache
def get_captcha_verifier() -> RecaptchaVerifier:
    """Dependency returning the shared verifier (overridden in tests)."""
    return RecaptchaVerifier(
        secret=settings.RECAPTCHA_SECRET,
        verify_url=settings.RECAPTCHA_VERIFY_URL,
        timeout=settings.RECAPTCHA_TIMEOUT_SECONDS,
    )
