from pydantic_settings import BaseSettings
from typing import List, Optional
from pydantic import field_validator


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    PROJECT_NAME: str = "Email Confirmation Service"

    # "development" reveals infrastructure error detail to the client.
    # Never make it the default.
    APP_ENV: str = "production"

    # Logging
    LOG_LEVEL: str = "INFO"
    JSON_LOGS: bool = True

    # Database Settings
    POSTGRES_USER: str = "user"
    POSTGRES_PASSWORD: str = "password"
    POSTGRES_SERVER: str = "localhost"
    POSTGRES_PORT: str = "5432"
    POSTGRES_DB: str = "optin_db"

    # Full URL override (e.g. sqlite:///./local.db)
    SQLALCHEMY_DATABASE_URI: Optional[str] = None

    @property
    def DATABASE_URL(self) -> str:
        if self.SQLALCHEMY_DATABASE_URI:
            return self.SQLALCHEMY_DATABASE_URI
        return f"postgresql://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_SERVER}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"

    # Redis Settings (Celery broker for the maintenance worker)
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0

    @property
    def REDIS_URL(self) -> str:
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    # Public URL the confirmation link points at
    BASE_URL: str = "http://localhost:8000"

    # Google reCAPTCHA
    RECAPTCHA_SITEKEY: str = ""
    RECAPTCHA_SECRET: str = ""
    RECAPTCHA_VERIFY_URL: str = "https://www.google.com/recaptcha/api/siteverify"
    RECAPTCHA_TIMEOUT_SECONDS: float = 5.0

    # AWS SES Settings
    AWS_REGION: str = "us-east-1"
    AWS_ACCESS_KEY_ID: str = ""
    AWS_SECRET_ACCESS_KEY: str = ""

    # Outbound confirmation email
    EMAIL_FROM: str = ""
    EMAIL_FROM_NAME: str = ""
    EMAIL_SUBJECT: str = "Please confirm your email address"
    EMAIL_BODY: str = "Please click the following link to confirm your email address:"

    # Token lifecycle
    VERIFICATION_TOKEN_BYTES: int = 32
    VERIFICATION_TOKEN_TTL_HOURS: int = 72
    CSRF_TOKEN_TTL_SECONDS: int = 3600
    CSRF_STORE_BACKEND: str = "database"  # "database" or "memory"
    CSRF_CLEANUP_INTERVAL_SECONDS: int = 900

    SESSION_COOKIE_NAME: str = "optin_session"

    # Security headers
    CSP_REPORT_ONLY: bool = False
    CSP_ALLOW_INLINE_SCRIPTS: bool = False
    CSP_ALLOW_INLINE_STYLES: bool = True
    CSP_FRAME_ANCESTORS: str = "'none'"
    ENABLE_HSTS: bool = True
    TRUST_PROXY_HEADERS: bool = False

    @field_validator("CSRF_STORE_BACKEND")
    @classmethod
    def validate_csrf_backend(cls, v: str) -> str:
        """Only the two shipped store implementations are accepted"""
        v = v.lower()
        if v not in ("database", "memory"):
            raise ValueError("CSRF_STORE_BACKEND must be 'database' or 'memory'")
        return v

    @field_validator("VERIFICATION_TOKEN_BYTES")
    @classmethod
    def validate_token_bytes(cls, v: int) -> int:
        """At least 256 bits of entropy"""
        if v < 32:
            raise ValueError("VERIFICATION_TOKEN_BYTES must be at least 32")
        return v

    def missing_required(self) -> List[str]:
        """
        Names of settings that must be non-empty before serving traffic.

        Returns:
            List of setting names that are empty
        """
        required = [
            "BASE_URL",
            "RECAPTCHA_SITEKEY",
            "RECAPTCHA_SECRET",
            "EMAIL_FROM",
            "EMAIL_FROM_NAME",
            "EMAIL_SUBJECT",
            "EMAIL_BODY",
        ]
        return [name for name in required if not str(getattr(self, name)).strip()]

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
