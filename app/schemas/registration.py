"""
Pydantic schemas for the registration form.
"""

import re
from typing import Optional
from pydantic import BaseModel, EmailStr, Field, field_validator

_ESCAPED_CHAR = re.compile(r"\\(.?)", re.DOTALL)


def sanitize_input(value: Optional[str]) -> str:
    """Remove backslash escapes and surrounding whitespace."""
    if value is None:
        return ""
    return _ESCAPED_CHAR.sub(r"\1", value).strip()


class RegistrationForm(BaseModel):
    """Submitted registration fields after sanitation"""
    email: EmailStr
    name: Optional[str] = Field(default=None, max_length=255)
    subscribe: bool = False

    @field_validator('email', mode='before')
    @classmethod
    def clean_email(cls, v):
        return sanitize_input(v)

    @field_validator('name', mode='before')
    @classmethod
    def clean_name(cls, v):
        cleaned = sanitize_input(v)
        return cleaned or None

    @field_validator('subscribe', mode='before')
    @classmethod
    def checkbox_to_bool(cls, v):
        """A checkbox is on when the field is present at all"""
        if isinstance(v, bool):
            return v
        return v is not None
