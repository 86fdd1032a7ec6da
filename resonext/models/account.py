"""Authenticated session model."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel


class SessionEvent(str, Enum):
    """Events broadcast by an AuthClient to its session listeners."""

    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"


class AuthSession(BaseModel):
    """A signed-in identity. The account id is the email address."""

    access_token: str
    email: str
    refresh_token: str = ""
    full_name: str = ""
    expires_at: Optional[int] = None

    @property
    def account_id(self) -> str:
        return self.email.strip().lower()
