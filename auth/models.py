"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own domain
shape; the store and the routes do the work.

Layer rule: no imports from api/ or mailer/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class TokenKind(str, Enum):
    """The two independent single-use token slots on an identity."""

    EMAIL_VERIFICATION = "email_verification"
    PASSWORD_RESET = "password_reset"


def default_preferences() -> dict:
    return {
        "notifications": {"email": True, "push": True, "mentions": True, "assignments": True},
        "theme": "system",
        "language": "en",
    }


@dataclass
class User:
    """A durable account record (the identity the tokens speak for).

    email is always stored lower-cased; the store normalizes on write and on
    lookup so callers never have to.

    The *_token fields hold SHA-256 hex digests of single-use tokens, never the
    plaintext. The matching *_expires fields are absolute epoch seconds. Both
    are None when the identity has no live token of that kind.
    """

    email: str
    first_name: str
    last_name: str
    role: str = "user"  # "user" or "admin"
    id: int | None = None
    hashed_password: str | None = None
    avatar: str | None = None
    is_active: bool = True
    is_email_verified: bool = False
    preferences: dict = field(default_factory=default_preferences)
    email_verification_token: str | None = None
    email_verification_expires: float | None = None
    password_reset_token: str | None = None
    password_reset_expires: float | None = None
    last_login: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
