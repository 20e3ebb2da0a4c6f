"""
auth/passwords.py -- Credential hasher and constant-time login check.

Passwords are low-entropy, user-chosen secrets, so they get bcrypt: a slow,
salted one-way function whose cost factor (BCRYPT_ROUNDS) makes offline
brute force expensive even with the stored hash in hand. Do not confuse this
with auth/single_use.py, which hashes high-entropy random tokens with a plain
SHA-256 digest.

bcrypt is used directly rather than through passlib: passlib's wrap-bug
detection feeds bcrypt 4.x a >72-byte password, which it rejects.

Layer rule: no imports from api/ or mailer/.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

import bcrypt

from core.config import get_settings

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import UserStore

logger = logging.getLogger("taskflow.auth")

_settings = get_settings()

# bcrypt input limit. Longer passwords are refused, never silently truncated.
MAX_PASSWORD_BYTES = 72


def password_too_long(plain: str) -> bool:
    return len(plain.encode("utf-8")) > MAX_PASSWORD_BYTES


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    Raises ValueError for an empty password or one over MAX_PASSWORD_BYTES
    once UTF-8 encoded; request validation turns both into a 400 first.
    """
    if not isinstance(plain, str) or not plain:
        raise ValueError("Password must be a non-empty string.")
    if password_too_long(plain):
        raise ValueError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes when UTF-8 encoded.")
    salt = bcrypt.gensalt(rounds=_settings.bcrypt_rounds)
    return bcrypt.hashpw(plain.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain: str, hashed: str | None) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    A malformed or missing hash is a mismatch, not an error, and so is a
    password too long to have been hashed.
    """
    if not plain or not hashed or password_too_long(plain):
        return False
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


# Computed once at module load so the first login attempt for an unknown
# email costs the same as every other one.
_DUMMY_HASH: str = hash_password("taskflow_timing_dummy")


@dataclass(frozen=True)
class AuthenticationResult:
    """Outcome of a password login.

    status is "ok", "invalid" (unknown email or wrong password, not
    distinguished) or "inactive" (correct password, deactivated account).
    """

    status: str
    user: User | None = None

    @property
    def ok(self) -> bool:
        return self.status == "ok"


def authenticate_user(store: UserStore, email: str, password: str) -> AuthenticationResult:
    """Check an email/password pair with timing equalization.

    Always runs exactly one bcrypt comparison, whether or not the email is
    registered, so response time does not reveal account existence.
    The inactive outcome is only reported after the password was proven
    correct; a wrong password on a deactivated account is just "invalid".
    """
    user = store.get_by_email(email)
    if user is None:
        verify_password(password, _DUMMY_HASH)
        return AuthenticationResult("invalid")
    if not verify_password(password, user.hashed_password):
        return AuthenticationResult("invalid")
    if not user.is_active:
        return AuthenticationResult("inactive", user)
    return AuthenticationResult("ok", user)
