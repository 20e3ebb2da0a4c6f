"""
auth/single_use.py -- Email-verification and password-reset tokens.

A single-use token is 32 random bytes rendered URL-safe. The plaintext goes
to the user (by email) exactly once and is never stored. The identity record
holds only SHA-256(plaintext) plus an absolute expiry.

A fast digest is enough here: the token carries 256 bits of entropy, so the
hash only has to stop a leaked database row from being replayed as-is. The
slow, salted scheme in auth/passwords.py is for user-chosen secrets.

Every rejection (wrong value, expired, already redeemed, never issued)
collapses to the same None result so callers cannot become an oracle for
which of those happened.

Layer rule: no imports from api/ or mailer/.
"""

from __future__ import annotations

import hashlib
import logging
import secrets
import time
from collections.abc import Callable

from auth.models import TokenKind, User
from auth.store import UserStore
from core.config import get_settings

logger = logging.getLogger("taskflow.auth")

TOKEN_BYTES = 32


def hash_token(plaintext: str) -> str:
    """Return the hex SHA-256 digest used to store and look up a token."""
    return hashlib.sha256(plaintext.encode("utf-8")).hexdigest()


def default_ttls() -> dict[TokenKind, int]:
    settings = get_settings()
    return {
        TokenKind.EMAIL_VERIFICATION: settings.email_verification_ttl_seconds,
        TokenKind.PASSWORD_RESET: settings.password_reset_ttl_seconds,
    }


class SingleUseTokenManager:
    """Issues, looks up and redeems single-use tokens against a UserStore.

    consume() only finds the owner of a live token. It does not clear it,
    because what redemption means differs per kind ("email is verified" vs
    "password is now X") and must land in the same write as the clearing.
    redeem() is that write.
    """

    def __init__(
        self,
        store: UserStore,
        ttl_seconds: dict[TokenKind, int] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._ttl = ttl_seconds or default_ttls()
        self._clock = clock

    def issue(self, user_id: int, kind: TokenKind) -> str:
        """Generate a token, persist its hash and expiry, return the plaintext.

        Issuing again for the same user and kind replaces the stored hash, so
        any earlier unconsumed token of that kind stops working.
        """
        plaintext = secrets.token_urlsafe(TOKEN_BYTES)
        expires_at = self._clock() + self._ttl[kind]
        if not self._store.set_single_use_token(user_id, kind, hash_token(plaintext), expires_at):
            raise LookupError(f"user {user_id} does not exist")
        logger.info("Issued %s token for user_id=%s", kind.value, user_id)
        return plaintext

    def consume(self, kind: TokenKind, plaintext: str | None) -> User | None:
        """Return the identity holding this live token, or None."""
        if not plaintext or not isinstance(plaintext, str):
            return None
        return self._store.find_by_single_use_token(kind, hash_token(plaintext), self._clock())

    def redeem(self, kind: TokenKind, plaintext: str | None, **changes) -> User | None:
        """Clear the token and apply changes in one atomic store update.

        Returns the updated identity, or None if the token is not live (or
        another request redeemed it first).
        """
        if not plaintext or not isinstance(plaintext, str):
            return None
        user = self._store.redeem_single_use_token(kind, hash_token(plaintext), self._clock(), **changes)
        if user is not None:
            logger.info("Redeemed %s token for user_id=%s", kind.value, user.id)
        return user
