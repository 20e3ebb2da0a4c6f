"""
tests/test_passwords.py -- Unit tests for auth/passwords.py.

Covers:
  - hash_password produces salted bcrypt hashes that verify
  - passwords over 72 UTF-8 bytes are refused, never truncated
  - verify_password treats missing/malformed hashes as a mismatch
  - authenticate_user outcomes: ok, invalid (unknown email / wrong password), inactive
  - authenticate_user runs exactly one bcrypt check on every path
"""

from __future__ import annotations

from unittest.mock import patch

import pytest

from auth import passwords
from auth.passwords import authenticate_user, hash_password, verify_password


class TestHashPassword:
    def test_hash_verifies(self) -> None:
        hashed = hash_password("correct horse battery")
        assert hashed.startswith("$2")
        assert verify_password("correct horse battery", hashed)

    def test_hash_is_salted(self) -> None:
        """The same password hashed twice must give different hashes."""
        assert hash_password("Password123") != hash_password("Password123")

    def test_hash_never_contains_plaintext(self) -> None:
        assert "Password123" not in hash_password("Password123")

    def test_empty_password_rejected(self) -> None:
        with pytest.raises(ValueError):
            hash_password("")

    def test_72_bytes_accepted(self) -> None:
        assert verify_password("x" * 72, hash_password("x" * 72))

    @pytest.mark.parametrize("plain", ["p" * 73, "é" * 37])
    def test_over_72_bytes_rejected(self, plain) -> None:
        with pytest.raises(ValueError, match="72 bytes"):
            hash_password(plain)


class TestVerifyPassword:
    def test_wrong_password(self) -> None:
        assert not verify_password("wrong-password", hash_password("Password123"))

    @pytest.mark.parametrize("hashed", [None, "", "not-a-bcrypt-hash"])
    def test_missing_or_malformed_hash_is_mismatch(self, hashed) -> None:
        assert verify_password("Password123", hashed) is False

    def test_empty_plaintext_is_mismatch(self) -> None:
        assert verify_password("", hash_password("Password123")) is False

    def test_over_72_bytes_is_mismatch(self) -> None:
        """A longer password sharing the first 72 bytes must not match."""
        hashed = hash_password("x" * 72)
        assert verify_password("x" * 73, hashed) is False


class TestAuthenticateUser:
    def test_ok(self, store, user_factory) -> None:
        user = user_factory(email="ok@example.com")
        result = authenticate_user(store, "OK@example.com", "Password123")
        assert result.ok
        assert result.user.id == user.id

    def test_wrong_password_is_invalid(self, store, user_factory) -> None:
        user_factory(email="wrong@example.com")
        result = authenticate_user(store, "wrong@example.com", "Password124")
        assert result.status == "invalid"
        assert result.user is None

    def test_unknown_email_is_invalid(self, store) -> None:
        result = authenticate_user(store, "ghost@example.com", "Password123")
        assert result.status == "invalid"
        assert result.user is None

    def test_inactive_only_after_correct_password(self, store, user_factory) -> None:
        user_factory(email="off@example.com", active=False)
        assert authenticate_user(store, "off@example.com", "Password123").status == "inactive"
        assert authenticate_user(store, "off@example.com", "nope-nope").status == "invalid"

    @pytest.mark.parametrize("email", ["known@example.com", "unknown@example.com"])
    def test_one_bcrypt_check_per_attempt(self, store, user_factory, email) -> None:
        """Known and unknown emails must cost the same single bcrypt comparison."""
        user_factory(email="known@example.com")
        with patch.object(passwords.bcrypt, "checkpw", wraps=passwords.bcrypt.checkpw) as checkpw:
            authenticate_user(store, email, "Password999")
        assert checkpw.call_count == 1
