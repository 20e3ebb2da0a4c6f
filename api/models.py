"""
API request and response models for the TaskFlow Auth REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Wire format is camelCase (firstName, newPassword, isEmailVerified); Python
attribute names stay snake_case via an alias generator.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

import re
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from auth.models import User
from auth.passwords import MAX_PASSWORD_BYTES, password_too_long

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Loose: one "@", no whitespace, a dot in the domain. Deliverability
# is proven by the verification email, not by a regex.
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_LENGTH = 128


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


def _check_email(value: str) -> str:
    value = value.strip().lower()
    if not EMAIL_PATTERN.match(value):
        raise ValueError("Please provide a valid email address.")
    return value


def _check_new_password(value: str) -> str:
    if len(value) < MIN_PASSWORD_LENGTH:
        raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long.")
    if password_too_long(value):
        raise ValueError(f"Password is too long (at most {MAX_PASSWORD_BYTES} bytes when UTF-8 encoded).")
    return value


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(_CamelModel):
    """Request body for POST /api/v1/auth/register."""

    email: str = Field(max_length=255)
    password: str
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)

    @field_validator("email")
    @classmethod
    def valid_email(cls, value: str) -> str:
        return _check_email(value)

    @field_validator("first_name", "last_name")
    @classmethod
    def strip_names(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("First and last name are required.")
        return value

    @field_validator("password")
    @classmethod
    def strong_enough(cls, value: str) -> str:
        return _check_new_password(value)


class LoginRequest(_CamelModel):
    """Request body for POST /api/v1/auth/login.

    No length policy here: a login attempt with a short password is simply
    wrong, and must fail like any other wrong password.
    """

    email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=MAX_PASSWORD_LENGTH)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return value.strip().lower()


class EmailRequest(_CamelModel):
    """Request body for POST /resend-verification and POST /forgot-password."""

    email: str = Field(min_length=1, max_length=255)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return value.strip().lower()


class ResetPasswordRequest(_CamelModel):
    """Request body for POST /api/v1/auth/reset-password."""

    token: str = Field(min_length=1, max_length=256)
    new_password: str

    @field_validator("token")
    @classmethod
    def strip_token(cls, value: str) -> str:
        return value.strip()

    @field_validator("new_password")
    @classmethod
    def strong_enough(cls, value: str) -> str:
        return _check_new_password(value)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserSummary(_CamelModel):
    """Public view of an identity. Never includes hashes or token fields."""

    id: int
    email: str
    first_name: str
    last_name: str
    avatar: Optional[str] = None
    is_email_verified: bool
    role: str
    is_active: bool
    preferences: dict
    last_login: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> "UserSummary":
        """Build a UserSummary from the domain User (Factory Method pattern)."""
        return cls(
            id=user.id,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            avatar=user.avatar,
            is_email_verified=user.is_email_verified,
            role=user.role,
            is_active=user.is_active,
            preferences=user.preferences,
            last_login=user.last_login,
        )


class ApiResponse(BaseModel):
    """Envelope for every response body, success or failure.

    errorId is only present on server-side (5xx) failures; it is the
    correlation id written next to the traceback in the server log.
    """

    model_config = ConfigDict(populate_by_name=True)

    success: bool
    message: str
    data: Optional[dict[str, Any]] = None
    error_id: Optional[str] = Field(default=None, alias="errorId")

    def to_json(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


def envelope(message: str, success: bool = True, data: Optional[dict] = None, error_id: Optional[str] = None) -> dict:
    return ApiResponse(success=success, message=message, data=data, error_id=error_id).to_json()


def user_payload(user: User, **extra: Any) -> dict:
    """Build the data block {"user": {...}, **extra} used by the auth routes."""
    return {"user": UserSummary.from_user(user).model_dump(by_alias=True), **extra}
