"""
api/routes/v1/auth.py -- Credential lifecycle REST endpoints.

Routes:
  POST /api/v1/auth/register             -- create account, email a verification link
  POST /api/v1/auth/login                -- password login; access token + refresh cookie
  GET  /api/v1/auth/verify-email?token=  -- redeem a verification token
  POST /api/v1/auth/resend-verification  -- issue a fresh verification token
  POST /api/v1/auth/forgot-password      -- issue a password reset token
  POST /api/v1/auth/reset-password       -- redeem a reset token with a new password
  POST /api/v1/auth/refresh              -- new access token from the refresh cookie
  POST /api/v1/auth/logout               -- clear the refresh cookie (requires auth)
  GET  /api/v1/auth/profile              -- current identity (requires auth)
  GET  /api/v1/auth/users                -- list identities (admin only)

Security:
  Credential-mutating routes are charged to the auth limiter (5 per 15 min
  per client by default); verify-email and refresh to the general limiter.
  Login and forgot-password answer identically for unknown emails.
  authenticate_user() provides timing equalization -- use it, never inline.
  Verification and reset tokens go out by email only, never in a response body.
  Cache-Control: no-store on responses that carry credentials.

Handlers are plain `def`: the store and bcrypt block, so FastAPI runs them
in its threadpool.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from api.limiter import rate_limit
from api.models import EmailRequest, LoginRequest, RegisterRequest, ResetPasswordRequest, envelope, user_payload
from auth.dependencies import get_current_user, require_admin
from auth.models import TokenKind, User
from auth.passwords import authenticate_user, hash_password
from auth.single_use import SingleUseTokenManager
from auth.store import UserStore
from auth.tokens import (
    REFRESH,
    REFRESH_COOKIE,
    clear_refresh_cookie,
    create_access_token,
    create_refresh_token,
    decode_token,
    set_refresh_cookie,
)
from core.errors import AuthenticationError, ConflictError, DependencyError, NotFoundError, ValidationError
from mailer.notifier import NotificationError, Notifier, redact_email

logger = logging.getLogger("taskflow.api.auth")

# Auth policy:
# - register, login, resend-verification, forgot-password, reset-password: public, auth limiter
# - verify-email, refresh:                                                 public, general limiter
# - logout, profile:                                                       requires auth (get_current_user)
# - users:                                                                 requires admin (require_admin)
router = APIRouter()

_auth_limit = [Depends(rate_limit("auth_limiter"))]
_general_limit = [Depends(rate_limit("general_limiter"))]

FORGOT_PASSWORD_MESSAGE = "If an account with this email exists, a password reset link has been sent."
INVALID_CREDENTIALS_MESSAGE = "Invalid email or password."


def _store(request: Request) -> UserStore:
    return request.app.state.user_store


def _tokens(request: Request) -> SingleUseTokenManager:
    return request.app.state.token_manager


def _notifier(request: Request) -> Notifier:
    return request.app.state.notifier


def _deliver_best_effort(label: str, send, *args) -> None:
    """Run a notifier call whose failure must not undo the committed change."""
    try:
        send(*args)
    except NotificationError:
        logger.warning("%s email was not delivered; the account change stands", label)


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", status_code=201, dependencies=_auth_limit)
def register(request: Request, body: RegisterRequest, background_tasks: BackgroundTasks) -> JSONResponse:
    """Create an unverified `user` account and email it a verification link.

    The duplicate pre-check gives the friendly error; the UNIQUE constraint
    behind create_user() catches the concurrent case the pre-check misses.
    """
    user_store = _store(request)
    if user_store.get_by_email(body.email) is not None:
        logger.info("Duplicate registration attempt for %s", redact_email(body.email))
        raise ConflictError("User with this email already exists.")

    try:
        user_id = user_store.create_user(
            User(
                email=body.email,
                first_name=body.first_name,
                last_name=body.last_name,
                hashed_password=hash_password(body.password),
            )
        )
    except IntegrityError as exc:
        raise ConflictError("User with this email already exists.") from exc

    token = _tokens(request).issue(user_id, TokenKind.EMAIL_VERIFICATION)
    user = user_store.get_by_id(user_id)
    background_tasks.add_task(
        _deliver_best_effort, "Verification", _notifier(request).send_verification, user.email, user.first_name, token
    )
    logger.info("Registered user_id=%s (%s)", user_id, redact_email(user.email))
    return JSONResponse(
        status_code=201,
        content=envelope(
            "Registration successful. Please check your email to verify your account.",
            data=user_payload(user),
        ),
    )


@router.post("/auth/login", dependencies=_auth_limit)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; return an access token and set the refresh cookie.

    Unknown email and wrong password produce the same 401 body. The
    deactivated-account message is only given once the password is proven.
    """
    user_store = _store(request)
    result = authenticate_user(user_store, body.email, body.password)
    if result.status == "inactive":
        logger.warning("Login refused for deactivated user_id=%s", result.user.id)
        raise AuthenticationError("Account has been deactivated. Please contact support.")
    if not result.ok:
        logger.info("Login failed for %s", redact_email(body.email))
        raise AuthenticationError(INVALID_CREDENTIALS_MESSAGE)

    user = result.user
    user.last_login = user_store.update_last_login(user.id)
    access_token = create_access_token(user)

    resp = JSONResponse(
        status_code=200,
        content=envelope("Login successful.", data=user_payload(user, token=access_token)),
    )
    set_refresh_cookie(resp, create_refresh_token(user.id))
    resp.headers["Cache-Control"] = "no-store"
    logger.info("Login succeeded for user_id=%s", user.id)
    return resp


@router.get("/auth/verify-email", dependencies=_general_limit)
def verify_email(request: Request, background_tasks: BackgroundTasks, token: str | None = None) -> dict:
    """Redeem a verification token: mark the email verified and clear the token in one write."""
    user = _tokens(request).redeem(TokenKind.EMAIL_VERIFICATION, token, is_email_verified=True)
    if user is None:
        raise ValidationError("Invalid or expired verification token.")
    background_tasks.add_task(_deliver_best_effort, "Welcome", _notifier(request).send_welcome, user.email, user.first_name)
    return envelope("Email verified successfully.", data=user_payload(user))


@router.post("/auth/resend-verification", dependencies=_auth_limit)
def resend_verification(request: Request, body: EmailRequest) -> dict:
    """Issue a new verification token (invalidating the previous one) and email it."""
    user = _store(request).get_by_email(body.email)
    if user is None:
        raise NotFoundError("User not found.")
    if user.is_email_verified:
        raise ValidationError("Email is already verified.")

    token = _tokens(request).issue(user.id, TokenKind.EMAIL_VERIFICATION)
    try:
        _notifier(request).send_verification(user.email, user.first_name, token)
    except NotificationError as exc:
        raise DependencyError("Failed to send verification email.") from exc
    return envelope("Verification email sent successfully.")


@router.post("/auth/forgot-password", dependencies=_auth_limit)
def forgot_password(request: Request, body: EmailRequest) -> dict:
    """Email a password reset link. Answers the same whether or not the account exists."""
    user = _store(request).get_by_email(body.email)
    if user is None:
        logger.info("Password reset requested for unknown email %s", redact_email(body.email))
        return envelope(FORGOT_PASSWORD_MESSAGE)

    token = _tokens(request).issue(user.id, TokenKind.PASSWORD_RESET)
    try:
        _notifier(request).send_password_reset(user.email, user.first_name, token)
    except NotificationError as exc:
        raise DependencyError("Failed to send password reset email.") from exc
    return envelope(FORGOT_PASSWORD_MESSAGE)


@router.post("/auth/reset-password", dependencies=_auth_limit)
def reset_password(request: Request, body: ResetPasswordRequest) -> dict:
    """Redeem a reset token: store the new password hash and clear the token in one write.

    The cheap lookup runs first so an invalid token never costs a bcrypt
    hash. The redeem re-checks the token, so a concurrent reset with the
    same token cannot also succeed.
    """
    token_manager = _tokens(request)
    if token_manager.consume(TokenKind.PASSWORD_RESET, body.token) is None:
        raise ValidationError("Invalid or expired reset token.")
    user = token_manager.redeem(TokenKind.PASSWORD_RESET, body.token, hashed_password=hash_password(body.new_password))
    if user is None:
        raise ValidationError("Invalid or expired reset token.")
    logger.info("Password reset for user_id=%s", user.id)
    return envelope("Password has been reset successfully.")


@router.post("/auth/refresh", dependencies=_general_limit)
def refresh(request: Request) -> JSONResponse:
    """Exchange the refresh cookie for a new access token and rotate the cookie."""
    payload = decode_token(request.cookies.get(REFRESH_COOKIE, ""), REFRESH)
    if payload is None:
        raise AuthenticationError("Invalid or expired refresh token.")
    user = _store(request).get_by_id(int(payload["sub"]))
    if user is None or not user.is_active:
        raise AuthenticationError("Invalid or expired refresh token.")

    resp = JSONResponse(
        status_code=200,
        content=envelope("Token refreshed.", data={"token": create_access_token(user)}),
    )
    set_refresh_cookie(resp, create_refresh_token(user.id))
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout")
def logout(current_user: User = Depends(get_current_user)) -> JSONResponse:
    """Clear the refresh cookie. The access token simply runs out; nothing is revoked server-side."""
    resp = JSONResponse(content=envelope("Logged out successfully."))
    clear_refresh_cookie(resp)
    logger.info("Logout for user_id=%s", current_user.id)
    return resp


@router.get("/auth/profile")
def profile(current_user: User = Depends(get_current_user)) -> dict:
    """Return the identity the bearer token resolves to."""
    return envelope("Profile retrieved successfully.", data=user_payload(current_user))


# ---------------------------------------------------------------------------
# User management (admin only)
# ---------------------------------------------------------------------------


@router.get("/auth/users")
def list_users(request: Request, current_user: User = Depends(require_admin)) -> dict:
    """List all accounts. Admin only."""
    users = _store(request).list_users()
    return envelope(
        "Users retrieved successfully.",
        data={"users": [user_payload(u)["user"] for u in users]},
    )
