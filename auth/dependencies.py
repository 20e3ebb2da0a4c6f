"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication and authorization.

Authentication gate (per request):
  no bearer token                 -> 401 "Access denied. No token provided."
  token fails verification        -> 401 "Invalid or expired token."
  token valid, identity not found -> 401 "User not found."
  identity found but inactive     -> 401 "Account has been deactivated."
  identity found and active       -> AuthContext(user=...)

The result is an explicit AuthContext value handed to the route through
dependency injection. Nothing is stashed on request.state.

get_optional_auth_context() is the soft variant: any failure above becomes
AuthContext(user=None) so public routes can branch on identity presence.
require_roles() layers the role check on top of the hard gate.

Layer rule: no imports from api/ or mailer/. The collaborators (the user
store) are found on request.app.state.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from fastapi import Depends, Request

from auth.models import User
from auth.store import UserStore
from auth.tokens import ACCESS, decode_token, extract_bearer
from core.errors import AuthenticationError, AuthorizationError

logger = logging.getLogger("taskflow.auth")


@dataclass(frozen=True)
class AuthContext:
    """Typed request context produced by the authentication gate."""

    user: User | None = None

    @property
    def authenticated(self) -> bool:
        return self.user is not None


def authenticate_request(request: Request) -> User:
    """Run the authentication state machine. Raises AuthenticationError on any failure."""
    client = request.client.host if request.client else "unknown"

    token = extract_bearer(request.headers.get("Authorization"))
    if token is None:
        logger.info("Authentication failed: no bearer token (client=%s)", client)
        raise AuthenticationError("Access denied. No token provided.")

    payload = decode_token(token, ACCESS)
    if payload is None:
        logger.info("Authentication failed: token rejected (client=%s)", client)
        raise AuthenticationError("Invalid or expired token.")

    user_store: UserStore = request.app.state.user_store
    user = user_store.get_by_id(int(payload["sub"]))
    if user is None:
        logger.warning("Authentication failed: user_id=%s no longer exists", payload["sub"])
        raise AuthenticationError("User not found.")
    if not user.is_active:
        logger.warning("Authentication failed: user_id=%s is deactivated", user.id)
        raise AuthenticationError("Account has been deactivated.")
    return user


def get_auth_context(request: Request) -> AuthContext:
    """Require authentication. Raises 401 if the request is not authenticated."""
    return AuthContext(user=authenticate_request(request))


def get_optional_auth_context(request: Request) -> AuthContext:
    """Attempt authentication. Never raises for authentication failures."""
    try:
        return AuthContext(user=authenticate_request(request))
    except AuthenticationError:
        return AuthContext()


def get_current_user(context: AuthContext = Depends(get_auth_context)) -> User:
    """Require authentication and return the identity.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: User = Depends(get_current_user)): ...
    """
    return context.user


def authorize(context: AuthContext, roles: tuple[str, ...]) -> User:
    """Allow when the authenticated identity holds one of the roles.

    No identity -> 401. Identity with another role -> 403.
    """
    if not context.authenticated:
        raise AuthenticationError("Authentication required.")
    if context.user.role not in roles:
        logger.warning(
            "Authorization failed: user_id=%s role=%s required=%s",
            context.user.id,
            context.user.role,
            ",".join(roles),
        )
        raise AuthorizationError("Insufficient permissions to access this resource.")
    return context.user


def require_roles(*roles: str):
    """Build a dependency that requires one of the given roles.

    Use as a FastAPI dependency:
        @router.get("/admin-only")
        def route(user: User = Depends(require_roles("admin"))): ...
    """

    def dependency(context: AuthContext = Depends(get_auth_context)) -> User:
        return authorize(context, roles)

    return dependency


require_admin = require_roles("admin")


def require_verified_email(user: User = Depends(get_current_user)) -> User:
    """Require an authenticated identity whose email address is verified."""
    if not user.is_email_verified:
        logger.info("Unverified email access attempt: user_id=%s", user.id)
        raise AuthorizationError("Please verify your email address to access this resource.")
    return user
