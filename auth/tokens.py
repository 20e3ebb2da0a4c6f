"""
auth/tokens.py -- Session token issuer/verifier and refresh-cookie helpers.

Security design decisions:
  JWT: python-jose with HS256. Two token kinds, each signed with its own key:
       access  -- SECRET_KEY, 7 days by default, carries sub/email/role.
       refresh -- REFRESH_SECRET_KEY, 30 days by default, carries sub only.
       A leaked refresh key cannot forge access tokens and vice versa. Both
       kinds also carry a "type" claim that is checked on decode.

  Every decode verifies signature, issuer, audience and expiry. Any failure
  returns None -- the gate turns that into one generic 401. The precise
  reason is logged here at WARNING and never reaches the client.

  Stateless: nothing is persisted, so tokens cannot be revoked server-side
  before they expire.

  Refresh tokens travel only in an httpOnly, SameSite=strict cookie.

Layer rule: no imports from api/ or mailer/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from jose import ExpiredSignatureError, JWTError, jwt
from jose.exceptions import JWTClaimsError

from core.config import get_settings

if TYPE_CHECKING:
    from auth.models import User

logger = logging.getLogger("taskflow.auth")

# ---------------------------------------------------------------------------
# Config -- read once at module load via the lru_cache singleton
# ---------------------------------------------------------------------------

_settings = get_settings()

_ALGORITHM = "HS256"

ACCESS = "access"
REFRESH = "refresh"

REFRESH_COOKIE = "refreshToken"

_KEYS = {
    ACCESS: _settings.secret_key,
    REFRESH: _settings.refresh_secret_key,
}

_LIFETIMES = {
    ACCESS: _settings.access_token_expire_seconds,
    REFRESH: _settings.refresh_token_expire_seconds,
}


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def _encode(claims: dict, kind: str, expire_seconds: int) -> str:
    now = datetime.now(timezone.utc)
    duration = expire_seconds if expire_seconds > 0 else _LIFETIMES[kind]
    payload = {
        **claims,
        "type": kind,
        "iss": _settings.token_issuer,
        "aud": _settings.token_audience,
        "iat": now,
        "exp": now + timedelta(seconds=duration),
    }
    return jwt.encode(payload, _KEYS[kind], algorithm=_ALGORITHM)


def create_access_token(user: User, expire_seconds: int = 0) -> str:
    """Sign a short-lived access token for the given identity.

    Args:
        user:           The identity. id, email and role become claims.
        expire_seconds: Override the configured lifetime (0 = use settings).
    """
    return _encode({"sub": str(user.id), "email": user.email, "role": user.role}, ACCESS, expire_seconds)


def create_refresh_token(user_id: int, expire_seconds: int = 0) -> str:
    """Sign a refresh token carrying only the subject id."""
    return _encode({"sub": str(user_id)}, REFRESH, expire_seconds)


def decode_token(token: str, kind: str = ACCESS) -> dict | None:
    """Verify a token of the expected kind. Returns the claims dict or None.

    Returning None (rather than raising) keeps the gate simple: any invalid
    token is treated as unauthenticated.
    """
    if not token or kind not in _KEYS:
        return None
    try:
        payload = jwt.decode(
            token,
            _KEYS[kind],
            algorithms=[_ALGORITHM],
            audience=_settings.token_audience,
            issuer=_settings.token_issuer,
        )
    except ExpiredSignatureError:
        logger.warning("Rejected %s token: expired", kind)
        return None
    except JWTClaimsError as exc:
        logger.warning("Rejected %s token: bad claims (%s)", kind, exc)
        return None
    except JWTError as exc:
        logger.warning("Rejected %s token: %s", kind, exc)
        return None
    sub = str(payload.get("sub", ""))
    if payload.get("type") != kind or not (sub.isascii() and sub.isdecimal()):
        logger.warning("Rejected %s token: wrong type or subject", kind)
        return None
    if kind == ACCESS and ("email" not in payload or "role" not in payload):
        logger.warning("Rejected access token: missing identity claims")
        return None
    return payload


def extract_bearer(header_value: str | None) -> str | None:
    """Return the token from an "Authorization: Bearer <token>" value.

    Anything else (missing header, other scheme, empty token) yields None.
    """
    if not header_value or not header_value.startswith("Bearer "):
        return None
    token = header_value[len("Bearer ") :].strip()
    return token or None


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_refresh_cookie(response, token: str) -> None:
    """Write the refresh token as an httpOnly cookie on the response.

    httponly=True: page scripts cannot read it.
    samesite="strict": never sent on cross-site requests.
    secure: only sent over HTTPS when SECURE_COOKIES=true (production).
    max_age: matches the refresh token lifetime.
    """
    response.set_cookie(
        REFRESH_COOKIE,
        value=token,
        httponly=True,
        samesite="strict",
        secure=_settings.secure_cookies,
        max_age=_settings.refresh_token_expire_seconds,
        path="/",
    )


def clear_refresh_cookie(response) -> None:
    response.delete_cookie(
        REFRESH_COOKIE,
        httponly=True,
        samesite="strict",
        secure=_settings.secure_cookies,
        path="/",
    )
