"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for TaskFlow Auth happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY). Type coercion and validation are built in.

  @model_validator(mode="after"): Cross-field validation of the two signing
      keys. Dev mode generates missing keys with a warning; production mode
      refuses to start without them.

Security notes:
  Signing keys shorter than 32 chars are rejected outright. The access and
  refresh keys must differ so a leaked refresh key cannot mint access tokens
  and vice versa.

Layer rule: core/ is the kernel. This module may not import from api/,
auth/, or mailer/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("taskflow.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'auth' / 'taskflow_auth.db'}"

_DAY = 24 * 60 * 60


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file (given DEBUG=true for the keys).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    database_url: str = _DEFAULT_DB_URL
    frontend_url: str = "http://localhost:3000"

    # ------------------------------------------------------------------
    # Session tokens
    # ------------------------------------------------------------------

    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    refresh_secret_key: str = ""
    token_issuer: str = "taskflow-api"
    token_audience: str = "taskflow-app"
    access_token_expire_seconds: int = 7 * _DAY
    refresh_token_expire_seconds: int = 30 * _DAY
    secure_cookies: bool = False

    # ------------------------------------------------------------------
    # Passwords and single-use tokens
    # ------------------------------------------------------------------

    bcrypt_rounds: int = 12
    email_verification_ttl_seconds: int = _DAY
    password_reset_ttl_seconds: int = 10 * 60

    # ------------------------------------------------------------------
    # Rate limiting (fixed window, per client address, `limits` notation)
    # ------------------------------------------------------------------

    auth_rate_limit: str = "5/15 minutes"
    general_rate_limit: str = "10/minute"
    rate_limit_storage_uri: str = "memory://"

    # ------------------------------------------------------------------
    # Outbound email (empty smtp_host means log-only delivery)
    # ------------------------------------------------------------------

    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True
    smtp_timeout_seconds: float = 10.0
    email_from: str = "noreply@taskflow.com"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_signing_keys(self) -> "Settings":
        """Enforce the signing key policy for both token kinds.

        Dev mode (DEBUG=true): auto-generate missing keys with a warning.
            Sessions will not survive restart -- acceptable for local dev.

        Production mode: refuse to start if either key is missing.

        Both modes: reject keys shorter than 32 characters and identical keys.
        """
        for field in ("secret_key", "refresh_secret_key"):
            value = getattr(self, field)
            if not value:
                if not self.debug:
                    raise ValueError(
                        f"{field.upper()} is required in production mode. "
                        "Set it in your environment or .env file. "
                        "To run in development mode, set DEBUG=true."
                    )
                value = secrets.token_hex(32)
                setattr(self, field, value)
                logger.warning("Using auto-generated %s. Sessions will not persist across restarts.", field.upper())
            if len(value) < 32:
                raise ValueError(f"{field.upper()} must be at least 32 characters.")
        if self.secret_key == self.refresh_secret_key:
            raise ValueError("SECRET_KEY and REFRESH_SECRET_KEY must be different.")
        if not 4 <= self.bcrypt_rounds <= 31:
            raise ValueError("BCRYPT_ROUNDS must be between 4 and 31.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
