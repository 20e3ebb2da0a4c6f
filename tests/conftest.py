"""
tests/conftest.py -- Shared test fixtures for TaskFlow Auth tests.

This module provides:
  - RecordingNotifier: captures outgoing account emails (and their tokens)
  - start_service(): runs the real FastAPI app against isolated collaborators
  - service: a running app with generous rate limits, one per test
  - store / user_factory / clock: bare collaborators for unit tests

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process. Each
service gets its own uuid-suffixed name so tests never see each other's rows.

DEBUG and BCRYPT_ROUNDS must be set before any auth module import:
get_settings() auto-generates both signing keys in dev mode, and the lowest
bcrypt cost keeps hashing from dominating the run time.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator, Iterator
from contextlib import asynccontextmanager, contextmanager
from dataclasses import dataclass, field

# CRITICAL: Set these before any auth/core import so get_settings() sees them.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import httpx
import pytest
from fastapi.testclient import TestClient

from api.limiter import RateLimiter
from api.main import app
from auth.models import TokenKind, User
from auth.passwords import hash_password
from auth.single_use import SingleUseTokenManager
from auth.store import UserStore
from auth.tokens import create_access_token
from mailer.notifier import NotificationError

DEFAULT_PASSWORD = "Password123"

# ---------------------------------------------------------------------------
# Notifier double
# ---------------------------------------------------------------------------


@dataclass
class SentEmail:
    kind: str
    email: str
    first_name: str
    token: str | None = None


@dataclass
class RecordingNotifier:
    """Notifier that records every call instead of talking to a relay.

    Set fail_on to a set of kinds ("verification", "password_reset",
    "welcome") to make those sends raise NotificationError.
    """

    sent: list[SentEmail] = field(default_factory=list)
    fail_on: set[str] = field(default_factory=set)

    def _record(self, email: SentEmail) -> None:
        if email.kind in self.fail_on:
            raise NotificationError(f"simulated {email.kind} failure")
        self.sent.append(email)

    def send_verification(self, email: str, first_name: str, token: str) -> None:
        self._record(SentEmail("verification", email, first_name, token))

    def send_password_reset(self, email: str, first_name: str, token: str) -> None:
        self._record(SentEmail("password_reset", email, first_name, token))

    def send_welcome(self, email: str, first_name: str) -> None:
        self._record(SentEmail("welcome", email, first_name))

    def of_kind(self, kind: str) -> list[SentEmail]:
        return [e for e in self.sent if e.kind == kind]

    def last_token(self, kind: str) -> str:
        matching = self.of_kind(kind)
        assert matching, f"no {kind} email was sent"
        return matching[-1].token


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _shared_memory_url(prefix: str) -> str:
    return f"sqlite:///file:{prefix}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


def make_user(
    store: UserStore,
    email: str = "jane@example.com",
    password: str = DEFAULT_PASSWORD,
    role: str = "user",
    verified: bool = True,
    active: bool = True,
    first_name: str = "Jane",
    last_name: str = "Doe",
) -> User:
    """Insert an identity directly through the store and return it as stored."""
    user_id = store.create_user(
        User(
            email=email,
            first_name=first_name,
            last_name=last_name,
            role=role,
            hashed_password=hash_password(password),
            is_email_verified=verified,
            is_active=active,
        )
    )
    return store.get_by_id(user_id)


def bearer(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user)}"}


# ---------------------------------------------------------------------------
# Running service
# ---------------------------------------------------------------------------


@dataclass
class Service:
    """A running app plus handles on the collaborators wired into it."""

    client: TestClient
    store: UserStore
    notifier: RecordingNotifier
    token_manager: SingleUseTokenManager
    auth_limiter: RateLimiter
    general_limiter: RateLimiter

    def register(
        self,
        email: str = "jane@example.com",
        password: str = DEFAULT_PASSWORD,
        first_name: str = "Jane",
        last_name: str = "Doe",
    ) -> httpx.Response:
        return self.client.post(
            "/api/v1/auth/register",
            json={"email": email, "password": password, "firstName": first_name, "lastName": last_name},
        )

    def login(self, email: str = "jane@example.com", password: str = DEFAULT_PASSWORD) -> httpx.Response:
        return self.client.post("/api/v1/auth/login", json={"email": email, "password": password})

    def make_user(self, **kwargs) -> User:
        return make_user(self.store, **kwargs)

    def issue(self, user: User, kind: TokenKind) -> str:
        return self.token_manager.issue(user.id, kind)

    def headers_for(self, user: User) -> dict[str, str]:
        return bearer(user)


def _patch_lifespan(service_parts: dict):
    """Return a lifespan that hands pre-built collaborators to app.state."""

    @asynccontextmanager
    async def test_lifespan(app):
        for name, value in service_parts.items():
            setattr(app.state, name, value)
        yield

    return test_lifespan


@contextmanager
def _start_service(
    auth_limit: str = "1000/minute",
    general_limit: str = "1000/minute",
    raise_server_exceptions: bool = True,
) -> Iterator[Service]:
    store = UserStore(_shared_memory_url("test_auth"))
    notifier = RecordingNotifier()
    parts = {
        "user_store": store,
        "token_manager": SingleUseTokenManager(store),
        "notifier": notifier,
        "auth_limiter": RateLimiter(auth_limit),
        "general_limiter": RateLimiter(general_limit),
    }
    app.router.lifespan_context = _patch_lifespan(parts)
    try:
        with TestClient(app, raise_server_exceptions=raise_server_exceptions) as client:
            yield Service(
                client=client,
                store=store,
                notifier=notifier,
                token_manager=parts["token_manager"],
                auth_limiter=parts["auth_limiter"],
                general_limiter=parts["general_limiter"],
            )
    finally:
        store.close()


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def start_service():
    """Return the service factory, for tests that need tight limits."""
    return _start_service


@pytest.fixture
def service() -> Generator[Service, None, None]:
    """A running app with limits high enough that no test trips them by accident."""
    with _start_service() as svc:
        yield svc


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    """Isolated UserStore for unit tests."""
    s = UserStore(_shared_memory_url("test_store"))
    yield s
    s.close()


class FakeClock:
    """Manually advanced clock for token-expiry tests."""

    def __init__(self, start: float = 1_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def user_factory(store: UserStore):
    """Return make_user bound to the unit-test store."""

    def factory(**kwargs) -> User:
        return make_user(store, **kwargs)

    return factory
