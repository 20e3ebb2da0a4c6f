"""
auth/store.py -- SQLAlchemy Core persistence layer for identities.

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_user
is the mapper. Route and dependency code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Single-use token redemption is a compare-and-swap: one UPDATE whose WHERE
  clause re-checks the stored hash and expiry. Two concurrent redemptions of
  the same token race on that statement and the database lets exactly one of
  them change the row. The loser sees rowcount == 0 and is rejected. No
  in-process lock is involved, so this holds across worker processes.

DB path: auth/taskflow_auth.db unless DATABASE_URL says otherwise.

Layer rule: no imports from api/ or mailer/.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    Float,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    func,
    select,
)
from sqlalchemy.engine import Engine

from auth.models import TokenKind, User, default_preferences

logger = logging.getLogger("taskflow.auth.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("first_name", String(100), nullable=False),
    Column("last_name", String(100), nullable=False),
    Column("avatar", Text),
    Column("role", String(30), nullable=False, server_default="user"),
    Column("is_active", Boolean, nullable=False, server_default="1"),
    Column("is_email_verified", Boolean, nullable=False, server_default="0"),
    Column("preferences", Text),  # JSON blob
    Column("email_verification_token", String(64), index=True),  # SHA-256 hex
    Column("email_verification_expires", Float),  # epoch seconds
    Column("password_reset_token", String(64), index=True),  # SHA-256 hex
    Column("password_reset_expires", Float),  # epoch seconds
    Column("last_login", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

# TokenKind -> (hash column, expiry column)
_TOKEN_COLUMNS = {
    TokenKind.EMAIL_VERIFICATION: (_users.c.email_verification_token, _users.c.email_verification_expires),
    TokenKind.PASSWORD_RESET: (_users.c.password_reset_token, _users.c.password_reset_expires),
}

# Fields update_user() and redeem_single_use_token() may change. The token
# columns are absent: they only move through the dedicated methods.
_MUTABLE_FIELDS = {
    "hashed_password",
    "first_name",
    "last_name",
    "avatar",
    "role",
    "is_active",
    "is_email_verified",
    "preferences",
}


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers do not block behind writers."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def normalize_email(email: str) -> str:
    return email.strip().lower()


def _prepare_fields(fields: dict) -> dict:
    unknown = set(fields) - _MUTABLE_FIELDS
    if unknown:
        raise ValueError(f"Unknown user fields: {unknown!r}")
    values = dict(fields)
    if "preferences" in values and not isinstance(values["preferences"], str):
        values["preferences"] = json.dumps(values["preferences"])
    values["updated_at"] = _now_iso()
    return values


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User entities.

    Usage:
        store = UserStore("sqlite:///:memory:")
        user_id = store.create_user(User(email="a@x.com", first_name="A", last_name="B", hashed_password=h))
        user = store.get_by_email("A@X.com")
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def count_users(self) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return result or 0

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        The route layer turns that into a ConflictError; a concurrent
        duplicate registration that slipped past the pre-check lands here.
        """
        now = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    email=normalize_email(user.email),
                    hashed_password=user.hashed_password,
                    first_name=user.first_name,
                    last_name=user.last_name,
                    avatar=user.avatar,
                    role=user.role,
                    is_active=user.is_active,
                    is_email_verified=user.is_email_verified,
                    preferences=json.dumps(user.preferences),
                    email_verification_token=user.email_verification_token,
                    email_verification_expires=user.email_verification_expires,
                    password_reset_token=user.password_reset_token,
                    password_reset_expires=user.password_reset_expires,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by email (case-insensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == normalize_email(email))).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: int) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self) -> list[User]:
        """Return all users ordered by email. Admin-only operation."""
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.email)).fetchall()
        return [_row_to_user(r) for r in rows]

    def update_user(self, user_id: int, **fields) -> bool:
        """Update mutable profile/credential fields on an existing user.

        Returns True if a row was updated, False if user_id was not found.
        Raises ValueError for field names outside the mutable whitelist.
        """
        values = _prepare_fields(fields)
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**values))
            conn.commit()
        return result.rowcount > 0

    def update_last_login(self, user_id: int) -> str:
        """Stamp the current UTC timestamp as last_login and return it."""
        stamp = _now_iso()
        with self.engine.connect() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(last_login=stamp))
            conn.commit()
        return stamp

    # ------------------------------------------------------------------
    # Single-use tokens
    # ------------------------------------------------------------------

    def set_single_use_token(self, user_id: int, kind: TokenKind, token_hash: str, expires_at: float) -> bool:
        """Store the hash and expiry of a freshly issued token.

        Overwrites whatever token of the same kind was there before, so only
        the most recently issued token stays redeemable (last write wins).
        """
        hash_col, expires_col = _TOKEN_COLUMNS[kind]
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values({hash_col: token_hash, expires_col: expires_at, _users.c.updated_at: _now_iso()})
            )
            conn.commit()
        return result.rowcount > 0

    def find_by_single_use_token(self, kind: TokenKind, token_hash: str, now: float) -> User | None:
        """Return the user holding a live token with this hash, or None.

        Live means the stored hash matches AND the expiry is strictly in the
        future. A NULL expiry never matches.
        """
        hash_col, expires_col = _TOKEN_COLUMNS[kind]
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where((hash_col == token_hash) & (expires_col > now))).fetchone()
        return _row_to_user(row) if row is not None else None

    def redeem_single_use_token(self, kind: TokenKind, token_hash: str, now: float, **changes) -> User | None:
        """Atomically clear a live token and apply the state change it authorizes.

        The UPDATE re-checks hash and expiry in its WHERE clause, so a token
        that was redeemed, replaced, or expired between the lookup and this
        call changes nothing. Returns the updated user, or None when the
        compare-and-swap lost.
        """
        hash_col, expires_col = _TOKEN_COLUMNS[kind]
        candidate = self.find_by_single_use_token(kind, token_hash, now)
        if candidate is None:
            return None
        values = _prepare_fields(changes)
        values[hash_col.name] = None
        values[expires_col.name] = None
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where((_users.c.id == candidate.id) & (hash_col == token_hash) & (expires_col > now))
                .values(**values)
            )
            conn.commit()
        if result.rowcount != 1:
            logger.info("Single-use token redemption lost a race (user_id=%s, kind=%s)", candidate.id, kind.value)
            return None
        return self.get_by_id(candidate.id)

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    preferences = default_preferences()
    if row.preferences:
        try:
            preferences.update(json.loads(row.preferences))
        except ValueError:
            logger.warning("Ignoring malformed preferences JSON for user_id=%s", row.id)
    return User(
        id=row.id,
        email=row.email,
        hashed_password=row.hashed_password,
        first_name=row.first_name,
        last_name=row.last_name,
        avatar=row.avatar,
        role=row.role,
        is_active=bool(row.is_active),
        is_email_verified=bool(row.is_email_verified),
        preferences=preferences,
        email_verification_token=row.email_verification_token,
        email_verification_expires=row.email_verification_expires,
        password_reset_token=row.password_reset_token,
        password_reset_expires=row.password_reset_expires,
        last_login=row.last_login,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
