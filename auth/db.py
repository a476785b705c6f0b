"""
auth/db.py -- Shared SQLAlchemy Core schema and engine factory for auth stores.

UserStore, RefreshTokenStore and PasswordResetTokenStore each own their table
but share one Engine, so the schema lives here and every store receives the
engine from create_auth_engine().

Timestamps are stored as ISO 8601 UTC strings with fixed microsecond width
(see to_db_time). Fixed width matters: SQL compares these columns as text, and
datetime.isoformat() drops the fractional part when microsecond == 0, which
would break lexicographic ordering.

Security:
  All queries use bound parameters. No f-strings in SQL.
  Token values carry UNIQUE constraints -- the database is the single source
  of truth for "this opaque value exists exactly once".

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, Index, Integer, MetaData, String, Table, Text, create_engine, event
from sqlalchemy.engine import Engine

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("name", String(80)),
    Column("hashed_password", Text, nullable=False),
    Column("role", String(20), nullable=False, server_default="user"),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32)),
)

refresh_tokens = Table(
    "refresh_tokens",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("token", String(128), nullable=False, unique=True),
    Column("user_id", Integer, nullable=False),  # plain id reference, no FK cascade
    Column("device_info", Text, nullable=False),
    Column("expiry", String(32), nullable=False),
    Column("revoked", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Index("ix_refresh_tokens_user_id", "user_id"),
)

password_reset_tokens = Table(
    "password_reset_tokens",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("token", String(128), nullable=False, unique=True),
    Column("user_id", Integer, nullable=False),
    Column("expiry", String(32), nullable=False),
    Column("used", Integer, nullable=False, server_default="0"),
    Column("used_at", String(32)),
    Column("request_ip", String(45)),  # audit only
    Column("created_at", String(32), nullable=False),
    Index("ix_password_reset_tokens_user_id", "user_id"),
    Index("ix_password_reset_tokens_expiry", "expiry"),
)


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def create_auth_engine(db_url: str) -> Engine:
    """Create the Engine shared by all auth stores and ensure the schema exists."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        # TestClient and the FastAPI threadpool hand connections across threads.
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    metadata.create_all(engine)
    return engine


# ---------------------------------------------------------------------------
# Time helpers
# ---------------------------------------------------------------------------


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_db_time(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_db_time(value: str | None) -> datetime | None:
    if value is None:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
