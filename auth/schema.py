"""
auth/schema.py -- SQLAlchemy Core table definitions shared by the auth stores.

All three repositories (CredentialStore, AdminStore, OtpLedger) bind to the
same MetaData so one database URL holds the whole auth schema.

UNIQUE(provider, provider_id) on provider_links is what turns a concurrent
double-create into an IntegrityError for the resolver to recover from.

Every table uses AUTOINCREMENT on SQLite: ids are never reused after a
delete, so an id-keyed conditional update (attempt counter, verified flag)
that races a purge can only miss, never land on a replacement row.
"""

from __future__ import annotations

from sqlalchemy import (
    Column,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
)
from sqlalchemy.engine import Engine

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), unique=True),
    Column("phone_number", String(20), unique=True),
    Column("first_name", String(100), nullable=False, server_default=""),
    Column("last_name", String(100), nullable=False, server_default=""),
    Column("photo_url", Text),
    Column("role", String(30), nullable=False, server_default="customer"),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("is_verified", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    sqlite_autoincrement=True,
)

provider_links = Table(
    "provider_links",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False, index=True),
    Column("provider", String(30), nullable=False),
    Column("provider_id", String(255)),  # NULL for password links
    Column("is_primary", Integer, nullable=False, server_default="0"),
    Column("hashed_refresh_token", Text),
    Column("created_at", String(32), nullable=False),
    UniqueConstraint("provider", "provider_id", name="uq_provider_identity"),
    sqlite_autoincrement=True,
)

admins = Table(
    "admins",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("role", String(30), nullable=False, server_default="admin"),
    Column("activation_link", String(64), unique=True),  # NULL once activated
    Column("is_active", Integer, nullable=False, server_default="0"),
    Column("is_creator", Integer, nullable=False, server_default="0"),
    Column("hashed_refresh_token", Text),
    Column("created_at", String(32), nullable=False),
    sqlite_autoincrement=True,
)

otp_challenges = Table(
    "otp_challenges",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("phone_number", String(20), nullable=False),
    Column("purpose", String(30), nullable=False),
    Column("code", String(12), nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False),
    Column("attempts", Integer, nullable=False, server_default="0"),
    Column("is_verified", Integer, nullable=False, server_default="0"),
    Index("ix_otp_phone_purpose", "phone_number", "purpose"),
    sqlite_autoincrement=True,
)


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def make_engine(db_url: str) -> Engine:
    """Create an engine for db_url and make sure the auth schema exists."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    metadata.create_all(engine)
    return engine
