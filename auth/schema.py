"""
auth/schema.py -- Table definitions and versioned migrations for the account store.

Tables are SQLAlchemy Core objects shared with auth/store.py. The schema is
never created implicitly when a store is constructed: upgrade() applies the
ordered _MIGRATIONS list once, before the store serves traffic, and records
each applied version in schema_migrations.

Each migration runs in its own transaction together with its bookkeeping
row, so a failed step leaves the recorded version untouched. Running
upgrade() on an up-to-date database is a no-op.

Layer rule: no imports from api/ or notify/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    PrimaryKeyConstraint,
    String,
    Table,
    Text,
    func,
    select,
)
from sqlalchemy.engine import Connection, Engine

logger = logging.getLogger("appgate.store")

metadata = MetaData()

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),  # always lowercase
    Column("password_hash", Text, nullable=False),
    Column("full_name", String(255), nullable=False, server_default=""),
    Column("job_title", String(120), nullable=False, server_default=""),
    Column("phone", String(32), nullable=False, server_default=""),
    Column("is_admin", Integer, nullable=False, server_default="0"),
    Column("approved", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
)

user_apps = Table(
    "user_apps",
    metadata,
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("app_slug", String(64), nullable=False),
    Column("created_at", String(32), nullable=False),
    PrimaryKeyConstraint("user_id", "app_slug", name="pk_user_apps"),
)

password_reset_tokens = Table(
    "password_reset_tokens",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("token", String(128), nullable=False, unique=True),
    Column("expires_at", String(32), nullable=False),  # ISO 8601, UTC
    Column("used", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Index("ix_password_reset_tokens_user_id", "user_id"),
)

schema_migrations = Table(
    "schema_migrations",
    metadata,
    Column("version", Integer, primary_key=True),
    Column("description", String(255), nullable=False),
    Column("applied_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# Migrations
# ---------------------------------------------------------------------------


def _create_accounts(conn: Connection) -> None:
    users.create(conn, checkfirst=True)
    user_apps.create(conn, checkfirst=True)


def _create_reset_tokens(conn: Connection) -> None:
    password_reset_tokens.create(conn, checkfirst=True)


# Append only. Never renumber or edit a migration that has shipped.
_MIGRATIONS: list[tuple[int, str, Callable[[Connection], None]]] = [
    (1, "users and app entitlements", _create_accounts),
    (2, "password reset tokens", _create_reset_tokens),
]

LATEST_VERSION = _MIGRATIONS[-1][0]


def current_version(engine: Engine) -> int:
    """Return the highest applied migration version, 0 for a fresh database."""
    with engine.begin() as conn:
        schema_migrations.create(conn, checkfirst=True)
        version = conn.execute(select(func.max(schema_migrations.c.version))).scalar()
    return version or 0


def upgrade(engine: Engine) -> int:
    """Apply every pending migration in order and return the resulting version."""
    version = current_version(engine)
    for number, description, step in _MIGRATIONS:
        if number <= version:
            continue
        with engine.begin() as conn:
            step(conn)
            conn.execute(
                schema_migrations.insert().values(
                    version=number,
                    description=description,
                    applied_at=datetime.now(timezone.utc).isoformat(),
                )
            )
        logger.info("Applied schema migration %d (%s)", number, description)
        version = number
    return version
