"""
auth/store.py -- SQLAlchemy Core persistence layer for accounts, entitlements and reset tokens.

Pattern: Repository + Data Mapper. UserStore is the repository;
_row_to_user / _row_to_token are the mappers. Services never touch SQL.

Contract:
  - Missing rows are reported as None / False, never as exceptions.
  - Every SQLAlchemyError is logged and re-raised as StorageFailure.
    The one exception is a duplicate email on insert, which is AccountExists.
  - Multi-statement mutations run inside a single engine.begin() block, so a
    concurrent reader never observes an empty entitlement set mid-replace or
    a password rotated without the matching approval.
  - Emails are stored lowercase and looked up lowercase.

Security:
  All queries use bound parameters. No f-strings in SQL.

Schema: created and upgraded only by migrate() (see auth/schema.py), which
must run once before the store serves traffic.

Layer rule: no imports from api/ or notify/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import create_engine, event, func, select
from sqlalchemy.engine import Connection, Engine, make_url
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth import schema
from auth.errors import AccountExists, StorageFailure
from auth.models import PasswordResetToken, User
from auth.schema import password_reset_tokens as _tokens
from auth.schema import user_apps as _user_apps
from auth.schema import users as _users

logger = logging.getLogger("appgate.store")


# ---------------------------------------------------------------------------
# Connection setup
# ---------------------------------------------------------------------------


def _configure_sqlite(dbapi_conn, connection_record) -> None:
    """Enable WAL and foreign key enforcement.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool. foreign_keys=ON makes the ON DELETE CASCADE
    clauses on user_apps and password_reset_tokens effective.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _ensure_sqlite_directory(db_url: str) -> None:
    """Create the parent directory of a file-backed SQLite database."""
    url = make_url(db_url)
    database = url.database or ""
    if not database or database == ":memory:" or database.startswith("file:"):
        return
    Path(database).expanduser().parent.mkdir(parents=True, exist_ok=True)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def normalize_email(email: str) -> str:
    return email.strip().lower()


@contextmanager
def _storage(operation: str) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        logger.exception("Storage failure during %s", operation)
        raise StorageFailure(operation) from exc


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User, entitlement and PasswordResetToken records.

    Usage:
        store = UserStore("sqlite:///data/appgate.db")
        store.migrate()
        user = store.create_user("a@example.com", hash_password("secret"))
        store.replace_apps(user.id, ["dart"])
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
            _ensure_sqlite_directory(db_url)
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _configure_sqlite)

    def migrate(self) -> int:
        """Bring the schema up to date. Returns the resulting schema version."""
        with _storage("migrate"):
            return schema.upgrade(self.engine)

    def close(self) -> None:
        self.engine.dispose()

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def has_users(self) -> bool:
        with _storage("has_users"):
            with self.engine.connect() as conn:
                count = conn.execute(select(func.count()).select_from(_users)).scalar()
        return (count or 0) > 0

    def create_user(
        self,
        email: str,
        password_hash: str,
        *,
        is_admin: bool = False,
        approved: bool = False,
        full_name: str = "",
        job_title: str = "",
        phone: str = "",
        allowed_apps: Iterable[str] = (),
    ) -> User:
        """Insert a user (and optional entitlements) and return the stored record.

        Raises AccountExists if the normalized email is already taken, which
        also covers the race where two registrations pass the service-level
        existence check at the same time.
        """
        normalized = normalize_email(email)
        with _storage("create_user"):
            try:
                with self.engine.begin() as conn:
                    result = conn.execute(
                        _users.insert().values(
                            email=normalized,
                            password_hash=password_hash,
                            full_name=full_name,
                            job_title=job_title,
                            phone=phone,
                            is_admin=1 if is_admin else 0,
                            approved=1 if approved else 0,
                            created_at=_now_iso(),
                        )
                    )
                    user_id = result.inserted_primary_key[0]
                    _write_apps(conn, user_id, allowed_apps)
                    user = _fetch_user(conn, _users.c.id == user_id)
            except IntegrityError as exc:
                # Only a taken email is AccountExists. Any other constraint
                # violation stays an IntegrityError and becomes StorageFailure.
                if self._email_taken(normalized):
                    raise AccountExists(normalized) from exc
                raise
        return user

    def _email_taken(self, normalized: str) -> bool:
        with self.engine.connect() as conn:
            count = conn.execute(select(func.count()).select_from(_users).where(_users.c.email == normalized)).scalar()
        return (count or 0) > 0

    def get_by_id(self, user_id: int) -> User | None:
        """Look up a user (with entitlements) by primary key. Returns None if not found."""
        with _storage("get_by_id"):
            with self.engine.connect() as conn:
                return _fetch_user(conn, _users.c.id == user_id)

    def get_by_email(self, email: str) -> User | None:
        """Case-insensitive lookup against the normalized stored email."""
        with _storage("get_by_email"):
            with self.engine.connect() as conn:
                return _fetch_user(conn, _users.c.email == normalize_email(email))

    def list_users(self) -> list[User]:
        """Return all users ordered by email. Admin-only operation."""
        with _storage("list_users"):
            with self.engine.connect() as conn:
                rows = conn.execute(_users.select().order_by(_users.c.email)).fetchall()
                apps = _apps_by_user(conn, [r.id for r in rows])
        return [_row_to_user(r, apps.get(r.id, [])) for r in rows]

    def list_pending(self) -> list[User]:
        """Return non-admin users still awaiting approval, oldest first."""
        with _storage("list_pending"):
            with self.engine.connect() as conn:
                rows = conn.execute(
                    _users.select()
                    .where((_users.c.approved == 0) & (_users.c.is_admin == 0))
                    .order_by(_users.c.created_at, _users.c.id)
                ).fetchall()
                apps = _apps_by_user(conn, [r.id for r in rows])
        return [_row_to_user(r, apps.get(r.id, [])) for r in rows]

    # ------------------------------------------------------------------
    # User mutations
    # ------------------------------------------------------------------

    def update_profile(self, user_id: int, *, full_name: str, job_title: str, phone: str) -> bool:
        return self._update_user("update_profile", user_id, full_name=full_name, job_title=job_title, phone=phone)

    def update_password(self, user_id: int, password_hash: str) -> bool:
        return self._update_user("update_password", user_id, password_hash=password_hash)

    def set_admin(self, user_id: int, is_admin: bool) -> bool:
        return self._update_user("set_admin", user_id, is_admin=1 if is_admin else 0)

    def set_approval(self, user_id: int, approved: bool) -> bool:
        return self._update_user("set_approval", user_id, approved=1 if approved else 0)

    def approve_user(self, user_id: int, password_hash: str, allowed_apps: Iterable[str]) -> bool:
        """Rotate the password, set approved and replace entitlements in one transaction.

        Returns False (and writes nothing) if the user does not exist.
        """
        with _storage("approve_user"):
            with self.engine.begin() as conn:
                result = conn.execute(
                    _users.update()
                    .where(_users.c.id == user_id)
                    .values(password_hash=password_hash, approved=1)
                )
                if result.rowcount == 0:
                    return False
                conn.execute(_user_apps.delete().where(_user_apps.c.user_id == user_id))
                _write_apps(conn, user_id, allowed_apps)
        return True

    def delete_user(self, user_id: int) -> bool:
        """Hard-delete a user together with its entitlement and token rows.

        Child rows are deleted explicitly in the same transaction, so no
        orphaned user_apps row is ever observable even on a connection where
        foreign key enforcement is off.
        """
        with _storage("delete_user"):
            with self.engine.begin() as conn:
                conn.execute(_user_apps.delete().where(_user_apps.c.user_id == user_id))
                conn.execute(_tokens.delete().where(_tokens.c.user_id == user_id))
                result = conn.execute(_users.delete().where(_users.c.id == user_id))
        return result.rowcount > 0

    def _update_user(self, operation: str, user_id: int, **fields) -> bool:
        with _storage(operation):
            with self.engine.begin() as conn:
                result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Entitlements
    # ------------------------------------------------------------------

    def get_apps(self, user_id: int) -> list[str]:
        """Return the user's app slugs in ascending order ([] if none)."""
        with _storage("get_apps"):
            with self.engine.connect() as conn:
                return _apps_by_user(conn, [user_id]).get(user_id, [])

    def replace_apps(self, user_id: int, slugs: Iterable[str]) -> list[str]:
        """Replace the user's whole entitlement set (delete-all-then-insert) atomically."""
        with _storage("replace_apps"):
            with self.engine.begin() as conn:
                conn.execute(_user_apps.delete().where(_user_apps.c.user_id == user_id))
                _write_apps(conn, user_id, slugs)
                return _apps_by_user(conn, [user_id]).get(user_id, [])

    # ------------------------------------------------------------------
    # Password reset tokens
    # ------------------------------------------------------------------

    def create_reset_token(self, user_id: int, token: str, expires_at: datetime) -> PasswordResetToken:
        """Delete the user's unused tokens, then insert the new one, in one transaction.

        Delete-before-insert keeps at most one live token per user even when
        requests arrive back to back. Used tokens are kept for audit.
        """
        with _storage("create_reset_token"):
            with self.engine.begin() as conn:
                conn.execute(_tokens.delete().where((_tokens.c.user_id == user_id) & (_tokens.c.used == 0)))
                result = conn.execute(
                    _tokens.insert().values(
                        user_id=user_id,
                        token=token,
                        expires_at=expires_at.astimezone(timezone.utc).isoformat(),
                        used=0,
                        created_at=_now_iso(),
                    )
                )
                row = conn.execute(
                    _tokens.select().where(_tokens.c.id == result.inserted_primary_key[0])
                ).fetchone()
        return _row_to_token(row)

    def get_reset_token(self, token: str) -> PasswordResetToken | None:
        with _storage("get_reset_token"):
            with self.engine.connect() as conn:
                row = conn.execute(_tokens.select().where(_tokens.c.token == token)).fetchone()
        return _row_to_token(row) if row is not None else None

    def mark_token_used(self, token_id: int) -> bool:
        """Flip used to 1. Returns False if the token was already used or does not exist."""
        with _storage("mark_token_used"):
            with self.engine.begin() as conn:
                result = conn.execute(
                    _tokens.update().where((_tokens.c.id == token_id) & (_tokens.c.used == 0)).values(used=1)
                )
        return result.rowcount > 0

    def complete_reset(self, token_id: int, user_id: int, password_hash: str, *, now: datetime | None = None) -> bool:
        """Consume the token and store the new password hash in one transaction.

        The token update is conditional on used = 0 and expires_at >= now.
        When it matches no row (a concurrent reset won the race, or the token
        expired since it was validated) nothing is written and False is
        returned.
        """
        # Same isoformat as create_reset_token, so the string comparison is chronological.
        cutoff = (now or datetime.now(timezone.utc)).astimezone(timezone.utc).isoformat()
        with _storage("complete_reset"):
            with self.engine.begin() as conn:
                consumed = conn.execute(
                    _tokens.update()
                    .where(
                        (_tokens.c.id == token_id)
                        & (_tokens.c.user_id == user_id)
                        & (_tokens.c.used == 0)
                        & (_tokens.c.expires_at >= cutoff)
                    )
                    .values(used=1)
                )
                if consumed.rowcount == 0:
                    return False
                conn.execute(_users.update().where(_users.c.id == user_id).values(password_hash=password_hash))
        return True


# ---------------------------------------------------------------------------
# Query helpers (shared connection, caller owns the transaction)
# ---------------------------------------------------------------------------


def _write_apps(conn: Connection, user_id: int, slugs: Iterable[str]) -> None:
    unique = sorted(set(slugs))
    if not unique:
        return
    now = _now_iso()
    conn.execute(
        _user_apps.insert(),
        [{"user_id": user_id, "app_slug": slug, "created_at": now} for slug in unique],
    )


def _apps_by_user(conn: Connection, user_ids: list[int]) -> dict[int, list[str]]:
    if not user_ids:
        return {}
    rows = conn.execute(
        select(_user_apps.c.user_id, _user_apps.c.app_slug)
        .where(_user_apps.c.user_id.in_(user_ids))
        .order_by(_user_apps.c.user_id, _user_apps.c.app_slug)
    ).fetchall()
    apps: dict[int, list[str]] = {}
    for row in rows:
        apps.setdefault(row.user_id, []).append(row.app_slug)
    return apps


def _fetch_user(conn: Connection, clause) -> User | None:
    row = conn.execute(_users.select().where(clause)).fetchone()
    if row is None:
        return None
    return _row_to_user(row, _apps_by_user(conn, [row.id]).get(row.id, []))


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row, apps: list[str]) -> User:
    return User(
        id=row.id,
        email=row.email,
        password_hash=row.password_hash,
        full_name=row.full_name or "",
        job_title=row.job_title or "",
        phone=row.phone or "",
        is_admin=bool(row.is_admin),
        approved=bool(row.approved),
        created_at=row.created_at,
        allowed_apps=list(apps),
    )


def _parse_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        # Naive timestamps are written by older tooling; treat them as UTC.
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _row_to_token(row) -> PasswordResetToken:
    return PasswordResetToken(
        id=row.id,
        user_id=row.user_id,
        token=row.token,
        expires_at=_parse_timestamp(row.expires_at),
        used=bool(row.used),
        created_at=row.created_at,
    )
