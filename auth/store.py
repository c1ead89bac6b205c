"""
auth/store.py -- SQLAlchemy Core persistence layer for identities and refresh tokens.

Pattern: Repository + Data Mapper.
IdentityStore is the repository; _row_to_identity / _row_to_refresh_token are
the mappers. Session and gate code never touch SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Refresh-token rotation is a single transaction: a conditional DELETE of the
  old record followed by the INSERT of the new one only when exactly one row
  was deleted. Two callers racing with the same token serialize on the row
  (or, on SQLite, the database write lock); the second DELETE matches nothing
  and that caller loses. No read-then-write window exists.

  The refresh record set is modelled as rows with a UNIQUE token column, so
  the same token can never be active twice.

DB path: admingate_auth.db at the project root unless DATABASE_URL is set.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    Float,
    Index,
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

from auth.models import Identity, RefreshTokenRecord, Role

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_identities = Table(
    "identities",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),  # lowercase-normalized
    Column("hashed_password", Text, nullable=False),
    Column("role", String(30), nullable=False, server_default=Role.ADMIN.value),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("last_login_at", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_refresh_tokens = Table(
    "refresh_tokens",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("identity_id", Integer, nullable=False),
    Column("token", String(2048), nullable=False, unique=True),
    Column("created_at", Float, nullable=False),  # epoch seconds, drives passive expiry
    Index("ix_refresh_tokens_identity_id", "identity_id"),
)

# Columns update_identity() will write. Anything else is a programming error.
_MUTABLE_IDENTITY_FIELDS = {"email", "hashed_password", "role", "is_active"}


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers do not block during rotation writes.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def normalize_email(email: str) -> str:
    return email.strip().lower()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class IdentityStore:
    """Repository for Identity and RefreshTokenRecord entities.

    Usage:
        store = IdentityStore("sqlite:///:memory:")
        identity = store.create_identity("admin@example.com", hash_password("secret"), "admin")
        store.add_refresh_token(identity.id, refresh_token)
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
    # Identity queries
    # ------------------------------------------------------------------

    def create_identity(self, email: str, hashed_password: str, role: str = Role.ADMIN.value) -> Identity:
        """Insert a new identity and return it.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        The bootstrap path catches that as a signal that a concurrent login
        already created the record.
        """
        now = _now_iso()
        with self.engine.begin() as conn:
            result = conn.execute(
                _identities.insert().values(
                    email=normalize_email(email),
                    hashed_password=hashed_password,
                    role=role,
                    is_active=1,
                    created_at=now,
                    updated_at=now,
                )
            )
            identity_id = result.inserted_primary_key[0]
        return self.get_by_id(identity_id)

    def get_by_email(self, email: str) -> Identity | None:
        """Look up an identity by email (normalized before comparison)."""
        with self.engine.connect() as conn:
            row = conn.execute(_identities.select().where(_identities.c.email == normalize_email(email))).fetchone()
        return _row_to_identity(row) if row is not None else None

    def get_by_id(self, identity_id: int, with_tokens: bool = False) -> Identity | None:
        """Look up an identity by primary key. Returns None if not found.

        with_tokens=True also loads the refresh-token records, oldest first.
        """
        with self.engine.connect() as conn:
            row = conn.execute(_identities.select().where(_identities.c.id == identity_id)).fetchone()
        if row is None:
            return None
        identity = _row_to_identity(row)
        if with_tokens:
            identity.refresh_tokens = self.list_refresh_tokens(identity_id)
        return identity

    def update_identity(self, identity_id: int, **fields) -> bool:
        """Persist changes to mutable identity fields.

        Accepted fields: email, hashed_password, role, is_active. Unknown
        fields raise ValueError. Returns True if a row was updated.
        """
        unknown = set(fields) - _MUTABLE_IDENTITY_FIELDS
        if unknown:
            raise ValueError(f"Unknown identity fields: {unknown!r}")
        if "is_active" in fields:
            fields["is_active"] = 1 if fields["is_active"] else 0
        if "email" in fields:
            fields["email"] = normalize_email(fields["email"])
        with self.engine.begin() as conn:
            result = conn.execute(
                _identities.update()
                .where(_identities.c.id == identity_id)
                .values(updated_at=_now_iso(), **fields)
            )
        return result.rowcount > 0

    def update_last_login(self, identity_id: int) -> None:
        """Stamp the current UTC timestamp as last_login_at."""
        now = _now_iso()
        with self.engine.begin() as conn:
            conn.execute(
                _identities.update().where(_identities.c.id == identity_id).values(last_login_at=now, updated_at=now)
            )

    # ------------------------------------------------------------------
    # Refresh-token records
    # ------------------------------------------------------------------

    def add_refresh_token(self, identity_id: int, token: str, created_at: float | None = None) -> RefreshTokenRecord:
        """Insert a refresh-token record for an identity."""
        created = time.time() if created_at is None else created_at
        with self.engine.begin() as conn:
            result = conn.execute(
                _refresh_tokens.insert().values(identity_id=identity_id, token=token, created_at=created)
            )
            record_id = result.inserted_primary_key[0]
        return RefreshTokenRecord(identity_id=identity_id, token=token, created_at=created, id=record_id)

    def rotate_refresh_token(self, identity_id: int, old_token: str, new_token: str, not_before: float) -> bool:
        """Atomically replace old_token with new_token for identity_id.

        The old record must still exist and have been created at or after
        not_before (epoch seconds). Returns False, and writes nothing, when it
        does not -- the token was already rotated, logged out, swept, or
        never issued.
        """
        with self.engine.begin() as conn:
            deleted = conn.execute(
                _refresh_tokens.delete().where(
                    (_refresh_tokens.c.identity_id == identity_id)
                    & (_refresh_tokens.c.token == old_token)
                    & (_refresh_tokens.c.created_at >= not_before)
                )
            )
            if deleted.rowcount != 1:
                return False
            conn.execute(
                _refresh_tokens.insert().values(identity_id=identity_id, token=new_token, created_at=time.time())
            )
        return True

    def remove_refresh_token(self, token: str, identity_id: int | None = None) -> bool:
        """Delete one refresh-token record. Returns True if a row was removed.

        identity_id narrows the match when the caller knows it. Without it the
        token string alone is enough -- tokens are unique and unguessable.
        """
        condition = _refresh_tokens.c.token == token
        if identity_id is not None:
            condition = condition & (_refresh_tokens.c.identity_id == identity_id)
        with self.engine.begin() as conn:
            result = conn.execute(_refresh_tokens.delete().where(condition))
        return result.rowcount > 0

    def remove_all_refresh_tokens(self, identity_id: int) -> int:
        """Delete every refresh-token record for an identity. Returns rows removed."""
        with self.engine.begin() as conn:
            result = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.identity_id == identity_id))
        return result.rowcount

    def list_refresh_tokens(self, identity_id: int, not_before: float | None = None) -> list[RefreshTokenRecord]:
        """Return refresh-token records for an identity, oldest first.

        not_before filters out records created before that epoch time.
        """
        query = _refresh_tokens.select().where(_refresh_tokens.c.identity_id == identity_id)
        if not_before is not None:
            query = query.where(_refresh_tokens.c.created_at >= not_before)
        with self.engine.connect() as conn:
            rows = conn.execute(query.order_by(_refresh_tokens.c.created_at, _refresh_tokens.c.id)).fetchall()
        return [_row_to_refresh_token(r) for r in rows]

    def count_refresh_tokens(self, identity_id: int) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count()).select_from(_refresh_tokens).where(_refresh_tokens.c.identity_id == identity_id)
            ).scalar()
        return result or 0

    def purge_expired_refresh_tokens(self, max_age_seconds: int) -> int:
        """Delete records older than max_age_seconds. Returns rows removed."""
        cutoff = time.time() - max_age_seconds
        with self.engine.begin() as conn:
            result = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.created_at < cutoff))
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_identity(row) -> Identity:
    return Identity(
        id=row.id,
        email=row.email,
        hashed_password=row.hashed_password,
        role=row.role,
        is_active=bool(row.is_active),
        last_login_at=row.last_login_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_refresh_token(row) -> RefreshTokenRecord:
    return RefreshTokenRecord(
        id=row.id,
        identity_id=row.identity_id,
        token=row.token,
        created_at=row.created_at,
    )
