"""
auth/store.py -- SQLAlchemy Core persistence layer for credential entities.

Pattern: Repository + Data Mapper. CredentialStore is the repository;
_row_to_* functions are the mappers. Services never touch SQL directly.

Transactions:
  Every public method runs inside its own engine.begin() block, so each call
  commits on success and rolls back on error. run_atomic(*steps) opens ONE
  transaction and hands each step a transaction-bound view of the store
  (same query methods, same connection). Steps run in order; if any step
  raises, nothing any of them wrote is committed.

  Inside a step, only use the view passed in. Opening a second connection
  from within a step would escape the transaction (and, for in-memory SQLite,
  share the DBAPI connection and commit it early).

Atomic check-and-delete:
  take_refresh_token() is a single DELETE ... RETURNING statement, so the
  lookup and the delete cannot be split by another writer. When two callers
  race on the same token, the database serializes the two deletes: only the
  first gets the row back, the other gets None as if the row had never
  existed. Needs SQLite 3.35+ or PostgreSQL.

  Keep the take as the FIRST statement of its transaction. On SQLite a
  deferred transaction that has not read anything yet waits on the busy
  handler for the write lock and then takes a fresh snapshot; one that already read would
  fail with "database is locked" instead.

Security:
  All queries use bound parameters. No f-strings in SQL.

Layer rule: no imports from vault/ or bootstrap.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event
from sqlalchemy.engine import Connection, Engine

from auth.models import ApiKey, PasswordResetToken, RefreshToken, User

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("password_hash", Text, nullable=False),
    Column("name", String(255)),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("last_login_at", String(32)),
    Column("created_at", String(32), nullable=False),
)

_refresh_tokens = Table(
    "refresh_tokens",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("token", String(512), nullable=False, unique=True),  # the signed JWT
    Column("user_id", Integer, nullable=False, index=True),
    Column("expires_at", String(32), nullable=False),
    Column("created_at", String(32), nullable=False),
)

_password_reset_tokens = Table(
    "password_reset_tokens",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("token", String(64), nullable=False, unique=True),
    Column("user_id", Integer, nullable=False, index=True),
    Column("expires_at", String(32), nullable=False),
    Column("used", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
)

_api_keys = Table(
    "api_keys",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("platform", String(50), nullable=False, unique=True),
    Column("ciphertext", Text, nullable=False),
    Column("iv", String(32), nullable=False),  # 16-byte nonce, hex
    Column("auth_tag", String(32), nullable=False),  # 16-byte GCM tag, hex
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers are not blocked during writes.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _to_iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat()


def _from_iso(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ---------------------------------------------------------------------------
# Query methods (shared by the store and its transaction-bound view)
# ---------------------------------------------------------------------------


class _Queries:
    """All repository queries, parameterized over how a connection is obtained."""

    def _begin(self):
        """Return a context manager yielding the Connection to run queries on."""
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        The caller is expected to pass an already-normalized email.
        """
        now = _now_iso()
        with self._begin() as conn:
            result = conn.execute(
                _users.insert().values(
                    email=user.email,
                    password_hash=user.password_hash,
                    name=user.name,
                    is_active=1 if user.is_active else 0,
                    last_login_at=user.last_login_at,
                    created_at=now,
                )
            )
            return result.inserted_primary_key[0]

    def find_user_by_email(self, email: str) -> User | None:
        """Exact-match lookup. Callers normalize (strip + lower) first."""
        with self._begin() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_user_by_id(self, user_id: int) -> User | None:
        with self._begin() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def update_user(self, user_id: int, **fields) -> bool:
        """Update mutable fields on an existing user.

        Accepted fields: password_hash, name, is_active, last_login_at.
        is_active must be passed as bool; this method converts to int.

        Returns True if a row was updated, False if user_id was not found.
        """
        if "is_active" in fields:
            fields["is_active"] = 1 if fields["is_active"] else 0
        with self._begin() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
        return result.rowcount > 0

    def update_last_login(self, user_id: int) -> None:
        """Stamp the current UTC timestamp as last_login_at."""
        self.update_user(user_id, last_login_at=_now_iso())

    # ------------------------------------------------------------------
    # Refresh tokens
    # ------------------------------------------------------------------

    def create_refresh_token(self, user_id: int, token: str, expires_at: datetime) -> int:
        with self._begin() as conn:
            result = conn.execute(
                _refresh_tokens.insert().values(
                    token=token,
                    user_id=user_id,
                    expires_at=_to_iso(expires_at),
                    created_at=_now_iso(),
                )
            )
            return result.inserted_primary_key[0]

    def find_refresh_token_by_token(self, token: str) -> RefreshToken | None:
        """Plain read. Rotation must use take_refresh_token() instead."""
        with self._begin() as conn:
            row = conn.execute(_refresh_tokens.select().where(_refresh_tokens.c.token == token)).fetchone()
        return _row_to_refresh_token(row) if row is not None else None

    def take_refresh_token(self, token: str) -> RefreshToken | None:
        """Atomically look up and delete a refresh token.

        Returns the deleted record, or None if the token was not stored or a
        concurrent caller deleted it first. Expired rows are returned (and
        deleted) too; judging expiry is the caller's job.
        """
        with self._begin() as conn:
            row = conn.execute(
                _refresh_tokens.delete().where(_refresh_tokens.c.token == token).returning(*_refresh_tokens.c)
            ).first()
        return _row_to_refresh_token(row) if row is not None else None

    def delete_refresh_token(self, token: str) -> bool:
        """Delete by token string. Returns False if nothing matched."""
        with self._begin() as conn:
            result = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.token == token))
        return result.rowcount > 0

    def delete_refresh_tokens_for_user(self, user_id: int) -> int:
        """Delete every refresh token owned by user_id. Returns the count removed."""
        with self._begin() as conn:
            result = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.user_id == user_id))
        return result.rowcount

    # ------------------------------------------------------------------
    # Password reset tokens
    # ------------------------------------------------------------------

    def create_password_reset_token(self, user_id: int, token: str, expires_at: datetime) -> int:
        with self._begin() as conn:
            result = conn.execute(
                _password_reset_tokens.insert().values(
                    token=token,
                    user_id=user_id,
                    expires_at=_to_iso(expires_at),
                    used=0,
                    created_at=_now_iso(),
                )
            )
            return result.inserted_primary_key[0]

    def find_password_reset_token_by_token(self, token: str) -> PasswordResetToken | None:
        with self._begin() as conn:
            row = conn.execute(
                _password_reset_tokens.select().where(_password_reset_tokens.c.token == token)
            ).fetchone()
        return _row_to_reset_token(row) if row is not None else None

    def delete_password_reset_token(self, token_id: int) -> bool:
        with self._begin() as conn:
            result = conn.execute(_password_reset_tokens.delete().where(_password_reset_tokens.c.id == token_id))
        return result.rowcount > 0

    def delete_password_reset_tokens_for_user(self, user_id: int) -> int:
        with self._begin() as conn:
            result = conn.execute(
                _password_reset_tokens.delete().where(_password_reset_tokens.c.user_id == user_id)
            )
        return result.rowcount

    def mark_password_reset_token_used(self, token_id: int) -> bool:
        """Flip used 0 -> 1. Returns False if the token was already used or is gone.

        The used = 0 predicate makes this a compare-and-set: of two concurrent
        resets with the same token, only one update matches.
        """
        with self._begin() as conn:
            result = conn.execute(
                _password_reset_tokens.update()
                .where((_password_reset_tokens.c.id == token_id) & (_password_reset_tokens.c.used == 0))
                .values(used=1)
            )
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # API keys
    # ------------------------------------------------------------------

    def upsert_api_key(self, platform: str, ciphertext: str, iv: str, auth_tag: str) -> ApiKey:
        """Create or replace the encrypted key for platform and return the stored record.

        Update-then-insert inside one transaction keeps this portable across
        SQLite and PostgreSQL without dialect-specific ON CONFLICT clauses.
        """
        now = _now_iso()
        with self._begin() as conn:
            result = conn.execute(
                _api_keys.update()
                .where(_api_keys.c.platform == platform)
                .values(ciphertext=ciphertext, iv=iv, auth_tag=auth_tag, updated_at=now)
            )
            if result.rowcount == 0:
                conn.execute(
                    _api_keys.insert().values(
                        platform=platform,
                        ciphertext=ciphertext,
                        iv=iv,
                        auth_tag=auth_tag,
                        is_active=1,
                        created_at=now,
                        updated_at=now,
                    )
                )
            row = conn.execute(_api_keys.select().where(_api_keys.c.platform == platform)).fetchone()
        return _row_to_api_key(row)

    def list_active_api_keys(self) -> list[ApiKey]:
        """Return all active API keys ordered by platform name."""
        with self._begin() as conn:
            rows = conn.execute(
                _api_keys.select().where(_api_keys.c.is_active == 1).order_by(_api_keys.c.platform)
            ).fetchall()
        return [_row_to_api_key(r) for r in rows]


# ---------------------------------------------------------------------------
# Transaction-bound view
# ---------------------------------------------------------------------------


class _TransactionStore(_Queries):
    """Store view whose every query runs on one already-open transaction."""

    def __init__(self, conn: Connection) -> None:
        self._conn = conn

    @contextmanager
    def _begin(self) -> Iterator[Connection]:
        yield self._conn


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class CredentialStore(_Queries):
    """Repository for users, session tokens, reset tokens and encrypted API keys.

    Usage:
        store = CredentialStore("sqlite:///:memory:")
        user_id = store.create_user(User(email="a@b.com", password_hash=hash_password("pw")))
        store.run_atomic(
            lambda tx: tx.update_user(user_id, password_hash=new_hash),
            lambda tx: tx.mark_password_reset_token_used(token_id),
        )
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite") and ":memory:" not in db_url:
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    @contextmanager
    def _begin(self) -> Iterator[Connection]:
        with self.engine.begin() as conn:
            yield conn

    def run_atomic(self, *steps: Callable[[_Queries], Any]) -> list[Any]:
        """Run steps in order inside one transaction and return their results.

        Each step receives a transaction-bound store view. An exception from
        any step rolls back everything and propagates to the caller.
        """
        with self.engine.begin() as conn:
            tx = _TransactionStore(conn)
            return [step(tx) for step in steps]

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        password_hash=row.password_hash,
        name=row.name,
        is_active=bool(row.is_active),
        last_login_at=row.last_login_at,
        created_at=row.created_at,
    )


def _row_to_refresh_token(row) -> RefreshToken:
    return RefreshToken(
        id=row.id,
        token=row.token,
        user_id=row.user_id,
        expires_at=_from_iso(row.expires_at),
        created_at=row.created_at,
    )


def _row_to_reset_token(row) -> PasswordResetToken:
    return PasswordResetToken(
        id=row.id,
        token=row.token,
        user_id=row.user_id,
        expires_at=_from_iso(row.expires_at),
        used=bool(row.used),
        created_at=row.created_at,
    )


def _row_to_api_key(row) -> ApiKey:
    return ApiKey(
        id=row.id,
        platform=row.platform,
        ciphertext=row.ciphertext,
        iv=row.iv,
        auth_tag=row.auth_tag,
        is_active=bool(row.is_active),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
