"""
auth/store.py -- Credential stores: who is registered and with which password.

Pattern: Repository + Data Mapper. UserStore is the protocol the login flow
depends on; InMemoryUserStore and SQLUserStore are the interchangeable
repositories, selected at startup by api.main.build_service(). _row_to_user
is the mapper. Route and service code never touches SQL directly.

Both stores own password hashing (auth/password.py): callers hand in a
Password, the store persists only the Argon2id hash.

Duplicate registration must be atomic under concurrent signups with the same
email:
  InMemoryUserStore  check-then-insert under a single asyncio.Lock. The hash
                     is computed before the lock is taken so the lock is
                     never held across the slow Argon2 call.
  SQLUserStore       the UNIQUE constraint on users.email decides; the
                     resulting IntegrityError maps to UserAlreadyExists.
                     There is no SELECT-then-INSERT race window to close.

Security:
  All queries use bound parameters. No f-strings in SQL.

Layer rule: no imports from api/ or cache/.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Protocol

from sqlalchemy import Boolean, Column, MetaData, String, Table, Text, create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.errors import UnexpectedError, UserAlreadyExists, UserNotFound
from auth.models import Email, Password, User
from auth.password import Argon2PasswordHasher

logger = logging.getLogger("authgate.auth.store")


class UserStore(Protocol):
    async def add(self, email: Email, password: Password, requires_2fa: bool) -> User: ...

    async def get(self, email: Email) -> User: ...

    async def validate(self, email: Email, password: Password) -> User: ...


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# In-memory repository
# ---------------------------------------------------------------------------


class InMemoryUserStore:
    """Volatile store for development and tests. Restart forgets every account.

    Reads (get/validate) take no lock: dict lookups never observe a
    half-written entry. Writes serialize on _write_lock.
    """

    def __init__(self, hasher: Argon2PasswordHasher | None = None) -> None:
        self._hasher = hasher or Argon2PasswordHasher()
        self._users: dict[Email, User] = {}
        self._write_lock = asyncio.Lock()

    async def add(self, email: Email, password: Password, requires_2fa: bool) -> User:
        if email in self._users:
            # Cheap early exit; the authoritative check is under the lock below.
            raise UserAlreadyExists()
        password_hash = await self._hasher.hash_async(password)
        async with self._write_lock:
            if email in self._users:
                raise UserAlreadyExists()
            user = User(
                email=email,
                password_hash=password_hash,
                requires_2fa=requires_2fa,
                created_at=_now_iso(),
            )
            self._users[email] = user
        return user

    async def get(self, email: Email) -> User:
        user = self._users.get(email)
        if user is None:
            raise UserNotFound()
        return user

    async def validate(self, email: Email, password: Password) -> User:
        user = await self.get(email)
        await self._hasher.verify_async(user.password_hash, password)
        return user

    def __len__(self) -> int:
        return len(self._users)


# ---------------------------------------------------------------------------
# SQL repository
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("email", String(320), primary_key=True),  # UNIQUE via PK -- the duplicate guard
    Column("password_hash", Text, nullable=False),
    Column("requires_2fa", Boolean, nullable=False, default=False),
    Column("created_at", String(32), nullable=False),
)


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers are not blocked during writes.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


class SQLUserStore:
    """Durable store over any SQLAlchemy URL (SQLite by default, Postgres in production).

    SQLAlchemy Core calls are blocking, so every public coroutine runs its
    query in asyncio.to_thread(). The Engine's connection pool is thread-safe.

    Usage:
        store = SQLUserStore("sqlite:///users.db")
        await store.add(Email.parse("a@b.com"), Password.parse("password123"), False)
        user = await store.get(Email.parse("a@b.com"))
        store.close()
    """

    def __init__(self, db_url: str, hasher: Argon2PasswordHasher | None = None) -> None:
        self._hasher = hasher or Argon2PasswordHasher()
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite") and ":memory:" not in db_url and "mode=memory" not in db_url:
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Blocking helpers (run in worker threads)
    # ------------------------------------------------------------------

    def _insert(self, user: User) -> None:
        with self.engine.connect() as conn:
            conn.execute(
                _users.insert().values(
                    email=user.email.value,
                    password_hash=user.password_hash,
                    requires_2fa=user.requires_2fa,
                    created_at=user.created_at,
                )
            )
            conn.commit()

    def _select(self, email: Email):
        with self.engine.connect() as conn:
            return conn.execute(_users.select().where(_users.c.email == email.value)).fetchone()

    # ------------------------------------------------------------------
    # UserStore protocol
    # ------------------------------------------------------------------

    async def add(self, email: Email, password: Password, requires_2fa: bool) -> User:
        password_hash = await self._hasher.hash_async(password)
        user = User(email=email, password_hash=password_hash, requires_2fa=requires_2fa, created_at=_now_iso())
        try:
            await asyncio.to_thread(self._insert, user)
        except IntegrityError as exc:
            raise UserAlreadyExists() from exc
        except SQLAlchemyError as exc:
            logger.error("User insert failed: %s", exc)
            raise UnexpectedError() from exc
        return user

    async def get(self, email: Email) -> User:
        try:
            row = await asyncio.to_thread(self._select, email)
        except SQLAlchemyError as exc:
            logger.error("User lookup failed: %s", exc)
            raise UnexpectedError() from exc
        if row is None:
            raise UserNotFound()
        return _row_to_user(row)

    async def validate(self, email: Email, password: Password) -> User:
        user = await self.get(email)
        await self._hasher.verify_async(user.password_hash, password)
        return user

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    # Stored emails were validated on the way in; re-wrap without re-parsing.
    return User(
        email=Email(row.email),
        password_hash=row.password_hash,
        requires_2fa=bool(row.requires_2fa),
        created_at=row.created_at,
    )
