"""
cache/revocation.py -- Revoked session tokens, each kept only as long as the token could still be presented.

A logout records the token here with ttl_seconds equal to the token's own
remaining validity (computed by auth.tokens.TokenIssuer.revoke). Once that
window closes the token fails validation by natural expiry anyway, so the
entry can disappear: the store never holds more than the tokens revoked
within one validity window.

revoke() returns False when the token already has a live entry and leaves
that entry unchanged, so of two concurrent logouts only one succeeds.

Backends:
  InMemoryRevokedTokenStore  dict token -> expires_at. Expired entries read
                             as absent; purge_expired() reclaims memory and is
                             called by the lifespan purge loop. Restart clears it.
  SQLiteRevokedTokenStore    same semantics in a local SQLite file; survives
                             restarts.
  RedisRevokedTokenStore     SET key 1 EX ttl NX / EXISTS. Redis evicts the key
                             itself, so the TTL is authoritative across
                             processes and restarts.

Usage:
    store = SQLiteRevokedTokenStore(Path("revoked.db"))
    await store.revoke(token, ttl_seconds=540)
    await store.is_revoked(token)       # True for the next 540 seconds
    store.purge_expired()               # call periodically to trim old entries

Layer rule: may import from auth.errors only; no api/ or core/ imports.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import threading
import time
from pathlib import Path
from typing import Protocol

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from auth.errors import TokenStoreError

logger = logging.getLogger("authgate.cache.revocation")

BANNED_TOKEN_KEY_PREFIX = "banned_token:"


class RevokedTokenStore(Protocol):
    async def revoke(self, token: str, ttl_seconds: int) -> bool: ...

    async def is_revoked(self, token: str) -> bool: ...


def _check_ttl(ttl_seconds: int) -> None:
    if ttl_seconds <= 0:
        raise ValueError(f"ttl_seconds must be positive, got {ttl_seconds}")


# ---------------------------------------------------------------------------
# In-memory
# ---------------------------------------------------------------------------


class InMemoryRevokedTokenStore:
    def __init__(self) -> None:
        self._expires: dict[str, float] = {}
        self._write_lock = asyncio.Lock()

    async def revoke(self, token: str, ttl_seconds: int) -> bool:
        _check_ttl(ttl_seconds)
        async with self._write_lock:
            now = time.time()
            expires_at = self._expires.get(token)
            if expires_at is not None and expires_at > now:
                return False
            self._expires[token] = now + ttl_seconds
            return True

    async def is_revoked(self, token: str) -> bool:
        expires_at = self._expires.get(token)
        return expires_at is not None and expires_at > time.time()

    def purge_expired(self) -> int:
        """Drop lapsed entries. Returns the number removed."""
        now = time.time()
        expired = [token for token, expires_at in self._expires.items() if expires_at <= now]
        for token in expired:
            self._expires.pop(token, None)
        return len(expired)

    def __len__(self) -> int:
        return len(self._expires)


# ---------------------------------------------------------------------------
# SQLite
# ---------------------------------------------------------------------------

_DDL = """
CREATE TABLE IF NOT EXISTS revoked_tokens (
    token       TEXT PRIMARY KEY,
    expires_at  REAL NOT NULL
);
"""


class SQLiteRevokedTokenStore:
    """Durable single-host backend.

    One sqlite3 connection is shared by the worker threads that asyncio.to_thread
    hands queries to; _conn_lock serializes access to it.
    """

    def __init__(self, db_path: Path | str) -> None:
        self._conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self._conn_lock = threading.Lock()
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute(_DDL)
        self._conn.commit()

    def _insert(self, token: str, now: float, ttl_seconds: int) -> bool:
        with self._conn_lock:
            # A lapsed row not yet purged must not block a new revocation.
            self._conn.execute("DELETE FROM revoked_tokens WHERE token = ? AND expires_at <= ?", (token, now))
            cursor = self._conn.execute(
                "INSERT OR IGNORE INTO revoked_tokens (token, expires_at) VALUES (?, ?)",
                (token, now + ttl_seconds),
            )
            self._conn.commit()
        return cursor.rowcount == 1

    def _exists(self, token: str, now: float) -> bool:
        with self._conn_lock:
            row = self._conn.execute(
                "SELECT 1 FROM revoked_tokens WHERE token = ? AND expires_at > ?",
                (token, now),
            ).fetchone()
        return row is not None

    async def revoke(self, token: str, ttl_seconds: int) -> bool:
        _check_ttl(ttl_seconds)
        try:
            return await asyncio.to_thread(self._insert, token, time.time(), ttl_seconds)
        except sqlite3.Error as exc:
            logger.error("Token revocation write failed: %s", exc)
            raise TokenStoreError() from exc

    async def is_revoked(self, token: str) -> bool:
        try:
            return await asyncio.to_thread(self._exists, token, time.time())
        except sqlite3.Error as exc:
            logger.error("Token revocation lookup failed: %s", exc)
            raise TokenStoreError() from exc

    def purge_expired(self) -> int:
        """Delete all lapsed entries. Returns number of rows removed."""
        with self._conn_lock:
            cursor = self._conn.execute("DELETE FROM revoked_tokens WHERE expires_at <= ?", (time.time(),))
            self._conn.commit()
        return cursor.rowcount

    def active_count(self) -> int:
        with self._conn_lock:
            (count,) = self._conn.execute(
                "SELECT COUNT(*) FROM revoked_tokens WHERE expires_at > ?", (time.time(),)
            ).fetchone()
        return count

    def close(self) -> None:
        self._conn.close()


# ---------------------------------------------------------------------------
# Redis
# ---------------------------------------------------------------------------


class RedisRevokedTokenStore:
    def __init__(self, client: aioredis.Redis) -> None:
        self.client = client

    @classmethod
    def from_url(cls, redis_url: str, *, socket_timeout: float = 5.0) -> RedisRevokedTokenStore:
        return cls(
            aioredis.from_url(
                redis_url,
                decode_responses=True,
                socket_timeout=socket_timeout,
                socket_connect_timeout=socket_timeout,
            )
        )

    async def revoke(self, token: str, ttl_seconds: int) -> bool:
        _check_ttl(ttl_seconds)
        try:
            created = await self.client.set(_key(token), "1", ex=ttl_seconds, nx=True)
        except RedisError as exc:
            logger.error("Token revocation write failed: %s", exc)
            raise TokenStoreError() from exc
        return bool(created)

    async def is_revoked(self, token: str) -> bool:
        try:
            return bool(await self.client.exists(_key(token)))
        except RedisError as exc:
            logger.error("Token revocation lookup failed: %s", exc)
            raise TokenStoreError() from exc

    async def close(self) -> None:
        await self.client.aclose()


def _key(token: str) -> str:
    return f"{BANNED_TOKEN_KEY_PREFIX}{token}"
