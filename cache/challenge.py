"""
cache/challenge.py -- Pending two-factor challenges, at most one per email.

put() overwrites unconditionally: starting a new login attempt makes the
previous (attempt id, code) pair unusable. consume() removes a challenge only
if it still holds the given pair and reports whether it did; of two concurrent
verifications of one code, exactly one gets True. delete() drops whatever is
stored.

Every challenge expires ttl_seconds after it was issued (TWO_FA_CODE_TTL_SECONDS,
default 10 minutes). A challenge abandoned mid-login -- or stranded by a
failed email delivery -- reads as LoginAttemptIdNotFound once its TTL lapses.

Backends:
  InMemoryTwoFACodeStore  dict email -> Challenge; purge_expired() for the
                          lifespan purge loop.
  RedisTwoFACodeStore     SET two_fa_code:<email> <json> EX ttl; Redis evicts.
                          consume() is one Lua compare-and-delete.

Layer rule: may import from auth.errors and auth.models only.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Protocol

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from auth.errors import ChallengeStoreError, InvalidInput, LoginAttemptIdNotFound
from auth.models import Challenge, Email, LoginAttemptId, TwoFACode

logger = logging.getLogger("authgate.cache.challenge")

TWO_FA_CODE_KEY_PREFIX = "two_fa_code:"
_DEFAULT_TTL = 10 * 60  # seconds

# Delete only if the stored payload is still the one the caller verified.
_CONSUME_SCRIPT = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('DEL', KEYS[1])
end
return 0
"""


class TwoFACodeStore(Protocol):
    async def put(self, email: Email, attempt_id: LoginAttemptId, code: TwoFACode) -> None: ...

    async def get(self, email: Email) -> tuple[LoginAttemptId, TwoFACode]: ...

    async def consume(self, email: Email, attempt_id: LoginAttemptId, code: TwoFACode) -> bool: ...

    async def delete(self, email: Email) -> None: ...


# ---------------------------------------------------------------------------
# In-memory
# ---------------------------------------------------------------------------


class InMemoryTwoFACodeStore:
    def __init__(self, ttl_seconds: int = _DEFAULT_TTL) -> None:
        self.ttl_seconds = ttl_seconds
        self._challenges: dict[Email, Challenge] = {}
        self._write_lock = asyncio.Lock()

    async def put(self, email: Email, attempt_id: LoginAttemptId, code: TwoFACode) -> None:
        challenge = Challenge(attempt_id=attempt_id, code=code, expires_at=time.time() + self.ttl_seconds)
        async with self._write_lock:
            self._challenges[email] = challenge

    async def get(self, email: Email) -> tuple[LoginAttemptId, TwoFACode]:
        challenge = self._challenges.get(email)
        if challenge is None or challenge.is_expired():
            raise LoginAttemptIdNotFound()
        return challenge.attempt_id, challenge.code

    async def consume(self, email: Email, attempt_id: LoginAttemptId, code: TwoFACode) -> bool:
        async with self._write_lock:
            challenge = self._challenges.get(email)
            if challenge is None or challenge.is_expired():
                return False
            if challenge.attempt_id != attempt_id or challenge.code != code:
                return False
            del self._challenges[email]
            return True

    async def delete(self, email: Email) -> None:
        async with self._write_lock:
            self._challenges.pop(email, None)

    def purge_expired(self) -> int:
        now = time.time()
        expired = [email for email, challenge in self._challenges.items() if challenge.is_expired(now)]
        for email in expired:
            self._challenges.pop(email, None)
        return len(expired)

    def __len__(self) -> int:
        return len(self._challenges)


# ---------------------------------------------------------------------------
# Redis
# ---------------------------------------------------------------------------


class RedisTwoFACodeStore:
    def __init__(self, client: aioredis.Redis, ttl_seconds: int = _DEFAULT_TTL) -> None:
        self.client = client
        self.ttl_seconds = ttl_seconds

    @classmethod
    def from_url(
        cls, redis_url: str, ttl_seconds: int = _DEFAULT_TTL, *, socket_timeout: float = 5.0
    ) -> RedisTwoFACodeStore:
        return cls(
            aioredis.from_url(
                redis_url,
                decode_responses=True,
                socket_timeout=socket_timeout,
                socket_connect_timeout=socket_timeout,
            ),
            ttl_seconds=ttl_seconds,
        )

    async def put(self, email: Email, attempt_id: LoginAttemptId, code: TwoFACode) -> None:
        try:
            await self.client.set(_key(email), _encode(attempt_id, code), ex=self.ttl_seconds)
        except RedisError as exc:
            logger.error("2FA challenge write failed: %s", exc)
            raise ChallengeStoreError() from exc

    async def get(self, email: Email) -> tuple[LoginAttemptId, TwoFACode]:
        try:
            raw = await self.client.get(_key(email))
        except RedisError as exc:
            logger.error("2FA challenge lookup failed: %s", exc)
            raise ChallengeStoreError() from exc
        if raw is None:
            raise LoginAttemptIdNotFound()
        try:
            data = json.loads(raw)
            return LoginAttemptId.parse(data["login_attempt_id"]), TwoFACode.parse(data["code"])
        except (ValueError, KeyError, TypeError, InvalidInput) as exc:
            logger.error("Corrupt 2FA challenge record for %s", email.redacted())
            raise ChallengeStoreError() from exc

    async def consume(self, email: Email, attempt_id: LoginAttemptId, code: TwoFACode) -> bool:
        try:
            removed = await self.client.eval(_CONSUME_SCRIPT, 1, _key(email), _encode(attempt_id, code))
        except RedisError as exc:
            logger.error("2FA challenge consume failed: %s", exc)
            raise ChallengeStoreError() from exc
        return bool(removed)

    async def delete(self, email: Email) -> None:
        try:
            await self.client.delete(_key(email))
        except RedisError as exc:
            logger.error("2FA challenge delete failed: %s", exc)
            raise ChallengeStoreError() from exc

    async def close(self) -> None:
        await self.client.aclose()


def _key(email: Email) -> str:
    return f"{TWO_FA_CODE_KEY_PREFIX}{email.value}"


def _encode(attempt_id: LoginAttemptId, code: TwoFACode) -> str:
    return json.dumps({"login_attempt_id": attempt_id.value, "code": code.value})
