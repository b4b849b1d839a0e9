"""
auth/password.py -- Argon2id password hashing.

Argon2id is memory-hard: every guess costs memory_cost KiB of RAM as well as
CPU time, which makes GPU and ASIC brute force expensive. argon2-cffi embeds
a fresh random salt and the cost parameters in each PHC-format hash, so
verify() needs only the stored string.

Hashing and verification take tens of milliseconds at the default cost. The
async wrappers push them onto the default thread pool so a login does not
stall every other request on the event loop.

Error mapping (never confuse a broken hash with a wrong password):
  VerifyMismatchError       -> InvalidCredentials
  InvalidHashError, other   -> UnexpectedError

Layer rule: no imports from api/ or cache/.
"""

from __future__ import annotations

import asyncio
import logging

from argon2 import PasswordHasher, Type
from argon2.exceptions import Argon2Error, InvalidHashError, VerifyMismatchError

from auth.errors import InvalidCredentials, UnexpectedError
from auth.models import Password

logger = logging.getLogger("authgate.auth.password")


class Argon2PasswordHasher:
    """Salted Argon2id hashing with configurable cost parameters.

    Defaults mirror the production settings in core/config.py. Tests pass
    tiny costs to keep the suite fast; the algorithm is unchanged.
    """

    def __init__(self, memory_cost: int = 15000, time_cost: int = 2, parallelism: int = 1) -> None:
        self._hasher = PasswordHasher(
            time_cost=time_cost,
            memory_cost=memory_cost,
            parallelism=parallelism,
            type=Type.ID,
        )

    def hash(self, password: Password) -> str:
        try:
            return self._hasher.hash(password.value)
        except Argon2Error as exc:
            logger.error("Password hashing failed: %s", exc)
            raise UnexpectedError() from exc

    def verify(self, password_hash: str, password: Password) -> None:
        """Return None on a match; raise InvalidCredentials on a mismatch."""
        try:
            self._hasher.verify(password_hash, password.value)
        except VerifyMismatchError as exc:
            raise InvalidCredentials() from exc
        except InvalidHashError as exc:
            logger.error("Stored password hash could not be decoded")
            raise UnexpectedError() from exc
        except Argon2Error as exc:
            logger.error("Password verification failed: %s", exc)
            raise UnexpectedError() from exc

    async def hash_async(self, password: Password) -> str:
        return await asyncio.to_thread(self.hash, password)

    async def verify_async(self, password_hash: str, password: Password) -> None:
        await asyncio.to_thread(self.verify, password_hash, password)
