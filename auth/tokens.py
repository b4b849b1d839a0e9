"""
auth/tokens.py -- Session token issuance, validation, revocation, and the auth cookie.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY and carry
       sub (the account email), exp (absolute expiry, ttl_seconds after
       issuance), iat, and jti. jti is random per token, so two logins in the
       same second get distinct tokens and revoking one leaves the other valid.

  Validation: signature and expiry are checked by jose; only then is the
       revocation store consulted. Issuance never consults it.

  Revocation: the store entry lives exactly as long as the token's remaining
       validity (exp - now, at least one second). After that the token fails
       on expiry alone, so the entry is no longer needed. The store reports
       whether the entry is new, which is how a racing second logout loses.

  Cookie: "jwt", httpOnly (no JS access), Secure (configurable off only for
       plain-http local development), SameSite=Lax, path "/", max_age matches
       the token lifetime so cookie and token expire together.

Layer rule: no imports from api/ or core/. Store implementations are injected.
"""

from __future__ import annotations

import logging
import math
import time
import uuid
from typing import TYPE_CHECKING

from jose import JWTError, jwt
from jose.exceptions import JOSEError

from auth.errors import InvalidToken, TokenRevoked, UnexpectedError
from auth.models import Email

if TYPE_CHECKING:
    from cache.revocation import RevokedTokenStore

logger = logging.getLogger("authgate.auth.tokens")

JWT_COOKIE_NAME = "jwt"
_ALGORITHM = "HS256"


class TokenIssuer:
    """Mints and verifies signed session tokens.

    Args:
        secret_key:    HS256 signing key (>= 32 chars, enforced by core.config).
        ttl_seconds:   Fixed validity window of every issued token.
        revoked_store: Where logouts record revoked tokens.
    """

    def __init__(self, secret_key: str, ttl_seconds: int, revoked_store: RevokedTokenStore) -> None:
        self._secret_key = secret_key
        self.ttl_seconds = ttl_seconds
        self.revoked_store = revoked_store

    # ------------------------------------------------------------------
    # Encode / decode
    # ------------------------------------------------------------------

    def issue(self, email: Email) -> str:
        now = int(time.time())
        payload = {
            "sub": email.value,
            "iat": now,
            "exp": now + self.ttl_seconds,
            "jti": uuid.uuid4().hex,
        }
        try:
            return jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)
        except JOSEError as exc:
            logger.error("Token encoding failed: %s", exc)
            raise UnexpectedError() from exc

    def _decode(self, token: str) -> dict:
        """Verify signature and expiry. Raises InvalidToken on any failure."""
        try:
            claims = jwt.decode(token, self._secret_key, algorithms=[_ALGORITHM])
        except JWTError as exc:
            raise InvalidToken() from exc
        if not isinstance(claims.get("sub"), str) or not isinstance(claims.get("exp"), (int, float)):
            raise InvalidToken()
        return claims

    # ------------------------------------------------------------------
    # Validation and revocation
    # ------------------------------------------------------------------

    async def validate(self, token: str) -> str:
        """Return the token's subject email.

        Raises InvalidToken (bad signature, expired, malformed), TokenRevoked
        (revoked by a logout), or TokenStoreError if the revocation store is
        unreachable -- an unreachable store must not read as "not revoked".
        """
        claims = self._decode(token)
        if await self.revoked_store.is_revoked(token):
            raise TokenRevoked()
        return claims["sub"]

    async def revoke(self, token: str) -> bool:
        """Record the token as revoked. False if it already was."""
        claims = self._decode(token)
        remaining = max(1, math.ceil(claims["exp"] - time.time()))
        if not await self.revoked_store.revoke(token, remaining):
            return False
        logger.info("Revoked session token for %s (%ds remaining)", Email(claims["sub"]).redacted(), remaining)
        return True


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_auth_cookie(response, token: str, max_age: int, secure: bool = True) -> None:
    """Write the session token as an httpOnly cookie on the response.

    Args:
        response: FastAPI/Starlette response object.
        token:    Encoded JWT string.
        max_age:  Cookie lifetime in seconds; pass TokenIssuer.ttl_seconds.
        secure:   Only send over HTTPS. Settings.secure_cookies.
    """
    response.set_cookie(
        JWT_COOKIE_NAME,
        value=token,
        httponly=True,
        samesite="lax",
        secure=secure,
        max_age=max_age,
        path="/",
    )


def clear_auth_cookie(response, secure: bool = True) -> None:
    response.delete_cookie(JWT_COOKIE_NAME, path="/", httponly=True, samesite="lax", secure=secure)
