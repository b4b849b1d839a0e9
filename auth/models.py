"""
auth/models.py -- Domain types for authentication entities.

Pattern: Value objects with parse() constructors plus plain data classes.
Untrusted strings become Email / Password / LoginAttemptId / TwoFACode only
through parse(), which raises InvalidInput on malformed input. Everything
past the API boundary can therefore assume well-formed values, and malformed
input is rejected before any store is touched.

User is the persisted record. It holds only the Argon2id hash -- the
plaintext Password never leaves the request that submitted it.

Layer rule: no imports from api/, cache/, or core/.
"""

from __future__ import annotations

import secrets
import time
import uuid
from dataclasses import dataclass, field

from email_validator import EmailNotValidError, validate_email

from auth.errors import InvalidInput

MIN_PASSWORD_LENGTH = 8
TWO_FA_CODE_LENGTH = 6


@dataclass(frozen=True)
class Email:
    """A syntactically valid email address; the unique account key."""

    value: str

    @classmethod
    def parse(cls, raw: str) -> Email:
        """Validate syntax only. Deliverability (DNS/MX) is not checked --
        signup must not depend on network lookups."""
        try:
            result = validate_email(raw, check_deliverability=False)
        except EmailNotValidError as exc:
            raise InvalidInput(f"{raw!r} is not a valid email.") from exc
        return cls(result.normalized)

    def redacted(self) -> str:
        """First two characters of the local part, then the domain. For log lines."""
        local, _, domain = self.value.partition("@")
        return f"{local[:2]}***@{domain}"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class Password:
    # repr=False keeps the plaintext out of logs and tracebacks.
    value: str = field(repr=False)

    @classmethod
    def parse(cls, raw: str) -> Password:
        if len(raw) < MIN_PASSWORD_LENGTH:
            raise InvalidInput(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long.")
        return cls(raw)


@dataclass(frozen=True)
class LoginAttemptId:
    """Identifier of one 2FA login attempt (a UUID, v4 when generated here)."""

    value: str

    @classmethod
    def parse(cls, raw: str) -> LoginAttemptId:
        try:
            parsed = uuid.UUID(raw)
        except (ValueError, AttributeError, TypeError) as exc:
            raise InvalidInput("Invalid login attempt id.") from exc
        return cls(str(parsed))

    @classmethod
    def generate(cls) -> LoginAttemptId:
        return cls(str(uuid.uuid4()))

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class TwoFACode:
    value: str = field(repr=False)

    @classmethod
    def parse(cls, raw: str) -> TwoFACode:
        # isascii() guard: str.isdigit() also accepts non-ASCII digits like "٣".
        if len(raw) != TWO_FA_CODE_LENGTH or not (raw.isascii() and raw.isdigit()):
            raise InvalidInput(f"2FA code must be exactly {TWO_FA_CODE_LENGTH} digits.")
        return cls(raw)

    @classmethod
    def generate(cls) -> TwoFACode:
        """Uniform in 100000..999999, from the CSPRNG."""
        return cls(str(100_000 + secrets.randbelow(900_000)))

    def __str__(self) -> str:
        return self.value


@dataclass
class User:
    """A registered account.

    password_hash is an Argon2id PHC string ("$argon2id$v=19$..."). It is
    never a plaintext password.
    """

    email: Email
    password_hash: str = field(repr=False)
    requires_2fa: bool = False
    created_at: str | None = None


@dataclass(frozen=True)
class Challenge:
    """A pending second-factor challenge for one email.

    expires_at is a UNIX timestamp. Stores treat an expired challenge as
    absent, so a code that was never submitted cannot be used forever.
    """

    attempt_id: LoginAttemptId
    code: TwoFACode
    expires_at: float

    def is_expired(self, now: float | None = None) -> bool:
        return (time.time() if now is None else now) >= self.expires_at
