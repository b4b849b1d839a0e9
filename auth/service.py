"""
auth/service.py -- Login orchestrator: signup, login, 2FA verification, logout.

State machine for one login:

    START -> CREDENTIALS_CHECKED -> SESSION_ISSUED                          (no 2FA)
    START -> CREDENTIALS_CHECKED -> CHALLENGE_ISSUED                        (2FA, call 1)
             CHALLENGE_ISSUED -> CHALLENGE_VERIFIED -> SESSION_ISSUED       (2FA, call 2)

Any failure is terminal for the request; nothing here retries. The caller
re-submits from START.

AuthService owns no persistent state. Its collaborators -- credential store,
challenge store, token issuer (with its revocation store), email channel --
are injected by api.main.build_service(). There is no global lock and no
cross-store transaction: each store guards itself.

Known gap, accepted: if the 2FA email fails to send, the challenge already
written stays stored until it is overwritten by the next login or its TTL
lapses. No session is issued in that case.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import enum
import hmac
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from auth.errors import (
    IncorrectCredentials,
    InvalidCredentials,
    InvalidToken,
    LoginAttemptIdNotFound,
    MissingToken,
    TokenRevoked,
    UnexpectedError,
    UserNotFound,
)
from auth.models import Email, LoginAttemptId, Password, TwoFACode

if TYPE_CHECKING:
    from auth.mailer import EmailClient
    from auth.store import UserStore
    from auth.tokens import TokenIssuer
    from cache.challenge import TwoFACodeStore

logger = logging.getLogger("authgate.auth.service")

TWO_FA_EMAIL_SUBJECT = "Your 2FA code"


class LoginState(str, enum.Enum):
    START = "start"
    CREDENTIALS_CHECKED = "credentials_checked"
    CHALLENGE_ISSUED = "challenge_issued"
    CHALLENGE_VERIFIED = "challenge_verified"
    SESSION_ISSUED = "session_issued"


@dataclass(frozen=True)
class LoginResult:
    """Outcome of a successful login step.

    state is SESSION_ISSUED (token set) or CHALLENGE_ISSUED (login_attempt_id
    set; the code went out by email).
    """

    state: LoginState
    email: Email
    token: str | None = None
    login_attempt_id: LoginAttemptId | None = None


class AuthService:
    def __init__(
        self,
        user_store: UserStore,
        two_fa_code_store: TwoFACodeStore,
        issuer: TokenIssuer,
        email_client: EmailClient,
    ) -> None:
        self.user_store = user_store
        self.two_fa_code_store = two_fa_code_store
        self.issuer = issuer
        self.email_client = email_client

    # ------------------------------------------------------------------
    # Signup
    # ------------------------------------------------------------------

    async def signup(self, email: Email, password: Password, requires_2fa: bool) -> None:
        """Register an account. Raises UserAlreadyExists or UnexpectedError."""
        await self.user_store.add(email, password, requires_2fa)
        logger.info("Registered %s (requires_2fa=%s)", email.redacted(), requires_2fa)

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    async def login(self, email: Email, password: Password) -> LoginResult:
        # START -> CREDENTIALS_CHECKED
        try:
            user = await self.user_store.validate(email, password)
        except (UserNotFound, InvalidCredentials) as exc:
            logger.info("Login rejected for %s: %s", email.redacted(), exc.code)
            raise IncorrectCredentials() from exc

        if not user.requires_2fa:
            return self._issue_session(email)
        return await self._issue_challenge(email)

    async def _issue_challenge(self, email: Email) -> LoginResult:
        # CREDENTIALS_CHECKED -> CHALLENGE_ISSUED
        attempt_id = LoginAttemptId.generate()
        code = TwoFACode.generate()
        await self.two_fa_code_store.put(email, attempt_id, code)

        body = f"Your login code is {code.value}. It can be used once."
        if not await self.email_client.send(email, TWO_FA_EMAIL_SUBJECT, body):
            logger.error("2FA code delivery failed for %s; challenge left pending", email.redacted())
            raise UnexpectedError("Could not deliver the 2FA code.")

        logger.info("2FA challenge issued for %s", email.redacted())
        return LoginResult(state=LoginState.CHALLENGE_ISSUED, email=email, login_attempt_id=attempt_id)

    def _issue_session(self, email: Email) -> LoginResult:
        # CREDENTIALS_CHECKED | CHALLENGE_VERIFIED -> SESSION_ISSUED
        token = self.issuer.issue(email)
        logger.info("Session issued for %s", email.redacted())
        return LoginResult(state=LoginState.SESSION_ISSUED, email=email, token=token)

    # ------------------------------------------------------------------
    # Second factor
    # ------------------------------------------------------------------

    async def verify_2fa(self, email: Email, attempt_id: LoginAttemptId, code: TwoFACode) -> LoginResult:
        """Exchange a pending (attempt id, code) pair for a session.

        Both values must match the stored challenge exactly. On a match the
        challenge is consumed before the token is minted, so replaying the same
        pair fails, and of two concurrent verifications only one gets a session.
        """
        # CHALLENGE_ISSUED -> CHALLENGE_VERIFIED
        try:
            stored_attempt_id, stored_code = await self.two_fa_code_store.get(email)
        except LoginAttemptIdNotFound as exc:
            logger.info("2FA verification for %s with no pending challenge", email.redacted())
            raise IncorrectCredentials() from exc

        # Evaluate both comparisons; no short-circuit on the first mismatch.
        id_ok = hmac.compare_digest(stored_attempt_id.value, attempt_id.value)
        code_ok = hmac.compare_digest(stored_code.value, code.value)
        if not (id_ok and code_ok):
            logger.info("2FA verification mismatch for %s", email.redacted())
            raise IncorrectCredentials()

        # CHALLENGE_VERIFIED; another request may have consumed it meanwhile.
        if not await self.two_fa_code_store.consume(email, stored_attempt_id, stored_code):
            logger.info("2FA challenge for %s already used", email.redacted())
            raise IncorrectCredentials()
        return self._issue_session(email)

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    async def verify_token(self, token: str) -> Email:
        """Return the email a live session token belongs to. Raises InvalidToken."""
        return Email(await self.issuer.validate(token))

    async def logout(self, token: str | None) -> None:
        """Revoke a session token.

        Raises MissingToken when no token was presented and InvalidToken when
        it is forged, expired, or already revoked -- so a second logout with
        the same token fails instead of succeeding again.
        """
        if not token:
            raise MissingToken()
        try:
            email = await self.issuer.validate(token)
        except InvalidToken:
            logger.info("Logout with invalid token rejected")
            raise
        if not await self.issuer.revoke(token):
            # A concurrent logout with the same token got there first.
            logger.info("Logout with already revoked token rejected")
            raise TokenRevoked()
        logger.info("Logged out %s", Email(email).redacted())
