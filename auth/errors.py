"""
auth/errors.py -- Exception hierarchy for the authentication core.

Three families, distinguished so an infrastructure fault is never reported
as a credential mismatch:

  Input validation  InvalidInput -- raised by the *.parse() constructors in
                    auth/models.py before any store is touched.
  Domain            UserAlreadyExists, UserNotFound, InvalidCredentials,
                    IncorrectCredentials, LoginAttemptIdNotFound,
                    MissingToken, InvalidToken (and TokenRevoked).
  Infrastructure    UnexpectedError and its store-specific subclasses.

Every class carries an HTTP status and a machine-readable code so the API
layer can render any AuthError with a single exception handler. Nothing in
this core retries; every error is terminal for the current request.

Layer rule: no imports from api/, cache/, or core/.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for every error the authentication core raises."""

    status_code: int = 500
    code: str = "auth_error"
    message: str = "Authentication error."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.message)
        if message:
            self.message = message


# ---------------------------------------------------------------------------
# Input validation
# ---------------------------------------------------------------------------


class InvalidInput(AuthError):
    status_code = 400
    code = "invalid_input"
    message = "Invalid credentials."


# ---------------------------------------------------------------------------
# Domain
# ---------------------------------------------------------------------------


class UserAlreadyExists(AuthError):
    status_code = 409
    code = "user_already_exists"
    message = "User already exists."


class UserNotFound(AuthError):
    status_code = 404
    code = "user_not_found"
    message = "User not found."


class InvalidCredentials(AuthError):
    """Stored hash did not match the submitted password."""

    status_code = 401
    code = "invalid_credentials"
    message = "Invalid credentials."


class IncorrectCredentials(AuthError):
    """What callers see for any failed login or 2FA verification.

    The orchestrator folds UserNotFound, InvalidCredentials and challenge
    mismatches into this one error so responses do not reveal which part of
    the submission was wrong.
    """

    status_code = 401
    code = "incorrect_credentials"
    message = "Incorrect credentials."


class LoginAttemptIdNotFound(AuthError):
    status_code = 404
    code = "login_attempt_not_found"
    message = "No pending login attempt."


class MissingToken(AuthError):
    status_code = 400
    code = "missing_token"
    message = "Missing auth token."


class InvalidToken(AuthError):
    status_code = 401
    code = "invalid_token"
    message = "Invalid auth token."


class TokenRevoked(InvalidToken):
    """Token verifies cryptographically but was revoked by a logout."""

    message = "Auth token has been revoked."


# ---------------------------------------------------------------------------
# Infrastructure
# ---------------------------------------------------------------------------


class UnexpectedError(AuthError):
    status_code = 500
    code = "unexpected_error"
    message = "Unexpected error."


class TokenStoreError(UnexpectedError):
    code = "token_store_error"


class ChallengeStoreError(UnexpectedError):
    code = "challenge_store_error"
