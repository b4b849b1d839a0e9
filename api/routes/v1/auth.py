"""
api/routes/v1/auth.py -- Signup, login, 2FA, logout, and token verification endpoints.

Routes:
  POST /api/v1/signup        -- register; 201
  POST /api/v1/login         -- password login; 200 + jwt cookie, or 206 + loginAttemptId
  POST /api/v1/verify-2fa    -- exchange attempt id + emailed code for a session; 200 + cookie
  POST /api/v1/logout        -- revoke the presented token; 200, cookie cleared
  POST /api/v1/verify-token  -- check a token; 200 with its email

Every handler parses untrusted strings into domain types first (Email.parse,
Password.parse, ...). A malformed value raises InvalidInput (400) before the
service or any store is touched. All other failures are AuthError subclasses
raised by the service; api.main renders them through one exception handler.

Security:
  [M5] Cache-Control: no-store on every response that carries a session token.
  Login and 2FA failures return the same incorrect_credentials error whether
  the email, password, attempt id, or code was wrong.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.models import (
    LoginRequest,
    MessageResponse,
    SignupRequest,
    TwoFactorRequiredResponse,
    Verify2FARequest,
    VerifyTokenRequest,
    VerifyTokenResponse,
)
from auth.dependencies import get_auth_service, get_session_token
from auth.models import Email, LoginAttemptId, Password, TwoFACode
from auth.service import AuthService, LoginResult, LoginState
from auth.tokens import clear_auth_cookie, set_auth_cookie

# Auth policy: every route here is public -- these are the routes that
# establish or end authentication. logout and verify-token authenticate the
# presented token themselves.
router = APIRouter()


def _session_response(request: Request, result: LoginResult) -> JSONResponse:
    """200 with the session token attached as the jwt cookie."""
    settings = request.app.state.settings
    resp = JSONResponse(status_code=200, content=MessageResponse(message="Login successful.").model_dump())
    set_auth_cookie(resp, result.token, max_age=settings.token_ttl_seconds, secure=settings.secure_cookies)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.post("/signup", response_model=MessageResponse, status_code=201)
async def signup(body: SignupRequest, service: AuthService = Depends(get_auth_service)) -> MessageResponse:
    """Register a new account. 409 if the email is already registered."""
    email = Email.parse(body.email)
    password = Password.parse(body.password)
    await service.signup(email, password, body.requires_2fa)
    return MessageResponse(message="User created successfully!")


@router.post(
    "/login",
    response_model=MessageResponse,
    responses={206: {"model": TwoFactorRequiredResponse}},
)
async def login(
    request: Request,
    body: LoginRequest,
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Check email and password.

    Accounts without 2FA get a session cookie immediately (200). Accounts
    with 2FA get 206 with a fresh loginAttemptId; the 6-digit code is emailed.
    """
    email = Email.parse(body.email)
    password = Password.parse(body.password)
    result = await service.login(email, password)

    if result.state is LoginState.CHALLENGE_ISSUED:
        resp = JSONResponse(
            status_code=206,
            content=TwoFactorRequiredResponse(login_attempt_id=result.login_attempt_id.value).model_dump(
                by_alias=True
            ),
        )
        resp.headers["Cache-Control"] = "no-store"
        return resp
    return _session_response(request, result)


@router.post("/verify-2fa", response_model=MessageResponse)
async def verify_2fa(
    request: Request,
    body: Verify2FARequest,
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Complete a 2FA login. The attempt id and code are single use."""
    email = Email.parse(body.email)
    attempt_id = LoginAttemptId.parse(body.login_attempt_id)
    code = TwoFACode.parse(body.two_fa_code)
    result = await service.verify_2fa(email, attempt_id, code)
    return _session_response(request, result)


@router.post("/logout", response_model=MessageResponse)
async def logout(
    request: Request,
    token: str | None = Depends(get_session_token),
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Revoke the presented session token and clear the cookie.

    400 missing_token without a token; 401 invalid_token for a forged,
    expired, or already-revoked one.
    """
    await service.logout(token)
    resp = JSONResponse(content=MessageResponse(message="Logged out.").model_dump())
    clear_auth_cookie(resp, secure=request.app.state.settings.secure_cookies)
    return resp


@router.post("/verify-token", response_model=VerifyTokenResponse)
async def verify_token(
    body: VerifyTokenRequest,
    service: AuthService = Depends(get_auth_service),
) -> VerifyTokenResponse:
    """200 with the token's email if it is live; 401 invalid_token otherwise."""
    email = await service.verify_token(body.token)
    return VerifyTokenResponse(email=email.value)
