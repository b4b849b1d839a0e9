"""
auth/dependencies.py -- FastAPI Depends() helpers for the auth routes.

get_auth_service() hands routes the AuthService that the lifespan stored on
app.state -- routes never construct stores themselves.

get_session_token() finds the presented session token. Two sources are
checked in priority order:
  1. JWT cookie ("jwt") -- set by POST /login and POST /verify-2fa.
  2. Authorization: Bearer <token> header -- API clients that keep the
     token themselves.
It returns None when neither is present; the service decides that this is
MissingToken rather than the dependency raising a transport error.

Layer rule: no imports from cache/ or core/.
  auth/dependencies.py may import from fastapi (for Request) because this
  module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Request

from auth.service import AuthService
from auth.tokens import JWT_COOKIE_NAME


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def get_session_token(request: Request) -> str | None:
    # 1. Cookie (browser clients)
    token: str | None = request.cookies.get(JWT_COOKIE_NAME)

    # 2. Authorization: Bearer header (API clients)
    if not token:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:].strip()

    return token or None
