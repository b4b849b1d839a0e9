"""
api/main.py -- FastAPI application entry point for authgate.

Run with:      python main.py serve
               uvicorn asgi:app --reload

Lifespan builds the service graph from Settings (build_service), starts the
purge task, and on shutdown cancels it and closes every store it opened --
symmetrically, through one AsyncExitStack.

Backend selection (closed sets, chosen once at startup):
  USER_STORE_BACKEND     memory | sql
  TOKEN_STORE_BACKEND    memory | sqlite | redis
  TWO_FA_STORE_BACKEND   memory | redis
  EMAIL_BACKEND          mock | smtp
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Protocol

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from auth.errors import AuthError
from auth.mailer import EmailClient, MockEmailClient, SMTPEmailClient
from auth.password import Argon2PasswordHasher
from auth.service import AuthService
from auth.store import InMemoryUserStore, SQLUserStore, UserStore
from auth.tokens import TokenIssuer
from cache.challenge import InMemoryTwoFACodeStore, RedisTwoFACodeStore, TwoFACodeStore
from cache.revocation import (
    InMemoryRevokedTokenStore,
    RedisRevokedTokenStore,
    RevokedTokenStore,
    SQLiteRevokedTokenStore,
)
from core.config import Settings, get_settings

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("authgate.api")


class Purgeable(Protocol):
    def purge_expired(self) -> int: ...


# ---------------------------------------------------------------------------
# Service assembly
# ---------------------------------------------------------------------------


def build_service(settings: Settings, stack: AsyncExitStack) -> tuple[AuthService, list[Purgeable]]:
    """Construct the stores, issuer, email channel and AuthService.

    Every store that holds a connection registers its close() on stack.
    Returns the service plus the stores whose expired entries need periodic
    purging (Redis expires keys by itself; SQL users never expire).
    """
    purgeable: list[Purgeable] = []
    hasher = Argon2PasswordHasher(
        memory_cost=settings.argon2_memory_cost,
        time_cost=settings.argon2_time_cost,
        parallelism=settings.argon2_parallelism,
    )

    user_store: UserStore
    if settings.user_store_backend == "sql":
        sql_store = SQLUserStore(settings.database_url, hasher)
        stack.callback(sql_store.close)
        user_store = sql_store
    else:
        user_store = InMemoryUserStore(hasher)

    revoked_store: RevokedTokenStore
    if settings.token_store_backend == "redis":
        redis_revoked = RedisRevokedTokenStore.from_url(settings.redis_url)
        stack.push_async_callback(redis_revoked.close)
        revoked_store = redis_revoked
    elif settings.token_store_backend == "sqlite":
        sqlite_revoked = SQLiteRevokedTokenStore(settings.revocation_db_path)
        stack.callback(sqlite_revoked.close)
        purgeable.append(sqlite_revoked)
        revoked_store = sqlite_revoked
    else:
        memory_revoked = InMemoryRevokedTokenStore()
        purgeable.append(memory_revoked)
        revoked_store = memory_revoked

    two_fa_code_store: TwoFACodeStore
    if settings.two_fa_store_backend == "redis":
        redis_codes = RedisTwoFACodeStore.from_url(settings.redis_url, ttl_seconds=settings.two_fa_code_ttl_seconds)
        stack.push_async_callback(redis_codes.close)
        two_fa_code_store = redis_codes
    else:
        memory_codes = InMemoryTwoFACodeStore(ttl_seconds=settings.two_fa_code_ttl_seconds)
        purgeable.append(memory_codes)
        two_fa_code_store = memory_codes

    email_client: EmailClient
    if settings.email_backend == "smtp":
        email_client = SMTPEmailClient(
            settings.smtp_host,
            settings.smtp_from,
            port=settings.smtp_port,
            user=settings.smtp_user,
            password=settings.smtp_password,
            use_tls=settings.smtp_use_tls,
        )
    else:
        email_client = MockEmailClient()

    issuer = TokenIssuer(settings.secret_key, settings.token_ttl_seconds, revoked_store)
    service = AuthService(user_store, two_fa_code_store, issuer, email_client)
    return service, purgeable


# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(stores: list[Purgeable], interval_seconds: int) -> None:
    """Drop expired revocations and challenges from in-process stores.

    The SQLite purge runs in a worker thread like every other SQLite call; the
    in-memory dicts are only ever touched from the event loop. A failing store
    is logged and retried next round, the others are still purged.

    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine cleanly.
    """
    while True:
        await asyncio.sleep(interval_seconds)
        for store in stores:
            name = type(store).__name__
            try:
                if isinstance(store, SQLiteRevokedTokenStore):
                    removed = await asyncio.to_thread(store.purge_expired)
                else:
                    removed = store.purge_expired()
            except Exception:
                logger.exception("Purge failed for %s", name)
                continue
            if removed:
                logger.info("Purged %d expired entries from %s", removed, name)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the service graph on startup; tear it down in reverse on shutdown."""
    settings = get_settings()
    logger.info("authgate starting up")
    async with AsyncExitStack() as stack:
        service, purgeable = build_service(settings, stack)
        app.state.settings = settings
        app.state.auth_service = service
        logger.info(
            "Auth initialized (users=%s, revoked_tokens=%s, two_fa_codes=%s, email=%s)",
            settings.user_store_backend,
            settings.token_store_backend,
            settings.two_fa_store_backend,
            settings.email_backend,
        )
        purge_task = asyncio.create_task(_purge_loop(purgeable, settings.purge_interval_seconds))

        yield

        purge_task.cancel()
    logger.info("authgate shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="authgate",
    description="Signup, password login with optional email 2FA, JWT session cookies, and logout.",
    version=VERSION,
    lifespan=lifespan,
)


# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# Every failure leaves as the one ErrorResponse envelope, so a client reads
# error.code without branching on the status first.
# ---------------------------------------------------------------------------


def _error_response(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    envelope = ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail))
    return JSONResponse(status_code=status_code, content=envelope.model_dump())


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Render any domain, input, or infrastructure error from the auth core.

    Infrastructure errors (5xx) carry only a generic message; the cause was
    already logged where it was caught.
    """
    if exc.status_code >= 500:
        logger.error("%s on %s %s", type(exc).__name__, request.method, request.url.path)
    return _error_response(exc.status_code, exc.code, exc.message)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """422 for bodies with missing fields or wrong JSON types."""
    return _error_response(422, "validation_error", "Request validation failed.", str(exc.errors()))


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    # Starlette raises these for unknown routes (404) and wrong methods (405).
    return _error_response(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last resort: the traceback goes to the log, never into the response body."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(500, "internal_error", "An unexpected error occurred.")



# ---------------------------------------------------------------------------
# Health endpoint
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
async def health(request: Request) -> HealthResponse:
    """Return API liveness, version, and the configured backends."""
    settings = request.app.state.settings
    return HealthResponse(
        version=VERSION,
        components={
            "app": "ok",
            "user_store": settings.user_store_backend,
            "token_store": settings.token_store_backend,
            "two_fa_store": settings.two_fa_store_backend,
            "email": settings.email_backend,
        },
    )
