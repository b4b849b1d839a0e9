"""
core/config.py -- authgate settings, loaded once from the environment.

Only this module reads environment variables. Everything else asks
get_settings() for the cached Settings instance.

Sources, in priority order: keyword arguments (tests), environment variables,
then a .env file in the working directory. Env names are the upper-cased
field names (TOKEN_TTL_SECONDS, TWO_FA_STORE_BACKEND, SMTP_HOST, ...).

Backend selection:
  Each store has a small closed set of backends chosen here at startup and
  wired together by api.main.build_service(). Literal types make an unknown
  backend name a startup validation error rather than a runtime surprise.

Security notes:
  [M6] SECRET_KEY shorter than 32 chars is rejected outright. JWT signing
       relies on key entropy -- a short key makes HS256 tokens forgeable.

  [M7] Without DEBUG=true, a missing SECRET_KEY stops startup. A random
       per-process key would log every user out on each restart.

Layer rule: core/ is the kernel. This module may not import from api/,
auth/, or cache/.
"""

import logging
import secrets
from functools import lru_cache
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("authgate.config")


class Settings(BaseSettings):
    """Every tunable of the service. Defaults suit local development with
    in-memory stores; only SECRET_KEY (or DEBUG=true) is mandatory.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    # Turn off only for plain-http local development; browsers drop Secure
    # cookies on http origins.
    secure_cookies: bool = True
    token_ttl_seconds: int = Field(default=600, gt=0)

    # ------------------------------------------------------------------
    # Two-factor challenges
    # ------------------------------------------------------------------

    two_fa_code_ttl_seconds: int = Field(default=600, gt=0)

    # ------------------------------------------------------------------
    # Password hashing (Argon2id)
    # ------------------------------------------------------------------

    argon2_memory_cost: int = Field(default=15000, ge=8)  # KiB
    argon2_time_cost: int = Field(default=2, ge=1)
    argon2_parallelism: int = Field(default=1, ge=1)

    # ------------------------------------------------------------------
    # Backends
    # ------------------------------------------------------------------

    user_store_backend: Literal["memory", "sql"] = "memory"
    token_store_backend: Literal["memory", "sqlite", "redis"] = "memory"
    two_fa_store_backend: Literal["memory", "redis"] = "memory"
    email_backend: Literal["mock", "smtp"] = "mock"

    database_url: str = "sqlite:///authgate_users.db"
    revocation_db_path: str = "authgate_revoked.db"
    redis_url: str = "redis://127.0.0.1:6379/0"

    # How often the lifespan purge task drops expired in-process entries.
    purge_interval_seconds: int = Field(default=300, gt=0)

    # ------------------------------------------------------------------
    # Email delivery (SMTP backend only)
    # ------------------------------------------------------------------

    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_from: str = ""
    smtp_use_tls: bool = True

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """DEBUG=true fills in a random key; otherwise a key is mandatory [M7].
        Either way it must be at least 32 characters [M6].
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning(
                    "SECRET_KEY not set; generated a throwaway key. Sessions end when the process restarts."
                )
            else:
                raise ValueError(
                    "SECRET_KEY is required unless DEBUG=true. "
                    "Set it in the environment or in .env."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self

    @model_validator(mode="after")
    def validate_smtp(self) -> "Settings":
        """Fail at startup, not at first login, when SMTP delivery is half-configured."""
        if self.email_backend == "smtp" and not (self.smtp_host and self.smtp_from):
            raise ValueError("EMAIL_BACKEND=smtp requires SMTP_HOST and SMTP_FROM.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Tests that change the environment must call get_settings.cache_clear().
    """
    return Settings()
