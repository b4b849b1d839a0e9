"""Unit tests for core/config.py -- Settings validation.

Covers:
- dev mode generates a SECRET_KEY; production mode refuses to start without one
- short SECRET_KEYs are rejected in both modes
- defaults for token and challenge lifetimes and Argon2 cost
- unknown backend names are rejected at load time
- SMTP backend requires host and sender
"""

import pytest
from pydantic import ValidationError

from core.config import Settings

GOOD_KEY = "k" * 32


@pytest.fixture(autouse=True)
def _no_env_file(monkeypatch, tmp_path):
    # Settings reads .env from the working directory; isolate from any local one.
    monkeypatch.chdir(tmp_path)
    for var in ("SECRET_KEY", "DEBUG", "EMAIL_BACKEND", "TOKEN_STORE_BACKEND"):
        monkeypatch.delenv(var, raising=False)


def test_dev_mode_generates_key():
    settings = Settings(debug=True)
    assert len(settings.secret_key) >= 32


def test_production_requires_key():
    with pytest.raises(ValidationError, match="SECRET_KEY is required"):
        Settings(debug=False)


@pytest.mark.parametrize("debug", [True, False])
def test_short_key_rejected(debug):
    with pytest.raises(ValidationError, match="at least 32 characters"):
        Settings(debug=debug, secret_key="too-short")


def test_defaults():
    settings = Settings(secret_key=GOOD_KEY)
    assert settings.token_ttl_seconds == 600
    assert settings.two_fa_code_ttl_seconds == 600
    assert (settings.argon2_memory_cost, settings.argon2_time_cost, settings.argon2_parallelism) == (15000, 2, 1)
    assert settings.secure_cookies is True
    assert settings.user_store_backend == "memory"
    assert settings.email_backend == "mock"


def test_env_vars_are_read(monkeypatch):
    monkeypatch.setenv("SECRET_KEY", GOOD_KEY)
    monkeypatch.setenv("TOKEN_STORE_BACKEND", "redis")
    settings = Settings()
    assert settings.secret_key == GOOD_KEY
    assert settings.token_store_backend == "redis"


def test_unknown_backend_rejected():
    with pytest.raises(ValidationError):
        Settings(secret_key=GOOD_KEY, token_store_backend="memcached")


def test_non_positive_ttl_rejected():
    with pytest.raises(ValidationError):
        Settings(secret_key=GOOD_KEY, token_ttl_seconds=0)


def test_smtp_backend_requires_host_and_sender():
    with pytest.raises(ValidationError, match="SMTP_HOST and SMTP_FROM"):
        Settings(secret_key=GOOD_KEY, email_backend="smtp", smtp_host="smtp.example.com")
    settings = Settings(
        secret_key=GOOD_KEY,
        email_backend="smtp",
        smtp_host="smtp.example.com",
        smtp_from="noreply@example.com",
    )
    assert settings.smtp_port == 587
