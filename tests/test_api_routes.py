"""
tests/test_api_routes.py -- Integration tests for the /api/v1 auth routes.

These tests exercise the full stack: FastAPI routing -> request model
validation -> domain parse() -> AuthService -> in-memory stores -> response
serialization and the error envelope. Unit testing individual route
functions would miss the exception handlers and cookie handling.

Coverage:
  - signup: 201, duplicate 409, malformed email / short password 400, missing field 422
  - login: 200 + jwt cookie, wrong password / unknown email 401, short password 400
  - login with 2FA: 206 + loginAttemptId, verify-2fa 200 + cookie, replay 401
  - logout: 200 clears cookie; same token again 401; no token 400
  - verify-token: 200 with email, 401 for garbage or revoked tokens

Fixtures used (from conftest.py):
  - api_client: (client, email_client) -- TestClient over in-memory stores
"""

from __future__ import annotations

import re

from fastapi.testclient import TestClient

from auth.mailer import MockEmailClient
from auth.models import Email


def _signup(client: TestClient, email: str, password: str = "password123", requires_2fa: bool = False):
    return client.post(
        "/api/v1/signup",
        json={"email": email, "password": password, "requires2FA": requires_2fa},
    )


def _login(client: TestClient, email: str, password: str = "password123"):
    return client.post("/api/v1/login", json={"email": email, "password": password})


def _emailed_code(email_client: MockEmailClient, email: str) -> str:
    message = email_client.last_to(Email.parse(email))
    assert message is not None, f"no email sent to {email}"
    return re.search(r"\b(\d{6})\b", message.body).group(1)


class TestSignup:
    def test_signup_created(self, api_client: tuple[TestClient, MockEmailClient]) -> None:
        client, _ = api_client
        resp = _signup(client, "signup@example.com")
        assert resp.status_code == 201, f"Expected 201, got {resp.status_code}: {resp.text}"
        assert resp.json() == {"message": "User created successfully!"}

    def test_signup_duplicate_conflict(self, api_client: tuple[TestClient, MockEmailClient]) -> None:
        client, _ = api_client
        _signup(client, "dup@example.com")
        resp = _signup(client, "dup@example.com", password="otherpassword", requires_2fa=True)
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "user_already_exists"

    def test_signup_malformed_email(self, api_client: tuple[TestClient, MockEmailClient]) -> None:
        client, _ = api_client
        resp = _signup(client, "not-an-email")
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "invalid_input"

    def test_signup_short_password(self, api_client: tuple[TestClient, MockEmailClient]) -> None:
        client, _ = api_client
        resp = _signup(client, "short@example.com", password="1234567")
        assert resp.status_code == 400
        # Rejected before the store: the email is still free.
        assert _signup(client, "short@example.com").status_code == 201

    def test_signup_missing_field(self, api_client: tuple[TestClient, MockEmailClient]) -> None:
        client, _ = api_client
        resp = client.post("/api/v1/signup", json={"email": "missing@example.com", "password": "password123"})
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"

    def test_signup_wrong_json_type(self, api_client: tuple[TestClient, MockEmailClient]) -> None:
        client, _ = api_client
        resp = client.post(
            "/api/v1/signup",
            json={"email": "type@example.com", "password": "password123", "requires2FA": "maybe"},
        )
        assert resp.status_code == 422


class TestLogin:
    def test_login_sets_cookie(self, api_client: tuple[TestClient, MockEmailClient]) -> None:
        client, _ = api_client
        client.cookies.clear()
        _signup(client, "login@example.com")
        resp = _login(client, "login@example.com")
        assert resp.status_code == 200, resp.text
        assert resp.headers["cache-control"] == "no-store"
        set_cookie = resp.headers["set-cookie"]
        assert set_cookie.startswith("jwt=")
        assert "HttpOnly" in set_cookie
        assert "Max-Age=600" in set_cookie
        assert client.cookies.get("jwt")

    def test_login_wrong_password(self, api_client: tuple[TestClient, MockEmailClient]) -> None:
        client, _ = api_client
        _signup(client, "wrongpw@example.com")
        resp = _login(client, "wrongpw@example.com", password="not-the-password")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "incorrect_credentials"
        assert "set-cookie" not in resp.headers

    def test_login_unknown_email_same_error(self, api_client: tuple[TestClient, MockEmailClient]) -> None:
        client, _ = api_client
        _signup(client, "known@example.com")
        wrong_pw = _login(client, "known@example.com", password="not-the-password")
        unknown = _login(client, "nobody@example.com")
        assert unknown.status_code == 401
        assert unknown.json() == wrong_pw.json()

    def test_login_short_password(self, api_client: tuple[TestClient, MockEmailClient]) -> None:
        client, _ = api_client
        resp = _login(client, "known@example.com", password="short")
        assert resp.status_code == 400


class TestNon2FAScenario:
    def test_login_verify_logout_twice(self, api_client: tuple[TestClient, MockEmailClient]) -> None:
        client, _ = api_client
        client.cookies.clear()
        _signup(client, "plain@example.com")
        assert _login(client, "plain@example.com").status_code == 200
        token = client.cookies.get("jwt")

        resp = client.post("/api/v1/verify-token", json={"token": token})
        assert resp.status_code == 200
        assert resp.json() == {"email": "plain@example.com"}

        resp = client.post("/api/v1/logout")
        assert resp.status_code == 200
        assert 'jwt=""' in resp.headers["set-cookie"]
        assert client.cookies.get("jwt") is None

        # Same token presented again: revoked.
        resp = client.post("/api/v1/logout", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "invalid_token"

        # Cookie already cleared and no header: nothing to log out.
        resp = client.post("/api/v1/logout")
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "missing_token"

        resp = client.post("/api/v1/verify-token", json={"token": token})
        assert resp.status_code == 401


class Test2FAScenario:
    def test_challenge_then_verify(self, api_client: tuple[TestClient, MockEmailClient]) -> None:
        client, email_client = api_client
        client.cookies.clear()
        _signup(client, "twofa@example.com", requires_2fa=True)

        resp = _login(client, "twofa@example.com")
        assert resp.status_code == 206, resp.text
        body = resp.json()
        assert body["message"] == "2FA required"
        attempt_id = body["loginAttemptId"]
        assert "set-cookie" not in resp.headers
        code = _emailed_code(email_client, "twofa@example.com")

        # Right code, wrong attempt id.
        resp = client.post(
            "/api/v1/verify-2fa",
            json={
                "email": "twofa@example.com",
                "loginAttemptId": "00000000-0000-4000-8000-000000000000",
                "2FACode": code,
            },
        )
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "incorrect_credentials"

        payload = {"email": "twofa@example.com", "loginAttemptId": attempt_id, "2FACode": code}
        resp = client.post("/api/v1/verify-2fa", json=payload)
        assert resp.status_code == 200, resp.text
        assert client.cookies.get("jwt")

        # Single use.
        resp = client.post("/api/v1/verify-2fa", json=payload)
        assert resp.status_code == 401

    def test_malformed_attempt_id_and_code(self, api_client: tuple[TestClient, MockEmailClient]) -> None:
        client, _ = api_client
        resp = client.post(
            "/api/v1/verify-2fa",
            json={"email": "twofa@example.com", "loginAttemptId": "nope", "2FACode": "123456"},
        )
        assert resp.status_code == 400
        resp = client.post(
            "/api/v1/verify-2fa",
            json={
                "email": "twofa@example.com",
                "loginAttemptId": "00000000-0000-4000-8000-000000000000",
                "2FACode": "12ab56",
            },
        )
        assert resp.status_code == 400

    def test_verify_2fa_missing_code_field(self, api_client: tuple[TestClient, MockEmailClient]) -> None:
        client, _ = api_client
        resp = client.post(
            "/api/v1/verify-2fa",
            json={"email": "twofa@example.com", "loginAttemptId": "00000000-0000-4000-8000-000000000000"},
        )
        assert resp.status_code == 422


class TestVerifyToken:
    def test_garbage_token(self, api_client: tuple[TestClient, MockEmailClient]) -> None:
        client, _ = api_client
        resp = client.post("/api/v1/verify-token", json={"token": "garbage"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "invalid_token"

    def test_missing_body_field(self, api_client: tuple[TestClient, MockEmailClient]) -> None:
        client, _ = api_client
        resp = client.post("/api/v1/verify-token", json={})
        assert resp.status_code == 422
