"""
Tests for session resolution
"""
import time

import pytest
from jose import jwt

from paintdesk.auth import SESSION_COOKIE
from paintdesk.config import Config, get_config
from paintdesk.main import app
from tests.conftest import TEST_ENV

JWT_SECRET = "super-secret-jwt-token-for-tests"
ISSUER = f"{TEST_ENV['SUPABASE_URL']}/auth/v1"


def make_token(sub="user-1", issuer=ISSUER, secret=JWT_SECRET, expires_in=3600):
    claims = {
        "sub": sub,
        "email": "owner@example.com",
        "aud": "authenticated",
        "iss": issuer,
        "exp": int(time.time()) + expires_in,
    }
    return jwt.encode(claims, secret, algorithm="HS256")


@pytest.fixture
def jwt_client(anon_client):
    config = Config(environ={**TEST_ENV, "SUPABASE_JWT_SECRET": JWT_SECRET})
    app.dependency_overrides[get_config] = lambda: config
    return anon_client


class TestSession:
    def test_no_credentials_401(self, anon_client, company):
        response = anon_client.get("/api/jobs")

        assert response.status_code == 401
        assert response.json() == {"error": "Unauthorized"}

    def test_bearer_token_accepted(self, jwt_client, company):
        response = jwt_client.get("/api/billing/status", headers={"Authorization": f"Bearer {make_token()}"})

        assert response.status_code == 200

    def test_session_cookie_accepted(self, jwt_client, company):
        jwt_client.cookies.set(SESSION_COOKIE, make_token())

        assert jwt_client.get("/api/billing/status").status_code == 200

    @pytest.mark.parametrize("token", [
        make_token(secret="wrong-secret"),
        make_token(issuer="https://elsewhere.supabase.co/auth/v1"),
        make_token(expires_in=-60),
        "not-a-jwt",
    ])
    def test_bad_tokens_401(self, jwt_client, company, token):
        response = jwt_client.get("/api/billing/status", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401


class FakeAuthResponse:
    def __init__(self, status_code, payload=None):
        self.status_code = status_code
        self._payload = payload or {}

    def json(self):
        return self._payload


class FakeAsyncClient:
    """Stands in for httpx.AsyncClient; `handler(url, headers)` returns the response."""

    def __init__(self, handler):
        self.handler = handler

    def __call__(self, *args, **kwargs):
        return self

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def get(self, url, headers=None):
        return self.handler(url, headers)


class TestSupabaseFallback:
    """Without a JWT secret the token is checked against the Supabase auth API."""

    def test_valid_user(self, anon_client, company, monkeypatch):
        seen = {}

        def handler(url, headers):
            seen["url"] = url
            seen["headers"] = headers
            return FakeAuthResponse(200, {"id": "user-1", "email": "owner@example.com"})

        monkeypatch.setattr("paintdesk.auth.httpx.AsyncClient", FakeAsyncClient(handler))
        token = make_token()

        response = anon_client.get("/api/billing/status", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 200
        assert seen["url"] == f"{TEST_ENV['SUPABASE_URL']}/auth/v1/user"
        assert seen["headers"]["Authorization"] == f"Bearer {token}"

    def test_rejected_token_401(self, anon_client, company, monkeypatch):
        monkeypatch.setattr(
            "paintdesk.auth.httpx.AsyncClient",
            FakeAsyncClient(lambda url, headers: FakeAuthResponse(401)),
        )

        response = anon_client.get("/api/billing/status", headers={"Authorization": f"Bearer {make_token()}"})

        assert response.status_code == 401

    def test_auth_service_down_503(self, anon_client, company, monkeypatch):
        import httpx

        def boom(url, headers):
            raise httpx.ConnectError("refused")

        monkeypatch.setattr("paintdesk.auth.httpx.AsyncClient", FakeAsyncClient(boom))

        response = anon_client.get("/api/billing/status", headers={"Authorization": f"Bearer {make_token()}"})

        assert response.status_code == 503
        assert response.json() == {"error": "Auth service unavailable"}
