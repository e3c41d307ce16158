"""Unit tests for the tickets_api FastAPI application."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from tickets_api import auth
from tickets_api.app import create_app
from tickets_api.config import Settings


@pytest.fixture
def client() -> TestClient:
    return TestClient(create_app())


def test_root_returns_service_banner(client: TestClient) -> None:
    response = client.get("/")

    assert response.status_code == 200
    assert response.json() == {"message": "Tickets App Backend API", "version": "1.0.0"}


def test_login_returns_placeholder_for_json_body(client: TestClient) -> None:
    response = client.post(
        "/api/auth/login",
        json={"email": "test@test.com", "password": "test123"},  # pragma: allowlist secret
    )

    assert response.status_code == 200
    assert response.json() == {"message": "Login endpoint - to be implemented"}


@pytest.mark.parametrize(
    "raw_body",
    [b"", b"{not json", b"[1, 2, 3]", b'"just a string"', b"\xff\xfe"],
    ids=["empty", "malformed", "array", "string", "invalid-utf8"],
)
def test_login_returns_placeholder_for_any_body(client: TestClient, raw_body: bytes) -> None:
    response = client.post(
        "/api/auth/login",
        content=raw_body,
        headers={"Content-Type": "application/json"},
    )

    assert response.status_code == 200
    assert response.json() == {"message": auth.LOGIN_PLACEHOLDER_MESSAGE}


def test_login_internal_error_returns_500(
    client: TestClient, monkeypatch: pytest.MonkeyPatch
) -> None:
    def _boom(_payload: object) -> dict[str, str]:
        raise RuntimeError("boom")

    monkeypatch.setattr(auth, "build_login_response", _boom)

    response = client.post("/api/auth/login", json={"email": "a@b.c"})

    assert response.status_code == 500
    assert response.json() == {"error": "Internal server error"}


def test_unhandled_route_error_returns_generic_500() -> None:
    app = create_app()

    @app.get("/explode")
    def explode() -> dict[str, str]:
        raise ValueError("unexpected")

    client = TestClient(app, raise_server_exceptions=False)
    response = client.get("/explode")

    assert response.status_code == 500
    assert response.json() == {"error": "Internal server error"}


def test_login_rejects_get(client: TestClient) -> None:
    response = client.get("/api/auth/login")
    assert response.status_code == 405


def test_cors_preflight_allows_any_origin(client: TestClient) -> None:
    response = client.options(
        "/api/auth/login",
        headers={
            "Origin": "https://tickets.example.com",
            "Access-Control-Request-Method": "POST",
            "Access-Control-Request-Headers": "content-type",
        },
    )

    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == "*"


def test_cors_restricted_origins_from_settings() -> None:
    settings = Settings(
        version="1.0.0",
        banner="Tickets App Backend API",
        port=3000,
        cors_allow_origins=("https://tickets.example.com",),
    )
    client = TestClient(create_app(settings))

    allowed = client.get("/", headers={"Origin": "https://tickets.example.com"})
    denied = client.get("/", headers={"Origin": "https://evil.example.com"})

    assert allowed.headers["access-control-allow-origin"] == "https://tickets.example.com"
    assert "access-control-allow-origin" not in denied.headers
