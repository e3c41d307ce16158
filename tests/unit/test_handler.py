"""Unit tests for the Lambda entry point (tickets_api.handler)."""

from __future__ import annotations

import base64
import json
import sys
from pathlib import Path
from typing import Any

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from tickets_api.handler import lambda_handler


class FakeLambdaContext:
    function_name = "tickets-app-backend"
    memory_limit_in_mb = 512
    invoked_function_arn = "arn:aws:lambda:sa-east-1:111111111111:function:tickets-app-backend"
    aws_request_id = "req-123"


def _function_url_event(
    method: str,
    path: str,
    *,
    body: str | None = None,
    base64_encoded: bool = False,
) -> dict[str, Any]:
    return {
        "version": "2.0",
        "routeKey": "$default",
        "rawPath": path,
        "rawQueryString": "",
        "headers": {
            "content-type": "application/json",
            "host": "abc123.lambda-url.sa-east-1.on.aws",
            "x-forwarded-proto": "https",
            "x-forwarded-port": "443",
        },
        "requestContext": {
            "accountId": "anonymous",
            "apiId": "abc123",
            "domainName": "abc123.lambda-url.sa-east-1.on.aws",
            "domainPrefix": "abc123",
            "http": {
                "method": method,
                "path": path,
                "protocol": "HTTP/1.1",
                "sourceIp": "203.0.113.10",
                "userAgent": "pytest",
            },
            "requestId": "url-req-456",
            "routeKey": "$default",
            "stage": "$default",
            "time": "19/Oct/2026:12:00:00 +0000",
            "timeEpoch": 1792411200000,
        },
        "body": body,
        "isBase64Encoded": base64_encoded,
    }


def _json_body(response: dict[str, Any]) -> Any:
    body = response["body"]
    if response.get("isBase64Encoded"):
        body = base64.b64decode(body).decode("utf-8")
    return json.loads(body)


def test_root_through_function_url_event() -> None:
    response = lambda_handler(_function_url_event("GET", "/"), FakeLambdaContext())

    assert response["statusCode"] == 200
    assert _json_body(response) == {"message": "Tickets App Backend API", "version": "1.0.0"}


def test_login_through_function_url_event() -> None:
    event = _function_url_event(
        "POST",
        "/api/auth/login",
        body=json.dumps({"email": "test@test.com", "password": "x"}),  # pragma: allowlist secret
    )

    response = lambda_handler(event, FakeLambdaContext())

    assert response["statusCode"] == 200
    assert _json_body(response) == {"message": "Login endpoint - to be implemented"}


def test_login_with_base64_malformed_body() -> None:
    event = _function_url_event(
        "POST",
        "/api/auth/login",
        body=base64.b64encode(b"{broken").decode("ascii"),
        base64_encoded=True,
    )

    response = lambda_handler(event, FakeLambdaContext())

    assert response["statusCode"] == 200
    assert _json_body(response)["message"] == "Login endpoint - to be implemented"


def test_unknown_route_returns_404() -> None:
    response = lambda_handler(_function_url_event("GET", "/missing"), FakeLambdaContext())
    assert response["statusCode"] == 404
