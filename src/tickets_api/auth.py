"""
tickets_api.auth — Authentication routes mounted under /api/auth.

POST /login is a placeholder: it acknowledges every request and performs no
credential validation. The request body is read leniently so that malformed
or non-object JSON still receives the placeholder response.
"""

from __future__ import annotations

import json
from typing import Any

from aws_lambda_powertools import Logger
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

logger = Logger(service="tickets-api", child=True)

router = APIRouter()

LOGIN_PLACEHOLDER_MESSAGE = "Login endpoint - to be implemented"
INTERNAL_ERROR_BODY = {"error": "Internal server error"}


def _decode_body(raw: bytes) -> Any:
    if not raw:
        return None
    try:
        return json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        return None


def build_login_response(payload: Any) -> dict[str, Any]:
    """Return the login acknowledgement for a decoded request payload."""
    fields = sorted(payload) if isinstance(payload, dict) else []
    logger.info("login requested", extra={"fields": fields})
    return {"message": LOGIN_PLACEHOLDER_MESSAGE}


@router.post("/login")
async def login(request: Request) -> JSONResponse:
    try:
        payload = _decode_body(await request.body())
        return JSONResponse(build_login_response(payload))
    except Exception:
        logger.exception("Login error")
        return JSONResponse(INTERNAL_ERROR_BODY, status_code=500)
