"""
tickets_api.app — FastAPI application factory.

Routes:
  GET  /                 service banner
  POST /api/auth/login   placeholder login (see tickets_api.auth)

CORS is open to every origin by default. Unhandled exceptions from any
route are logged and answered with a generic 500 body.
"""

from __future__ import annotations

from aws_lambda_powertools import Logger
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from tickets_api.auth import INTERNAL_ERROR_BODY
from tickets_api.auth import router as auth_router
from tickets_api.config import Settings, load_settings

logger = Logger(service="tickets-api")


async def _unhandled_exception(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "Unhandled error",
        extra={"method": request.method, "path": request.url.path},
    )
    return JSONResponse(INTERNAL_ERROR_BODY, status_code=500)


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the ASGI application."""
    settings = settings or load_settings()
    app = FastAPI(title=settings.banner, version=settings.version)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_allow_origins),
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(Exception, _unhandled_exception)

    @app.get("/")
    def root() -> dict[str, str]:
        return {"message": settings.banner, "version": settings.version}

    app.include_router(auth_router, prefix="/api/auth")
    return app


app = create_app()
