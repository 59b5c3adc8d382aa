"""Middleware — CORS, API key gate, request logging, error handling."""

from __future__ import annotations

import time
from typing import Callable

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from healthbot.config import Settings

logger = structlog.get_logger(__name__)

PLACEHOLDER_SECRET = "change-me-to-a-random-secret"


# ── CORS ──────────────────────────────────────────────────────


def add_cors(app: FastAPI, settings: Settings) -> None:
    """Allow the origins listed in ``settings.cors_origins`` (``"*"`` for all)."""
    origins_raw = settings.cors_origins.strip()
    if origins_raw == "*":
        origins = ["*"]
    else:
        origins = [o.strip() for o in origins_raw.split(",") if o.strip()]

    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=origins != ["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )


# ── API key gate ──────────────────────────────────────────────

_PUBLIC_PATHS: set[str] = {
    "/health",
    "/docs",
    "/openapi.json",
    "/redoc",
}

# Providers redirect the browser here; it cannot carry our key.
_PUBLIC_PREFIXES: tuple[str, ...] = ("/api/oauth/callback/",)


class APIKeyMiddleware(BaseHTTPMiddleware):
    """Require ``X-API-Key`` or ``Authorization: Bearer <key>`` on protected routes.

    Off while ``api_secret_key`` is empty or still the placeholder.
    """

    def __init__(self, app, settings: Settings) -> None:
        super().__init__(app)
        self._secret = settings.api_secret_key
        self._public = _PUBLIC_PATHS | {settings.connect_path}

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if self._secret in (PLACEHOLDER_SECRET, ""):
            return await call_next(request)

        path = request.url.path
        if request.method == "OPTIONS" or path in self._public or path.startswith(_PUBLIC_PREFIXES):
            return await call_next(request)

        api_key = request.headers.get("X-API-Key") or _extract_bearer(
            request.headers.get("Authorization", "")
        )
        if api_key != self._secret:
            logger.warning("http.unauthorized", path=path)
            return JSONResponse(status_code=401, content={"error": "Invalid or missing API key"})

        return await call_next(request)


# ── Request logging ───────────────────────────────────────────


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start = time.monotonic()
        response = await call_next(request)
        if request.url.path != "/health":
            logger.info(
                "http.request",
                method=request.method,
                path=request.url.path,
                status=response.status_code,
                duration_ms=round((time.monotonic() - start) * 1000, 1),
            )
        return response


# ── Global error handler ─────────────────────────────────────


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Turn anything the exception handlers missed into a plain 500."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)
        except Exception as exc:
            logger.exception("http.unhandled_error", path=request.url.path, error=str(exc))
            return JSONResponse(status_code=500, content={"error": "Internal server error"})


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Outermost first: error handler, logging, API key, CORS."""
    add_cors(app, settings)
    app.add_middleware(APIKeyMiddleware, settings=settings)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(ErrorHandlerMiddleware)


def _extract_bearer(auth_header: str) -> str:
    if auth_header.lower().startswith("bearer "):
        return auth_header[7:].strip()
    return ""
