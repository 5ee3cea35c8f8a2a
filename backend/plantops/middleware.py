from __future__ import annotations

from typing import Callable
from uuid import uuid4

from fastapi import FastAPI, Request, Response

from plantops.settings import settings

CORRELATION_HEADER = "X-Correlation-Id"


def install_correlation_middleware(app: FastAPI) -> None:
    @app.middleware("http")
    async def ensure_correlation_id(request: Request, call_next: Callable[[Request], Response]):
        correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid4())
        request.state.correlation_id = correlation_id

        response = await call_next(request)
        if CORRELATION_HEADER not in response.headers:
            response.headers[CORRELATION_HEADER] = correlation_id
        return response


def install_security_headers(app: FastAPI) -> None:
    if not settings.security_headers_enabled:
        return

    @app.middleware("http")
    async def add_security_headers(request: Request, call_next: Callable[[Request], Response]):
        response = await call_next(request)

        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault("Referrer-Policy", "no-referrer")
        response.headers.setdefault("Cross-Origin-Resource-Policy", "same-origin")
        # API only: no documents, scripts or frames served from here
        response.headers.setdefault("Content-Security-Policy", "default-src 'none'; frame-ancestors 'none'")
        return response
