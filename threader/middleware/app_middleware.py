"""
Middleware configuration for the threader API.

Centralizes CORS configuration, request logging, and the mapping of thread
errors to structured HTTP responses.
"""

import logging
import math
import time

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from threader.config.settings import get_settings
from threader.services.errors import (
    FetchError,
    LinkageError,
    ParseError,
    RateLimitError,
    ThreadPayloadError,
)
from threader.utils.logging import get_logger

logger = logging.getLogger(__name__)
request_logger = get_logger("api.requests", prefix="API")


def setup_cors_middleware(app: FastAPI) -> None:
    """Configure CORS middleware for the FastAPI application."""
    allowed_origins = get_settings().CORS_ORIGINS or ["*"]
    logger.info(f"CORS configured with origins: {allowed_origins}")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials="*" not in allowed_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log method, path, status and duration of API requests (health checks excluded)."""

    EXCLUDED_PATHS = {"/health", "/docs", "/redoc", "/openapi.json"}

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if path in self.EXCLUDED_PATHS:
            return await call_next(request)

        start_time = time.time()
        request_logger.info(f"→ {request.method} {path}")
        response = await call_next(request)
        duration_ms = (time.time() - start_time) * 1000
        request_logger.info(
            f"← {request.method} {path} - {response.status_code} - {duration_ms:.2f}ms"
        )
        return response


def _error_response(status_code: int, detail: str, error_type: str, category: str, headers=None):
    return JSONResponse(
        status_code=status_code,
        content={
            "detail": detail,
            "error_type": error_type,
            "error_category": category,
            "status_code": status_code,
        },
        headers=headers,
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Map the thread error taxonomy onto HTTP status codes."""

    @app.exception_handler(ParseError)
    @app.exception_handler(ThreadPayloadError)
    async def bad_request_handler(request: Request, exc: Exception):
        return _error_response(400, str(exc), "bad_request", "validation")

    @app.exception_handler(LinkageError)
    async def linkage_error_handler(request: Request, exc: LinkageError):
        logger.info(f"Unresolvable thread for {request.url.path}: {exc}")
        return _error_response(404, str(exc), "not_found", "resource")

    @app.exception_handler(RateLimitError)
    async def rate_limit_handler(request: Request, exc: RateLimitError):
        retry_after = max(0, math.ceil(exc.retry_after_ms / 1000))
        return _error_response(
            429,
            str(exc),
            "rate_limited",
            "throttling",
            headers={"Retry-After": str(retry_after)},
        )

    @app.exception_handler(FetchError)
    async def upstream_error_handler(request: Request, exc: FetchError):
        logger.warning(f"Upstream failure ({exc.status}) for {exc.url}: {exc}")
        return _error_response(502, str(exc), "bad_gateway", "upstream")


def setup_middleware(app: FastAPI) -> None:
    """Set up all middleware for the FastAPI application."""
    app.add_middleware(RequestLoggingMiddleware)
    setup_cors_middleware(app)
    setup_exception_handlers(app)
    logger.info("Middleware and exception handlers configured")
