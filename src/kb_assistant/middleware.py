"""Custom middleware for FastAPI."""

import time
import uuid
from typing import Callable

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from kb_assistant.config import CorsSettings
from kb_assistant.utils.logging import get_logger, log_error, log_request, set_request_id

logger = get_logger("middleware")


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Middleware to add request ID to all requests."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        set_request_id(request_id)

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id

        return response


class TimingMiddleware(BaseHTTPMiddleware):
    """Middleware to log request processing time.

    For streamed chat responses this measures time to first byte, not the
    lifetime of the stream.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.time()

        response = await call_next(request)

        duration_ms = (time.time() - start_time) * 1000
        log_request(
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=duration_ms,
            client_ip=request.client.host if request.client else None,
            user_agent=request.headers.get("user-agent"),
        )
        response.headers["X-Process-Time"] = f"{duration_ms:.2f}ms"

        return response


class ErrorLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware to log unhandled exceptions."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)
        except Exception as e:
            log_error(
                e,
                context={
                    "method": request.method,
                    "path": request.url.path,
                    "client_ip": request.client.host if request.client else None,
                },
            )
            raise


def setup_cors_middleware(app: FastAPI, cors: CorsSettings) -> None:
    """Set up CORS middleware.

    The chat widget is embedded on third-party sites, so the session and
    request id headers are exposed to browsers.
    """
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors.origins,
        allow_credentials=cors.allow_credentials,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["X-Session-Id", "X-Request-ID"],
        max_age=cors.max_age,
    )
    logger.info(f"CORS middleware configured: origins={cors.origins}")


def setup_middleware(app: FastAPI, cors: CorsSettings) -> None:
    """Set up all middleware for the FastAPI application.

    The last middleware added is the outermost: CORS sees the request first
    and ErrorLogging sits closest to the routes.
    """
    app.add_middleware(ErrorLoggingMiddleware)
    app.add_middleware(TimingMiddleware)
    app.add_middleware(RequestIDMiddleware)
    setup_cors_middleware(app, cors)

    logger.info("Middleware configured: CORS, RequestID, Timing, ErrorLogging")
