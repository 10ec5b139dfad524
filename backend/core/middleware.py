"""FastAPI middleware for request tracking, timing, and error handling.

Adds:
- X-Request-ID header (generated if not provided)
- X-Process-Time header (request duration)
- Structured logging per request, with the request id bound for
  everything logged while the request is handled
- Mapping of the engine's error taxonomy to JSON error responses
"""

import time
from uuid import uuid4

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from app.config import get_settings
from core.exceptions import AutomationError

logger = structlog.get_logger(__name__)

_QUIET_PATHS = ("/health", "/api/health", "/api/v1/health")


class RequestTrackingMiddleware(BaseHTTPMiddleware):
    """Add request ID and timing to every request/response."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid4())
        request.state.request_id = request_id
        start_time = time.monotonic()

        with structlog.contextvars.bound_contextvars(request_id=request_id):
            try:
                response = await call_next(request)
            except Exception as exc:
                duration_ms = (time.monotonic() - start_time) * 1000
                logger.exception(
                    "Unhandled exception",
                    method=request.method,
                    path=request.url.path,
                    duration_ms=round(duration_ms, 2),
                )
                # Never leak internals in production
                if get_settings().is_production:
                    detail = "Internal server error"
                else:
                    detail = str(exc) or "Internal server error"
                return JSONResponse(
                    status_code=500,
                    content={"detail": detail, "request_id": request_id},
                    headers={"X-Request-ID": request_id},
                )

            duration_ms = (time.monotonic() - start_time) * 1000
            response.headers["X-Request-ID"] = request_id
            response.headers["X-Process-Time"] = f"{duration_ms:.2f}ms"

            if request.url.path not in _QUIET_PATHS:
                log = logger.warning if response.status_code >= 400 else logger.info
                log(
                    "Request handled",
                    method=request.method,
                    path=request.url.path,
                    status_code=response.status_code,
                    duration_ms=round(duration_ms, 2),
                    client_ip=request.client.host if request.client else None,
                )

        return response


def setup_exception_handlers(app: FastAPI) -> None:
    """Register global exception handlers.

    Every ``AutomationError`` carries its own HTTP status code
    (NotFound 404, Validation/Configuration 422, Unauthorized 401, ...).
    """

    @app.exception_handler(AutomationError)
    async def automation_error_handler(request: Request, exc: AutomationError):
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "detail": exc.message,
                "error": type(exc).__name__,
                "request_id": getattr(request.state, "request_id", None),
            },
        )
