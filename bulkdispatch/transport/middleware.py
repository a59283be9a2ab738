# bulkdispatch/transport/middleware.py
"""
HTTP middleware stack (outermost first):

    RequestID → RequestLogging → ErrorHandling → SecurityHeaders → routes

WebSocket traffic (/ws) bypasses all of them; BaseHTTPMiddleware only
handles ``http`` scopes.
"""
import time
import uuid
from typing import Callable

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from bulkdispatch.infra.logging_config import LogContext, get_logger
from bulkdispatch.infra.metrics import inc_counter, observe_histogram
from bulkdispatch.transport.security import SecurityHeaders

logger = get_logger(__name__)

# Polled by orchestrators every few seconds
QUIET_PATHS = frozenset({"/health", "/ready"})


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "unknown")


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Propagate X-Request-ID, generating one when the caller sent none"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request.state.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        response = await call_next(request)
        response.headers["X-Request-ID"] = request.state.request_id
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """One log line and one latency sample per request (probes excluded)"""

    def __init__(self, app: ASGIApp, enabled: bool = True):
        super().__init__(app)
        self.enabled = enabled

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        if not self.enabled or path in QUIET_PATHS:
            return await call_next(request)

        log = LogContext(logger, request_id=_request_id(request))
        started = time.monotonic()
        try:
            response = await call_next(request)
        except Exception as exc:
            log.error(f"{request.method} {path} raised {exc.__class__.__name__}", exc_info=True)
            raise

        elapsed = time.monotonic() - started
        observe_histogram("http_request_seconds", elapsed, method=request.method)
        inc_counter("http_requests_total", status=response.status_code)
        log.info(
            f"{request.method} {path} -> {response.status_code} ({elapsed * 1000:.1f}ms)",
            extra={"status_code": response.status_code, "duration_ms": elapsed * 1000},
        )
        return response


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Turn anything unhandled into a 500 carrying the request ID"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)
        except Exception as exc:
            request_id = _request_id(request)
            inc_counter("http_unhandled_errors")
            logger.error(
                f"Unhandled exception on {request.url.path}: {exc.__class__.__name__}: {exc}",
                extra={"request_id": request_id},
                exc_info=True,
            )
            return JSONResponse(
                status_code=500,
                content={"error": "Internal server error", "request_id": request_id},
            )


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        return SecurityHeaders.add_security_headers(await call_next(request))
