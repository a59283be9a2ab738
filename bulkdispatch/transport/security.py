# bulkdispatch/transport/security.py
"""
Security helpers for the HTTP surface.

- Constant-time admin bearer token comparison
- OWASP response headers
- Error message sanitization for production responses
"""
import hmac

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from bulkdispatch.config import settings
from bulkdispatch.core.errors import StoreError, TransportError, ValidationError
from bulkdispatch.infra.logging_config import get_logger

logger = get_logger(__name__)

# Shows the "Authorize" button in the OpenAPI docs
bearer_scheme = HTTPBearer(
    scheme_name="Admin Token",
    description="Enter your admin token (without 'Bearer ' prefix)",
    auto_error=False,
)


def verify_admin_token(token: str | None) -> bool:
    """Constant-time check of a presented admin token."""
    if not token or not settings.admin_token:
        return False
    return hmac.compare_digest(token, settings.admin_token)


async def require_admin_auth(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
):
    """
    Require ``Authorization: Bearer <ADMIN_TOKEN>``.

    Usage:
        @app.post("/dispatch/start", dependencies=[Depends(require_admin_auth)])
        async def dispatch_start():
            ...
    """
    if not settings.admin_token:
        logger.critical("ADMIN_TOKEN not configured but admin endpoint accessed")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service unavailable"
        )

    if not credentials:
        logger.warning("Bearer auth failed: Missing Authorization header", extra={"path": request.url.path})
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not verify_admin_token(credentials.credentials):
        logger.warning("Bearer auth failed: Invalid token", extra={"path": request.url.path})
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    logger.debug(f"Bearer auth successful for {request.method} {request.url.path}")


async def require_metrics_auth(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
):
    """Metrics and detailed health: open in dev, admin token in staging/prod."""
    if not (settings.is_production or settings.is_staging):
        return
    await require_admin_auth(request, credentials)


class SecurityHeaders:
    """OWASP recommended headers for a JSON-only API."""

    HEADERS = {
        "X-Frame-Options": "DENY",
        "X-Content-Type-Options": "nosniff",
        "Referrer-Policy": "strict-origin-when-cross-origin",
        "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
    }

    @classmethod
    def add_security_headers(cls, response):
        response.headers.update(cls.HEADERS)

        # Dispatch status changes every few seconds, never cache it
        if "Cache-Control" not in response.headers:
            response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate"

        # HSTS (only behind HTTPS)
        if settings.is_production or settings.is_staging:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

        if "Server" in response.headers:
            del response.headers["Server"]

        return response


_GENERIC_MESSAGES: tuple[tuple[type[Exception], str], ...] = (
    (StoreError, "Service temporarily unavailable"),
    (TransportError, "Messaging provider unavailable"),
    (ValidationError, "Invalid input"),
    (ValueError, "Invalid input"),
    (KeyError, "Invalid request"),
    (ConnectionError, "Service temporarily unavailable"),
    (TimeoutError, "Request timeout"),
)


def sanitize_error_message(error: Exception, is_production: bool) -> str:
    """
    Error text safe to return to a client.
    Dev: the exception message. Production: a generic message by error family.
    """
    if not is_production:
        return str(error)

    for error_type, message in _GENERIC_MESSAGES:
        if isinstance(error, error_type):
            return message
    return "An error occurred"
