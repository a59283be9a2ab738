# bulkdispatch/transport/http_app.py
"""
HTTP / WebSocket front end for the dispatch pipeline.

Surfaces:
1. Public: /health, /ready
2. Observers: /ws (event stream + start/stop commands)
3. Admin (bearer token): /dispatch/start, /dispatch/stop, /dispatch/status
4. Metrics: /metrics (admin token in production)

Run:
    uvicorn bulkdispatch.transport.http_app:app --port 8099
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from fastapi import Depends, FastAPI, HTTPException, Request, WebSocket, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from bulkdispatch.config import settings
from bulkdispatch.core.controller import DispatchController
from bulkdispatch.core.errors import StoreError
from bulkdispatch.core.number_generator import generator_from_settings
from bulkdispatch.core.ports import AsyncRecipientStore, MessageTransport
from bulkdispatch.infra.db_async import close_pool, init_pool
from bulkdispatch.infra.event_hub import ObserverHub
from bulkdispatch.infra.health_checks_async import AsyncHealthChecker
from bulkdispatch.infra.http_client import close_all_sessions
from bulkdispatch.infra.logging_config import get_logger, setup_logging
from bulkdispatch.infra.memory_recipient_store import InMemoryRecipientStore
from bulkdispatch.infra.metrics import get_metrics_collector
from bulkdispatch.infra.migrations_async import schema_is_current
from bulkdispatch.infra.pg_recipient_store_async import get_recipient_store
from bulkdispatch.transport.dry_run_transport import DryRunTransport
from bulkdispatch.transport.meta_transport import MetaCloudTransport
from bulkdispatch.transport.middleware import (
    ErrorHandlingMiddleware,
    RequestIDMiddleware,
    RequestLoggingMiddleware,
    SecurityHeadersMiddleware,
)
from bulkdispatch.transport.observer_ws import observer_socket
from bulkdispatch.transport.schemas import CommandAccepted, DispatchStatusOut, StartSendingIn
from bulkdispatch.transport.security import require_admin_auth, require_metrics_auth, sanitize_error_message
from bulkdispatch.transport.supervisor import TransportSupervisor

# Initialize logging first
setup_logging(
    level=settings.log_level,
    use_json=settings.is_production
)

logger = get_logger(__name__)


# ============================================================================
# DEPENDENCIES
# ============================================================================

def get_controller(request: Request) -> DispatchController:
    """Get dispatch controller from app state"""
    return request.app.state.controller


# ============================================================================
# COMPONENT FACTORIES
# ============================================================================

async def _build_store() -> AsyncRecipientStore:
    if settings.recipient_store == "memory":
        logger.warning("Recipient store: memory (progress does not survive a restart)")
        return InMemoryRecipientStore()

    await init_pool()
    logger.info("Database pool initialized")

    # Validate schema (does NOT run migrations)
    # Migrations are run separately: python -m bulkdispatch.infra.migrate
    if not await schema_is_current():
        logger.critical("Database schema is out of date. Run migrations first: python -m bulkdispatch.infra.migrate")
        await close_pool()
        raise RuntimeError("Database schema is out of date")

    logger.info("Recipient store: postgres")
    return get_recipient_store()


def _build_transport() -> MessageTransport:
    if settings.transport_provider == "meta":
        if not settings.meta_enabled:
            logger.critical(
                "TRANSPORT_PROVIDER=meta but Meta credentials are not configured. "
                "Set META_ACCESS_TOKEN and META_PHONE_NUMBER_ID."
            )
            raise RuntimeError("Meta Cloud API credentials not configured")
        return MetaCloudTransport()

    logger.warning("Transport: dry_run (messages are NOT sent)")
    return DryRunTransport()


# ============================================================================
# LIFESPAN
# ============================================================================

@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    """Application lifecycle: startup and shutdown"""

    # STARTUP
    logger.info(
        f"Starting application: env={settings.app_env}, store={settings.recipient_store}, "
        f"transport={settings.transport_provider}"
    )

    if settings.is_production:
        missing = settings.validate_required_for_production()
        if missing:
            logger.critical(f"Missing required production settings: {missing}")
            raise RuntimeError(f"Missing production config: {missing}")

    store = await _build_store()
    transport = _build_transport()
    hub = ObserverHub()

    controller = DispatchController(
        store,
        transport,
        hub,
        generator=generator_from_settings(),
        pacing_window=settings.pacing_window,
        page_size=settings.dispatch_page_size,
        resume_pending=settings.dispatch_resume_pending,
        max_quantity=settings.generator_max_quantity,
    )
    supervisor = TransportSupervisor(
        transport,
        hub,
        initial_delay=settings.transport_reconnect_initial_delay,
        max_delay=settings.transport_reconnect_max_delay,
    )

    fastapi_app.state.store = store
    fastapi_app.state.hub = hub
    fastapi_app.state.controller = controller
    fastapi_app.state.supervisor = supervisor
    fastapi_app.state.health_checker = AsyncHealthChecker(
        store,
        supervisor,
        include_database=settings.recipient_store == "postgres",
    )

    await supervisor.start()
    await controller.start()

    if settings.dispatch_resume_pending:
        pending = await store.count_pending()
        if pending:
            logger.info(f"{pending} pending recipient(s) from a previous session, start a dispatch to resume")

    logger.info("Application startup complete")

    yield

    # SHUTDOWN
    logger.info("Shutting down application")

    # Pending recipients stay pending for the next run
    await controller.stop()
    await supervisor.stop()

    await close_all_sessions()

    if settings.recipient_store == "postgres":
        await close_pool()
    logger.info("Application shutdown complete")


# ============================================================================
# CREATE APP
# ============================================================================

app = FastAPI(
    title="Bulk Dispatch",
    description="Rate-paced bulk message dispatch with live progress",
    version="1.0.0",
    lifespan=lifespan,
    docs_url=None if settings.is_production else "/docs",
    redoc_url=None if settings.is_production else "/redoc",
    openapi_url=None if settings.is_production else "/openapi.json",
)

if settings.is_production or settings.is_staging:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins if settings.allowed_origins != ["*"] else [],
        allow_credentials=False,
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type", "Authorization"],
    )
else:
    # More permissive in dev
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(ErrorHandlingMiddleware)
app.add_middleware(RequestLoggingMiddleware, enabled=settings.enable_request_logging)
app.add_middleware(RequestIDMiddleware)


# ============================================================================
# EXCEPTION HANDLERS
# ============================================================================

@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Handle HTTP exceptions with appropriate logging"""
    if exc.status_code >= 500:
        logger.error(f"Server error: {exc.detail}", extra={"status_code": exc.status_code})

    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=exc.headers,
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions"""
    logger.error(f"Unhandled exception: {exc.__class__.__name__}", exc_info=True)

    error_message = sanitize_error_message(exc, settings.is_production)

    return JSONResponse(
        status_code=500,
        content={"error": error_message},
    )


# ============================================================================
# PUBLIC ENDPOINTS
# ============================================================================

@app.get("/health")
def health():
    """Liveness probe. Returns minimal information."""
    return {"status": "healthy"}


@app.get("/ready")
async def readiness(request: Request):
    """
    Readiness probe: critical checks only (database, recipient store).
    A reconnecting transport does not make the service unready.
    """
    result = await request.app.state.health_checker.run_checks(include_non_critical=False)

    if result["status"] == "unhealthy":
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy"}
        )

    return {"status": "healthy"}


@app.websocket("/ws")
async def observer_endpoint(websocket: WebSocket):
    state = websocket.app.state
    await observer_socket(websocket, state.hub, state.controller)


# ============================================================================
# METRICS / DETAILED HEALTH
# ============================================================================

@app.get("/health/detailed", dependencies=[Depends(require_metrics_auth)])
async def detailed_health(request: Request):
    return await request.app.state.health_checker.run_checks(include_non_critical=True)


@app.get("/metrics", dependencies=[Depends(require_metrics_auth)])
def metrics():
    collector = get_metrics_collector()
    return collector.get_metrics()


# ============================================================================
# ADMIN ENDPOINTS
# ============================================================================

@app.post(
    "/dispatch/start",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=CommandAccepted,
    dependencies=[Depends(require_admin_auth)],
)
async def dispatch_start(payload: StartSendingIn, controller: DispatchController = Depends(get_controller)):
    """Queue a dispatch session. Progress is reported on /ws."""
    if controller.is_sending:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="A dispatch is already in progress")

    await controller.submit_start(payload.to_command())
    return CommandAccepted(accepted=True, detail="Dispatch queued")


@app.post(
    "/dispatch/stop",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=CommandAccepted,
    dependencies=[Depends(require_admin_auth)],
)
async def dispatch_stop(controller: DispatchController = Depends(get_controller)):
    """Request a cooperative stop. The current recipient finishes first."""
    if not controller.is_sending:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="No dispatch in progress")

    await controller.submit_stop()
    return CommandAccepted(accepted=True, detail="Stop requested")


@app.get(
    "/dispatch/status",
    response_model=DispatchStatusOut,
    dependencies=[Depends(require_admin_auth)],
)
async def dispatch_status(request: Request, controller: DispatchController = Depends(get_controller)):
    state = request.app.state
    snapshot = controller.snapshot()

    try:
        recipients = await state.store.count_by_status()
    except StoreError as exc:
        logger.warning(f"Recipient counts unavailable: {exc}")
        recipients = None

    return DispatchStatusOut(
        **snapshot,
        transport=settings.transport_provider,
        transport_connected=state.supervisor.connected,
        observers=state.hub.observer_count,
        recipients=recipients,
    )


# ============================================================================
# CATCH-ALL (Return 404 for unknown routes)
# ============================================================================

@app.api_route("/{path:path}", methods=["GET", "POST", "PUT", "DELETE", "PATCH"])
async def catch_all(path: str):
    """Generic 404 without revealing information."""
    logger.warning(f"404 - Unknown route accessed: {path}")
    raise HTTPException(status_code=404, detail="Not found")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "bulkdispatch.transport.http_app:app",
        host="0.0.0.0",
        port=8099,
        reload=not settings.is_production,
        log_level=settings.log_level.lower(),
        access_log=not settings.is_production,
        server_header=False,
        date_header=False,
    )
