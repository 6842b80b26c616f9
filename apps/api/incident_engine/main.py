"""FastAPI application entry point."""
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from incident_engine.core.config import settings
from incident_engine.core.errors import IncidentEngineError, http_status_for
from incident_engine.core.runtime import build_runtime
from incident_engine.core.structured_logging import build_log_context, configure_logging
from incident_engine.db.session import SessionLocal, engine

configure_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

# ============================================================================
# Sentry Integration (optional, for production error tracking)
# ============================================================================

if settings.SENTRY_DSN and settings.ENV != "dev":
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENV,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
        ],
        traces_sample_rate=0.1,  # 10% of requests for performance monitoring
        send_default_pii=False,  # Don't send PII to Sentry
    )
    logger.info("Sentry initialized for error tracking")

# ============================================================================
# FastAPI App
# ============================================================================

app = FastAPI(
    title="Incident Engine API",
    description="Incident lifecycle engine for the multi-tenant helpdesk",
    version=settings.VERSION,
    docs_url="/docs" if settings.ENV == "dev" else None,
    redoc_url="/redoc" if settings.ENV == "dev" else None,
)

# CORS middleware - must be added before routers
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,  # Required for cookies
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Requested-With"],
)


@app.exception_handler(IncidentEngineError)
async def incident_engine_error_handler(request: Request, exc: IncidentEngineError):
    status_code = http_status_for(exc)
    logger.info(
        "%s on %s %s: %s",
        type(exc).__name__,
        request.method,
        request.url.path,
        exc,
        extra=build_log_context(request_id=request.headers.get("X-Request-ID")),
    )
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


# ============================================================================
# Routers
# ============================================================================

from incident_engine.routers import channels, notifications, ops, reopen_requests, websocket

# User-scoped inbox and channel preferences
app.include_router(notifications.router, prefix="/me", tags=["notifications"])
app.include_router(channels.router, prefix="/me", tags=["channels"])

# Reopen workflow
app.include_router(reopen_requests.router)

# Ops endpoints (alert scan, workload)
app.include_router(ops.router)

# WebSocket for real-time push
app.include_router(websocket.router)


# ============================================================================
# Lifecycle
# ============================================================================


@app.on_event("startup")
async def start_runtime():
    """Build the runtime and start the alert scan ticker."""
    if getattr(app.state, "runtime", None) is None:
        app.state.runtime = build_runtime(SessionLocal, settings)
    app.state.runtime.start()


@app.on_event("shutdown")
async def stop_runtime():
    """Stop the scheduler, drain background work, close sockets."""
    runtime = getattr(app.state, "runtime", None)
    if runtime is not None:
        await runtime.shutdown()


@app.get("/health")
def health():
    """Health check endpoint for load balancers."""
    return {"status": "ok", "env": settings.ENV, "version": settings.VERSION}


@app.get("/health/db")
def health_db():
    """Database connectivity check."""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception as exc:
        logger.error("Database health check failed: %s", type(exc).__name__)
        return JSONResponse(status_code=503, content={"status": "error", "database": "unreachable"})
    return {"status": "ok", "database": "reachable"}
