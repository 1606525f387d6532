"""Bulk Hosting Provisioner - FastAPI Application."""

import os
import time
import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import sentry_sdk
import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration

from provisioner import __version__
from provisioner.config import get_settings
from provisioner.jobs.engine import JobEngine
from provisioner.jobs.store import ProcessStore
from provisioner.routers import health, jobs, metrics

# Configure structured logging
structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger(__name__)

# Initialize Sentry (if configured)
settings = get_settings()
if settings.sentry_dsn:
    from sentry_sdk.integrations.logging import LoggingIntegration

    # Only send ERROR-level logs as Sentry events
    sentry_logging = LoggingIntegration(
        level=None,  # Keep normal log levels
        event_level="ERROR",  # Only ERROR+ become Sentry events
    )

    def before_send(event, hint):
        """
        Filter out 4xx client errors from Sentry events.

        Unknown job ids and rejected submissions are user errors, not
        exceptions worth tracking. Only 5xx server errors are captured.
        """
        if "exc_info" in hint:
            exc_type, exc_value, tb = hint["exc_info"]
            if hasattr(exc_value, "status_code"):
                status_code = exc_value.status_code
                if 400 <= status_code < 500:
                    return None

        if "contexts" in event:
            response = event.get("contexts", {}).get("response", {})
            status_code = response.get("status_code", 0)
            if 400 <= status_code < 500:
                return None

        return event

    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.sentry_environment,
        release=os.environ.get("GIT_SHA", f"provisioner@{__version__}"),
        integrations=[
            sentry_logging,
            StarletteIntegration(transaction_style="endpoint"),
            FastApiIntegration(transaction_style="endpoint"),
        ],
        send_default_pii=False,
        attach_stacktrace=True,
        before_send=before_send,
    )
    sentry_sdk.set_tag("service", "provisioner")

    logger.info("Sentry initialized", environment=settings.sentry_environment)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    settings = get_settings()
    logger.info(
        "Starting Provisioner Service",
        version=__version__,
        host=settings.service_host,
        port=settings.service_port,
        max_concurrent_items=settings.max_concurrent_items,
        retry_max_attempts=settings.retry_max_attempts,
    )

    store = ProcessStore(log_retention_limit=settings.log_retention_limit)
    engine = JobEngine(store, settings=settings)
    jobs.set_engine(engine)
    await engine.start_reaper()

    yield

    # Cleanup on shutdown
    logger.info("Shutting down Provisioner Service")
    await engine.shutdown()
    jobs.set_engine(None)
    logger.info("Job engine stopped")


# Create FastAPI app
app = FastAPI(
    title="Bulk Hosting Provisioner",
    description="Bulk panel account, DNS and WordPress admin provisioning",
    version=__version__,
    lifespan=lifespan,
)

# Add CORS middleware
# In production, set CORS_ORIGINS to comma-separated list of allowed origins
cors_origins_str = os.environ.get("CORS_ORIGINS", "*")
if cors_origins_str == "*":
    cors_origins = ["*"]
    logger.warning("CORS_ORIGINS not set, allowing all origins (not for production)")
else:
    cors_origins = [origin.strip() for origin in cors_origins_str.split(",")]
    logger.info("CORS origins configured", origins=cors_origins)

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_middleware(request: Request, call_next):
    """Add request ID and timing to all requests."""
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))

    # Bind request context to logger
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(
        request_id=request_id,
        method=request.method,
        path=request.url.path,
    )

    start = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - start) * 1000

    response.headers["X-Request-ID"] = request_id
    response.headers["X-Response-Time-Ms"] = f"{duration_ms:.1f}"
    if request.url.path not in ("/health", "/metrics"):
        logger.info(
            "Request completed",
            status_code=response.status_code,
            duration_ms=round(duration_ms, 1),
        )
    return response


# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(jobs.router, tags=["Jobs"])
app.include_router(metrics.router)  # Metrics endpoint (excluded from OpenAPI)


@app.get("/")
async def root():
    """Root endpoint with service info."""
    return {
        "service": "Bulk Hosting Provisioner",
        "version": __version__,
        "docs": "/docs",
        "health": "/health",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "provisioner.main:app",
        host=settings.service_host,
        port=settings.service_port,
        log_level=settings.log_level.lower(),
    )
