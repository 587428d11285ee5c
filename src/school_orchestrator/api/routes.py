"""
FastAPI application for the School Orchestrator.

Assembles middleware, rate limiting, exception handlers and the resource
routers. Every router under ``/api`` is tenant-scoped and goes through the
access pipeline; ``/health`` and ``/metrics`` are not.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from slowapi.middleware import SlowAPIMiddleware

from school_orchestrator import __version__
from school_orchestrator.api import (
    admin_api,
    analytics_api,
    audit_api,
    content_api,
    feed_api,
    sessions_api,
    sync_api,
)
from school_orchestrator.api.errors import register_exception_handlers
from school_orchestrator.api.limiter import limiter
from school_orchestrator.api.middleware import RequestLoggingMiddleware
from school_orchestrator.api.models import ERROR_RESPONSES, HealthResponse
from school_orchestrator.audit.store import get_audit_store
from school_orchestrator.auth.permissions import validate_permission_table
from school_orchestrator.auth.tenant import TenantStatus, get_tenant_registry
from school_orchestrator.core.ergomate_sync import ErgoMateClient
from school_orchestrator.logging.setup import get_logger, setup_logging

# Initialize logging
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup: refuse to serve with an incomplete permission table
    validate_permission_table()
    registry = get_tenant_registry()
    logger.info(
        "Starting School Orchestrator",
        extra={
            "event": "startup",
            "version": __version__,
            "active_tenants": len(registry.list_tenants(TenantStatus.ACTIVE)),
        },
    )
    yield
    logger.info("Shutting down School Orchestrator", extra={"event": "shutdown"})
    await ErgoMateClient.close_http_client()
    await get_audit_store().close()


app = FastAPI(
    title="School Orchestrator",
    description="Multi-tenant school orchestration with tenant isolation and RBAC",
    version=__version__,
    lifespan=lifespan,
)

# Add middleware (last added runs first)
app.add_middleware(SlowAPIMiddleware)
app.add_middleware(RequestLoggingMiddleware)

# Add rate limiting
app.state.limiter = limiter

register_exception_handlers(app)

for module in (
    admin_api,
    content_api,
    analytics_api,
    feed_api,
    audit_api,
    sessions_api,
    sync_api,
):
    app.include_router(module.router, responses=ERROR_RESPONSES)


@app.get("/health", response_model=HealthResponse, tags=["Health"])
@limiter.exempt
async def health_check(request: Request):
    """Health check endpoint."""
    return HealthResponse(status="ok", version=__version__)


@app.get("/metrics", tags=["Monitoring"])
@limiter.exempt
async def metrics(request: Request):
    """Prometheus metrics endpoint.

    Returns Prometheus-format metrics for monitoring.
    """
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
