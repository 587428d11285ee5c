"""Rate limiting configuration for the School Orchestrator.

Provides configurable rate limiting using slowapi.
"""

import os

from slowapi import Limiter
from slowapi.util import get_remote_address
from starlette.requests import Request

from school_orchestrator.logging.setup import get_logger

logger = get_logger(__name__)


def get_rate_limit_key(request: Request) -> str:
    """Get the rate limit key for a request.

    Buckets are per tenant and client address, so one school cannot
    exhaust another school's budget from a shared NAT.

    Args:
        request: The incoming request.

    Returns:
        Rate limit key.
    """
    tenant_id = request.headers.get("X-Orchestrator-Id", "").strip()
    address = get_remote_address(request)
    if tenant_id:
        return f"tenant:{tenant_id[:64]}:{address}"
    return address


# Default rate limit (can be overridden by environment variable)
DEFAULT_RATE_LIMIT = "120/minute"


def get_rate_limit() -> str:
    """Get the configured rate limit (e.g. '120/minute')."""
    return os.getenv("ORCHESTRATOR_RATE_LIMIT", DEFAULT_RATE_LIMIT)


def is_rate_limit_enabled() -> bool:
    """Check if rate limiting is enabled (default true)."""
    return os.getenv("ORCHESTRATOR_RATE_LIMIT_ENABLED", "true").lower() == "true"


limiter = Limiter(
    key_func=get_rate_limit_key,
    default_limits=[get_rate_limit()] if is_rate_limit_enabled() else [],
    enabled=is_rate_limit_enabled(),
)


def get_limiter() -> Limiter:
    return limiter


def log_rate_limit_exceeded(request: Request) -> None:
    """Log rate limit exceeded events.

    Args:
        request: The request that exceeded the rate limit.
    """
    logger.warning(
        "Rate limit exceeded",
        extra={
            "event": "rate_limit_exceeded",
            "client": get_rate_limit_key(request),
            "path": str(request.url.path),
        },
    )
