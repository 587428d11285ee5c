"""Request middleware for the School Orchestrator.

Provides request logging and metrics middleware.
"""

import time
import uuid
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from school_orchestrator.logging.setup import get_logger, set_request_id
from school_orchestrator.metrics.collectors import (
    ACTIVE_REQUESTS,
    REQUEST_COUNT,
    REQUEST_LATENCY,
)

logger = get_logger(__name__)


def get_client_ip(request: Request) -> str:
    """Get client IP address from request.

    Args:
        request: The incoming request.

    Returns:
        Client IP address.
    """
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip

    if request.client:
        return request.client.host

    return "unknown"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware for request logging and metrics.

    Adds request_id to all requests and logs request start/completion.
    Also records Prometheus metrics for request latency and count.
    Transport details (request id, client ip, user agent) are stored on
    ``request.state`` so that handlers can pass them to the audit log.
    """

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Response]
    ) -> Response:
        """Process the request with logging and metrics.

        Args:
            request: The incoming request.
            call_next: The next middleware/handler.

        Returns:
            The response from the handler.
        """
        request_id = str(uuid.uuid4())[:8]
        set_request_id(request_id)

        request.state.request_id = request_id
        request.state.client_ip = get_client_ip(request)
        request.state.user_agent = request.headers.get("user-agent", "")

        method = request.method
        ACTIVE_REQUESTS.inc()

        start_time = time.time()
        logger.info(
            "Request started",
            extra={
                "event": "request_started",
                "method": method,
                "path": str(request.url.path),
                "query": str(request.url.query) if request.url.query else None,
                "client_ip": request.state.client_ip,
            },
        )

        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
        except Exception as e:
            logger.exception(
                "Request failed with exception",
                extra={
                    "event": "request_error",
                    "error": str(e),
                },
            )
            raise
        finally:
            duration = time.time() - start_time
            ACTIVE_REQUESTS.dec()

            endpoint = self._get_endpoint(request)
            status_str = str(status_code)
            REQUEST_LATENCY.labels(
                method=method,
                endpoint=endpoint,
                status=status_str,
            ).observe(duration)

            REQUEST_COUNT.labels(
                method=method,
                endpoint=endpoint,
                status=status_str,
            ).inc()

            logger.info(
                "Request completed",
                extra={
                    "event": "request_completed",
                    "method": method,
                    "path": str(request.url.path),
                    "status_code": status_code,
                    "duration_ms": round(duration * 1000, 2),
                },
            )

        response.headers["X-Request-ID"] = request_id
        return response

    def _get_endpoint(self, request: Request) -> str:
        """Get normalized endpoint for metrics.

        Uses the matched route template so that identifiers in the path do
        not create one metric series per resource.
        """
        route = request.scope.get("route")
        template = getattr(route, "path", None)
        if template:
            return template
        return request.url.path
