"""Exception handlers for the School Orchestrator API.

Every failure leaves the service as ``{"error": <code>, "message": ...}``
with a stable machine-readable code:

| Failure                        | Status | Code                |
|--------------------------------|--------|---------------------|
| missing/invalid/expired token  | 401    | unauthenticated     |
| missing tenant identifier      | 400    | missing_tenant_id   |
| unknown tenant                 | 403    | invalid_tenant      |
| inactive tenant                | 403    | tenant_inactive     |
| tenant/identity mismatch       | 403    | tenant_mismatch     |
| permission denied / not owner  | 403    | forbidden           |
| unknown resource in tenant     | 404    | not_found           |
| state conflict                 | 409    | conflict            |
| invalid input                  | 400    | invalid_input       |
| request validation             | 422    | validation_error    |
| rate limited                   | 429    | rate_limited        |
| ErgoMate failure               | 502    | sync_failed         |
| anything else                  | 500    | internal_error      |

Domain exceptions carry their status and code; this module is the single
place where they become HTTP responses.
"""

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from school_orchestrator.api.limiter import log_rate_limit_exceeded
from school_orchestrator.auth.errors import AuthError, OrchestratorError
from school_orchestrator.logging.setup import get_logger

logger = get_logger(__name__)

_HTTP_CODES = {
    400: "invalid_input",
    401: "unauthenticated",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
    409: "conflict",
}


def error_body(code: str, message: str, **extra) -> dict:
    body = {"error": code, "message": message}
    body.update(extra)
    return body


async def orchestrator_error_handler(request: Request, exc: OrchestratorError) -> JSONResponse:
    """Translate a domain error to its response."""
    headers = None
    if isinstance(exc, AuthError):
        headers = {"WWW-Authenticate": "Bearer"}
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
        headers=headers,
    )


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = [
        {
            "loc": [str(part) for part in error.get("loc", ())],
            "msg": error.get("msg", ""),
            "type": error.get("type", ""),
        }
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=422,
        content=error_body("validation_error", "Request validation failed", details=details),
    )


async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    log_rate_limit_exceeded(request)
    return JSONResponse(
        status_code=429,
        content=error_body("rate_limited", f"Rate limit exceeded: {exc.detail}"),
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    code = _HTTP_CODES.get(exc.status_code, "http_error")
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(code, str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "Unhandled error",
        extra={"event": "unhandled_error", "error_type": type(exc).__name__},
        exc_info=exc,
    )
    return JSONResponse(
        status_code=500,
        content=error_body("internal_error", "Internal server error"),
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Install every handler on the application."""
    app.add_exception_handler(OrchestratorError, orchestrator_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
