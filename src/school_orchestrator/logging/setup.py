"""Logging configuration for the School Orchestrator.

Structured JSON logging correlated per request. The request middleware
sets the request id; once the access pipeline has admitted a request, the
tenant and user it acts for are bound too, so every log line written while
handling it (authorization denials, audit write failures, sync errors)
carries ``request_id``, ``tenant_id`` and ``user_id``.

Fields passed explicitly through ``extra=`` take precedence over the bound
context.
"""

import logging
import os
import sys
from contextvars import ContextVar
from typing import Any, Optional

from pythonjsonlogger import jsonlogger

SERVICE_NAME = "school-orchestrator"

# Request-scoped correlation fields
request_id_var: ContextVar[str] = ContextVar("request_id", default="")
tenant_id_var: ContextVar[str] = ContextVar("tenant_id", default="")
user_id_var: ContextVar[str] = ContextVar("user_id", default="")


class RequestContextFilter(logging.Filter):
    """Attach the request id and the admitted tenant/user to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get() or "-"

        tenant_id = tenant_id_var.get()
        user_id = user_id_var.get()
        if tenant_id and not hasattr(record, "tenant_id"):
            record.tenant_id = tenant_id
        if user_id and not hasattr(record, "user_id"):
            record.user_id = user_id

        # Compact form for the text formatter
        record.actor = (
            f"{getattr(record, 'tenant_id', '-')}/{getattr(record, 'user_id', '-')}"
        )
        return True


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter with orchestrator service fields."""

    def add_fields(
        self,
        log_record: dict[str, Any],
        record: logging.LogRecord,
        message_dict: dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)

        if "levelname" in log_record:
            log_record["level"] = log_record.pop("levelname")
        if "asctime" in log_record:
            log_record["timestamp"] = log_record.pop("asctime")

        # Text-only field; tenant_id and user_id are already present
        log_record.pop("actor", None)

        log_record["service"] = SERVICE_NAME

        if hasattr(record, "request_id"):
            log_record["request_id"] = record.request_id


def setup_logging(
    level: Optional[str] = None,
    json_format: Optional[bool] = None,
) -> None:
    """Configure application logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR). Defaults to env var
               ORCHESTRATOR_LOG_LEVEL or INFO.
        json_format: Whether to use JSON format. Defaults to env var
                     ORCHESTRATOR_LOG_FORMAT == 'json' or True.
    """
    if level is None:
        level = os.getenv("ORCHESTRATOR_LOG_LEVEL", "INFO").upper()
    if json_format is None:
        json_format = os.getenv("ORCHESTRATOR_LOG_FORMAT", "json").lower() == "json"

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.addFilter(RequestContextFilter())

    if json_format:
        formatter: logging.Formatter = CustomJsonFormatter(
            fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S%z",
        )
    else:
        formatter = logging.Formatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s %(actor)s] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    handler.setFormatter(formatter)
    root_logger.addHandler(handler)

    # The shared ErgoMate client and the SQLite audit store log every call at DEBUG
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger with the specified name."""
    return logging.getLogger(name)


def set_request_id(request_id: str) -> None:
    """Start a new request context: set its id, forget any bound tenant/user."""
    request_id_var.set(request_id)
    tenant_id_var.set("")
    user_id_var.set("")


def get_request_id() -> str:
    """Current request id, or an empty string outside a request."""
    return request_id_var.get()


def bind_request_identity(tenant_id: str, user_id: str) -> None:
    """Attach the admitted tenant and user to the current request's log lines."""
    tenant_id_var.set(tenant_id)
    user_id_var.set(user_id)
