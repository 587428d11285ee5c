"""
School Orchestrator Server Entry Point

Run with: python -m school_orchestrator.main
Or: uvicorn school_orchestrator.main:app --reload
"""

import os
import sys
from pathlib import Path

import uvicorn

from school_orchestrator import __version__
from school_orchestrator.auth.identity import DEFAULT_JWT_SECRET
from school_orchestrator.logging.setup import get_logger, setup_logging

# Initialize logging early
setup_logging()
logger = get_logger(__name__)

# Import app after logging is set up
from school_orchestrator.api.routes import app  # noqa: E402

SUPPORTED_ALGORITHMS = {"HS256", "HS384", "HS512"}
AUDIT_STORES = {"memory", "file", "sqlite"}
MIN_SECRET_LENGTH = 32


def _check_positive(name: str, default: str, cast, errors: list[str]) -> None:
    raw = os.getenv(name, default)
    try:
        value = cast(raw)
    except ValueError:
        errors.append(f"{name} must be a number, got: {raw}")
        return
    if value <= 0:
        errors.append(f"{name} must be positive, got: {value}")


def _check_file(name: str, errors: list[str]) -> None:
    path = os.getenv(name)
    if path and not Path(path).is_file():
        errors.append(f"{name} points to a missing file: {path}")


def validate_environment() -> list[str]:
    """Validate environment variables at startup.

    Returns:
        List of validation error messages (empty if all valid).
    """
    errors: list[str] = []
    warnings: list[str] = []
    production = os.getenv("ORCHESTRATOR_ENV", "development").lower() == "production"

    port_str = os.getenv("ORCHESTRATOR_PORT", "8000")
    try:
        port = int(port_str)
        if not (1 <= port <= 65535):
            errors.append(f"ORCHESTRATOR_PORT must be between 1 and 65535, got: {port}")
    except ValueError:
        errors.append(f"ORCHESTRATOR_PORT must be an integer, got: {port_str}")

    # Credentials
    secret = os.getenv("ORCHESTRATOR_JWT_SECRET", DEFAULT_JWT_SECRET)
    if secret == DEFAULT_JWT_SECRET or len(secret) < MIN_SECRET_LENGTH:
        message = (
            "ORCHESTRATOR_JWT_SECRET is the default or shorter than "
            f"{MIN_SECRET_LENGTH} characters"
        )
        if production:
            errors.append(message)
        else:
            warnings.append(message)

    algorithm = os.getenv("ORCHESTRATOR_JWT_ALGORITHM", "HS256")
    if algorithm not in SUPPORTED_ALGORITHMS:
        errors.append(
            f"ORCHESTRATOR_JWT_ALGORITHM must be one of {sorted(SUPPORTED_ALGORITHMS)}, "
            f"got: {algorithm}"
        )
    _check_positive("ORCHESTRATOR_JWT_TTL_SECONDS", "604800", int, errors)

    # Tenants and analytics
    if os.getenv("ORCHESTRATOR_TENANT_CONFIG_PATH"):
        _check_file("ORCHESTRATOR_TENANT_CONFIG_PATH", errors)
    else:
        warnings.append(
            "No ORCHESTRATOR_TENANT_CONFIG_PATH configured. Every request will be "
            "refused with invalid_tenant."
        )
    _check_file("ORCHESTRATOR_ANALYTICS_CONFIG_PATH", errors)

    # Audit
    audit_store = os.getenv("ORCHESTRATOR_AUDIT_STORE", "file").lower()
    if audit_store not in AUDIT_STORES:
        errors.append(
            f"ORCHESTRATOR_AUDIT_STORE must be one of {sorted(AUDIT_STORES)}, got: {audit_store}"
        )
    elif audit_store == "memory" and production:
        warnings.append("ORCHESTRATOR_AUDIT_STORE=memory loses the audit trail on restart")

    # ErgoMate
    _check_positive("ORCHESTRATOR_ERGOMATE_TIMEOUT", "30", float, errors)
    if not os.getenv("ORCHESTRATOR_ERGOMATE_API_KEY"):
        warnings.append(
            "No ORCHESTRATOR_ERGOMATE_API_KEY configured. ErgoMate may reject sync requests."
        )

    valid_log_levels = {"debug", "info", "warning", "error", "critical"}
    log_level = os.getenv("ORCHESTRATOR_LOG_LEVEL", "info").lower()
    if log_level not in valid_log_levels:
        errors.append(
            f"ORCHESTRATOR_LOG_LEVEL must be one of {sorted(valid_log_levels)}, got: {log_level}"
        )

    rate_limit = os.getenv("ORCHESTRATOR_RATE_LIMIT", "120/minute")
    if "/" not in rate_limit:
        errors.append(f"ORCHESTRATOR_RATE_LIMIT must be in format 'N/period', got: {rate_limit}")
    else:
        count = rate_limit.split("/")[0]
        if not count.strip().isdigit():
            errors.append(f"ORCHESTRATOR_RATE_LIMIT count must be integer, got: {count}")

    for warning in warnings:
        logger.warning(warning, extra={"event": "config_warning"})

    return errors


def main():
    """Run the School Orchestrator server."""
    validation_errors = validate_environment()
    if validation_errors:
        for error in validation_errors:
            logger.error(error, extra={"event": "config_error"})
        print("\nConfiguration errors detected:", file=sys.stderr)
        for error in validation_errors:
            print(f"  - {error}", file=sys.stderr)
        print("\nPlease fix the above errors and restart.", file=sys.stderr)
        sys.exit(1)

    host = os.getenv("ORCHESTRATOR_HOST", "0.0.0.0")
    port = int(os.getenv("ORCHESTRATOR_PORT", "8000"))
    reload = os.getenv("ORCHESTRATOR_RELOAD", "false").lower() == "true"
    log_level = os.getenv("ORCHESTRATOR_LOG_LEVEL", "info").lower()

    banner = f"""
+---------------------------------------------------------------+
|  School Orchestrator v{__version__:<39}|
+---------------------------------------------------------------+
|  Server running at: http://{host}:{port}
|  API Docs: http://{host}:{port}/docs
|  Metrics: http://{host}:{port}/metrics
|
|  Requests need: Authorization: Bearer <token>
|                 X-Orchestrator-Id: <tenant id>
+---------------------------------------------------------------+
    """
    print(banner)

    logger.info(
        "Starting School Orchestrator server",
        extra={
            "event": "server_starting",
            "host": host,
            "port": port,
            "version": __version__,
        },
    )

    uvicorn.run(
        "school_orchestrator.api.routes:app",
        host=host,
        port=port,
        reload=reload,
        log_level=log_level,
    )


if __name__ == "__main__":
    main()
