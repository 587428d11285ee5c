"""Prometheus metrics collectors for the School Orchestrator.

Defines all application metrics for monitoring and observability.
"""

from prometheus_client import Counter, Gauge, Histogram

# Request metrics
REQUEST_LATENCY = Histogram(
    "orchestrator_request_duration_seconds",
    "Request latency in seconds",
    ["method", "endpoint", "status"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

REQUEST_COUNT = Counter(
    "orchestrator_requests_total",
    "Total request count",
    ["method", "endpoint", "status"],
)

ACTIVE_REQUESTS = Gauge(
    "orchestrator_active_requests",
    "Currently processing requests",
)

# Authorization metrics
AUTHZ_DENIALS = Counter(
    "orchestrator_authz_denials_total",
    "Requests rejected by the authorization pipeline",
    ["code"],
)

# Audit metrics
AUDIT_RECORDS = Counter(
    "orchestrator_audit_records_total",
    "Audit records appended",
    ["result"],
)

AUDIT_WRITE_FAILURES = Counter(
    "orchestrator_audit_write_failures_total",
    "Audit records that could not be persisted",
)

# ErgoMate synchronization metrics
SYNC_LATENCY = Histogram(
    "orchestrator_ergomate_sync_duration_seconds",
    "ErgoMate synchronization latency",
    ["operation"],
    buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
)

SYNC_ERRORS = Counter(
    "orchestrator_ergomate_sync_errors_total",
    "ErgoMate synchronization errors",
    ["operation", "error_type"],
)
