"""Prometheus metrics module for the School Orchestrator."""

from school_orchestrator.metrics.collectors import (
    ACTIVE_REQUESTS,
    AUDIT_RECORDS,
    AUDIT_WRITE_FAILURES,
    AUTHZ_DENIALS,
    REQUEST_COUNT,
    REQUEST_LATENCY,
    SYNC_ERRORS,
    SYNC_LATENCY,
)

__all__ = [
    "REQUEST_LATENCY",
    "REQUEST_COUNT",
    "ACTIVE_REQUESTS",
    "AUTHZ_DENIALS",
    "AUDIT_RECORDS",
    "AUDIT_WRITE_FAILURES",
    "SYNC_LATENCY",
    "SYNC_ERRORS",
]
