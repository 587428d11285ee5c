"""API module for the School Orchestrator service."""

from school_orchestrator.api.security import RequestAccess, get_access, get_access_guard

__all__ = [
    "RequestAccess",
    "get_access",
    "get_access_guard",
]
