"""
School Orchestrator

Multi-tenant school management service: student and class administration,
assignments pushed to ErgoMate, analytics dashboards and collaborative
sessions, behind tenant isolation and role-based access control.
"""

__version__ = "0.4.0"

from school_orchestrator.auth.guard import AccessGuard, RequestContext
from school_orchestrator.auth.identity import Identity, TokenService
from school_orchestrator.auth.permissions import Action, ResourceCategory, Role

__all__ = [
    "AccessGuard",
    "Action",
    "Identity",
    "RequestContext",
    "ResourceCategory",
    "Role",
    "TokenService",
]
