"""Storage module for tenant-scoped orchestrator data."""

from school_orchestrator.storage.memory_store import (
    OrchestratorStore,
    TenantCollection,
    get_store,
    reset_store,
)

__all__ = [
    "OrchestratorStore",
    "TenantCollection",
    "get_store",
    "reset_store",
]
