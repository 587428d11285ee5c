"""
Memory-based storage for orchestrator data.

Used for development and testing. Every collection is partitioned by
tenant: there is no operation that reads across tenants, so a handler
that holds a tenant id can only ever see that tenant's rows.
"""

import threading
from typing import Callable, Generic, Iterable, Optional, TypeVar

from school_orchestrator.storage.models import (
    Assignment,
    CollaborativeSession,
    QualityIssue,
    RiskRecord,
    SchoolClass,
    Student,
    StudentStat,
    SyncLog,
    Theme,
    User,
)

T = TypeVar("T")


class TenantCollection(Generic[T]):
    """One entity kind, keyed by tenant then by entity key.

    Example:
        >>> students = TenantCollection("students", threading.RLock())
        >>> students.put("TENANT_A", "stu_1", student)
        >>> students.get("TENANT_B", "stu_1") is None
        True
    """

    def __init__(self, name: str, lock: threading.RLock) -> None:
        self.name = name
        self._lock = lock
        self._items: dict[str, dict[str, T]] = {}

    def put(self, tenant_id: str, key: str, item: T) -> T:
        with self._lock:
            self._items.setdefault(tenant_id, {})[key] = item
        return item

    def get(self, tenant_id: str, key: str) -> Optional[T]:
        with self._lock:
            return self._items.get(tenant_id, {}).get(key)

    def select(
        self, tenant_id: str, where: Optional[Callable[[T], bool]] = None
    ) -> list[T]:
        with self._lock:
            items = list(self._items.get(tenant_id, {}).values())
        if where is not None:
            items = [item for item in items if where(item)]
        return items

    def count(self, tenant_id: str, where: Optional[Callable[[T], bool]] = None) -> int:
        return len(self.select(tenant_id, where))

    def update(self, tenant_id: str, key: str, apply: Callable[[T], None]) -> Optional[T]:
        """Mutate one entity in place under the store lock.

        Returns:
            The updated entity, or None if it does not exist in the tenant.
        """
        with self._lock:
            item = self._items.get(tenant_id, {}).get(key)
            if item is None:
                return None
            apply(item)
            return item

    def delete(self, tenant_id: str, key: str) -> bool:
        with self._lock:
            return self._items.get(tenant_id, {}).pop(key, None) is not None

    def bulk_put(self, tenant_id: str, items: Iterable[tuple[str, T]]) -> None:
        with self._lock:
            bucket = self._items.setdefault(tenant_id, {})
            for key, item in items:
                bucket[key] = item

    def clear(self) -> None:
        with self._lock:
            self._items.clear()


class OrchestratorStore:
    """In-memory, thread-safe store for all tenant-scoped domain data."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self.students: TenantCollection[Student] = TenantCollection("students", self._lock)
        self.classes: TenantCollection[SchoolClass] = TenantCollection("classes", self._lock)
        self.users: TenantCollection[User] = TenantCollection("users", self._lock)
        self.themes: TenantCollection[Theme] = TenantCollection("themes", self._lock)
        self.assignments: TenantCollection[Assignment] = TenantCollection(
            "assignments", self._lock
        )
        self.stats: TenantCollection[StudentStat] = TenantCollection("stats", self._lock)
        self.risks: TenantCollection[RiskRecord] = TenantCollection("risks", self._lock)
        self.quality_issues: TenantCollection[QualityIssue] = TenantCollection(
            "quality_issues", self._lock
        )
        self.sessions: TenantCollection[CollaborativeSession] = TenantCollection(
            "sessions", self._lock
        )
        self.sync_logs: TenantCollection[SyncLog] = TenantCollection("sync_logs", self._lock)

    @property
    def lock(self) -> threading.RLock:
        """Lock shared by every collection, for multi-entity updates."""
        return self._lock

    def clear(self) -> None:
        """Drop all data (for testing)."""
        with self._lock:
            for collection in (
                self.students,
                self.classes,
                self.users,
                self.themes,
                self.assignments,
                self.stats,
                self.risks,
                self.quality_issues,
                self.sessions,
                self.sync_logs,
            ):
                collection.clear()


# Global store instance
_store: Optional[OrchestratorStore] = None
_store_lock = threading.Lock()


def get_store() -> OrchestratorStore:
    """Get the global orchestrator store."""
    global _store
    with _store_lock:
        if _store is None:
            _store = OrchestratorStore()
    return _store


def reset_store() -> None:
    """Reset the global orchestrator store (for testing)."""
    global _store
    with _store_lock:
        _store = None
