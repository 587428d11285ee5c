"""Multi-tenant support for the School Orchestrator.

Every school (tenant) is isolated: all data is partitioned by tenant id and
every request must name the tenant it operates on. The caller-supplied
identifier (X-Orchestrator-Id header) is never trusted alone; it is
resolved against the registry here and later reconciled against the signed
credential.

Each tenant has:
- Unique tenant_id
- Name for display
- Lifecycle status (active, suspended, archived)
"""

import os
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

import yaml

from school_orchestrator.auth.errors import (
    TenantError,
    TenantErrorKind,
    TenantStoreUnavailable,
)
from school_orchestrator.logging.setup import get_logger

logger = get_logger(__name__)


class TenantStatus(str, Enum):
    """Tenant lifecycle status values."""

    ACTIVE = "active"
    SUSPENDED = "suspended"
    ARCHIVED = "archived"


@dataclass
class Tenant:
    """A tenant record.

    Attributes:
        tenant_id: Unique tenant identifier.
        name: Human-readable name.
        status: Lifecycle status.
        tenant_type: Kind of establishment (school, training centre...).
        created_at: Onboarding timestamp.
        settings: Free-form tenant settings.
    """

    tenant_id: str
    name: str
    status: TenantStatus = TenantStatus.ACTIVE
    tenant_type: str = "school"
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    settings: Dict = field(default_factory=dict)

    @property
    def is_active(self) -> bool:
        """Check if tenant is active."""
        return self.status == TenantStatus.ACTIVE


@dataclass(frozen=True)
class TenantContext:
    """Validated tenant for the current request.

    Exposes the tenant id that scopes every downstream query.
    """

    tenant_id: str
    name: str
    status: TenantStatus


@dataclass
class TenantRegistry:
    """Registry of tenants.

    Thread-safe for concurrent access.
    """

    tenants: Dict[str, Tenant] = field(default_factory=dict)
    _lock: threading.RLock = field(default_factory=threading.RLock)

    def get_tenant(self, tenant_id: str) -> Optional[Tenant]:
        """Get tenant by ID.

        Args:
            tenant_id: The tenant identifier.

        Returns:
            Tenant if found, None otherwise.
        """
        with self._lock:
            return self.tenants.get(tenant_id)

    def add_tenant(self, tenant: Tenant) -> None:
        """Register a tenant (onboarding).

        Args:
            tenant: The tenant to add.

        Raises:
            ValueError: If the tenant id is already registered.
        """
        with self._lock:
            if tenant.tenant_id in self.tenants:
                raise ValueError(f"Tenant already exists: {tenant.tenant_id}")
            self.tenants[tenant.tenant_id] = tenant

        logger.info(
            "Tenant registered",
            extra={
                "event": "tenant_added",
                "tenant_id": tenant.tenant_id,
                "tenant_name": tenant.name,
            },
        )

    def set_status(self, tenant_id: str, status: TenantStatus) -> Tenant:
        """Change a tenant's lifecycle status.

        Archiving is final: an archived tenant cannot be reactivated.

        Args:
            tenant_id: The tenant identifier.
            status: New status.

        Returns:
            The updated tenant.

        Raises:
            KeyError: If the tenant does not exist.
            ValueError: If the tenant is archived.
        """
        status = TenantStatus(status)
        with self._lock:
            tenant = self.tenants.get(tenant_id)
            if tenant is None:
                raise KeyError(tenant_id)
            if tenant.status == TenantStatus.ARCHIVED and status != TenantStatus.ARCHIVED:
                raise ValueError(f"Tenant {tenant_id} is archived")
            previous = tenant.status
            tenant.status = status

        logger.info(
            "Tenant status changed",
            extra={
                "event": "tenant_status_changed",
                "tenant_id": tenant_id,
                "previous_status": previous.value,
                "status": status.value,
            },
        )
        return tenant

    def list_tenants(self, status: Optional[TenantStatus] = None) -> List[Tenant]:
        """List all tenants, optionally filtered by status.

        Args:
            status: Optional status filter.

        Returns:
            List of tenants.
        """
        with self._lock:
            tenants = list(self.tenants.values())
            if status:
                tenants = [t for t in tenants if t.status == status]
            return tenants

    @classmethod
    def from_yaml(cls, path: Path | str) -> "TenantRegistry":
        """Load tenants from a YAML file.

        Args:
            path: Path to tenants.yaml file.

        Returns:
            TenantRegistry instance.

        Raises:
            ValueError: If a tenant declares an unknown status.

        Example YAML:
            tenants:
              - tenant_id: "TENANT_INST_PARIS"
                name: "Institut Paris"
                status: "active"
                type: "school"
        """
        path = Path(path)

        if not path.exists():
            logger.warning(f"Tenant configuration file not found: {path}")
            return cls()

        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)

        if data is None:
            return cls()

        registry = cls()

        for tenant_data in data.get("tenants", []):
            status_str = str(tenant_data.get("status", "active")).lower()
            try:
                status = TenantStatus(status_str)
            except ValueError:
                raise ValueError(
                    f"Unknown status '{status_str}' for tenant "
                    f"{tenant_data.get('tenant_id')}"
                ) from None

            registry.add_tenant(
                Tenant(
                    tenant_id=str(tenant_data["tenant_id"]),
                    name=tenant_data["name"],
                    status=status,
                    tenant_type=tenant_data.get("type", "school"),
                    settings=tenant_data.get("settings", {}),
                )
            )

        logger.info(
            f"Loaded {len(registry.tenants)} tenants from configuration",
            extra={
                "event": "tenants_loaded",
                "source": str(path),
                "count": len(registry.tenants),
            },
        )

        return registry


class TenantResolver:
    """Resolve and validate caller-supplied tenant identifiers."""

    def __init__(self, registry: TenantRegistry) -> None:
        self._registry = registry

    def resolve(self, tenant_id_raw: Optional[str]) -> TenantContext:
        """Validate a tenant identifier.

        Args:
            tenant_id_raw: Identifier from the request (header or query).

        Returns:
            TenantContext for the active tenant.

        Raises:
            TenantError: MISSING, INVALID or INACTIVE.
            TenantStoreUnavailable: If the registry cannot be queried.
        """
        tenant_id = (tenant_id_raw or "").strip()
        if not tenant_id:
            raise TenantError(TenantErrorKind.MISSING)

        try:
            tenant = self._registry.get_tenant(tenant_id)
        except Exception as e:
            logger.error(
                "Tenant lookup failed",
                extra={"event": "tenant_store_error", "error": str(e)},
                exc_info=True,
            )
            raise TenantStoreUnavailable() from e

        if tenant is None:
            logger.warning(
                "Invalid tenant identifier",
                extra={"event": "tenant_invalid", "tenant_id": tenant_id},
            )
            raise TenantError(TenantErrorKind.INVALID)

        if not tenant.is_active:
            logger.warning(
                "Inactive tenant access attempt",
                extra={
                    "event": "tenant_inactive",
                    "tenant_id": tenant_id,
                    "tenant_status": tenant.status.value,
                },
            )
            raise TenantError(TenantErrorKind.INACTIVE)

        logger.debug(
            "Tenant resolved",
            extra={"event": "tenant_resolved", "tenant_id": tenant_id},
        )
        return TenantContext(
            tenant_id=tenant.tenant_id,
            name=tenant.name,
            status=tenant.status,
        )


# Global tenant registry (singleton-like)
_tenant_registry: Optional[TenantRegistry] = None
_tenant_registry_lock = threading.Lock()


def get_tenant_registry() -> TenantRegistry:
    """Get the global tenant registry.

    Loads from ORCHESTRATOR_TENANT_CONFIG_PATH if set.

    Returns:
        Global TenantRegistry instance.
    """
    global _tenant_registry

    with _tenant_registry_lock:
        if _tenant_registry is None:
            config_path = os.getenv("ORCHESTRATOR_TENANT_CONFIG_PATH")
            if config_path:
                _tenant_registry = TenantRegistry.from_yaml(config_path)
            else:
                _tenant_registry = TenantRegistry()

    return _tenant_registry


def reset_tenant_registry() -> None:
    """Reset the global tenant registry (for testing)."""
    global _tenant_registry
    with _tenant_registry_lock:
        _tenant_registry = None
