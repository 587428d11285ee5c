"""Error taxonomy for the authorization pipeline.

Every failure carries the HTTP status and the stable machine-readable code
that the transport layer sends back. The mapping lives on the exception
classes so that the API layer can translate them with a single handler.
"""

from enum import Enum
from typing import Any, Optional, Sequence


class OrchestratorError(Exception):
    """Base class for errors that map to a stable API error code."""

    status_code: int = 500
    code: str = "internal_error"
    default_message: str = "Internal server error"

    def __init__(self, message: Optional[str] = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Response payload for this error."""
        return {"error": self.code, "message": self.message}


class AuthErrorKind(str, Enum):
    """Why a credential was rejected."""

    MISSING = "missing"
    INVALID = "invalid"
    EXPIRED = "expired"


class AuthError(OrchestratorError):
    """The bearer credential is missing, malformed, forged or expired."""

    status_code = 401
    code = "unauthenticated"

    _MESSAGES = {
        AuthErrorKind.MISSING: "Authentication required.",
        AuthErrorKind.INVALID: "Invalid authentication credential.",
        AuthErrorKind.EXPIRED: "Authentication credential has expired.",
    }

    def __init__(self, kind: AuthErrorKind, message: Optional[str] = None) -> None:
        self.kind = kind
        super().__init__(message or self._MESSAGES[kind])


class TenantErrorKind(str, Enum):
    """Why a tenant identifier was rejected."""

    MISSING = "missing"
    INVALID = "invalid"
    INACTIVE = "inactive"


class TenantError(OrchestratorError):
    """The caller-supplied tenant identifier cannot be used."""

    _STATUS = {
        TenantErrorKind.MISSING: (400, "missing_tenant_id"),
        TenantErrorKind.INVALID: (403, "invalid_tenant"),
        TenantErrorKind.INACTIVE: (403, "tenant_inactive"),
    }

    _MESSAGES = {
        TenantErrorKind.MISSING: (
            "Tenant identifier is required. Provide the X-Orchestrator-Id header."
        ),
        TenantErrorKind.INVALID: "Tenant not found or invalid.",
        TenantErrorKind.INACTIVE: "This tenant account is not active.",
    }

    def __init__(self, kind: TenantErrorKind, message: Optional[str] = None) -> None:
        self.kind = kind
        self.status_code, self.code = self._STATUS[kind]
        super().__init__(message or self._MESSAGES[kind])


class TenantStoreUnavailable(OrchestratorError):
    """The tenant registry could not be queried.

    Kept distinct from TenantError so an outage is never reported as an
    unknown tenant.
    """

    status_code = 500
    code = "internal_error"
    default_message = "Internal server error"


class MismatchError(OrchestratorError):
    """The signed tenant claim differs from the tenant the request targets."""

    status_code = 403
    code = "tenant_mismatch"
    default_message = "Your authentication tenant does not match the requested tenant."

    def __init__(self, source: str = "header", message: Optional[str] = None) -> None:
        self.source = source
        super().__init__(message)


class ForbiddenReason(str, Enum):
    """Why an authenticated identity was refused."""

    PERMISSION_DENIED = "permission_denied"
    NOT_OWNER = "not_owner"


class ForbiddenError(OrchestratorError):
    """The identity may not perform the requested action."""

    status_code = 403
    code = "forbidden"

    def __init__(
        self,
        reason: ForbiddenReason,
        required_permissions: Sequence[str] = (),
        role: Optional[str] = None,
        message: Optional[str] = None,
    ) -> None:
        self.reason = reason
        self.required_permissions = list(required_permissions)
        self.role = role
        if message is None:
            if reason == ForbiddenReason.NOT_OWNER:
                message = "You can only modify resources you created."
            else:
                message = "You do not have permission to perform this action."
        super().__init__(message)

    @property
    def required_permission(self) -> Optional[str]:
        """First required grant, e.g. ``assignments:create``."""
        return self.required_permissions[0] if self.required_permissions else None

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["reason"] = self.reason.value
        if self.required_permission:
            data["required_permission"] = self.required_permission
        if len(self.required_permissions) > 1:
            data["required_permissions"] = self.required_permissions
        if self.role:
            data["your_role"] = self.role
        return data


class NotFoundError(OrchestratorError):
    """A resource does not exist within the caller's tenant."""

    status_code = 404
    code = "not_found"

    def __init__(self, resource: str, resource_id: Optional[str] = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(f"{resource.capitalize()} not found")


class ConflictError(OrchestratorError):
    """The requested state change is not allowed from the current state."""

    status_code = 409
    code = "conflict"
    default_message = "Conflicting resource state"


class BadRequestError(OrchestratorError):
    """The request is well-formed but semantically invalid."""

    status_code = 400
    code = "invalid_input"
    default_message = "Invalid input"
