"""
Pydantic models shared by the API routers.
"""

from typing import Optional

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    version: str


class ErrorResponse(BaseModel):
    """Error body returned by every failing endpoint."""

    error: str = Field(..., description="Stable machine-readable code")
    message: str
    reason: Optional[str] = Field(None, description="forbidden only: permission_denied or not_owner")
    required_permission: Optional[str] = None
    required_permissions: Optional[list[str]] = None
    your_role: Optional[str] = None


ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Missing tenant identifier or invalid input"},
    401: {"model": ErrorResponse, "description": "Missing, invalid or expired credential"},
    403: {"model": ErrorResponse, "description": "Tenant refused, mismatch or forbidden"},
    404: {"model": ErrorResponse, "description": "Resource not found in the tenant"},
}
