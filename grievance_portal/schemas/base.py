"""Base schemas and common types for the Grievance Portal API."""

from uuid import UUID

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from ..models import UserRole


# =============================================================================
# BASE SCHEMAS
# =============================================================================


class PortalBaseModel(BaseModel):
    """Base model with common configuration.

    Fields are snake_case in Python and camelCase on the wire.
    """

    model_config = ConfigDict(
        from_attributes=True,  # Enable ORM mode
        populate_by_name=True,
        use_enum_values=True,
        alias_generator=to_camel,
    )


# =============================================================================
# ERROR RESPONSES
# =============================================================================


class ErrorDetail(PortalBaseModel):
    """Detailed error information."""

    field: str | None = None
    message: str
    code: str


class ErrorResponse(PortalBaseModel):
    """Standard error response format."""

    error: str
    message: str
    details: list[ErrorDetail] = []


# =============================================================================
# USERS
# =============================================================================


class UserResponse(PortalBaseModel):
    """The signed-in user's profile."""

    id: UUID
    email: str | None = None
    display_name: str | None = None
    role: UserRole
    department: str | None = None
    anonymous: bool = False


class MeResponse(PortalBaseModel):
    user: UserResponse
