"""SQLAlchemy models for the Grievance Portal."""

from .base import Base, TimestampMixin, UTCDateTime, UUIDMixin, utc_now
from .models import (
    ANONYMOUS_ACTOR,
    CLOSED_STATUSES,
    OPEN_STATUSES,
    CaseCounter,
    EmailStatus,
    Grievance,
    GrievanceAttachment,
    GrievanceCategory,
    GrievanceHistory,
    GrievanceStatus,
    HistoryEventType,
    Notification,
    User,
    UserRole,
)

__all__ = [
    # Base
    "Base",
    "UUIDMixin",
    "TimestampMixin",
    "UTCDateTime",
    "utc_now",
    # Enums
    "UserRole",
    "GrievanceCategory",
    "GrievanceStatus",
    "HistoryEventType",
    "EmailStatus",
    "CLOSED_STATUSES",
    "OPEN_STATUSES",
    "ANONYMOUS_ACTOR",
    # Models
    "User",
    "CaseCounter",
    "Grievance",
    "GrievanceHistory",
    "GrievanceAttachment",
    "Notification",
]
