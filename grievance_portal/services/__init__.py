"""Business logic services for the Grievance Portal."""

from .analytics import (
    AnalyticsRecord,
    QuickStats,
    ResolutionSummary,
    build_analytics,
    build_analytics_record,
    compute_quick_stats,
    percentile,
    resolve_closed_at,
    summarize_resolution_times,
)
from .case_engine import (
    ActionResult,
    CaseAction,
    CaseActionInput,
    CaseEngine,
    can_view,
)
from .directory import RoleDirectory, SqlRoleDirectory
from .exceptions import (
    AccessDeniedError,
    CaseStoreError,
    FeedbackAlreadySubmittedError,
    GrievanceError,
    GrievanceNotFoundError,
    GrievanceValidationError,
    InvalidRatingError,
    InvalidStatusError,
    InvalidTransitionError,
    UnsupportedActionError,
)
from .grievance_store import (
    AttachmentUpload,
    CreatedGrievance,
    CreateGrievanceInput,
    GrievanceFilters,
    GrievanceStore,
    format_case_number,
)
from .mailer import EmailChannel, EmailConfig, NotificationChannel
from .notifications import DeliveryReport, NotificationDispatcher, NotificationService
from .timeline import order_timeline

__all__ = [
    # Case engine (primary)
    "CaseEngine",
    "CaseAction",
    "CaseActionInput",
    "ActionResult",
    "can_view",
    # Store
    "GrievanceStore",
    "CreateGrievanceInput",
    "CreatedGrievance",
    "AttachmentUpload",
    "GrievanceFilters",
    "format_case_number",
    # Timeline
    "order_timeline",
    # Notifications
    "RoleDirectory",
    "SqlRoleDirectory",
    "NotificationService",
    "NotificationDispatcher",
    "DeliveryReport",
    "NotificationChannel",
    "EmailChannel",
    "EmailConfig",
    # Analytics
    "AnalyticsRecord",
    "ResolutionSummary",
    "QuickStats",
    "build_analytics",
    "build_analytics_record",
    "compute_quick_stats",
    "percentile",
    "resolve_closed_at",
    "summarize_resolution_times",
    # Errors
    "GrievanceError",
    "GrievanceValidationError",
    "InvalidStatusError",
    "InvalidRatingError",
    "UnsupportedActionError",
    "AccessDeniedError",
    "GrievanceNotFoundError",
    "InvalidTransitionError",
    "FeedbackAlreadySubmittedError",
    "CaseStoreError",
]
