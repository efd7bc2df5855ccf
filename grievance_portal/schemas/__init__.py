"""Pydantic schemas for the Grievance Portal API."""

from .analytics import (
    AnalyticsRecordResponse,
    AnalyticsResponse,
    QuickStatsResponse,
    ResolutionSummaryResponse,
    StatsResponse,
)
from .base import ErrorDetail, ErrorResponse, MeResponse, PortalBaseModel, UserResponse
from .grievances import (
    AttachmentResponse,
    CreateGrievanceResponse,
    GrievanceActionRequest,
    GrievanceActionResponse,
    GrievanceDetailResponse,
    GrievanceEnvelope,
    GrievanceListResponse,
    GrievanceSummaryResponse,
    HistoryEntryResponse,
    ResolutionFeedbackResponse,
    TrackedGrievanceEnvelope,
    TrackedGrievanceResponse,
    TrackedTimelineEntry,
    TrackGrievanceRequest,
)
from .notifications import (
    MarkReadRequest,
    MarkReadResponse,
    NotificationListResponse,
    NotificationResponse,
)

__all__ = [
    # Base
    "PortalBaseModel",
    "ErrorDetail",
    "ErrorResponse",
    "UserResponse",
    "MeResponse",
    # Grievances
    "HistoryEntryResponse",
    "AttachmentResponse",
    "ResolutionFeedbackResponse",
    "GrievanceSummaryResponse",
    "GrievanceDetailResponse",
    "GrievanceListResponse",
    "GrievanceEnvelope",
    "CreateGrievanceResponse",
    "GrievanceActionRequest",
    "GrievanceActionResponse",
    "TrackGrievanceRequest",
    "TrackedTimelineEntry",
    "TrackedGrievanceResponse",
    "TrackedGrievanceEnvelope",
    # Analytics
    "QuickStatsResponse",
    "StatsResponse",
    "AnalyticsRecordResponse",
    "ResolutionSummaryResponse",
    "AnalyticsResponse",
    # Notifications
    "NotificationResponse",
    "NotificationListResponse",
    "MarkReadRequest",
    "MarkReadResponse",
]
