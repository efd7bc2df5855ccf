"""Pydantic schemas for grievances and case actions."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import Field

from ..models import GrievanceCategory, GrievanceStatus, HistoryEventType
from .base import PortalBaseModel


# =============================================================================
# HISTORY & ATTACHMENTS
# =============================================================================


class HistoryEntryResponse(PortalBaseModel):
    """One event on a case timeline."""

    type: HistoryEventType
    status: GrievanceStatus | None = None
    comment: str = ""
    updated_by: str
    updated_at: datetime


class AttachmentResponse(PortalBaseModel):
    """Attachment metadata; the bytes are served by the download endpoint."""

    id: UUID
    file_name: str
    file_type: str
    size_bytes: int


class ResolutionFeedbackResponse(PortalBaseModel):
    rating: int
    comment: str = ""
    submitted_at: datetime


# =============================================================================
# GRIEVANCES
# =============================================================================


class GrievanceSummaryResponse(PortalBaseModel):
    """Grievance fields shown in lists."""

    id: UUID
    case_number: str
    category: GrievanceCategory
    title: str
    description: str
    status: GrievanceStatus
    assigned_to: str | None = None
    escalation_level: int = 0
    anonymous: bool = False
    creator_id: UUID | None = None
    resolution_feedback: ResolutionFeedbackResponse | None = None
    created_at: datetime
    updated_at: datetime


class GrievanceDetailResponse(GrievanceSummaryResponse):
    """Full grievance. History is ordered newest first."""

    attachments: list[AttachmentResponse] = Field(default_factory=list)
    history: list[HistoryEntryResponse] = Field(default_factory=list)


class GrievanceListResponse(PortalBaseModel):
    grievances: list[GrievanceSummaryResponse]


class GrievanceEnvelope(PortalBaseModel):
    grievance: GrievanceDetailResponse


class CreateGrievanceResponse(PortalBaseModel):
    """Returned once on submission; the tracking code is never shown again."""

    message: str = "Grievance created"
    grievance_id: UUID
    case_number: str
    tracking_code: str | None = None


# =============================================================================
# ACTIONS
# =============================================================================


class GrievanceActionRequest(PortalBaseModel):
    """Body of PATCH /grievances/{id}.

    The action stays a plain string so unknown actions are answered with
    a typed error instead of a schema error.
    """

    action: str | None = None
    status: str | None = None
    comment: str | None = None
    assigned_to: str | None = None
    rating: Any = None


class GrievanceActionResponse(PortalBaseModel):
    message: str
    history_entry: HistoryEntryResponse


# =============================================================================
# TRACKING
# =============================================================================


class TrackGrievanceRequest(PortalBaseModel):
    tracking_code: str = Field(..., min_length=1, max_length=64)


class TrackedTimelineEntry(PortalBaseModel):
    """Timeline event without actor ids."""

    type: HistoryEventType
    status: GrievanceStatus | None = None
    comment: str = ""
    updated_at: datetime


class TrackedGrievanceResponse(PortalBaseModel):
    """What an anonymous submitter may see about their case."""

    case_number: str
    category: GrievanceCategory
    title: str
    status: GrievanceStatus
    escalation_level: int = 0
    created_at: datetime
    updated_at: datetime
    timeline: list[TrackedTimelineEntry] = Field(default_factory=list)


class TrackedGrievanceEnvelope(PortalBaseModel):
    grievance: TrackedGrievanceResponse
