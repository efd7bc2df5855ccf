"""Pydantic schemas for dashboard stats and resolution analytics."""

from datetime import datetime
from typing import Any

from .base import PortalBaseModel


class QuickStatsResponse(PortalBaseModel):
    total: int
    by_status: dict[str, int]
    by_category: dict[str, int]
    resolved_count: int
    open_count: int
    avg_resolution_time_hours: float
    open_by_stage: dict[str, int] | None = None


class StatsResponse(PortalBaseModel):
    stats: QuickStatsResponse


class AnalyticsRecordResponse(PortalBaseModel):
    """Timing metrics for one case. Durations are in hours and days."""

    id: Any
    case_number: str
    title: str
    category: str
    status: str
    closed_status: str | None = None
    assigned_to: str | None = None
    anonymous: bool = False
    created_at: datetime
    closed_at: datetime | None = None
    resolution_hours: float | None = None
    resolution_days: float | None = None
    current_duration_hours: float | None = None
    current_duration_days: float | None = None


class ResolutionSummaryResponse(PortalBaseModel):
    total: int
    closed_count: int
    average_resolution: float | None = None
    median_resolution: float | None = None
    percentile_90: float | None = None
    fastest: AnalyticsRecordResponse | None = None
    slowest: AnalyticsRecordResponse | None = None


class AnalyticsResponse(PortalBaseModel):
    analytics: list[AnalyticsRecordResponse]
    summary: ResolutionSummaryResponse
