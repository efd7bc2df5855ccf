"""
Analytics: closure times and cohort statistics derived from case history.

Everything here is a pure function of a snapshot of grievances (with
their history loaded) and a reference time, so results are reproducible
in tests.

Two resolution figures exist on purpose:
- the quick dashboard stat (avg_resolution_time_hours) averages
  resolved cases only
- the analytics summary treats resolved and rejected cases alike as
  closed
"""

import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from ..models import (
    CLOSED_STATUSES,
    OPEN_STATUSES,
    Grievance,
    GrievanceCategory,
    GrievanceStatus,
    HistoryEventType,
    UserRole,
    utc_now,
)


# =============================================================================
# PER-CASE METRICS
# =============================================================================


@dataclass
class AnalyticsRecord:
    """Derived timing metrics for one case."""
    id: Any
    case_number: str
    title: str
    category: str
    status: str
    closed_status: str | None
    assigned_to: str | None
    anonymous: bool
    created_at: datetime
    closed_at: datetime | None
    resolution_hours: float | None
    resolution_days: float | None
    current_duration_hours: float | None
    current_duration_days: float | None


def resolve_closed_at(
    grievance: Grievance,
) -> tuple[datetime | None, GrievanceStatus | None]:
    """When (and how) a case was first closed.

    Uses the earliest status event into resolved or rejected. A case that
    is closed but has no such event falls back to its own updated_at.
    """
    closing_events = [
        event
        for event in grievance.history
        if event.type == HistoryEventType.STATUS and event.status in CLOSED_STATUSES
    ]
    if closing_events:
        first = min(closing_events, key=lambda event: (event.updated_at, event.sequence or 0))
        return first.updated_at, first.status

    if grievance.status in CLOSED_STATUSES:
        return grievance.updated_at, grievance.status

    return None, None


def diff_hours(start: datetime | None, end: datetime | None) -> float | None:
    """Hours between two instants, rounded to 2 places.

    None when either side is missing or the span is negative.
    """
    if start is None or end is None:
        return None
    seconds = (end - start).total_seconds()
    if seconds < 0:
        return None
    return round(seconds / 3600, 2)


def hours_to_days(hours: float | None) -> float | None:
    if hours is None:
        return None
    return round(hours / 24, 2)


def build_analytics_record(grievance: Grievance, now: datetime | None = None) -> AnalyticsRecord:
    now = now or utc_now()
    closed_at, closed_status = resolve_closed_at(grievance)

    resolution_hours = diff_hours(grievance.created_at, closed_at) if closed_at else None
    current_duration_hours = diff_hours(grievance.created_at, closed_at or now)

    return AnalyticsRecord(
        id=grievance.id,
        case_number=grievance.case_number,
        title=grievance.title or "Untitled grievance",
        category=grievance.category.value,
        status=grievance.status.value,
        closed_status=closed_status.value if closed_status else None,
        assigned_to=grievance.assigned_to or None,
        anonymous=bool(grievance.anonymous),
        created_at=grievance.created_at,
        closed_at=closed_at,
        resolution_hours=resolution_hours,
        resolution_days=hours_to_days(resolution_hours),
        current_duration_hours=current_duration_hours,
        current_duration_days=hours_to_days(current_duration_hours),
    )


def build_analytics(
    grievances: Iterable[Grievance],
    now: datetime | None = None,
) -> list[AnalyticsRecord]:
    """Records for every case, newest first."""
    now = now or utc_now()
    records = [build_analytics_record(g, now) for g in grievances]
    records.sort(key=lambda record: record.created_at, reverse=True)
    return records


# =============================================================================
# COHORT STATISTICS
# =============================================================================


def percentile(values: Sequence[float], p: float) -> float | None:
    """Linear-interpolated percentile at index p/100 * (n - 1)."""
    if not values:
        return None
    ordered = sorted(values)
    idx = (p / 100) * (len(ordered) - 1)
    lower = math.floor(idx)
    upper = math.ceil(idx)
    if lower == upper:
        return ordered[lower]
    weight = idx - lower
    return ordered[lower] * (1 - weight) + ordered[upper] * weight


@dataclass
class ResolutionSummary:
    """Aggregate resolution times over the closed cohort."""
    total: int = 0
    closed_count: int = 0
    average_resolution: float | None = None
    median_resolution: float | None = None
    percentile_90: float | None = None
    fastest: AnalyticsRecord | None = None
    slowest: AnalyticsRecord | None = None


def summarize_resolution_times(records: Sequence[AnalyticsRecord]) -> ResolutionSummary:
    """Mean, median, p90 and extremes over records with a resolution time."""
    closed = [record for record in records if record.resolution_hours is not None]
    summary = ResolutionSummary(total=len(records), closed_count=len(closed))
    if not closed:
        return summary

    durations = [record.resolution_hours for record in closed]
    summary.average_resolution = sum(durations) / len(durations)
    summary.median_resolution = percentile(durations, 50)
    summary.percentile_90 = percentile(durations, 90)

    by_duration = sorted(closed, key=lambda record: record.resolution_hours)
    summary.fastest = by_duration[0]
    summary.slowest = by_duration[-1]
    return summary


# =============================================================================
# QUICK STATS
# =============================================================================


@dataclass
class QuickStats:
    """Dashboard counters for the grievances a user can see."""
    total: int = 0
    by_status: dict[str, int] = field(default_factory=dict)
    by_category: dict[str, int] = field(default_factory=dict)
    resolved_count: int = 0
    open_count: int = 0
    avg_resolution_time_hours: float = 0
    open_by_stage: dict[str, int] | None = None


def compute_quick_stats(
    grievances: Sequence[Grievance],
    role: UserRole,
) -> QuickStats:
    """Counts by status and category, open count and mean resolution time.

    The stage breakdown of open cases is only included for admins.
    """
    stats = QuickStats(
        total=len(grievances),
        by_status={status.value: 0 for status in GrievanceStatus},
        by_category={category.value: 0 for category in GrievanceCategory},
    )

    resolution_hours: list[float] = []
    for grievance in grievances:
        stats.by_status[grievance.status.value] += 1
        stats.by_category[grievance.category.value] += 1

        if grievance.status == GrievanceStatus.RESOLVED:
            stats.resolved_count += 1
            closed_at, _ = resolve_closed_at(grievance)
            hours = diff_hours(grievance.created_at, closed_at)
            if hours is not None:
                resolution_hours.append(hours)

    rejected = stats.by_status[GrievanceStatus.REJECTED.value]
    stats.open_count = stats.total - stats.resolved_count - rejected

    if resolution_hours:
        stats.avg_resolution_time_hours = round(sum(resolution_hours) / len(resolution_hours), 1)

    if role == UserRole.ADMIN:
        stats.open_by_stage = {status.value: stats.by_status[status.value] for status in OPEN_STATUSES}

    return stats
