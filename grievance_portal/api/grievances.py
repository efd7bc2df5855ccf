"""
Grievance API Routes: submission, case views and case actions.

POST  /grievances                        - Submit (signed in, or anonymously)
GET   /grievances                        - List (non-admins see their own)
GET   /grievances/stats                  - Dashboard counters
GET   /grievances/analytics              - Resolution analytics (admin)
POST  /grievances/track                  - Anonymous case lookup by tracking code
GET   /grievances/{id}                   - One case with its timeline
GET   /grievances/{id}/attachments/{aid} - Download an attachment
PATCH /grievances/{id}                   - Apply a case action

Mutating routes commit before scheduling email delivery, so emails only
go out for notifications that were actually stored.
"""

from typing import Annotated
from urllib.parse import quote
from uuid import UUID

from fastapi import (
    APIRouter,
    BackgroundTasks,
    Depends,
    File,
    Form,
    HTTPException,
    Query,
    Response,
    UploadFile,
    status,
)

from ..core import (
    AdminDep,
    CurrentUserDep,
    MemberDep,
    OptionalUserDep,
    SessionDep,
    get_settings,
)
from ..models import Grievance, GrievanceCategory, GrievanceStatus
from ..schemas import (
    AnalyticsRecordResponse,
    AnalyticsResponse,
    AttachmentResponse,
    CreateGrievanceResponse,
    GrievanceActionRequest,
    GrievanceActionResponse,
    GrievanceDetailResponse,
    GrievanceEnvelope,
    GrievanceListResponse,
    GrievanceSummaryResponse,
    HistoryEntryResponse,
    QuickStatsResponse,
    ResolutionSummaryResponse,
    StatsResponse,
    TrackedGrievanceEnvelope,
    TrackedGrievanceResponse,
    TrackedTimelineEntry,
    TrackGrievanceRequest,
)
from ..services import (
    AttachmentUpload,
    CaseActionInput,
    CaseEngine,
    CreateGrievanceInput,
    GrievanceError,
    GrievanceFilters,
    GrievanceNotFoundError,
    SqlRoleDirectory,
    build_analytics,
    compute_quick_stats,
    order_timeline,
    summarize_resolution_times,
)
from .notifications import DispatcherDep

router = APIRouter(prefix="/grievances", tags=["grievances"])
settings = get_settings()


# =============================================================================
# DEPENDENCIES
# =============================================================================


def get_case_engine(session: SessionDep) -> CaseEngine:
    return CaseEngine(session, SqlRoleDirectory(session))


CaseEngineDep = Annotated[CaseEngine, Depends(get_case_engine)]


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================


def http_error(error: GrievanceError) -> HTTPException:
    """Map a domain error to its HTTP response."""
    return HTTPException(status_code=error.status_code, detail=str(error))


def build_detail(grievance: Grievance) -> GrievanceDetailResponse:
    """Full case view with the timeline newest first."""
    detail = GrievanceDetailResponse.model_validate(grievance)
    detail.attachments = [AttachmentResponse.model_validate(a) for a in grievance.attachments]
    detail.history = [
        HistoryEntryResponse.model_validate(event)
        for event in order_timeline(grievance.history)
    ]
    return detail


def build_tracked(grievance: Grievance) -> TrackedGrievanceResponse:
    return TrackedGrievanceResponse(
        case_number=grievance.case_number,
        category=grievance.category,
        title=grievance.title,
        status=grievance.status,
        escalation_level=grievance.escalation_level,
        created_at=grievance.created_at,
        updated_at=grievance.updated_at,
        timeline=[
            TrackedTimelineEntry.model_validate(event)
            for event in order_timeline(grievance.history)
        ],
    )


def _parse_filter(enum_cls, value: str | None, label: str):
    if not value:
        return None
    try:
        return enum_cls(value)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid {label} filter: {value}",
        )


def content_disposition(file_name: str) -> str:
    """Attachment header safe for any upload name (RFC 6266 / RFC 5987).

    Header values must be Latin-1, so the plain filename is an ASCII
    fallback and the real name travels percent-encoded in filename*.
    """
    fallback = file_name.encode("ascii", "replace").decode("ascii")
    fallback = fallback.replace("?", "_").replace('"', "_").replace("\\", "_")
    fallback = "".join(ch if ch.isprintable() else "_" for ch in fallback) or "attachment"
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(file_name, safe='')}"


# =============================================================================
# ENDPOINTS
# =============================================================================


@router.post(
    "",
    response_model=CreateGrievanceResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Submit a grievance",
    description="""
    Multipart form submission. Requires a signed-in user unless
    `anonymous=true`. Anonymous submissions receive a tracking code in the
    response; it is not stored and cannot be shown again.
    """,
)
async def create_grievance(
    current_user: OptionalUserDep,
    session: SessionDep,
    engine: CaseEngineDep,
    dispatcher: DispatcherDep,
    background_tasks: BackgroundTasks,
    category: Annotated[str, Form()] = "",
    title: Annotated[str, Form()] = "",
    description: Annotated[str, Form()] = "",
    anonymous: Annotated[bool, Form()] = False,
    assigned_to: Annotated[str | None, Form(alias="assignedTo")] = None,
    initial_comment: Annotated[str | None, Form(alias="initialComment")] = None,
    attachments: Annotated[list[UploadFile] | None, File()] = None,
):
    """Submit a new grievance."""
    if current_user is None and not anonymous:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    uploads = []
    for upload in attachments or []:
        if not upload.filename:
            continue
        # One byte past the limit is enough to reject oversized files
        data = await upload.read(settings.max_attachment_bytes + 1)
        uploads.append(
            AttachmentUpload(
                file_name=upload.filename,
                file_type=upload.content_type or "application/octet-stream",
                data=data,
            )
        )

    input_data = CreateGrievanceInput(
        category=category,
        title=title,
        description=description,
        anonymous=anonymous,
        assigned_to=assigned_to,
        initial_comment=initial_comment or "",
        attachments=uploads,
    )

    try:
        created = await engine.submit(
            input_data,
            submitter=current_user.user if current_user else None,
        )
    except GrievanceError as e:
        raise http_error(e)

    await session.commit()
    background_tasks.add_task(dispatcher.deliver, engine.notifications.created_ids)

    return CreateGrievanceResponse(
        grievance_id=created.grievance.id,
        case_number=created.grievance.case_number,
        tracking_code=created.tracking_code,
    )


@router.get(
    "",
    response_model=GrievanceListResponse,
    summary="List grievances",
    description="""
    Newest first. Admins see every case; everyone else sees only the cases
    they submitted. Anonymous cases are left out unless
    `includeAnonymous=true`.
    """,
)
async def list_grievances(
    current_user: CurrentUserDep,
    engine: CaseEngineDep,
    status_filter: str | None = Query(default=None, alias="status"),
    category: str | None = Query(default=None),
    assigned_to: str | None = Query(default=None, alias="assignedTo"),
    limit: int = Query(default=settings.list_default_limit, ge=1, le=500),
    include_anonymous: bool = Query(default=False, alias="includeAnonymous"),
):
    """List grievances visible to the caller."""
    filters = GrievanceFilters(
        creator_id=None if current_user.is_admin else current_user.id,
        status=_parse_filter(GrievanceStatus, status_filter, "status"),
        category=_parse_filter(GrievanceCategory, category, "category"),
        assigned_to=assigned_to,
        include_anonymous=include_anonymous,
        limit=limit,
    )
    grievances = await engine.store.list_grievances(filters)
    return GrievanceListResponse(
        grievances=[GrievanceSummaryResponse.model_validate(g) for g in grievances]
    )


@router.get(
    "/stats",
    response_model=StatsResponse,
    response_model_exclude_none=True,
    summary="Dashboard counters",
)
async def grievance_stats(
    current_user: CurrentUserDep,
    engine: CaseEngineDep,
):
    """Counts by status and category, scoped to what the caller can see."""
    grievances = await engine.store.list_for_analytics(
        creator_id=None if current_user.is_admin else current_user.id,
        limit=settings.stats_scan_limit,
    )
    stats = compute_quick_stats(grievances, current_user.role)
    return StatsResponse(stats=QuickStatsResponse.model_validate(stats))


@router.get(
    "/analytics",
    response_model=AnalyticsResponse,
    summary="Resolution analytics",
    description="""
    Per-case closure metrics for every grievance plus a summary over the
    closed cohort (resolved and rejected): mean, median, 90th percentile,
    fastest and slowest.
    """,
)
async def grievance_analytics(
    current_user: AdminDep,
    engine: CaseEngineDep,
):
    """Admin-only resolution analytics."""
    grievances = await engine.store.list_for_analytics()
    records = build_analytics(grievances)
    summary = summarize_resolution_times(records)
    return AnalyticsResponse(
        analytics=[AnalyticsRecordResponse.model_validate(r) for r in records],
        summary=ResolutionSummaryResponse.model_validate(summary),
    )


@router.post(
    "/track",
    response_model=TrackedGrievanceEnvelope,
    summary="Track an anonymous grievance",
)
async def track_grievance(
    request: TrackGrievanceRequest,
    engine: CaseEngineDep,
):
    """Look up an anonymous case by the tracking code issued at submission."""
    try:
        grievance = await engine.track(request.tracking_code)
    except GrievanceNotFoundError as e:
        raise http_error(e)
    return TrackedGrievanceEnvelope(grievance=build_tracked(grievance))


@router.get(
    "/{grievance_id}",
    response_model=GrievanceEnvelope,
    summary="Get a grievance",
)
async def get_grievance(
    grievance_id: UUID,
    current_user: CurrentUserDep,
    engine: CaseEngineDep,
):
    """Fetch one case the caller may view."""
    try:
        grievance = await engine.get_for_viewer(grievance_id, current_user.user)
    except GrievanceError as e:
        raise http_error(e)
    return GrievanceEnvelope(grievance=build_detail(grievance))


@router.get(
    "/{grievance_id}/attachments/{attachment_id}",
    summary="Download an attachment",
    response_class=Response,
)
async def download_attachment(
    grievance_id: UUID,
    attachment_id: UUID,
    current_user: CurrentUserDep,
    engine: CaseEngineDep,
):
    """Stream back an attachment of a case the caller may view."""
    try:
        await engine.get_for_viewer(grievance_id, current_user.user)
    except GrievanceError as e:
        raise http_error(e)

    attachment = await engine.store.get_attachment(grievance_id, attachment_id)
    if attachment is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Attachment not found",
        )

    return Response(
        content=attachment.data,
        media_type=attachment.file_type,
        headers={"Content-Disposition": content_disposition(attachment.file_name)},
    )


@router.patch(
    "/{grievance_id}",
    response_model=GrievanceActionResponse,
    summary="Apply a case action",
    description="""
    Actions: `status` (admin), `comment` (owner or admin), `assign` (admin),
    `escalate` (admin), `feedback` (owner, once, after resolution).

    Resolved and rejected cases no longer accept status, assign or
    escalate actions (409).
    """,
)
async def apply_action(
    grievance_id: UUID,
    request: GrievanceActionRequest,
    current_user: MemberDep,
    session: SessionDep,
    engine: CaseEngineDep,
    dispatcher: DispatcherDep,
    background_tasks: BackgroundTasks,
):
    """Apply one action to a grievance."""
    try:
        result = await engine.apply(
            grievance_id,
            CaseActionInput(
                action=request.action,
                status=request.status,
                comment=request.comment,
                assigned_to=request.assigned_to,
                rating=request.rating,
            ),
            actor=current_user.user,
        )
    except GrievanceError as e:
        raise http_error(e)

    await session.commit()
    background_tasks.add_task(dispatcher.deliver, engine.notifications.created_ids)

    return GrievanceActionResponse(
        message=result.message,
        history_entry=HistoryEntryResponse.model_validate(result.history_entry),
    )
