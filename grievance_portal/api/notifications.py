"""
Notification API Routes.

GET  /notifications            - Caller's newest notifications
POST /notifications/mark-read  - Mark one, several or all as read
"""

from typing import Annotated

from fastapi import APIRouter, Depends

from ..core import MemberDep, SessionDep, async_session_factory, get_settings
from ..services import (
    EmailChannel,
    EmailConfig,
    NotificationDispatcher,
    NotificationService,
    SqlRoleDirectory,
)
from ..schemas import (
    MarkReadRequest,
    MarkReadResponse,
    NotificationListResponse,
    NotificationResponse,
)

router = APIRouter(prefix="/notifications", tags=["notifications"])
settings = get_settings()


# =============================================================================
# DEPENDENCIES
# =============================================================================


def get_notification_service(session: SessionDep) -> NotificationService:
    return NotificationService(session, SqlRoleDirectory(session))


def get_notification_dispatcher() -> NotificationDispatcher:
    """Email delivery for committed notifications; runs in its own session."""
    email_config = EmailConfig.from_settings(settings)
    channel = EmailChannel(email_config)
    return NotificationDispatcher(
        async_session_factory,
        channel,
        email_enabled=email_config.enabled,
        link_builder=channel.case_link,
    )


NotificationServiceDep = Annotated[NotificationService, Depends(get_notification_service)]
DispatcherDep = Annotated[NotificationDispatcher, Depends(get_notification_dispatcher)]


# =============================================================================
# ENDPOINTS
# =============================================================================


@router.get(
    "",
    response_model=NotificationListResponse,
    summary="List my notifications",
)
async def list_notifications(
    current_user: MemberDep,
    service: NotificationServiceDep,
):
    """Newest notifications addressed to the caller."""
    notifications = await service.list_for_recipient(
        current_user.id,
        limit=settings.notifications_page_size,
    )
    return NotificationListResponse(
        notifications=[NotificationResponse.model_validate(n) for n in notifications]
    )


@router.post(
    "/mark-read",
    response_model=MarkReadResponse,
    summary="Mark notifications as read",
    description="""
    Marks the given notification(s) as read. With an empty body every
    unread notification of the caller is marked. Repeating the call is a
    no-op.
    """,
)
async def mark_read(
    current_user: MemberDep,
    service: NotificationServiceDep,
    request: MarkReadRequest | None = None,
):
    """Mark the caller's notifications as read."""
    ids = request.selected_ids() if request else None
    updated = await service.mark_read(current_user.id, ids)
    return MarkReadResponse(updated=updated)
