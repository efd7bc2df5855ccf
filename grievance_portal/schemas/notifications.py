"""Pydantic schemas for in-app notifications."""

from datetime import datetime
from uuid import UUID

from ..models import EmailStatus
from .base import PortalBaseModel


class NotificationResponse(PortalBaseModel):
    id: UUID
    grievance_id: UUID | None = None
    recipient_id: UUID
    message: str
    read: bool
    created_at: datetime
    email_status: EmailStatus


class NotificationListResponse(PortalBaseModel):
    notifications: list[NotificationResponse]


class MarkReadRequest(PortalBaseModel):
    """Mark one, several, or (with neither field) all notifications read."""

    notification_id: UUID | None = None
    notification_ids: list[UUID] | None = None

    def selected_ids(self) -> list[UUID] | None:
        if self.notification_id is None and self.notification_ids is None:
            return None
        ids = list(self.notification_ids or [])
        if self.notification_id is not None:
            ids.append(self.notification_id)
        return ids


class MarkReadResponse(PortalBaseModel):
    message: str = "Notifications marked as read"
    updated: int
