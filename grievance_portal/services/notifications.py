"""
Notification Fan-out: in-app notifications with an email outbox.

Every notification row starts with email_status=pending. The row is
written in the triggering request's transaction; email delivery happens
afterwards in NotificationDispatcher, which opens its own session, so a
failed send can never roll back or fail the user-facing action.
"""

import asyncio
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from ..models import EmailStatus, Notification, UserRole, utc_now
from .directory import RoleDirectory
from .mailer import NotificationChannel


logger = logging.getLogger(__name__)


# =============================================================================
# FAN-OUT
# =============================================================================


class NotificationService:
    """Creates in-app notifications within the caller's transaction."""

    def __init__(self, session: AsyncSession, directory: RoleDirectory):
        self._session = session
        self._directory = directory
        self._created: list[Notification] = []

    @property
    def created_ids(self) -> list[UUID]:
        """Ids of notifications created through this service, for post-commit delivery."""
        return [n.id for n in self._created]

    async def notify(
        self,
        recipient_id: UUID | None,
        grievance_id: UUID | None,
        message: str,
    ) -> Notification | None:
        """Create one notification. A missing recipient is a no-op."""
        if not recipient_id:
            return None

        notification = Notification(
            grievance_id=grievance_id,
            recipient_id=recipient_id,
            message=message,
            read=False,
            created_at=utc_now(),
            email_status=EmailStatus.PENDING,
        )
        self._session.add(notification)
        await self._session.flush()
        self._created.append(notification)
        return notification

    async def notify_many(
        self,
        recipient_ids: Iterable[UUID | None],
        grievance_id: UUID | None,
        message: str,
    ) -> list[Notification]:
        """Create one notification per distinct recipient in a single flush."""
        now = utc_now()
        seen: set[UUID] = set()
        batch: list[Notification] = []
        for recipient_id in recipient_ids:
            if not recipient_id or recipient_id in seen:
                continue
            seen.add(recipient_id)
            batch.append(
                Notification(
                    grievance_id=grievance_id,
                    recipient_id=recipient_id,
                    message=message,
                    read=False,
                    created_at=now,
                    email_status=EmailStatus.PENDING,
                )
            )

        if batch:
            self._session.add_all(batch)
            await self._session.flush()
            self._created.extend(batch)
        return batch

    async def notify_admins(
        self,
        grievance_id: UUID | None,
        message: str,
        exclude: Iterable[UUID] = (),
    ) -> list[Notification]:
        """Notify every admin in the role directory, minus any excluded ids."""
        excluded = set(exclude)
        admins = await self._directory.list_users_by_role(UserRole.ADMIN)
        created = await self.notify_many(
            (admin.id for admin in admins if admin.id not in excluded),
            grievance_id,
            message,
        )
        logger.info(f"Notified {len(created)} admins: {message!r}")
        return created

    # =========================================================================
    # RECIPIENT VIEWS
    # =========================================================================

    async def list_for_recipient(
        self,
        recipient_id: UUID,
        limit: int = 50,
    ) -> Sequence[Notification]:
        """Newest notifications for one recipient."""
        result = await self._session.execute(
            select(Notification)
            .where(Notification.recipient_id == recipient_id)
            .order_by(Notification.created_at.desc())
            .limit(limit)
        )
        return result.scalars().all()

    async def mark_read(
        self,
        recipient_id: UUID,
        notification_ids: Sequence[UUID] | None = None,
    ) -> int:
        """Mark the recipient's unread notifications as read.

        With no ids, every unread notification of the recipient is marked.
        Other users' notifications are never touched. Returns the number of
        rows that changed, so repeating the call returns 0.
        """
        stmt = update(Notification).where(
            Notification.recipient_id == recipient_id,
            Notification.read.is_(False),
        )
        if notification_ids is not None:
            if not notification_ids:
                return 0
            stmt = stmt.where(Notification.id.in_(list(notification_ids)))

        # Default session sync keeps already-loaded rows in step with the UPDATE
        result = await self._session.execute(stmt.values(read=True))
        return result.rowcount or 0


# =============================================================================
# EMAIL DELIVERY (POST-COMMIT)
# =============================================================================


@dataclass
class DeliveryReport:
    """Outcome of one delivery pass."""
    sent: int = 0
    failed: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)


class NotificationDispatcher:
    """
    Sends the email copy of committed notifications.

    Emails within a pass are sent concurrently; each failure is recorded
    on its own row (email_status=failed) and logged.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        channel: NotificationChannel,
        email_enabled: bool = True,
        link_builder=None,
    ):
        self._session_factory = session_factory
        self._channel = channel
        self._email_enabled = email_enabled
        self._link_builder = link_builder

    async def deliver(self, notification_ids: Sequence[UUID]) -> DeliveryReport:
        """Deliver the given notifications if still pending. Never raises."""
        if not notification_ids:
            return DeliveryReport()

        try:
            return await self._run(
                Notification.id.in_(list(notification_ids)),
                limit=None,
            )
        except Exception as e:
            logger.exception(f"Notification delivery pass failed: {e}")
            return DeliveryReport(errors=[str(e)])

    async def deliver_pending(self, batch_size: int = 100) -> DeliveryReport:
        """Deliver the oldest pending notifications (used by the dispatch job)."""
        return await self._run(None, limit=batch_size)

    @staticmethod
    def pending_query(criterion=None, limit: int | None = None):
        """Pending rows, claimed for this pass.

        FOR UPDATE SKIP LOCKED holds the claimed rows until the pass commits,
        so a concurrent pass (request delivery vs. the dispatch job) skips
        them instead of sending twice. SQLite renders no locking clause.
        """
        query = (
            select(Notification)
            .where(Notification.email_status == EmailStatus.PENDING)
            .options(selectinload(Notification.recipient))
            .order_by(Notification.created_at.asc())
            .with_for_update(skip_locked=True)
        )
        if criterion is not None:
            query = query.where(criterion)
        if limit:
            query = query.limit(limit)
        return query

    async def _run(self, criterion, limit: int | None) -> DeliveryReport:
        report = DeliveryReport()

        async with self._session_factory() as session:
            query = self.pending_query(criterion, limit)
            notifications = (await session.execute(query)).scalars().all()

            deliverable: list[Notification] = []
            for notification in notifications:
                recipient = notification.recipient
                if not self._email_enabled or recipient is None or not recipient.email:
                    notification.email_status = EmailStatus.SKIPPED
                    report.skipped += 1
                    continue
                deliverable.append(notification)

            results = await asyncio.gather(
                *(
                    self._channel.send(
                        recipient=n.recipient,
                        message=n.message,
                        link=self._link_builder(n.grievance_id) if self._link_builder else None,
                    )
                    for n in deliverable
                ),
                return_exceptions=True,
            )

            now = utc_now()
            for notification, outcome in zip(deliverable, results):
                if isinstance(outcome, BaseException):
                    success, error = False, f"Failed to send email: {outcome}"
                else:
                    success, error = outcome

                if success:
                    notification.email_status = EmailStatus.SENT
                    notification.emailed_at = now
                    report.sent += 1
                else:
                    notification.email_status = EmailStatus.FAILED
                    notification.email_error = error
                    report.failed += 1
                    report.errors.append(f"Notification {notification.id}: {error}")
                    logger.warning(f"Email for notification {notification.id} failed: {error}")

            await session.commit()

        if notifications:
            logger.info(
                f"Email delivery: {report.sent} sent, {report.failed} failed, "
                f"{report.skipped} skipped"
            )
        return report
