"""
Grievance Record Store: persistence for grievance cases.

All writes go through the caller's session, so a field update and the
history event describing it commit or roll back together. Counters and
the escalation level are bumped with single-statement
UPDATE ... RETURNING so concurrent requests never share a value.
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload, undefer
from sqlalchemy.orm.attributes import set_committed_value

from ..core.config import get_settings
from ..core.security import generate_tracking_code, hash_content
from ..models import (
    ANONYMOUS_ACTOR,
    CLOSED_STATUSES,
    CaseCounter,
    Grievance,
    GrievanceAttachment,
    GrievanceCategory,
    GrievanceHistory,
    GrievanceStatus,
    HistoryEventType,
    utc_now,
)
from .exceptions import CaseStoreError, GrievanceValidationError

logger = logging.getLogger(__name__)


CASE_NUMBER_PREFIX = "GRV"


def format_case_number(year: int, count: int) -> str:
    """GRV-<year>-<count>, count zero-padded to at least four digits."""
    return f"{CASE_NUMBER_PREFIX}-{year}-{count:04d}"


# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


@dataclass
class AttachmentUpload:
    """A file received with a new grievance."""
    file_name: str
    file_type: str
    data: bytes


@dataclass
class CreateGrievanceInput:
    """Input for submitting a grievance."""
    category: str
    title: str
    description: str
    anonymous: bool = False
    assigned_to: str | None = None
    initial_comment: str = ""
    attachments: list[AttachmentUpload] = field(default_factory=list)


@dataclass
class CreatedGrievance:
    """A stored grievance plus the tracking code, shown to the submitter once."""
    grievance: Grievance
    tracking_code: str | None


@dataclass
class GrievanceFilters:
    """Filters for listing grievances."""
    creator_id: UUID | None = None
    status: GrievanceStatus | None = None
    category: GrievanceCategory | None = None
    assigned_to: str | None = None
    include_anonymous: bool = True
    limit: int = 50


# Guards for conditional updates
def is_open():
    return Grievance.status.notin_(sorted(CLOSED_STATUSES))


def has_status(status: GrievanceStatus):
    return Grievance.status == status


def has_no_feedback():
    return Grievance.resolution_feedback.is_(None)


# =============================================================================
# STORE
# =============================================================================


class GrievanceStore:
    """Reads and writes grievance records within one session."""

    def __init__(self, session: AsyncSession, max_attachment_bytes: int | None = None):
        self._session = session
        self._max_attachment_bytes = (
            max_attachment_bytes or get_settings().max_attachment_bytes
        )

    # =========================================================================
    # CASE NUMBERS
    # =========================================================================

    async def generate_case_number(self, year: int | None = None) -> str:
        """Allocate the next case number for the year.

        The increment is a single UPDATE ... RETURNING, which takes a row
        lock until the transaction ends. The first allocation of a year
        inserts the counter row inside a savepoint; losing that race falls
        back to the increment.
        """
        year = year or utc_now().year
        increment = (
            update(CaseCounter)
            .where(CaseCounter.year == year)
            .values(count=CaseCounter.count + 1)
            .returning(CaseCounter.count)
            .execution_options(synchronize_session=False)
        )

        count = (await self._session.execute(increment)).scalar_one_or_none()
        if count is None:
            try:
                async with self._session.begin_nested():
                    await self._session.execute(
                        insert(CaseCounter).values(year=year, count=1)
                    )
                count = 1
            except IntegrityError:
                logger.debug(f"Counter row for {year} created concurrently, retrying increment")
                count = (await self._session.execute(increment)).scalar_one()

        return format_case_number(year, count)

    # =========================================================================
    # CREATE
    # =========================================================================

    def validate(self, data: CreateGrievanceInput) -> GrievanceCategory:
        """Check required content. Returns the parsed category."""
        try:
            category = GrievanceCategory((data.category or "").strip())
        except ValueError:
            raise GrievanceValidationError("Invalid grievance category")

        if not (data.title or "").strip():
            raise GrievanceValidationError("Title is required")
        if not (data.description or "").strip():
            raise GrievanceValidationError("Description is required")

        for upload in data.attachments:
            if len(upload.data) > self._max_attachment_bytes:
                limit_mb = self._max_attachment_bytes / (1024 * 1024)
                raise GrievanceValidationError(f"Attachments must be under {limit_mb:g}MB")

        return category

    async def create(
        self,
        data: CreateGrievanceInput,
        creator_id: UUID | None,
    ) -> CreatedGrievance:
        """
        Store a new grievance.

        Flow:
        1. Validate category, title, description and attachment sizes
        2. Allocate the case number
        3. Seed the history with the submitted status event
        4. For anonymous cases, keep only the tracking code hash
        """
        category = self.validate(data)
        now = utc_now()
        case_number = await self.generate_case_number(now.year)

        # Anonymous cases never record who submitted them
        actor = str(creator_id) if creator_id and not data.anonymous else ANONYMOUS_ACTOR

        tracking_code = None
        tracking_hash = None
        if data.anonymous:
            tracking_code = generate_tracking_code()
            tracking_hash = hash_content(tracking_code)

        assigned_to = (data.assigned_to or "").strip() or None

        grievance = Grievance(
            case_number=case_number,
            category=category,
            title=data.title.strip(),
            description=data.description.strip(),
            creator_id=None if data.anonymous else creator_id,
            anonymous=data.anonymous,
            tracking_hash=tracking_hash,
            status=GrievanceStatus.SUBMITTED,
            assigned_to=assigned_to,
            escalation_level=0,
            resolution_feedback=None,
            created_at=now,
            updated_at=now,
            history=[
                GrievanceHistory(
                    type=HistoryEventType.STATUS,
                    status=GrievanceStatus.SUBMITTED,
                    comment=data.initial_comment or "",
                    updated_by=actor,
                    updated_at=now,
                )
            ],
            attachments=[
                GrievanceAttachment(
                    position=position,
                    file_name=upload.file_name,
                    file_type=upload.file_type or "application/octet-stream",
                    size_bytes=len(upload.data),
                    data=upload.data,
                )
                for position, upload in enumerate(data.attachments)
            ],
        )
        self._session.add(grievance)
        try:
            await self._session.flush()
        except IntegrityError as e:
            logger.error(f"Failed to store grievance {case_number}: {e}")
            raise CaseStoreError("Could not store the grievance, please retry") from e

        logger.info(
            f"Created grievance {case_number} (anonymous={data.anonymous}, "
            f"attachments={len(data.attachments)})"
        )
        return CreatedGrievance(grievance=grievance, tracking_code=tracking_code)

    # =========================================================================
    # MUTATIONS
    # =========================================================================

    async def append_history(
        self,
        grievance: Grievance,
        event_type: HistoryEventType,
        updated_by: str,
        status: GrievanceStatus | None = None,
        comment: str = "",
        at: datetime | None = None,
    ) -> GrievanceHistory:
        """Insert one event on the case timeline and refresh updated_at.

        An INSERT per event, so concurrent appends never overwrite each other.
        """
        at = at or utc_now()
        event = GrievanceHistory(
            grievance_id=grievance.id,
            type=event_type,
            status=status,
            comment=comment or "",
            updated_by=updated_by,
            updated_at=at,
        )
        self._session.add(event)
        await self._session.execute(
            update(Grievance)
            .where(Grievance.id == grievance.id)
            .values(updated_at=at)
            .execution_options(synchronize_session=False)
        )
        await self._session.flush()
        set_committed_value(grievance, "updated_at", at)
        return event

    async def update_fields(
        self,
        grievance: Grievance,
        changes: dict[str, Any],
        guards: Sequence = (),
        at: datetime | None = None,
    ) -> bool:
        """Conditionally update case fields.

        The guards are evaluated by the database in the same statement, so
        a concurrent close cannot slip between check and write. Returns
        False when no row matched.
        """
        at = at or utc_now()
        values = {**changes, "updated_at": at}
        result = await self._session.execute(
            update(Grievance)
            .where(Grievance.id == grievance.id, *guards)
            .values(**values)
            .returning(Grievance.id)
            .execution_options(synchronize_session=False)
        )
        if result.scalar_one_or_none() is None:
            return False

        for key, value in values.items():
            set_committed_value(grievance, key, value)
        return True

    async def increment_escalation(
        self,
        grievance: Grievance,
        guards: Sequence = (),
        at: datetime | None = None,
    ) -> int | None:
        """Atomically bump escalation_level. Returns the new level, or None if guarded out."""
        at = at or utc_now()
        result = await self._session.execute(
            update(Grievance)
            .where(Grievance.id == grievance.id, *guards)
            .values(
                escalation_level=Grievance.escalation_level + 1,
                updated_at=at,
            )
            .returning(Grievance.escalation_level)
            .execution_options(synchronize_session=False)
        )
        level = result.scalar_one_or_none()
        if level is None:
            return None

        set_committed_value(grievance, "escalation_level", level)
        set_committed_value(grievance, "updated_at", at)
        return level

    # =========================================================================
    # QUERIES
    # =========================================================================

    async def get_by_id(self, grievance_id: UUID) -> Grievance | None:
        """Fetch a grievance with its history and attachment metadata."""
        result = await self._session.execute(
            select(Grievance)
            .where(Grievance.id == grievance_id)
            .options(
                selectinload(Grievance.history),
                selectinload(Grievance.attachments),
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_by_tracking_code(self, tracking_code: str) -> Grievance | None:
        """Find an anonymous grievance by the code its submitter holds."""
        code = (tracking_code or "").strip().upper()
        if not code:
            return None

        result = await self._session.execute(
            select(Grievance)
            .where(
                Grievance.anonymous.is_(True),
                Grievance.tracking_hash == hash_content(code),
            )
            .options(selectinload(Grievance.history))
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_attachment(
        self,
        grievance_id: UUID,
        attachment_id: UUID,
    ) -> GrievanceAttachment | None:
        """Fetch one attachment including its bytes."""
        result = await self._session.execute(
            select(GrievanceAttachment)
            .where(
                GrievanceAttachment.id == attachment_id,
                GrievanceAttachment.grievance_id == grievance_id,
            )
            .options(undefer(GrievanceAttachment.data))
        )
        return result.scalar_one_or_none()

    async def list_grievances(self, filters: GrievanceFilters) -> Sequence[Grievance]:
        """List grievances newest first. History is not loaded."""
        query = select(Grievance)

        if filters.creator_id is not None:
            query = query.where(Grievance.creator_id == filters.creator_id)
        if filters.status is not None:
            query = query.where(Grievance.status == filters.status)
        if filters.category is not None:
            query = query.where(Grievance.category == filters.category)
        if filters.assigned_to:
            query = query.where(Grievance.assigned_to == filters.assigned_to)
        if not filters.include_anonymous:
            query = query.where(Grievance.anonymous.is_(False))

        query = query.order_by(Grievance.created_at.desc()).limit(filters.limit)
        result = await self._session.execute(query)
        return result.scalars().all()

    async def list_for_analytics(
        self,
        creator_id: UUID | None = None,
        limit: int | None = None,
    ) -> Sequence[Grievance]:
        """Scan grievances with their history, newest first.

        Unscoped and unlimited by default; administrative use only.
        """
        query = select(Grievance).options(selectinload(Grievance.history))
        if creator_id is not None:
            query = query.where(Grievance.creator_id == creator_id)
        query = query.order_by(Grievance.created_at.desc())
        if limit:
            query = query.limit(limit)

        result = await self._session.execute(query)
        return result.scalars().all()
