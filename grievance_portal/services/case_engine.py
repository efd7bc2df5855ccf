"""
Case Engine: the grievance lifecycle.

Decides whether an action is allowed for the actor and the case's current
state, writes the field change and the history event in the caller's
transaction, and records the notifications the action fans out to.

Rules:
- resolved and rejected are closed: no status, assignment or escalation
  change is accepted once a case is closed
- closed-state and feedback preconditions are re-checked by the UPDATE
  itself, so a concurrent close cannot be bypassed
- every refusal raises before anything is written
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, assert_never
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from ..models import (
    Grievance,
    GrievanceHistory,
    GrievanceStatus,
    HistoryEventType,
    User,
    UserRole,
    utc_now,
)
from .directory import RoleDirectory
from .exceptions import (
    AccessDeniedError,
    FeedbackAlreadySubmittedError,
    GrievanceNotFoundError,
    GrievanceValidationError,
    InvalidRatingError,
    InvalidStatusError,
    InvalidTransitionError,
    UnsupportedActionError,
)
from .grievance_store import (
    CreatedGrievance,
    CreateGrievanceInput,
    GrievanceStore,
    has_no_feedback,
    has_status,
    is_open,
)
from .notifications import NotificationService

logger = logging.getLogger(__name__)


class CaseAction(str, Enum):
    """Actions that can be applied to an existing case."""

    STATUS = "status"
    COMMENT = "comment"
    ASSIGN = "assign"
    ESCALATE = "escalate"
    FEEDBACK = "feedback"

    @classmethod
    def parse(cls, value: str | None) -> "CaseAction":
        if not value:
            raise UnsupportedActionError("Missing action")
        try:
            return cls(value)
        except ValueError:
            raise UnsupportedActionError(f"Unsupported action: {value}")


@dataclass
class CaseActionInput:
    """Request to apply an action to a case."""
    action: str | None
    status: str | None = None
    comment: str | None = None
    assigned_to: str | None = None
    rating: Any = None


@dataclass
class ActionResult:
    """Outcome of an applied action."""
    message: str
    history_entry: GrievanceHistory
    grievance: Grievance


def status_label(status: GrievanceStatus) -> str:
    return status.value.replace("_", " ")


def actor_label(user: User) -> str:
    return user.display_name or user.email or "User"


def parse_rating(value: Any) -> int:
    """Accept an integer 1..5 (or its integral string/float form)."""
    if isinstance(value, bool) or value is None:
        raise InvalidRatingError("Rating must be between 1 and 5")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise InvalidRatingError("Rating must be between 1 and 5")
    if not number.is_integer() or not 1 <= number <= 5:
        raise InvalidRatingError("Rating must be between 1 and 5")
    return int(number)


def can_view(grievance: Grievance, viewer: User) -> bool:
    """Creator, any admin, or staff of the department the case is assigned to."""
    if viewer.role == UserRole.ADMIN:
        return True
    if grievance.creator_id is not None and grievance.creator_id == viewer.id:
        return True
    return bool(
        viewer.role == UserRole.STAFF
        and grievance.assigned_to
        and viewer.department
        and grievance.assigned_to == viewer.department
    )


class CaseEngine:
    """Applies lifecycle operations to grievances within one session."""

    def __init__(
        self,
        session: AsyncSession,
        directory: RoleDirectory,
        store: GrievanceStore | None = None,
        notifications: NotificationService | None = None,
    ):
        self._session = session
        self._directory = directory
        self._store = store or GrievanceStore(session)
        self._notifications = notifications or NotificationService(session, directory)

    @property
    def store(self) -> GrievanceStore:
        return self._store

    @property
    def notifications(self) -> NotificationService:
        return self._notifications

    # =========================================================================
    # SUBMISSION
    # =========================================================================

    async def submit(
        self,
        data: CreateGrievanceInput,
        submitter: User | None,
    ) -> CreatedGrievance:
        """Create a grievance and notify admins (and the submitter, if signed in)."""
        created = await self._store.create(
            data,
            creator_id=submitter.id if submitter else None,
        )
        grievance = created.grievance

        await self._notifications.notify_admins(
            grievance.id,
            f"New grievance submitted: {grievance.title}",
        )
        if submitter:
            await self._notifications.notify(
                submitter.id,
                grievance.id,
                "Your grievance has been successfully submitted.",
            )

        return created

    # =========================================================================
    # READS
    # =========================================================================

    async def get_for_viewer(self, grievance_id: UUID, viewer: User) -> Grievance:
        """Load a case the viewer is allowed to see."""
        grievance = await self._store.get_by_id(grievance_id)
        if grievance is None:
            raise GrievanceNotFoundError("Grievance not found")
        if not can_view(grievance, viewer):
            raise AccessDeniedError("Access denied")
        return grievance

    async def track(self, tracking_code: str) -> Grievance:
        """Look up an anonymous case by its tracking code."""
        grievance = await self._store.get_by_tracking_code(tracking_code)
        if grievance is None:
            raise GrievanceNotFoundError("No grievance matches this tracking code")
        return grievance

    # =========================================================================
    # ACTIONS
    # =========================================================================

    async def apply(
        self,
        grievance_id: UUID,
        request: CaseActionInput,
        actor: User,
    ) -> ActionResult:
        """Validate and apply one action to a case."""
        grievance = await self._store.get_by_id(grievance_id)
        if grievance is None:
            raise GrievanceNotFoundError("Grievance not found")

        action = CaseAction.parse(request.action)

        match action:
            case CaseAction.STATUS:
                result = await self._change_status(grievance, request, actor)
            case CaseAction.COMMENT:
                result = await self._add_comment(grievance, request, actor)
            case CaseAction.ASSIGN:
                result = await self._assign(grievance, request, actor)
            case CaseAction.ESCALATE:
                result = await self._escalate(grievance, request, actor)
            case CaseAction.FEEDBACK:
                result = await self._submit_feedback(grievance, request, actor)
            case _:
                assert_never(action)

        logger.info(
            f"Applied {action.value} to {grievance.case_number} by {actor.id} "
            f"(status={grievance.status.value})"
        )
        return result

    def _require_admin(self, actor: User, message: str) -> None:
        if actor.role != UserRole.ADMIN:
            raise AccessDeniedError(message)

    def _require_open(self, grievance: Grievance) -> None:
        if grievance.is_closed:
            raise InvalidTransitionError(
                f"Grievance is {status_label(grievance.status)} and can no longer be changed"
            )

    async def _change_status(
        self,
        grievance: Grievance,
        request: CaseActionInput,
        actor: User,
    ) -> ActionResult:
        self._require_admin(actor, "Only admins can update status")
        try:
            new_status = GrievanceStatus(request.status)
        except ValueError:
            raise InvalidStatusError("Invalid status")
        self._require_open(grievance)

        now = utc_now()
        if not await self._store.update_fields(
            grievance, {"status": new_status}, guards=[is_open()], at=now
        ):
            raise InvalidTransitionError("Grievance was closed by another update")

        entry = await self._store.append_history(
            grievance,
            HistoryEventType.STATUS,
            updated_by=str(actor.id),
            status=new_status,
            comment=request.comment or "",
            at=now,
        )
        await self._notifications.notify(
            grievance.creator_id,
            grievance.id,
            f"Status updated to {status_label(new_status)}",
        )
        return ActionResult("Status updated", entry, grievance)

    async def _add_comment(
        self,
        grievance: Grievance,
        request: CaseActionInput,
        actor: User,
    ) -> ActionResult:
        is_owner = grievance.creator_id is not None and grievance.creator_id == actor.id
        is_admin = actor.role == UserRole.ADMIN
        if not is_owner and not is_admin:
            raise AccessDeniedError("Not permitted to comment")

        comment = (request.comment or "").strip()
        if not comment:
            raise GrievanceValidationError("Comment is required")

        entry = await self._store.append_history(
            grievance,
            HistoryEventType.COMMENT,
            updated_by=str(actor.id),
            comment=comment,
        )

        message = f"New comment from {actor_label(actor)}"
        if is_admin:
            recipients: list[UUID | None] = []
            if grievance.creator_id != actor.id:
                recipients.append(grievance.creator_id)
            admins = await self._other_admin_ids(exclude=actor.id)
            recipients.extend(admins)
            await self._notifications.notify_many(recipients, grievance.id, message)
        else:
            await self._notifications.notify_admins(grievance.id, message)

        return ActionResult("Comment added", entry, grievance)

    async def _other_admin_ids(self, exclude: UUID) -> list[UUID]:
        admins = await self._directory.list_users_by_role(UserRole.ADMIN)
        return [admin.id for admin in admins if admin.id != exclude]

    async def _assign(
        self,
        grievance: Grievance,
        request: CaseActionInput,
        actor: User,
    ) -> ActionResult:
        self._require_admin(actor, "Only admins can assign")
        self._require_open(grievance)

        assigned_to = (request.assigned_to or "").strip() or None
        now = utc_now()
        if not await self._store.update_fields(
            grievance, {"assigned_to": assigned_to}, guards=[is_open()], at=now
        ):
            raise InvalidTransitionError("Grievance was closed by another update")

        entry = await self._store.append_history(
            grievance,
            HistoryEventType.ASSIGNMENT,
            updated_by=str(actor.id),
            comment=f"Assigned to {assigned_to}" if assigned_to else "Assignment cleared",
            at=now,
        )
        await self._notifications.notify(
            grievance.creator_id,
            grievance.id,
            f"Grievance assigned to {assigned_to}" if assigned_to else "Grievance assignment updated",
        )
        return ActionResult("Assignment updated", entry, grievance)

    async def _escalate(
        self,
        grievance: Grievance,
        request: CaseActionInput,
        actor: User,
    ) -> ActionResult:
        self._require_admin(actor, "Only admins can escalate")
        self._require_open(grievance)

        now = utc_now()
        level = await self._store.increment_escalation(grievance, guards=[is_open()], at=now)
        if level is None:
            raise InvalidTransitionError("Grievance was closed by another update")

        entry = await self._store.append_history(
            grievance,
            HistoryEventType.ESCALATION,
            updated_by=str(actor.id),
            comment=(request.comment or "").strip() or "Escalated to next level",
            at=now,
        )
        await self._notifications.notify(
            grievance.creator_id,
            grievance.id,
            "Your grievance has been escalated",
        )
        return ActionResult("Grievance escalated", entry, grievance)

    async def _submit_feedback(
        self,
        grievance: Grievance,
        request: CaseActionInput,
        actor: User,
    ) -> ActionResult:
        if grievance.creator_id is None or grievance.creator_id != actor.id:
            raise AccessDeniedError("Only the reporter can submit feedback")
        if grievance.status != GrievanceStatus.RESOLVED:
            raise InvalidStatusError("Feedback allowed only after resolution")
        if grievance.resolution_feedback is not None:
            raise FeedbackAlreadySubmittedError("Feedback already submitted")
        rating = parse_rating(request.rating)

        now = utc_now()
        feedback = {
            "rating": rating,
            "comment": request.comment or "",
            "submittedAt": now.isoformat(),
        }
        updated = await self._store.update_fields(
            grievance,
            {"resolution_feedback": feedback},
            guards=[has_status(GrievanceStatus.RESOLVED), has_no_feedback()],
            at=now,
        )
        if not updated:
            await self._session.refresh(grievance, ["status", "resolution_feedback"])
            if grievance.resolution_feedback is not None:
                raise FeedbackAlreadySubmittedError("Feedback already submitted")
            raise InvalidStatusError("Feedback allowed only after resolution")

        entry = await self._store.append_history(
            grievance,
            HistoryEventType.FEEDBACK,
            updated_by=str(actor.id),
            comment=f"Feedback submitted by {actor.id}",
            at=now,
        )
        await self._notifications.notify_admins(
            grievance.id,
            "Feedback submitted on a grievance",
        )
        return ActionResult("Feedback submitted", entry, grievance)
