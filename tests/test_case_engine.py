"""
Tests for the Case Engine - Lifecycle Rules.

These tests verify:
1. SUBMIT: Admins and the submitter are notified
2. PERMISSIONS: Each action is gated by role or ownership
3. CLOSED CASES: Resolved and rejected cases refuse further changes
4. FEEDBACK: Only the reporter, only once, only after resolution
5. VISIBILITY: Creator, admins and staff of the assigned department
"""

from uuid import uuid4

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from grievance_portal.models import (
    GrievanceStatus,
    HistoryEventType,
    Notification,
    User,
)
from grievance_portal.services import (
    CaseAction,
    CaseActionInput,
    CaseEngine,
    CreateGrievanceInput,
    SqlRoleDirectory,
    can_view,
)
from grievance_portal.services.exceptions import (
    AccessDeniedError,
    FeedbackAlreadySubmittedError,
    GrievanceNotFoundError,
    GrievanceValidationError,
    InvalidRatingError,
    InvalidStatusError,
    InvalidTransitionError,
    UnsupportedActionError,
)


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
def engine(session: AsyncSession) -> CaseEngine:
    return CaseEngine(session, SqlRoleDirectory(session))


@pytest.fixture
async def grievance(engine: CaseEngine, session: AsyncSession, student: User, admin: User):
    created = await engine.submit(
        CreateGrievanceInput(
            category="Administrative",
            title="Transcript request delayed",
            description="Requested three weeks ago.",
        ),
        submitter=student,
    )
    await session.commit()
    return created.grievance


async def notifications_for(session: AsyncSession, user: User) -> list[Notification]:
    result = await session.execute(
        select(Notification).where(Notification.recipient_id == user.id)
    )
    return list(result.scalars().all())


async def apply(engine: CaseEngine, grievance, actor: User, action: str, **fields):
    return await engine.apply(grievance.id, CaseActionInput(action=action, **fields), actor)


# =============================================================================
# TEST: SUBMIT
# =============================================================================


class TestSubmit:
    """Tests for case submission fan-out."""

    async def test_submit_notifies_admins_and_submitter(
        self,
        session: AsyncSession,
        engine: CaseEngine,
        admin: User,
        second_admin: User,
        student: User,
    ):
        created = await engine.submit(
            CreateGrievanceInput(category="Academic", title="Grades", description="Missing"),
            submitter=student,
        )
        await session.commit()

        for user in (admin, second_admin):
            messages = [n.message for n in await notifications_for(session, user)]
            assert messages == ["New grievance submitted: Grades"]

        own = await notifications_for(session, student)
        assert [n.message for n in own] == ["Your grievance has been successfully submitted."]
        assert len(engine.notifications.created_ids) == 3
        assert created.grievance.case_number.startswith("GRV-")

    async def test_anonymous_submit_only_notifies_admins(
        self,
        session: AsyncSession,
        engine: CaseEngine,
        admin: User,
    ):
        created = await engine.submit(
            CreateGrievanceInput(
                category="Harassment", title="Lab", description="Remarks", anonymous=True
            ),
            submitter=None,
        )
        await session.commit()

        assert created.tracking_code
        assert len(engine.notifications.created_ids) == 1


# =============================================================================
# TEST: ACTION DISPATCH
# =============================================================================


class TestActionDispatch:
    """Tests for action parsing and lookup."""

    def test_parse_known_actions(self):
        assert CaseAction.parse("status") is CaseAction.STATUS
        assert CaseAction.parse("feedback") is CaseAction.FEEDBACK

    @pytest.mark.parametrize("value, message", [(None, "Missing action"), ("", "Missing action"), ("delete", "Unsupported action: delete")])
    def test_parse_rejects_unknown_actions(self, value, message):
        with pytest.raises(UnsupportedActionError, match=message):
            CaseAction.parse(value)

    async def test_unknown_action_changes_nothing(
        self,
        session: AsyncSession,
        engine: CaseEngine,
        grievance,
        admin: User,
    ):
        with pytest.raises(UnsupportedActionError):
            await apply(engine, grievance, admin, "reopen")

        reloaded = await engine.store.get_by_id(grievance.id)
        assert len(reloaded.history) == 1

    async def test_missing_grievance_is_not_found(
        self,
        engine: CaseEngine,
        admin: User,
    ):
        with pytest.raises(GrievanceNotFoundError):
            await engine.apply(uuid4(), CaseActionInput(action="status", status="resolved"), admin)


# =============================================================================
# TEST: STATUS
# =============================================================================


class TestStatusAction:
    """Tests for status changes."""

    async def test_admin_updates_status(
        self,
        session: AsyncSession,
        engine: CaseEngine,
        grievance,
        admin: User,
        student: User,
    ):
        result = await apply(engine, grievance, admin, "status", status="in_review", comment="Looking")
        await session.commit()

        assert result.message == "Status updated"
        assert result.grievance.status == GrievanceStatus.IN_REVIEW
        assert result.history_entry.type == HistoryEventType.STATUS
        assert result.history_entry.status == GrievanceStatus.IN_REVIEW
        assert result.history_entry.comment == "Looking"
        assert result.history_entry.updated_by == str(admin.id)

        messages = [n.message for n in await notifications_for(session, student)]
        assert "Status updated to in review" in messages

    async def test_non_admin_cannot_update_status(
        self,
        engine: CaseEngine,
        grievance,
        student: User,
    ):
        with pytest.raises(AccessDeniedError, match="Only admins can update status"):
            await apply(engine, grievance, student, "status", status="resolved")

    async def test_invalid_status_value(
        self,
        engine: CaseEngine,
        grievance,
        admin: User,
    ):
        with pytest.raises(InvalidStatusError):
            await apply(engine, grievance, admin, "status", status="archived")


# =============================================================================
# TEST: CLOSED CASES
# =============================================================================


class TestClosedCases:
    """Resolved and rejected cases accept no further status, assignment or escalation."""

    @pytest.mark.parametrize("closing_status", ["resolved", "rejected"])
    @pytest.mark.parametrize(
        "action, fields",
        [
            ("status", {"status": "in_progress"}),
            ("assign", {"assigned_to": "Records Office"}),
            ("escalate", {}),
        ],
    )
    async def test_closed_case_refuses_changes(
        self,
        session: AsyncSession,
        engine: CaseEngine,
        grievance,
        admin: User,
        closing_status,
        action,
        fields,
    ):
        grievance_id = grievance.id
        await apply(engine, grievance, admin, "status", status=closing_status)
        await session.commit()

        with pytest.raises(InvalidTransitionError):
            await apply(engine, grievance, admin, action, **fields)
        # Rollback expires loaded objects; reload by the id captured above
        await session.rollback()

        reloaded = await engine.store.get_by_id(grievance_id)
        assert reloaded.status == GrievanceStatus(closing_status)
        assert reloaded.escalation_level == 0
        assert reloaded.assigned_to is None
        assert len(reloaded.history) == 2

    async def test_closed_case_still_accepts_comments(
        self,
        session: AsyncSession,
        engine: CaseEngine,
        grievance,
        admin: User,
        student: User,
    ):
        await apply(engine, grievance, admin, "status", status="rejected")

        result = await apply(engine, grievance, student, "comment", comment="Why?")

        assert result.message == "Comment added"


# =============================================================================
# TEST: COMMENTS
# =============================================================================


class TestCommentAction:
    """Tests for comments and their notification fan-out."""

    async def test_owner_comment_notifies_admins(
        self,
        session: AsyncSession,
        engine: CaseEngine,
        grievance,
        admin: User,
        second_admin: User,
        student: User,
    ):
        await apply(engine, grievance, student, "comment", comment="Any update?")
        await session.commit()

        for user in (admin, second_admin):
            messages = [n.message for n in await notifications_for(session, user)]
            assert "New comment from Bob Student" in messages

    async def test_admin_comment_notifies_owner_and_other_admins(
        self,
        session: AsyncSession,
        engine: CaseEngine,
        grievance,
        admin: User,
        second_admin: User,
        student: User,
    ):
        await apply(engine, grievance, admin, "comment", comment="On it")
        await session.commit()

        def comment_messages(notifications):
            return [n.message for n in notifications if n.message.startswith("New comment")]

        assert comment_messages(await notifications_for(session, student)) == [
            "New comment from Alice Admin"
        ]
        assert comment_messages(await notifications_for(session, second_admin)) == [
            "New comment from Alice Admin"
        ]
        assert comment_messages(await notifications_for(session, admin)) == []

    async def test_stranger_cannot_comment(
        self,
        engine: CaseEngine,
        grievance,
        other_student: User,
    ):
        with pytest.raises(AccessDeniedError, match="Not permitted to comment"):
            await apply(engine, grievance, other_student, "comment", comment="Hi")

    async def test_blank_comment_is_rejected(
        self,
        engine: CaseEngine,
        grievance,
        student: User,
    ):
        with pytest.raises(GrievanceValidationError):
            await apply(engine, grievance, student, "comment", comment="   ")


# =============================================================================
# TEST: ASSIGN & ESCALATE
# =============================================================================


class TestAssignAndEscalate:
    """Tests for assignment and escalation."""

    async def test_assignment_opens_case_to_department_staff(
        self,
        session: AsyncSession,
        engine: CaseEngine,
        grievance,
        admin: User,
        student: User,
        records_staff: User,
    ):
        assert not can_view(grievance, records_staff)

        result = await apply(engine, grievance, admin, "assign", assigned_to="Records Office")
        await session.commit()

        assert result.message == "Assignment updated"
        assert result.grievance.assigned_to == "Records Office"
        assert result.history_entry.type == HistoryEventType.ASSIGNMENT
        assert result.history_entry.comment == "Assigned to Records Office"

        messages = [n.message for n in await notifications_for(session, student)]
        assert "Grievance assigned to Records Office" in messages

        viewed = await engine.get_for_viewer(grievance.id, records_staff)
        assert viewed.id == grievance.id

    async def test_clearing_assignment(
        self,
        session: AsyncSession,
        engine: CaseEngine,
        grievance,
        admin: User,
        student: User,
    ):
        await apply(engine, grievance, admin, "assign", assigned_to="Records Office")
        result = await apply(engine, grievance, admin, "assign", assigned_to="")
        await session.commit()

        assert result.grievance.assigned_to is None
        assert result.history_entry.comment == "Assignment cleared"
        messages = [n.message for n in await notifications_for(session, student)]
        assert "Grievance assignment updated" in messages

    async def test_only_admins_assign(
        self,
        engine: CaseEngine,
        grievance,
        records_staff: User,
    ):
        with pytest.raises(AccessDeniedError, match="Only admins can assign"):
            await apply(engine, grievance, records_staff, "assign", assigned_to="Records Office")

    async def test_escalation_increments_level(
        self,
        session: AsyncSession,
        engine: CaseEngine,
        grievance,
        admin: User,
    ):
        first = await apply(engine, grievance, admin, "escalate")
        second = await apply(engine, grievance, admin, "escalate", comment="Still nothing")
        await session.commit()

        assert second.grievance.escalation_level == 2
        assert first.history_entry.comment == "Escalated to next level"
        assert second.history_entry.comment == "Still nothing"
        assert second.message == "Grievance escalated"

    async def test_only_admins_escalate(
        self,
        engine: CaseEngine,
        grievance,
        student: User,
    ):
        with pytest.raises(AccessDeniedError, match="Only admins can escalate"):
            await apply(engine, grievance, student, "escalate")


# =============================================================================
# TEST: FEEDBACK
# =============================================================================


class TestFeedbackAction:
    """Tests for resolution feedback."""

    async def test_feedback_before_resolution_is_rejected(
        self,
        engine: CaseEngine,
        grievance,
        student: User,
    ):
        with pytest.raises(InvalidStatusError, match="Feedback allowed only after resolution"):
            await apply(engine, grievance, student, "feedback", rating=4)

    async def test_feedback_on_rejected_case_is_rejected(
        self,
        engine: CaseEngine,
        grievance,
        admin: User,
        student: User,
    ):
        await apply(engine, grievance, admin, "status", status="rejected")

        with pytest.raises(InvalidStatusError):
            await apply(engine, grievance, student, "feedback", rating=4)

    async def test_feedback_is_recorded_once(
        self,
        session: AsyncSession,
        engine: CaseEngine,
        grievance,
        admin: User,
        student: User,
    ):
        await apply(engine, grievance, admin, "status", status="resolved")

        result = await apply(engine, grievance, student, "feedback", rating="5", comment="Thanks")
        await session.commit()

        assert result.message == "Feedback submitted"
        assert result.history_entry.type == HistoryEventType.FEEDBACK
        feedback = result.grievance.resolution_feedback
        assert feedback["rating"] == 5
        assert feedback["comment"] == "Thanks"
        assert "submittedAt" in feedback

        with pytest.raises(FeedbackAlreadySubmittedError):
            await apply(engine, grievance, student, "feedback", rating=3)

        messages = [n.message for n in await notifications_for(session, admin)]
        assert "Feedback submitted on a grievance" in messages

    async def test_only_reporter_gives_feedback(
        self,
        engine: CaseEngine,
        grievance,
        admin: User,
        other_student: User,
    ):
        await apply(engine, grievance, admin, "status", status="resolved")

        with pytest.raises(AccessDeniedError, match="Only the reporter can submit feedback"):
            await apply(engine, grievance, other_student, "feedback", rating=5)

    @pytest.mark.parametrize("rating", [0, 6, 4.5, "great", None, True])
    async def test_rating_must_be_one_to_five(
        self,
        engine: CaseEngine,
        grievance,
        admin: User,
        student: User,
        rating,
    ):
        await apply(engine, grievance, admin, "status", status="resolved")

        with pytest.raises(InvalidRatingError, match="Rating must be between 1 and 5"):
            await apply(engine, grievance, student, "feedback", rating=rating)


# =============================================================================
# TEST: VISIBILITY
# =============================================================================


class TestVisibility:
    """Tests for who may read a case."""

    async def test_creator_and_admin_can_view(
        self,
        engine: CaseEngine,
        grievance,
        admin: User,
        student: User,
    ):
        assert (await engine.get_for_viewer(grievance.id, student)).id == grievance.id
        assert (await engine.get_for_viewer(grievance.id, admin)).id == grievance.id

    async def test_other_student_is_denied(
        self,
        engine: CaseEngine,
        grievance,
        other_student: User,
    ):
        with pytest.raises(AccessDeniedError):
            await engine.get_for_viewer(grievance.id, other_student)

    async def test_student_with_matching_department_is_denied(
        self,
        session: AsyncSession,
        engine: CaseEngine,
        grievance,
        admin: User,
        other_student: User,
    ):
        await apply(engine, grievance, admin, "assign", assigned_to="Records Office")
        other_student.department = "Records Office"

        assert not can_view(grievance, other_student)
