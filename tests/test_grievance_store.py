"""
Tests for the Grievance Store - Case Numbers and Records.

These tests verify:
1. CASE NUMBERS: Sequential per year, formatted GRV-<year>-NNNN
2. CREATE: Validation, seeded history, anonymous tracking codes
3. HISTORY: Appends never replace earlier events
4. QUERIES: Filters and attachment access
"""

import asyncio
import re

import pytest
from sqlalchemy import event, insert, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from grievance_portal.core import hash_content
from grievance_portal.models import (
    Base,
    CaseCounter,
    GrievanceCategory,
    GrievanceHistory,
    GrievanceStatus,
    HistoryEventType,
    User,
)
from grievance_portal.services import (
    AttachmentUpload,
    CreateGrievanceInput,
    GrievanceFilters,
    GrievanceStore,
    format_case_number,
)
from grievance_portal.services.exceptions import GrievanceValidationError


CASE_NUMBER_PATTERN = re.compile(r"^GRV-\d{4}-\d{4,}$")


def grievance_input(**overrides) -> CreateGrievanceInput:
    fields = {
        "category": "Academic",
        "title": "Exam grade not updated",
        "description": "My re-evaluation result is missing.",
    }
    fields.update(overrides)
    return CreateGrievanceInput(**fields)


class CounterRowRace:
    """Session stand-in where another writer creates the year's counter row
    just before the store's own first-use insert."""

    def __init__(self, session: AsyncSession, year: int):
        self._session = session
        self._year = year

    def __getattr__(self, name):
        return getattr(self._session, name)

    def begin_nested(self):
        return _RacingSavepoint(self._session, self._year)


class _RacingSavepoint:
    def __init__(self, session: AsyncSession, year: int):
        self._session = session
        self._year = year
        self._savepoint = None

    async def __aenter__(self):
        await self._session.execute(insert(CaseCounter).values(year=self._year, count=1))
        self._savepoint = self._session.begin_nested()
        return await self._savepoint.__aenter__()

    async def __aexit__(self, *exc_info):
        return await self._savepoint.__aexit__(*exc_info)


# =============================================================================
# TEST: CASE NUMBERS
# =============================================================================


class TestCaseNumbers:
    """Tests for the per-year case number counter."""

    def test_format_pads_to_four_digits(self):
        assert format_case_number(2024, 1) == "GRV-2024-0001"
        assert format_case_number(2024, 42) == "GRV-2024-0042"

    def test_format_grows_past_four_digits(self):
        assert format_case_number(2024, 12345) == "GRV-2024-12345"

    async def test_numbers_are_gapless_and_unique(self, session: AsyncSession):
        """N allocations in one year give exactly 1..N."""
        store = GrievanceStore(session)

        numbers = [await store.generate_case_number(2031) for _ in range(12)]
        await session.commit()

        assert numbers == [format_case_number(2031, n) for n in range(1, 13)]
        assert len(set(numbers)) == 12

        counter = await session.get(CaseCounter, 2031)
        assert counter.count == 12

    async def test_each_year_has_its_own_counter(self, session: AsyncSession):
        store = GrievanceStore(session)

        assert await store.generate_case_number(2030) == "GRV-2030-0001"
        assert await store.generate_case_number(2031) == "GRV-2031-0001"
        assert await store.generate_case_number(2030) == "GRV-2030-0002"

    async def test_concurrent_allocations_are_gapless(self, tmp_path):
        """Independent sessions allocating at once still get exactly 1..N."""
        engine = create_async_engine(
            f"sqlite+aiosqlite:///{tmp_path / 'counters.db'}",
            connect_args={"timeout": 30},
        )

        # SQLite serializes writers; BEGIN IMMEDIATE makes each one wait its turn
        @event.listens_for(engine.sync_engine, "connect")
        def _disable_driver_transactions(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        @event.listens_for(engine.sync_engine, "begin")
        def _emit_begin(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")

        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        factory = async_sessionmaker(engine, expire_on_commit=False)

        async def allocate() -> str:
            async with factory() as session:
                number = await GrievanceStore(session).generate_case_number(2032)
                await session.commit()
                return number

        try:
            numbers = await asyncio.gather(*(allocate() for _ in range(8)))

            assert sorted(numbers) == [format_case_number(2032, n) for n in range(1, 9)]
            async with factory() as session:
                counter = await session.get(CaseCounter, 2032)
                assert counter.count == 8
        finally:
            await engine.dispose()

    async def test_losing_the_first_insert_race_retries_increment(
        self,
        session: AsyncSession,
    ):
        """Another writer creating the year's row first still yields the next number."""
        racing = CounterRowRace(session, year=2033)

        number = await GrievanceStore(racing).generate_case_number(2033)
        await session.commit()

        assert number == "GRV-2033-0002"
        counter = await session.get(CaseCounter, 2033)
        assert counter.count == 2

    async def test_created_grievances_get_sequential_numbers(
        self,
        session: AsyncSession,
        student: User,
    ):
        store = GrievanceStore(session)

        first = await store.create(grievance_input(), creator_id=student.id)
        second = await store.create(grievance_input(title="Second"), creator_id=student.id)

        assert CASE_NUMBER_PATTERN.match(first.grievance.case_number)
        first_seq = int(first.grievance.case_number.rsplit("-", 1)[1])
        second_seq = int(second.grievance.case_number.rsplit("-", 1)[1])
        assert second_seq == first_seq + 1


# =============================================================================
# TEST: CREATE
# =============================================================================


class TestCreateGrievance:
    """Tests for storing new grievances."""

    async def test_create_seeds_submitted_history(
        self,
        session: AsyncSession,
        student: User,
    ):
        """A new case starts as submitted with one status event by its creator."""
        store = GrievanceStore(session)

        created = await store.create(
            grievance_input(initial_comment="Please check"),
            creator_id=student.id,
        )
        grievance = created.grievance

        assert grievance.status == GrievanceStatus.SUBMITTED
        assert grievance.escalation_level == 0
        assert grievance.resolution_feedback is None
        assert grievance.creator_id == student.id
        assert created.tracking_code is None

        assert len(grievance.history) == 1
        first = grievance.history[0]
        assert first.type == HistoryEventType.STATUS
        assert first.status == GrievanceStatus.SUBMITTED
        assert first.comment == "Please check"
        assert first.updated_by == str(student.id)

    async def test_create_trims_text_and_blank_assignment(
        self,
        session: AsyncSession,
        student: User,
    ):
        store = GrievanceStore(session)

        created = await store.create(
            grievance_input(title="  Padded  ", assigned_to="   "),
            creator_id=student.id,
        )

        assert created.grievance.title == "Padded"
        assert created.grievance.assigned_to is None

    async def test_anonymous_case_keeps_only_tracking_hash(
        self,
        session: AsyncSession,
        student: User,
    ):
        """Anonymous cases record no creator; the code itself is never stored."""
        store = GrievanceStore(session)

        created = await store.create(grievance_input(anonymous=True), creator_id=student.id)
        grievance = created.grievance

        assert created.tracking_code
        assert grievance.anonymous is True
        assert grievance.creator_id is None
        assert grievance.tracking_hash == hash_content(created.tracking_code)
        assert grievance.tracking_hash != created.tracking_code
        assert grievance.history[0].updated_by == "anonymous"

    async def test_tracking_code_finds_anonymous_case(
        self,
        session: AsyncSession,
    ):
        store = GrievanceStore(session)
        created = await store.create(grievance_input(anonymous=True), creator_id=None)
        await session.commit()

        found = await store.get_by_tracking_code(created.tracking_code.lower())

        assert found is not None
        assert found.id == created.grievance.id
        assert await store.get_by_tracking_code("NOT-A-CODE") is None
        assert await store.get_by_tracking_code("") is None

    @pytest.mark.parametrize(
        "overrides, message",
        [
            ({"category": "Parking"}, "Invalid grievance category"),
            ({"category": ""}, "Invalid grievance category"),
            ({"title": "   "}, "Title is required"),
            ({"description": ""}, "Description is required"),
        ],
    )
    async def test_create_rejects_invalid_content(
        self,
        session: AsyncSession,
        student: User,
        overrides,
        message,
    ):
        store = GrievanceStore(session)

        with pytest.raises(GrievanceValidationError, match=message):
            await store.create(grievance_input(**overrides), creator_id=student.id)

    async def test_invalid_content_does_not_consume_a_case_number(
        self,
        session: AsyncSession,
        student: User,
    ):
        store = GrievanceStore(session)

        with pytest.raises(GrievanceValidationError):
            await store.create(grievance_input(title=""), creator_id=student.id)

        counters = (await session.execute(select(CaseCounter))).scalars().all()
        assert counters == []

    async def test_attachment_over_limit_is_rejected(
        self,
        session: AsyncSession,
        student: User,
    ):
        store = GrievanceStore(session, max_attachment_bytes=10)

        with pytest.raises(GrievanceValidationError, match="Attachments must be under"):
            await store.create(
                grievance_input(
                    attachments=[AttachmentUpload("big.pdf", "application/pdf", b"x" * 11)]
                ),
                creator_id=student.id,
            )

    async def test_attachments_are_stored_in_order(
        self,
        session: AsyncSession,
        student: User,
    ):
        store = GrievanceStore(session)

        created = await store.create(
            grievance_input(
                attachments=[
                    AttachmentUpload("a.txt", "text/plain", b"first"),
                    AttachmentUpload("b.txt", "text/plain", b"second"),
                ]
            ),
            creator_id=student.id,
        )
        await session.commit()

        grievance = await store.get_by_id(created.grievance.id)
        assert [a.file_name for a in grievance.attachments] == ["a.txt", "b.txt"]
        assert [a.size_bytes for a in grievance.attachments] == [5, 6]

        attachment = await store.get_attachment(grievance.id, grievance.attachments[1].id)
        assert attachment.data == b"second"


# =============================================================================
# TEST: HISTORY
# =============================================================================


class TestAppendHistory:
    """Tests for timeline appends."""

    async def test_append_keeps_earlier_events(
        self,
        session: AsyncSession,
        student: User,
    ):
        store = GrievanceStore(session)
        created = await store.create(grievance_input(), creator_id=student.id)
        grievance = created.grievance

        await store.append_history(grievance, HistoryEventType.COMMENT, "u1", comment="one")
        await store.append_history(grievance, HistoryEventType.COMMENT, "u2", comment="two")
        await session.commit()

        events = (
            await session.execute(
                select(GrievanceHistory)
                .where(GrievanceHistory.grievance_id == grievance.id)
                .order_by(GrievanceHistory.sequence)
            )
        ).scalars().all()

        assert [e.comment for e in events] == ["", "one", "two"]
        assert events[0].type == HistoryEventType.STATUS

    async def test_append_refreshes_updated_at(
        self,
        session: AsyncSession,
        student: User,
    ):
        store = GrievanceStore(session)
        created = await store.create(grievance_input(), creator_id=student.id)
        grievance = created.grievance
        before = grievance.updated_at

        event = await store.append_history(grievance, HistoryEventType.COMMENT, "u1", comment="x")

        assert grievance.updated_at == event.updated_at
        assert grievance.updated_at >= before


# =============================================================================
# TEST: QUERIES
# =============================================================================


class TestListGrievances:
    """Tests for filtered listing."""

    async def test_filters_by_creator_category_and_anonymity(
        self,
        session: AsyncSession,
        student: User,
        other_student: User,
    ):
        store = GrievanceStore(session)
        await store.create(grievance_input(), creator_id=student.id)
        await store.create(grievance_input(category="Infrastructure"), creator_id=student.id)
        await store.create(grievance_input(), creator_id=other_student.id)
        await store.create(grievance_input(anonymous=True), creator_id=None)
        await session.commit()

        mine = await store.list_grievances(GrievanceFilters(creator_id=student.id))
        assert len(mine) == 2

        academic = await store.list_grievances(
            GrievanceFilters(category=GrievanceCategory.ACADEMIC, include_anonymous=False)
        )
        assert len(academic) == 2
        assert all(not g.anonymous for g in academic)

        everything = await store.list_grievances(GrievanceFilters())
        assert len(everything) == 4

    async def test_list_is_newest_first_and_limited(
        self,
        session: AsyncSession,
        student: User,
    ):
        store = GrievanceStore(session)
        for i in range(3):
            await store.create(grievance_input(title=f"Case {i}"), creator_id=student.id)
        await session.commit()

        listed = await store.list_grievances(GrievanceFilters(limit=2))

        assert len(listed) == 2
        assert listed[0].created_at >= listed[1].created_at
