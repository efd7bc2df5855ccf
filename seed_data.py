#!/usr/bin/env python3
"""
Seed Data Script for the Grievance Portal

Creates a small campus scenario with:
- 5 Users (2 admins, 1 Records Office staff member, 2 students)
- Grievances covering the lifecycle:
  - Case 1: Resolved with feedback
  - Case 2: Rejected
  - Case 3: In progress, assigned to the Records Office
  - Case 4: Escalated twice
  - Case 5: Anonymous (tracking code printed below)

Every case is driven through the case engine, so case numbers, timelines
and notifications are the same as through the API.

Run with: python seed_data.py
"""

import asyncio

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from grievance_portal.core.config import get_settings
from grievance_portal.core.security import create_access_token
from grievance_portal.models import Base, User, UserRole
from grievance_portal.services import (
    CaseActionInput,
    CaseEngine,
    CreateGrievanceInput,
    SqlRoleDirectory,
)

settings = get_settings()


async def seed_database():
    """Main seeding function."""

    engine = create_async_engine(settings.database_url_async, echo=False)
    async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with async_session() as session:
        print("🌱 Starting database seed...")

        result = await session.execute(text("SELECT COUNT(*) FROM users"))
        count = result.scalar()
        if count and count > 0:
            print("⚠️  Database already has data. Clearing existing data...")
            await clear_database(session)

        # =================================================================
        # CREATE USERS
        # =================================================================
        print("\n👥 Creating users...")

        alice = User(email="alice@campus.edu", display_name="Alice Admin", role=UserRole.ADMIN)
        dana = User(email="dana@campus.edu", display_name="Dana Dean", role=UserRole.ADMIN)
        raj = User(
            email="raj@campus.edu",
            display_name="Raj Registrar",
            role=UserRole.STAFF,
            department="Records Office",
        )
        bob = User(email="bob@campus.edu", display_name="Bob Student", role=UserRole.STUDENT)
        carla = User(email="carla@campus.edu", display_name="Carla Student", role=UserRole.STUDENT)

        users = [alice, dana, raj, bob, carla]
        session.add_all(users)
        await session.flush()
        for user in users:
            print(f"   ✓ Created: {user.display_name} ({user.role.value})")

        case_engine = CaseEngine(session, SqlRoleDirectory(session))

        async def act(grievance, actor, action, **fields):
            await case_engine.apply(grievance.id, CaseActionInput(action=action, **fields), actor)

        # =================================================================
        # CREATE GRIEVANCES
        # =================================================================
        print("\n📋 Creating grievances...")

        # Case 1: resolved, with feedback
        case1 = (await case_engine.submit(
            CreateGrievanceInput(
                category="Academic",
                title="Exam grade not updated",
                description="My midterm re-evaluation result is still not reflected in the portal.",
            ),
            submitter=bob,
        )).grievance
        await act(case1, alice, "status", status="in_review", comment="Checking with the department")
        await act(case1, alice, "comment", comment="The department confirmed the corrected grade.")
        await act(case1, alice, "status", status="resolved", comment="Grade updated")
        await act(case1, bob, "feedback", rating=5, comment="Quick and clear, thanks.")
        print(f"   ✓ {case1.case_number}: {case1.title} [RESOLVED + feedback]")

        # Case 2: rejected
        case2 = (await case_engine.submit(
            CreateGrievanceInput(
                category="Infrastructure",
                title="Parking permit fee",
                description="The parking permit fee went up this semester.",
            ),
            submitter=carla,
        )).grievance
        await act(case2, dana, "status", status="rejected", comment="Fees are set by the board")
        print(f"   ✓ {case2.case_number}: {case2.title} [REJECTED]")

        # Case 3: in progress, assigned
        case3 = (await case_engine.submit(
            CreateGrievanceInput(
                category="Administrative",
                title="Transcript request delayed",
                description="I requested an official transcript three weeks ago.",
                initial_comment="Needed for a scholarship deadline.",
            ),
            submitter=carla,
        )).grievance
        await act(case3, alice, "assign", assigned_to="Records Office")
        await act(case3, alice, "status", status="in_progress")
        await act(case3, carla, "comment", comment="The deadline is next Friday.")
        print(f"   ✓ {case3.case_number}: {case3.title} [IN PROGRESS → Records Office]")

        # Case 4: escalated twice
        case4 = (await case_engine.submit(
            CreateGrievanceInput(
                category="Infrastructure",
                title="Broken heating in dorm B",
                description="Heating in dorm B has been off for a week.",
            ),
            submitter=bob,
        )).grievance
        await act(case4, alice, "escalate", comment="Facilities did not respond")
        await act(case4, dana, "escalate")
        print(f"   ✓ {case4.case_number}: {case4.title} [ESCALATED x2]")

        # Case 5: anonymous
        created5 = await case_engine.submit(
            CreateGrievanceInput(
                category="Harassment",
                title="Repeated comments in the lab",
                description="A lab assistant keeps making inappropriate remarks.",
                anonymous=True,
            ),
            submitter=None,
        )
        case5 = created5.grievance
        await act(case5, alice, "status", status="in_review")
        print(f"   ✓ {case5.case_number}: {case5.title} [ANONYMOUS]")

        # =================================================================
        # COMMIT ALL CHANGES
        # =================================================================
        await session.commit()

        print("\n" + "=" * 60)
        print("✅ DATABASE SEEDED SUCCESSFULLY!")
        print("=" * 60)
        print(f"""
📊 Summary:
   • 5 Users: Alice, Dana (admins), Raj (Records Office), Bob, Carla (students)
   • 5 Grievances: {case1.case_number} .. {case5.case_number}
   • Notifications: {len(case_engine.notifications.created_ids)}

🔎 Anonymous tracking code for {case5.case_number}: {created5.tracking_code}

🔑 Bearer tokens (legacy, {settings.access_token_expire_minutes} min):""")
        for user in users:
            print(f"   {user.display_name:<15} {create_access_token(user.id)}")

    await engine.dispose()


async def clear_database(session: AsyncSession):
    """Clear all data from the database (in correct order for FK constraints)."""
    tables = [
        "notifications",
        "grievance_attachments",
        "grievance_history",
        "grievances",
        "case_counters",
        "users",
    ]

    for table in tables:
        await session.execute(text(f"DELETE FROM {table}"))

    await session.commit()
    print("   ✓ Cleared existing data")


if __name__ == "__main__":
    asyncio.run(seed_database())
