"""
Shared fixtures: an in-memory SQLite database, users of every role, and an
HTTP client wired to the app with a recording email channel.
"""

import os

# Must be set before the application settings are first loaded
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["ENVIRONMENT"] = "test"
os.environ["SECRET_KEY"] = "test-secret-key-with-enough-length-for-hs256"
for _name in ("FIREBASE_PROJECT_ID", "SMTP_HOST", "SMTP_USER", "SMTP_PASS", "ALERT_WEBHOOK_URL"):
    os.environ.pop(_name, None)

from collections.abc import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from grievance_portal.api.notifications import get_notification_dispatcher
from grievance_portal.core import get_session
from grievance_portal.main import app
from grievance_portal.models import Base, User, UserRole
from grievance_portal.services import NotificationChannel, NotificationDispatcher


# =============================================================================
# DATABASE
# =============================================================================


@pytest.fixture
async def db_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # Let SQLAlchemy drive BEGIN so SAVEPOINTs behave on SQLite
    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(db_engine, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


# =============================================================================
# USERS
# =============================================================================


async def _make_user(session: AsyncSession, **fields) -> User:
    user = User(**fields)
    session.add(user)
    await session.commit()
    return user


@pytest.fixture
async def admin(session) -> User:
    return await _make_user(
        session, email="alice@campus.edu", display_name="Alice Admin", role=UserRole.ADMIN
    )


@pytest.fixture
async def second_admin(session) -> User:
    return await _make_user(
        session, email="dana@campus.edu", display_name="Dana Dean", role=UserRole.ADMIN
    )


@pytest.fixture
async def student(session) -> User:
    return await _make_user(
        session, email="bob@campus.edu", display_name="Bob Student", role=UserRole.STUDENT
    )


@pytest.fixture
async def other_student(session) -> User:
    return await _make_user(
        session, email="carla@campus.edu", display_name="Carla Student", role=UserRole.STUDENT
    )


@pytest.fixture
async def records_staff(session) -> User:
    return await _make_user(
        session,
        email="raj@campus.edu",
        display_name="Raj Registrar",
        role=UserRole.STAFF,
        department="Records Office",
    )


@pytest.fixture
async def anonymous_user(session) -> User:
    return await _make_user(session, role=UserRole.STUDENT, anonymous=True)


# =============================================================================
# EMAIL
# =============================================================================


class RecordingChannel(NotificationChannel):
    """Captures sends instead of talking to SMTP; can be told to fail."""

    def __init__(self, fail_for: set[str] | None = None):
        self.sent: list[tuple[str, str, str | None]] = []
        self.fail_for = fail_for or set()

    async def send(self, recipient, message, link=None):
        if recipient.email in self.fail_for:
            return False, "Failed to send email: connection refused"
        self.sent.append((recipient.email, message, link))
        return True, None


@pytest.fixture
def channel() -> RecordingChannel:
    return RecordingChannel()


@pytest.fixture
def dispatcher(session_factory, channel) -> NotificationDispatcher:
    return NotificationDispatcher(
        session_factory,
        channel,
        email_enabled=True,
        link_builder=lambda grievance_id: f"http://portal.test/dashboard/grievances/{grievance_id}",
    )


# =============================================================================
# HTTP
# =============================================================================


@pytest.fixture
async def client(session_factory, dispatcher) -> AsyncGenerator[AsyncClient, None]:
    async def override_get_session():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_notification_dispatcher] = lambda: dispatcher

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
