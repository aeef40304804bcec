"""
Pytest configuration and fixtures for CRMflow tests.

Provides:
- Async test database with SQLite
- Test client for API testing
- Factory fixtures for creating test data
- A recording handler registry and a fixed clock for engine tests
"""

import uuid
from collections.abc import AsyncGenerator
from datetime import datetime, timedelta
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import StaticPool
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from crmflow.config import Settings, get_settings
from crmflow.core.database import get_db, get_session_factory
from crmflow.core.datetime_utils import utc_now
from crmflow.main import app
from crmflow.models import Base
from crmflow.models.automation import (
    Automation,
    AutomationExecution,
    AutomationRecipient,
    AutomationType,
    ExecutionStatus,
    ScheduleType,
)
from crmflow.models.user import Session, User
from crmflow.scheduling.engine import ExecutionEngine
from crmflow.services.handlers import HandlerRegistry

# Test database URL (in-memory SQLite)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


# Override settings for testing
class TestSettings(Settings):
    database_url: str = TEST_DATABASE_URL
    debug: bool = True
    resend_api_key: str = "test-key"
    base_url: str = "http://localhost:8000"
    scheduler_enabled: bool = False
    scheduler_secret: str = ""


@pytest_asyncio.fixture
async def db_engine():
    """Create async test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture
async def session_maker(db_engine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test database (used by the engine)."""
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db_session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for tests."""
    async with session_maker() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def client(db_session: AsyncSession, session_maker) -> AsyncGenerator[AsyncClient, None]:
    """Create async test client with database override."""

    async def override_get_db():
        yield db_session

    def override_get_settings():
        return TestSettings()

    def override_get_session_factory():
        return session_maker

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_settings] = override_get_settings
    app.dependency_overrides[get_session_factory] = override_get_session_factory

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ============================================================================
# Factory Fixtures
# ============================================================================
#
# Factories commit: the execution engine works in its own sessions and
# must see the rows.


@pytest_asyncio.fixture
async def user_factory(db_session: AsyncSession):
    """Factory for creating test users."""

    async def _create_user(
        email: str = None,
        timezone: str = "UTC",
        first_name: str | None = "Ada",
        last_name: str | None = "Lovelace",
    ) -> User:
        if email is None:
            email = f"test-{uuid.uuid4().hex[:8]}@example.com"

        user = User(
            email=email,
            timezone=timezone,
            first_name=first_name,
            last_name=last_name,
        )
        db_session.add(user)
        await db_session.commit()
        return user

    return _create_user


@pytest_asyncio.fixture
async def session_factory(db_session: AsyncSession, user_factory):
    """Factory for creating test sessions."""

    async def _create_session(user: User = None) -> Session:
        if user is None:
            user = await user_factory()

        session = Session(
            user_id=user.id,
            expires_at=utc_now() + timedelta(days=30),
        )
        db_session.add(session)
        await db_session.commit()
        return session

    return _create_session


@pytest_asyncio.fixture
async def auth_cookies(session_factory, user_factory):
    """Factory returning (user, cookies) for an authenticated client."""

    async def _auth(user: User = None) -> tuple[User, dict[str, str]]:
        if user is None:
            user = await user_factory()
        session = await session_factory(user=user)
        return user, {"session_id": str(session.id)}

    return _auth


@pytest_asyncio.fixture
async def automation_factory(db_session: AsyncSession, user_factory):
    """Factory for creating test automations."""

    async def _create_automation(
        user: User = None,
        name: str = "Weekly check-in",
        type: AutomationType = AutomationType.TASK_CREATION,
        schedule_type: ScheduleType = ScheduleType.DAILY,
        schedule_time: str | None = "09:00",
        schedule_day_of_month: int | None = None,
        schedule_day_of_week: int | None = None,
        schedule_interval: int | None = None,
        custom_cron_expression: str | None = None,
        timezone: str = "UTC",
        is_active: bool = True,
        next_execution_at: datetime | None = None,
        last_executed_at: datetime | None = None,
        total_executions: int = 0,
        successful_executions: int = 0,
        config: dict[str, Any] | None = None,
        recipients: list[str] | None = None,
    ) -> Automation:
        if user is None:
            user = await user_factory()

        automation = Automation(
            user=user,
            name=name,
            type=type,
            config=config or {},
            schedule_type=schedule_type,
            schedule_time=schedule_time,
            schedule_day_of_month=schedule_day_of_month,
            schedule_day_of_week=schedule_day_of_week,
            schedule_interval=schedule_interval,
            custom_cron_expression=custom_cron_expression,
            timezone=timezone,
            is_active=is_active,
            next_execution_at=next_execution_at,
            last_executed_at=last_executed_at,
            total_executions=total_executions,
            successful_executions=successful_executions,
            recipients=[
                AutomationRecipient(position=i, email=email)
                for i, email in enumerate(recipients or ["client@example.com"])
            ],
        )
        db_session.add(automation)
        await db_session.commit()
        await db_session.refresh(automation)
        return automation

    return _create_automation


@pytest_asyncio.fixture
async def execution_factory(db_session: AsyncSession):
    """Factory for creating execution history rows."""

    async def _create_execution(
        automation: Automation,
        status: ExecutionStatus = ExecutionStatus.SUCCESS,
        started_at: datetime | None = None,
        error: str | None = None,
    ) -> AutomationExecution:
        started = started_at or utc_now()
        execution = AutomationExecution(
            automation_id=automation.id,
            status=status,
            started_at=started,
            completed_at=started + timedelta(seconds=1),
            error=error,
        )
        db_session.add(execution)
        await db_session.commit()
        return execution

    return _create_execution


# ============================================================================
# Engine Fixtures
# ============================================================================


class FixedClock:
    """Settable clock injected into the engine."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingHandler:
    """Handler that succeeds and remembers every call."""

    def __init__(self, automation_type: AutomationType) -> None:
        self.automation_type = automation_type
        self.calls: list[dict[str, Any]] = []

    async def execute(self, config, recipients, acting_user) -> dict[str, Any]:
        self.calls.append({"config": config, "recipients": recipients, "user": acting_user})
        return {"type": self.automation_type.value, "ok": True}


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2026, 3, 10, 9, 0, 30))


@pytest.fixture
def registry() -> HandlerRegistry:
    """Registry where every automation type is handled by a RecordingHandler."""
    registry = HandlerRegistry()
    for automation_type in AutomationType:
        registry.register(RecordingHandler(automation_type))
    return registry


@pytest.fixture
def engine_factory(session_maker, registry, clock):
    """Factory for execution engines wired to the test database."""

    def _create_engine(**kwargs) -> ExecutionEngine:
        kwargs.setdefault("registry", registry)
        kwargs.setdefault("clock", clock)
        kwargs.setdefault("handler_timeout_seconds", 5)
        # Sessions share one SQLite connection; keep dispatch sequential
        kwargs.setdefault("max_concurrency", 1)
        return ExecutionEngine(session_maker, **kwargs)

    return _create_engine
