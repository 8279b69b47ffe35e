import os
from collections.abc import AsyncGenerator, Callable
from datetime import UTC, date, datetime
from unittest.mock import AsyncMock
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from dotenv import load_dotenv
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from vetcare.config import Settings
from vetcare.core.locks import LocalLockManager
from vetcare.database import create_engine, create_session_factory
from vetcare.models import metadata
from vetcare.schemas.notifications import LifecycleEvent
from vetcare.services.appointment_service import AppointmentService

# Load environment variables from .env file
load_dotenv()

# Fixed "now" so slot dates in tests are always in the future
NOW = datetime(2026, 3, 2, 8, 0, tzinfo=UTC)
VISIT_DATE = date(2026, 3, 10)


class RecordingNotifier:
    """Notifier that keeps every event it receives."""

    def __init__(self) -> None:
        self.events: list[LifecycleEvent] = []

    async def notify(self, event: LifecycleEvent) -> None:
        self.events.append(event)


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """Settings pointing at a throwaway SQLite file."""
    # Tests always run on their own database, never the configured one
    url = os.getenv("TEST_DATABASE_URL") or f"sqlite+aiosqlite:///{tmp_path / 'vetcare_test.db'}"
    return Settings(
        database_url=url,
        lock_backend="local",
        lock_timeout_seconds=5.0,
        slot_minutes=30,
        workday_start="09:00",
        workday_end="17:00",
    )


@pytest_asyncio.fixture
async def test_engine(test_settings: Settings) -> AsyncGenerator[AsyncEngine, None]:
    """Create tables on a fresh engine and drop them afterwards."""
    engine = create_engine(test_settings)
    async with engine.begin() as conn:
        await conn.run_sync(metadata.drop_all)
        await conn.run_sync(metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test engine."""
    return create_session_factory(test_engine)


@pytest.fixture
def clock() -> Callable[[], datetime]:
    """Clock frozen at NOW."""
    return lambda: NOW


@pytest.fixture
def locks(test_settings: Settings) -> LocalLockManager:
    return LocalLockManager(timeout=test_settings.lock_timeout_seconds)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def service(
    session_factory: async_sessionmaker[AsyncSession],
    locks: LocalLockManager,
    notifier: RecordingNotifier,
    test_settings: Settings,
    clock: Callable[[], datetime],
) -> AppointmentService:
    """Appointment service wired to the test database."""
    return AppointmentService(
        session_factory,
        locks,
        notifier=notifier,
        settings=test_settings,
        clock=clock,
    )


@pytest.fixture
def owner_id() -> UUID:
    return uuid4()


@pytest.fixture
def vet_id() -> UUID:
    return uuid4()


@pytest.fixture
def pet_id() -> UUID:
    return uuid4()


@pytest.fixture
def book(service: AppointmentService, owner_id: UUID, vet_id: UUID, pet_id: UUID):
    """Book a consultation with sensible defaults; any field can be overridden."""

    async def _book(**overrides):
        data = {
            "owner_id": owner_id,
            "veterinarian_id": vet_id,
            "pet_id": pet_id,
            "appointment_date": VISIT_DATE,
            "appointment_time": "09:00",
            "reason": "Annual checkup",
        }
        data.update(overrides)
        return await service.book(**data)

    return _book


@pytest.fixture
def confirmed(service: AppointmentService, book, owner_id: UUID, vet_id: UUID):
    """Book, approve and confirm an appointment."""

    async def _confirmed(**overrides):
        appointment = await book(**overrides)
        await service.approve(appointment.id, vet_id, fee=80)
        return await service.confirm(appointment.id, owner_id)

    return _confirmed


@pytest.fixture
def failing_notifier() -> AsyncMock:
    """Notifier whose delivery always fails."""
    notifier = AsyncMock()
    notifier.notify.side_effect = RuntimeError("push gateway unreachable")
    return notifier
