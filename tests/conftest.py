"""Test configuration and fixtures for the geofence monitor tests."""

from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.config import Settings, settings
from app.database import Base, get_db
from app.models import AttendanceLog, Event, ParticipantLocationStatus
from app.models.attendance import ATTENDANCE_CHECKED_IN
from app.models.events import EVENT_STATUS_ACTIVE
from app.services.location_tracking import LocationMonitor
from app.services.timers import SessionTimerManager

START = datetime(2026, 10, 19, 9, 0, 0)

# Geofence centered on (0, 0); one degree of latitude is about 111,195 m
INSIDE = (0.0001, 0.0)  # ~11 m from center
OUTSIDE = (0.0018, 0.0)  # ~200 m from center


class FakeClock:
    """Controllable replacement for the monitor's clock."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        LOCATION_STALE_GRACE_SECONDS=180,
        TICK_INTERVAL_SECONDS=1.0,
        SWEEP_INTERVAL_SECONDS=120.0,
        ENABLE_BACKGROUND_SWEEP=False,
        DEFAULT_MAX_TIME_OUTSIDE_MINUTES=15,
        INGEST_MAX_ATTEMPTS=3,
    )


@pytest_asyncio.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker, None]:
    """A throwaway SQLite database, one file per test."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'monitor.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    await engine.dispose()


@pytest_asyncio.fixture
async def monitor(session_factory, clock, test_settings) -> AsyncGenerator[LocationMonitor, None]:
    # Ticks are driven by hand through run_tick; the real interval never elapses
    timers = SessionTimerManager(interval_seconds=3600)
    location_monitor = LocationMonitor(
        session_factory=session_factory,
        timers=timers,
        config=test_settings,
        clock=clock,
    )
    yield location_monitor
    await timers.shutdown()


async def create_event(session_factory, **overrides) -> Event:
    values = dict(
        title="Field trip",
        geofence_latitude=0.0,
        geofence_longitude=0.0,
        geofence_radius=50,
        max_time_outside=1,
        status=EVENT_STATUS_ACTIVE,
    )
    values.update(overrides)
    async with session_factory() as db:
        event = Event(**values)
        db.add(event)
        await db.commit()
        return event


async def check_in(session_factory, event_id: int, participant_id: int, status: str = ATTENDANCE_CHECKED_IN) -> AttendanceLog:
    async with session_factory() as db:
        log = AttendanceLog(
            event_id=event_id,
            participant_id=participant_id,
            status=status,
            check_in_time=START,
        )
        db.add(log)
        await db.commit()
        return log


async def set_attendance_status(session_factory, attendance_log_id: int, status: str):
    async with session_factory() as db:
        log = await db.get(AttendanceLog, attendance_log_id)
        log.status = status
        await db.commit()


async def set_event_status(session_factory, event_id: int, status: str):
    async with session_factory() as db:
        event = await db.get(Event, event_id)
        event.status = status
        await db.commit()


async def load_status(session_factory, record_id: int) -> Optional[ParticipantLocationStatus]:
    async with session_factory() as db:
        return await db.get(ParticipantLocationStatus, record_id)


async def load_attendance(session_factory, attendance_log_id: int) -> Optional[AttendanceLog]:
    async with session_factory() as db:
        return await db.get(AttendanceLog, attendance_log_id)


@pytest_asyncio.fixture
async def event(session_factory) -> Event:
    return await create_event(session_factory)


@pytest_asyncio.fixture
async def attendance(session_factory, event) -> AttendanceLog:
    return await check_in(session_factory, event.id, participant_id=7)


def make_token(user_id: int, role: Optional[str] = None, expires_in: int = 3600) -> str:
    claims = {
        "sub": str(user_id),
        "exp": datetime.now(timezone.utc) + timedelta(seconds=expires_in),
    }
    if role:
        claims["role"] = role
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


@pytest.fixture
def participant_headers() -> dict:
    return {"Authorization": f"Bearer {make_token(7, 'participant')}"}


@pytest.fixture
def organizer_headers() -> dict:
    return {"Authorization": f"Bearer {make_token(1, 'organizer')}"}


@pytest_asyncio.fixture
async def client(session_factory, monitor) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client for the app, wired to the test database and monitor."""
    from app import main

    async def override_get_db():
        async with session_factory() as session:
            yield session

    main.app.dependency_overrides[get_db] = override_get_db
    main.app.state.monitor = monitor

    async with AsyncClient(transport=ASGITransport(app=main.app), base_url="http://test") as http_client:
        yield http_client

    main.app.dependency_overrides.clear()
