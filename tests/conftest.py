"""Shared test fixtures for fuel_queue tests."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING

import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from fuel_queue import (
    ChangeEvent,
    EventBus,
    QueueCoordinator,
    QueueEntryRecord,
    QueueSettings,
    QueueStore,
    SettingsHolder,
)
from fuel_queue.models import Base
from fuel_queue.mqtt import NoOpBroadcaster

if TYPE_CHECKING:
    from collections.abc import Generator

    from sqlalchemy.engine import Engine

STATION = "station-S"

# 2026-10-19 10:00:00 UTC
START_MS = int(datetime(2026, 10, 19, 10, 0, tzinfo=timezone.utc).timestamp() * 1000)


class FakeClock:
    """Deterministic millisecond clock that moves forward on every read."""

    def __init__(self, start: int = START_MS, step: int = 1000) -> None:
        self.now = start
        self.step = step

    def __call__(self) -> int:
        current = self.now
        self.now += self.step
        return current

    def set(self, when: datetime) -> None:
        self.now = int(when.timestamp() * 1000)


@pytest.fixture
def in_memory_engine() -> Generator[Engine, None, None]:
    """Create SQLite in-memory engine with all tables created.

    StaticPool keeps a single connection so every session sees the same
    in-memory database.

    Yields:
        Engine: SQLAlchemy engine with in-memory SQLite database
    """
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(in_memory_engine: Engine) -> sessionmaker[Session]:
    """Create session factory bound to in-memory engine."""
    return sessionmaker(bind=in_memory_engine)


@pytest.fixture
def store(session_factory: sessionmaker[Session]) -> QueueStore:
    return QueueStore(session_factory)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def settings() -> SettingsHolder:
    """Settings with library defaults, independent of the environment."""
    return SettingsHolder(QueueSettings())


@pytest.fixture
def coordinator(
    store: QueueStore, event_bus: EventBus, settings: SettingsHolder, clock: FakeClock
) -> QueueCoordinator:
    """Create QueueCoordinator with a no-op broadcaster."""
    return QueueCoordinator(
        store,
        broadcaster=NoOpBroadcaster(),
        event_bus=event_bus,
        settings=settings,
        clock=clock,
    )


@pytest.fixture
def recorded_events(event_bus: EventBus) -> list[ChangeEvent]:
    """Collect every fuel_queue change event published during a test."""
    events: list[ChangeEvent] = []
    _ = event_bus.subscribe("fuel_queue", events.append)
    return events


@pytest.fixture
def three_cars(coordinator: QueueCoordinator) -> list[QueueEntryRecord]:
    """Cars A, B and C waiting at STATION in positions 1, 2 and 3."""
    return [
        coordinator.submit_request(f"car-{name}", STATION, "Diesel", 20.0)
        for name in ("A", "B", "C")
    ]


def pending_positions(coordinator: QueueCoordinator, station: str = STATION) -> list[int]:
    """Stored positions of a station's pending entries in queue order."""
    return [
        e.queue_position
        for e in coordinator.list_active_for_station(station)
        if e.status.value == "pending"
    ]


def fail_on_update(session_factory: sessionmaker[Session], nth: int):
    """Wrap a session factory so the nth UPDATE executed in a session raises."""

    def factory() -> Session:
        session = session_factory()
        real_execute = session.execute
        updates = {"count": 0}

        def execute(stmt, *args, **kwargs):
            if getattr(stmt, "is_update", False):
                updates["count"] += 1
                if updates["count"] == nth:
                    raise OperationalError("UPDATE", {}, Exception("connection lost"))
            return real_execute(stmt, *args, **kwargs)

        session.execute = execute  # type: ignore[method-assign]
        return session

    return factory
