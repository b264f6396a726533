"""Test fixtures for kit-tracker.

Provides:
- clock: A controllable UTC clock injected into writers and services
- database: A KitDatabase on a temporary SQLite file with the schema created
- service: A KitService wired to ``database`` and ``clock``
- actor / other_actor: Registered users to attribute changes to
- kit_fields: Valid creation fields for one kit, keyed by wire alias
"""

from collections.abc import AsyncIterator
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio

from kit_tracker.adapters.database import KitDatabase
from kit_tracker.core.records import UserRecord
from kit_tracker.core.services import KitService


class StepClock:
    """A clock that only moves when told to.

    Args:
        start: The initial time.
    """

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> datetime:
        """Move the clock forward and return the new time."""
        self.now = self.now + timedelta(**delta)
        return self.now


@pytest.fixture()
def clock() -> StepClock:
    """Return a clock starting at 2024-03-01 09:00 UTC."""
    return StepClock(datetime(2024, 3, 1, 9, 0, tzinfo=UTC))


@pytest_asyncio.fixture()
async def database(tmp_path: Path) -> AsyncIterator[KitDatabase]:
    """Create a KitDatabase on a fresh SQLite file and dispose it afterwards.

    Args:
        tmp_path: pytest temporary directory.

    Yields:
        A KitDatabase with all tables created.
    """
    db = KitDatabase(f"sqlite+aiosqlite:///{tmp_path / 'kits.sqlite'}")
    await db.create_schema()
    yield db
    await db.dispose()


@pytest.fixture()
def service(database: KitDatabase, clock: StepClock) -> KitService:
    return KitService(database, clock=clock)


@pytest_asyncio.fixture()
async def actor(service: KitService) -> UserRecord:
    return await service.create_user("John Doe", "john.doe@example.com")


@pytest_asyncio.fixture()
async def other_actor(service: KitService) -> UserRecord:
    return await service.create_user("Jane Smith", "jane.smith@example.com")


@pytest.fixture()
def kit_fields() -> dict[str, Any]:
    """Return valid creation fields for KIT-001, keyed by wire alias."""
    return {
        "partNumber": "KIT-001",
        "noun": "Component A",
        "kitName": "Kit B",
        "stateStatus": "Form 17 Pending",
        "currentStatus": None,
        "remarks": "",
        "manufacturer": "Machine Shop",
        "form48number": "F48-001",
        "dieRequired": False,
        "dieNumber": "",
    }
