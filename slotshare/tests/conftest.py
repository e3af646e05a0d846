from __future__ import annotations

from typing import AsyncIterator

import pytest
from httpx import ASGITransport, AsyncClient

from slotshare.apps.api.main import create_app
from slotshare.core.config import Settings
from slotshare.persistence.db import Database
from slotshare.services.slot_assignment import SlotAssignmentEngine
from slotshare.services.subscriptions import SubscriptionService
from slotshare.tests.utils.factories import seed_catalog


@pytest.fixture
def settings(tmp_path) -> Settings:
    # File-backed SQLite so concurrent sessions see one shared database per test.
    return Settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'slotshare.db'}",
        jwt_secret="test-jwt-secret",
        bcrypt_rounds=4,
        log_level="WARNING",
    )


@pytest.fixture
async def database(settings: Settings) -> AsyncIterator[Database]:
    db = Database(settings=settings)
    await db.create_all()
    await seed_catalog(db)
    yield db
    await db.dispose()


@pytest.fixture
def engine(database: Database, settings: Settings) -> SlotAssignmentEngine:
    return SlotAssignmentEngine(database, settings=settings)


@pytest.fixture
def service(database: Database, settings: Settings, engine: SlotAssignmentEngine) -> SubscriptionService:
    return SubscriptionService(database, engine=engine, settings=settings)


@pytest.fixture
async def client(database: Database, settings: Settings) -> AsyncIterator[AsyncClient]:
    app = create_app(settings=settings, database=database)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http:
        yield http
