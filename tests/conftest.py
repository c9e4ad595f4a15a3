"""
Shared test fixtures.

Engine tests get an AsyncSession on a temporary SQLite file (aiosqlite).
The `client` fixture runs the full app lifespan against its own temporary
database, so every endpoint test starts from an empty schema.
"""

import pytest
from fastapi.testclient import TestClient

from database import Database
from services import CourtLocks, VenueRegistry
from tests.helpers import fixed_clock


@pytest.fixture()
def db_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"


@pytest.fixture()
async def database(db_url):
    db = Database(db_url)
    await db.connect(retries=1)
    yield db
    await db.dispose()


@pytest.fixture()
async def session(database):
    async with database.session() as session:
        yield session


@pytest.fixture()
def court_locks() -> CourtLocks:
    return CourtLocks()


@pytest.fixture()
async def venue(session):
    """Venue "Arena A" with two courts."""
    return await VenueRegistry(session, clock=fixed_clock).create_venue("Arena A", 2)


@pytest.fixture()
def client(monkeypatch, db_url) -> TestClient:
    monkeypatch.setenv("DATABASE_URL", db_url)
    monkeypatch.setenv("SLOT_TIMEZONE", "UTC")

    from main import app

    with TestClient(app) as tc:
        yield tc
