# tests/conftest.py — Shared test fixtures
import os

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

# Use SQLite for tests
TEST_DB_URL = "sqlite+aiosqlite:///./test.db"
os.environ["DATABASE_URL"] = TEST_DB_URL
os.environ["ENVIRONMENT"] = "test"

from models import Base
from database import get_db_session
from presence import PresenceRegistry
from store import Store
from main import app


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    engine = create_async_engine(TEST_DB_URL, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def store(db_session):
    return Store(db_session)


@pytest.fixture(autouse=True)
def presence_registry():
    """Fresh presence rooms for every test"""
    registry = PresenceRegistry()
    app.state.presence_registry = registry
    yield registry


@pytest_asyncio.fixture(scope="function")
async def client(session_factory):
    """HTTP test client with overridden DB dependency"""

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_get_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def project(client):
    """A project created through the API"""
    resp = await client.post(
        "/projects",
        json={
            "name": "Todo App",
            "goal": "Ship a todo list",
            "techStack": ["TypeScript", "React"],
            "createdBy": "alice",
        },
    )
    assert resp.status_code == 201
    return resp.json()


@pytest.fixture
def make_story(client, project):
    """Factory creating stories in the ``project`` fixture"""

    async def _make(title="Story", criteria=(), priority=1, description=""):
        resp = await client.post(
            "/stories",
            json={
                "projectId": project["id"],
                "title": title,
                "description": description,
                "priority": priority,
                "criteria": list(criteria),
            },
        )
        assert resp.status_code == 201, resp.text
        return resp.json()

    return _make


@pytest.fixture
def make_member(client, project):
    """Factory adding team members to the ``project`` fixture"""

    async def _make(name="Bob", type="human", **extra):
        resp = await client.post(
            f"/projects/{project['id']}/team",
            json={"name": name, "type": type, **extra},
        )
        assert resp.status_code == 201, resp.text
        return resp.json()

    return _make
