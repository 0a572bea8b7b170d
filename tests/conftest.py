"""Test fixtures — an in-memory database per test, real auth pipeline.

Learn: Testing pattern for async SQLAlchemy + FastAPI:

1. Each test gets its own in-memory SQLite engine (aiosqlite). StaticPool
   keeps every session on the same connection, so they all see one DB.
2. Tables are created from the models with create_all; the schema goes
   away with the engine at the end of the test.
3. The app is built with create_app(settings), and get_db is overridden
   so the HTTP layer and the test share the same engine.

Settings use bcrypt_rounds=4 so hashing stays fast; the protocol is
identical at any work factor.
"""

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from sessionguard.config import Settings
from sessionguard.db.engine import build_session_factory, create_tables, get_db
from sessionguard.main import create_app
from sessionguard.services.auth_service import AuthService

TEST_DB_URL = "sqlite+aiosqlite:///:memory:"
TEST_JWT_SECRET = "test-secret-that-is-at-least-32-characters-long"
TEST_PASSWORD = "correct-horse-battery"


def make_settings(**overrides) -> Settings:
    values = {
        "environment": "test",
        "database_url": TEST_DB_URL,
        "jwt_secret": TEST_JWT_SECRET,
        "jwt_issuer": "sessionguard-test",
        "bcrypt_rounds": 4,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture()
def settings():
    return make_settings()


@pytest_asyncio.fixture()
async def engine():
    engine = create_async_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture()
async def session_factory(engine):
    return build_session_factory(engine)


@pytest_asyncio.fixture()
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture()
async def auth_service(db_session, settings):
    return AuthService(db_session, settings)


@pytest_asyncio.fixture()
async def registered_user(auth_service):
    """A user with TEST_PASSWORD, registered through the orchestrator."""
    return await auth_service.register("alice@example.com", TEST_PASSWORD, "Alice")


@pytest_asyncio.fixture()
async def app(settings, session_factory):
    app = create_app(settings)

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    yield app
    app.dependency_overrides.clear()


@pytest_asyncio.fixture()
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
