"""
Pytest Configuration and Fixtures
Shared test fixtures for database, client, and connector settings
"""

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from tests.fixtures import BASE_URL, BRIDGE_BASE_URL, TEST_BRIDGE_API_KEY, TEST_SOURCE_TAG
from vetbridge.config import ConnectorSettings, Settings, get_settings
from vetbridge.database import Base, get_db
from vetbridge.main import app


@pytest_asyncio.fixture(scope="function")
async def db_engine(tmp_path):
    """SQLite test database with a clean schema per test"""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'bridge.db'}", poolclass=NullPool, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    """Session factory bound to the test database"""
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory):
    """Create a test database session"""
    async with session_factory() as session:
        yield session


@pytest.fixture
def bridge_settings(tmp_path):
    """Cloud settings with a known API key"""
    return Settings(
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'bridge.db'}",
        BRIDGE_API_KEY=TEST_BRIDGE_API_KEY,
        BRIDGE_SOURCE_TAG=TEST_SOURCE_TAG,
    )


@pytest.fixture
def api_headers():
    """Headers the on-premise connector sends"""
    return {"x-api-key": TEST_BRIDGE_API_KEY}


@pytest_asyncio.fixture(scope="function")
async def client(session_factory, bridge_settings):
    """Test client with overridden database and settings dependencies

    Every request gets its own session, like in production.
    """

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_settings] = lambda: bridge_settings

    async with AsyncClient(transport=ASGITransport(app=app), base_url=BASE_URL) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def connector_settings(tmp_path):
    """Connector settings pointing at the in-process bridge, with fast retries"""
    return ConnectorSettings(
        SOURCE_DIR=str(tmp_path / "live"),
        SHADOW_DIR=str(tmp_path / "shadow"),
        IMPORT_QUEUE_DIR=str(tmp_path / "import_queue"),
        API_BASE_URL=BRIDGE_BASE_URL,
        API_KEY=TEST_BRIDGE_API_KEY,
        RETRY_ATTEMPTS=3,
        RETRY_INITIAL_DELAY_MS=1.0,
        RETRY_MAX_DELAY_MS=2.0,
        COPY_ATTEMPTS=3,
    )
