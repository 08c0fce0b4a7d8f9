"""Shared test configuration and fixtures.

Database-backed tests use a transactional rollback strategy per test: the
tables are created inside a transaction that is always rolled back, so the
test database `classpace_test` is left empty. They are skipped when no
PostgreSQL server is reachable.
"""

from collections.abc import AsyncGenerator
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine

import classpace.models  # noqa: F401
from classpace.config import settings
from classpace.database import Base, get_db
from classpace.main import app

# ---------------------------------------------------------------------------
# Test database engine: same PG instance, `classpace_test` DB.
# ---------------------------------------------------------------------------

_base_url = settings.async_database_url
_test_db_url = _base_url.rsplit("/", 1)[0] + "/classpace_test"


@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async session wrapped in a transaction that always rolls back."""
    engine = create_async_engine(_test_db_url, echo=False)
    try:
        connection = await engine.connect()
    except Exception as e:  # noqa: BLE001
        await engine.dispose()
        pytest.skip(f"PostgreSQL test database not available: {e}")

    transaction = await connection.begin()
    await connection.run_sync(Base.metadata.create_all)
    session = AsyncSession(
        bind=connection,
        expire_on_commit=False,
        join_transaction_mode="create_savepoint",
    )
    try:
        yield session
    finally:
        await session.close()
        await transaction.rollback()
        await connection.close()
        await engine.dispose()


# ---------------------------------------------------------------------------
# HTTP client. The DB session is a mock; routes under test get their
# reconciler and directory patched in.
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_db() -> AsyncMock:
    return AsyncMock(spec=AsyncSession)


@pytest_asyncio.fixture
async def client(mock_db: AsyncMock) -> AsyncGenerator[AsyncClient, None]:
    """Provide an httpx AsyncClient wired to the app with a mocked DB session."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield mock_db

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers() -> dict[str, str]:
    return {"Authorization": "Bearer test-access-token"}
