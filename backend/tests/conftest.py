"""
Pytest configuration and fixtures.

WHY: Fixtures provide reusable test setup/teardown logic, reducing
duplication and ensuring consistent test environments.
"""

import pytest
import pytest_asyncio
from typing import AsyncGenerator
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool
from httpx import AsyncClient

from app.core.actor import Actor
from app.core.auth import create_access_token
from app.db.session import get_db
from app.main import create_app
from app.models.base import Base
from app.services.notification_service import MockNotificationSink
from tests.factories import UserFactory


# Test database URL
# WHY: Using SQLite for tests eliminates external database dependencies
# and makes tests faster. StaticPool keeps the single in-memory database
# alive across the connections one test opens.
TEST_ASYNC_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    """
    Create a test database engine.

    WHY: Function scope ensures each test gets a fresh database state,
    preventing test pollution and ensuring test isolation.
    """
    engine = create_async_engine(
        TEST_ASYNC_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """
    Create a test database session.

    WHY: Services commit through their unit of work, so each test runs
    against its own engine instead of relying on a wrapping rollback.
    expire_on_commit=False mirrors the application's session factory.

    Yields:
        AsyncSession: Database session for the test
    """
    async_session = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with async_session() as session:
        yield session
        await session.rollback()


@pytest.fixture(autouse=True)
def clear_mock_notifications():
    """
    Reset the mock sink before and after each test.

    WHY: MockNotificationSink keeps dispatched intents on the class, so
    tests asserting on notifications must start from an empty list.
    """
    MockNotificationSink.clear()
    yield
    MockNotificationSink.clear()


@pytest.fixture
def sink() -> MockNotificationSink:
    return MockNotificationSink()


@pytest_asyncio.fixture
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """
    Create a test HTTP client.

    WHY: AsyncClient allows testing FastAPI endpoints without running
    a real server. The app is built with the mock sink so tests can
    assert on dispatched notifications.

    Yields:
        AsyncClient: HTTP client for making test requests
    """
    from httpx import ASGITransport

    app = create_app(notification_sink=MockNotificationSink())

    async def override_get_db():
        """Override database dependency with test session."""
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ============================================================================
# Users and actors
# ============================================================================


@pytest_asyncio.fixture
async def manager_user(db_session: AsyncSession):
    """Active PROJECT_MANAGER who drafts, sends and signs as architect."""
    return await UserFactory.create_manager(db_session, email="pm@firm.test", name="Pat Manager")


@pytest_asyncio.fixture
async def client_user(db_session: AsyncSession):
    """Registered client who owns the test requests and proposals."""
    return await UserFactory.create_client(db_session, email="client@example.com", name="Casey Client")


@pytest_asyncio.fixture
async def other_client_user(db_session: AsyncSession):
    return await UserFactory.create_client(db_session, email="stranger@example.com", name="Sam Stranger")


@pytest.fixture
def manager(manager_user) -> Actor:
    return Actor.from_user(manager_user)


@pytest.fixture
def client_actor(client_user) -> Actor:
    return Actor.from_user(client_user)


@pytest.fixture
def other_client(other_client_user) -> Actor:
    return Actor.from_user(other_client_user)


def auth_headers(user) -> dict:
    """Bearer header for a user, as issued by the identity service."""
    token = create_access_token({"user_id": user.id})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def manager_headers(manager_user) -> dict:
    return auth_headers(manager_user)


@pytest.fixture
def client_headers(client_user) -> dict:
    return auth_headers(client_user)
