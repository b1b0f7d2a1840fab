from typing import AsyncGenerator, Dict, Tuple
from unittest.mock import patch

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlmodel.pool import StaticPool

from evaldesk.core.database import Base
from evaldesk.core.database.entities import Group, User
from evaldesk.core.models import Role

from .factories import bearer, create_group, create_user

# Use in-memory SQLite for testing
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture
async def test_engine():
    """Create a fresh test database for each test."""
    import evaldesk.core.database.entities  # noqa: F401

    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture(name="session")
async def session_fixture(test_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create a new session for each test."""
    async_session_maker = sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)

    async with async_session_maker() as session:  # type: ignore[attr-defined]
        yield session


@pytest_asyncio.fixture(name="client")
async def client_fixture(session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP client with mocked lifespan and overridden dependencies."""
    from evaldesk.core.database import get_session
    from evaldesk.server.main import app

    async def get_session_override() -> AsyncGenerator[AsyncSession, None]:
        yield session

    app.dependency_overrides[get_session] = get_session_override

    # Mock the lifespan to prevent database initialization during tests
    async def mock_lifespan(app):
        yield

    with patch("evaldesk.server.main.lifespan", mock_lifespan):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://localhost") as client:
            yield client

    app.dependency_overrides.clear()


# =====================================================================
# Actors
# =====================================================================


@pytest_asyncio.fixture
async def professor(session: AsyncSession) -> Tuple[User, str]:
    return await create_user(session, "prof@school.test", (Role.PROFESSOR,))


@pytest_asyncio.fixture
async def student(session: AsyncSession) -> Tuple[User, str]:
    return await create_user(session, "student@school.test", (Role.STUDENT,))


@pytest_asyncio.fixture
async def super_admin(session: AsyncSession) -> Tuple[User, str]:
    return await create_user(session, "admin@school.test", (Role.SUPER_ADMIN,))


@pytest_asyncio.fixture
async def group(session: AsyncSession, professor) -> Group:
    return await create_group(session, "cs101", professor[0])


@pytest.fixture
def prof_headers(professor) -> Dict[str, str]:
    return bearer(professor[1])


@pytest.fixture
def student_headers(student) -> Dict[str, str]:
    return bearer(student[1])


@pytest.fixture
def admin_headers(super_admin) -> Dict[str, str]:
    return bearer(super_admin[1])
