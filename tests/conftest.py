"""
InstiVault - Test Configuration and Fixtures
"""
import os

# Set testing environment before the application settings are loaded
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./instivault-test.db"
os.environ["SECRET_KEY"] = "test-secret-key-for-testing-only-0123456789"
os.environ["GRANT_SWEEP_INTERVAL_SECONDS"] = "0"

from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from instivault.core.dependencies import get_document_storage
from instivault.domain.principals import InstitutePrincipal, UserPrincipal
from instivault.infrastructure.database import models  # noqa: F401
from instivault.infrastructure.database.base import (
    Base,
    build_engine,
    build_session_factory,
    get_session_factory,
)
from instivault.infrastructure.storage.local import LocalDocumentStorage
from instivault.main import app
from instivault.services.documents import DocumentDistributionEngine
from instivault.services.groups import GroupRegistry
from instivault.services.identity import IdentityService
from instivault.services.membership import MembershipEngine
from tests.fixtures.accounts import AccountTestData, register_institute, register_user


@pytest_asyncio.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Fresh SQLite file database per test."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'instivault.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield build_session_factory(engine)

    await engine.dispose()


@pytest.fixture
def storage(tmp_path) -> LocalDocumentStorage:
    return LocalDocumentStorage(tmp_path / "documents")


@pytest.fixture
def identity(session_factory) -> IdentityService:
    return IdentityService(session_factory)


@pytest.fixture
def groups(session_factory) -> GroupRegistry:
    return GroupRegistry(session_factory)


@pytest.fixture
def membership(session_factory, groups) -> MembershipEngine:
    return MembershipEngine(session_factory, groups=groups, revoke_grants_on_leave=False)


@pytest.fixture
def documents(session_factory, storage) -> DocumentDistributionEngine:
    return DocumentDistributionEngine(session_factory, storage=storage)


@pytest_asyncio.fixture
async def institute(identity) -> InstitutePrincipal:
    return await register_institute(identity, **AccountTestData.INSTITUTE)


@pytest_asyncio.fixture
async def other_institute(identity) -> InstitutePrincipal:
    return await register_institute(identity, **AccountTestData.OTHER_INSTITUTE)


@pytest_asyncio.fixture
async def user(identity) -> UserPrincipal:
    return await register_user(identity, **AccountTestData.USER)


@pytest_asyncio.fixture
async def other_user(identity) -> UserPrincipal:
    return await register_user(identity, **AccountTestData.OTHER_USER)


@pytest_asyncio.fixture
async def client(session_factory, storage) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client bound to the per-test database and storage."""
    async def override_get_session_factory():
        return session_factory

    app.dependency_overrides[get_session_factory] = override_get_session_factory
    app.dependency_overrides[get_document_storage] = lambda: storage

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
