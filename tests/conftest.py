"""Shared test fixtures: SQLite databases, device storage, brokers and API clients."""
import os

# Settings are read at import time; point them at test backends first.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("REALTIME_BROKER", "memory")
os.environ.setdefault("SECURITY_JWT_SECRET", "test-secret")
os.environ.setdefault("LOG_FORMAT", "%(levelname)s %(name)s %(message)s")

import asyncio
from typing import AsyncIterator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from poi_share.core.db import Base
from poi_share.core.identity import AnonymousIdentity, AuthenticatedIdentity
from poi_share.core.security import issue_token
from poi_share.main import create_app
from poi_share.services.device_storage import MemoryDeviceStorage
from poi_share.services.realtime_notifier import MemoryBroker


def _file_engine(path):
    # NullPool: every session gets its own connection on the running loop.
    return create_async_engine(f"sqlite+aiosqlite:///{path}", poolclass=NullPool)


@pytest_asyncio.fixture
async def engine(tmp_path):
    """Temp-file SQLite database so concurrent sessions see each other's commits."""
    engine = _file_engine(tmp_path / "poi_share.db")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker:
    return async_sessionmaker(engine, autoflush=False, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncIterator[AsyncSession]:
    async with session_factory() as session:
        yield session
        if session.in_transaction():
            await session.rollback()


@pytest.fixture
def device_storage() -> MemoryDeviceStorage:
    return MemoryDeviceStorage()


@pytest.fixture
def broker() -> MemoryBroker:
    return MemoryBroker(queue_size=64)


@pytest.fixture
def anon() -> AnonymousIdentity:
    return AnonymousIdentity("device-a")


@pytest.fixture
def user() -> AuthenticatedIdentity:
    return AuthenticatedIdentity("user-1")


@pytest.fixture
def app(session_factory, device_storage, broker):
    return create_app(session_factory=session_factory, device_storage=device_storage, broker=broker)


@pytest_asyncio.fixture
async def async_client(app) -> AsyncIterator[AsyncClient]:
    """ASGI client with the application lifespan running."""
    async with app.router.lifespan_context(app):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            yield client


def _auth_headers(user_id: str) -> dict:
    return {"Authorization": f"Bearer {issue_token(user_id)}"}


def _device_headers(device_id: str) -> dict:
    return {"X-Device-Id": device_id}


@pytest.fixture
def auth_headers():
    """Build bearer headers for a user id."""
    return _auth_headers


@pytest.fixture
def device_headers():
    return _device_headers


@pytest.fixture
def sync_app(tmp_path):
    """Application on its own database for TestClient (which runs its own event loop)."""
    engine = _file_engine(tmp_path / "poi_share_ws.db")

    async def _create():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    asyncio.run(_create())
    factory = async_sessionmaker(engine, autoflush=False, expire_on_commit=False)
    yield create_app(session_factory=factory, device_storage=MemoryDeviceStorage(), broker=MemoryBroker())
    asyncio.run(engine.dispose())
