"""Shared fixtures for client portal tests.

Each test gets a fresh SQLite database file built from the production
models, a controllable clock, and fake collaborators that record what the
services asked them to do.
"""

import os
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import UUID, uuid4

# Deterministic secrets before application modules read settings
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-client-portal")
os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("OTP_HASH_ROUNDS", "4")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from client_portal.core.config import Settings, get_settings
from client_portal.core.database import get_session
from client_portal.core.dependencies import (
    get_clock,
    get_dispatcher_dep,
    get_resource_provider_dep,
)
from client_portal.core.security import create_access_token
from client_portal.models import Base, LinkDenialReason
from client_portal.services import (
    LinkUnavailableError,
    MessageDispatcher,
    ResourceProvider,
    StoreUnavailableError,
)


# =============================================================================
# TIME
# =============================================================================


class Clock:
    """Manually advanced UTC clock."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> Clock:
    return Clock(datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc))


# =============================================================================
# COLLABORATORS
# =============================================================================


class FakeDispatcher(MessageDispatcher):
    """Captures outgoing passcodes so tests can present them."""

    def __init__(self, deliver: bool = True):
        self.deliver = deliver
        self.codes: list[tuple[str, str, UUID]] = []
        self.links: list[tuple[str, str]] = []

    async def send_code(self, recipient: str, code: str, decision_id: UUID) -> bool:
        self.codes.append((recipient, code, decision_id))
        return self.deliver

    async def send_link(self, recipient: str, url: str) -> bool:
        self.links.append((recipient, url))
        return self.deliver

    @property
    def last_code(self) -> str:
        return self.codes[-1][1]


class FakeResourceProvider(ResourceProvider):
    """Serves a small payload per decision; can simulate deleted or down."""

    def __init__(self):
        self.missing: set[UUID] = set()
        self.unavailable = False
        self.calls: list[UUID] = []

    async def fetch_decision_payload(self, resource_id: UUID) -> dict[str, Any]:
        self.calls.append(resource_id)
        if self.unavailable:
            raise StoreUnavailableError("Decision content is temporarily unavailable")
        if resource_id in self.missing:
            raise LinkUnavailableError(LinkDenialReason.NOT_FOUND)
        return {
            "decision": {"id": str(resource_id), "title": "Facade cladding"},
            "options": [{"id": "opt-1", "title": "Zinc"}],
            "comments": [],
        }


@pytest.fixture
def dispatcher() -> FakeDispatcher:
    return FakeDispatcher()


@pytest.fixture
def resources() -> FakeResourceProvider:
    return FakeResourceProvider()


# =============================================================================
# SETTINGS
# =============================================================================


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        portal_base_url="https://portal.archject.test",
        secret_key=os.environ["SECRET_KEY"],
    )


# =============================================================================
# DATABASE
# =============================================================================


def build_engine(path):
    """File-backed SQLite engine whose transactions take the write lock up front."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{path}",
        poolclass=NullPool,
        connect_args={"timeout": 30},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = build_engine(tmp_path / "portal.db")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session
        await session.rollback()


# =============================================================================
# IDENTITIES
# =============================================================================


@pytest.fixture
def user_id() -> UUID:
    return uuid4()


@pytest.fixture
def decision_id() -> UUID:
    return uuid4()


@pytest.fixture
def workspace_id() -> UUID:
    return uuid4()


@pytest.fixture
def auth_headers(user_id, workspace_id) -> dict[str, str]:
    token = create_access_token(user_id, workspace_id)
    return {"Authorization": f"Bearer {token}"}


# =============================================================================
# HTTP CLIENT
# =============================================================================


@pytest_asyncio.fixture
async def client(session_factory, settings, clock, dispatcher, resources):
    """AsyncClient against the app, with storage and collaborators swapped."""
    from client_portal.main import app

    async def override_get_session():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_dispatcher_dep] = lambda: dispatcher
    app.dependency_overrides[get_resource_provider_dep] = lambda: resources

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac

    app.dependency_overrides.clear()
