"""Pytest configuration and shared fixtures.

Organization:
    - Environment: settings that keep the suite off external infrastructure
    - Singletons: process-wide queue, registry and services reset per test
    - Database Fixtures: in-memory SQLite engine and session
    - Application Fixtures: FastAPI app and HTTP client bound to the test session
    - Authentication Fixtures: signed bearer tokens for users, admins and services
    - Email Fixtures: recording email client
"""

from __future__ import annotations

import os

# Ensure tests run without external infrastructure
os.environ.setdefault("APP_ENVIRONMENT", "test")
os.environ.setdefault("DB_ENABLED", "false")
os.environ.setdefault("RABBIT_ENABLED", "false")
os.environ.setdefault("NOTIFY_QUEUE_BACKEND", "memory")
os.environ.setdefault("NOTIFY_WORKER_IN_PROCESS", "false")
os.environ.setdefault("EMAIL_BACKEND", "console")
os.environ.setdefault("WS_HEARTBEAT_INTERVAL", "0")
os.environ.setdefault("AUTH_JWT_SECRET", "test-secret-key-for-signing-tokens")
os.environ.setdefault("AUTH_SERVICE_TOKEN", "test-service-token")

from collections.abc import AsyncGenerator, AsyncIterator  # noqa: E402
from contextlib import asynccontextmanager  # noqa: E402
from typing import TYPE_CHECKING  # noqa: E402

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402

from tests.utils import RecordingEmailClient, bearer  # noqa: E402

if TYPE_CHECKING:
    from fastapi import FastAPI
    from sqlalchemy.ext.asyncio import AsyncEngine

    from confession_service.infra.queue import InMemoryDeliveryQueue

SERVICE_TOKEN = os.environ["AUTH_SERVICE_TOKEN"]


# ============================================================================
# Singletons
# ============================================================================


@pytest.fixture(autouse=True)
def reset_singletons(monkeypatch: pytest.MonkeyPatch):
    """Give every test a fresh queue, template registry and service instances."""
    from confession_service.features.notifications import dead_letter, preferences, service
    from confession_service.features.notifications.templates import reset_template_registry
    from confession_service.infra.auth import reset_token_verifier
    from confession_service.infra.queue import InMemoryDeliveryQueue, set_delivery_queue
    from confession_service.infra.realtime import manager

    set_delivery_queue(InMemoryDeliveryQueue())
    reset_template_registry()
    reset_token_verifier()
    monkeypatch.setattr(service, "_service", None)
    monkeypatch.setattr(preferences, "_service", None)
    monkeypatch.setattr(dead_letter, "_service", None)
    monkeypatch.setattr(manager, "_manager", None)

    yield

    set_delivery_queue(None)
    reset_template_registry()


@pytest.fixture
def queue() -> InMemoryDeliveryQueue:
    """The process-wide in-memory delivery queue installed for this test."""
    from confession_service.infra.queue import get_delivery_queue

    return get_delivery_queue()


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture
async def db_engine() -> AsyncGenerator[AsyncEngine]:
    """Create async SQLAlchemy engine with in-memory SQLite."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
    )

    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
async def db_session(db_engine: AsyncEngine) -> AsyncGenerator[AsyncSession]:
    """Create async database session with all notification tables.

    Example:
        async def test_create(db_session):
            db_session.add(Notification(...))
            await db_session.commit()
    """
    from confession_service.core.database import Base
    from confession_service.features.notifications import models  # noqa: F401

    async with db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_maker = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with session_maker() as session:
        try:
            yield session
        finally:
            await session.rollback()

    async with db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
def session_factory(db_session: AsyncSession):
    """Session factory for background code, sharing the test session."""

    @asynccontextmanager
    async def factory() -> AsyncIterator[AsyncSession]:
        yield db_session
        await db_session.flush()

    return factory


# ============================================================================
# Application Fixtures
# ============================================================================


@pytest.fixture
async def app(db_session: AsyncSession) -> FastAPI:
    """FastAPI application whose request sessions use the test database."""
    from confession_service.app.main import create_app
    from confession_service.core.dependencies.database import get_db_session

    application = create_app()

    async def override_session() -> AsyncGenerator[AsyncSession]:
        try:
            yield db_session
            await db_session.commit()
        except Exception:
            await db_session.rollback()
            raise

    application.dependency_overrides[get_db_session] = override_session
    return application


@pytest.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient]:
    """Async HTTP client for the test application.

    Example:
        async def test_unread(client, user_headers):
            response = await client.get("/api/v1/notifications/unread-count", headers=user_headers)
            assert response.status_code == 200
    """
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


# ============================================================================
# Authentication Fixtures
# ============================================================================


@pytest.fixture
def user_headers() -> dict[str, str]:
    """Headers for the regular user ``user-1``."""
    return bearer("user-1")


@pytest.fixture
def admin_headers() -> dict[str, str]:
    """Headers for an operator holding the admin role."""
    return bearer("admin-1", ["admin"])


@pytest.fixture
def service_headers() -> dict[str, str]:
    """Headers for an internal service posting inbound events."""
    return {"X-Service-Token": SERVICE_TOKEN}


# ============================================================================
# Email Fixtures
# ============================================================================


@pytest.fixture
def email_client() -> RecordingEmailClient:
    return RecordingEmailClient()
