"""Shared pytest fixtures for the Cronflow test suite.

Provides:
- A fresh SQLite database per test (aiosqlite, file in tmp_path)
- AsyncSession factory and a ready session
- httpx clients backed by MockTransport, so no test touches the network
- The FastAPI app with its lifespan running, plus an httpx.AsyncClient
"""

import json
import os
from typing import AsyncGenerator, Callable

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine

# Override settings BEFORE any app imports
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("LOG_FORMAT", "text")

from db.base import Base  # noqa: E402
from db.database import create_session_factory  # noqa: E402


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def db_engine(tmp_path):
    """Async engine on a throwaway SQLite file with all tables created."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)
    import db.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return create_session_factory(db_engine)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


# ---------------------------------------------------------------------------
# HTTP fakes
# ---------------------------------------------------------------------------

class RecordingTransport(httpx.MockTransport):
    """MockTransport that keeps every request it served."""

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response]):
        self.requests: list[httpx.Request] = []

        def _record(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return handler(request)

        super().__init__(_record)


def json_response(data, status_code: int = 200) -> httpx.Response:
    return httpx.Response(status_code, content=json.dumps(data), headers={"Content-Type": "application/json"})


@pytest_asyncio.fixture
async def mock_http():
    """Factory returning ``(client, transport)`` for a request handler."""
    clients: list[httpx.AsyncClient] = []

    def _make(handler: Callable[[httpx.Request], httpx.Response]):
        transport = RecordingTransport(handler)
        client = httpx.AsyncClient(transport=transport)
        clients.append(client)
        return client, transport

    yield _make

    for client in clients:
        await client.aclose()


@pytest.fixture
def executor_for(mock_http):
    """Factory returning ``(ActionExecutor, transport)`` for a request handler."""
    from tasks.executor import ActionExecutor

    def _make(handler: Callable[[httpx.Request], httpx.Response]):
        client, transport = mock_http(handler)
        return ActionExecutor(client=client), transport

    return _make


# ---------------------------------------------------------------------------
# App / HTTP client fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def app(db_engine, mock_http):
    """FastAPI app wired to the test database, lifespan started."""
    from app.main import create_app
    from notifications.manager import NotificationManager
    from tasks.executor import ActionExecutor

    client, _ = mock_http(lambda request: json_response({"ok": True}))
    test_app = create_app(
        db_engine=db_engine,
        executor=ActionExecutor(client=client),
        notifier=NotificationManager(client=client),
    )
    async with test_app.router.lifespan_context(test_app):
        yield test_app


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
