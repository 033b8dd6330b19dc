"""
ProBD Backend - Test Configuration (conftest.py)
================================================

What:  Shared fixtures for the whole suite.
How:   Environment variables are set before anything from `probd` is
       imported, because `probd.config.settings` is built at import time and
       the retry decorators read it when their modules load.

Fixtures:
    mock_db_session   AsyncMock standing in for an AsyncSession
    fake_scope        session_scope() replacement yielding mock_db_session
    member / guest    ready-made identities
    auth_headers      Bearer header factory for an identity
    test_client       httpx AsyncClient bound to the ASGI app
"""

import os

os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./test.db"
os.environ["GEMINI_API_KEY"] = "test-key-not-real"
os.environ["STREAM_API_KEY"] = "test-stream-key"
os.environ["STREAM_API_SECRET"] = "test-stream-secret"
os.environ["AUTH_SECRET_KEY"] = "test-auth-secret"
os.environ["RETRY_MAX_ATTEMPTS"] = "2"
os.environ["RETRY_MIN_WAIT"] = "0"
os.environ["RETRY_MAX_WAIT"] = "1"
os.environ["LOG_LEVEL"] = "WARNING"

from contextlib import asynccontextmanager  # noqa: E402
from unittest.mock import AsyncMock, MagicMock  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from probd.schemas.identity import Identity, Role  # noqa: E402


@pytest.fixture
def mock_db_session():
    """
    Mock async database session.

    Usage:
        mock_db_session.get.return_value = row
        view = await store.get_session(mock_db_session, row.id)
    """
    session = AsyncMock()
    session.execute = AsyncMock()
    session.get = AsyncMock()
    session.flush = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.close = AsyncMock()
    session.add = MagicMock()
    session.add_all = MagicMock()
    return session


@pytest.fixture
def fake_scope(mock_db_session):
    @asynccontextmanager
    async def scope():
        yield mock_db_session

    return scope


@pytest.fixture
def member():
    return Identity(user_id="u_rahman", name="Rafiq Rahman", role=Role.USER)


@pytest.fixture
def professional():
    return Identity(user_id="p_nasreen", name="Dr. Nasreen Akter", role=Role.PROFESSIONAL)


@pytest.fixture
def guest():
    return Identity(user_id="guest_karim_1a2b3c4d", name="Karim", is_guest=True)


@pytest.fixture
def auth_headers():
    from probd.services.identity_service import identity_service

    def build(identity: Identity) -> dict:
        token, _ = identity_service.issue_token(identity)
        return {"Authorization": f"Bearer {token}"}

    return build


@pytest_asyncio.fixture
async def test_client():
    """
    HTTPX AsyncClient talking to the app in-process.

    Usage:
        response = await test_client.get("/api/v1/concierge/greeting")
    """
    from probd.main import app

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
