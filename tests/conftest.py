"""Shared test fixtures and configuration."""
import json
import os
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import httpx
import pytest
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

# Set test environment variables before importing app
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("TELNYX_API_KEY", "test-key")

from app.main import app
from app.db.database import Base, get_db
from app.db.models import Agent, InboundNumber, OrgVoiceSettings
from app.core.config import Settings
from app.core.dependencies import get_settings, get_telnyx_client
from app.services.telnyx.client import TelnyxClient


# Test database URL (in-memory SQLite)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

Responder = Union[Tuple[int, Any], Callable[[httpx.Request], httpx.Response]]


class FakeTelnyx:
    """
    Scripted Telnyx API behind ``httpx.MockTransport``.

    Responses are queued per (method, path); the last queued response
    repeats. Unscripted requests get ``200 {"data": {}}``.
    """

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.routes: Dict[Tuple[str, str], List[Responder]] = {}

    def add(self, method: str, path: str, *responses: Responder) -> None:
        self.routes.setdefault((method, path), []).extend(responses)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self.routes.get((request.method, self.path_of(request)))
        if not queue:
            return httpx.Response(200, json={"data": {}})
        responder = queue.pop(0) if len(queue) > 1 else queue[0]
        if callable(responder):
            return responder(request)
        status, body = responder
        return httpx.Response(status, json=body)

    @staticmethod
    def path_of(request: httpx.Request) -> str:
        path = request.url.path
        return path[len("/v2"):] if path.startswith("/v2") else path

    @staticmethod
    def body_of(request: httpx.Request) -> Dict[str, Any]:
        return json.loads(request.content) if request.content else {}

    def sent(self, method: Optional[str] = None, path: Optional[str] = None) -> List[httpx.Request]:
        """Requests seen so far, optionally filtered by method and exact path."""
        return [
            r for r in self.requests
            if (method is None or r.method == method)
            and (path is None or self.path_of(r) == path)
        ]

    def actions(self) -> List[Tuple[str, str, Dict[str, Any]]]:
        """Call control commands issued, as (call_control_id, action, body)."""
        issued = []
        for request in self.requests:
            parts = self.path_of(request).strip("/").split("/")
            if len(parts) == 4 and parts[0] == "calls" and parts[2] == "actions":
                issued.append((parts[1], parts[3], self.body_of(request)))
        return issued


@pytest.fixture
def test_settings():
    """Override settings for testing."""
    return Settings(
        telnyx_api_key="test-key",
        telnyx_api_url="https://api.telnyx.com/v2",
        call_control_app_id="app-123",
        sip_credential_connection_id="sip-conn-456",
        sip_domain="sip.telnyx.com",
        from_number="+14045550100",
        fallback_agent_sip_username=None,
        hold_music_url="https://cdn.example.com/hold.mp3",
        database_url=TEST_DATABASE_URL,
    )


@pytest.fixture
async def test_db_engine():
    """Create test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # Create all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    # Drop all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
async def test_db(test_db_engine):
    """Create test database session."""
    async_session = async_sessionmaker(
        test_db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with async_session() as session:
        yield session


@pytest.fixture
def fake_telnyx():
    """Scripted Telnyx API."""
    return FakeTelnyx()


@pytest.fixture
def telnyx_client(fake_telnyx, test_settings):
    """Telnyx client wired to the scripted API."""
    return TelnyxClient.from_settings(test_settings, transport=httpx.MockTransport(fake_telnyx.handler))


@pytest.fixture
def no_sleep(monkeypatch):
    """Record backoff sleeps instead of waiting them out."""
    delays: List[float] = []

    async def _sleep(seconds):
        delays.append(seconds)

    monkeypatch.setattr("app.services.call_control.transfer.asyncio.sleep", _sleep)
    monkeypatch.setattr("app.services.telnyx.client.asyncio.sleep", _sleep)
    return delays


@pytest.fixture
def telnyx_event():
    """Build a Telnyx webhook envelope."""
    def _event(event_type: str, **payload) -> Dict[str, Any]:
        return {"data": {"event_type": event_type, "payload": payload}}
    return _event


@pytest.fixture
async def available_agent(test_db):
    """An available agent with SIP username ``A``."""
    agent = Agent(
        id="agent-a",
        sip_username="A",
        status="available",
        api_token="token-a",
        created_at=datetime.utcnow() - timedelta(hours=1),
    )
    test_db.add(agent)
    await test_db.commit()
    return agent


@pytest.fixture
async def dialer_agent(test_db):
    """A busy agent who places outbound calls."""
    agent = Agent(
        id="agent-dialer",
        sip_username="sip_a1",
        status="busy",
        api_token="token-dialer",
    )
    test_db.add(agent)
    await test_db.commit()
    return agent


@pytest.fixture
async def org_number(test_db):
    """Inbound number +14045550199 owned by org-1, with a dispatcher fallback."""
    test_db.add(InboundNumber(e164="+14045550199", org_id="org-1", enabled=True))
    test_db.add(
        OrgVoiceSettings(
            org_id="org-1", fallback_mode="dispatcher_sip", fallback_sip_username="dispatch"
        )
    )
    await test_db.commit()
    return "+14045550199"


@pytest.fixture
def override_get_db(test_db):
    """Override get_db dependency with test database."""
    async def _override_get_db():
        yield test_db
    return _override_get_db


@pytest.fixture
async def api_client(override_get_db, telnyx_client, test_settings, monkeypatch):
    """In-process HTTP client for the app, with test database and scripted Telnyx."""
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_telnyx_client] = lambda: telnyx_client
    app.dependency_overrides[get_settings] = lambda: test_settings

    # Override settings in modules that read it directly
    monkeypatch.setattr("app.core.dependencies.settings", test_settings)

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    # Clear overrides
    app.dependency_overrides.clear()


# Pytest configuration
def pytest_configure(config):
    """Configure pytest."""
    config.addinivalue_line(
        "markers", "asyncio: mark test as an asyncio test"
    )
