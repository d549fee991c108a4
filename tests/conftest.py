"""Shared test fixtures for the Agent Marketplace test suite.

Provides:
    - A fresh SQLite (aiosqlite) database per test
    - Services wired to a scripted in-memory ledger and a notification hub
    - A chain indexer that retries without sleeping
    - An httpx client talking to the FastAPI app through ASGITransport
"""

from __future__ import annotations

import json
import os

# Settings are read on first use; keep the suite off any local .env values.
os.environ["APP_ENV"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["CONTRACT_ADDRESS"] = ""

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from starlette.websockets import WebSocketState  # noqa: E402
from tenacity import wait_none  # noqa: E402

from agent_marketplace.config import Settings, get_settings  # noqa: E402
from agent_marketplace.infrastructure.database.engine import (  # noqa: E402
    build_engine,
    build_session_factory,
    create_tables,
)
from agent_marketplace.infrastructure.ledger.memory import InMemoryLedger  # noqa: E402
from agent_marketplace.orchestration.chain_indexer import ChainIndexer  # noqa: E402
from agent_marketplace.services.agent_service import AgentService  # noqa: E402
from agent_marketplace.services.locks import KeyedLock  # noqa: E402
from agent_marketplace.services.marketplace_service import MarketplaceService  # noqa: E402
from agent_marketplace.services.notifications import NotificationHub  # noqa: E402

get_settings.cache_clear()

SELLER = "0x00000000000000000000000000000000000000aa"
BUYER = "0x00000000000000000000000000000000000000bb"


class FakeWebSocket:
    """Records what the hub sends; mimics Starlette's WebSocket state fields."""

    def __init__(self, fail: bool = False) -> None:
        self.client_state = WebSocketState.CONNECTED
        self.application_state = WebSocketState.CONNECTED
        self.fail = fail
        self.sent: list[dict] = []

    async def send_text(self, data: str) -> None:
        if self.fail:
            raise RuntimeError("connection reset")
        self.sent.append(json.loads(data))

    def close(self) -> None:
        self.client_state = WebSocketState.DISCONNECTED

    @property
    def types(self) -> list[str]:
        return [message["type"] for message in self.sent]


# ---------------------------------------------------------------------------
# Database & Services
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'marketplace.db'}")
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def hub() -> NotificationHub:
    return NotificationHub()


@pytest.fixture
def make_socket():
    """Factory for extra fake WebSocket connections."""
    return FakeWebSocket


@pytest.fixture
def subscriber(hub: NotificationHub) -> FakeWebSocket:
    ws = FakeWebSocket()
    hub.register(ws)
    return ws


@pytest.fixture
def locks() -> KeyedLock:
    return KeyedLock()


@pytest.fixture
def ledger() -> InMemoryLedger:
    return InMemoryLedger()


@pytest.fixture
def marketplace(session_factory, hub, locks) -> MarketplaceService:
    return MarketplaceService(session_factory, notifier=hub, locks=locks)


@pytest.fixture
def agents(session_factory, ledger, hub) -> AgentService:
    return AgentService(session_factory, ledger=ledger, notifier=hub)


@pytest.fixture
def indexer_settings() -> Settings:
    return Settings(
        start_block=0,
        poll_interval_ms=20,
        indexer_max_block_range=2000,
        ledger_timeout_seconds=0.5,
        ledger_max_retries=2,
    )


@pytest.fixture
def indexer(ledger, marketplace, agents, session_factory, indexer_settings) -> ChainIndexer:
    return ChainIndexer(
        ledger=ledger,
        marketplace=marketplace,
        agents=agents,
        session_factory=session_factory,
        settings=indexer_settings,
        retry_wait=wait_none(),
    )


# ---------------------------------------------------------------------------
# Data helpers
# ---------------------------------------------------------------------------


@pytest.fixture
def listing_data() -> dict:
    """Return valid keyword arguments for MarketplaceService.create_listing."""
    return {
        "listing_id": 7,
        "seller": SELLER,
        "seller_agent": "seller-agent",
        "title": "Mechanical keyboard",
        "description": "Brown switches, barely used",
        "price": "100",
        "category": "electronics",
        "tx_hash": "0xlisting",
    }


@pytest_asyncio.fixture
async def registered_agents(agents: AgentService) -> None:
    await agents.register_agent("seller-agent", SELLER, "Seller", owner="alice")
    await agents.register_agent("buyer-agent", BUYER, "Buyer", owner="bob")


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------


@pytest.fixture
def app(session_factory, hub, locks, ledger):
    from agent_marketplace.api.deps import (
        get_db_session_factory,
        get_ledger,
        get_listing_locks,
        get_notification_hub,
    )
    from agent_marketplace.main import create_app

    application = create_app()
    application.dependency_overrides[get_db_session_factory] = lambda: session_factory
    application.dependency_overrides[get_notification_hub] = lambda: hub
    application.dependency_overrides[get_listing_locks] = lambda: locks
    application.dependency_overrides[get_ledger] = lambda: ledger
    return application


@pytest_asyncio.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as http:
        yield http
