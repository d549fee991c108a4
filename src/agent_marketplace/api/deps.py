"""FastAPI dependency injection providers.

These are used with Depends() in route handlers to inject the services,
the notification hub and the ledger reader. Tests override
them through `app.dependency_overrides`.
"""

from __future__ import annotations

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from agent_marketplace.domain.ledger_protocol import LedgerReader
from agent_marketplace.infrastructure.database.engine import get_session_factory
from agent_marketplace.services.agent_service import AgentService
from agent_marketplace.services.locks import KeyedLock
from agent_marketplace.services.marketplace_service import MarketplaceService
from agent_marketplace.services.notifications import NotificationHub

# Process-wide singletons shared by the routes, MCP tools and the indexer
_notification_hub = NotificationHub()
_listing_locks = KeyedLock()
_ledger: LedgerReader | None = None


def get_notification_hub() -> NotificationHub:
    return _notification_hub


def get_listing_locks() -> KeyedLock:
    return _listing_locks


def get_db_session_factory() -> async_sessionmaker[AsyncSession]:
    """Provide the session factory services open their units of work from."""
    return get_session_factory()


def set_ledger(ledger: LedgerReader | None) -> None:
    global _ledger
    _ledger = ledger


def get_ledger() -> LedgerReader | None:
    """Provide the ledger reader created during startup (None when not configured)."""
    return _ledger


def get_marketplace_service(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_db_session_factory),
    hub: NotificationHub = Depends(get_notification_hub),
    locks: KeyedLock = Depends(get_listing_locks),
) -> MarketplaceService:
    return MarketplaceService(session_factory, notifier=hub, locks=locks)


def get_agent_service(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_db_session_factory),
    ledger: LedgerReader | None = Depends(get_ledger),
    hub: NotificationHub = Depends(get_notification_hub),
) -> AgentService:
    return AgentService(session_factory, ledger=ledger, notifier=hub)
