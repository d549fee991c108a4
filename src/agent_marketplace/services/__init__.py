"""Application services — business logic shared by the REST API, MCP tools and the indexer."""

from agent_marketplace.services.agent_service import AgentService
from agent_marketplace.services.locks import KeyedLock
from agent_marketplace.services.marketplace_service import ListingFilters, MarketplaceService
from agent_marketplace.services.notifications import NotificationHub

__all__ = [
    "AgentService",
    "KeyedLock",
    "ListingFilters",
    "MarketplaceService",
    "NotificationHub",
]
