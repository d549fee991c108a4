"""Database infrastructure — engine, ORM models, and repositories."""

from agent_marketplace.infrastructure.database.engine import (
    close_db,
    get_session_factory,
    init_db,
)
from agent_marketplace.infrastructure.database.orm_models import (
    Agent,
    Base,
    IndexerCursor,
    Listing,
    Transaction,
)
from agent_marketplace.infrastructure.database.repositories import (
    AgentRepository,
    CursorRepository,
    ListingRepository,
    TransactionRepository,
)

__all__ = [
    "Base",
    "Agent",
    "IndexerCursor",
    "Listing",
    "Transaction",
    "AgentRepository",
    "CursorRepository",
    "ListingRepository",
    "TransactionRepository",
    "get_session_factory",
    "init_db",
    "close_db",
]
