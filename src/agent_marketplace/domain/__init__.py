"""Domain layer — pure business logic with zero framework dependencies."""

from agent_marketplace.domain.enums import (
    OPEN_TRANSACTION_STATUSES,
    AgentSortField,
    ChainEventKind,
    ListingStatus,
    NotificationType,
    TransactionStatus,
)
from agent_marketplace.domain.exceptions import (
    AgentNotFoundError,
    ConflictError,
    InvalidStateTransitionError,
    ListingNotFoundError,
    MarketplaceError,
    NotFoundError,
    PurchaseInProgressError,
    TransactionNotFoundError,
)
from agent_marketplace.domain.ledger_protocol import ChainEvent, LedgerReader
from agent_marketplace.domain.state_machine import (
    ListingStateMachine,
    TransactionStateMachine,
    validate_transition,
)

__all__ = [
    "OPEN_TRANSACTION_STATUSES",
    "AgentSortField",
    "ChainEventKind",
    "ListingStatus",
    "NotificationType",
    "TransactionStatus",
    "AgentNotFoundError",
    "ConflictError",
    "InvalidStateTransitionError",
    "ListingNotFoundError",
    "MarketplaceError",
    "NotFoundError",
    "PurchaseInProgressError",
    "TransactionNotFoundError",
    "ChainEvent",
    "LedgerReader",
    "ListingStateMachine",
    "TransactionStateMachine",
    "validate_transition",
]
