"""Domain enumerations for the Agent Marketplace.

These enums define the canonical states and types used throughout the system.
They are framework-agnostic (no SQLAlchemy, no FastAPI imports).
"""

import enum


class ListingStatus(enum.StrEnum):
    """Lifecycle states of a listing.

    Transitions are guarded by ListingStateMachine (domain/state_machine.py).
    """

    ACTIVE = "active"
    PENDING = "pending"
    SOLD = "sold"
    CANCELLED = "cancelled"


class TransactionStatus(enum.StrEnum):
    """Lifecycle states of a purchase attempt against a listing.

    REQUESTED and CONFIRMED are the "open" window: at most one open
    transaction may exist per listing.
    """

    REQUESTED = "requested"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    DISPUTED = "disputed"


OPEN_TRANSACTION_STATUSES: tuple[TransactionStatus, ...] = (
    TransactionStatus.REQUESTED,
    TransactionStatus.CONFIRMED,
)


class NotificationType(enum.StrEnum):
    """Types of messages pushed to WebSocket subscribers."""

    LISTING_CREATED = "listing_created"
    PURCHASE_REQUESTED = "purchase_requested"
    PURCHASE_CONFIRMED = "purchase_confirmed"
    FUNDS_RELEASED = "funds_released"
    REPUTATION_UPDATED = "reputation_updated"
    PURCHASE_CANCELLED = "purchase_cancelled"
    PURCHASE_DISPUTED = "purchase_disputed"


class ChainEventKind(enum.StrEnum):
    """Marketplace contract events mirrored into the store.

    Declaration order is the order in which a poll batch applies them.
    """

    ITEM_LISTED = "ItemListed"
    PURCHASE_REQUESTED = "PurchaseRequested"
    PURCHASE_CONFIRMED = "PurchaseConfirmed"
    FUNDS_RELEASED = "FundsReleased"
    REPUTATION_UPDATED = "ReputationUpdated"


class AgentSortField(enum.StrEnum):
    """Sort keys accepted by the agent directory."""

    REPUTATION = "reputation"
    TRADES = "trades"
    CREATED = "created"
