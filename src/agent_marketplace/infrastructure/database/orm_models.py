"""SQLAlchemy 2.0 ORM models for the Agent Marketplace.

Four tables:
    1. agents           — Registered AI agents and their cached reputation.
    2. listings         — Items for sale, keyed by the on-chain listing ID.
    3. transactions     — Purchase attempts against a listing.
    4. indexer_cursors  — Persisted watermark of the chain indexer.

Design decisions:
    - UUIDs as surrogate primary keys; listing_id / agent_id / address are
      the natural keys and carry unique constraints.
    - Prices are decimal strings (String(78) fits any uint256 in wei).
    - Reputation is a uint256 on chain and is stored through Uint256.
    - JSON columns (JSONB on PostgreSQL) for free-form metadata and images.
    - CHECK constraints on status values so invalid states never persist.
    - Partial unique index: at most one requested/confirmed transaction per
      listing, the store-level backstop for the per-listing lock.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    TypeDecorator,
    Uuid,
    event,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

JSONType = JSON().with_variant(JSONB(), "postgresql")


class Uint256(TypeDecorator):
    """Unsigned 256-bit chain integer: NUMERIC(78, 0) on PostgreSQL, a decimal string elsewhere."""

    impl = String(78)
    cache_ok = True

    def load_dialect_impl(self, dialect):  # noqa: ANN001, ANN201
        if dialect.name == "postgresql":
            return dialect.type_descriptor(Numeric(78, 0))
        return dialect.type_descriptor(String(78))

    def process_bind_param(self, value, dialect):  # noqa: ANN001, ANN201
        if value is None:
            return None
        if dialect.name == "postgresql":
            return Decimal(int(value))
        return str(int(value))

    def process_result_value(self, value, dialect):  # noqa: ANN001, ANN201
        return None if value is None else int(value)

_OPEN_TRANSACTION_CLAUSE = "status IN ('requested', 'confirmed')"


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _set_updated_at(mapper, connection, target):  # noqa: ANN001
    """SQLAlchemy event listener that updates `updated_at` before flush."""
    target.updated_at = _utcnow()


# ---------------------------------------------------------------------------
# 1. agents
# ---------------------------------------------------------------------------
class Agent(Base):
    """An AI agent registered with the marketplace."""

    __tablename__ = "agents"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    # --- Identity ---
    agent_id: Mapped[str] = mapped_column(
        String(128),
        nullable=False,
        unique=True,
        comment="Agent identifier chosen by the agent runtime",
    )
    address: Mapped[str] = mapped_column(
        String(42),
        nullable=False,
        unique=True,
        comment="Lowercased EVM wallet address of the agent",
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True, default=None)
    owner: Mapped[str] = mapped_column(
        String(128),
        nullable=False,
        comment="Identifier of the human or organisation operating the agent",
    )

    # --- Reputation & Counters ---
    reputation: Mapped[int] = mapped_column(
        Uint256,
        nullable=False,
        default=100,
        comment="Cached copy of the on-chain reputation score",
    )
    total_sales: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_purchases: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    successful_trades: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    scam_reports: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    metadata_json: Mapped[dict | None] = mapped_column(
        "metadata",
        JSONType,
        nullable=True,
        default=dict,
    )

    # --- Timestamps ---
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        Index("idx_agent_reputation", "reputation"),
        Index("idx_agent_successful_trades", "successful_trades"),
        Index("idx_agent_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Agent agent_id={self.agent_id} address={self.address} rep={self.reputation}>"


# ---------------------------------------------------------------------------
# 2. listings
# ---------------------------------------------------------------------------
class Listing(Base):
    """An item offered for sale, mirrored from (or created ahead of) the chain."""

    __tablename__ = "listings"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    listing_id: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        unique=True,
        comment="On-chain listing ID (natural key)",
    )

    # --- Seller ---
    seller: Mapped[str] = mapped_column(
        String(42),
        nullable=False,
        comment="Lowercased seller wallet address",
    )
    seller_agent: Mapped[str] = mapped_column(String(128), nullable=False, default="unknown")

    # --- Item ---
    title: Mapped[str] = mapped_column(String(500), nullable=False, default="Untitled")
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    price: Mapped[str] = mapped_column(
        String(78),
        nullable=False,
        comment="Price as a decimal string in the smallest unit (wei)",
    )
    category: Mapped[str] = mapped_column(String(100), nullable=False, default="other")
    location: Mapped[str | None] = mapped_column(String(200), nullable=True, default=None)
    images: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)

    # --- Status (Enum-guarded) ---
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="active",
        comment="Current lifecycle state (guarded by ListingStateMachine)",
    )

    # --- Buyer (set only while status != active) ---
    buyer: Mapped[str | None] = mapped_column(String(42), nullable=True, default=None)
    buyer_agent: Mapped[str | None] = mapped_column(String(128), nullable=True, default=None)

    tx_hash: Mapped[str | None] = mapped_column(
        String(66),
        nullable=True,
        default=None,
        comment="Hash of the transaction that created the listing on chain",
    )
    metadata_json: Mapped[dict | None] = mapped_column(
        "metadata",
        JSONType,
        nullable=True,
        default=dict,
        comment="Parsed itemData payload or caller-supplied metadata",
    )

    # --- Timestamps ---
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('active', 'pending', 'sold', 'cancelled')",
            name="ck_listing_valid_status",
        ),
        Index("idx_listing_status", "status"),
        Index("idx_listing_seller", "seller"),
        Index("idx_listing_category", "category"),
        Index("idx_listing_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Listing listing_id={self.listing_id} status={self.status} price={self.price}>"


# ---------------------------------------------------------------------------
# 3. transactions
# ---------------------------------------------------------------------------
class Transaction(Base):
    """A purchase attempt against a listing."""

    __tablename__ = "transactions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    listing_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("listings.listing_id"),
        nullable=False,
    )

    # --- Parties (denormalized from the listing at request time) ---
    seller: Mapped[str] = mapped_column(String(42), nullable=False)
    buyer: Mapped[str] = mapped_column(String(42), nullable=False)
    seller_agent: Mapped[str] = mapped_column(String(128), nullable=False)
    buyer_agent: Mapped[str] = mapped_column(String(128), nullable=False)
    price: Mapped[str] = mapped_column(String(78), nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="requested",
        comment="Current lifecycle state (guarded by TransactionStateMachine)",
    )

    # --- On-chain evidence ---
    request_tx_hash: Mapped[str] = mapped_column(String(66), nullable=False)
    confirm_tx_hash: Mapped[str | None] = mapped_column(String(66), nullable=True, default=None)
    release_tx_hash: Mapped[str | None] = mapped_column(String(66), nullable=True, default=None)

    metadata_json: Mapped[dict | None] = mapped_column(
        "metadata",
        JSONType,
        nullable=True,
        default=dict,
    )

    # --- Timestamps ---
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('requested', 'confirmed', 'completed', 'cancelled', 'disputed')",
            name="ck_transaction_valid_status",
        ),
        CheckConstraint(
            "status != 'completed' OR "
            "(confirm_tx_hash IS NOT NULL AND release_tx_hash IS NOT NULL)",
            name="ck_transaction_completed_hashes",
        ),
        Index(
            "uq_transaction_open_per_listing",
            "listing_id",
            unique=True,
            sqlite_where=text(_OPEN_TRANSACTION_CLAUSE),
            postgresql_where=text(_OPEN_TRANSACTION_CLAUSE),
        ),
        Index("idx_transaction_listing", "listing_id"),
        Index("idx_transaction_status", "status"),
        Index("idx_transaction_seller", "seller"),
        Index("idx_transaction_buyer", "buyer"),
        Index("idx_transaction_request_hash", "request_tx_hash"),
        Index("idx_transaction_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<Transaction id={self.id} listing={self.listing_id} "
            f"status={self.status}>"
        )


# ---------------------------------------------------------------------------
# 4. indexer_cursors
# ---------------------------------------------------------------------------
class IndexerCursor(Base):
    """Last fully processed block of a chain indexer, one row per indexer name."""

    __tablename__ = "indexer_cursors"

    name: Mapped[str] = mapped_column(String(64), primary_key=True)
    last_processed_block: Mapped[int] = mapped_column(BigInteger, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    def __repr__(self) -> str:
        return f"<IndexerCursor name={self.name} block={self.last_processed_block}>"


# ---------------------------------------------------------------------------
# Register the auto-update listener for updated_at
# ---------------------------------------------------------------------------
for _model in (Agent, Listing, Transaction):
    event.listen(_model, "before_update", _set_updated_at)
