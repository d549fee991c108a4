"""Repository classes for database access.

Repositories encapsulate all SQL queries and provide a clean interface
to the service layer. They accept an AsyncSession and never manage
their own transactions (that's the caller's responsibility).
"""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from sqlalchemy import Numeric, cast, func, or_, select, update

from agent_marketplace.domain.enums import (
    OPEN_TRANSACTION_STATUSES,
    AgentSortField,
    ListingStatus,
    TransactionStatus,
)
from agent_marketplace.infrastructure.database.orm_models import (
    Agent,
    IndexerCursor,
    Listing,
    Transaction,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession


def _like_pattern(term: str) -> str:
    """Build a case-insensitive substring pattern with LIKE wildcards escaped."""
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


class AgentRepository:
    """Data access for registered agents."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, agent: Agent) -> Agent:
        self._session.add(agent)
        await self._session.flush()
        return agent

    async def get_by_identifier(self, identifier: str) -> Agent | None:
        """Fetch an agent by agent ID, falling back to its (lowercased) address."""
        result = await self._session.execute(
            select(Agent).where(
                or_(Agent.agent_id == identifier, Agent.address == identifier.lower())
            )
        )
        return result.scalars().first()

    async def get_by_address(self, address: str) -> Agent | None:
        result = await self._session.execute(
            select(Agent).where(Agent.address == address.lower())
        )
        return result.scalar_one_or_none()

    async def exists(self, agent_id: str, address: str) -> bool:
        """Return True if either the agent ID or the address is already taken."""
        result = await self._session.execute(
            select(Agent.id)
            .where(or_(Agent.agent_id == agent_id, Agent.address == address.lower()))
            .limit(1)
        )
        return result.first() is not None

    async def list_active(
        self,
        sort_by: AgentSortField,
        offset: int,
        limit: int,
    ) -> tuple[list[Agent], int]:
        """Fetch a page of active agents plus the total count."""
        order_column = {
            AgentSortField.REPUTATION: cast(Agent.reputation, Numeric),
            AgentSortField.TRADES: Agent.successful_trades,
            AgentSortField.CREATED: Agent.created_at,
        }[sort_by]

        base = select(Agent).where(Agent.is_active.is_(True))
        total = await self._session.scalar(
            select(func.count()).select_from(base.subquery())
        )
        result = await self._session.execute(
            base.order_by(order_column.desc(), Agent.created_at.desc())
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars().all()), int(total or 0)

    async def set_reputation(self, agent: Agent, reputation: int) -> Agent:
        agent.reputation = reputation
        agent.updated_at = datetime.now(UTC)
        await self._session.flush()
        return agent

    async def record_sale(self, agent_id: str) -> bool:
        """Atomically bump the seller-side counters. Returns False if no such agent."""
        result = await self._session.execute(
            update(Agent)
            .where(Agent.agent_id == agent_id)
            .values(
                total_sales=Agent.total_sales + 1,
                successful_trades=Agent.successful_trades + 1,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    async def record_purchase(self, agent_id: str) -> bool:
        """Atomically bump the buyer-side counters. Returns False if no such agent."""
        result = await self._session.execute(
            update(Agent)
            .where(Agent.agent_id == agent_id)
            .values(
                total_purchases=Agent.total_purchases + 1,
                successful_trades=Agent.successful_trades + 1,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0


class ListingRepository:
    """Data access for listings."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, listing: Listing) -> Listing:
        self._session.add(listing)
        await self._session.flush()
        return listing

    async def get_by_listing_id(self, listing_id: int) -> Listing | None:
        result = await self._session.execute(
            select(Listing).where(Listing.listing_id == listing_id)
        )
        return result.scalar_one_or_none()

    async def search(
        self,
        status: ListingStatus,
        offset: int,
        limit: int,
        category: str | None = None,
        seller: str | None = None,
        min_price: Decimal | None = None,
        max_price: Decimal | None = None,
        search: str | None = None,
    ) -> tuple[list[Listing], int]:
        """Fetch a page of listings matching the filters, newest first."""
        stmt = select(Listing).where(Listing.status == status.value)

        if category:
            stmt = stmt.where(Listing.category == category)
        if seller:
            stmt = stmt.where(Listing.seller == seller.lower())
        # Prices are stored as strings; compare numerically.
        if min_price is not None:
            stmt = stmt.where(cast(Listing.price, Numeric) >= min_price)
        if max_price is not None:
            stmt = stmt.where(cast(Listing.price, Numeric) <= max_price)
        if search:
            pattern = _like_pattern(search)
            stmt = stmt.where(
                or_(
                    Listing.title.ilike(pattern, escape="\\"),
                    Listing.description.ilike(pattern, escape="\\"),
                )
            )

        total = await self._session.scalar(select(func.count()).select_from(stmt.subquery()))
        result = await self._session.execute(
            stmt.order_by(Listing.created_at.desc(), Listing.listing_id.desc())
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars().all()), int(total or 0)

    async def update_fields(self, listing: Listing, **fields: Any) -> Listing:
        """Set the given attributes on a listing (call AFTER guard validation)."""
        for key, value in fields.items():
            setattr(listing, key, value)
        listing.updated_at = datetime.now(UTC)
        await self._session.flush()
        return listing


class TransactionRepository:
    """Data access for purchase transactions."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, transaction: Transaction) -> Transaction:
        self._session.add(transaction)
        await self._session.flush()
        return transaction

    async def get_open_for_listing(self, listing_id: int) -> Transaction | None:
        """Fetch the requested/confirmed transaction of a listing, if any."""
        result = await self._session.execute(
            select(Transaction).where(
                Transaction.listing_id == listing_id,
                Transaction.status.in_([s.value for s in OPEN_TRANSACTION_STATUSES]),
            )
        )
        return result.scalars().first()

    async def get_by_listing_and_status(
        self,
        listing_id: int,
        status: TransactionStatus,
    ) -> Transaction | None:
        result = await self._session.execute(
            select(Transaction)
            .where(
                Transaction.listing_id == listing_id,
                Transaction.status == status.value,
            )
            .order_by(Transaction.created_at.desc())
        )
        return result.scalars().first()

    async def get_by_request_hash(self, request_tx_hash: str) -> Transaction | None:
        result = await self._session.execute(
            select(Transaction).where(Transaction.request_tx_hash == request_tx_hash)
        )
        return result.scalars().first()

    async def get_latest_for_listing(self, listing_id: int) -> Transaction | None:
        result = await self._session.execute(
            select(Transaction)
            .where(Transaction.listing_id == listing_id)
            .order_by(Transaction.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def advance(
        self,
        transaction: Transaction,
        from_status: TransactionStatus,
        to_status: TransactionStatus,
        **fields: Any,
    ) -> bool:
        """Conditionally move a transaction from one status to the next.

        The UPDATE only matches while the row is still in `from_status`, so a
        concurrent writer that got there first turns this into a no-op.
        Returns True when the row changed.
        """
        result = await self._session.execute(
            update(Transaction)
            .where(
                Transaction.id == transaction.id,
                Transaction.status == from_status.value,
            )
            .values(status=to_status.value, updated_at=datetime.now(UTC), **fields)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            return False
        await self._session.refresh(transaction)
        return True

    async def search(
        self,
        offset: int,
        limit: int,
        status: TransactionStatus | None = None,
        seller: str | None = None,
        buyer: str | None = None,
    ) -> tuple[list[Transaction], int]:
        """Fetch a page of transactions, newest first."""
        stmt = select(Transaction)
        if status is not None:
            stmt = stmt.where(Transaction.status == status.value)
        if seller:
            stmt = stmt.where(Transaction.seller == seller.lower())
        if buyer:
            stmt = stmt.where(Transaction.buyer == buyer.lower())

        total = await self._session.scalar(select(func.count()).select_from(stmt.subquery()))
        result = await self._session.execute(
            stmt.order_by(Transaction.created_at.desc()).offset(offset).limit(limit)
        )
        return list(result.scalars().all()), int(total or 0)


class CursorRepository:
    """Data access for persisted indexer watermarks."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, name: str) -> int | None:
        cursor = await self._session.get(IndexerCursor, name)
        return cursor.last_processed_block if cursor is not None else None

    async def save(self, name: str, block: int) -> None:
        cursor = await self._session.get(IndexerCursor, name)
        if cursor is None:
            self._session.add(IndexerCursor(name=name, last_processed_block=block))
        else:
            cursor.last_processed_block = block
        await self._session.flush()
