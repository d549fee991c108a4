"""Marketplace Service — listing and purchase lifecycle.

This is the application layer that coordinates between:
    - Domain state machines (transition guards)
    - Repositories (data access)
    - Notification hub (WebSocket fan-out)

Both entry points go through this service: REST routes and MCP tools call
the strict operations (guard failures raise domain errors), the chain
indexer calls the `apply_*` operations, which treat the ledger as the
authority and log instead of raising.

Every mutation of a listing runs inside the listing's lock and commits
before the lock is released; notifications are sent after the commit.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from sqlalchemy.exc import IntegrityError
from statemachine.exceptions import TransitionNotAllowed

from agent_marketplace.config import get_settings
from agent_marketplace.domain.enums import ListingStatus, NotificationType, TransactionStatus
from agent_marketplace.domain.exceptions import (
    InvalidListingUpdateError,
    InvalidStateTransitionError,
    ListingAlreadyExistsError,
    ListingNotActiveError,
    ListingNotFoundError,
    PurchaseInProgressError,
    SelfPurchaseError,
    TransactionNotFoundError,
)
from agent_marketplace.domain.state_machine import (
    ListingStateMachine,
    TransactionStateMachine,
    validate_transition,
)
from agent_marketplace.infrastructure.database.orm_models import Listing, Transaction
from agent_marketplace.infrastructure.database.repositories import (
    AgentRepository,
    ListingRepository,
    TransactionRepository,
)
from agent_marketplace.logging_config import get_logger
from agent_marketplace.schemas.common import Pagination, dump_snapshot
from agent_marketplace.schemas.listing import ListingResponse
from agent_marketplace.schemas.transaction import TransactionResponse
from agent_marketplace.services.locks import KeyedLock

if TYPE_CHECKING:
    from decimal import Decimal

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from agent_marketplace.services.notifications import NotificationHub

logger = get_logger(__name__)


@dataclass
class ListingFilters:
    """Search criteria for browsing listings."""

    status: ListingStatus = ListingStatus.ACTIVE
    category: str | None = None
    seller: str | None = None
    min_price: Decimal | None = None
    max_price: Decimal | None = None
    search: str | None = None


class MarketplaceService:
    """Manages the listing and purchase lifecycle."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        notifier: NotificationHub | None = None,
        locks: KeyedLock | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._notifier = notifier
        self._locks = locks or KeyedLock()

    # ------------------------------------------------------------------
    # Listing Creation
    # ------------------------------------------------------------------

    async def create_listing(
        self,
        listing_id: int,
        seller: str,
        seller_agent: str,
        title: str,
        description: str,
        price: str,
        category: str,
        tx_hash: str,
        location: str | None = None,
        images: list[str] | None = None,
        metadata: dict | None = None,
    ) -> Listing:
        """Record a new listing. Rejects a listing ID that already exists."""
        async with self._locks.hold(listing_id):
            try:
                async with self._session_factory() as session, session.begin():
                    listings = ListingRepository(session)
                    if await listings.get_by_listing_id(listing_id) is not None:
                        raise ListingAlreadyExistsError(listing_id)

                    listing = await listings.create(
                        Listing(
                            listing_id=listing_id,
                            seller=seller.lower(),
                            seller_agent=seller_agent,
                            title=title,
                            description=description,
                            price=price,
                            category=category,
                            location=location,
                            images=images or [],
                            tx_hash=tx_hash,
                            metadata_json=metadata or {},
                            status=ListingStatus.ACTIVE.value,
                        )
                    )
            except IntegrityError:
                raise ListingAlreadyExistsError(listing_id) from None

        logger.info("listing.created", listing_id=listing_id, title=title, source="api")
        await self._notify(NotificationType.LISTING_CREATED, ListingResponse, listing)
        return listing

    # ------------------------------------------------------------------
    # Purchase Request
    # ------------------------------------------------------------------

    async def request_purchase(
        self,
        listing_id: int,
        buyer: str,
        buyer_agent: str,
        tx_hash: str,
    ) -> Transaction:
        """Open a purchase on an active listing and move the listing to pending."""
        buyer = buyer.lower()
        async with self._locks.hold(listing_id):
            try:
                async with self._session_factory() as session, session.begin():
                    listings = ListingRepository(session)
                    transactions = TransactionRepository(session)

                    listing = await listings.get_by_listing_id(listing_id)
                    if listing is None:
                        raise ListingNotFoundError(listing_id)
                    if listing.seller.lower() == buyer:
                        raise SelfPurchaseError(listing_id)

                    open_tx = await transactions.get_open_for_listing(listing_id)
                    if open_tx is not None:
                        raise PurchaseInProgressError(listing_id, str(open_tx.id))
                    if listing.status != ListingStatus.ACTIVE.value:
                        raise ListingNotActiveError(listing_id, listing.status)

                    self._move_listing(listing, ListingStatus.PENDING, strict=True)
                    await listings.update_fields(
                        listing, buyer=buyer, buyer_agent=buyer_agent
                    )
                    transaction = await transactions.create(
                        self._new_transaction(listing, buyer, buyer_agent, tx_hash)
                    )
            except IntegrityError:
                raise PurchaseInProgressError(listing_id) from None

        logger.info(
            "purchase.requested",
            listing_id=listing_id,
            buyer_agent=buyer_agent,
            transaction_id=str(transaction.id),
        )
        await self._notify(NotificationType.PURCHASE_REQUESTED, TransactionResponse, transaction)
        return transaction

    # ------------------------------------------------------------------
    # Confirmation
    # ------------------------------------------------------------------

    async def confirm_purchase(self, listing_id: int, tx_hash: str) -> Transaction:
        """Advance the requested transaction of a listing to confirmed."""
        async with self._locks.hold(listing_id):
            async with self._session_factory() as session, session.begin():
                transaction = await self._confirm(session, listing_id, tx_hash)
                if transaction is None:
                    raise TransactionNotFoundError(listing_id, TransactionStatus.REQUESTED)

        logger.info("purchase.confirmed", listing_id=listing_id, tx_hash=tx_hash)
        await self._notify(NotificationType.PURCHASE_CONFIRMED, TransactionResponse, transaction)
        return transaction

    # ------------------------------------------------------------------
    # Release
    # ------------------------------------------------------------------

    async def release_funds(self, listing_id: int, tx_hash: str) -> Transaction:
        """Complete the confirmed transaction, mark the listing sold, bump trade counters.

        All writes share one database transaction.
        """
        async with self._locks.hold(listing_id):
            async with self._session_factory() as session, session.begin():
                listing = await ListingRepository(session).get_by_listing_id(listing_id)
                if listing is None:
                    raise ListingNotFoundError(listing_id)
                transaction = await self._complete(session, listing, tx_hash, strict=True)
                if transaction is None:
                    raise TransactionNotFoundError(listing_id, TransactionStatus.CONFIRMED)

        logger.info("purchase.funds_released", listing_id=listing_id, tx_hash=tx_hash)
        await self._notify(NotificationType.FUNDS_RELEASED, TransactionResponse, transaction)
        return transaction

    # ------------------------------------------------------------------
    # Cancellation & Disputes
    # ------------------------------------------------------------------

    async def cancel_purchase(self, listing_id: int, reason: str | None = None) -> Transaction:
        """Cancel a requested (not yet confirmed) purchase and reopen the listing."""
        async with self._locks.hold(listing_id):
            async with self._session_factory() as session, session.begin():
                listings = ListingRepository(session)
                transactions = TransactionRepository(session)

                transaction = await transactions.get_by_listing_and_status(
                    listing_id, TransactionStatus.REQUESTED
                )
                if transaction is None:
                    raise TransactionNotFoundError(listing_id, TransactionStatus.REQUESTED)

                metadata = dict(transaction.metadata_json or {})
                if reason:
                    metadata["cancelReason"] = reason
                await self._move_transaction(
                    transactions, transaction, "cancel_purchase", metadata_json=metadata
                )

                listing = await listings.get_by_listing_id(listing_id)
                if listing is not None and listing.status == ListingStatus.PENDING.value:
                    self._move_listing(listing, ListingStatus.ACTIVE, strict=True)
                    await listings.update_fields(listing, buyer=None, buyer_agent=None)

        logger.info("purchase.cancelled", listing_id=listing_id, reason=reason)
        await self._notify(NotificationType.PURCHASE_CANCELLED, TransactionResponse, transaction)
        return transaction

    async def raise_dispute(self, listing_id: int, reason: str) -> Transaction:
        """Flag a confirmed purchase as disputed. The listing stays pending."""
        async with self._locks.hold(listing_id):
            async with self._session_factory() as session, session.begin():
                transactions = TransactionRepository(session)
                transaction = await transactions.get_by_listing_and_status(
                    listing_id, TransactionStatus.CONFIRMED
                )
                if transaction is None:
                    raise TransactionNotFoundError(listing_id, TransactionStatus.CONFIRMED)

                metadata = dict(transaction.metadata_json or {})
                metadata["disputeReason"] = reason
                await self._move_transaction(
                    transactions, transaction, "raise_dispute", metadata_json=metadata
                )

        logger.warning("purchase.disputed", listing_id=listing_id, reason=reason)
        await self._notify(NotificationType.PURCHASE_DISPUTED, TransactionResponse, transaction)
        return transaction

    # ------------------------------------------------------------------
    # Listing Updates (PATCH)
    # ------------------------------------------------------------------

    async def update_listing_status(
        self,
        listing_id: int,
        status: ListingStatus | None = None,
        buyer: str | None = None,
        buyer_agent: str | None = None,
    ) -> Listing:
        """Apply a manual listing update.

        A status change must be a single legal guard transition. Buyer fields
        are only accepted when the resulting status is not active.
        """
        async with self._locks.hold(listing_id):
            async with self._session_factory() as session, session.begin():
                listings = ListingRepository(session)
                listing = await listings.get_by_listing_id(listing_id)
                if listing is None:
                    raise ListingNotFoundError(listing_id)

                target = status.value if status is not None else listing.status
                if (buyer or buyer_agent) and target == ListingStatus.ACTIVE.value:
                    raise InvalidListingUpdateError(
                        "buyer and buyerAgent can only be set on a listing that is not active"
                    )

                fields: dict[str, Any] = {}
                if status is not None and status.value != listing.status:
                    if status == ListingStatus.ACTIVE:
                        open_tx = await TransactionRepository(session).get_open_for_listing(
                            listing_id
                        )
                        if open_tx is not None:
                            raise PurchaseInProgressError(listing_id, str(open_tx.id))
                        fields.update(buyer=None, buyer_agent=None)
                    self._move_listing(listing, status, strict=True)
                if buyer is not None:
                    fields["buyer"] = buyer.lower()
                if buyer_agent is not None:
                    fields["buyer_agent"] = buyer_agent
                await listings.update_fields(listing, **fields)

        logger.info("listing.updated", listing_id=listing_id, status=listing.status)
        return listing

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_listing(self, listing_id: int) -> Listing:
        async with self._session_factory() as session:
            listing = await ListingRepository(session).get_by_listing_id(listing_id)
        if listing is None:
            raise ListingNotFoundError(listing_id)
        return listing

    async def search_listings(
        self,
        filters: ListingFilters,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[Listing], Pagination]:
        """Return a page of listings and its pagination, using the capped page size."""
        limit = min(limit, get_settings().max_page_size)
        async with self._session_factory() as session:
            listings, total = await ListingRepository(session).search(
                status=filters.status,
                offset=(page - 1) * limit,
                limit=limit,
                category=filters.category,
                seller=filters.seller,
                min_price=filters.min_price,
                max_price=filters.max_price,
                search=filters.search,
            )
        return listings, Pagination.build(page, limit, total)

    async def list_transactions(
        self,
        page: int = 1,
        limit: int = 20,
        status: TransactionStatus | None = None,
        seller: str | None = None,
        buyer: str | None = None,
    ) -> tuple[list[Transaction], Pagination]:
        limit = min(limit, get_settings().max_page_size)
        async with self._session_factory() as session:
            transactions, total = await TransactionRepository(session).search(
                offset=(page - 1) * limit,
                limit=limit,
                status=status,
                seller=seller,
                buyer=buyer,
            )
        return transactions, Pagination.build(page, limit, total)

    async def latest_transaction(self, listing_id: int) -> Transaction:
        async with self._session_factory() as session:
            transaction = await TransactionRepository(session).get_latest_for_listing(listing_id)
        if transaction is None:
            raise TransactionNotFoundError(listing_id)
        return transaction

    # ------------------------------------------------------------------
    # Chain event application (ledger is authoritative, never raises on
    # missing entities)
    # ------------------------------------------------------------------

    async def apply_item_listed(
        self,
        listing_id: int,
        seller: str,
        price: str,
        payload: dict[str, Any],
        tx_hash: str,
    ) -> Listing:
        """Upsert a listing from an ItemListed event; chain fields overwrite local ones."""
        fields: dict[str, Any] = {
            "seller": seller.lower(),
            "seller_agent": str(payload.get("agentId") or "unknown"),
            "title": str(payload.get("title") or "Untitled"),
            "description": str(payload.get("description") or ""),
            "price": price,
            "category": str(payload.get("category") or "other"),
            "location": payload.get("location"),
            "images": _as_string_list(payload.get("images")),
            "tx_hash": tx_hash,
            "metadata_json": payload,
            "buyer": None,
            "buyer_agent": None,
        }

        async with self._locks.hold(listing_id):
            async with self._session_factory() as session, session.begin():
                listings = ListingRepository(session)
                listing = await listings.get_by_listing_id(listing_id)
                if listing is None:
                    listing = await listings.create(
                        Listing(listing_id=listing_id, status=ListingStatus.ACTIVE.value, **fields)
                    )
                    created = True
                else:
                    self._move_listing(listing, ListingStatus.ACTIVE, strict=False)
                    await listings.update_fields(listing, **fields)
                    created = False

        logger.info("chain.item_listed", listing_id=listing_id, created=created)
        await self._notify(NotificationType.LISTING_CREATED, ListingResponse, listing)
        return listing

    async def apply_purchase_requested(
        self,
        listing_id: int,
        buyer: str,
        buyer_agent: str,
        tx_hash: str,
    ) -> Transaction | None:
        """Mirror a PurchaseRequested event. Returns the transaction it created, if any."""
        buyer = buyer.lower()
        async with self._locks.hold(listing_id):
            async with self._session_factory() as session, session.begin():
                listings = ListingRepository(session)
                transactions = TransactionRepository(session)

                listing = await listings.get_by_listing_id(listing_id)
                if listing is None:
                    logger.warning(
                        "chain.listing_missing",
                        event_name="PurchaseRequested",
                        listing_id=listing_id,
                    )
                    return None

                self._move_listing(listing, ListingStatus.PENDING, strict=False)
                await listings.update_fields(listing, buyer=buyer, buyer_agent=buyer_agent)

                if await transactions.get_by_request_hash(tx_hash) is not None:
                    logger.info("chain.event_already_applied", listing_id=listing_id, tx_hash=tx_hash)
                    return None

                open_tx = await transactions.get_open_for_listing(listing_id)
                if open_tx is not None:
                    logger.info(
                        "chain.purchase_already_open",
                        listing_id=listing_id,
                        transaction_id=str(open_tx.id),
                    )
                    return None

                transaction = await transactions.create(
                    self._new_transaction(listing, buyer, buyer_agent, tx_hash)
                )

        logger.info("chain.purchase_requested", listing_id=listing_id, buyer=buyer)
        await self._notify(NotificationType.PURCHASE_REQUESTED, TransactionResponse, transaction)
        return transaction

    async def apply_purchase_confirmed(self, listing_id: int, tx_hash: str) -> Transaction | None:
        async with self._locks.hold(listing_id):
            async with self._session_factory() as session, session.begin():
                transaction = await self._confirm(session, listing_id, tx_hash)

        if transaction is None:
            logger.info("chain.no_requested_purchase", listing_id=listing_id)
            return None

        logger.info("chain.purchase_confirmed", listing_id=listing_id)
        await self._notify(NotificationType.PURCHASE_CONFIRMED, TransactionResponse, transaction)
        return transaction

    async def apply_funds_released(self, listing_id: int, tx_hash: str) -> Transaction | None:
        async with self._locks.hold(listing_id):
            async with self._session_factory() as session, session.begin():
                listing = await ListingRepository(session).get_by_listing_id(listing_id)
                if listing is None:
                    logger.warning(
                        "chain.listing_missing",
                        event_name="FundsReleased",
                        listing_id=listing_id,
                    )
                    return None
                transaction = await self._complete(session, listing, tx_hash, strict=False)

        if transaction is None:
            logger.info("chain.no_confirmed_purchase", listing_id=listing_id)
            return None

        logger.info("chain.funds_released", listing_id=listing_id)
        await self._notify(NotificationType.FUNDS_RELEASED, TransactionResponse, transaction)
        return transaction

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _new_transaction(
        listing: Listing,
        buyer: str,
        buyer_agent: str,
        tx_hash: str,
    ) -> Transaction:
        return Transaction(
            listing_id=listing.listing_id,
            seller=listing.seller,
            buyer=buyer,
            seller_agent=listing.seller_agent,
            buyer_agent=buyer_agent,
            price=listing.price,
            status=TransactionStatus.REQUESTED.value,
            request_tx_hash=tx_hash,
            metadata_json={},
        )

    @staticmethod
    def _move_listing(listing: Listing, target: ListingStatus, strict: bool) -> None:
        """Set a listing's status through the guard.

        strict=True raises on an illegal move; otherwise the target is written
        anyway (the ledger wins) and the drift is logged.
        """
        if listing.status == target.value:
            return
        event_name = ListingStateMachine(listing.status).event_towards(target.value)
        if event_name is None:
            if strict:
                raise InvalidStateTransitionError(listing.status, target.value)
            logger.warning(
                "chain.state_drift",
                entity="listing",
                listing_id=listing.listing_id,
                local_status=listing.status,
                chain_status=target.value,
            )
        listing.status = target.value

    @staticmethod
    async def _move_transaction(
        transactions: TransactionRepository,
        transaction: Transaction,
        event_name: str,
        **fields: Any,
    ) -> bool:
        """Fire a guard event on a transaction and persist the resulting status.

        Raises InvalidStateTransitionError if the event is illegal from the
        transaction's current status. Returns False when a concurrent writer
        already moved the row.
        """
        current = transaction.status
        try:
            target = validate_transition(TransactionStateMachine, current, event_name)
        except TransitionNotAllowed as err:
            raise InvalidStateTransitionError(current, event_name) from err
        return await transactions.advance(
            transaction,
            TransactionStatus(current),
            TransactionStatus(target),
            **fields,
        )

    async def _confirm(
        self,
        session: AsyncSession,
        listing_id: int,
        tx_hash: str,
    ) -> Transaction | None:
        transactions = TransactionRepository(session)
        transaction = await transactions.get_by_listing_and_status(
            listing_id, TransactionStatus.REQUESTED
        )
        if transaction is None:
            return None
        changed = await self._move_transaction(
            transactions, transaction, "confirm_purchase", confirm_tx_hash=tx_hash
        )
        return transaction if changed else None

    async def _complete(
        self,
        session: AsyncSession,
        listing: Listing,
        tx_hash: str,
        strict: bool,
    ) -> Transaction | None:
        """Release unit: listing sold, transaction completed, four trade counters.

        The counters are only touched when this call flipped the transaction,
        so a replayed release never counts twice.
        """
        listings = ListingRepository(session)
        transactions = TransactionRepository(session)
        agents = AgentRepository(session)

        transaction = await transactions.get_by_listing_and_status(
            listing.listing_id, TransactionStatus.CONFIRMED
        )
        if transaction is None:
            if not strict:
                # The ledger says the item is sold even if no purchase was mirrored.
                self._move_listing(listing, ListingStatus.SOLD, strict=False)
                await listings.update_fields(listing)
            return None

        self._move_listing(listing, ListingStatus.SOLD, strict=strict)
        await listings.update_fields(listing)

        changed = await self._move_transaction(
            transactions, transaction, "release_funds", release_tx_hash=tx_hash
        )
        if not changed:
            return None

        if not await agents.record_sale(transaction.seller_agent):
            logger.warning(
                "agent.counters_skipped",
                agent_id=transaction.seller_agent,
                role="seller",
                listing_id=listing.listing_id,
            )
        if not await agents.record_purchase(transaction.buyer_agent):
            logger.warning(
                "agent.counters_skipped",
                agent_id=transaction.buyer_agent,
                role="buyer",
                listing_id=listing.listing_id,
            )
        return transaction

    async def _notify(self, kind: NotificationType, schema: Any, obj: Any) -> None:
        if self._notifier is None:
            return
        await self._notifier.notify(kind, dump_snapshot(schema, obj))


def _as_string_list(value: Any) -> list[str]:
    if isinstance(value, list):
        return [str(item) for item in value]
    return []
