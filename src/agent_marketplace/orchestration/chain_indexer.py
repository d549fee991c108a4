"""Chain Indexer — mirrors marketplace contract events into the store.

A fixed-interval polling loop:

    read head H -> for each block range (watermark+1 .. H, capped batches):
        fetch ItemListed, PurchaseRequested, PurchaseConfirmed,
              FundsReleased, ReputationUpdated
        apply each event through the services
        persist watermark = end of batch

Delivery is at-least-once. A failure anywhere in a batch stops the tick and
leaves the watermark at the last completed batch, so the same range is
fetched again on the next tick; every handler is idempotent under replay.
An event whose handler keeps failing is skipped (logged at error level)
after INDEXER_MAX_EVENT_ATTEMPTS tries.

Usage:
    indexer = ChainIndexer(ledger, marketplace_service, agent_service, session_factory)
    await indexer.start()
    ...
    await indexer.stop()
    await indexer.join()
"""

from __future__ import annotations

import asyncio
import json
from typing import TYPE_CHECKING, Any

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from agent_marketplace.config import Settings, get_settings
from agent_marketplace.domain.enums import ChainEventKind
from agent_marketplace.infrastructure.database.repositories import CursorRepository
from agent_marketplace.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
    from tenacity.wait import wait_base

    from agent_marketplace.domain.ledger_protocol import ChainEvent, LedgerReader
    from agent_marketplace.services.agent_service import AgentService
    from agent_marketplace.services.marketplace_service import MarketplaceService

logger = get_logger(__name__)


def parse_item_data(item_data: Any) -> dict[str, Any]:
    """Decode the ItemListed itemData string; anything but a JSON object becomes {"raw": ...}."""
    try:
        payload = json.loads(item_data)
    except (TypeError, ValueError):
        return {"raw": item_data}
    if not isinstance(payload, dict):
        return {"raw": item_data}
    return payload


class ChainIndexer:
    """Polls the ledger and applies marketplace events to the store."""

    def __init__(
        self,
        ledger: LedgerReader,
        marketplace: MarketplaceService,
        agents: AgentService,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings | None = None,
        name: str = "marketplace",
        retry_wait: wait_base | None = None,
    ) -> None:
        settings = settings or get_settings()
        self.name = name
        self._ledger = ledger
        self._marketplace = marketplace
        self._agents = agents
        self._session_factory = session_factory

        self._start_block = settings.start_block
        self._interval = settings.poll_interval_seconds
        self._max_range = max(1, settings.indexer_max_block_range)
        self._timeout = settings.ledger_timeout_seconds
        self._max_attempts = max(1, settings.ledger_max_retries)
        self._max_event_attempts = max(1, settings.indexer_max_event_attempts)
        self._retry_wait = retry_wait or wait_exponential(multiplier=0.5, min=0.5, max=5)

        self.last_processed_block: int | None = None
        self._indexing = False
        self._wake = asyncio.Event()
        self._task: asyncio.Task | None = None
        self._event_failures: dict[tuple[str, str, int], int] = {}

        self._handlers: dict[ChainEventKind, Callable[[ChainEvent], Awaitable[Any]]] = {
            ChainEventKind.ITEM_LISTED: self._on_item_listed,
            ChainEventKind.PURCHASE_REQUESTED: self._on_purchase_requested,
            ChainEventKind.PURCHASE_CONFIRMED: self._on_purchase_confirmed,
            ChainEventKind.FUNDS_RELEASED: self._on_funds_released,
            ChainEventKind.REPUTATION_UPDATED: self._on_reputation_updated,
        }

    @property
    def is_indexing(self) -> bool:
        return self._indexing

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Load the persisted watermark and schedule the polling loop.

        A loop that is still winding down after stop() is joined first, so at
        most one loop runs at a time.
        """
        if self._indexing:
            logger.warning("indexer.already_running", name=self.name)
            return
        if self._task is not None and not self._task.done():
            await self.join()

        await self.load_watermark()
        self._indexing = True
        self._wake.clear()
        self._task = asyncio.create_task(self._run(), name=f"chain-indexer-{self.name}")
        logger.info(
            "indexer.started",
            name=self.name,
            from_block=self.last_processed_block,
            interval_seconds=self._interval,
        )

    async def stop(self) -> None:
        """Stop scheduling ticks. An in-flight tick is allowed to finish."""
        if not self._indexing:
            return
        self._indexing = False
        self._wake.set()
        logger.info("indexer.stopping", name=self.name)

    async def join(self) -> None:
        """Wait for the polling loop to exit after stop()."""
        if self._task is not None:
            await self._task
            self._task = None

    async def load_watermark(self) -> int:
        async with self._session_factory() as session:
            stored = await CursorRepository(session).get(self.name)
        self.last_processed_block = stored if stored is not None else self._start_block
        return self.last_processed_block

    async def _run(self) -> None:
        while self._indexing:
            try:
                await self.tick()
            except Exception:
                logger.exception("indexer.tick_crashed", name=self.name)

            if not self._indexing:
                break
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=self._interval)
            except TimeoutError:
                pass

        logger.info("indexer.stopped", name=self.name, last_block=self.last_processed_block)

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    async def tick(self) -> int:
        """Process every block between the watermark and the chain head.

        Returns the number of events applied. Never raises for ledger or
        handler failures; those are logged and the range is retried later.
        """
        if self.last_processed_block is None:
            await self.load_watermark()

        try:
            head = await self._ledger_call("current_height", self._ledger.current_height)
        except Exception as exc:
            logger.warning("indexer.head_unavailable", name=self.name, error=str(exc))
            return 0

        applied = 0
        from_block = self.last_processed_block + 1
        while from_block <= head:
            to_block = min(head, from_block + self._max_range - 1)
            try:
                applied += await self._process_range(from_block, to_block)
                await self._save_watermark(to_block)
            except Exception as exc:
                logger.error(
                    "indexer.batch_failed",
                    name=self.name,
                    from_block=from_block,
                    to_block=to_block,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                break
            self.last_processed_block = to_block
            from_block = to_block + 1

        if applied:
            logger.info(
                "indexer.tick_completed",
                name=self.name,
                events=applied,
                last_block=self.last_processed_block,
            )
        return applied

    async def _process_range(self, from_block: int, to_block: int) -> int:
        batches: list[list[ChainEvent]] = []
        for kind in ChainEventKind:
            events = await self._ledger_call(
                "query_events",
                lambda kind=kind: self._ledger.query_events(kind, from_block, to_block),
            )
            batches.append(events)

        applied = 0
        for events in batches:
            for event in events:
                if await self._apply(event):
                    applied += 1
        return applied

    async def _apply(self, event: ChainEvent) -> bool:
        """Run the handler for one event.

        A failing event fails its batch so the range is retried. After
        `indexer_max_event_attempts` failures of the same event it is logged
        and skipped, so one bad event cannot hold the watermark back forever.
        Returns True when the handler succeeded.
        """
        key = (event.kind.value, event.tx_hash, event.log_index)
        try:
            await self._handlers[event.kind](event)
        except Exception as exc:
            failures = self._event_failures.get(key, 0) + 1
            if failures < self._max_event_attempts:
                self._event_failures[key] = failures
                raise
            self._event_failures.pop(key, None)
            logger.error(
                "indexer.event_skipped",
                name=self.name,
                kind=event.kind.value,
                block=event.block_number,
                tx_hash=event.tx_hash,
                log_index=event.log_index,
                attempts=failures,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return False
        self._event_failures.pop(key, None)
        return True

    async def _save_watermark(self, block: int) -> None:
        async with self._session_factory() as session, session.begin():
            await CursorRepository(session).save(self.name, block)

    async def _ledger_call(self, operation: str, call: Callable[[], Awaitable[Any]]) -> Any:
        """Run a ledger call with a timeout, retrying transient failures with backoff."""
        result = None
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self._max_attempts),
            wait=self._retry_wait,
            retry=retry_if_exception_type(Exception),
            before_sleep=self._log_retry(operation),
            reraise=True,
        ):
            with attempt:
                result = await asyncio.wait_for(call(), timeout=self._timeout)
        return result

    def _log_retry(self, operation: str) -> Callable[[RetryCallState], None]:
        def _before_sleep(retry_state: RetryCallState) -> None:
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            logger.warning(
                "indexer.ledger_retry",
                name=self.name,
                operation=operation,
                attempt=retry_state.attempt_number,
                error=repr(exc),
            )

        return _before_sleep

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------

    async def _on_item_listed(self, event: ChainEvent) -> None:
        args = event.args
        await self._marketplace.apply_item_listed(
            listing_id=int(args["listingId"]),
            seller=str(args["seller"]),
            price=str(args["price"]),
            payload=parse_item_data(args.get("itemData")),
            tx_hash=event.tx_hash,
        )

    async def _on_purchase_requested(self, event: ChainEvent) -> None:
        args = event.args
        await self._marketplace.apply_purchase_requested(
            listing_id=int(args["listingId"]),
            buyer=str(args["buyer"]),
            buyer_agent=str(args["agent"]),
            tx_hash=event.tx_hash,
        )

    async def _on_purchase_confirmed(self, event: ChainEvent) -> None:
        await self._marketplace.apply_purchase_confirmed(
            listing_id=int(event.args["listingId"]),
            tx_hash=event.tx_hash,
        )

    async def _on_funds_released(self, event: ChainEvent) -> None:
        await self._marketplace.apply_funds_released(
            listing_id=int(event.args["listingId"]),
            tx_hash=event.tx_hash,
        )

    async def _on_reputation_updated(self, event: ChainEvent) -> None:
        args = event.args
        await self._agents.apply_reputation_update(
            address=str(args["agent"]),
            new_reputation=int(args["newReputation"]),
        )
