"""Tests for the ChainIndexer polling loop and its event handlers."""

from __future__ import annotations

import asyncio
import json

import pytest
from sqlalchemy import func, select
from tenacity import wait_none

from agent_marketplace.config import Settings
from agent_marketplace.domain.enums import ChainEventKind, ListingStatus, TransactionStatus
from agent_marketplace.infrastructure.database.orm_models import Agent, Listing, Transaction
from agent_marketplace.orchestration.chain_indexer import ChainIndexer, parse_item_data

SELLER = "0x00000000000000000000000000000000000000aa"
BUYER = "0x00000000000000000000000000000000000000bb"


def _list_item(ledger, listing_id: int = 7, **payload) -> None:
    item = {"title": "X", "agentId": "seller-agent", **payload}
    ledger.emit(
        ChainEventKind.ITEM_LISTED,
        listingId=listing_id,
        seller=SELLER,
        price=100,
        itemData=json.dumps(item),
    )


async def _count(session_factory, model, *criteria) -> int:
    async with session_factory() as session:
        return await session.scalar(select(func.count()).select_from(model).where(*criteria))


class TestParseItemData:
    def test_json_object(self) -> None:
        assert parse_item_data('{"title": "X"}') == {"title": "X"}

    def test_invalid_json_is_kept_raw(self) -> None:
        assert parse_item_data("not json") == {"raw": "not json"}

    def test_non_object_json_is_kept_raw(self) -> None:
        assert parse_item_data("[1, 2]") == {"raw": "[1, 2]"}

    def test_missing_data(self) -> None:
        assert parse_item_data(None) == {"raw": None}


class TestItemListed:
    @pytest.mark.asyncio
    async def test_item_listed_creates_listing(self, indexer, ledger, marketplace) -> None:
        """A listed item appears as an active listing with its parsed item data."""
        ledger.emit(
            ChainEventKind.ITEM_LISTED,
            listingId=7,
            seller="0xAA",
            price=100,
            itemData='{"title":"X","agentId":"a1"}',
        )

        applied = await indexer.tick()

        assert applied == 1
        listing = await marketplace.get_listing(7)
        assert listing.status == ListingStatus.ACTIVE
        assert listing.title == "X"
        assert listing.seller_agent == "a1"
        assert listing.seller == "0xaa"
        assert listing.price == "100"

    @pytest.mark.asyncio
    async def test_defaults_for_unparseable_item_data(self, indexer, ledger, marketplace) -> None:
        ledger.emit(
            ChainEventKind.ITEM_LISTED,
            listingId=3,
            seller=SELLER,
            price=5,
            itemData="plain text",
        )
        await indexer.tick()

        listing = await marketplace.get_listing(3)
        assert listing.title == "Untitled"
        assert listing.seller_agent == "unknown"
        assert listing.category == "other"
        assert listing.description == ""
        assert listing.images == []
        assert listing.metadata_json == {"raw": "plain text"}

    @pytest.mark.asyncio
    async def test_replay_keeps_one_listing_with_last_payload(
        self, indexer, ledger, marketplace, session_factory
    ) -> None:
        _list_item(ledger, title="First")
        _list_item(ledger, title="Second", category="books")

        await indexer.tick()

        assert await _count(session_factory, Listing, Listing.listing_id == 7) == 1
        listing = await marketplace.get_listing(7)
        assert listing.title == "Second"
        assert listing.category == "books"

    @pytest.mark.asyncio
    async def test_chain_overwrites_api_listing(self, indexer, ledger, marketplace, listing_data) -> None:
        await marketplace.create_listing(**listing_data)
        _list_item(ledger, title="From chain")

        await indexer.tick()

        assert (await marketplace.get_listing(7)).title == "From chain"


class TestPurchaseEvents:
    @pytest.mark.asyncio
    async def test_full_chain_purchase(
        self, indexer, ledger, marketplace, agents, registered_agents, subscriber
    ) -> None:
        _list_item(ledger)
        ledger.emit(ChainEventKind.PURCHASE_REQUESTED, listingId=7, buyer=BUYER, agent="buyer-agent")
        ledger.emit(ChainEventKind.PURCHASE_CONFIRMED, listingId=7)
        ledger.emit(ChainEventKind.FUNDS_RELEASED, listingId=7)

        applied = await indexer.tick()

        assert applied == 4
        listing = await marketplace.get_listing(7)
        assert listing.status == ListingStatus.SOLD
        assert listing.buyer == BUYER

        tx = await marketplace.latest_transaction(7)
        assert tx.status == TransactionStatus.COMPLETED
        assert tx.request_tx_hash and tx.confirm_tx_hash and tx.release_tx_hash

        seller = await agents.get_agent("seller-agent")
        buyer = await agents.get_agent("buyer-agent")
        assert seller.successful_trades == 1
        assert buyer.successful_trades == 1
        assert subscriber.types == [
            "listing_created",
            "purchase_requested",
            "purchase_confirmed",
            "funds_released",
        ]

    @pytest.mark.asyncio
    async def test_replayed_range_does_not_double_count(
        self, indexer, ledger, marketplace, agents, registered_agents, session_factory
    ) -> None:
        _list_item(ledger)
        ledger.emit(ChainEventKind.PURCHASE_REQUESTED, listingId=7, buyer=BUYER, agent="buyer-agent")
        ledger.emit(ChainEventKind.PURCHASE_CONFIRMED, listingId=7)
        ledger.emit(ChainEventKind.FUNDS_RELEASED, listingId=7)
        await indexer.tick()

        indexer.last_processed_block = 0
        await indexer.tick()

        assert await _count(session_factory, Transaction, Transaction.listing_id == 7) == 1
        assert (await marketplace.get_listing(7)).status == ListingStatus.SOLD
        assert (await agents.get_agent("seller-agent")).successful_trades == 1
        assert (await agents.get_agent("buyer-agent")).total_purchases == 1

    @pytest.mark.asyncio
    async def test_request_after_api_request_is_not_duplicated(
        self, indexer, ledger, marketplace, listing_data, session_factory
    ) -> None:
        await marketplace.create_listing(**listing_data)
        await marketplace.request_purchase(7, BUYER, "buyer-agent", "0xapi")
        ledger.emit(ChainEventKind.PURCHASE_REQUESTED, listingId=7, buyer=BUYER, agent="buyer-agent")

        await indexer.tick()

        assert await _count(session_factory, Transaction, Transaction.listing_id == 7) == 1
        assert (await marketplace.get_listing(7)).status == ListingStatus.PENDING

    @pytest.mark.asyncio
    async def test_events_for_missing_listing_are_skipped(
        self, indexer, ledger, session_factory
    ) -> None:
        ledger.emit(ChainEventKind.PURCHASE_REQUESTED, listingId=42, buyer=BUYER, agent="b")
        ledger.emit(ChainEventKind.PURCHASE_CONFIRMED, listingId=42)
        ledger.emit(ChainEventKind.FUNDS_RELEASED, listingId=42)

        applied = await indexer.tick()

        assert applied == 3
        assert indexer.last_processed_block == ledger.height
        assert await _count(session_factory, Transaction) == 0

    @pytest.mark.asyncio
    async def test_release_without_mirrored_purchase_marks_sold(
        self, indexer, ledger, marketplace
    ) -> None:
        _list_item(ledger)
        ledger.emit(ChainEventKind.FUNDS_RELEASED, listingId=7)

        await indexer.tick()

        assert (await marketplace.get_listing(7)).status == ListingStatus.SOLD


class TestReputationEvents:
    @pytest.mark.asyncio
    async def test_updates_known_agent(self, indexer, ledger, agents, registered_agents) -> None:
        ledger.emit(ChainEventKind.REPUTATION_UPDATED, agent=BUYER, change=5, newReputation=105)

        await indexer.tick()

        assert (await agents.get_agent("buyer-agent")).reputation == 105

    @pytest.mark.asyncio
    async def test_unknown_agent_creates_nothing(self, indexer, ledger, session_factory) -> None:
        """A reputation change for an unregistered address creates no agent."""
        ledger.emit(
            ChainEventKind.REPUTATION_UPDATED,
            agent="0x00000000000000000000000000000000000000ee",
            change=-3,
            newReputation=97,
        )

        applied = await indexer.tick()

        assert applied == 1
        assert await _count(session_factory, Agent) == 0

    @pytest.mark.asyncio
    async def test_large_reputation_does_not_hold_back_later_events(
        self, indexer, ledger, agents, marketplace, registered_agents
    ) -> None:
        ledger.emit(ChainEventKind.REPUTATION_UPDATED, agent=BUYER, change=1, newReputation=2**64)
        _list_item(ledger, listing_id=9)

        await indexer.tick()

        assert indexer.last_processed_block == 2
        assert (await agents.get_agent("buyer-agent")).reputation == 2**64
        assert (await marketplace.get_listing(9)).status == ListingStatus.ACTIVE


class TestWatermark:
    @pytest.mark.asyncio
    async def test_failing_event_is_skipped_after_max_attempts(
        self, indexer, ledger, agents, marketplace, monkeypatch
    ) -> None:
        async def broken(address: str, new_reputation: int) -> None:
            raise RuntimeError("cannot store reputation")

        monkeypatch.setattr(agents, "apply_reputation_update", broken)
        ledger.emit(ChainEventKind.REPUTATION_UPDATED, agent=BUYER, change=1, newReputation=1)
        _list_item(ledger, listing_id=9)

        await indexer.tick()
        await indexer.tick()
        assert indexer.last_processed_block == 0

        await indexer.tick()
        assert indexer.last_processed_block == 2
        assert (await marketplace.get_listing(9)).status == ListingStatus.ACTIVE

        ledger.emit(ChainEventKind.REPUTATION_UPDATED, agent=BUYER, change=1, newReputation=2)
        await indexer.tick()
        assert indexer.last_processed_block == 2

    @pytest.mark.asyncio
    async def test_ledger_failure_keeps_watermark(self, indexer, ledger, marketplace) -> None:
        """The failed range is fetched again on the next tick."""
        _list_item(ledger)
        ledger.fail_next("query_events", times=2)

        assert await indexer.tick() == 0
        assert indexer.last_processed_block == 0

        assert await indexer.tick() == 1
        assert indexer.last_processed_block == 1
        assert (await marketplace.get_listing(7)).title == "X"

    @pytest.mark.asyncio
    async def test_head_failure_keeps_watermark(self, indexer, ledger) -> None:
        _list_item(ledger)
        ledger.reachable = False

        assert await indexer.tick() == 0
        assert indexer.last_processed_block == 0

    @pytest.mark.asyncio
    async def test_transient_failure_is_retried_within_tick(self, indexer, ledger) -> None:
        _list_item(ledger)
        ledger.fail_next("current_height")

        assert await indexer.tick() == 1
        assert indexer.last_processed_block == 1

    @pytest.mark.asyncio
    async def test_slow_ledger_times_out(self, indexer, ledger) -> None:
        _list_item(ledger)
        ledger.delay = 1.0

        assert await indexer.tick() == 0
        assert indexer.last_processed_block == 0

    @pytest.mark.asyncio
    async def test_watermark_survives_restart(
        self, indexer, ledger, marketplace, agents, session_factory, indexer_settings
    ) -> None:
        _list_item(ledger)
        ledger.mine(4)
        await indexer.tick()
        assert indexer.last_processed_block == 5

        restarted = ChainIndexer(
            ledger=ledger,
            marketplace=marketplace,
            agents=agents,
            session_factory=session_factory,
            settings=indexer_settings,
            retry_wait=wait_none(),
        )
        assert await restarted.load_watermark() == 5

        ledger.calls.clear()
        assert await restarted.tick() == 0
        assert [name for name, _ in ledger.calls] == ["current_height"]

    @pytest.mark.asyncio
    async def test_start_block_used_without_stored_watermark(
        self, ledger, marketplace, agents, session_factory
    ) -> None:
        indexer = ChainIndexer(
            ledger=ledger,
            marketplace=marketplace,
            agents=agents,
            session_factory=session_factory,
            settings=Settings(start_block=10),
            retry_wait=wait_none(),
        )
        assert await indexer.load_watermark() == 10

    @pytest.mark.asyncio
    async def test_ranges_are_batched(self, ledger, marketplace, agents, session_factory) -> None:
        indexer = ChainIndexer(
            ledger=ledger,
            marketplace=marketplace,
            agents=agents,
            session_factory=session_factory,
            settings=Settings(indexer_max_block_range=2),
            retry_wait=wait_none(),
        )
        ledger.mine(5)

        await indexer.tick()

        ranges = sorted(
            {(start, end) for name, (_, start, end) in _query_calls(ledger)}
        )
        assert ranges == [(1, 2), (3, 4), (5, 5)]
        assert indexer.last_processed_block == 5

    @pytest.mark.asyncio
    async def test_failed_batch_keeps_earlier_batches(
        self, ledger, marketplace, agents, session_factory
    ) -> None:
        indexer = ChainIndexer(
            ledger=ledger,
            marketplace=marketplace,
            agents=agents,
            session_factory=session_factory,
            settings=Settings(indexer_max_block_range=2, ledger_max_retries=1),
            retry_wait=wait_none(),
        )
        ledger.mine(4)
        # Five queries per batch: the sixth call is the first query of batch two.
        original = ledger.query_events
        calls = {"n": 0}

        async def flaky(kind, from_height, to_height):
            calls["n"] += 1
            if calls["n"] == 6:
                raise ConnectionError("node went away")
            return await original(kind, from_height, to_height)

        ledger.query_events = flaky

        await indexer.tick()

        assert indexer.last_processed_block == 2


def _query_calls(ledger):
    return [(name, detail) for name, detail in ledger.calls if name == "query_events"]


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_and_stop(self, indexer, ledger, marketplace) -> None:
        _list_item(ledger)

        await indexer.start()
        assert indexer.is_indexing
        await asyncio.sleep(0.1)
        await indexer.stop()
        await indexer.join()

        assert not indexer.is_indexing
        assert indexer.last_processed_block == 1
        assert (await marketplace.get_listing(7)).title == "X"

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self, indexer) -> None:
        await indexer.start()
        first_task = indexer._task
        await indexer.start()
        assert indexer._task is first_task

        await indexer.stop()
        await indexer.join()

    @pytest.mark.asyncio
    async def test_restart_while_stopping_runs_one_loop(self, indexer, ledger) -> None:
        _list_item(ledger)
        ledger.delay = 0.05

        await indexer.start()
        await asyncio.sleep(0.02)
        await indexer.stop()
        old_task = indexer._task

        await indexer.start()
        assert old_task.done()
        assert indexer._task is not old_task
        assert indexer.is_indexing

        await indexer.stop()
        await indexer.join()
        assert indexer.last_processed_block == 1

    @pytest.mark.asyncio
    async def test_stop_lets_in_flight_tick_finish(self, indexer, ledger) -> None:
        _list_item(ledger)
        ledger.delay = 0.05

        await indexer.start()
        await asyncio.sleep(0.02)
        await indexer.stop()
        await indexer.join()

        assert indexer.last_processed_block == 1

    @pytest.mark.asyncio
    async def test_stop_when_not_running(self, indexer) -> None:
        await indexer.stop()
        await indexer.join()
        assert not indexer.is_indexing
