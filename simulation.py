#!/usr/bin/env python3
"""Agent Marketplace — End-to-End Simulation.

Runs the marketplace against a throwaway SQLite database and a scripted
in-memory ledger, with two agents trading one item per scenario:

    Scenario 1: API-driven purchase
        - SellerBot lists an item, BuyerBot requests it
        - Seller confirms, buyer releases -> listing sold, counters bumped

    Scenario 2: Chain-driven purchase
        - The same flow, but every step is an event emitted on the ledger
          and mirrored by the chain indexer

    Scenario 3: Cancel and dispute
        - A requested purchase is cancelled (listing reopens)
        - A second purchase is confirmed and then disputed

Usage:
    uv run python simulation.py
    uv run python simulation.py --scenario 2
"""

from __future__ import annotations

import argparse
import asyncio
import json
import tempfile
import uuid
from pathlib import Path
from typing import Any

from starlette.websockets import WebSocketState

# ---------------------------------------------------------------------------
# Configure structured logging BEFORE importing app modules
# ---------------------------------------------------------------------------
from agent_marketplace.logging_config import get_logger, setup_logging

setup_logging(log_level="INFO", json_logs=False)
logger = get_logger("simulation")

from agent_marketplace.config import Settings  # noqa: E402
from agent_marketplace.domain.enums import ChainEventKind  # noqa: E402
from agent_marketplace.infrastructure.database.engine import (  # noqa: E402
    build_engine,
    build_session_factory,
    create_tables,
)
from agent_marketplace.infrastructure.ledger.memory import InMemoryLedger  # noqa: E402
from agent_marketplace.orchestration.chain_indexer import ChainIndexer  # noqa: E402
from agent_marketplace.services.agent_service import AgentService  # noqa: E402
from agent_marketplace.services.locks import KeyedLock  # noqa: E402
from agent_marketplace.services.marketplace_service import MarketplaceService  # noqa: E402
from agent_marketplace.services.notifications import NotificationHub  # noqa: E402

SELLER = "0x1111111111111111111111111111111111111111"
BUYER = "0x2222222222222222222222222222222222222222"


def fake_tx_hash() -> str:
    return "0x" + uuid.uuid4().hex + uuid.uuid4().hex


class PrintingSubscriber:
    """Stands in for a WebSocket client and prints every notification."""

    client_state = WebSocketState.CONNECTED
    application_state = WebSocketState.CONNECTED

    async def send_text(self, data: str) -> None:
        message = json.loads(data)
        print(f"  📣 {message['type']}")


class Marketplace:
    """Services wired against a fresh SQLite file and an in-memory ledger."""

    def __init__(self, workdir: Path) -> None:
        self.settings = Settings(
            database_url=f"sqlite+aiosqlite:///{workdir / 'simulation.db'}",
            poll_interval_ms=100,
        )
        self.engine = build_engine(self.settings.database_url)
        self.factory = build_session_factory(self.engine)
        self.ledger = InMemoryLedger()
        self.hub = NotificationHub()
        self.market = MarketplaceService(self.factory, notifier=self.hub, locks=KeyedLock())
        self.agents = AgentService(self.factory, ledger=self.ledger, notifier=self.hub)
        self.indexer = ChainIndexer(
            ledger=self.ledger,
            marketplace=self.market,
            agents=self.agents,
            session_factory=self.factory,
            settings=self.settings,
        )

    async def setup(self) -> None:
        await create_tables(self.engine)
        self.ledger.set_reputation(SELLER, 120)
        self.ledger.set_reputation(BUYER, 95)
        await self.agents.register_agent("seller-bot", SELLER, "SellerBot", owner="alice")
        await self.agents.register_agent("buyer-bot", BUYER, "BuyerBot", owner="bob")

    async def shutdown(self) -> None:
        await self.engine.dispose()


# ---------------------------------------------------------------------------
# Output helpers
# ---------------------------------------------------------------------------


def banner(text: str) -> None:
    width = 70
    print("\n" + "=" * width)
    print(f"  {text}")
    print("=" * width + "\n")


def section(text: str) -> None:
    print(f"\n--- {text} ---\n")


async def print_state(m: Marketplace, listing_id: int) -> None:
    listing = await m.market.get_listing(listing_id)
    print(f"  Listing #{listing_id}: {listing.status} (buyer: {listing.buyer or '-'})")
    try:
        tx = await m.market.latest_transaction(listing_id)
    except Exception:
        print("  Transaction: none")
    else:
        print(f"  Transaction: {tx.status} (release: {tx.release_tx_hash or '-'})")


async def print_agents(m: Marketplace) -> None:
    agents, _ = await m.agents.list_agents()
    for agent in agents:
        print(
            f"  {agent.name}: reputation={agent.reputation} "
            f"sales={agent.total_sales} purchases={agent.total_purchases} "
            f"trades={agent.successful_trades}"
        )


# ---------------------------------------------------------------------------
# Scenarios
# ---------------------------------------------------------------------------


async def scenario_1_api_purchase(m: Marketplace) -> None:
    banner("SCENARIO 1: API-driven purchase")

    section("Step 1: SellerBot lists a GPU")
    await m.market.create_listing(
        listing_id=1,
        seller=SELLER,
        seller_agent="seller-bot",
        title="RTX 4090",
        description="Barely used, original box",
        price="1500000000000000000",
        category="electronics",
        tx_hash=fake_tx_hash(),
    )
    await print_state(m, 1)

    section("Step 2: BuyerBot requests the purchase")
    await m.market.request_purchase(1, buyer=BUYER, buyer_agent="buyer-bot", tx_hash=fake_tx_hash())
    await print_state(m, 1)

    section("Step 3: Seller confirms, buyer releases escrow")
    await m.market.confirm_purchase(1, tx_hash=fake_tx_hash())
    await m.market.release_funds(1, tx_hash=fake_tx_hash())
    await print_state(m, 1)
    await print_agents(m)


async def scenario_2_chain_purchase(m: Marketplace) -> None:
    banner("SCENARIO 2: Chain-driven purchase")

    section("Step 1: ItemListed is emitted and indexed")
    item_data = {"title": "Vintage Camera", "category": "collectibles", "agentId": "seller-bot"}
    m.ledger.emit(
        ChainEventKind.ITEM_LISTED,
        listingId=2,
        seller=SELLER,
        price=250_000_000_000_000_000,
        itemData=json.dumps(item_data),
    )
    await m.indexer.tick()
    await print_state(m, 2)

    section("Step 2: Request, confirm and release happen on chain")
    m.ledger.emit(ChainEventKind.PURCHASE_REQUESTED, listingId=2, buyer=BUYER, agent="buyer-bot")
    m.ledger.emit(ChainEventKind.PURCHASE_CONFIRMED, listingId=2)
    m.ledger.emit(ChainEventKind.FUNDS_RELEASED, listingId=2)
    m.ledger.emit(ChainEventKind.REPUTATION_UPDATED, agent=BUYER, newReputation=101)
    applied = await m.indexer.tick()
    print(f"  Indexed {applied} events up to block {m.indexer.last_processed_block}")
    await print_state(m, 2)
    await print_agents(m)

    section("Step 3: Replaying the same blocks changes nothing")
    m.indexer.last_processed_block = 0
    await m.indexer.tick()
    await print_agents(m)


async def scenario_3_cancel_and_dispute(m: Marketplace) -> None:
    banner("SCENARIO 3: Cancel and dispute")

    await m.market.create_listing(
        listing_id=3,
        seller=SELLER,
        seller_agent="seller-bot",
        title="Mechanical Keyboard",
        description="Brown switches",
        price="80000000000000000",
        category="electronics",
        tx_hash=fake_tx_hash(),
    )

    section("Step 1: BuyerBot requests, then cancels")
    await m.market.request_purchase(3, buyer=BUYER, buyer_agent="buyer-bot", tx_hash=fake_tx_hash())
    await m.market.cancel_purchase(3, reason="Found a better deal")
    await print_state(m, 3)

    section("Step 2: BuyerBot buys again, seller confirms, buyer disputes")
    await m.market.request_purchase(3, buyer=BUYER, buyer_agent="buyer-bot", tx_hash=fake_tx_hash())
    await m.market.confirm_purchase(3, tx_hash=fake_tx_hash())
    tx = await m.market.raise_dispute(3, reason="Item arrived with a broken spacebar")
    print(f"  Dispute reason: {tx.metadata_json.get('disputeReason')}")
    await print_state(m, 3)


SCENARIOS: dict[int, Any] = {
    1: scenario_1_api_purchase,
    2: scenario_2_chain_purchase,
    3: scenario_3_cancel_and_dispute,
}


async def main(scenario: int | None) -> None:
    with tempfile.TemporaryDirectory() as workdir:
        m = Marketplace(Path(workdir))
        m.hub.register(PrintingSubscriber())
        await m.setup()
        try:
            for number, run in SCENARIOS.items():
                if scenario is None or scenario == number:
                    await run(m)
        finally:
            await m.shutdown()

    banner("SIMULATION COMPLETE")
    logger.info("simulation.finished", scenario=scenario or "all")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Agent Marketplace simulation")
    parser.add_argument("--scenario", type=int, choices=sorted(SCENARIOS), default=None)
    args = parser.parse_args()
    asyncio.run(main(args.scenario))
