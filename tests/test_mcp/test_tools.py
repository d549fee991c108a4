"""Tests for the MCP tool surface.

The tools are plain coroutines under the FastMCP decorator, so they are
called directly with the process-wide dependencies pointed at the test
database, hub and ledger.
"""

from __future__ import annotations

import pytest

from agent_marketplace.mcp_server import tools

SELLER = "0x00000000000000000000000000000000000000aa"
BUYER = "0x00000000000000000000000000000000000000bb"


@pytest.fixture(autouse=True)
def wired_dependencies(monkeypatch, session_factory, hub, locks, ledger) -> None:
    from agent_marketplace.api import deps

    monkeypatch.setattr(deps, "get_db_session_factory", lambda: session_factory)
    monkeypatch.setattr(deps, "get_notification_hub", lambda: hub)
    monkeypatch.setattr(deps, "get_listing_locks", lambda: locks)
    monkeypatch.setattr(deps, "get_ledger", lambda: ledger)


async def _list(listing_id: int = 1) -> dict:
    return await tools.list_item(
        listing_id=listing_id,
        seller=SELLER,
        seller_agent="seller-agent",
        title="Desk lamp",
        description="Warm light",
        price="2500",
        category="home",
        tx_hash="0xlist",
    )


class TestListingTools:
    @pytest.mark.asyncio
    async def test_list_and_browse(self, subscriber) -> None:
        created = await _list()
        assert created["listing"]["listingId"] == 1
        assert subscriber.types == ["listing_created"]

        page = await tools.browse_listings(category="home")
        assert [item["listingId"] for item in page["listings"]] == [1]
        assert page["pagination"]["total"] == 1

        fetched = await tools.get_listing(1)
        assert fetched["listing"]["title"] == "Desk lamp"

    @pytest.mark.asyncio
    async def test_errors_are_returned_not_raised(self) -> None:
        assert (await tools.get_listing(404))["error"] == "LISTING_NOT_FOUND"

        invalid = await tools.list_item(
            listing_id=2,
            seller="nope",
            seller_agent="a",
            title="t",
            description="d",
            price="1",
            category="c",
            tx_hash="0x",
        )
        assert invalid["error"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_bad_status_filter(self) -> None:
        result = await tools.browse_listings(status="archived")
        assert "error" in result


class TestPurchaseTools:
    @pytest.mark.asyncio
    async def test_purchase_flow(self) -> None:
        await _list()

        requested = await tools.request_purchase(1, BUYER, "buyer-agent", "0xreq")
        assert requested["transaction"]["status"] == "requested"

        again = await tools.request_purchase(1, BUYER, "buyer-agent", "0xreq2")
        assert again["error"] == "PURCHASE_IN_PROGRESS"

        await tools.confirm_purchase(1, "0xconf")
        released = await tools.release_funds(1, "0xrel")
        assert released["transaction"]["status"] == "completed"

    @pytest.mark.asyncio
    async def test_cancel(self) -> None:
        await _list()
        await tools.request_purchase(1, BUYER, "buyer-agent", "0xreq")

        cancelled = await tools.cancel_purchase(1, reason="no longer needed")
        assert cancelled["transaction"]["status"] == "cancelled"
        assert (await tools.get_listing(1))["listing"]["status"] == "active"


class TestAgentTools:
    @pytest.mark.asyncio
    async def test_register_and_reputation(self, ledger) -> None:
        ledger.set_reputation(BUYER, 111)
        registered = await tools.register_agent("buyer-agent", BUYER, "Buyer", owner="bob")
        assert registered["agent"]["reputation"] == 111

        ledger.set_reputation(BUYER, 90)
        reputation = await tools.get_reputation("buyer-agent")
        assert reputation["agent"]["reputation"] == 90

        duplicate = await tools.register_agent("buyer-agent", BUYER, "Buyer", owner="bob")
        assert duplicate["error"] == "AGENT_ALREADY_REGISTERED"
