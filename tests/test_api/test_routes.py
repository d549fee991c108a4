"""Tests for the REST routes, error mapping and the WebSocket endpoint."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest
from starlette.testclient import TestClient

SELLER = "0x00000000000000000000000000000000000000aa"
BUYER = "0x00000000000000000000000000000000000000bb"


def _listing_body(listing_id: int = 7, **overrides) -> dict:
    body = {
        "listingId": listing_id,
        "seller": SELLER,
        "sellerAgent": "seller-agent",
        "title": "Mechanical keyboard",
        "description": "Brown switches, barely used",
        "price": "1000000000000000000",
        "category": "electronics",
        "txHash": "0xlisting",
    }
    body.update(overrides)
    return body


class TestSystemRoutes:
    @pytest.mark.asyncio
    async def test_api_info(self, client) -> None:
        response = await client.get("/")
        assert response.status_code == 200
        assert response.json()["name"] == "Agent Marketplace API"

    @pytest.mark.asyncio
    async def test_health(self, client, subscriber) -> None:
        with patch("agent_marketplace.api.routes.health.check_db", new=AsyncMock(return_value=True)):
            response = await client.get("/health")

        body = response.json()
        assert response.status_code == 200
        assert body["status"] == "ok"
        assert body["database"] == "healthy"
        assert body["indexer"] == "disabled"
        assert body["websocketConnections"] == 1

    @pytest.mark.asyncio
    async def test_health_degraded(self, client) -> None:
        with patch("agent_marketplace.api.routes.health.check_db", new=AsyncMock(return_value=False)):
            response = await client.get("/health")
        assert response.json()["status"] == "degraded"

    @pytest.mark.asyncio
    async def test_request_id_header(self, client) -> None:
        response = await client.get("/", headers={"X-Request-ID": "abc-123"})
        assert response.headers["X-Request-ID"] == "abc-123"


class TestListingRoutes:
    @pytest.mark.asyncio
    async def test_create_and_get(self, client) -> None:
        created = await client.post("/listings", json=_listing_body())
        assert created.status_code == 201
        listing = created.json()["listing"]
        assert listing["listingId"] == 7
        assert listing["status"] == "active"
        assert listing["sellerAgent"] == "seller-agent"

        fetched = await client.get("/listings/7")
        assert fetched.status_code == 200
        assert fetched.json()["success"] is True

    @pytest.mark.asyncio
    async def test_duplicate_is_conflict(self, client) -> None:
        await client.post("/listings", json=_listing_body())
        response = await client.post("/listings", json=_listing_body())
        assert response.status_code == 409
        assert response.json()["error"] == "LISTING_ALREADY_EXISTS"

    @pytest.mark.asyncio
    async def test_validation_error(self, client) -> None:
        response = await client.post("/listings", json=_listing_body(seller="not-an-address"))
        body = response.json()
        assert response.status_code == 400
        assert body["error"] == "VALIDATION_ERROR"
        assert any(d["field"] == "seller" for d in body["details"])

    @pytest.mark.asyncio
    async def test_negative_price_rejected(self, client) -> None:
        response = await client.post("/listings", json=_listing_body(price="-1"))
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_missing_listing(self, client) -> None:
        response = await client.get("/listings/404")
        assert response.status_code == 404
        assert response.json() == {
            "error": "LISTING_NOT_FOUND",
            "message": "Listing not found: 404",
        }

    @pytest.mark.asyncio
    async def test_browse(self, client) -> None:
        await client.post("/listings", json=_listing_body(1, category="books", price="5"))
        await client.post("/listings", json=_listing_body(2, price="50"))

        response = await client.get("/listings", params={"category": "books"})
        body = response.json()
        assert [item["listingId"] for item in body["listings"]] == [1]
        assert body["pagination"] == {"page": 1, "limit": 20, "total": 1, "pages": 1}

        response = await client.get("/listings", params={"minPrice": "10"})
        assert [item["listingId"] for item in response.json()["listings"]] == [2]

    @pytest.mark.asyncio
    async def test_browse_reports_effective_page_size(self, client, monkeypatch) -> None:
        from agent_marketplace.config import get_settings

        monkeypatch.setattr(get_settings(), "max_page_size", 1)
        await client.post("/listings", json=_listing_body(1))
        await client.post("/listings", json=_listing_body(2))

        response = await client.get("/listings", params={"limit": 50})
        body = response.json()
        assert len(body["listings"]) == 1
        assert body["pagination"] == {"page": 1, "limit": 1, "total": 2, "pages": 2}

    @pytest.mark.asyncio
    async def test_browse_limit_is_capped(self, client) -> None:
        response = await client.get("/listings", params={"limit": 500})
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_patch_status(self, client) -> None:
        await client.post("/listings", json=_listing_body())

        response = await client.patch("/listings/7", json={"status": "cancelled"})
        assert response.status_code == 200
        assert response.json()["listing"]["status"] == "cancelled"

        response = await client.patch("/listings/7", json={"status": "active"})
        assert response.status_code == 409
        assert response.json()["error"] == "INVALID_STATE_TRANSITION"

    @pytest.mark.asyncio
    async def test_patch_requires_a_field(self, client) -> None:
        await client.post("/listings", json=_listing_body())
        response = await client.patch("/listings/7", json={})
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_patch_buyer_on_active_listing(self, client) -> None:
        await client.post("/listings", json=_listing_body())
        response = await client.patch("/listings/7", json={"buyer": BUYER})
        assert response.status_code == 400
        assert response.json()["error"] == "INVALID_LISTING_UPDATE"


class TestPurchaseRoutes:
    @pytest.mark.asyncio
    async def test_purchase_flow(self, client, registered_agents) -> None:
        await client.post("/listings", json=_listing_body())

        requested = await client.post(
            "/purchase/request",
            json={"listingId": 7, "buyer": BUYER, "buyerAgent": "buyer-agent", "txHash": "0xreq"},
        )
        assert requested.status_code == 201
        assert requested.json()["transaction"]["status"] == "requested"

        duplicate = await client.post(
            "/purchase/request",
            json={"listingId": 7, "buyer": BUYER, "buyerAgent": "buyer-agent", "txHash": "0xreq2"},
        )
        assert duplicate.status_code == 409
        assert duplicate.json()["error"] == "PURCHASE_IN_PROGRESS"

        confirmed = await client.post("/purchase/confirm", json={"listingId": 7, "txHash": "0xc"})
        assert confirmed.json()["transaction"]["confirmTxHash"] == "0xc"

        released = await client.post("/purchase/release", json={"listingId": 7, "txHash": "0xr"})
        transaction = released.json()["transaction"]
        assert transaction["status"] == "completed"
        assert transaction["releaseTxHash"] == "0xr"

        listing = (await client.get("/listings/7")).json()["listing"]
        assert listing["status"] == "sold"

        latest = await client.get("/purchase/transactions/7")
        assert latest.json()["transaction"]["id"] == transaction["id"]

        history = await client.get("/purchase/transactions", params={"status": "completed"})
        assert history.json()["pagination"]["total"] == 1

    @pytest.mark.asyncio
    async def test_self_purchase_is_bad_request(self, client) -> None:
        await client.post("/listings", json=_listing_body())
        response = await client.post(
            "/purchase/request",
            json={"listingId": 7, "buyer": SELLER, "buyerAgent": "x", "txHash": "0xreq"},
        )
        assert response.status_code == 400
        assert response.json()["error"] == "SELF_PURCHASE"

    @pytest.mark.asyncio
    async def test_confirm_without_request_is_not_found(self, client) -> None:
        await client.post("/listings", json=_listing_body())
        response = await client.post("/purchase/confirm", json={"listingId": 7, "txHash": "0xc"})
        assert response.status_code == 404
        assert response.json()["error"] == "TRANSACTION_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_cancel_and_dispute(self, client) -> None:
        await client.post("/listings", json=_listing_body())
        request_body = {"listingId": 7, "buyer": BUYER, "buyerAgent": "b", "txHash": "0x1"}

        await client.post("/purchase/request", json=request_body)
        cancelled = await client.post("/purchase/cancel", json={"listingId": 7})
        assert cancelled.json()["transaction"]["status"] == "cancelled"

        await client.post("/purchase/request", json={**request_body, "txHash": "0x2"})
        await client.post("/purchase/confirm", json={"listingId": 7, "txHash": "0xc"})

        too_short = await client.post("/purchase/dispute", json={"listingId": 7, "reason": "bad"})
        assert too_short.status_code == 400

        disputed = await client.post(
            "/purchase/dispute",
            json={"listingId": 7, "reason": "The item never arrived at all"},
        )
        transaction = disputed.json()["transaction"]
        assert transaction["status"] == "disputed"
        assert transaction["metadata"]["disputeReason"] == "The item never arrived at all"


class TestAgentRoutes:
    @pytest.mark.asyncio
    async def test_register_and_lookup(self, client, ledger) -> None:
        ledger.set_reputation(SELLER, 130)
        body = {"agentId": "a1", "address": SELLER, "name": "Alpha", "owner": "alice"}

        registered = await client.post("/agents/register", json=body)
        assert registered.status_code == 201
        assert registered.json()["agent"]["reputation"] == 130

        duplicate = await client.post("/agents/register", json=body)
        assert duplicate.status_code == 409

        by_address = await client.get(f"/agents/{SELLER}")
        assert by_address.json()["agent"]["agentId"] == "a1"

        listing = await client.get("/agents", params={"sortBy": "trades"})
        assert listing.json()["pagination"]["total"] == 1

    @pytest.mark.asyncio
    async def test_reputation_is_synced(self, client, ledger) -> None:
        ledger.set_reputation(SELLER, 100)
        await client.post(
            "/agents/register",
            json={"agentId": "a1", "address": SELLER, "name": "Alpha", "owner": "alice"},
        )
        ledger.set_reputation(SELLER, 160)

        response = await client.get("/agents/a1/reputation")
        body = response.json()["agent"]
        assert body["reputation"] == 160
        assert body["successfulTrades"] == 0

    @pytest.mark.asyncio
    async def test_unknown_agent(self, client) -> None:
        response = await client.get("/agents/ghost")
        assert response.status_code == 404
        assert response.json()["error"] == "AGENT_NOT_FOUND"


class TestWebSocket:
    def test_welcome_and_ping(self) -> None:
        from agent_marketplace.api.deps import get_notification_hub
        from agent_marketplace.main import create_app
        from agent_marketplace.services.notifications import NotificationHub

        hub = NotificationHub()
        app = create_app()
        app.dependency_overrides[get_notification_hub] = lambda: hub

        client = TestClient(app)
        with client.websocket_connect("/ws") as ws:
            welcome = ws.receive_json()
            assert welcome["type"] == "connected"
            assert hub.client_count == 1

            ws.send_text("not json")
            ws.send_json({"type": "ping"})
            pong = ws.receive_json()
            assert pong["type"] == "pong"
            assert isinstance(pong["timestamp"], int)

        assert hub.client_count == 0
