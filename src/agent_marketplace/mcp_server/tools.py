"""MCP Tool definitions for the Agent Marketplace.

These tools expose the marketplace via the Model Context Protocol so AI
agents can list items, buy them and check reputation programmatically.

Tools:
    - list_item: Record a new listing
    - browse_listings: Search listings
    - get_listing: Listing details
    - request_purchase / confirm_purchase / release_funds: Purchase flow
    - cancel_purchase: Cancel an unconfirmed purchase
    - register_agent: Register an agent
    - get_reputation: Agent reputation, synced from chain

The MCP server is mounted into FastAPI at /mcp via app.mount().
No FastAPI Depends is available here, so each tool builds its service from
the same process-wide session factory, notification hub, listing locks and
ledger reader that the REST routes use.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from mcp.server.fastmcp import FastMCP
from pydantic import ValidationError

from agent_marketplace.domain.enums import ListingStatus
from agent_marketplace.domain.exceptions import MarketplaceError
from agent_marketplace.logging_config import get_logger
from agent_marketplace.schemas.agent import AgentReputationResponse, AgentResponse, RegisterAgentRequest
from agent_marketplace.schemas.common import dump_snapshot
from agent_marketplace.schemas.listing import CreateListingRequest, ListingResponse
from agent_marketplace.schemas.transaction import PurchaseRequest, TransactionResponse

logger = get_logger(__name__)

# Initialize the MCP server
# This will be mounted into the FastAPI app in main.py
mcp = FastMCP(
    "Agent Marketplace",
    json_response=True,
)


def _marketplace():  # noqa: ANN202
    from agent_marketplace.api.deps import (
        get_db_session_factory,
        get_listing_locks,
        get_notification_hub,
    )
    from agent_marketplace.services.marketplace_service import MarketplaceService

    return MarketplaceService(
        get_db_session_factory(),
        notifier=get_notification_hub(),
        locks=get_listing_locks(),
    )


def _agents():  # noqa: ANN202
    from agent_marketplace.api.deps import (
        get_db_session_factory,
        get_ledger,
        get_notification_hub,
    )
    from agent_marketplace.services.agent_service import AgentService

    return AgentService(
        get_db_session_factory(),
        ledger=get_ledger(),
        notifier=get_notification_hub(),
    )


def _failure(tool: str, exc: Exception) -> dict[str, Any]:
    if isinstance(exc, MarketplaceError):
        logger.info(f"mcp.{tool}.rejected", code=exc.code, message=exc.message)
        return {"error": exc.code, "message": exc.message}
    if isinstance(exc, ValidationError):
        return {"error": "VALIDATION_ERROR", "message": str(exc)}
    logger.exception(f"mcp.{tool}.error")
    return {"error": str(exc)}


@mcp.tool()
async def list_item(
    listing_id: int,
    seller: str,
    seller_agent: str,
    title: str,
    description: str,
    price: str,
    category: str,
    tx_hash: str,
    location: str = "",
    images: list[str] | None = None,
) -> dict:
    """Record a listing that was created on the marketplace contract.

    Args:
        listing_id: On-chain listing ID.
        seller: Seller EVM wallet address (0x-prefixed, 42 chars).
        seller_agent: Agent ID of the selling agent.
        title: Item title.
        description: Item description.
        price: Price in wei as a decimal string.
        category: Item category.
        tx_hash: Hash of the listing transaction.
        location: Optional pickup location.
        images: Optional list of image URLs.

    Returns:
        The stored listing.
    """
    try:
        request = CreateListingRequest(
            listing_id=listing_id,
            seller=seller,
            seller_agent=seller_agent,
            title=title,
            description=description,
            price=price,
            category=category,
            tx_hash=tx_hash,
            location=location or None,
            images=images or [],
        )
        listing = await _marketplace().create_listing(
            listing_id=request.listing_id,
            seller=request.seller,
            seller_agent=request.seller_agent,
            title=request.title,
            description=request.description,
            price=request.price,
            category=request.category,
            tx_hash=request.tx_hash,
            location=request.location,
            images=request.images,
        )
        return {
            "listing": dump_snapshot(ListingResponse, listing),
            "message": "Listing created. Buyers can now request a purchase.",
        }
    except Exception as exc:
        return _failure("list_item", exc)


@mcp.tool()
async def browse_listings(
    status: str = "active",
    category: str = "",
    search: str = "",
    min_price: str = "",
    max_price: str = "",
    page: int = 1,
    limit: int = 20,
) -> dict:
    """Search marketplace listings, newest first.

    Args:
        status: One of 'active', 'pending', 'sold', 'cancelled'.
        category: Exact category to filter on.
        search: Case-insensitive text matched against title and description.
        min_price: Minimum price in wei.
        max_price: Maximum price in wei.
        page: Page number, starting at 1.
        limit: Page size (max 100).
    """
    from agent_marketplace.services.marketplace_service import ListingFilters

    try:
        filters = ListingFilters(
            status=ListingStatus(status),
            category=category or None,
            search=search or None,
            min_price=Decimal(min_price) if min_price else None,
            max_price=Decimal(max_price) if max_price else None,
        )
        page = max(page, 1)
        limit = min(max(limit, 1), 100)
        listings, pagination = await _marketplace().search_listings(
            filters, page=page, limit=limit
        )
        return {
            "listings": [dump_snapshot(ListingResponse, item) for item in listings],
            "pagination": pagination.model_dump(),
        }
    except Exception as exc:
        return _failure("browse_listings", exc)


@mcp.tool()
async def get_listing(listing_id: int) -> dict:
    """Get a listing by its on-chain listing ID."""
    try:
        listing = await _marketplace().get_listing(listing_id)
        return {"listing": dump_snapshot(ListingResponse, listing)}
    except Exception as exc:
        return _failure("get_listing", exc)


@mcp.tool()
async def request_purchase(
    listing_id: int,
    buyer: str,
    buyer_agent: str,
    tx_hash: str,
) -> dict:
    """Request to buy an active listing.

    Args:
        listing_id: On-chain listing ID.
        buyer: Your EVM wallet address (must differ from the seller).
        buyer_agent: Your agent ID.
        tx_hash: Hash of the purchase request transaction.

    Returns:
        The requested transaction. The seller confirms next.
    """
    try:
        request = PurchaseRequest(
            listing_id=listing_id,
            buyer=buyer,
            buyer_agent=buyer_agent,
            tx_hash=tx_hash,
        )
        transaction = await _marketplace().request_purchase(
            listing_id=request.listing_id,
            buyer=request.buyer,
            buyer_agent=request.buyer_agent,
            tx_hash=request.tx_hash,
        )
        return {
            "transaction": dump_snapshot(TransactionResponse, transaction),
            "message": "Purchase request created. Waiting for seller confirmation.",
        }
    except Exception as exc:
        return _failure("request_purchase", exc)


@mcp.tool()
async def confirm_purchase(listing_id: int, tx_hash: str) -> dict:
    """Confirm the requested purchase of a listing (seller side).

    Args:
        listing_id: On-chain listing ID.
        tx_hash: Hash of the confirmation transaction.
    """
    try:
        transaction = await _marketplace().confirm_purchase(listing_id, tx_hash)
        return {
            "transaction": dump_snapshot(TransactionResponse, transaction),
            "message": "Purchase confirmed. Funds are held in escrow.",
        }
    except Exception as exc:
        return _failure("confirm_purchase", exc)


@mcp.tool()
async def release_funds(listing_id: int, tx_hash: str) -> dict:
    """Release escrowed funds to the seller and mark the listing sold.

    Args:
        listing_id: On-chain listing ID.
        tx_hash: Hash of the release transaction.
    """
    try:
        transaction = await _marketplace().release_funds(listing_id, tx_hash)
        return {
            "transaction": dump_snapshot(TransactionResponse, transaction),
            "message": "Funds released. Transaction completed.",
        }
    except Exception as exc:
        return _failure("release_funds", exc)


@mcp.tool()
async def cancel_purchase(listing_id: int, reason: str = "") -> dict:
    """Cancel a purchase that the seller has not confirmed yet. The listing reopens."""
    try:
        transaction = await _marketplace().cancel_purchase(listing_id, reason or None)
        return {
            "transaction": dump_snapshot(TransactionResponse, transaction),
            "message": "Purchase cancelled. The listing is active again.",
        }
    except Exception as exc:
        return _failure("cancel_purchase", exc)


@mcp.tool()
async def register_agent(
    agent_id: str,
    address: str,
    name: str,
    owner: str,
    description: str = "",
) -> dict:
    """Register an agent with the marketplace.

    Args:
        agent_id: Unique agent ID.
        address: Agent EVM wallet address.
        name: Display name.
        owner: Owner of the agent.
        description: Optional description.

    Returns:
        The registered agent, with reputation seeded from chain when reachable.
    """
    try:
        request = RegisterAgentRequest(
            agent_id=agent_id,
            address=address,
            name=name,
            owner=owner,
            description=description or None,
        )
        agent = await _agents().register_agent(
            agent_id=request.agent_id,
            address=request.address,
            name=request.name,
            owner=request.owner,
            description=request.description,
        )
        return {"agent": dump_snapshot(AgentResponse, agent)}
    except Exception as exc:
        return _failure("register_agent", exc)


@mcp.tool()
async def get_reputation(identifier: str) -> dict:
    """Get an agent's reputation by agent ID or wallet address.

    The value is refreshed from the marketplace contract when the ledger is
    reachable; otherwise the cached value is returned.
    """
    try:
        agent = await _agents().sync_reputation(identifier)
        return {"agent": dump_snapshot(AgentReputationResponse, agent)}
    except Exception as exc:
        return _failure("get_reputation", exc)
