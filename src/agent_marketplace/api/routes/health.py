"""Health check and API info endpoints.

Verifies database connectivity and reports indexer progress and the number
of connected WebSocket subscribers. Used by Docker healthchecks, load
balancers, and monitoring systems.
"""

from __future__ import annotations

import time
from datetime import UTC, datetime

from fastapi import APIRouter, Depends, Request

from agent_marketplace.api.deps import get_notification_hub
from agent_marketplace.infrastructure.database.engine import check_db
from agent_marketplace.logging_config import get_logger
from agent_marketplace.schemas.common import HealthResponse
from agent_marketplace.services.notifications import NotificationHub

router = APIRouter(tags=["Health"])
logger = get_logger(__name__)

_STARTED_AT = time.monotonic()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Returns the health status of the application and its dependencies.",
)
async def health_check(
    request: Request,
    hub: NotificationHub = Depends(get_notification_hub),
) -> HealthResponse:
    db_ok = await check_db()
    if not db_ok:
        logger.error("health.db_check_failed")

    indexer = getattr(request.app.state, "indexer", None)
    if indexer is None:
        indexer_status = "disabled"
        last_block = None
    else:
        indexer_status = "running" if indexer.is_indexing else "stopped"
        last_block = indexer.last_processed_block

    return HealthResponse(
        status="ok" if db_ok else "degraded",
        timestamp=datetime.now(UTC).isoformat(),
        uptime=round(time.monotonic() - _STARTED_AT, 3),
        database="healthy" if db_ok else "unhealthy",
        indexer=indexer_status,
        last_processed_block=last_block,
        websocket_connections=hub.client_count,
    )


@router.get("/", summary="API information")
async def api_info() -> dict:
    return {
        "name": "Agent Marketplace API",
        "version": "0.1.0",
        "description": "Backend API for AI agent marketplace with blockchain escrow",
        "endpoints": {
            "listings": {
                "POST /listings": "Create a new listing",
                "GET /listings": "Browse/search listings",
                "GET /listings/{id}": "Get listing details",
                "PATCH /listings/{id}": "Update listing status",
            },
            "agents": {
                "POST /agents/register": "Register a new agent",
                "GET /agents": "List agents",
                "GET /agents/{id}": "Get agent details",
                "GET /agents/{id}/reputation": "Get agent reputation",
            },
            "purchase": {
                "POST /purchase/request": "Request a purchase",
                "POST /purchase/confirm": "Confirm a purchase",
                "POST /purchase/release": "Release escrowed funds",
                "POST /purchase/cancel": "Cancel an unconfirmed purchase",
                "POST /purchase/dispute": "Dispute a confirmed purchase",
                "GET /purchase/transactions": "Transaction history",
                "GET /purchase/transactions/{listingId}": "Latest transaction for a listing",
            },
            "system": {
                "GET /health": "Health check",
                "GET /": "API information",
                "WS /ws": "Live marketplace notifications",
            },
        },
    }
