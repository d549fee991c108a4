"""FastAPI application entry point for the Agent Marketplace.

Lifecycle:
    1. Startup: Initialize logging and the database, connect the ledger
       reader and start the chain indexer (when a contract is configured).
    2. Running: Serve REST API, WebSocket notifications and MCP tools on a
       single Uvicorn process, with the indexer polling in the background.
    3. Shutdown: Stop the indexer (letting an in-flight tick finish), close
       the ledger connection and the database.

The MCP server is mounted at /mcp so AI agents can discover tools
alongside the REST API.

Run with:
    uv run uvicorn agent_marketplace.main:app --reload --host 0.0.0.0 --port 3000
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI

from agent_marketplace.config import get_settings
from agent_marketplace.logging_config import get_logger, setup_logging

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator


async def _start_indexer(app: FastAPI) -> None:
    """Connect the ledger reader and start polling.

    Failures leave the API running. If only the indexer fails to start, the
    reader stays registered for reputation lookups.
    """
    from agent_marketplace.api.deps import get_listing_locks, get_notification_hub, set_ledger
    from agent_marketplace.infrastructure.database.engine import get_session_factory
    from agent_marketplace.infrastructure.ledger.web3_reader import Web3LedgerReader
    from agent_marketplace.orchestration.chain_indexer import ChainIndexer
    from agent_marketplace.services.agent_service import AgentService
    from agent_marketplace.services.marketplace_service import MarketplaceService

    logger = get_logger(__name__)
    factory = get_session_factory()
    hub = get_notification_hub()

    try:
        ledger = Web3LedgerReader.from_settings()
    except Exception as exc:
        logger.error("app.ledger_unavailable", error=str(exc))
        return

    # Reputation lookups work without the indexer; shutdown closes the reader.
    set_ledger(ledger)
    app.state.ledger = ledger

    try:
        indexer = ChainIndexer(
            ledger=ledger,
            marketplace=MarketplaceService(factory, notifier=hub, locks=get_listing_locks()),
            agents=AgentService(factory, ledger=ledger, notifier=hub),
            session_factory=factory,
        )
        await indexer.start()
    except Exception as exc:
        logger.error("app.indexer_unavailable", error=str(exc))
        return

    app.state.indexer = indexer


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown lifecycle."""
    settings = get_settings()

    # 1. Setup structured logging
    setup_logging(
        log_level=settings.app_log_level,
        json_logs=not settings.is_development,
    )
    logger = get_logger(__name__)
    logger.info(
        "app.starting",
        env=settings.app_env,
        debug=settings.app_debug,
    )

    # 2. Initialize database
    from agent_marketplace.infrastructure.database.engine import close_db, init_db

    await init_db()

    # 3. Ledger reader + chain indexer
    if settings.indexer_enabled:
        await _start_indexer(app)
    else:
        logger.warning("app.indexer_disabled", reason="CONTRACT_ADDRESS not configured")

    logger.info("app.started", host=settings.app_host, port=settings.app_port)

    yield

    # Shutdown
    logger.info("app.shutting_down")
    indexer = app.state.indexer
    if indexer is not None:
        await indexer.stop()
        await indexer.join()
    ledger = app.state.ledger
    if ledger is not None:
        from agent_marketplace.api.deps import set_ledger

        set_ledger(None)
        await ledger.close()
    await close_db()
    logger.info("app.stopped")


def create_app() -> FastAPI:
    """Application factory — creates and configures the FastAPI app."""
    settings = get_settings()

    app = FastAPI(
        title="Agent Marketplace",
        description=(
            "Marketplace backend for AI agents: listings, escrowed purchases "
            "and reputation mirrored from the marketplace contract."
        ),
        version="0.1.0",
        lifespan=lifespan,
        debug=settings.app_debug,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )
    app.state.ledger = None
    app.state.indexer = None

    # --- Middleware ---
    from agent_marketplace.api.middleware import setup_middleware

    setup_middleware(app)

    # --- REST API Routes ---
    from agent_marketplace.api.routes.agents import router as agents_router
    from agent_marketplace.api.routes.health import router as health_router
    from agent_marketplace.api.routes.listings import router as listings_router
    from agent_marketplace.api.routes.purchase import router as purchase_router

    app.include_router(health_router)
    app.include_router(listings_router)
    app.include_router(agents_router)
    app.include_router(purchase_router)

    # --- WebSocket notifications ---
    if settings.ws_enabled:
        from agent_marketplace.api.routes.ws import router as ws_router

        app.include_router(ws_router)

    # --- MCP Server (mounted as sub-application) ---
    from agent_marketplace.mcp_server.tools import mcp

    mcp_app = mcp.sse_app()
    app.mount("/mcp", mcp_app)

    return app


# The app instance used by Uvicorn
app = create_app()
