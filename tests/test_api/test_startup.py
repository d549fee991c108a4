"""Tests for the startup wiring of the ledger reader and chain indexer."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest
from fastapi import FastAPI

from agent_marketplace.api.deps import get_ledger, set_ledger
from agent_marketplace.infrastructure.ledger.web3_reader import Web3LedgerReader
from agent_marketplace.main import _start_indexer
from agent_marketplace.orchestration.chain_indexer import ChainIndexer


@pytest.fixture
def bare_app():
    app = FastAPI()
    app.state.ledger = None
    app.state.indexer = None
    yield app
    set_ledger(None)


class TestStartIndexer:
    @pytest.mark.asyncio
    async def test_indexer_failure_keeps_reader_registered(
        self, bare_app, ledger, session_factory
    ) -> None:
        with (
            patch.object(Web3LedgerReader, "from_settings", return_value=ledger),
            patch(
                "agent_marketplace.infrastructure.database.engine.get_session_factory",
                return_value=session_factory,
            ),
            patch.object(
                ChainIndexer,
                "start",
                new=AsyncMock(side_effect=RuntimeError("cursor table missing")),
            ),
        ):
            await _start_indexer(bare_app)

        assert bare_app.state.indexer is None
        assert bare_app.state.ledger is ledger
        assert get_ledger() is ledger

    @pytest.mark.asyncio
    async def test_reader_failure_registers_nothing(self, bare_app, session_factory) -> None:
        with (
            patch.object(
                Web3LedgerReader, "from_settings", side_effect=ValueError("bad contract address")
            ),
            patch(
                "agent_marketplace.infrastructure.database.engine.get_session_factory",
                return_value=session_factory,
            ),
        ):
            await _start_indexer(bare_app)

        assert bare_app.state.ledger is None
        assert bare_app.state.indexer is None
        assert get_ledger() is None

    @pytest.mark.asyncio
    async def test_successful_start(self, bare_app, ledger, session_factory) -> None:
        with (
            patch.object(Web3LedgerReader, "from_settings", return_value=ledger),
            patch(
                "agent_marketplace.infrastructure.database.engine.get_session_factory",
                return_value=session_factory,
            ),
        ):
            await _start_indexer(bare_app)

        indexer = bare_app.state.indexer
        assert indexer.is_indexing
        assert get_ledger() is ledger

        await indexer.stop()
        await indexer.join()
