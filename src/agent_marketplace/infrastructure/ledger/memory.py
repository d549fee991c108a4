"""In-memory ledger used by the test suite and the simulation script.

Events are scripted with `emit()`; each emitted event gets its own block
unless a block number is given. Failures can be injected to exercise the
indexer's retry and watermark behaviour.
"""

from __future__ import annotations

import asyncio
import uuid
from typing import Any

from agent_marketplace.domain.enums import ChainEventKind
from agent_marketplace.domain.exceptions import LedgerUnavailableError
from agent_marketplace.domain.ledger_protocol import ChainEvent


class InMemoryLedger:
    """A scripted LedgerReader."""

    def __init__(self, height: int = 0) -> None:
        self.height = height
        self.events: list[ChainEvent] = []
        self.reputations: dict[str, int] = {}
        self.calls: list[tuple[str, Any]] = []
        self.delay: float = 0.0
        self.reachable = True
        self._failures: dict[str, int] = {}

    # ------------------------------------------------------------------
    # Scripting helpers
    # ------------------------------------------------------------------

    def emit(
        self,
        kind: ChainEventKind,
        block_number: int | None = None,
        tx_hash: str | None = None,
        **args: Any,
    ) -> ChainEvent:
        """Append an event; by default it lands in a freshly mined block."""
        if block_number is None:
            self.height += 1
            block_number = self.height
        else:
            self.height = max(self.height, block_number)

        log_index = sum(1 for e in self.events if e.block_number == block_number)
        event = ChainEvent(
            kind=kind,
            block_number=block_number,
            log_index=log_index,
            tx_hash=tx_hash or "0x" + uuid.uuid4().hex + uuid.uuid4().hex,
            args=args,
        )
        self.events.append(event)
        return event

    def mine(self, blocks: int = 1) -> int:
        """Advance the head without emitting events."""
        self.height += blocks
        return self.height

    def set_reputation(self, address: str, reputation: int) -> None:
        self.reputations[address.lower()] = reputation

    def fail_next(self, operation: str, times: int = 1) -> None:
        """Make the next `times` calls of `operation` raise LedgerUnavailableError."""
        self._failures[operation] = self._failures.get(operation, 0) + times

    async def _enter(self, operation: str, detail: Any = None) -> None:
        self.calls.append((operation, detail))
        if self.delay:
            await asyncio.sleep(self.delay)
        if not self.reachable:
            raise LedgerUnavailableError("ledger unreachable")
        remaining = self._failures.get(operation, 0)
        if remaining:
            self._failures[operation] = remaining - 1
            raise LedgerUnavailableError(f"injected failure in {operation}")

    # ------------------------------------------------------------------
    # LedgerReader protocol
    # ------------------------------------------------------------------

    async def current_height(self) -> int:
        await self._enter("current_height")
        return self.height

    async def query_events(
        self,
        kind: ChainEventKind,
        from_height: int,
        to_height: int,
    ) -> list[ChainEvent]:
        await self._enter("query_events", (kind, from_height, to_height))
        matched = [
            e
            for e in self.events
            if e.kind == kind and from_height <= e.block_number <= to_height
        ]
        return sorted(matched, key=lambda e: e.sort_key)

    async def get_agent_reputation(self, address: str) -> int:
        await self._enter("get_agent_reputation", address)
        try:
            return self.reputations[address.lower()]
        except KeyError:
            raise LedgerUnavailableError(f"no reputation recorded for {address}") from None
