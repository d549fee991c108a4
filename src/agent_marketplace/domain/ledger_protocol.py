"""Ledger Reader Protocol.

Defines the interface the chain indexer and the agent service need from the
ledger. This is a Protocol (structural subtyping) so concrete readers don't
need to inherit from a base class — they just need to match the shape.

The domain layer has ZERO imports from web3 or any JSON-RPC client.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from agent_marketplace.domain.enums import ChainEventKind


@dataclass(frozen=True)
class ChainEvent:
    """A decoded marketplace contract event.

    Attributes:
        kind: Which of the five marketplace events this is.
        block_number: Block height the event was emitted in.
        log_index: Position of the log inside its block (ordering tiebreaker).
        tx_hash: 0x-prefixed hash of the emitting transaction.
        args: Decoded event arguments keyed by their ABI names
            (e.g. listingId, seller, price, itemData).
    """

    kind: ChainEventKind
    block_number: int
    log_index: int
    tx_hash: str
    args: dict[str, Any] = field(default_factory=dict)

    @property
    def sort_key(self) -> tuple[int, int]:
        return (self.block_number, self.log_index)


@runtime_checkable
class LedgerReader(Protocol):
    """Protocol that all ledger implementations must satisfy.

    Concrete implementations:
        - infrastructure/ledger/web3_reader.py  (JSON-RPC via web3.py)
        - infrastructure/ledger/memory.py       (scripted, for tests/simulation)

    Failures surface as exceptions; the indexer catches them per tick.
    """

    async def current_height(self) -> int:
        """Return the current chain head block number."""
        ...

    async def query_events(
        self,
        kind: ChainEventKind,
        from_height: int,
        to_height: int,
    ) -> list[ChainEvent]:
        """Return events of `kind` emitted in [from_height, to_height], ordered."""
        ...

    async def get_agent_reputation(self, address: str) -> int:
        """Return the on-chain reputation score of an agent address."""
        ...
