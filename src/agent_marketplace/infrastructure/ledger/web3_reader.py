"""Web3 Ledger Reader — reads marketplace events from a JSON-RPC node.

Uses web3.py's AsyncWeb3 over HTTP. Event logs are fetched per event kind
with `eth_getLogs` and decoded against the contract ABI; each log is turned
into a domain `ChainEvent` so nothing above this module sees web3 types.

Timeouts and retries are applied by the caller (the chain indexer), which
keeps this reader a thin adapter.
"""

from __future__ import annotations

from typing import Any

from web3 import AsyncWeb3, Web3

from agent_marketplace.config import ZERO_ADDRESS, Settings, get_settings
from agent_marketplace.domain.enums import ChainEventKind
from agent_marketplace.domain.exceptions import LedgerUnavailableError
from agent_marketplace.domain.ledger_protocol import ChainEvent
from agent_marketplace.infrastructure.ledger.abi import load_contract_abi
from agent_marketplace.logging_config import get_logger

logger = get_logger(__name__)


def _normalize_arg(value: Any) -> Any:
    """Convert web3 return types (HexBytes, AttributeDict) to plain Python."""
    if isinstance(value, (bytes, bytearray)):
        return Web3.to_hex(value)
    return value


def log_to_chain_event(kind: ChainEventKind, log: Any) -> ChainEvent:
    """Translate a decoded web3 event log into a ChainEvent."""
    return ChainEvent(
        kind=kind,
        block_number=int(log["blockNumber"]),
        log_index=int(log["logIndex"]),
        tx_hash=Web3.to_hex(log["transactionHash"]),
        args={key: _normalize_arg(value) for key, value in dict(log["args"]).items()},
    )


class Web3LedgerReader:
    """LedgerReader backed by a JSON-RPC node and the marketplace contract."""

    def __init__(
        self,
        rpc_url: str,
        contract_address: str,
        abi: list[dict[str, Any]],
        w3: AsyncWeb3 | None = None,
    ) -> None:
        self._w3 = w3 or AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(rpc_url))
        self._rpc_url = rpc_url
        self._contract = None
        if contract_address and contract_address.lower() != ZERO_ADDRESS:
            self._contract = self._w3.eth.contract(
                address=Web3.to_checksum_address(contract_address),
                abi=abi,
            )
        logger.info(
            "ledger.reader_initialized",
            rpc_url=rpc_url,
            contract=contract_address or None,
        )

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> Web3LedgerReader:
        settings = settings or get_settings()
        return cls(
            rpc_url=settings.rpc_url,
            contract_address=settings.contract_address,
            abi=load_contract_abi(settings.contract_abi_path),
        )

    def _require_contract(self):  # noqa: ANN202
        if self._contract is None:
            raise LedgerUnavailableError("Marketplace contract address is not configured")
        return self._contract

    async def current_height(self) -> int:
        return int(await self._w3.eth.block_number)

    async def query_events(
        self,
        kind: ChainEventKind,
        from_height: int,
        to_height: int,
    ) -> list[ChainEvent]:
        contract = self._require_contract()
        event_type = getattr(contract.events, kind.value)
        logs = await event_type().get_logs(from_block=from_height, to_block=to_height)

        events = [log_to_chain_event(kind, log) for log in logs]
        events.sort(key=lambda e: e.sort_key)
        if events:
            logger.debug(
                "ledger.events_fetched",
                kind=kind.value,
                from_block=from_height,
                to_block=to_height,
                count=len(events),
            )
        return events

    async def get_agent_reputation(self, address: str) -> int:
        contract = self._require_contract()
        score = await contract.functions.getAgentReputation(
            Web3.to_checksum_address(address)
        ).call()
        return int(score)

    async def close(self) -> None:
        """Close the underlying HTTP session, if the provider opened one."""
        provider = self._w3.provider
        disconnect = getattr(provider, "disconnect", None)
        if disconnect is not None:
            await disconnect()
