"""Marketplace contract ABI loading.

The compiled contract artifact (Foundry's `out/<Contract>.sol/<Contract>.json`)
is preferred. When it is missing, a minimal ABI covering the five indexed
events and the read-only functions the backend calls is used instead.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from agent_marketplace.logging_config import get_logger

logger = get_logger(__name__)


def _event(name: str, *inputs: tuple[str, str, bool]) -> dict[str, Any]:
    return {
        "type": "event",
        "name": name,
        "anonymous": False,
        "inputs": [
            {"name": arg, "type": abi_type, "indexed": indexed}
            for arg, abi_type, indexed in inputs
        ],
    }


MINIMAL_MARKETPLACE_ABI: list[dict[str, Any]] = [
    _event(
        "ItemListed",
        ("listingId", "uint256", True),
        ("seller", "address", True),
        ("price", "uint256", False),
        ("itemData", "string", False),
    ),
    _event(
        "PurchaseRequested",
        ("listingId", "uint256", True),
        ("buyer", "address", True),
        ("agent", "address", True),
    ),
    _event(
        "PurchaseConfirmed",
        ("listingId", "uint256", True),
        ("seller", "address", True),
    ),
    _event(
        "FundsReleased",
        ("listingId", "uint256", True),
        ("seller", "address", True),
        ("buyer", "address", True),
    ),
    _event(
        "ReputationUpdated",
        ("agent", "address", True),
        ("change", "int256", False),
        ("newReputation", "uint256", False),
    ),
    {
        "type": "function",
        "name": "getAgentReputation",
        "stateMutability": "view",
        "inputs": [{"name": "agent", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "type": "function",
        "name": "getListing",
        "stateMutability": "view",
        "inputs": [{"name": "listingId", "type": "uint256"}],
        "outputs": [
            {
                "name": "",
                "type": "tuple",
                "components": [
                    {"name": "seller", "type": "address"},
                    {"name": "price", "type": "uint256"},
                    {"name": "isActive", "type": "bool"},
                    {"name": "buyer", "type": "address"},
                    {"name": "confirmed", "type": "bool"},
                    {"name": "completed", "type": "bool"},
                ],
            }
        ],
    },
]


def load_contract_abi(path: str | Path | None) -> list[dict[str, Any]]:
    """Load the contract ABI from a compiled artifact, or fall back to the minimal ABI.

    Accepts both `{"abi": [...]}` artifacts and bare ABI arrays.
    """
    if path:
        abi_path = Path(path)
        if abi_path.is_file():
            content = json.loads(abi_path.read_text(encoding="utf-8"))
            abi = content["abi"] if isinstance(content, dict) else content
            logger.info("ledger.abi_loaded", path=str(abi_path), entries=len(abi))
            return abi

    logger.warning("ledger.abi_not_found", path=str(path), fallback="minimal")
    return MINIMAL_MARKETPLACE_ABI
