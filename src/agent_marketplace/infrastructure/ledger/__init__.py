"""Ledger readers — web3.py JSON-RPC adapter and the scripted in-memory ledger."""

from agent_marketplace.infrastructure.ledger.abi import MINIMAL_MARKETPLACE_ABI, load_contract_abi
from agent_marketplace.infrastructure.ledger.memory import InMemoryLedger
from agent_marketplace.infrastructure.ledger.web3_reader import Web3LedgerReader

__all__ = [
    "MINIMAL_MARKETPLACE_ABI",
    "InMemoryLedger",
    "Web3LedgerReader",
    "load_contract_abi",
]
