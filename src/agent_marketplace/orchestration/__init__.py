"""Orchestration layer — the chain indexer polling loop."""

from agent_marketplace.orchestration.chain_indexer import ChainIndexer, parse_item_data

__all__ = ["ChainIndexer", "parse_item_data"]
