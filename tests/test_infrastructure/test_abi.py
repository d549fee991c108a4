"""Tests for contract ABI loading."""

from __future__ import annotations

import json

from agent_marketplace.domain.enums import ChainEventKind
from agent_marketplace.infrastructure.ledger.abi import MINIMAL_MARKETPLACE_ABI, load_contract_abi


class TestMinimalAbi:
    def test_declares_every_mirrored_event(self) -> None:
        events = {entry["name"] for entry in MINIMAL_MARKETPLACE_ABI if entry["type"] == "event"}
        assert events == {kind.value for kind in ChainEventKind}

    def test_declares_reputation_view(self) -> None:
        functions = {e["name"] for e in MINIMAL_MARKETPLACE_ABI if e["type"] == "function"}
        assert "getAgentReputation" in functions


class TestLoadContractAbi:
    def test_compiled_artifact(self, tmp_path) -> None:
        artifact = tmp_path / "Marketplace.json"
        artifact.write_text(json.dumps({"abi": [{"type": "event", "name": "ItemListed"}]}))
        assert load_contract_abi(artifact) == [{"type": "event", "name": "ItemListed"}]

    def test_bare_abi_array(self, tmp_path) -> None:
        artifact = tmp_path / "abi.json"
        artifact.write_text(json.dumps([{"type": "function", "name": "getListing"}]))
        assert load_contract_abi(str(artifact)) == [{"type": "function", "name": "getListing"}]

    def test_missing_file_falls_back(self, tmp_path) -> None:
        assert load_contract_abi(tmp_path / "missing.json") is MINIMAL_MARKETPLACE_ABI

    def test_no_path_falls_back(self) -> None:
        assert load_contract_abi(None) is MINIMAL_MARKETPLACE_ABI
