"""Unit tests for paymap.normalization.chains."""

from __future__ import annotations

import json

import pytest

from paymap.normalization.chains import ChainRegistry, is_strict_chain


@pytest.mark.parametrize(
    "text,expected",
    [
        ("btc", "bitcoin"),
        ("Bitcoin", "bitcoin"),
        ("on-chain", "bitcoin"),
        ("LN", "lightning"),
        ("Lightning", "lightning"),
        ("bolt12", "lightning"),
        ("ethereum", "evm-mainnet"),
        ("mainnet", "evm-mainnet"),
        ("ERC-20", "evm-mainnet"),
        ("eip155:1", "evm-mainnet"),
        ("eip155:137", "polygon"),
        ("Polygon", "polygon"),
        ("TRC-20", "tron"),
        ("BNB Smart Chain", "bsc"),
        ("(Solana)", "solana"),
        ("avalanche c-chain", "avalanche"),
        ("  arbitrum   one ", "arbitrum"),
    ],
)
def test_builtin_aliases(text, expected):
    """Human spellings resolve to strict chain ids."""
    assert ChainRegistry().resolve(text) == expected


def test_unknown_chain_resolves_to_none():
    registry = ChainRegistry()
    assert registry.resolve("unknown-chain") is None
    assert registry.resolve("") is None
    assert registry.resolve(None) is None


def test_parameterized_evm_id_passes_through():
    """Unknown EIP-155 ids stay parameterized; known ones fold to names."""
    registry = ChainRegistry()
    assert registry.resolve("eip155:324") == "eip155:324"
    assert registry.resolve("EIP155:8453") == "base"


def test_meta_table_extends_aliases():
    meta = {
        "chains": [
            {"id": "polygon", "label": "Polygon PoS", "aliases": ["poly-net"]},
            {"id": "made-up-chain", "aliases": ["fantasy"]},
        ]
    }
    registry = ChainRegistry.from_meta(meta)
    assert registry.resolve("poly-net") == "polygon"
    assert registry.resolve("Polygon PoS") == "polygon"
    assert registry.resolve("fantasy") is None


def test_meta_table_folds_evm_ids():
    registry = ChainRegistry.from_meta({"chains": [{"id": "eip155:10", "aliases": ["opti"]}]})
    assert registry.resolve("opti") == "optimism"


def test_registry_is_immutable():
    registry = ChainRegistry.from_meta({"chains": [{"id": "ton", "aliases": ["gram"]}]})
    with pytest.raises(TypeError):
        registry.meta_aliases["x"] = "bitcoin"  # type: ignore[index]


def test_from_file_reads_meta_json(tmp_path):
    path = tmp_path / "chains.meta.json"
    path.write_text(json.dumps({"chains": [{"id": "solana", "aliases": ["sealevel"]}]}), encoding="utf-8")
    assert ChainRegistry.from_file(path).resolve("sealevel") == "solana"
    assert ChainRegistry.from_file(tmp_path / "missing.json").resolve("sealevel") is None


def test_method_and_strictness_helpers():
    assert ChainRegistry.method_for("lightning") == "lightning"
    assert ChainRegistry.method_for("bitcoin") == "onchain"
    assert is_strict_chain("tron")
    assert is_strict_chain("eip155:42")
    assert not is_strict_chain("ethereum")
