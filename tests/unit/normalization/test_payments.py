"""Unit tests for paymap.normalization.payments."""

from __future__ import annotations

import pytest

from paymap.normalization.chains import ChainRegistry
from paymap.normalization.payments import (
    PaymentDeclaration,
    PaymentNormalizer,
    declarations_from_accepts,
    derive_preferred,
    expand_chain_list,
    expand_legacy,
    merge_accepts,
    normalize_asset,
    parse_asset_chain,
    split_units,
)
from paymap.normalization.schema import AcceptEntry


def _keys(result):
    return [entry.preferred_key for entry in result.accepts]


@pytest.fixture
def normalizer():
    return PaymentNormalizer(ChainRegistry())


def test_mixed_free_text_block(normalizer):
    """Parenthesized, 'on'-style and TRC-20 declarations all land in accepts."""
    result = normalizer.normalize_block("BTC (Lightning)\nETH on mainnet\nUSDT (TRC-20)")

    assert _keys(result) == ["BTC@lightning", "ETH@evm-mainnet", "USDT@tron"]
    assert result.rejects == []
    assert result.pending_assets == []
    assert [entry.method for entry in result.accepts] == ["lightning", "onchain", "onchain"]


def test_unknown_chain_goes_to_pending(normalizer):
    result = normalizer.normalize_block("XYZ-COIN unknown-chain", submitted_by="github:owner")

    assert result.accepts == []
    assert result.rejects == []
    assert len(result.pending_assets) == 1
    pending = result.pending_assets[0]
    assert pending.asset_raw == "XYZ-COIN"
    assert pending.chain_raw == "unknown-chain"
    assert pending.submitted_by == "github:owner"


@pytest.mark.parametrize(
    "line,reason",
    [
        ("USDT (Lightning)", "lightning-requires-btc"),
        ("BTC (Polygon)", "btc-requires-bitcoin-chain"),
        ("BTC on TRC-20", "btc-requires-bitcoin-chain"),
        ("A / ethereum", "invalid-asset"),
        ("$$$ / ethereum", "unparseable"),
    ],
)
def test_rule_breaking_lines_are_rejected(normalizer, line, reason):
    result = normalizer.normalize_block(line)

    assert result.accepts == []
    assert [(item.raw, item.reason) for item in result.rejects] == [(line, reason)]


@pytest.mark.parametrize(
    "line,expected",
    [
        ("BTC", "BTC@bitcoin"),
        ("eth", "ETH@evm-mainnet"),
        ("SOL", "SOL@solana"),
        ("Lightning", "BTC@lightning"),
        ("ln", "BTC@lightning"),
        ("Tether / Tron", "USDT@tron"),
        ("usdc via base", "USDC@base"),
    ],
)
def test_single_declarations(normalizer, line, expected):
    """Bare tickers resolve to their native chain; spelled names fold to tickers."""
    assert _keys(normalizer.normalize_block(line)) == [expected]


def test_chain_list_yields_one_outcome_per_chain(normalizer):
    """Each chain in a parenthesized list is judged on its own."""
    result = normalizer.normalize_block("USDT (Polygon, BSC, Gnosis)")

    assert _keys(result) == ["USDT@polygon", "USDT@bsc"]
    assert [(item.asset_raw, item.chain_raw) for item in result.pending_assets] == [("USDT", "Gnosis")]
    assert result.rejects == []


def test_chain_list_in_structured_declaration(normalizer):
    result = normalizer.normalize([PaymentDeclaration(raw="USDC (Base, Lightning)", processor="btcpay")])

    assert _keys(result) == ["USDC@base"]
    assert result.accepts[0].processor == "btcpay"
    assert [(item.raw, item.reason) for item in result.rejects] == [("USDC (Lightning)", "lightning-requires-btc")]


@pytest.mark.parametrize(
    "unit,expected",
    [
        ("USDT (Polygon, BSC)", ["USDT (Polygon)", "USDT (BSC)"]),
        ("USDT (Polygon)", ["USDT (Polygon)"]),
        ("USDT / Polygon", ["USDT / Polygon"]),
    ],
)
def test_expand_chain_list(unit, expected):
    assert expand_chain_list(unit) == expected


def test_bare_ticker_without_native_chain_is_pending(normalizer):
    result = normalizer.normalize_block("USDT")

    assert result.accepts == []
    assert result.pending_assets[0].asset_raw == "USDT"
    assert result.pending_assets[0].chain_raw == ""
    assert result.pending_assets[0].notes == "no chain given"


def test_every_unit_lands_in_exactly_one_bucket(normalizer):
    block = "BTC (Lightning), USDT (TRC-20); DAI on gnosis | USDT (Lightning)\nDOGE\n$$$"
    units = split_units(block)
    result = normalizer.normalize_block(block)

    assert len(units) == 6
    assert len(result.accepts) + len(result.pending_assets) + len(result.rejects) == len(units)


def test_duplicates_fold_into_one_accept(normalizer):
    result = normalizer.normalize_block("BTC (Lightning)\nbtc on ln\nBTC / lightning network")

    assert _keys(result) == ["BTC@lightning"]


def test_processor_distinguishes_accepts(normalizer):
    declarations = declarations_from_accepts(
        [
            {"asset": "BTC", "chain": "bitcoin", "processor": "BTCPay"},
            {"asset": "BTC", "chain": "bitcoin"},
            {"asset": "BTC", "chain": "bitcoin", "processor": "OpenNode"},
        ]
    )
    result = normalizer.normalize(declarations)

    assert [entry.processor for entry in result.accepts] == ["btcpay", None, "opennode"]


def test_lightning_method_moves_bitcoin_chain(normalizer):
    declarations = declarations_from_accepts([{"asset": "BTC", "chain": "bitcoin", "method": "Lightning"}])

    assert _keys(normalizer.normalize(declarations)) == ["BTC@lightning"]


def test_structured_metadata_is_kept(normalizer):
    declarations = declarations_from_accepts(
        [
            {
                "asset": "usdt",
                "network": "trc20",
                "evidence": ["https://shop.example/pay", "not a url"],
                "last_verified": "2024-05-01",
                "notes": "counter only",
            }
        ]
    )
    entry = normalizer.normalize(declarations).accepts[0]

    assert entry.preferred_key == "USDT@tron"
    assert entry.evidence == ["https://shop.example/pay"]
    assert entry.last_verified == "2024-05-01"
    assert entry.note == "counter only"


def test_submission_combines_all_shapes(normalizer):
    result = normalizer.normalize_submission(
        "ETH on mainnet",
        accepts=[{"asset": "SOL", "chain": "solana"}],
        flags={"lightning": True},
        coins=["USDC"],
    )

    assert _keys(result) == ["ETH@evm-mainnet", "SOL@solana", "BTC@lightning", "USDC@evm-mainnet"]


def test_expand_legacy_flags_and_coins():
    lines = expand_legacy({"btc": True, "lightning": True, "eth": False}, ["USDT", "doge", ""])

    assert lines == ["BTC / bitcoin", "BTC / lightning", "USDT / ethereum", "doge"]


def test_merge_accepts_keeps_first_and_unions_evidence():
    first = AcceptEntry(asset="BTC", chain="bitcoin", evidence=["https://a.example"])
    second = AcceptEntry(
        asset="BTC", chain="bitcoin", evidence=["https://b.example", "https://a.example"], last_checked="2024-01-01"
    )
    merged = merge_accepts([first], [second])

    assert len(merged) == 1
    assert merged[0].evidence == ["https://a.example", "https://b.example"]
    assert merged[0].last_checked == "2024-01-01"


def test_derive_preferred_orders_by_desirability():
    accepts = [
        AcceptEntry(asset="USDT", chain="tron"),
        AcceptEntry(asset="ETH", chain="evm-mainnet"),
        AcceptEntry(asset="BTC", chain="bitcoin"),
        AcceptEntry(asset="BTC", chain="lightning"),
    ]

    assert derive_preferred(accepts) == ["BTC@lightning", "BTC@bitcoin", "ETH@evm-mainnet", "USDT@tron"]


@pytest.mark.parametrize(
    "unit,expected",
    [
        ("BTC (Lightning)", ("BTC", "Lightning")),
        ("USDT / TRC-20", ("USDT", "TRC-20")),
        ("ETH on Arbitrum One", ("ETH", "Arbitrum One")),
        ("DAI gnosis", ("DAI", "gnosis")),
        ("BTC", ("BTC", None)),
        ("??", None),
    ],
)
def test_parse_asset_chain(unit, expected):
    assert parse_asset_chain(unit) == expected


def test_normalize_asset():
    assert normalize_asset("tether") == "USDT"
    assert normalize_asset("usdc") == "USDC"
    assert normalize_asset("X") is None


def test_empty_declarations_are_ignored(normalizer):
    result = normalizer.normalize([PaymentDeclaration(raw="   ")])

    assert (result.accepts, result.pending_assets, result.rejects) == ([], [], [])
