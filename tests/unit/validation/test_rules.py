"""Unit tests for paymap.validation.rules."""

from __future__ import annotations

import json

import pytest

from paymap.normalization.schema import PlaceRecord
from paymap.store.shards import ShardStore
from paymap.validation.rules import BusinessRuleValidator


def _payload(**overrides):
    payload = {
        "id": "jp-tokyo-satoshi-cafe-abc123",
        "name": "Satoshi Cafe",
        "city": "Tokyo",
        "country": "JP",
        "lat": 35.66,
        "lng": 139.7,
        "payment": {
            "accepts": [
                {"asset": "BTC", "chain": "lightning", "method": "lightning"},
                {"asset": "USDT", "chain": "tron", "method": "onchain", "evidence": ["https://pay.example"]},
            ],
            "preferred": ["BTC@lightning", "USDT@tron"],
        },
        "verification": {"status": "owner", "sources": [{"type": "official_site", "url": "https://cafe.example"}]},
        "socials": [{"platform": "instagram", "handle": "@cafe"}],
        "profile": {"summary": "Coffee."},
        "media": {"images": [{"url": "https://img.example/1.jpg"}]},
    }
    payload.update(overrides)
    return payload


def _locations(payload):
    return [item.location for item in BusinessRuleValidator().validate(PlaceRecord.model_validate(payload))]


def test_clean_owner_record_passes():
    assert _locations(_payload()) == []


def _accepts(*entries):
    keys = [f"{entry['asset']}@{entry['chain']}" for entry in entries]
    return {"accepts": list(entries), "preferred": keys}


@pytest.mark.parametrize(
    "entry,location",
    [
        ({"asset": "USDT", "chain": "lightning"}, "payment.accepts[0]"),
        ({"asset": "BTC", "chain": "tron"}, "payment.accepts[0]"),
        ({"asset": "ETH", "chain": "ethereum"}, "payment.accepts[0].chain"),
        ({"asset": "eth", "chain": "evm-mainnet"}, "payment.accepts[0].asset"),
        ({"asset": "ETH", "chain": "evm-mainnet", "method": "lightning"}, "payment.accepts[0].method"),
        ({"asset": "ETH", "chain": "evm-mainnet", "evidence": ["ftp://x"]}, "payment.accepts[0].evidence[0]"),
    ],
)
def test_accept_entry_rules(entry, location):
    locations = _locations(_payload(payment=_accepts(entry)))

    assert location in locations


def test_preferred_must_be_subset_and_non_empty():
    not_subset = _payload(payment={"accepts": [{"asset": "BTC", "chain": "bitcoin"}], "preferred": ["ETH@evm-mainnet"]})
    malformed = _payload(payment={"accepts": [{"asset": "BTC", "chain": "bitcoin"}], "preferred": ["btc bitcoin"]})
    empty = _payload(payment={"accepts": [{"asset": "BTC", "chain": "bitcoin"}], "preferred": []})

    assert _locations(not_subset) == ["payment.preferred[0]"]
    assert _locations(malformed) == ["payment.preferred[0]"]
    assert _locations(empty) == ["payment.preferred"]


def test_pending_only_records_are_valid():
    """Quarantined payments are kept on the record without any accepted entry."""
    pending = {"accepts": [], "preferred": [], "pending_assets": [{"asset_raw": "XYZ-COIN", "chain_raw": "unknown-chain"}]}

    assert _locations(_payload(payment=pending)) == []
    assert _locations(_payload(payment={})) == []


def test_empty_profile_is_flagged_below_community():
    directory = _payload(verification={"status": "directory"}, profile={}, media=None)
    unverified = _payload(verification={"status": "unverified"}, profile={"summary": None}, media=None)

    assert _locations(directory) == ["profile"]
    assert _locations(unverified) == ["profile"]
    assert _locations(_payload(verification={"status": "directory"}, profile=None, media=None)) == []


def test_profile_and_media_depend_on_tier():
    directory = _payload(verification={"status": "directory"})
    community = _payload(
        verification={"status": "community"},
        profile={"summary": "s" * 301},
        media={"images": [{"url": f"https://img.example/{index}.jpg", "caption": "c" * 301} for index in range(5)]},
    )

    assert _locations(directory) == ["media.images", "profile"]
    assert _locations(community) == [
        "media.images",
        *[f"media.images[{index}].caption" for index in range(5)],
        "profile.summary",
    ]


def test_coordinates_sources_and_socials():
    payload = _payload(
        lat=95.0,
        lng=-181.0,
        verification={"status": "owner", "sources": [{"type": "other", "url": "not a url"}]},
        socials=[{"platform": "x"}, {"platform": "x", "url": "x.com/cafe"}],
    )

    assert _locations(payload) == [
        "lat",
        "lng",
        "verification.sources[0].url",
        "socials[0]",
        "socials[1].url",
    ]


def test_blank_identity_is_reported():
    assert _locations(_payload(id=" ", name="")) == ["id", "name"]


def test_validate_raw_reports_schema_errors():
    violations = BusinessRuleValidator().validate_raw({"id": "x", "lat": "north"})

    assert {item.location for item in violations} == {"name", "lat"}


def test_validate_store_collects_every_failure(tmp_path):
    store = ShardStore(tmp_path)
    good = _payload()
    bad = _payload(id="jp-tokyo-bad-000000", payment={"accepts": [{"asset": "USDT", "chain": "lightning"}]})
    (tmp_path / "jp").mkdir()
    (tmp_path / "jp" / "tokyo.json").write_text(json.dumps([good, bad, good]), encoding="utf-8")
    (tmp_path / "it").mkdir()
    (tmp_path / "it" / "roma.json").write_text("{not json", encoding="utf-8")

    report = BusinessRuleValidator().validate_store(store)

    assert report.shards == 2
    assert report.records == 3
    assert report.ok == 1
    assert not report.passed
    assert set(report.failures) == {
        "it/roma.json",
        "jp/tokyo.json#jp-tokyo-bad-000000",
        "jp/tokyo.json#jp-tokyo-satoshi-cafe-abc123",
    }
    assert report.failures["jp/tokyo.json#jp-tokyo-satoshi-cafe-abc123"][0].message.startswith("duplicate id")
    assert report.error_count == len(report.lines())
    assert report.lines()[0].startswith("it/roma.json: shard: ")


def test_empty_store_passes(tmp_path):
    report = BusinessRuleValidator().validate_store(ShardStore(tmp_path / "missing"))

    assert report.passed
    assert report.records == 0
