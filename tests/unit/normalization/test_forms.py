"""Unit tests for paymap.normalization.forms."""

from __future__ import annotations

import json
import re

import pytest
from pydantic import ValidationError

from paymap.normalization.forms import (
    SubmissionFormNormalizer,
    load_country_aliases,
    make_ref,
    normalize_address,
    normalize_country,
    parse_lat_lng,
    parse_socials,
    squeeze,
)
from paymap.normalization.schema import (
    RawSubmission,
    SocialPlatform,
    SourceType,
    StatusOverride,
    SubmissionKind,
)

NOW = "2024-06-01T09:30:00Z"


def _gallery(count: int) -> str:
    return "\n".join(f"https://img.example/{index}.jpg" for index in range(count))


def _owner_payload(**overrides):
    payload = {
        "kind": "owner",
        "name": " Satoshi Cafe ",
        "address": "1-2-3 Shibuya, Tokyo, Japan",
        "city": "Tokyo",
        "country": "Japan",
        "lat_lng": "35.66, 139.70",
        "website": "https://satoshi.example",
        "payments_raw": "BTC (Lightning)\nUSDT (Polygon)\nXYZ weird\nUSDT (Lightning)",
        "evidence_raw": "https://btcpay.example/store",
        "gallery_raw": _gallery(10),
        "socials_raw": "instagram @satoshicafe\nhttps://x.com/satoshicafe\nfacebook",
        "profile_summary": "x" * 700,
        "submitted_at": NOW,
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def normalizer():
    return SubmissionFormNormalizer()


def test_owner_submission_becomes_full_patch(normalizer):
    patch = normalizer.normalize(RawSubmission.model_validate(_owner_payload()))
    place = patch.place

    assert patch.kind is SubmissionKind.OWNER
    assert patch.submitted_by == "github:owner"
    assert patch.submitted_at == NOW
    assert re.match(r"^owner-20240601-\d{4}$", patch.ref)
    assert place.name == "Satoshi Cafe"
    assert place.address == "1-2-3 Shibuya"
    assert (place.city, place.country) == ("Tokyo", "JP")
    assert (place.lat, place.lng) == (35.66, 139.70)
    assert [entry.preferred_key for entry in place.accepts] == ["BTC@lightning", "USDT@polygon"]
    assert [item.asset_raw for item in place.pending_assets] == ["XYZ"]
    assert [(item.raw, item.reason) for item in patch.rejects] == [("USDT (Lightning)", "lightning-requires-btc")]
    assert [source.type for source in place.sources] == [SourceType.OFFICIAL_SITE, SourceType.PROVIDER_DIRECTORY]
    assert len(place.summary) == 600
    assert len(place.images) == 8
    assert [(link.platform, link.handle, link.url) for link in place.socials] == [
        (SocialPlatform.INSTAGRAM, "@satoshicafe", None),
        (SocialPlatform.X, None, "https://x.com/satoshicafe"),
    ]
    assert patch.already_listed is False


def test_community_submission_uses_lower_caps(normalizer):
    patch = normalizer.normalize(RawSubmission.model_validate(_owner_payload(kind="community")))

    assert patch.submitted_by == "github:community"
    assert len(patch.place.summary) == 300
    assert len(patch.place.images) == 4


def test_ref_is_stable_across_runs(normalizer):
    raw = RawSubmission.model_validate(_owner_payload())

    assert normalizer.normalize(raw).ref == normalizer.normalize(raw).ref


def test_listed_reference_marks_already_listed(normalizer):
    raw = RawSubmission.model_validate(_owner_payload(listed_url_or_id="jp-tokyo-satoshi-cafe-abc123"))
    patch = normalizer.normalize(raw)

    assert patch.already_listed is True
    assert patch.already_listed_ref == "jp-tokyo-satoshi-cafe-abc123"


def test_missing_timestamp_falls_back_to_now(normalizer):
    raw = RawSubmission.model_validate(_owner_payload(submitted_at=None))

    assert normalizer.normalize(raw, now="2025-01-02T03:04:05Z").submitted_at == "2025-01-02T03:04:05Z"


def test_report_only_produces_suggestions(normalizer):
    raw = RawSubmission.model_validate(
        {
            "kind": "report",
            "place_id_or_url": "https://map.example/?select=jp-tokyo-satoshi-cafe-abc123",
            "details": "  The shop has closed.  ",
            "evidence_urls": "https://news.example/closed\nhttps://news.example/closed",
            "images": "https://img.example/1.jpg",
            "proposed": {
                "phone": "+81 3 0000 0000",
                "coins": ["USDT (TRC-20)", "ABC on mystery", "USDT (Lightning)"],
            },
            "proposed_status": "hidden",
            "submitted_at": NOW,
        }
    )
    patch = normalizer.normalize(raw)

    assert patch.kind is SubmissionKind.REPORT
    assert patch.submitted_by == "github:reporter"
    assert patch.already_listed is True
    assert patch.place.name is None
    assert patch.place.accepts == []
    assert [(source.type, source.url) for source in patch.place.sources] == [
        (SourceType.OTHER, "https://news.example/closed"),
        (SourceType.SCREENSHOT, "https://img.example/1.jpg"),
    ]
    assert [(item.field, item.value) for item in patch.suggestions] == [
        ("phone", "+81 3 0000 0000"),
        ("payment.accepts", "USDT@tron"),
        ("payment.pending_assets", "ABC / mystery"),
        ("status_override", "hidden"),
    ]
    assert all(item.ref == patch.ref for item in patch.suggestions)
    assert [item.reason for item in patch.rejects] == ["lightning-requires-btc"]
    assert patch.details == "The shop has closed."
    assert patch.proposed_status is StatusOverride.HIDDEN


def test_report_details_are_capped(normalizer):
    raw = RawSubmission.model_validate({"kind": "report", "place_id_or_url": "abc123", "details": "y" * 1500})

    assert len(normalizer.normalize(raw).details) == 1000


@pytest.mark.parametrize(
    "payload",
    [
        {"kind": "report", "details": "closed"},
        {"kind": "owner", "payments_raw": "BTC"},
        {"kind": "community", "name": "   "},
        {"kind": "visitor", "name": "Cafe"},
    ],
)
def test_raw_submission_requires_identity(payload):
    with pytest.raises(ValidationError):
        RawSubmission.model_validate(payload)


def test_raw_submission_accepts_form_spellings():
    raw = RawSubmission.model_validate(
        {"kind": "community", "BusinessName": "Cafe", "Accepted": "BTC", "already_listed": "Yes", "lat": ""}
    )

    assert raw.name == "Cafe"
    assert raw.payments_raw == "BTC"
    assert raw.already_listed is True
    assert raw.lat is None


@pytest.mark.parametrize(
    "address,expected",
    [
        ("1-2-3 Shibuya, Tokyo, Japan", "1-2-3 Shibuya"),
        ("Via Roma 1 , Roma / Italia", "Via Roma 1"),
        ("Main St 5, Tokyo, JP.", "Main St 5"),
        ("  ,  ", None),
        (None, None),
    ],
)
def test_normalize_address(address, expected):
    city = "Roma" if address and "Roma" in address else "Tokyo"
    country_name = "Italia" if city == "Roma" else "Japan"
    country_code = "IT" if city == "Roma" else "JP"

    assert normalize_address(address, city, country_name, country_code) == expected


def test_normalize_country():
    assert normalize_country("jp", "Whatever") == ("JP", None)
    assert normalize_country(None, "United States") == ("US", "United States")
    assert normalize_country(None, "de", {}) == ("DE", None)
    assert normalize_country(None, "Atlantis", {}) == (None, "Atlantis")
    assert normalize_country("", "") == (None, None)


def test_country_file_extends_aliases(tmp_path):
    path = tmp_path / "countries.json"
    path.write_text(
        json.dumps([{"name": "Côte d'Ivoire", "alpha2": "ci", "aliases": ["Ivory Coast"]}, {"name": "Bad", "alpha2": "?"}]),
        encoding="utf-8",
    )
    aliases = load_country_aliases(path)

    assert aliases["ivory coast"] == "CI"
    assert aliases["côte d'ivoire"] == "CI"
    assert aliases["japan"] == "JP"
    assert "bad" not in aliases


def test_parse_socials_skips_lines_without_target():
    links = parse_socials("ig @shop\ntwitter https://twitter.com/shop\ntiktok\nmastodon @shop@social.example\nig @shop")

    assert [(link.platform.value, link.url, link.handle) for link in links] == [
        ("instagram", None, "@shop"),
        ("x", "https://twitter.com/shop", None),
        ("other", None, "@shop@social.example"),
    ]


@pytest.mark.parametrize("text,expected", [("35.1, 139.2", (35.1, 139.2)), ("1,2,3", None), ("abc, 1", None), (None, None)])
def test_parse_lat_lng(text, expected):
    assert parse_lat_lng(text) == expected


def test_squeeze_and_make_ref():
    assert squeeze("  hello  ", 3) == "hel"
    assert squeeze("hello", 0) is None
    assert squeeze("   ", 10) is None
    assert re.match(r"^report-20240601-\d{4}$", make_ref(SubmissionKind.REPORT, NOW, seed="a"))
    assert make_ref("owner", NOW, seed="a") == make_ref("owner", NOW, seed="a")
