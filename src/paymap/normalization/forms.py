"""Submission form normalization: raw inbox payloads to ``SubmissionPatch``.

Owner and community forms produce a partial place (name, location, contact,
payments, evidence, socials, profile, gallery). Report forms produce no place
fields at all: their evidence becomes ``other`` sources, their images become
``screenshot`` sources, and proposed values become review suggestions.
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from types import MappingProxyType
from typing import Any, List, Mapping

from paymap.merge.trust import limits_for, tier_for_kind
from paymap.normalization.chains import ChainRegistry
from paymap.normalization.evidence import EvidenceCollector, clean_url, to_lines, to_source
from paymap.normalization.payments import PaymentNormalizer
from paymap.normalization.reference_data import KNOWN_COUNTRIES, SOCIAL_PLATFORM_ALIASES
from paymap.normalization.schema import (
    PlacePatch,
    RawSubmission,
    SocialLink,
    SourceType,
    StatusOverride,
    SubmissionKind,
    SubmissionPatch,
    Suggestion,
)

LOGGER = logging.getLogger(__name__)

DETAILS_LIMIT = 1000
_ALPHA2_RE = re.compile(r"^[A-Za-z]{2}$")

DEFAULT_SUBMITTERS = {
    SubmissionKind.OWNER: "github:owner",
    SubmissionKind.COMMUNITY: "github:community",
    SubmissionKind.REPORT: "github:reporter",
}

_SOCIAL_HOSTS = {
    "instagram.com": "instagram",
    "facebook.com": "facebook",
    "fb.com": "facebook",
    "x.com": "x",
    "twitter.com": "x",
    "tiktok.com": "tiktok",
    "youtube.com": "youtube",
    "youtu.be": "youtube",
    "t.me": "telegram",
    "wa.me": "whatsapp",
    "threads.net": "threads",
    "pinterest.com": "pinterest",
    "line.me": "line",
}


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def squeeze(text: str | None, limit: int) -> str | None:
    """Trim ``text`` and cut it to ``limit`` characters; empty results become ``None``."""

    cleaned = (text or "").strip()
    if not cleaned or limit <= 0:
        return None
    return cleaned[:limit]


def make_ref(kind: SubmissionKind | str, submitted_at: str, seed: str = "") -> str:
    """Return a human-friendly reference ``<kind>-YYYYMMDD-NNNN``.

    The four-digit suffix is derived from ``seed`` so replaying the same
    submission yields the same reference.
    """

    kind_value = kind.value if isinstance(kind, SubmissionKind) else str(kind)
    digits = re.sub(r"\D", "", submitted_at or "")[:8] or datetime.now(timezone.utc).strftime("%Y%m%d")
    number = int(hashlib.sha1(f"{kind_value}|{submitted_at}|{seed}".encode("utf-8")).hexdigest(), 16) % 10000
    return f"{kind_value}-{digits}-{number:04d}"


def load_country_aliases(path: Path | None = None) -> Mapping[str, str]:
    """Build the lowercase name/alias -> ISO alpha-2 table.

    ``path`` points at an optional ``countries.json`` list of
    ``{"name", "alpha2", "aliases"}`` objects; its entries extend the
    built-in table.
    """

    table = {name.lower(): code for name, code in KNOWN_COUNTRIES.items()}
    if path is not None and path.exists():
        with path.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
        for item in data if isinstance(data, list) else []:
            if not isinstance(item, Mapping):
                continue
            code = str(item.get("alpha2") or item.get("alpha-2") or "").strip().upper()
            if not _ALPHA2_RE.match(code):
                continue
            names = [item.get("name"), *(item.get("aliases") or []), *(item.get("alt_names") or [])]
            for name in names:
                key = str(name or "").strip().lower()
                if key:
                    table[key] = code
        LOGGER.debug("Loaded country aliases from %s", path)
    return MappingProxyType(table)


def normalize_country(
    code: str | None, name: str | None, aliases: Mapping[str, str] | None = None
) -> tuple[str | None, str | None]:
    """Return ``(alpha2, country_name_as_typed)``; either may be ``None``."""

    cleaned_code = (code or "").strip()
    if _ALPHA2_RE.match(cleaned_code):
        return cleaned_code.upper(), None
    cleaned_name = (name or "").strip()
    if not cleaned_name:
        return None, None
    table = aliases if aliases is not None else load_country_aliases()
    alpha2 = table.get(cleaned_name.lower())
    if alpha2:
        return alpha2, cleaned_name
    if _ALPHA2_RE.match(cleaned_name):
        return cleaned_name.upper(), None
    return None, cleaned_name


def normalize_address(
    address: str | None,
    city: str | None = None,
    country_name: str | None = None,
    country_code: str | None = None,
) -> str | None:
    """Strip trailing ``, City`` / ``/ Country`` / ``, CC`` parts and tidy separators."""

    parts = [part.strip() for part in (address or "").split(",") if part.strip()]
    core = ", ".join(parts)
    if not core:
        return None
    for tail in (city, country_name, country_code, city):
        if not tail:
            continue
        core = re.sub(rf"(?:,\s*|\s*/\s*)?{re.escape(tail.strip())}\.?$", "", core, flags=re.IGNORECASE)
        core = core.strip()
    core = re.sub(r"\s*,\s*", ", ", core)
    core = re.sub(r"\s+", " ", core)
    core = re.sub(r"^,\s*|\s*,\s*$", "", core).strip()
    return core or None


def parse_city(city_country: str | None) -> str | None:
    """Take the city half of a legacy ``"Tokyo / Japan"`` field."""

    head = (city_country or "").split("/")[0].strip()
    return head or None


def parse_lat_lng(text: str | None) -> tuple[float, float] | None:
    parts = [part.strip() for part in (text or "").split(",")]
    if len(parts) != 2:
        return None
    try:
        return float(parts[0]), float(parts[1])
    except ValueError:
        return None


def _platform_for_url(url: str) -> str:
    host = url.split("://", 1)[-1].split("/", 1)[0].lower()
    host = host[4:] if host.startswith("www.") else host
    for suffix, platform in _SOCIAL_HOSTS.items():
        if host == suffix or host.endswith("." + suffix):
            return platform
    return "other"


def parse_socials(block: str | None) -> List[SocialLink]:
    """Parse ``<platform> <url|@handle>`` lines (a bare profile URL also works)."""

    links: dict[str, SocialLink] = {}
    for line in to_lines(block):
        tokens = line.split()
        url = clean_url(tokens[0])
        if url and len(tokens) == 1:
            link = SocialLink(platform=_platform_for_url(url), url=url)
        else:
            platform = SOCIAL_PLATFORM_ALIASES.get(tokens[0].lower(), "other")
            rest = line[len(tokens[0]) :].strip()
            url = clean_url(rest)
            handle = rest if not url and rest.startswith("@") and len(rest) > 1 else None
            if not url and not handle:
                LOGGER.debug("Dropping unparseable social line %r", line)
                continue
            link = SocialLink(platform=platform, url=url, handle=handle)
        links.setdefault(link.key, link)
    return list(links.values())


class SubmissionFormNormalizer:
    """Turn one :class:`RawSubmission` into a :class:`SubmissionPatch`."""

    def __init__(
        self,
        registry: ChainRegistry | None = None,
        *,
        countries: Mapping[str, str] | None = None,
        collector: EvidenceCollector | None = None,
    ) -> None:
        self.payments = PaymentNormalizer(registry)
        self.countries = countries if countries is not None else load_country_aliases()
        self.collector = collector or EvidenceCollector()

    def normalize(self, raw: RawSubmission, now: str | None = None) -> SubmissionPatch:
        submitted_at = raw.submitted_at or now or utc_now_iso()
        submitted_by = raw.submitted_by or DEFAULT_SUBMITTERS[raw.kind]
        ref = raw.ref or make_ref(raw.kind, submitted_at, seed=raw.model_dump_json())
        if raw.kind is SubmissionKind.REPORT:
            return self._normalize_report(raw, submitted_by=submitted_by, submitted_at=submitted_at, ref=ref)
        return self._normalize_listing(raw, submitted_by=submitted_by, submitted_at=submitted_at, ref=ref)

    def _normalize_listing(
        self, raw: RawSubmission, *, submitted_by: str, submitted_at: str, ref: str
    ) -> SubmissionPatch:
        limits = limits_for(tier_for_kind(raw.kind))
        parsed = self.payments.normalize_submission(
            raw.payments_raw,
            accepts=raw.accepts,
            flags=raw.payment_flags,
            coins=raw.coins,
            submitted_by=submitted_by,
            submitted_at=submitted_at,
        )

        city = (raw.city or "").strip() or parse_city(raw.city_country)
        country, country_name = normalize_country(raw.country_code, raw.country, self.countries)
        lat, lng = raw.lat, raw.lng
        coords = parse_lat_lng(raw.lat_lng)
        if coords is not None:
            lat, lng = coords
        website = clean_url(raw.website)

        place = PlacePatch(
            name=(raw.name or "").strip() or None,
            address=normalize_address(raw.address, city, country_name, country),
            city=city,
            country=country,
            lat=lat,
            lng=lng,
            category=(raw.category or "").strip() or None,
            website=website,
            phone=(raw.phone or "").strip() or None,
            hours=(raw.hours or "").strip() or None,
            socials=parse_socials(raw.socials_raw),
            accepts=parsed.accepts,
            pending_assets=parsed.pending_assets,
            sources=self.collector.collect(raw.evidence_raw, website=website, when=submitted_at),
            summary=squeeze(raw.profile_summary, limits.max_summary),
            images=self.collector.parse_images(raw.gallery_raw, limit=limits.max_images),
        )
        return SubmissionPatch(
            kind=raw.kind,
            place=place,
            rejects=parsed.rejects,
            ref=ref,
            submitted_by=submitted_by,
            submitted_at=submitted_at,
            already_listed=raw.already_listed or bool(raw.already_listed_ref),
            already_listed_ref=raw.already_listed_ref,
        )

    def _normalize_report(
        self, raw: RawSubmission, *, submitted_by: str, submitted_at: str, ref: str
    ) -> SubmissionPatch:
        sources = [
            to_source(url, when=submitted_at, forced_type=SourceType.OTHER)
            for url in dict.fromkeys(filter(None, map(clean_url, to_lines(raw.evidence_raw))))
        ]
        seen = {source.url for source in sources}
        for image in self.collector.parse_images(raw.gallery_raw):
            if image.url not in seen:
                sources.append(to_source(image.url, when=submitted_at, forced_type=SourceType.SCREENSHOT))
                seen.add(image.url)

        suggestions: List[Suggestion] = []
        rejects = []

        def suggest(field: str, value: Any) -> None:
            text = str(value or "").strip()
            if text:
                suggestions.append(
                    Suggestion(field=field, value=text, submitted_by=submitted_by, submitted_at=submitted_at, ref=ref)
                )

        proposed = raw.proposed
        if proposed is not None:
            for field in ("phone", "hours", "website", "category"):
                suggest(field, getattr(proposed, field))
            if proposed.coins:
                parsed = self.payments.normalize_submission(
                    "\n".join(proposed.coins), submitted_by=submitted_by, submitted_at=submitted_at
                )
                for entry in parsed.accepts:
                    suggest("payment.accepts", entry.preferred_key)
                for pending in parsed.pending_assets:
                    suggest("payment.pending_assets", f"{pending.asset_raw} / {pending.chain_raw}".rstrip(" /"))
                rejects.extend(parsed.rejects)
        if raw.proposed_status is StatusOverride.HIDDEN:
            suggest("status_override", StatusOverride.HIDDEN.value)

        return SubmissionPatch(
            kind=raw.kind,
            place=PlacePatch(sources=sources),
            rejects=rejects,
            suggestions=suggestions,
            ref=ref,
            submitted_by=submitted_by,
            submitted_at=submitted_at,
            already_listed=True,
            already_listed_ref=raw.already_listed_ref,
            details=squeeze(raw.details, DETAILS_LIMIT),
            proposed_status=raw.proposed_status,
        )


__all__ = [
    "DEFAULT_SUBMITTERS",
    "SubmissionFormNormalizer",
    "load_country_aliases",
    "make_ref",
    "normalize_address",
    "normalize_country",
    "parse_city",
    "parse_lat_lng",
    "parse_socials",
    "squeeze",
    "utc_now_iso",
]
