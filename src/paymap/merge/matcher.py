"""Record matching: does a submission update an existing place or create one?

Matching uses identifier hints first (an explicit id or an id embedded in a
listing URL), then a fuzzy fallback of exact case-insensitive name equality
plus great-circle distance within a radius (50 m by default).

The fuzzy rule has no confidence scoring. Differently abbreviated names for the
same venue will not match, and two businesses sharing a name at one address will.
"""

from __future__ import annotations

import base64
import hashlib
import math
import re
from dataclasses import dataclass
from typing import List, Sequence
from urllib.parse import parse_qs, urlsplit

from paymap.normalization.schema import PlaceRecord, SubmissionPatch

EARTH_RADIUS_M = 6_371_000.0
DEFAULT_RADIUS_M = 50.0

_SLUG_RE = re.compile(r"[^a-z0-9]+")
_TRAILING_ID_RE = re.compile(r"[a-z0-9-]{6,}$", re.IGNORECASE)
_REF_QUERY_KEYS = ("select", "id", "place", "placeId")


def haversine_meters(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance between two coordinates in meters."""

    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)
    x = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(x)))


def slugify(text: str | None, max_length: int = 80) -> str:
    return _SLUG_RE.sub("-", (text or "").strip().lower()).strip("-")[:max_length]


def derive_place_id(
    country: str | None,
    city: str | None,
    name: str | None,
    lat: float | None,
    lng: float | None,
    timestamp: str,
) -> str:
    """Build a stable id ``<cc>-<city>-<name>-<hash>`` for a new place.

    The short hash covers name, coordinates, and submission time, so two
    different places with the same name in one city get distinct ids while a
    replay of the same submission yields the same id.
    """

    base = "-".join(
        [
            (country or "xx").strip().lower() or "xx",
            slugify(city) or "unknown",
            slugify(name) or "place",
        ]
    )
    seed = f"{name or ''}|{'' if lat is None else lat}|{'' if lng is None else lng}|{timestamp}"
    digest = hashlib.sha1(seed.encode("utf-8")).digest()
    short = base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")[:6].lower()
    return f"{base}-{short}"


def ref_id_candidates(ref: str | None) -> List[str]:
    """Return possible record ids hidden in a listing reference (id or URL)."""

    text = (ref or "").strip()
    if not text:
        return []
    candidates: List[str] = []
    parts = urlsplit(text)
    if parts.scheme and parts.netloc:
        query = parse_qs(parts.query)
        for key in _REF_QUERY_KEYS:
            candidates.extend(query.get(key, []))
        segments = [segment for segment in parts.path.split("/") if segment]
        if segments:
            candidates.append(segments[-1])
        if parts.fragment:
            candidates.append(parts.fragment)
    else:
        candidates.append(text)
    match = _TRAILING_ID_RE.search(text)
    if match:
        candidates.append(match.group(0))
    return list(dict.fromkeys(candidate.strip() for candidate in candidates if candidate.strip()))


@dataclass(frozen=True)
class MatchCandidate:
    """Identity hints extracted from a submission."""

    name: str | None = None
    lat: float | None = None
    lng: float | None = None
    record_id: str | None = None
    ref: str | None = None

    @classmethod
    def from_patch(cls, patch: SubmissionPatch) -> "MatchCandidate":
        return cls(
            name=patch.place.name,
            lat=patch.place.lat,
            lng=patch.place.lng,
            record_id=patch.record_id,
            ref=patch.already_listed_ref,
        )

    @property
    def has_reference(self) -> bool:
        return bool(self.record_id or self.ref)


class RecordMatcher:
    """Locate the existing record a submission refers to."""

    def __init__(self, radius_m: float = DEFAULT_RADIUS_M) -> None:
        self.radius_m = radius_m

    def find(self, pool: Sequence[PlaceRecord], candidate: MatchCandidate) -> int:
        """Return the index of the matching record in ``pool``, or ``-1``."""

        index = self.find_by_reference(pool, candidate)
        if index >= 0:
            return index
        return self.find_nearby(pool, candidate)

    def find_by_reference(self, pool: Sequence[PlaceRecord], candidate: MatchCandidate) -> int:
        wanted = [candidate.record_id] if candidate.record_id else []
        wanted.extend(ref_id_candidates(candidate.ref))
        if not wanted:
            return -1
        positions = {record.id: index for index, record in enumerate(pool)}
        for record_id in wanted:
            if record_id in positions:
                return positions[record_id]
        return -1

    def find_nearby(self, pool: Sequence[PlaceRecord], candidate: MatchCandidate) -> int:
        name = (candidate.name or "").strip().lower()
        if not name or candidate.lat is None or candidate.lng is None:
            return -1
        for index, record in enumerate(pool):
            if (record.name or "").strip().lower() != name:
                continue
            if record.lat is None or record.lng is None:
                continue
            distance = haversine_meters(candidate.lat, candidate.lng, record.lat, record.lng)
            if distance <= self.radius_m:
                return index
        return -1


__all__ = [
    "DEFAULT_RADIUS_M",
    "MatchCandidate",
    "RecordMatcher",
    "derive_place_id",
    "haversine_meters",
    "ref_id_candidates",
    "slugify",
]
