"""Evidence collection: URL blocks to typed, deduplicated provenance sources.

Evidence is optional, so anything that is not an absolute ``http``/``https``
URL is dropped without a reject entry.
"""

from __future__ import annotations

import logging
from typing import List
from urllib.parse import urlsplit

from paymap.normalization.reference_data import PROVIDER_HOST_HINTS, SOCIAL_HOST_HINTS
from paymap.normalization.schema import MediaImage, Source, SourceType

LOGGER = logging.getLogger(__name__)


def to_lines(block: str | None) -> List[str]:
    if not block:
        return []
    return [line.strip() for line in block.splitlines() if line.strip()]


def clean_url(text: str | None) -> str | None:
    """Return ``text`` when it is an absolute http(s) URL with a host, else ``None``."""

    candidate = (text or "").strip()
    if not candidate or any(char.isspace() for char in candidate):
        return None
    try:
        parts = urlsplit(candidate)
    except ValueError:
        return None
    if parts.scheme.lower() not in {"http", "https"} or not parts.hostname:
        return None
    return candidate


def infer_source_type(url: str) -> SourceType:
    """Guess a source type from the URL's hostname."""

    host = (urlsplit(url).hostname or "").lower()
    if any(hint in host for hint in PROVIDER_HOST_HINTS):
        return SourceType.PROVIDER_DIRECTORY
    if any(host == hint or host.endswith("." + hint) for hint in SOCIAL_HOST_HINTS):
        return SourceType.TEXT
    return SourceType.OTHER


def to_source(url: str, *, when: str | None = None, forced_type: SourceType | None = None) -> Source:
    host = urlsplit(url).hostname or ""
    return Source(
        type=forced_type or infer_source_type(url),
        name=host or "source",
        url=url,
        when=when,
    )


class EvidenceCollector:
    """Build ``Source`` lists from free-text URL blocks."""

    def collect(self, block: str | None, website: str | None = None, when: str | None = None) -> List[Source]:
        """Return deduplicated sources, the declared website first as ``official_site``."""

        sources: dict[str, Source] = {}
        site = clean_url(website)
        if site:
            sources[site] = to_source(site, when=when, forced_type=SourceType.OFFICIAL_SITE)
        elif website:
            LOGGER.debug("Ignoring non-URL website %r", website)

        for line in to_lines(block):
            url = clean_url(line)
            if url is None:
                LOGGER.debug("Dropping non-URL evidence line %r", line)
                continue
            sources.setdefault(url, to_source(url, when=when))
        return list(sources.values())

    def parse_images(self, block: str | None, limit: int | None = None) -> List[MediaImage]:
        """Return gallery images from a URL block, deduplicated and optionally capped."""

        urls = list(dict.fromkeys(url for url in map(clean_url, to_lines(block)) if url))
        if limit is not None:
            urls = urls[:limit]
        return [MediaImage(url=url) for url in urls]


__all__ = ["EvidenceCollector", "clean_url", "infer_source_type", "to_lines", "to_source"]
