"""Chain registry: human-entered chain names to strict chain identifiers.

Resolution order:

1. the caller-supplied metadata table (``chains.meta.json``), matched on id,
   label, or any alias;
2. the built-in alias table in :mod:`paymap.normalization.reference_data`;
3. pass-through of text that already is a strict id or an ``eip155:<n>`` id;
4. ``None``.

A registry is an immutable value built once per batch run and passed to the
normalizers explicitly.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Iterable, Mapping

from paymap.normalization.reference_data import (
    EVM_CHAIN_IDS,
    EVM_CHAIN_PATTERN,
    FALLBACK_CHAIN_ALIASES,
    KNOWN_CHAIN_IDS,
)

LOGGER = logging.getLogger(__name__)

_CLEANUP_RE = re.compile(r"[()\[\]]")
_SPACES_RE = re.compile(r"\s+")


def _norm(text: Any) -> str:
    return _SPACES_RE.sub(" ", str(text or "").strip().lower())


def _variants(query: str) -> Iterable[str]:
    """Yield progressively looser spellings of ``query``."""

    yield query
    cleaned = _SPACES_RE.sub(" ", _CLEANUP_RE.sub("", query)).strip()
    if cleaned != query:
        yield cleaned
    dehyphenated = cleaned.replace("-", "")
    if dehyphenated != cleaned:
        yield dehyphenated
    spaced = cleaned.replace("-", " ")
    if spaced != cleaned:
        yield spaced


def is_strict_chain(chain: str) -> bool:
    """Return True when ``chain`` is a member of the strict chain vocabulary."""

    return chain in KNOWN_CHAIN_IDS or bool(EVM_CHAIN_PATTERN.match(chain or ""))


@dataclass(frozen=True)
class ChainRegistry:
    """Immutable lookup table from chain text to strict chain ids."""

    meta_aliases: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))

    @classmethod
    def from_meta(cls, meta: Mapping[str, Any] | None) -> "ChainRegistry":
        """Build a registry from a ``{"chains": [{id, label, aliases}]}`` table.

        Entries whose id is not a strict chain id are skipped so that the
        metadata file can only add spellings, never new chains.
        """

        table: dict[str, str] = {}
        for entry in (meta or {}).get("chains") or []:
            if not isinstance(entry, Mapping):
                continue
            chain_id = _norm(entry.get("id"))
            if not is_strict_chain(chain_id):
                LOGGER.debug("Ignoring chain metadata for unsupported id %r", entry.get("id"))
                continue
            evm = EVM_CHAIN_PATTERN.match(chain_id)
            if evm:
                chain_id = EVM_CHAIN_IDS.get(int(evm.group(1)), chain_id)
            names = [chain_id, entry.get("label"), *(entry.get("aliases") or [])]
            for name in names:
                key = _norm(name)
                if key:
                    table.setdefault(key, chain_id)
        return cls(meta_aliases=MappingProxyType(table))

    @classmethod
    def from_file(cls, path: Path | None) -> "ChainRegistry":
        """Load the metadata table from disk, falling back to built-ins only."""

        if path is None or not path.exists():
            return cls()
        with path.open("r", encoding="utf-8") as handle:
            return cls.from_meta(json.load(handle))

    def resolve(self, text: Any) -> str | None:
        """Map free text to a strict chain id, or ``None`` when unknown."""

        query = _norm(text)
        if not query:
            return None
        for candidate in _variants(query):
            if candidate in self.meta_aliases:
                return self.meta_aliases[candidate]
        for candidate in _variants(query):
            if candidate in FALLBACK_CHAIN_ALIASES:
                return FALLBACK_CHAIN_ALIASES[candidate]
        if query in KNOWN_CHAIN_IDS:
            return query
        match = EVM_CHAIN_PATTERN.match(query.replace(" ", ""))
        if match:
            return EVM_CHAIN_IDS.get(int(match.group(1)), match.group(0))
        return None

    @staticmethod
    def method_for(chain: str) -> str:
        """Return the settlement method implied by ``chain``."""

        return "lightning" if chain == "lightning" else "onchain"


__all__ = ["ChainRegistry", "is_strict_chain"]
