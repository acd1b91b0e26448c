"""Payment normalization: loose payment declarations to strict accept entries.

Every declaration unit ends up in exactly one of three buckets:

* ``accepts`` -- a strict :class:`AcceptEntry` (possibly folded into an earlier
  identical entry),
* ``pending_assets`` -- the chain could not be mapped onto the strict chain set,
* ``rejects`` -- the unit could not be parsed or broke a semantic rule.

Legacy shapes (``btc``/``eth``/``lightning`` booleans, ``coins`` arrays and
structured accept objects) are rendered into declaration lines first and then
go through the same code path as free text.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Mapping, Sequence

from paymap.normalization.chains import ChainRegistry
from paymap.normalization.reference_data import (
    DEFAULT_PREFERRED_SCORE,
    KNOWN_ASSETS,
    LEGACY_COIN_DEFAULT_CHAINS,
    LEGACY_PAYMENT_FLAGS,
    NATIVE_CHAIN_BY_ASSET,
    PREFERRED_SCORES,
    PROCESSORS,
)
from paymap.normalization.schema import AcceptEntry, PendingAsset, RejectedLine

LOGGER = logging.getLogger(__name__)

# Bumped whenever the parsing or chain rules change; records carry the
# version that last normalized them so the store can be replayed.
NORMALIZER_VERSION = 3

_TOKEN = r"[A-Za-z0-9][A-Za-z0-9.+\-]*"
_PAREN_RE = re.compile(rf"^({_TOKEN})\s*\(([^)]+)\)$")
_ON_RE = re.compile(rf"^({_TOKEN})\s+(?:on|via|over)\s+(.+)$", re.IGNORECASE)
_GAP_RE = re.compile(rf"^({_TOKEN})\s+(.+)$")
_BARE_RE = re.compile(rf"^({_TOKEN})$")
_ASSET_RE = re.compile(r"^[A-Z0-9]{2,10}$")
_URL_RE = re.compile(r"^https?://\S+$", re.IGNORECASE)


@dataclass(frozen=True)
class PaymentDeclaration:
    """One payment declaration unit plus metadata carried from structured input."""

    raw: str
    method: str | None = None
    processor: str | None = None
    evidence: tuple[str, ...] = ()
    last_verified: str | None = None
    last_checked: str | None = None
    note: str | None = None


@dataclass
class PaymentParseResult:
    """Outcome of normalizing a batch of payment declarations."""

    accepts: List[AcceptEntry] = field(default_factory=list)
    rejects: List[RejectedLine] = field(default_factory=list)
    pending_assets: List[PendingAsset] = field(default_factory=list)


def split_units(text: str | None) -> List[str]:
    """Split a free-text block into declaration units.

    Units are separated by newlines, and by ``,``/``;``/``|`` outside of
    parentheses. A parenthesized chain list such as ``"USDT (Polygon, BSC)"``
    yields one unit per chain.
    """

    units: List[str] = []
    for line in (text or "").splitlines():
        depth = 0
        current: List[str] = []
        for char in line:
            if char == "(":
                depth += 1
            elif char == ")":
                depth = max(0, depth - 1)
            if char in ",;|" and depth == 0:
                units.append("".join(current))
                current = []
                continue
            current.append(char)
        units.append("".join(current))
    cleaned = [re.sub(r"\s+", " ", unit).strip() for unit in units if unit.strip()]
    return [part for unit in cleaned for part in expand_chain_list(unit)]


def expand_chain_list(unit: str) -> List[str]:
    """Split ``"USDT (Polygon, BSC)"`` into one unit per listed chain."""

    match = _PAREN_RE.match(unit.strip())
    if not match:
        return [unit]
    chains = [token.strip() for token in match.group(2).split(",") if token.strip()]
    if len(chains) < 2:
        return [unit]
    return [f"{match.group(1)} ({chain})" for chain in chains]


def parse_asset_chain(unit: str) -> tuple[str, str | None] | None:
    """Extract ``(asset, chain_text)`` from a unit; chain is ``None`` for a bare ticker."""

    match = _PAREN_RE.match(unit)
    if match:
        return match.group(1), match.group(2).strip()
    parts = [part.strip() for part in unit.split("/")]
    if len(parts) == 2 and re.fullmatch(_TOKEN, parts[0]) and parts[1]:
        return parts[0], parts[1]
    for pattern in (_ON_RE, _GAP_RE):
        match = pattern.match(unit)
        if match:
            return match.group(1), match.group(2).strip()
    match = _BARE_RE.match(unit)
    if match:
        return match.group(1), None
    return None


def normalize_asset(text: str) -> str | None:
    """Return the canonical uppercase ticker, or ``None`` when malformed."""

    cleaned = (text or "").strip()
    ticker = KNOWN_ASSETS.get(cleaned.lower(), cleaned).upper()
    return ticker if _ASSET_RE.match(ticker) else None


def normalize_processor(value: Any) -> str | None:
    if value is None or not str(value).strip():
        return None
    processor = str(value).strip().lower()
    return processor if processor in PROCESSORS else "other"


def merge_accepts(*groups: Iterable[AcceptEntry]) -> List[AcceptEntry]:
    """Union accept entries by ``(asset, chain, processor)``.

    The first occurrence keeps its position and scalar fields; later duplicates
    only contribute evidence URLs and missing timestamps.
    """

    merged: dict[tuple[str, str, str], AcceptEntry] = {}
    for group in groups:
        for entry in group:
            current = merged.get(entry.key)
            if current is None:
                merged[entry.key] = entry.model_copy(deep=True)
                continue
            evidence = list(dict.fromkeys([*current.evidence, *entry.evidence]))
            merged[entry.key] = current.model_copy(
                update={
                    "evidence": evidence,
                    "method": current.method or entry.method,
                    "last_verified": current.last_verified or entry.last_verified,
                    "last_checked": current.last_checked or entry.last_checked,
                    "note": current.note or entry.note,
                }
            )
    return list(merged.values())


def merge_pending(*groups: Iterable[PendingAsset]) -> List[PendingAsset]:
    """Union pending assets by their raw ``(asset, chain)`` spelling."""

    merged: dict[tuple[str, str], PendingAsset] = {}
    for group in groups:
        for item in group:
            merged.setdefault(item.key, item)
    return list(merged.values())


def derive_preferred(accepts: Sequence[AcceptEntry]) -> List[str]:
    """Order accepted ``ASSET@chain`` keys by desirability."""

    ranked = sorted(
        accepts,
        key=lambda entry: PREFERRED_SCORES.get((entry.asset, entry.chain), DEFAULT_PREFERRED_SCORE),
        reverse=True,
    )
    return list(dict.fromkeys(entry.preferred_key for entry in ranked))


def expand_legacy(flags: Mapping[str, Any] | None = None, coins: Iterable[Any] | None = None) -> List[str]:
    """Render legacy boolean flags and ``coins`` arrays as declaration lines."""

    lines: List[str] = []
    for flag, line in LEGACY_PAYMENT_FLAGS.items():
        if (flags or {}).get(flag) is True:
            lines.append(line)
    for coin in coins or []:
        symbol = str(coin or "").strip()
        if not symbol:
            continue
        default_chain = LEGACY_COIN_DEFAULT_CHAINS.get(symbol.upper())
        lines.append(f"{symbol} / {default_chain}" if default_chain else symbol)
    return lines


def declarations_from_accepts(items: Iterable[Any]) -> List[PaymentDeclaration]:
    """Turn loosely-typed accept objects (``{"asset", "chain", ...}``) into declarations."""

    declarations: List[PaymentDeclaration] = []
    for item in items or []:
        if isinstance(item, str):
            declarations.append(PaymentDeclaration(raw=item))
            continue
        if not isinstance(item, Mapping):
            declarations.append(PaymentDeclaration(raw=str(item)))
            continue
        asset = str(item.get("asset") or item.get("symbol") or "").strip()
        chain = str(item.get("chain") or item.get("network") or "").strip()
        raw = f"{asset} / {chain}" if asset and chain else asset or chain
        evidence = item.get("evidence") if isinstance(item.get("evidence"), list) else []
        declarations.append(
            PaymentDeclaration(
                raw=raw,
                method=str(item["method"]).strip().lower() if item.get("method") else None,
                processor=normalize_processor(item.get("processor")),
                evidence=tuple(str(url).strip() for url in evidence if url),
                last_verified=item.get("last_verified") or None,
                last_checked=item.get("last_checked") or None,
                note=item.get("note") or item.get("notes") or None,
            )
        )
    return declarations


class PaymentNormalizer:
    """Parse payment declarations into accepts, pending assets, and rejects."""

    version = NORMALIZER_VERSION

    def __init__(self, registry: ChainRegistry | None = None) -> None:
        self.registry = registry or ChainRegistry()

    def normalize_block(
        self,
        text: str | None,
        *,
        submitted_by: str | None = None,
        submitted_at: str | None = None,
    ) -> PaymentParseResult:
        """Normalize a free-text block (one declaration per line)."""

        declarations = [PaymentDeclaration(raw=unit) for unit in split_units(text)]
        return self.normalize(declarations, submitted_by=submitted_by, submitted_at=submitted_at)

    def normalize_submission(
        self,
        text: str | None = None,
        *,
        accepts: Iterable[Any] | None = None,
        flags: Mapping[str, Any] | None = None,
        coins: Iterable[Any] | None = None,
        submitted_by: str | None = None,
        submitted_at: str | None = None,
    ) -> PaymentParseResult:
        """Normalize every payment shape a submission can carry in one pass."""

        declarations = [PaymentDeclaration(raw=unit) for unit in split_units(text)]
        declarations.extend(declarations_from_accepts(accepts or []))
        declarations.extend(PaymentDeclaration(raw=line) for line in expand_legacy(flags, coins))
        return self.normalize(declarations, submitted_by=submitted_by, submitted_at=submitted_at)

    def normalize(
        self,
        declarations: Iterable[PaymentDeclaration],
        *,
        submitted_by: str | None = None,
        submitted_at: str | None = None,
    ) -> PaymentParseResult:
        result = PaymentParseResult()
        accepted: List[AcceptEntry] = []
        pending: List[PendingAsset] = []

        units = [
            (unit, declaration)
            for declaration in declarations
            if declaration.raw.strip()
            for unit in expand_chain_list(declaration.raw.strip())
        ]
        for raw, declaration in units:
            parsed = parse_asset_chain(raw)
            if parsed is None:
                result.rejects.append(RejectedLine(raw=raw, reason="unparseable"))
                continue
            asset_text, chain_text = parsed

            chain = self._resolve_chain(asset_text, chain_text)
            if chain is None:
                pending.append(
                    PendingAsset(
                        asset_raw=asset_text,
                        chain_raw=chain_text or "",
                        submitted_by=submitted_by,
                        submitted_at=submitted_at,
                        notes=f"unrecognized chain in {raw!r}" if chain_text else "no chain given",
                    )
                )
                continue

            if chain_text is None and self.registry.resolve(asset_text) == "lightning":
                asset_text = "BTC"
            asset = normalize_asset(asset_text)
            if asset is None:
                result.rejects.append(RejectedLine(raw=raw, reason="invalid-asset"))
                continue

            if declaration.method == "lightning" and chain == "bitcoin":
                chain = "lightning"
            if chain == "lightning" and asset != "BTC":
                result.rejects.append(RejectedLine(raw=raw, reason="lightning-requires-btc"))
                continue
            if asset == "BTC" and chain not in {"bitcoin", "lightning"}:
                result.rejects.append(RejectedLine(raw=raw, reason="btc-requires-bitcoin-chain"))
                continue

            accepted.append(
                AcceptEntry(
                    asset=asset,
                    chain=chain,
                    method=self.registry.method_for(chain),
                    processor=declaration.processor,
                    evidence=[url for url in declaration.evidence if _URL_RE.match(url)],
                    last_verified=declaration.last_verified,
                    last_checked=declaration.last_checked,
                    note=declaration.note,
                )
            )

        result.accepts = merge_accepts(accepted)
        result.pending_assets = merge_pending(pending)
        if result.rejects:
            LOGGER.debug("Rejected %d payment declaration(s)", len(result.rejects))
        return result

    def _resolve_chain(self, asset_text: str, chain_text: str | None) -> str | None:
        if chain_text is not None:
            return self.registry.resolve(chain_text)
        if self.registry.resolve(asset_text) == "lightning":
            return "lightning"
        ticker = normalize_asset(asset_text)
        native = NATIVE_CHAIN_BY_ASSET.get(ticker or "")
        return self.registry.resolve(native) if native else None


__all__ = [
    "NORMALIZER_VERSION",
    "PaymentDeclaration",
    "PaymentNormalizer",
    "PaymentParseResult",
    "declarations_from_accepts",
    "derive_preferred",
    "expand_chain_list",
    "expand_legacy",
    "merge_accepts",
    "merge_pending",
    "normalize_asset",
    "parse_asset_chain",
    "split_units",
]
