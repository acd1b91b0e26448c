"""Submission merge policy.

``SubmissionMerger.merge`` folds one :class:`SubmissionPatch` into an existing
:class:`PlaceRecord` (or creates one). It is a pure function of its inputs: the
existing record is never mutated and merging the same patch twice yields the
same record as merging it once. Every applied patch leaves its ``ref`` in
``verification.applied_refs``; a patch whose ref is already there is a no-op,
so replaying an inbox in any order cannot flip a record back and forth.

Field policy:

* name, address, website, phone, hours, category: filled when empty; owner
  patches overwrite, community patches never do.
* city and country: filled when empty only.
* lat/lng: owner overwrites, anyone fills missing coordinates.
* socials, accepts, sources, pending assets: keyed union, incoming first.
* profile summary: the longer text wins, cut to the submitting tier's cap.
* gallery: incoming first, union by URL, capped by the resulting tier.
* verification status: only moves up; :meth:`SubmissionMerger.apply_moderation`
  is the only way down.
* reports never touch place fields; they can raise ``disputed`` and add review
  notes, suggestions, and evidence sources.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Iterable, List, Sequence, TypeVar

from paymap.merge.matcher import derive_place_id
from paymap.merge.trust import coerce_status, limits_for, rank, tier_for_kind, upgrade
from paymap.normalization.chains import ChainRegistry
from paymap.normalization.payments import NORMALIZER_VERSION, derive_preferred, merge_accepts, merge_pending
from paymap.normalization.reference_data import CLOSURE_PATTERN
from paymap.normalization.schema import (
    AcceptEntry,
    Media,
    Payment,
    PendingAsset,
    PlaceRecord,
    Profile,
    Review,
    StatusOverride,
    SubmissionKind,
    SubmissionPatch,
    SubmittedBy,
    VerificationStatus,
)

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

OWNER_WINS_FIELDS = ("name", "address", "website", "phone", "hours", "category")
FILL_ONLY_FIELDS = ("city", "country")
SCALAR_SUGGESTION_FIELDS = frozenset({"phone", "hours", "website", "category"})

_ROLES = {
    SubmissionKind.OWNER: "owner",
    SubmissionKind.COMMUNITY: "non_owner",
    SubmissionKind.REPORT: "unknown",
}
_STAMP_KEYS = ("submitted", "last_checked", "last_verified", "applied_refs")


def union_by(incoming: Iterable[T], existing: Iterable[T], key: Callable[[T], Any]) -> List[T]:
    """Keyed union that keeps the first occurrence, incoming entries first."""

    merged: Dict[Any, T] = {}
    for item in [*incoming, *existing]:
        merged.setdefault(key(item), item)
    return list(merged.values())


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _content(record: PlaceRecord | None) -> Dict[str, Any] | None:
    """Record payload without the bookkeeping stamps, used to detect real changes."""

    if record is None:
        return None
    payload = record.to_json_dict()
    verification = payload.get("verification") or {}
    for key in _STAMP_KEYS:
        verification.pop(key, None)
    return payload


class SubmissionMerger:
    """Apply submission patches to canonical place records."""

    def __init__(self, registry: ChainRegistry | None = None) -> None:
        self.registry = registry or ChainRegistry()

    def merge(
        self,
        existing: PlaceRecord | None,
        patch: SubmissionPatch,
        *,
        record_id: str | None = None,
    ) -> PlaceRecord:
        """Return the record that results from applying ``patch`` to ``existing``."""

        if existing is not None and patch.ref and patch.ref in (existing.verification.applied_refs or []):
            return existing.model_copy(deep=True)
        if existing is None:
            if patch.kind is SubmissionKind.REPORT:
                raise ValueError("report patches can only be merged into an existing record")
            base = self._new_record(patch, record_id)
        else:
            base = existing

        if patch.kind is SubmissionKind.REPORT:
            merged = self._merge_report(base, patch)
        else:
            merged = self._merge_listing(base, patch)

        if existing is not None and _content(merged) == _content(existing):
            return existing.model_copy(deep=True)
        return self._stamp(merged, patch)

    def _new_record(self, patch: SubmissionPatch, record_id: str | None) -> PlaceRecord:
        place = patch.place
        new_id = record_id or derive_place_id(
            place.country, place.city, place.name, place.lat, place.lng, patch.submitted_at
        )
        LOGGER.debug("Creating new place %s from %s", new_id, patch.ref or patch.kind.value)
        return PlaceRecord(id=new_id, name=(place.name or "").strip() or new_id)

    def _merge_listing(self, base: PlaceRecord, patch: SubmissionPatch) -> PlaceRecord:
        place = patch.place
        is_owner = patch.kind is SubmissionKind.OWNER
        update: Dict[str, Any] = {}

        for field in OWNER_WINS_FIELDS:
            current = getattr(base, field)
            incoming = getattr(place, field)
            if _blank(incoming):
                continue
            if _blank(current) or is_owner:
                update[field] = incoming
        for field in FILL_ONLY_FIELDS:
            if _blank(getattr(base, field)) and not _blank(getattr(place, field)):
                update[field] = getattr(place, field)
        if place.lat is not None and place.lng is not None:
            if is_owner or base.lat is None or base.lng is None:
                update["lat"], update["lng"] = place.lat, place.lng

        update["socials"] = union_by(place.socials, base.socials, lambda link: link.key)

        status = upgrade(base.verification.status, tier_for_kind(patch.kind))
        update["verification"] = base.verification.model_copy(
            update={
                "status": status,
                "sources": union_by(place.sources, base.verification.sources, lambda source: source.key),
            }
        )
        update["payment"] = self._merge_payment(base.payment, place.accepts, place.pending_assets)
        if place.accepts or place.pending_assets:
            update["normalizer_version"] = NORMALIZER_VERSION

        summary = self._merge_summary(base, place.summary, patch.kind)
        if summary is not None:
            update["profile"] = (base.profile or Profile()).model_copy(update={"summary": summary})

        existing_images = base.media.images if base.media else []
        images = union_by(place.images, existing_images, lambda image: image.url)[: limits_for(status).max_images]
        if images:
            update["media"] = (base.media or Media()).model_copy(update={"images": images})
        elif base.media is not None:
            update["media"] = None

        return base.model_copy(deep=True, update=update)

    def _merge_payment(
        self, payment: Payment, accepts: Sequence[AcceptEntry], pending: Sequence[PendingAsset]
    ) -> Payment:
        merged_accepts = merge_accepts(accepts, payment.accepts)
        return payment.model_copy(
            update={
                "accepts": merged_accepts,
                "pending_assets": merge_pending(pending, payment.pending_assets),
                "preferred": derive_preferred(merged_accepts),
            }
        )

    def _merge_summary(self, base: PlaceRecord, incoming: str | None, kind: SubmissionKind) -> str | None:
        cap = limits_for(tier_for_kind(kind)).max_summary
        candidate = (incoming or "").strip()[:cap]
        if not candidate:
            return None
        current = (base.profile.summary if base.profile else None) or ""
        return candidate if len(candidate) >= len(current) else None

    def _merge_report(self, base: PlaceRecord, patch: SubmissionPatch) -> PlaceRecord:
        update: Dict[str, Any] = {
            "verification": base.verification.model_copy(
                update={"sources": union_by(patch.place.sources, base.verification.sources, lambda s: s.key)}
            )
        }

        closure = bool(patch.details and CLOSURE_PATTERN.search(patch.details))
        proposed = patch.proposed_status not in (None, StatusOverride.NONE)
        if (closure or proposed) and base.status_override in (None, StatusOverride.NONE):
            update["status_override"] = StatusOverride.DISPUTED

        review = base.review or Review()
        notes = list(review.notes)
        if patch.details:
            note = f"[{patch.ref}] {patch.details}" if patch.ref else patch.details
            if note not in notes:
                notes.append(note)
        suggestions = union_by(review.suggestions, patch.suggestions, lambda suggestion: suggestion.key)
        if notes or suggestions:
            update["review"] = review.model_copy(update={"notes": notes, "suggestions": suggestions})

        return base.model_copy(deep=True, update=update)

    def _stamp(self, record: PlaceRecord, patch: SubmissionPatch) -> PlaceRecord:
        stamps: Dict[str, Any] = {"last_checked": patch.submitted_at}
        if patch.ref:
            stamps["applied_refs"] = list(dict.fromkeys([*(record.verification.applied_refs or []), patch.ref]))
        if patch.kind is not SubmissionKind.REPORT:
            stamps["submitted"] = SubmittedBy(by=patch.submitted_by, role=_ROLES[patch.kind], at=patch.submitted_at)
            stamps["last_verified"] = patch.submitted_at
        return record.model_copy(update={"verification": record.verification.model_copy(update=stamps)})

    def apply_moderation(
        self,
        record: PlaceRecord,
        *,
        status: VerificationStatus | str | None = None,
        override: StatusOverride | str | None = None,
        note: str | None = None,
    ) -> PlaceRecord:
        """Set tier and/or moderation flag explicitly. The only path that can lower a tier."""

        update: Dict[str, Any] = {}
        if status is not None:
            new_status = coerce_status(status)
            if rank(new_status) < rank(record.verification.status):
                LOGGER.info("Moderation lowers %s from %s to %s", record.id, record.verification.status.value, new_status.value)
            update["verification"] = record.verification.model_copy(update={"status": new_status})
        if override is not None:
            update["status_override"] = StatusOverride(override)
        if note:
            review = record.review or Review()
            update["review"] = review.model_copy(update={"notes": [*review.notes, note]})
        return record.model_copy(deep=True, update=update)

    def promote_suggestion(self, record: PlaceRecord, field: str, value: str) -> PlaceRecord:
        """Apply a pending review suggestion to the record and drop it from the queue."""

        review = record.review or Review()
        wanted = (field, value.strip().lower())
        match = next((item for item in review.suggestions if item.key == wanted), None)
        if match is None:
            raise KeyError(f"no suggestion {field}={value!r} on {record.id}")

        update: Dict[str, Any] = {
            "review": review.model_copy(
                update={"suggestions": [item for item in review.suggestions if item.key != wanted]}
            )
        }
        if field in SCALAR_SUGGESTION_FIELDS:
            update[field] = match.value
        elif field == "status_override":
            update["status_override"] = StatusOverride(match.value)
        elif field == "payment.accepts":
            asset, _, chain = match.value.partition("@")
            entry = AcceptEntry(asset=asset, chain=chain, method=self.registry.method_for(chain))
            update["payment"] = self._merge_payment(record.payment, [entry], [])
        elif field == "payment.pending_assets":
            asset_raw, _, chain_raw = match.value.partition("/")
            pending = PendingAsset(
                asset_raw=asset_raw.strip(),
                chain_raw=chain_raw.strip(),
                submitted_by=match.submitted_by,
                submitted_at=match.submitted_at,
                notes=f"promoted from report {match.ref}" if match.ref else None,
            )
            update["payment"] = self._merge_payment(record.payment, [], [pending])
        else:
            raise ValueError(f"unsupported suggestion field {field!r}")
        return record.model_copy(deep=True, update=update)


__all__ = ["SubmissionMerger", "union_by"]
