"""Store migration: replay the current payment rules over every stored record.

Records written by older rule sets may carry legacy payment shapes
(``payment.btc``/``eth``/``lightning``/``onchain`` booleans, ``coins`` arrays,
``pending_assets`` at the top level), chains outside the strict set, or a
``preferred`` list that no longer matches ``accepts``. Migration runs those
through the same :class:`PaymentNormalizer` path that new submissions use, so
there is a single set of rules. Nothing is dropped: entries the current rules
cannot accept are moved to ``payment.pending_assets``.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping

from pydantic import ValidationError
from tqdm import tqdm

from paymap.normalization.chains import ChainRegistry
from paymap.normalization.payments import (
    NORMALIZER_VERSION,
    PaymentDeclaration,
    PaymentNormalizer,
    declarations_from_accepts,
    derive_preferred,
    expand_legacy,
    merge_pending,
)
from paymap.normalization.schema import PendingAsset, PlaceRecord
from paymap.observability import Observability, get_observability
from paymap.settings import Settings, get_settings
from paymap.store.shards import ShardFormatError, ShardStore

LOGGER = logging.getLogger(__name__)

LEGACY_FLAG_KEYS = ("btc", "eth", "lightning", "onchain")
MIGRATION_SUBMITTER = "migration"


@dataclass(slots=True)
class PaymentMigration:
    """Result of re-normalizing one record's payment block."""

    payment: Dict[str, Any]
    demoted: int = 0


@dataclass(slots=True)
class MigrationReport:
    """Aggregate result of a store migration."""

    shards: int = 0
    records: int = 0
    changed: int = 0
    demoted: int = 0
    shards_written: int = 0
    errors: List[str] = field(default_factory=list)
    dry_run: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "shards": self.shards,
            "records": self.records,
            "changed": self.changed,
            "demoted": self.demoted,
            "shards_written": self.shards_written,
            "errors": len(self.errors),
            "dry_run": self.dry_run,
        }


def normalize_payment_section(
    place: Mapping[str, Any],
    normalizer: PaymentNormalizer,
    *,
    fallback_by: str = MIGRATION_SUBMITTER,
    fallback_at: str | None = None,
) -> PaymentMigration:
    """Return a canonical ``payment`` block for a raw stored record.

    Legacy flags and coin lists are expanded, structured accepts are re-parsed,
    entries the rules reject or cannot map are demoted to pending assets, and
    ``preferred`` is re-derived unless the stored list is still a non-empty
    subset of the accepts.
    """

    payment = dict(place.get("payment") or {})
    submitted = (place.get("verification") or {}).get("submitted") or {}
    by = submitted.get("by") or fallback_by
    at = submitted.get("at") or fallback_at

    flags = {key: payment.pop(key) for key in LEGACY_FLAG_KEYS if key in payment}
    coins = [*(payment.pop("coins", None) or []), *(place.get("coins") or [])]
    raw_accepts = payment.get("accepts") or []
    declarations = declarations_from_accepts(raw_accepts if isinstance(raw_accepts, list) else [raw_accepts])
    declarations.extend(PaymentDeclaration(raw=line) for line in expand_legacy(flags, coins))
    result = normalizer.normalize(declarations, submitted_by=by, submitted_at=at)

    demoted = [
        PendingAsset(asset_raw=item.raw, chain_raw="", submitted_by=by, submitted_at=at, notes=f"demoted: {item.reason}")
        for item in result.rejects
    ]
    stored_pending = [*(payment.get("pending_assets") or []), *(place.get("pending_assets") or [])]
    existing_pending = []
    for item in stored_pending:
        if not isinstance(item, Mapping) or not item.get("asset_raw"):
            continue
        existing_pending.append(
            PendingAsset.model_validate(
                {**item, "submitted_by": item.get("submitted_by") or by, "submitted_at": item.get("submitted_at") or at}
            )
        )
    pending = merge_pending(existing_pending, result.pending_assets, demoted)

    accept_keys = [entry.preferred_key for entry in result.accepts]
    stored_preferred = [key for key in payment.get("preferred") or [] if isinstance(key, str)]
    if stored_preferred and set(stored_preferred) <= set(accept_keys):
        preferred = list(dict.fromkeys(stored_preferred))
    else:
        preferred = derive_preferred(result.accepts)

    payment["accepts"] = [entry.model_dump(mode="json", exclude_none=True) for entry in result.accepts]
    payment["preferred"] = preferred
    payment["pending_assets"] = [item.model_dump(mode="json", exclude_none=True) for item in pending]
    return PaymentMigration(payment=payment, demoted=len(pending) - len(existing_pending))


class MigrationService:
    """Re-run the current normalizer over every record in the store."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        store: ShardStore | None = None,
        registry: ChainRegistry | None = None,
        observability: Observability | None = None,
        dry_run: bool | None = None,
        now: str | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.store = store or ShardStore(self.settings.store.places_dir)
        self.normalizer = PaymentNormalizer(registry or ChainRegistry.from_file(self.settings.store.chains_meta_path))
        self.observability = observability or get_observability(component="migration", settings=self.settings)
        self.dry_run = self.settings.pipeline.dry_run if dry_run is None else dry_run
        self.now = now

    def migrate_item(self, item: Mapping[str, Any]) -> tuple[PlaceRecord, int]:
        """Return the migrated record for one raw stored dict and the number of demoted entries."""

        data = copy.deepcopy(dict(item))
        migration = normalize_payment_section(data, self.normalizer, fallback_at=self.now)
        data.pop("coins", None)
        data.pop("pending_assets", None)
        data["payment"] = migration.payment
        data["normalizer_version"] = NORMALIZER_VERSION
        return PlaceRecord.model_validate(data), migration.demoted

    def run(self) -> MigrationReport:
        report = MigrationReport(dry_run=self.dry_run)
        for path in tqdm(self.store.list_shards(), desc="Migrating shards", disable=None):
            report.shards += 1
            try:
                contents = self.store.read(path)
            except ShardFormatError as exc:
                LOGGER.error("Skipping shard %s: %s", path, exc)
                report.errors.append(str(exc))
                continue

            records: List[PlaceRecord] = []
            changed = contents.legacy
            for item in contents.items:
                report.records += 1
                try:
                    record, demoted = self.migrate_item(item)
                except ValidationError as exc:
                    LOGGER.warning("Cannot migrate record %s in %s", item.get("id"), path)
                    report.errors.append(f"{path}#{item.get('id')}: {exc.error_count()} schema error(s)")
                    records = []
                    break
                if record.to_json_dict() != item:
                    report.changed += 1
                    changed = True
                report.demoted += demoted
                records.append(record)
            else:
                if changed and not self.dry_run and self.store.save(path, records):
                    report.shards_written += 1

        if report.shards_written:
            self.store.write_index()
        self.observability.emit_event("migration.completed", **report.to_dict())
        self.observability.increment("migration.records_changed", value=float(report.changed))
        return report


__all__ = ["MigrationReport", "MigrationService", "PaymentMigration", "normalize_payment_section"]
