"""Promotion pipeline: inbox submissions to canonical shard records.

One run reads every inbox file, normalizes it into a submission patch, routes
the patch to the shard that holds (or will hold) its place, and processes each
shard as an independent unit::

    load shard -> match -> merge -> validate -> write shard atomically

Shard units can run on a thread pool; patches for the same shard are applied
sequentially in inbox order. A failure inside one submission never aborts the
batch, and an unreadable shard only aborts its own unit.
"""

from __future__ import annotations

import json
import logging
import time
from collections import Counter
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Sequence

from tqdm import tqdm

from paymap.merge.matcher import MatchCandidate, RecordMatcher, derive_place_id, ref_id_candidates
from paymap.merge.merger import SubmissionMerger
from paymap.normalization.chains import ChainRegistry
from paymap.normalization.forms import SubmissionFormNormalizer, load_country_aliases
from paymap.normalization.schema import PlaceRecord, RejectedLine, RuleViolation, SubmissionKind, SubmissionPatch
from paymap.observability import Observability, get_observability
from paymap.services.notifications import (
    LoggingNotifier,
    LoggingReviewSink,
    NotificationRequest,
    Notifier,
    ReviewSink,
)
from paymap.settings import Settings, get_settings
from paymap.store.shards import ShardFormatError, ShardStore, dump_json
from paymap.store.submissions import SubmissionError, SubmissionInbox
from paymap.validation.rules import BusinessRuleValidator

LOGGER = logging.getLogger(__name__)

CREATED = "created"
UPDATED = "updated"
UNCHANGED = "unchanged"
NEEDS_REVIEW = "needs_review"
INVALID = "invalid"
SKIPPED = "skipped"
REVIEW_STATUSES = frozenset({NEEDS_REVIEW, INVALID, SKIPPED})


@dataclass(slots=True)
class MergeOutcome:
    """What happened to one inbox submission."""

    source: str
    status: str
    ref: str | None = None
    kind: str | None = None
    record_id: str | None = None
    shard: str | None = None
    message: str | None = None
    rejects: List[RejectedLine] = field(default_factory=list)
    violations: List[RuleViolation] = field(default_factory=list)

    def to_log_entries(self) -> List[Dict[str, object]]:
        """Rejects-log lines for this outcome: one per problem."""

        base = {"source": self.source, "ref": self.ref, "kind": self.kind, "record_id": self.record_id}
        entries: List[Dict[str, object]] = []
        if self.status in REVIEW_STATUSES:
            entries.append(
                {
                    **base,
                    "status": self.status,
                    "message": self.message,
                    "violations": [item.model_dump() for item in self.violations],
                }
            )
        entries.extend({**base, "status": "rejected_line", **item.model_dump()} for item in self.rejects)
        return entries


@dataclass(slots=True)
class PromotionSummary:
    """Aggregate result of a promotion run."""

    outcomes: List[MergeOutcome] = field(default_factory=list)
    dry_run: bool = False
    shards_written: int = 0
    log_path: Path | None = None
    summary_path: Path | None = None

    @property
    def counts(self) -> Dict[str, int]:
        return dict(Counter(outcome.status for outcome in self.outcomes))

    def to_dict(self) -> Dict[str, object]:
        return {
            "submissions": len(self.outcomes),
            "counts": self.counts,
            "rejected_lines": sum(len(outcome.rejects) for outcome in self.outcomes),
            "shards_written": self.shards_written,
            "dry_run": self.dry_run,
        }


@dataclass(slots=True)
class _RoutedPatch:
    source: str
    patch: SubmissionPatch


class PromotionService:
    """Run the normalize -> match -> merge -> validate -> write pipeline."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        store: ShardStore | None = None,
        inbox: SubmissionInbox | None = None,
        registry: ChainRegistry | None = None,
        notifier: Notifier | None = None,
        review_sink: ReviewSink | None = None,
        observability: Observability | None = None,
        workers: int | None = None,
        dry_run: bool | None = None,
        now: datetime | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.store = store or ShardStore(self.settings.store.places_dir)
        self.inbox = inbox or SubmissionInbox(self.settings.store.submissions_dir)
        self.registry = registry or ChainRegistry.from_file(self.settings.store.chains_meta_path)
        self.observability = observability or get_observability(component="promotion", settings=self.settings)
        self.notifier = notifier or LoggingNotifier(self.observability)
        self.review_sink = review_sink or LoggingReviewSink(self.observability)
        self.workers = workers or self.settings.pipeline.workers
        self.dry_run = self.settings.pipeline.dry_run if dry_run is None else dry_run
        self.now = now or datetime.now(timezone.utc)

        self.normalizer = SubmissionFormNormalizer(
            self.registry, countries=load_country_aliases(self.settings.store.countries_path)
        )
        self.matcher = RecordMatcher(radius_m=self.settings.matching.radius_m)
        self.merger = SubmissionMerger(self.registry)
        self.validator = BusinessRuleValidator()

    def run(self) -> PromotionSummary:
        started = time.perf_counter()
        summary = PromotionSummary(dry_run=self.dry_run)

        routed, early = self._read_inbox()
        summary.outcomes.extend(early)
        units = self._route(routed, summary.outcomes)

        with ThreadPoolExecutor(max_workers=self.workers) as executor:
            futures = {executor.submit(self._process_shard, path, patches): path for path, patches in units.items()}
            for future in tqdm(as_completed(futures), total=len(futures), desc="Promoting shards", disable=None):
                path = futures[future]
                outcomes, written = future.result()
                summary.outcomes.extend(outcomes)
                summary.shards_written += int(written)
                LOGGER.debug("Finished shard %s with %d outcome(s)", path, len(outcomes))

        summary.outcomes.sort(key=lambda outcome: outcome.source)
        if not self.dry_run:
            if summary.shards_written:
                self.store.write_index()
            self._write_logs(summary)
        self._report(summary, elapsed_ms=(time.perf_counter() - started) * 1000)
        return summary

    def _read_inbox(self) -> tuple[List[_RoutedPatch], List[MergeOutcome]]:
        routed: List[_RoutedPatch] = []
        outcomes: List[MergeOutcome] = []
        for path in self.inbox.list_files():
            source = path.as_posix()
            try:
                item = self.inbox.load(path)
                patch = self.normalizer.normalize(item.submission, now=item.received_at)
            except SubmissionError as exc:
                LOGGER.warning("Skipping %s: %s", path, exc)
                outcomes.append(MergeOutcome(source=source, status=SKIPPED, message=str(exc)))
                continue
            except Exception as exc:  # pragma: no cover - unexpected normalizer failures
                LOGGER.exception("Failed to normalize %s", path)
                outcomes.append(MergeOutcome(source=source, status=SKIPPED, message=str(exc)))
                continue
            routed.append(_RoutedPatch(source=source, patch=patch))
        return routed, outcomes

    def _route(self, routed: Sequence[_RoutedPatch], outcomes: List[MergeOutcome]) -> Dict[Path, List[_RoutedPatch]]:
        """Group patches by target shard, resolving referenced ids across the store."""

        id_index: Dict[str, Path] = {}
        for path in self.store.list_shards():
            try:
                for item in self.store.read(path).items:
                    if item.get("id"):
                        id_index.setdefault(str(item["id"]), path)
            except ShardFormatError:
                LOGGER.warning("Cannot index shard %s", path, exc_info=True)

        units: Dict[Path, List[_RoutedPatch]] = {}
        for item in routed:
            patch = item.patch
            wanted = [patch.record_id] if patch.record_id else []
            wanted.extend(ref_id_candidates(patch.already_listed_ref))
            target = next((id_index[record_id] for record_id in wanted if record_id in id_index), None)
            if target is None and patch.kind is SubmissionKind.REPORT:
                outcomes.append(self._outcome(item, NEEDS_REVIEW, message="referenced place not found"))
                continue
            if target is None:
                target = self.store.shard_path(patch.place.country, patch.place.city)
            units.setdefault(target, []).append(item)
        return units

    def _process_shard(self, path: Path, patches: Sequence[_RoutedPatch]) -> tuple[List[MergeOutcome], bool]:
        shard = path.relative_to(self.store.root).as_posix()
        try:
            contents = self.store.read(path)
            pool = self.store.parse(contents)
        except ShardFormatError as exc:
            LOGGER.error("Skipping shard %s: %s", shard, exc)
            return [self._outcome(item, SKIPPED, shard=shard, message=str(exc)) for item in patches], False

        outcomes: List[MergeOutcome] = []
        changed = False
        for item in patches:
            try:
                outcome = self._apply(pool, item, shard)
            except Exception as exc:  # pragma: no cover - unexpected merge failures
                LOGGER.exception("Failed to promote %s", item.source)
                outcome = self._outcome(item, SKIPPED, shard=shard, message=str(exc))
            changed = changed or outcome.status in (CREATED, UPDATED)
            outcomes.append(outcome)

        written = False
        if not self.dry_run and (changed or contents.legacy):
            written = self.store.save(path, pool)
        return outcomes, written

    def _apply(self, pool: List[PlaceRecord], item: _RoutedPatch, shard: str) -> MergeOutcome:
        patch = item.patch
        index = self.matcher.find(pool, MatchCandidate.from_patch(patch))
        if index < 0 and patch.already_listed:
            return self._outcome(item, NEEDS_REVIEW, shard=shard, message="already listed but no matching record")
        if index < 0 and patch.kind is SubmissionKind.REPORT:
            return self._outcome(item, NEEDS_REVIEW, shard=shard, message="referenced place not found")

        new_id = None
        if index < 0:
            place = patch.place
            new_id = derive_place_id(place.country, place.city, place.name, place.lat, place.lng, patch.submitted_at)
            index = next((position for position, record in enumerate(pool) if record.id == new_id), -1)

        existing = pool[index] if index >= 0 else None
        merged = self.merger.merge(existing, patch, record_id=new_id)
        violations = self.validator.validate(merged)
        if violations:
            return self._outcome(
                item, INVALID, shard=shard, record_id=merged.id, message="merged record breaks business rules",
                violations=violations,
            )

        if existing is None:
            pool.append(merged)
            status = CREATED
        elif merged == existing:
            status = UNCHANGED
        else:
            pool[index] = merged
            status = UPDATED
        return self._outcome(item, status, shard=shard, record_id=merged.id)

    def _outcome(self, item: _RoutedPatch, status: str, **kwargs) -> MergeOutcome:
        return MergeOutcome(
            source=item.source,
            status=status,
            ref=item.patch.ref,
            kind=item.patch.kind.value,
            rejects=list(item.patch.rejects),
            **kwargs,
        )

    def _write_logs(self, summary: PromotionSummary) -> None:
        log_dir = self.settings.store.logs_dir / "promote"
        log_dir.mkdir(parents=True, exist_ok=True)
        stamp = self.now.strftime("%Y-%m-%d")
        summary.log_path = log_dir / f"{stamp}.jsonl"
        summary.summary_path = log_dir / f"{stamp}.summary.json"

        lines = [
            json.dumps(entry, ensure_ascii=False, sort_keys=True)
            for outcome in summary.outcomes
            for entry in outcome.to_log_entries()
        ]
        logged = set(summary.log_path.read_text(encoding="utf-8").splitlines()) if summary.log_path.exists() else set()
        fresh = [line for line in dict.fromkeys(lines) if line not in logged]
        if fresh:
            with summary.log_path.open("a", encoding="utf-8") as handle:
                handle.writelines(line + "\n" for line in fresh)
        summary.summary_path.write_text(dump_json(summary.to_dict()), encoding="utf-8")

    def _report(self, summary: PromotionSummary, *, elapsed_ms: float) -> None:
        for outcome in summary.outcomes:
            self.observability.increment("promotion.outcomes", tags={"status": outcome.status})
            if outcome.status in (CREATED, UPDATED) and not self.dry_run:
                self.notifier.notify(
                    NotificationRequest(
                        ref=outcome.ref or outcome.source,
                        kind="approved",
                        fields={"record_id": outcome.record_id or "", "status": outcome.status},
                    )
                )
            elif outcome.status in (NEEDS_REVIEW, INVALID):
                self.review_sink.stage(
                    outcome.ref or outcome.source,
                    outcome.record_id,
                    outcome.status,
                    {"message": outcome.message or ""},
                )
        self.observability.record_timing("promotion.duration", elapsed_ms)
        self.observability.emit_event("promotion.completed", **summary.to_dict())


__all__ = ["MergeOutcome", "PromotionService", "PromotionSummary"]
