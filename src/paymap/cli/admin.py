"""Administrative batch commands for the paymap record store.

Usage::

    paymap-admin promote --submissions data/submissions --places data/places
    paymap-admin validate --places data/places
    paymap-admin migrate --places data/places --dry-run

Every command is safe to re-run against its own output.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from paymap.services.migration import MigrationService
from paymap.services.promotion import INVALID, NEEDS_REVIEW, SKIPPED, PromotionService
from paymap.settings import Settings, get_settings
from paymap.store.shards import ShardStore
from paymap.validation.rules import BusinessRuleValidator

LOGGER = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="paymap-admin", description="Batch tools for the paymap record store")
    parser.add_argument("--log-level", default=None, help="Override the configured log level")
    subparsers = parser.add_subparsers(dest="command", required=True)

    promote = subparsers.add_parser("promote", help="Merge inbox submissions into the record store")
    promote.add_argument("--submissions", type=Path, default=None, help="Submission inbox directory")
    promote.add_argument("--places", type=Path, default=None, help="Record store (places) directory")
    promote.add_argument("--logs", type=Path, default=None, help="Directory for rejects logs and run summaries")
    promote.add_argument("--chains-meta", type=Path, default=None, help="Optional chains.meta.json alias table")
    promote.add_argument("--workers", type=int, default=None, help="Shards processed in parallel")
    promote.add_argument("--dry-run", action="store_true", help="Report outcomes without writing any file")

    validate = subparsers.add_parser("validate", help="Check every stored record against the business rules")
    validate.add_argument("--places", type=Path, default=None, help="Record store (places) directory")

    migrate = subparsers.add_parser("migrate", help="Replay the current payment rules over the record store")
    migrate.add_argument("--places", type=Path, default=None, help="Record store (places) directory")
    migrate.add_argument("--chains-meta", type=Path, default=None, help="Optional chains.meta.json alias table")
    migrate.add_argument("--dry-run", action="store_true", help="Report changes without writing any file")
    return parser


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    return build_parser().parse_args(argv)


def apply_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    """Return settings with CLI path and pipeline options applied."""

    store_updates = {}
    for arg_name, field_name in (
        ("places", "places_dir"),
        ("submissions", "submissions_dir"),
        ("logs", "logs_dir"),
        ("chains_meta", "chains_meta_path"),
    ):
        value = getattr(args, arg_name, None)
        if value is not None:
            store_updates[field_name] = value.expanduser().resolve()
    pipeline_updates = {}
    if getattr(args, "workers", None):
        pipeline_updates["workers"] = max(1, args.workers)
    if getattr(args, "dry_run", False):
        pipeline_updates["dry_run"] = True
    return settings.model_copy(
        update={
            "store": settings.store.model_copy(update=store_updates),
            "pipeline": settings.pipeline.model_copy(update=pipeline_updates),
        }
    )


def run_promote(settings: Settings) -> int:
    summary = PromotionService(settings).run()
    counts = summary.counts
    print(json.dumps(summary.to_dict(), indent=2))
    flagged = sum(counts.get(status, 0) for status in (NEEDS_REVIEW, INVALID, SKIPPED))
    if flagged:
        print(f"⚠️  {flagged} submission(s) need attention, see {summary.log_path or 'the counts above'}")
    else:
        print("✅ Promotion complete")
    return 0


def run_validate(settings: Settings) -> int:
    report = BusinessRuleValidator().validate_store(ShardStore(settings.store.places_dir))
    if not report.passed:
        print(f"❌ {report.error_count} violation(s) in {len(report.failures)} record(s):")
        for line in report.lines():
            print(f"  - {line}")
        return 1
    print(f"✅ {report.records} record(s) in {report.shards} shard(s) passed validation")
    return 0


def run_migrate(settings: Settings) -> int:
    report = MigrationService(settings).run()
    print(json.dumps(report.to_dict(), indent=2))
    for message in report.errors:
        print(f"  - {message}")
    return 1 if report.errors else 0


COMMANDS = {
    "promote": run_promote,
    "validate": run_validate,
    "migrate": run_migrate,
}


def main(argv: list[str] | None = None) -> int:
    """CLI entry point.

    Args:
        argv: Optional list of CLI arguments.

    Returns:
        Zero on success, non-zero when validation or migration reports errors.
    """

    args = parse_args(argv)
    settings = apply_overrides(get_settings(), args)
    logging.basicConfig(
        level=(args.log_level or settings.log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    LOGGER.debug("Running %s with places=%s", args.command, settings.store.places_dir)
    return COMMANDS[args.command](settings)


if __name__ == "__main__":
    sys.exit(main())
