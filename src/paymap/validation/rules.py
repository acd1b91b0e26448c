"""Business rules for canonical place records.

The validator never raises. Every failure becomes a :class:`RuleViolation`
with a dotted location, and all failures are collected rather than stopping
at the first one.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping

from pydantic import ValidationError

from paymap.merge.trust import limits_for
from paymap.normalization.chains import ChainRegistry, is_strict_chain
from paymap.normalization.evidence import clean_url
from paymap.normalization.schema import PlaceRecord, RuleViolation, VerificationStatus
from paymap.store.shards import ShardFormatError, ShardStore

LOGGER = logging.getLogger(__name__)

PREFERRED_RE = re.compile(r"^[A-Z0-9]{2,10}@[a-z0-9:-]+$")
ASSET_RE = re.compile(r"^[A-Z0-9]{2,10}$")
PROFILE_TIERS = frozenset({VerificationStatus.OWNER, VerificationStatus.COMMUNITY})


@dataclass(slots=True)
class ValidationReport:
    """Outcome of validating every record in a store."""

    shards: int = 0
    records: int = 0
    ok: int = 0
    failures: Dict[str, List[RuleViolation]] = field(default_factory=dict)

    @property
    def error_count(self) -> int:
        return sum(len(items) for items in self.failures.values())

    @property
    def passed(self) -> bool:
        return not self.failures

    def lines(self) -> List[str]:
        """Human-readable ``<where>: <location>: <message>`` lines."""

        output = []
        for where, violations in sorted(self.failures.items()):
            output.extend(f"{where}: {item.location}: {item.message}" for item in violations)
        return output


class BusinessRuleValidator:
    """Check semantic invariants the structural schema cannot express."""

    def validate(self, record: PlaceRecord) -> List[RuleViolation]:
        violations: List[RuleViolation] = []

        def fail(location: str, message: str) -> None:
            violations.append(RuleViolation(location=location, message=message))

        if not record.id.strip():
            fail("id", "id must not be empty")
        if not record.name.strip():
            fail("name", "name must not be empty")
        if record.lat is not None and not -90 <= record.lat <= 90:
            fail("lat", f"latitude {record.lat} out of range")
        if record.lng is not None and not -180 <= record.lng <= 180:
            fail("lng", f"longitude {record.lng} out of range")

        status = record.verification.status
        limits = limits_for(status)
        accepts = record.payment.accepts

        for index, entry in enumerate(accepts):
            where = f"payment.accepts[{index}]"
            if not ASSET_RE.match(entry.asset):
                fail(f"{where}.asset", f"asset {entry.asset!r} is not an uppercase ticker")
            if not is_strict_chain(entry.chain):
                fail(f"{where}.chain", f"chain {entry.chain!r} is not a supported chain id")
            if entry.chain == "lightning" and entry.asset != "BTC":
                fail(where, f"lightning requires asset BTC, got {entry.asset}")
            if entry.asset == "BTC" and entry.chain not in {"bitcoin", "lightning"}:
                fail(where, f"BTC must be on bitcoin or lightning, got {entry.chain}")
            if entry.method is not None and entry.method != ChainRegistry.method_for(entry.chain):
                fail(f"{where}.method", f"method {entry.method!r} does not match chain {entry.chain!r}")
            for position, url in enumerate(entry.evidence):
                if clean_url(url) is None:
                    fail(f"{where}.evidence[{position}]", f"invalid URL {url!r}")

        accept_keys = {entry.preferred_key for entry in accepts}
        if accepts and not record.payment.preferred:
            fail("payment.preferred", "preferred must not be empty when accepts is non-empty")
        for index, key in enumerate(record.payment.preferred):
            if not PREFERRED_RE.match(key):
                fail(f"payment.preferred[{index}]", f"{key!r} is not ASSET@chain")
            elif key not in accept_keys:
                fail(f"payment.preferred[{index}]", f"{key!r} is not among accepted payments")

        for index, source in enumerate(record.verification.sources):
            if source.url is not None and clean_url(source.url) is None:
                fail(f"verification.sources[{index}].url", f"invalid URL {source.url!r}")

        for index, link in enumerate(record.socials):
            if not link.url and not link.handle:
                fail(f"socials[{index}]", "social link needs a url or a handle")
            elif link.url and clean_url(link.url) is None:
                fail(f"socials[{index}].url", f"invalid URL {link.url!r}")

        images = record.media.images if record.media else []
        if len(images) > limits.max_images:
            fail("media.images", f"{len(images)} images exceed the {status.value} limit of {limits.max_images}")
        for index, image in enumerate(images):
            if clean_url(image.url) is None:
                fail(f"media.images[{index}].url", f"invalid URL {image.url!r}")
            if image.caption and len(image.caption) > limits.max_caption:
                fail(
                    f"media.images[{index}].caption",
                    f"caption longer than {limits.max_caption} characters for {status.value}",
                )

        if record.profile is not None:
            summary = record.profile.summary or ""
            if status not in PROFILE_TIERS:
                fail("profile", f"profile is only allowed for owner or community records, not {status.value}")
            elif len(summary) > limits.max_summary:
                fail("profile.summary", f"summary longer than {limits.max_summary} characters for {status.value}")

        return violations

    def validate_raw(self, payload: Mapping[str, Any]) -> List[RuleViolation]:
        """Validate an unparsed record dict; schema errors are reported as violations."""

        try:
            record = PlaceRecord.model_validate(payload)
        except ValidationError as exc:
            return [
                RuleViolation(location=".".join(str(part) for part in error["loc"]) or "record", message=error["msg"])
                for error in exc.errors(include_url=False)
            ]
        return self.validate(record)

    def validate_store(self, store: ShardStore) -> ValidationReport:
        """Validate every record in every shard, collecting all failures."""

        report = ValidationReport()
        for path in store.list_shards():
            report.shards += 1
            relative = path.relative_to(store.root).as_posix()
            try:
                contents = store.read(path)
            except ShardFormatError as exc:
                report.failures[relative] = [RuleViolation(location="shard", message=str(exc))]
                continue
            seen_ids: set[str] = set()
            for position, item in enumerate(contents.items):
                report.records += 1
                record_id = str(item.get("id") or f"#{position}")
                violations = self.validate_raw(item)
                if record_id in seen_ids:
                    violations.append(RuleViolation(location="id", message=f"duplicate id {record_id!r} in shard"))
                seen_ids.add(record_id)
                if violations:
                    report.failures.setdefault(f"{relative}#{record_id}", []).extend(violations)
                else:
                    report.ok += 1
        LOGGER.info(
            "Validated %d record(s) in %d shard(s): %d ok, %d violation(s)",
            report.records,
            report.shards,
            report.ok,
            report.error_count,
        )
        return report


__all__ = ["BusinessRuleValidator", "ValidationReport"]
