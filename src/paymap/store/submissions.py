"""Reader for the submission inbox.

The inbox holds one JSON file per submission, usually grouped by kind::

    submissions/owner/*.json
    submissions/community/*.json
    submissions/report/*.json

Files placed directly under the inbox root are read too; their ``kind`` must
then be present in the payload.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List

from pydantic import ValidationError

from paymap.normalization.schema import RawSubmission, SubmissionKind

LOGGER = logging.getLogger(__name__)


class SubmissionError(RuntimeError):
    """Raised when an inbox file cannot be parsed into a submission."""


@dataclass(slots=True)
class InboxItem:
    """One parsed inbox file."""

    path: Path
    submission: RawSubmission
    received_at: str


def _mtime_iso(path: Path) -> str:
    stamp = datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc).replace(microsecond=0)
    return stamp.isoformat().replace("+00:00", "Z")


class SubmissionInbox:
    """Enumerate and parse submission files under ``root``."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def list_files(self) -> List[Path]:
        """Return inbox files in processing order (sorted by path)."""

        if not self.root.exists():
            return []
        files = list(self.root.glob("*.json"))
        for kind in SubmissionKind:
            files.extend(self.root.joinpath(kind.value).glob("*.json"))
        return sorted(path for path in files if path.is_file())

    def load(self, path: Path) -> InboxItem:
        try:
            with path.open("r", encoding="utf-8") as handle:
                payload = json.load(handle)
        except (OSError, json.JSONDecodeError) as exc:
            raise SubmissionError(f"Cannot read submission {path}: {exc}") from exc
        if not isinstance(payload, dict):
            raise SubmissionError(f"Submission {path} must be a JSON object")

        data: Dict[str, Any] = dict(payload)
        if "kind" not in data and path.parent.name in SubmissionKind._value2member_map_:
            data["kind"] = path.parent.name
        try:
            submission = RawSubmission.model_validate(data)
        except ValidationError as exc:
            raise SubmissionError(f"Submission {path} is invalid: {exc.errors(include_url=False)}") from exc
        LOGGER.debug("Loaded %s submission from %s", submission.kind.value, path)
        return InboxItem(path=path, submission=submission, received_at=_mtime_iso(path))


__all__ = ["InboxItem", "SubmissionError", "SubmissionInbox"]
