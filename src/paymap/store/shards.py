"""JSON shard store for canonical place records.

Records live in one file per city: ``<root>/<cc>/<city-slug>.json``, a
pretty-printed JSON array sorted by ``id`` with a trailing newline.
``<root>/index.json`` lists every shard as ``{country, city, path}``.

Older shards wrapped the array in an object (``{"places": [...]}`` and
similar). Those are still readable and are rewritten as plain arrays the next
time the shard is saved.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Sequence

from pydantic import ValidationError

from paymap.merge.matcher import slugify
from paymap.normalization.schema import PlaceRecord

LOGGER = logging.getLogger(__name__)

INDEX_FILENAME = "index.json"
LEGACY_WRAPPER_KEYS = ("places", "items", "results", "data", "entries")
UNKNOWN_COUNTRY = "xx"
UNKNOWN_CITY = "unknown"


class ShardFormatError(RuntimeError):
    """Raised when a shard file cannot be read as a list of place records."""


@dataclass(slots=True)
class ShardContents:
    """Raw shard payload plus how it was stored on disk."""

    path: Path
    items: List[Dict[str, Any]] = field(default_factory=list)
    legacy: bool = False


def shard_key(country: str | None, city: str | None) -> tuple[str, str]:
    """Return the ``(country_dir, city_slug)`` pair a record is filed under."""

    country_dir = (country or "").strip().lower() or UNKNOWN_COUNTRY
    return country_dir, slugify(city) or UNKNOWN_CITY


def dump_json(payload: Any) -> str:
    """Serialize ``payload`` the way every store file is written."""

    return json.dumps(payload, ensure_ascii=False, indent=2) + "\n"


def write_atomic(path: Path, content: str) -> None:
    """Write ``content`` next to ``path`` and swap it into place."""

    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(content, encoding="utf-8")
    os.replace(tmp, path)


class ShardStore:
    """Read and write city shards under a places directory."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    @property
    def index_path(self) -> Path:
        return self.root / INDEX_FILENAME

    def shard_path(self, country: str | None, city: str | None) -> Path:
        country_dir, city_slug = shard_key(country, city)
        return self.root / country_dir / f"{city_slug}.json"

    def list_shards(self) -> List[Path]:
        """Return every shard file, sorted."""

        if not self.root.exists():
            return []
        return sorted(path for path in self.root.glob("*/*.json") if path.is_file())

    def read(self, path: Path) -> ShardContents:
        """Return the raw record dicts stored in ``path`` (empty when missing)."""

        if not path.exists():
            return ShardContents(path=path)
        try:
            with path.open("r", encoding="utf-8") as handle:
                payload = json.load(handle)
        except (OSError, json.JSONDecodeError) as exc:
            raise ShardFormatError(f"Cannot read shard {path}: {exc}") from exc

        legacy = False
        if isinstance(payload, dict):
            key = next((name for name in LEGACY_WRAPPER_KEYS if isinstance(payload.get(name), list)), None)
            if key is None:
                raise ShardFormatError(f"Shard {path} is an object without a record list")
            LOGGER.info("Reading legacy %r-wrapped shard %s", key, path)
            payload = payload[key]
            legacy = True
        if not isinstance(payload, list):
            raise ShardFormatError(f"Shard {path} must contain a JSON array")
        items = [item for item in payload if isinstance(item, dict)]
        if len(items) != len(payload):
            raise ShardFormatError(f"Shard {path} contains non-object entries")
        return ShardContents(path=path, items=items, legacy=legacy)

    def load(self, path: Path) -> List[PlaceRecord]:
        """Load ``path`` as validated place records."""

        return self.parse(self.read(path))

    def parse(self, contents: ShardContents) -> List[PlaceRecord]:
        try:
            return [PlaceRecord.model_validate(item) for item in contents.items]
        except ValidationError as exc:
            raise ShardFormatError(f"Shard {contents.path} holds an invalid record: {exc}") from exc

    def render(self, records: Sequence[PlaceRecord]) -> str:
        ordered = sorted(records, key=lambda record: record.id)
        return dump_json([record.to_json_dict() for record in ordered])

    def save(self, path: Path, records: Sequence[PlaceRecord]) -> bool:
        """Write ``records`` to ``path`` atomically. Returns False when the file is unchanged."""

        content = self.render(records)
        if path.exists() and path.read_text(encoding="utf-8") == content:
            return False
        write_atomic(path, content)
        LOGGER.debug("Wrote %d record(s) to %s", len(records), path)
        return True

    def index_entries(self) -> List[Dict[str, str]]:
        entries = []
        for path in self.list_shards():
            relative = path.relative_to(self.root).as_posix()
            entries.append({"country": path.parent.name.upper(), "city": path.stem, "path": relative})
        return sorted(entries, key=lambda entry: (entry["country"], entry["city"]))

    def write_index(self) -> bool:
        """Rebuild ``index.json`` from the shards on disk."""

        content = dump_json(self.index_entries())
        if self.index_path.exists() and self.index_path.read_text(encoding="utf-8") == content:
            return False
        write_atomic(self.index_path, content)
        return True


__all__ = [
    "ShardContents",
    "ShardFormatError",
    "ShardStore",
    "dump_json",
    "shard_key",
    "write_atomic",
]
