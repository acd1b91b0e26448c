"""Unit tests for paymap.store.submissions."""

from __future__ import annotations

import json
import re

import pytest

from paymap.normalization.schema import SubmissionKind
from paymap.store.submissions import SubmissionError, SubmissionInbox


def _write(path, payload):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(payload if isinstance(payload, str) else json.dumps(payload), encoding="utf-8")
    return path


def test_kind_is_inferred_from_directory(tmp_path):
    path = _write(tmp_path / "owner" / "a.json", {"name": "Cafe", "payments": "BTC"})
    item = SubmissionInbox(tmp_path).load(path)

    assert item.submission.kind is SubmissionKind.OWNER
    assert item.submission.payments_raw == "BTC"
    assert re.match(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}Z$", item.received_at)


def test_explicit_kind_wins(tmp_path):
    path = _write(tmp_path / "owner" / "b.json", {"kind": "community", "name": "Cafe"})

    assert SubmissionInbox(tmp_path).load(path).submission.kind is SubmissionKind.COMMUNITY


@pytest.mark.parametrize(
    "name,payload",
    [
        ("broken.json", "{oops"),
        ("list.json", [1, 2]),
        ("nameless.json", {"payments": "BTC"}),
    ],
)
def test_bad_files_raise(tmp_path, name, payload):
    path = _write(tmp_path / "community" / name, payload)

    with pytest.raises(SubmissionError):
        SubmissionInbox(tmp_path).load(path)


def test_listing_order_and_loading(tmp_path):
    _write(tmp_path / "report" / "r.json", {"place_id_or_url": "abc123", "details": "closed"})
    _write(tmp_path / "owner" / "o.json", {"name": "Cafe"})
    _write(tmp_path / "root.json", {"kind": "community", "name": "Bar"})
    _write(tmp_path / "community" / "bad.json", "{oops")
    _write(tmp_path / "elsewhere" / "ignored.json", {"kind": "owner", "name": "X"})
    inbox = SubmissionInbox(tmp_path)

    assert [path.relative_to(tmp_path).as_posix() for path in inbox.list_files()] == [
        "community/bad.json",
        "owner/o.json",
        "report/r.json",
        "root.json",
    ]
    readable = [path for path in inbox.list_files() if path.name != "bad.json"]
    assert [inbox.load(path).submission.kind.value for path in readable] == ["owner", "report", "community"]


def test_missing_inbox_is_empty(tmp_path):
    assert SubmissionInbox(tmp_path / "nope").list_files() == []
