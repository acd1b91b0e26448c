"""Unit tests for paymap.merge.trust."""

from __future__ import annotations

import pytest

from paymap.merge.trust import coerce_status, limits_for, rank, tier_for_kind, upgrade
from paymap.normalization.schema import SubmissionKind, VerificationStatus


@pytest.mark.parametrize(
    "value,expected",
    [
        ("owner", VerificationStatus.OWNER),
        ("Owner-Verified", VerificationStatus.OWNER),
        ("community_verified", VerificationStatus.COMMUNITY),
        ("directory listed", VerificationStatus.DIRECTORY),
        ("verified", VerificationStatus.DIRECTORY),
        ("pending", VerificationStatus.UNVERIFIED),
        ("bogus", VerificationStatus.UNVERIFIED),
        (None, VerificationStatus.UNVERIFIED),
        (VerificationStatus.COMMUNITY, VerificationStatus.COMMUNITY),
    ],
)
def test_coerce_status_folds_legacy_labels(value, expected):
    assert coerce_status(value) is expected


def test_rank_order():
    assert rank("owner") > rank("community") > rank("directory") > rank("unverified")


@pytest.mark.parametrize(
    "current,incoming,expected",
    [
        ("community", "owner", VerificationStatus.OWNER),
        ("owner", "community", VerificationStatus.OWNER),
        ("directory", "unverified", VerificationStatus.DIRECTORY),
        ("community", "community", VerificationStatus.COMMUNITY),
    ],
)
def test_upgrade_never_lowers(current, incoming, expected):
    assert upgrade(current, incoming) is expected


def test_tier_for_kind():
    assert tier_for_kind(SubmissionKind.OWNER) is VerificationStatus.OWNER
    assert tier_for_kind(SubmissionKind.COMMUNITY) is VerificationStatus.COMMUNITY
    assert tier_for_kind(SubmissionKind.REPORT) is VerificationStatus.UNVERIFIED


def test_limits_per_tier():
    assert (limits_for("owner").max_images, limits_for("owner").max_summary) == (8, 600)
    assert (limits_for("community").max_images, limits_for("community").max_summary) == (4, 300)
    assert limits_for("directory").max_images == 0
    assert limits_for("unverified").max_summary == 0
