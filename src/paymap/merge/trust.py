"""Trust tiers: the single ordering used for every "which source wins" decision."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from paymap.normalization.schema import SubmissionKind, Verification, VerificationStatus

_RANKS = {
    VerificationStatus.UNVERIFIED: 0,
    VerificationStatus.DIRECTORY: 1,
    VerificationStatus.COMMUNITY: 2,
    VerificationStatus.OWNER: 3,
}


@dataclass(frozen=True)
class TierLimits:
    """Per-tier caps on media and free text."""

    max_images: int
    max_summary: int
    max_caption: int


TIER_LIMITS = {
    VerificationStatus.OWNER: TierLimits(max_images=8, max_summary=600, max_caption=600),
    VerificationStatus.COMMUNITY: TierLimits(max_images=4, max_summary=300, max_caption=300),
    VerificationStatus.DIRECTORY: TierLimits(max_images=0, max_summary=0, max_caption=0),
    VerificationStatus.UNVERIFIED: TierLimits(max_images=0, max_summary=0, max_caption=0),
}


def coerce_status(status: Any) -> VerificationStatus:
    """Fold any status spelling (including legacy labels) into a tier; unknown is ``unverified``."""

    if isinstance(status, VerificationStatus):
        return status
    try:
        return Verification(status=status).status
    except ValueError:
        return VerificationStatus.UNVERIFIED


def rank(status: Any) -> int:
    """Return the integer rank of ``status`` (higher is more trusted)."""

    return _RANKS[coerce_status(status)]


def upgrade(current: Any, incoming: Any) -> VerificationStatus:
    """Return the higher of two tiers; ties keep ``current``."""

    current_status = coerce_status(current)
    incoming_status = coerce_status(incoming)
    return incoming_status if rank(incoming_status) > rank(current_status) else current_status


def tier_for_kind(kind: SubmissionKind) -> VerificationStatus:
    """Trust tier asserted by a submission channel. Reports assert nothing."""

    if kind is SubmissionKind.OWNER:
        return VerificationStatus.OWNER
    if kind is SubmissionKind.COMMUNITY:
        return VerificationStatus.COMMUNITY
    return VerificationStatus.UNVERIFIED


def limits_for(status: Any) -> TierLimits:
    return TIER_LIMITS[coerce_status(status)]


__all__ = ["TIER_LIMITS", "TierLimits", "coerce_status", "limits_for", "rank", "tier_for_kind", "upgrade"]
