"""Canonical schema definitions for place records and submission patches.

The models here are structural only: they accept anything shaped like a place
record so that a store audit can load a damaged record and report on it. The
semantic invariants (lightning is BTC-only, ``preferred`` is a subset of
``accepts``, tier caps) live in :mod:`paymap.validation.rules`.

Unknown top-level keys on a place record are preserved on round-trip.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from paymap.normalization.reference_data import SOCIAL_PLATFORM_ALIASES, VERIFICATION_STATUS_ALIASES


class VerificationStatus(str, Enum):
    """Trust tiers, highest first."""

    OWNER = "owner"
    COMMUNITY = "community"
    DIRECTORY = "directory"
    UNVERIFIED = "unverified"


class SubmissionKind(str, Enum):
    """Submission channels."""

    OWNER = "owner"
    COMMUNITY = "community"
    REPORT = "report"


class SourceType(str, Enum):
    """Closed vocabulary of evidence source types."""

    OFFICIAL_SITE = "official_site"
    PROVIDER_DIRECTORY = "provider_directory"
    TEXT = "text"
    WIDGET = "widget"
    RECEIPT = "receipt"
    SCREENSHOT = "screenshot"
    OTHER = "other"


class StatusOverride(str, Enum):
    """Moderation flags raised by reports or moderators."""

    DISPUTED = "disputed"
    HIDDEN = "hidden"
    NONE = "none"


class SocialPlatform(str, Enum):
    """Supported social platforms."""

    INSTAGRAM = "instagram"
    FACEBOOK = "facebook"
    X = "x"
    TIKTOK = "tiktok"
    YOUTUBE = "youtube"
    TELEGRAM = "telegram"
    WHATSAPP = "whatsapp"
    WECHAT = "wechat"
    LINE = "line"
    THREADS = "threads"
    PINTEREST = "pinterest"
    OTHER = "other"


PaymentMethod = Literal["onchain", "lightning"]


class AcceptEntry(BaseModel):
    """One payment-acceptance fact."""

    model_config = ConfigDict(extra="ignore")

    asset: str
    chain: str
    method: str | None = None
    processor: str | None = None
    evidence: List[str] = Field(default_factory=list)
    last_verified: str | None = None
    last_checked: str | None = None
    note: str | None = None

    @property
    def key(self) -> tuple[str, str, str]:
        """Uniqueness key ``(asset, chain, processor)``."""

        return (self.asset, self.chain, self.processor or "other")

    @property
    def preferred_key(self) -> str:
        return f"{self.asset}@{self.chain}"


class PendingAsset(BaseModel):
    """A payment declaration that could not be mapped onto a strict chain."""

    model_config = ConfigDict(extra="ignore")

    asset_raw: str
    chain_raw: str = ""
    submitted_by: str | None = None
    submitted_at: str | None = None
    notes: str | None = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.asset_raw.strip().lower(), self.chain_raw.strip().lower())


class Source(BaseModel):
    """Provenance for a verification claim."""

    model_config = ConfigDict(extra="ignore")

    type: SourceType = SourceType.OTHER
    name: str | None = None
    rule: str | None = None
    url: str | None = None
    snippet: str | None = None
    when: str | None = None

    @field_validator("type", mode="before")
    @classmethod
    def _coerce_type(cls, value: Any) -> Any:
        if isinstance(value, str) and value.strip() not in SourceType._value2member_map_:
            return SourceType.OTHER
        return value

    @property
    def key(self) -> str:
        if self.url:
            return self.url
        return f"{self.type.value}:{self.name or ''}"


class SocialLink(BaseModel):
    """A social profile given as a URL and/or handle."""

    model_config = ConfigDict(extra="ignore")

    platform: SocialPlatform = SocialPlatform.OTHER
    url: str | None = None
    handle: str | None = None

    @field_validator("platform", mode="before")
    @classmethod
    def _coerce_platform(cls, value: Any) -> Any:
        if isinstance(value, str):
            return SOCIAL_PLATFORM_ALIASES.get(value.strip().lower(), SocialPlatform.OTHER.value)
        return value

    @property
    def key(self) -> str:
        return f"{self.platform.value}:{self.url or ''}:{self.handle or ''}".lower()


class MediaImage(BaseModel):
    """A gallery image reference."""

    model_config = ConfigDict(extra="ignore")

    url: str
    credit: str | None = None
    caption: str | None = None


class SubmittedBy(BaseModel):
    """Who submitted the latest accepted change."""

    by: str
    role: Literal["owner", "non_owner", "unknown"] = "unknown"
    at: str


class Verification(BaseModel):
    """Verification block of a place record."""

    model_config = ConfigDict(extra="allow")

    status: VerificationStatus = VerificationStatus.UNVERIFIED
    sources: List[Source] = Field(default_factory=list)
    submitted: SubmittedBy | None = None
    last_checked: str | None = None
    last_verified: str | None = None
    applied_refs: List[str] | None = None

    @field_validator("status", mode="before")
    @classmethod
    def _fold_legacy_status(cls, value: Any) -> Any:
        if value is None:
            return VerificationStatus.UNVERIFIED
        if isinstance(value, str):
            lowered = value.strip().lower()
            compact = lowered.replace(" ", "").replace("_", "-")
            return (
                VERIFICATION_STATUS_ALIASES.get(lowered)
                or VERIFICATION_STATUS_ALIASES.get(compact)
                or VERIFICATION_STATUS_ALIASES.get(compact.replace("-", ""))
                or value
            )
        return value


class Payment(BaseModel):
    """Payment block of a place record."""

    model_config = ConfigDict(extra="allow")

    accepts: List[AcceptEntry] = Field(default_factory=list)
    preferred: List[str] = Field(default_factory=list)
    pending_assets: List[PendingAsset] = Field(default_factory=list)
    notes: str | None = None


class Profile(BaseModel):
    summary: str | None = None


class Media(BaseModel):
    images: List[MediaImage] = Field(default_factory=list)


class Suggestion(BaseModel):
    """A field value proposed by a report, awaiting explicit promotion."""

    field: str
    value: str
    submitted_by: str | None = None
    submitted_at: str | None = None
    ref: str | None = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.field, self.value.strip().lower())


class Review(BaseModel):
    """Moderation notes and pending suggestions."""

    notes: List[str] = Field(default_factory=list)
    suggestions: List[Suggestion] = Field(default_factory=list)


class PlaceRecord(BaseModel):
    """Canonical representation of one real-world place."""

    model_config = ConfigDict(extra="allow")

    id: str
    name: str
    address: str | None = None
    city: str | None = None
    country: str | None = None
    lat: float | None = None
    lng: float | None = None
    category: str | None = None
    website: str | None = None
    phone: str | None = None
    hours: str | None = None
    socials: List[SocialLink] = Field(default_factory=list)
    payment: Payment = Field(default_factory=Payment)
    verification: Verification = Field(default_factory=Verification)
    profile: Profile | None = None
    media: Media | None = None
    status_override: StatusOverride | None = None
    review: Review | None = None
    normalizer_version: int | None = None

    def to_json_dict(self) -> Dict[str, Any]:
        """Return the JSON-ready representation written to shard files."""

        return self.model_dump(mode="json", exclude_none=True)


class PlacePatch(BaseModel):
    """Partial place produced from a single submission."""

    name: str | None = None
    address: str | None = None
    city: str | None = None
    country: str | None = None
    lat: float | None = None
    lng: float | None = None
    category: str | None = None
    website: str | None = None
    phone: str | None = None
    hours: str | None = None
    socials: List[SocialLink] = Field(default_factory=list)
    accepts: List[AcceptEntry] = Field(default_factory=list)
    pending_assets: List[PendingAsset] = Field(default_factory=list)
    sources: List[Source] = Field(default_factory=list)
    summary: str | None = None
    images: List[MediaImage] = Field(default_factory=list)


class RejectedLine(BaseModel):
    """A payment line that could not be parsed or broke a semantic rule."""

    raw: str
    reason: str


class SubmissionPatch(BaseModel):
    """Normalized, partial canonical record for one incoming form."""

    kind: SubmissionKind
    place: PlacePatch = Field(default_factory=PlacePatch)
    rejects: List[RejectedLine] = Field(default_factory=list)
    suggestions: List[Suggestion] = Field(default_factory=list)
    ref: str | None = None
    record_id: str | None = None
    submitted_by: str
    submitted_at: str
    already_listed: bool = False
    already_listed_ref: str | None = None
    details: str | None = None
    proposed_status: StatusOverride | None = None


class ProposedFields(BaseModel):
    """Field values proposed by a report."""

    model_config = ConfigDict(extra="ignore")

    phone: str | None = None
    hours: str | None = None
    website: str | None = None
    category: str | None = None
    coins: List[str] = Field(default_factory=list)


class RawSubmission(BaseModel):
    """JSON payload of one submission form as it arrives in the inbox."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    kind: SubmissionKind
    name: str | None = Field(
        default=None,
        validation_alias=AliasChoices("name", "business_name", "BusinessName", "placeName"),
    )
    address: str | None = None
    city: str | None = Field(default=None, validation_alias=AliasChoices("city", "City"))
    country: str | None = Field(default=None, validation_alias=AliasChoices("country", "Country"))
    country_code: str | None = Field(default=None, validation_alias=AliasChoices("country_code", "CountryCode"))
    city_country: str | None = None
    website: str | None = None
    phone: str | None = None
    hours: str | None = None
    category: str | None = None
    lat: float | None = None
    lng: float | None = None
    lat_lng: str | None = None
    payments_raw: str = Field(default="", validation_alias=AliasChoices("payments_raw", "payments", "Accepted"))
    accepts: List[Dict[str, Any]] = Field(default_factory=list)
    payment_flags: Dict[str, bool] = Field(default_factory=dict)
    coins: List[str] = Field(default_factory=list)
    evidence_raw: str | None = Field(
        default=None,
        validation_alias=AliasChoices("evidence_raw", "evidence_urls", "payment_pages"),
    )
    gallery_raw: str | None = Field(default=None, validation_alias=AliasChoices("gallery_raw", "gallery_urls", "images"))
    socials_raw: str | None = Field(default=None, validation_alias=AliasChoices("socials_raw", "socials"))
    profile_summary: str | None = None
    already_listed: bool = False
    already_listed_ref: str | None = Field(
        default=None,
        validation_alias=AliasChoices("already_listed_ref", "listed_url_or_id", "place_id_or_url"),
    )
    details: str | None = None
    proposed_status: StatusOverride | None = None
    proposed: ProposedFields | None = None
    submitted_by: str | None = None
    submitted_at: str | None = None
    ref: str | None = None

    @field_validator("lat", "lng", "proposed_status", "already_listed_ref", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("already_listed", mode="before")
    @classmethod
    def _coerce_listed(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower() in {"yes", "true", "1", "y"}
        return bool(value)

    @model_validator(mode="after")
    def _require_identity(self) -> "RawSubmission":
        if self.kind is SubmissionKind.REPORT:
            if not self.already_listed_ref:
                raise ValueError("report submissions must reference an existing place")
        elif not (self.name or "").strip():
            raise ValueError(f"{self.kind.value} submissions require a business name")
        return self


class RuleViolation(BaseModel):
    """One business-rule failure: where it happened and what was wrong."""

    location: str
    message: str
