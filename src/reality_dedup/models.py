"""Pydantic models for listings, fingerprints, matches and duplicate groups."""

import hashlib
from datetime import UTC, datetime
from enum import StrEnum
from typing import Final, Self

from pydantic import BaseModel, ConfigDict, Field, HttpUrl, field_validator, model_validator

from reality_dedup.utils.text import DEFAULT_BOILERPLATE_KEYWORDS


class ListingSource(StrEnum):
    """Supported listing portals."""

    NEHNUTELNOSTI = "nehnutelnosti"
    REALITY = "reality"
    TOPREALITY = "topreality"
    BAZOS = "bazos"
    MANUAL = "manual"

    @property
    def display_name(self) -> str:
        """Human-readable display name for this source."""
        return _SOURCE_DISPLAY_NAMES[self.value]


_SOURCE_DISPLAY_NAMES: Final[dict[str, str]] = {
    "nehnutelnosti": "Nehnutelnosti.sk",
    "reality": "Reality.sk",
    "topreality": "TopReality.sk",
    "bazos": "Bazos.sk",
    "manual": "Manual entry",
}


class ListingType(StrEnum):
    """Sale or rental offer."""

    SALE = "sale"
    RENT = "rent"


class ListingStatus(StrEnum):
    """Lifecycle status maintained by the ingestion pipeline."""

    ACTIVE = "active"
    REMOVED = "removed"
    UNKNOWN = "unknown"


class MatchStatus(StrEnum):
    """Decision state of a pairwise match."""

    CANDIDATE = "candidate"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"


class DecisionSource(StrEnum):
    """What produced the current match decision."""

    DETERMINISTIC_RULE = "deterministic_rule"
    AI_TIEBREAK = "ai_tiebreak"
    HUMAN_CONFIRMED = "human_confirmed"


class Listing(BaseModel):
    """A residential listing as normalized by the ingestion pipeline.

    A price or area of 0 means the portal did not publish it ("cena dohodou",
    missing floor area); such listings are still matched, with lower confidence.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    source: ListingSource
    external_id: str | None = Field(default=None, description="ID on the source portal")
    title: str = ""
    description: str | None = None
    price: float = Field(default=0, ge=0, description="Asking price in EUR, 0 if unpublished")
    area_m2: float = Field(default=0, ge=0, description="Floor area, 0 if unknown")
    rooms: int | None = Field(default=None, ge=0)
    city: str
    district: str | None = None
    street: str | None = None
    address: str | None = Field(default=None, description="Free-text address as published")
    floor: int | None = None
    listing_type: ListingType = ListingType.SALE
    source_url: HttpUrl | None = None
    status: ListingStatus = ListingStatus.ACTIVE
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @field_validator("district", "street", "address", "description")
    @classmethod
    def blank_to_none(cls, v: str | None) -> str | None:
        """Treat whitespace-only optional text as missing."""
        if v is None or not v.strip():
            return None
        return v.strip()

    @property
    def has_price(self) -> bool:
        return self.price > 0

    @property
    def has_area(self) -> bool:
        return self.area_m2 > 0

    @property
    def price_per_m2(self) -> float | None:
        """Price per square metre, rounded to whole euros."""
        if not self.has_price or not self.has_area:
            return None
        return round(self.price / self.area_m2)


class MatchingConfig(BaseModel):
    """Tunable thresholds and tolerances for fingerprinting and matching."""

    model_config = ConfigDict(frozen=True)

    area_bucket_m2: int = Field(default=5, ge=1)
    price_band_pct: float = Field(default=0.05, gt=0, lt=1)
    candidate_area_tolerance: float = Field(default=0.10, gt=0, lt=1)
    candidate_price_tolerance: float = Field(default=0.15, gt=0, lt=1)
    candidate_room_tolerance: int = Field(default=1, ge=0)
    candidate_limit: int = Field(default=100, ge=1)
    confirm_threshold: float = Field(default=70, ge=0, le=100)
    reject_threshold: float = Field(default=40, ge=0, le=100)
    boilerplate_keywords: tuple[str, ...] = DEFAULT_BOILERPLATE_KEYWORDS

    @model_validator(mode="after")
    def check_thresholds(self) -> Self:
        """Ensure the ambiguous band is well-formed."""
        if self.reject_threshold >= self.confirm_threshold:
            raise ValueError("reject_threshold must be < confirm_threshold")
        return self


class Fingerprint(BaseModel):
    """Deterministic comparison key derived from a single listing."""

    model_config = ConfigDict(frozen=True)

    listing_id: str
    address_normalized: str = ""
    address_hash: str | None = None
    title_normalized: str = ""
    title_hash: str | None = None
    area_bucket: int | None = None
    price_bucket: int | None = None
    floor_bucket: str = "unknown"
    rooms: int | None = None
    description_hash: str | None = None
    city_key: str
    district_key: str | None = None
    location_key: str
    is_coarse: bool = Field(default=False, description="District unknown, location is city-only")
    low_confidence: bool = Field(default=False, description="Area or price missing")

    @property
    def digest(self) -> str:
        """Stable hash over every comparison field, used to detect material change."""
        parts = [
            self.address_normalized,
            self.title_normalized,
            str(self.area_bucket),
            str(self.price_bucket),
            self.floor_bucket,
            str(self.rooms),
            self.description_hash or "",
            self.location_key,
            str(self.low_confidence),
        ]
        return hashlib.md5("|".join(parts).encode()).hexdigest()


def pair_key(first_id: str, second_id: str) -> tuple[str, str]:
    """Order two listing IDs so that (A, B) and (B, A) share one key.

    Raises:
        ValueError: If both IDs are the same listing.
    """
    if first_id == second_id:
        raise ValueError(f"Listing {first_id!r} cannot be matched with itself")
    return (first_id, second_id) if first_id < second_id else (second_id, first_id)


class Match(BaseModel):
    """Pairwise duplicate decision between two listings."""

    model_config = ConfigDict(frozen=True)

    listing_a_id: str
    listing_b_id: str
    confidence: float = Field(ge=0, le=1)
    status: MatchStatus
    decision_source: DecisionSource
    reasons: tuple[str, ...] = ()
    input_digest: str = ""
    decided_by: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @model_validator(mode="after")
    def check_canonical_order(self) -> Self:
        """A match is stored once, with the lower listing ID first."""
        if self.listing_a_id == self.listing_b_id:
            raise ValueError("A listing cannot be matched with itself")
        if self.listing_a_id > self.listing_b_id:
            raise ValueError("listing_a_id must sort before listing_b_id")
        return self

    @classmethod
    def between(cls, first_id: str, second_id: str, **fields: object) -> "Match":
        """Build a match for two listings in either order."""
        a, b = pair_key(first_id, second_id)
        return cls(listing_a_id=a, listing_b_id=b, **fields)  # type: ignore[arg-type]

    @property
    def pair(self) -> tuple[str, str]:
        return (self.listing_a_id, self.listing_b_id)

    def other(self, listing_id: str) -> str:
        """Return the partner of listing_id in this pair."""
        return self.listing_b_id if listing_id == self.listing_a_id else self.listing_a_id

    @property
    def is_human_decision(self) -> bool:
        return self.decision_source == DecisionSource.HUMAN_CONFIRMED


class TieBreakVerdict(BaseModel):
    """Verdict returned by the AI tie-breaker for an ambiguous pair."""

    model_config = ConfigDict(frozen=True)

    is_match: bool
    rationale: str = ""


class DuplicateListing(BaseModel):
    """One member of a duplicate group, annotated for price comparison."""

    model_config = ConfigDict(frozen=True)

    id: str
    source: ListingSource
    title: str
    price: float
    price_per_m2: float | None = None
    source_url: HttpUrl | None = None
    days_on_market: int = Field(ge=0)
    is_best_price: bool = False
    is_master: bool = False


class DuplicateGroup(BaseModel):
    """Connected component of confirmed matches, computed at read time."""

    model_config = ConfigDict(frozen=True)

    listing_ids: tuple[str, ...]
    listings: tuple[DuplicateListing, ...]
    master_id: str
    city: str
    count: int = Field(ge=1)
    min_price: float | None = None
    max_price: float | None = None
    median_price: float | None = None
    potential_savings: float = 0
    savings_percent: float = 0
    best_price_source: ListingSource | None = None
    sources: tuple[ListingSource, ...] = ()

    @property
    def is_trivial(self) -> bool:
        """A single listing with no confirmed duplicates."""
        return self.count < 2


class MasterRecord(BaseModel):
    """Representative listing of a duplicate group with price comparison."""

    model_config = ConfigDict(frozen=True)

    id: str
    master: Listing
    group: DuplicateGroup
    best_price: float | None = None
    best_price_source: ListingSource | None = None
    worst_price: float | None = None
    potential_savings: float = 0
    savings_percent: float = 0
    recommendation: str


class CitySavings(BaseModel):
    """Summed potential savings of duplicate groups in one city."""

    model_config = ConfigDict(frozen=True)

    city: str
    groups: int
    savings: float


class DuplicateStats(BaseModel):
    """Aggregate duplicate statistics for the read surface."""

    model_config = ConfigDict(frozen=True)

    total_duplicate_groups: int = 0
    total_duplicate_listings: int = 0
    potential_savings: float = 0
    top_savings: tuple[CitySavings, ...] = ()


class RunSummary(BaseModel):
    """Result of one batch deduplication run."""

    model_config = ConfigDict(frozen=True)

    run_id: int | None = None
    fingerprints_created: int = 0
    matches_found: int = 0
    duration_ms: int = 0
    listings_checked: int = 0
    pairs_scored: int = 0
    pairs_rejected: int = 0
    pairs_unresolved: int = 0
    failures: int = 0
