"""Pure scoring functions for listing deduplication matching."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Final

from rapidfuzz import fuzz

from reality_dedup.models import (
    DecisionSource,
    Fingerprint,
    Listing,
    MatchingConfig,
    MatchStatus,
)
from reality_dedup.utils.address import split_normalized_address

# Weighted scoring constants (points out of 100)
SCORE_IDENTICAL_FINGERPRINT: Final = 75
SCORE_DESCRIPTION: Final = 50
SCORE_CORE_ATTRIBUTES: Final = 45
SCORE_ADDRESS_EXACT: Final = 40
SCORE_ADDRESS_NEAR: Final = 30
SCORE_STREET: Final = 15
SCORE_ROOMS: Final = 15
SCORE_AREA: Final = 15
SCORE_PRICE: Final = 15
SCORE_FLOOR: Final = 5
SCORE_TITLE: Final = 5

PENALTY_PRICE_GAP: Final = -40
PENALTY_HOUSE_NUMBER: Final = -20
PENALTY_FLOOR: Final = -10

# Core agreement: area within one bucket width, price within 5%, same district
CORE_PRICE_TOLERANCE: Final = 0.05

# Graduated closeness: full credit at 0, half at tolerance, none at 2*tolerance
AREA_TOLERANCE: Final = 0.03
PRICE_TOLERANCE: Final = 0.05

# Beyond this price gap, only an address or description signal can save a pair
PRICE_GAP_THRESHOLD: Final = 0.25

ADDRESS_NEAR_RATIO: Final = 92
TITLE_SIMILARITY_RATIO: Final = 80

# Positive evidence from a fingerprint lacking area or price counts for less
LOW_CONFIDENCE_FACTOR: Final = 0.8

HIGH_CONFIDENCE_SCORE: Final = 80


class MatchConfidence(Enum):
    """Confidence tier of a pair score."""

    HIGH = "high"  # >= 80 points
    MEDIUM = "medium"  # >= confirm threshold
    LOW = "low"  # ambiguous band, escalated to the tie-breaker
    NONE = "none"  # below reject threshold


@dataclass
class MatchScore:
    """Breakdown of match score between two listings."""

    fingerprint: float = 0.0
    description: float = 0.0
    core_attributes: float = 0.0
    address: float = 0.0
    rooms: float = 0.0
    area: float = 0.0
    price: float = 0.0
    floor: float = 0.0
    title: float = 0.0
    penalty: float = 0.0
    low_confidence: bool = False
    room_conflict: bool = False
    penalties: list[str] = field(default_factory=list)

    @property
    def positive(self) -> float:
        weighted = (
            self.description
            + self.core_attributes
            + max(self.address, 0.0)
            + self.rooms
            + self.area
            + self.price
            + max(self.floor, 0.0)
            + self.title
        )
        if self.low_confidence:
            weighted *= LOW_CONFIDENCE_FACTOR
        return weighted + self.fingerprint

    @property
    def total(self) -> float:
        """Score in [0, 100]; a room conflict forces 0."""
        if self.room_conflict:
            return 0.0
        raw = self.positive + self.penalty + min(self.address, 0.0) + min(self.floor, 0.0)
        return max(0.0, min(100.0, raw))

    @property
    def confidence(self) -> float:
        return round(self.total / 100, 4)

    @property
    def has_strong_signal(self) -> bool:
        """Address or description evidence that outweighs a price disagreement."""
        return self.description > 0 or self.address >= SCORE_ADDRESS_NEAR

    @property
    def needs_corroboration(self) -> bool:
        """Low-confidence pair with nothing but coarse attributes in common."""
        return self.low_confidence and not self.has_strong_signal

    @property
    def signal_count(self) -> int:
        """Number of signals that contributed positively to the score."""
        return sum(
            [
                self.fingerprint > 0,
                self.description > 0,
                self.core_attributes > 0,
                self.address > 0,
                self.rooms > 0,
                self.area > 0,
                self.price > 0,
                self.floor > 0,
                self.title > 0,
            ]
        )

    def tier(self, config: MatchingConfig) -> MatchConfidence:
        """Determine confidence tier of this score."""
        if self.needs_corroboration and self.total >= config.reject_threshold:
            return MatchConfidence.LOW
        if self.total >= HIGH_CONFIDENCE_SCORE:
            return MatchConfidence.HIGH
        elif self.total >= config.confirm_threshold:
            return MatchConfidence.MEDIUM
        elif self.total >= config.reject_threshold:
            return MatchConfidence.LOW
        return MatchConfidence.NONE

    def reasons(self) -> tuple[str, ...]:
        """Short human-readable reasons for persistence and review."""
        if self.room_conflict:
            return ("room_count_conflict",)
        names = [
            "fingerprint",
            "description",
            "core_attributes",
            "address",
            "rooms",
            "area",
            "price",
            "floor",
            "title",
        ]
        reasons = [f"{name}:{getattr(self, name):.1f}" for name in names if getattr(self, name)]
        reasons.extend(self.penalties)
        if self.low_confidence:
            reasons.append("low_confidence_fingerprint")
        return tuple(reasons)

    def to_dict(self) -> dict[str, float | int | bool]:
        """Convert to dict for logging."""
        return {
            "fingerprint": self.fingerprint,
            "description": self.description,
            "core_attributes": self.core_attributes,
            "address": self.address,
            "rooms": self.rooms,
            "area": self.area,
            "price": self.price,
            "floor": self.floor,
            "title": self.title,
            "penalty": self.penalty,
            "low_confidence": self.low_confidence,
            "room_conflict": self.room_conflict,
            "total": self.total,
            "signal_count": self.signal_count,
        }


@dataclass(frozen=True)
class ScoreResult:
    """Outcome of scoring one pair: breakdown plus the resulting decision."""

    score: MatchScore
    status: MatchStatus
    decision_source: DecisionSource
    rationale: str | None = None

    @property
    def confidence(self) -> float:
        return self.score.confidence

    @property
    def reasons(self) -> tuple[str, ...]:
        reasons = self.score.reasons()
        if self.rationale:
            return (*reasons, f"ai:{self.rationale}")
        return reasons


def relative_difference(value1: float, value2: float) -> float | None:
    """Difference relative to the mean of two values, None if either is unknown."""
    if value1 <= 0 or value2 <= 0:
        return None
    if value1 == value2:
        return 0.0
    return abs(value1 - value2) / ((value1 + value2) / 2)


def prices_match(price1: float, price2: float, tolerance: float = CORE_PRICE_TOLERANCE) -> bool:
    """Check if two known prices are within tolerance.

    Args:
        price1: First price.
        price2: Second price.
        tolerance: Maximum relative difference (default 5%).

    Returns:
        True if both prices are published and within tolerance.
    """
    diff = relative_difference(price1, price2)
    return diff is not None and diff <= tolerance


def graduated_score(value1: float, value2: float, tolerance: float) -> float:
    """Graduated proximity score.

    Returns 1.0 at exact match, 0.5 at tolerance, 0.0 at 2*tolerance and beyond.

    Args:
        value1: First value.
        value2: Second value.
        tolerance: Reference relative difference for half-score.

    Returns:
        Score in [0.0, 1.0], or 0.0 if either value is unknown.
    """
    pct = relative_difference(value1, value2)
    if pct is None:
        return 0.0
    if pct <= tolerance:
        return 1.0 - (pct / tolerance) * 0.5
    elif pct <= tolerance * 2:
        return 0.5 - ((pct - tolerance) / tolerance) * 0.5
    return 0.0


def _address_score(fp1: Fingerprint, fp2: Fingerprint, score: MatchScore) -> None:
    if not fp1.address_normalized or not fp2.address_normalized:
        return
    street1, number1 = split_normalized_address(fp1.address_normalized)
    street2, number2 = split_normalized_address(fp2.address_normalized)

    if street1 == street2:
        if number1 and number2:
            if number1 == number2:
                score.address = SCORE_ADDRESS_EXACT
            else:
                score.address = PENALTY_HOUSE_NUMBER
                score.penalties.append("house_number_conflict")
        else:
            score.address = SCORE_STREET
        return

    numbers_agree = number1 is None or number2 is None or number1 == number2
    ratio = fuzz.token_sort_ratio(fp1.address_normalized, fp2.address_normalized)
    if numbers_agree and ratio >= ADDRESS_NEAR_RATIO:
        score.address = SCORE_ADDRESS_NEAR


def calculate_match_score(
    listing1: Listing,
    listing2: Listing,
    fp1: Fingerprint,
    fp2: Fingerprint,
    config: MatchingConfig | None = None,
) -> MatchScore:
    """Calculate weighted match score between two listings.

    The score is symmetric: swapping the two listings gives the same result.
    A room-count difference beyond the tolerance is a hard rejection.

    Args:
        listing1: First listing.
        listing2: Second listing.
        fp1: Fingerprint of the first listing.
        fp2: Fingerprint of the second listing.
        config: Matching configuration.

    Returns:
        MatchScore with breakdown of all signals.
    """
    config = config or MatchingConfig()
    score = MatchScore(low_confidence=fp1.low_confidence or fp2.low_confidence)

    # Gate: room counts more than the tolerance apart are different flats
    if listing1.rooms is not None and listing2.rooms is not None:
        if abs(listing1.rooms - listing2.rooms) > config.candidate_room_tolerance:
            score.room_conflict = True
            return score
        if listing1.rooms == listing2.rooms:
            score.rooms = SCORE_ROOMS

    # Two fingerprints missing area or price collide too easily to count
    if fp1.digest == fp2.digest and not score.low_confidence:
        score.fingerprint = SCORE_IDENTICAL_FINGERPRINT

    if fp1.description_hash and fp1.description_hash == fp2.description_hash:
        score.description = SCORE_DESCRIPTION

    _address_score(fp1, fp2, score)

    # Core attribute agreement
    area_diff = abs(listing1.area_m2 - listing2.area_m2)
    if (
        listing1.has_area
        and listing2.has_area
        and area_diff <= config.area_bucket_m2
        and prices_match(listing1.price, listing2.price, CORE_PRICE_TOLERANCE)
        and fp1.district_key is not None
        and fp1.district_key == fp2.district_key
    ):
        score.core_attributes = SCORE_CORE_ATTRIBUTES

    area_value = graduated_score(listing1.area_m2, listing2.area_m2, AREA_TOLERANCE)
    if area_value > 0:
        score.area = SCORE_AREA * area_value

    price_value = graduated_score(listing1.price, listing2.price, PRICE_TOLERANCE)
    if price_value > 0:
        score.price = SCORE_PRICE * price_value

    if listing1.floor is not None and listing2.floor is not None:
        if listing1.floor == listing2.floor:
            score.floor = SCORE_FLOOR
        elif abs(listing1.floor - listing2.floor) >= 2:
            score.floor = PENALTY_FLOOR
            score.penalties.append("floor_conflict")

    if fp1.title_normalized and fp2.title_normalized:
        ratio = fuzz.token_set_ratio(fp1.title_normalized, fp2.title_normalized)
        if ratio >= TITLE_SIMILARITY_RATIO:
            score.title = SCORE_TITLE

    price_gap = relative_difference(listing1.price, listing2.price)
    if price_gap is not None and price_gap > PRICE_GAP_THRESHOLD and not score.has_strong_signal:
        score.penalty += PENALTY_PRICE_GAP
        score.penalties.append("price_gap")

    return score


def decide(score: MatchScore, config: MatchingConfig | None = None) -> MatchStatus | None:
    """Apply the deterministic decision policy.

    A low-confidence pair without address or description evidence is never
    confirmed by rules alone; above the reject threshold it stays ambiguous.

    Returns:
        CONFIRMED or REJECTED, or None when the score falls in the ambiguous
        band and needs a tie-breaker.
    """
    config = config or MatchingConfig()
    if score.room_conflict:
        return MatchStatus.REJECTED
    if score.total < config.reject_threshold:
        return MatchStatus.REJECTED
    if score.total >= config.confirm_threshold and not score.needs_corroboration:
        return MatchStatus.CONFIRMED
    return None
