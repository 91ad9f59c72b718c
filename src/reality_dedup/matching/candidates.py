"""Recall-oriented candidate search for new or changed listings."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from reality_dedup.logging import get_logger
from reality_dedup.models import Fingerprint, Listing, MatchingConfig
from reality_dedup.utils.address import districts_overlap

if TYPE_CHECKING:
    from reality_dedup.db.storage import ListingStorage

logger = get_logger(__name__)


@dataclass(frozen=True)
class Candidate:
    """A stored listing worth scoring against the target."""

    listing: Listing
    fingerprint: Fingerprint
    pre_score: float


def within_band(target: float, other: float, tolerance: float) -> bool:
    """Check other lies within ±tolerance of target; unknown values (0) always pass."""
    if target <= 0 or other <= 0:
        return True
    return abs(other - target) <= target * tolerance


def passes_filters(
    target: Listing,
    target_fp: Fingerprint,
    other: Listing,
    other_fp: Fingerprint,
    config: MatchingConfig,
) -> bool:
    """Cheap filters deciding whether other is a candidate for target.

    Tolerant on purpose: a missing area, price, room count or district widens
    the search instead of excluding the listing.
    """
    if other.id == target.id:
        return False
    if other_fp.city_key != target_fp.city_key or other.listing_type != target.listing_type:
        return False
    if not districts_overlap(target_fp.city_key, target_fp.district_key, other_fp.district_key):
        return False
    if not within_band(target.area_m2, other.area_m2, config.candidate_area_tolerance):
        return False
    if not within_band(target.price, other.price, config.candidate_price_tolerance):
        return False
    if target.rooms is not None and other.rooms is not None:
        return abs(target.rooms - other.rooms) <= config.candidate_room_tolerance
    return True


def pre_score(target: Listing, other: Listing, config: MatchingConfig) -> float:
    """Rank candidates by relative area and price distance (lower is closer).

    An unknown value counts as the full search tolerance, so listings with
    complete data rank ahead of equally distant incomplete ones.
    """
    if target.has_area and other.has_area:
        area_delta = abs(other.area_m2 - target.area_m2) / target.area_m2
    else:
        area_delta = config.candidate_area_tolerance
    if target.has_price and other.has_price:
        price_delta = abs(other.price - target.price) / target.price
    else:
        price_delta = config.candidate_price_tolerance
    return area_delta + price_delta


def select_candidates(
    target: Listing,
    target_fp: Fingerprint,
    rows: list[tuple[Listing, Fingerprint]],
    config: MatchingConfig,
    *,
    excluded_ids: set[str] | frozenset[str] = frozenset(),
) -> list[Candidate]:
    """Filter, rank and cap candidate rows.

    Args:
        target: Listing being matched.
        target_fp: Its fingerprint.
        rows: Prefiltered (listing, fingerprint) rows from storage.
        config: Matching configuration.
        excluded_ids: Partners already rejected for this listing.

    Returns:
        At most config.candidate_limit candidates ordered by pre-score then ID.
    """
    candidates = [
        Candidate(listing=listing, fingerprint=fp, pre_score=pre_score(target, listing, config))
        for listing, fp in rows
        if listing.id not in excluded_ids and passes_filters(target, target_fp, listing, fp, config)
    ]
    candidates.sort(key=lambda c: (c.pre_score, c.listing.id))
    return candidates[: config.candidate_limit]


class CandidateSearch:
    """Find candidate duplicates for a listing among stored fingerprints."""

    def __init__(self, storage: ListingStorage, config: MatchingConfig) -> None:
        self._storage = storage
        self._config = config

    async def find_candidates(self, listing: Listing, fingerprint: Fingerprint) -> list[Candidate]:
        """Return ranked candidates for listing, never including itself.

        Args:
            listing: New or changed listing.
            fingerprint: Its freshly stored fingerprint.

        Returns:
            Candidates ordered closest first, capped at the configured limit.
        """
        rows = await self._storage.find_candidate_rows(listing, fingerprint, self._config)
        rejected = await self._storage.get_rejected_partner_ids(listing.id)
        candidates = select_candidates(
            listing, fingerprint, rows, self._config, excluded_ids=rejected
        )
        logger.debug(
            "candidates_found",
            listing_id=listing.id,
            prefiltered=len(rows),
            candidates=len(candidates),
            coarse=fingerprint.is_coarse,
        )
        return candidates
