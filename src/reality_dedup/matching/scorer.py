"""Match scorer: deterministic rules, AI escalation and match persistence."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from reality_dedup.logging import get_logger
from reality_dedup.matching.fingerprint import generate_fingerprint
from reality_dedup.matching.scoring import ScoreResult, calculate_match_score, decide
from reality_dedup.models import (
    DecisionSource,
    Fingerprint,
    Listing,
    Match,
    MatchingConfig,
    MatchStatus,
    pair_key,
)

if TYPE_CHECKING:
    from reality_dedup.db.storage import ListingStorage
    from reality_dedup.matching.tiebreaker import TieBreaker

logger = get_logger(__name__)


@dataclass(frozen=True)
class PersistOutcome:
    """What score_and_persist did for one pair."""

    match: Match
    previous_status: MatchStatus | None
    written: bool

    @property
    def newly_confirmed(self) -> bool:
        return (
            self.written
            and self.match.status == MatchStatus.CONFIRMED
            and self.previous_status != MatchStatus.CONFIRMED
        )


def pair_input_digest(fp1: Fingerprint, fp2: Fingerprint) -> str:
    """Digest of both fingerprints in canonical pair order."""
    first, second = sorted((fp1, fp2), key=lambda fp: fp.listing_id)
    return hashlib.md5(f"{first.digest}:{second.digest}".encode()).hexdigest()


class MatchScorer:
    """Score listing pairs and record the resulting match decisions."""

    def __init__(
        self,
        storage: ListingStorage,
        config: MatchingConfig,
        tie_breaker: TieBreaker | None = None,
    ) -> None:
        self._storage = storage
        self._config = config
        self._tie_breaker = tie_breaker

    @property
    def has_tie_breaker(self) -> bool:
        return self._tie_breaker is not None

    async def score(
        self,
        listing1: Listing,
        listing2: Listing,
        fp1: Fingerprint | None = None,
        fp2: Fingerprint | None = None,
    ) -> ScoreResult:
        """Score a pair and decide confirmed, rejected or candidate.

        Ambiguous scores go to the tie-breaker when one is configured; no
        verdict leaves the pair as a candidate.

        Raises:
            ValueError: If both listings are the same.
        """
        if listing1.id == listing2.id:
            raise ValueError(f"Listing {listing1.id!r} cannot be matched with itself")
        fp1 = fp1 or generate_fingerprint(listing1, self._config)
        fp2 = fp2 or generate_fingerprint(listing2, self._config)

        # Canonical order keeps the result independent of argument order
        if listing2.id < listing1.id:
            listing1, listing2, fp1, fp2 = listing2, listing1, fp2, fp1

        breakdown = calculate_match_score(listing1, listing2, fp1, fp2, self._config)
        status = decide(breakdown, self._config)
        if status is not None:
            return ScoreResult(breakdown, status, DecisionSource.DETERMINISTIC_RULE)

        if self._tie_breaker is None:
            return ScoreResult(breakdown, MatchStatus.CANDIDATE, DecisionSource.DETERMINISTIC_RULE)

        verdict = await self._tie_breaker.decide(listing1, listing2)
        if verdict is None:
            logger.info(
                "match_left_unresolved",
                pair=(listing1.id, listing2.id),
                score=round(breakdown.total, 1),
            )
            return ScoreResult(breakdown, MatchStatus.CANDIDATE, DecisionSource.DETERMINISTIC_RULE)

        return ScoreResult(
            breakdown,
            MatchStatus.CONFIRMED if verdict.is_match else MatchStatus.REJECTED,
            DecisionSource.AI_TIEBREAK,
            rationale=verdict.rationale,
        )

    async def score_and_persist(
        self,
        listing1: Listing,
        listing2: Listing,
        fp1: Fingerprint,
        fp2: Fingerprint,
    ) -> PersistOutcome:
        """Score a pair and upsert its match record.

        Pairs decided by a human are left alone. Pairs already decided from the
        same fingerprints are not rescored, which makes repeated runs no-ops.
        Unresolved pairs are retried only when a tie-breaker is available.
        """
        a, b = pair_key(listing1.id, listing2.id)
        digest = pair_input_digest(fp1, fp2)
        existing = await self._storage.get_match(a, b)
        previous_status = existing.status if existing else None

        if existing is not None:
            unchanged = existing.input_digest == digest
            retry_unresolved = existing.status == MatchStatus.CANDIDATE and self.has_tie_breaker
            if existing.is_human_decision or (unchanged and not retry_unresolved):
                return PersistOutcome(existing, previous_status, written=False)

        result = await self.score(listing1, listing2, fp1, fp2)
        match = Match(
            listing_a_id=a,
            listing_b_id=b,
            confidence=result.confidence,
            status=result.status,
            decision_source=result.decision_source,
            reasons=result.reasons,
            input_digest=digest,
            created_at=existing.created_at if existing else datetime.now(UTC),
        )
        if (
            existing is not None
            and existing.status == match.status
            and existing.input_digest == digest
        ):
            return PersistOutcome(existing, previous_status, written=False)

        written = await self._storage.upsert_match(match)
        logger.debug(
            "match_persisted",
            pair=(a, b),
            status=match.status.value,
            source=match.decision_source.value,
            confidence=match.confidence,
            previous_status=previous_status.value if previous_status else None,
        )
        return PersistOutcome(match, previous_status, written=written)
