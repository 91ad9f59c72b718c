"""Property-based tests using Hypothesis.

Tests invariants of core algorithms: fingerprinting, pairwise scoring and
text normalization. These discover edge cases that example-based tests miss.
"""

import pytest
from hypothesis import HealthCheck, assume, given, settings
from hypothesis import strategies as st

from reality_dedup.matching.fingerprint import area_bucket, generate_fingerprint
from reality_dedup.matching.scoring import calculate_match_score, decide, graduated_score
from reality_dedup.models import Listing, ListingSource, MatchStatus, pair_key
from reality_dedup.utils.text import normalize_text

# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------

# Realistic Slovak sale prices; 0 means price on request
prices = st.one_of(st.just(0), st.integers(min_value=30_000, max_value=900_000))

areas = st.one_of(st.just(0), st.integers(min_value=15, max_value=250))

titles = st.sampled_from(
    [
        "3-izbový byt, Ružinov",
        "Predaj 3 izbového bytu na Miletičovej",
        "2-izbový byt s loggiou",
        "EXKLUZÍVNE! Novostavba, 4i byt",
        "",
    ]
)

descriptions = st.sampled_from(
    [
        None,
        "Slnečný byt s loggiou a výhľadom na Kamzík.",
        "Byt po kompletnej rekonštrukcii, tehlový dom, pivnica.",
    ]
)

listing_ids = st.text(alphabet="abcdefghijklmnopqrstuvwxyz0123456789_", min_size=1, max_size=12)


@st.composite
def listings(draw: st.DrawFn, listing_id: str = "a1") -> Listing:
    return Listing(
        id=listing_id,
        source=draw(st.sampled_from(list(ListingSource))),
        title=draw(titles),
        description=draw(descriptions),
        price=draw(prices),
        area_m2=draw(areas),
        rooms=draw(st.one_of(st.none(), st.integers(min_value=1, max_value=6))),
        city="Bratislava",
        district=draw(st.sampled_from([None, "Ružinov", "Petržalka", "Staré Mesto"])),
        street=draw(st.sampled_from([None, "Miletičova 23", "Miletičova 41", "Ružová dolina 6"])),
        floor=draw(st.one_of(st.none(), st.integers(min_value=0, max_value=12))),
    )


def _score(first: Listing, second: Listing):
    return calculate_match_score(
        first, second, generate_fingerprint(first), generate_fingerprint(second)
    )


# ---------------------------------------------------------------------------
# Fingerprints
# ---------------------------------------------------------------------------


class TestFingerprintProperties:
    @given(listings())
    def test_deterministic(self, listing: Listing) -> None:
        """Fingerprinting the same listing twice gives the same digest."""
        assert generate_fingerprint(listing).digest == generate_fingerprint(listing).digest

    @given(listings())
    def test_digest_ignores_listing_id(self, listing: Listing) -> None:
        """Two listings with identical content share a digest."""
        copy = listing.model_copy(update={"id": "zz_copy"})
        assert generate_fingerprint(listing).digest == generate_fingerprint(copy).digest

    @given(st.floats(min_value=1, max_value=1000, allow_nan=False, allow_infinity=False))
    def test_area_bucket_is_nearest(self, area: float) -> None:
        """The bucket is never more than half a bucket width away."""
        bucket = area_bucket(area)
        assert bucket is not None
        assert bucket % 5 == 0
        assert abs(bucket - area) <= 2.5 + 1e-9


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------


class TestScoringProperties:
    @given(listings("a1"), listings("b1"))
    def test_symmetry(self, first: Listing, second: Listing) -> None:
        """Score(A, B) == Score(B, A)."""
        assert _score(first, second).total == pytest.approx(_score(second, first).total)

    @given(listings("a1"), listings("b1"))
    def test_total_in_range(self, first: Listing, second: Listing) -> None:
        """Total is always within [0, 100]."""
        assert 0.0 <= _score(first, second).total <= 100.0

    @given(listings("a1"), listings("b1"))
    @settings(suppress_health_check=[HealthCheck.filter_too_much])
    def test_room_conflict_never_confirmed(self, first: Listing, second: Listing) -> None:
        """Room counts two or more apart always reject."""
        assume(first.rooms is not None and second.rooms is not None)
        assume(abs(first.rooms - second.rooms) >= 2)
        assert decide(_score(first, second)) == MatchStatus.REJECTED

    @given(listings("a1"))
    def test_identical_content_confirmed(self, listing: Listing) -> None:
        """The same fully described flat re-posted under another ID is a duplicate."""
        assume(listing.has_price and listing.has_area)
        copy = listing.model_copy(update={"id": "b1"})
        assert decide(_score(listing, copy)) == MatchStatus.CONFIRMED

    @given(listings("a1"), listings("b1"))
    def test_low_confidence_needs_address_or_description(
        self, first: Listing, second: Listing
    ) -> None:
        """Without price or area, only address or description evidence confirms."""
        assume(not (first.has_price and first.has_area))
        score = _score(first, second)
        if decide(score) == MatchStatus.CONFIRMED:
            assert score.has_strong_signal

    @given(
        st.integers(min_value=1, max_value=1_000_000),
        st.integers(min_value=1, max_value=1_000_000),
    )
    def test_graduated_score_symmetric_and_bounded(self, a: int, b: int) -> None:
        score = graduated_score(a, b, 0.05)
        assert score == graduated_score(b, a, 0.05)
        assert 0.0 <= score <= 1.0


# ---------------------------------------------------------------------------
# Pair keys and text normalization
# ---------------------------------------------------------------------------


class TestPairKeyProperties:
    @given(listing_ids, listing_ids)
    def test_order_independent(self, a: str, b: str) -> None:
        assume(a != b)
        key = pair_key(a, b)
        assert key == pair_key(b, a)
        assert key[0] < key[1]
        assert set(key) == {a, b}

    @given(listing_ids)
    def test_self_pair_rejected(self, a: str) -> None:
        with pytest.raises(ValueError):
            pair_key(a, a)


class TestNormalizeTextProperties:
    @given(st.text(max_size=80))
    def test_idempotent(self, text: str) -> None:
        once = normalize_text(text)
        assert normalize_text(once) == once

    @given(st.text(max_size=80))
    def test_output_alphabet(self, text: str) -> None:
        """Only lower-case ASCII letters, digits and single spaces remain."""
        result = normalize_text(text)
        assert set(result) <= set("abcdefghijklmnopqrstuvwxyz0123456789 ")
        assert "  " not in result
        assert result == result.strip()
