"""Tests for listing, fingerprint and match storage with SQLite."""

from datetime import UTC, datetime
from pathlib import Path

import pytest
from pydantic import HttpUrl

from reality_dedup.db.storage import (
    ListingNotFoundError,
    ListingStorage,
    StorageUnavailableError,
)
from reality_dedup.matching.fingerprint import generate_fingerprint
from reality_dedup.models import (
    DecisionSource,
    ListingStatus,
    ListingType,
    Match,
    MatchingConfig,
    MatchStatus,
)

LATER = datetime(2100, 1, 1, tzinfo=UTC)


def _match(first: str, second: str, status=MatchStatus.CANDIDATE, digest="d1") -> Match:
    return Match.between(
        first,
        second,
        confidence=0.5,
        status=status,
        decision_source=DecisionSource.DETERMINISTIC_RULE,
        reasons=("rooms:15.0",),
        input_digest=digest,
    )


async def _store(storage: ListingStorage, *listings) -> None:
    for listing in listings:
        await storage.save_listing(listing)
        await storage.save_fingerprint(generate_fingerprint(listing))


class TestListings:
    @pytest.mark.asyncio
    async def test_save_and_get(self, storage: ListingStorage, make_listing) -> None:
        listing = make_listing(
            "a1",
            street="Miletičova 23",
            floor=3,
            source_url=HttpUrl("https://www.nehnutelnosti.sk/detail/a1"),
        )
        await storage.save_listing(listing)

        loaded = await storage.get_listing("a1")

        assert loaded == listing

    @pytest.mark.asyncio
    async def test_get_missing(self, storage: ListingStorage) -> None:
        assert await storage.get_listing("nope") is None

    @pytest.mark.asyncio
    async def test_resave_keeps_first_seen(self, storage: ListingStorage, make_listing) -> None:
        await storage.save_listing(make_listing("a1"))
        await storage.save_listing(
            make_listing("a1", price=170_000, created_at=LATER, updated_at=LATER)
        )

        loaded = await storage.get_listing("a1")

        assert loaded is not None
        assert loaded.price == 170_000
        assert loaded.created_at.year == 2025
        assert loaded.updated_at == LATER

    @pytest.mark.asyncio
    async def test_get_listings_skips_unknown(
        self, storage: ListingStorage, make_listing
    ) -> None:
        await storage.save_listing(make_listing("a1"))
        await storage.save_listing(make_listing("b1"))

        found = await storage.get_listings(["a1", "b1", "zz"])

        assert sorted(found) == ["a1", "b1"]

    @pytest.mark.asyncio
    async def test_mark_removed(self, storage: ListingStorage, make_listing) -> None:
        await storage.save_listing(make_listing("a1"))
        await storage.mark_listing_removed("a1")

        loaded = await storage.get_listing("a1")

        assert loaded is not None
        assert loaded.status == ListingStatus.REMOVED


class TestListingsNeedingFingerprint:
    @pytest.mark.asyncio
    async def test_new_listing_needs_fingerprint(
        self, storage: ListingStorage, make_listing
    ) -> None:
        await storage.save_listing(make_listing("b1"))
        await storage.save_listing(make_listing("a1"))

        pending = await storage.get_listings_needing_fingerprint()

        assert [listing.id for listing in pending] == ["a1", "b1"]

    @pytest.mark.asyncio
    async def test_fresh_fingerprint_not_pending(
        self, storage: ListingStorage, make_listing
    ) -> None:
        await _store(storage, make_listing("a1"))
        assert await storage.get_listings_needing_fingerprint() == []

    @pytest.mark.asyncio
    async def test_updated_listing_pending_again(
        self, storage: ListingStorage, make_listing
    ) -> None:
        await _store(storage, make_listing("a1"))
        await storage.save_listing(make_listing("a1", updated_at=LATER))

        pending = await storage.get_listings_needing_fingerprint()

        assert [listing.id for listing in pending] == ["a1"]

    @pytest.mark.asyncio
    async def test_removed_listing_skipped(self, storage: ListingStorage, make_listing) -> None:
        await storage.save_listing(make_listing("a1"))
        await storage.mark_listing_removed("a1")
        assert await storage.get_listings_needing_fingerprint() == []

    @pytest.mark.asyncio
    async def test_limit(self, storage: ListingStorage, make_listing) -> None:
        for listing_id in ("a1", "b1", "c1"):
            await storage.save_listing(make_listing(listing_id))
        assert len(await storage.get_listings_needing_fingerprint(limit=2)) == 2


class TestFingerprints:
    @pytest.mark.asyncio
    async def test_save_and_get(self, storage: ListingStorage, make_listing) -> None:
        listing = make_listing("a1", street="Miletičova 23")
        await storage.save_listing(listing)
        fingerprint = generate_fingerprint(listing)

        assert await storage.save_fingerprint(fingerprint)
        assert await storage.get_fingerprint("a1") == fingerprint
        assert await storage.get_fingerprints(["a1", "zz"]) == {"a1": fingerprint}

    @pytest.mark.asyncio
    async def test_unchanged_digest_not_counted(
        self, storage: ListingStorage, make_listing
    ) -> None:
        listing = make_listing("a1")
        await storage.save_listing(listing)

        assert await storage.save_fingerprint(generate_fingerprint(listing))
        assert not await storage.save_fingerprint(generate_fingerprint(listing))

    @pytest.mark.asyncio
    async def test_changed_digest_replaces(self, storage: ListingStorage, make_listing) -> None:
        await _store(storage, make_listing("a1"))
        cheaper = make_listing("a1", price=120_000)

        assert await storage.save_fingerprint(generate_fingerprint(cheaper))
        stored = await storage.get_fingerprint("a1")
        assert stored is not None
        assert stored.price_bucket == generate_fingerprint(cheaper).price_bucket


class TestMatchingWorkList:
    @pytest.mark.asyncio
    async def test_new_fingerprints_need_matching(
        self, storage: ListingStorage, make_listing
    ) -> None:
        await _store(storage, make_listing("b1"), make_listing("a1"))

        pending = await storage.get_listings_needing_match()

        assert [listing.id for listing, _ in pending] == ["a1", "b1"]
        assert pending[0][1] == generate_fingerprint(make_listing("a1"))

    @pytest.mark.asyncio
    async def test_marked_listing_leaves_work_list(
        self, storage: ListingStorage, make_listing
    ) -> None:
        await _store(storage, make_listing("a1"), make_listing("b1"))
        digest = generate_fingerprint(make_listing("a1")).digest

        assert await storage.mark_listing_matched("a1", digest)

        pending = await storage.get_listings_needing_match()
        assert [listing.id for listing, _ in pending] == ["b1"]

    @pytest.mark.asyncio
    async def test_unchanged_digest_stays_matched(
        self, storage: ListingStorage, make_listing
    ) -> None:
        listing = make_listing("a1")
        await _store(storage, listing)
        await storage.mark_listing_matched("a1", generate_fingerprint(listing).digest)

        assert not await storage.save_fingerprint(generate_fingerprint(listing))
        assert await storage.get_listings_needing_match() == []

    @pytest.mark.asyncio
    async def test_changed_digest_rejoins_work_list(
        self, storage: ListingStorage, make_listing
    ) -> None:
        listing = make_listing("a1")
        await _store(storage, listing)
        old_digest = generate_fingerprint(listing).digest
        await storage.mark_listing_matched("a1", old_digest)

        await storage.save_fingerprint(generate_fingerprint(make_listing("a1", rooms=2)))

        assert not await storage.mark_listing_matched("a1", old_digest)
        assert [listing.id for listing, _ in await storage.get_listings_needing_match()] == ["a1"]

    @pytest.mark.asyncio
    async def test_removed_listing_skipped(self, storage: ListingStorage, make_listing) -> None:
        await _store(storage, make_listing("a1"))
        await storage.mark_listing_removed("a1")

        assert await storage.get_listings_needing_match() == []


class TestFindCandidateRows:
    @pytest.mark.asyncio
    async def test_prefilters_by_city_type_and_bands(
        self, storage: ListingStorage, make_listing
    ) -> None:
        target = make_listing("a1", area_m2=70, price=200_000)
        await _store(
            storage,
            target,
            make_listing("b1", area_m2=76, price=200_000),
            make_listing("c1", area_m2=90, price=200_000),
            make_listing("d1", area_m2=70, price=260_000),
            make_listing("e1", area_m2=70, price=200_000, city="Košice"),
            make_listing("f1", area_m2=70, price=900, listing_type=ListingType.RENT),
            make_listing("g1", area_m2=0, price=0),
        )

        rows = await storage.find_candidate_rows(
            target, generate_fingerprint(target), MatchingConfig()
        )

        assert sorted(listing.id for listing, _ in rows) == ["b1", "g1"]

    @pytest.mark.asyncio
    async def test_city_alias_shares_key(self, storage: ListingStorage, make_listing) -> None:
        target = make_listing("a1", city="Bratislava")
        other = make_listing("b1", city="Bratislava - Ružinov")
        await _store(storage, target, other)

        rows = await storage.find_candidate_rows(
            target, generate_fingerprint(target), MatchingConfig()
        )

        assert [listing.id for listing, _ in rows] == ["b1"]


class TestMatches:
    @pytest.mark.asyncio
    async def test_upsert_and_get_either_order(
        self, storage: ListingStorage, make_listing
    ) -> None:
        await _store(storage, make_listing("a1"), make_listing("b1"))

        assert await storage.upsert_match(_match("b1", "a1"))

        stored = await storage.get_match("b1", "a1")
        assert stored is not None
        assert stored.pair == ("a1", "b1")
        assert stored.reasons == ("rooms:15.0",)
        assert stored.input_digest == "d1"
        assert await storage.get_match("a1", "b1") == stored

    @pytest.mark.asyncio
    async def test_upsert_updates_automated_match(
        self, storage: ListingStorage, make_listing
    ) -> None:
        await _store(storage, make_listing("a1"), make_listing("b1"))
        await storage.upsert_match(_match("a1", "b1"))

        assert await storage.upsert_match(_match("a1", "b1", MatchStatus.CONFIRMED, "d2"))

        stored = await storage.get_match("a1", "b1")
        assert stored is not None
        assert stored.status == MatchStatus.CONFIRMED
        assert stored.input_digest == "d2"
        assert await storage.count_matches_by_status() == {"confirmed": 1}

    @pytest.mark.asyncio
    async def test_upsert_never_overwrites_human_decision(
        self, storage: ListingStorage, make_listing
    ) -> None:
        await _store(storage, make_listing("a1"), make_listing("b1"))
        await storage.set_match_decision("a1", "b1", confirmed=True, decided_by="jana")

        assert not await storage.upsert_match(_match("a1", "b1", MatchStatus.REJECTED))

        stored = await storage.get_match("a1", "b1")
        assert stored is not None
        assert stored.status == MatchStatus.CONFIRMED
        assert stored.decided_by == "jana"

    @pytest.mark.asyncio
    async def test_set_match_decision(self, storage: ListingStorage, make_listing) -> None:
        await _store(storage, make_listing("a1"), make_listing("b1"))
        await storage.upsert_match(_match("a1", "b1", MatchStatus.CONFIRMED))

        match = await storage.set_match_decision("b1", "a1", confirmed=False, decided_by="jana")

        assert match.status == MatchStatus.REJECTED
        assert match.decision_source == DecisionSource.HUMAN_CONFIRMED
        assert match.is_human_decision

    @pytest.mark.asyncio
    async def test_set_match_decision_unknown_listing(
        self, storage: ListingStorage, make_listing
    ) -> None:
        await storage.save_listing(make_listing("a1"))
        with pytest.raises(ListingNotFoundError, match="zz"):
            await storage.set_match_decision("a1", "zz", confirmed=True)

    @pytest.mark.asyncio
    async def test_queries_by_listing_and_status(
        self, storage: ListingStorage, make_listing
    ) -> None:
        await _store(storage, make_listing("a1"), make_listing("b1"), make_listing("c1"))
        await storage.upsert_match(_match("a1", "b1", MatchStatus.REJECTED))
        await storage.upsert_match(_match("a1", "c1", MatchStatus.CANDIDATE))
        await storage.upsert_match(_match("b1", "c1", MatchStatus.CONFIRMED))

        assert len(await storage.get_matches_for_listing("a1")) == 2
        assert await storage.get_rejected_partner_ids("b1") == {"a1"}
        assert [m.pair for m in await storage.get_unresolved_matches()] == [("a1", "c1")]
        assert await storage.get_confirmed_neighbors(["c1"]) == [("b1", "c1")]
        assert await storage.get_confirmed_edges() == [("b1", "c1")]
        assert await storage.count_matches_by_status() == {
            "candidate": 1,
            "confirmed": 1,
            "rejected": 1,
        }

    @pytest.mark.asyncio
    async def test_confirmed_edges_by_city(self, storage: ListingStorage, make_listing) -> None:
        await _store(
            storage,
            make_listing("a1"),
            make_listing("b1"),
            make_listing("k1", city="Košice", district="Juh"),
            make_listing("k2", city="Košice", district="Juh"),
        )
        await storage.upsert_match(_match("a1", "b1", MatchStatus.CONFIRMED))
        await storage.upsert_match(_match("k1", "k2", MatchStatus.CONFIRMED))

        assert await storage.get_confirmed_edges("KOSICE") == [("k1", "k2")]
        assert await storage.get_confirmed_edges("Bratislava") == [("a1", "b1")]

    @pytest.mark.asyncio
    async def test_cross_city_edge_listed_for_both_cities(
        self, storage: ListingStorage, make_listing
    ) -> None:
        await _store(
            storage,
            make_listing("a1"),
            make_listing("k1", city="Košice", district="Juh"),
        )
        await storage.set_match_decision("a1", "k1", confirmed=True, decided_by="reviewer")

        assert await storage.get_confirmed_edges("Bratislava") == [("a1", "k1")]
        assert await storage.get_confirmed_edges("Košice") == [("a1", "k1")]

    @pytest.mark.asyncio
    async def test_removed_listing_keeps_matches(
        self, storage: ListingStorage, make_listing
    ) -> None:
        await _store(storage, make_listing("a1"), make_listing("b1"))
        await storage.upsert_match(_match("a1", "b1", MatchStatus.CONFIRMED))

        await storage.mark_listing_removed("b1")

        assert await storage.get_match("a1", "b1") is not None


class TestAvailability:
    @pytest.mark.asyncio
    async def test_ping(self, storage: ListingStorage) -> None:
        await storage.ping()

    @pytest.mark.asyncio
    async def test_unreachable_database(self, tmp_path: Path) -> None:
        blocker = tmp_path / "blocker"
        blocker.mkdir()
        storage = ListingStorage(str(blocker))

        with pytest.raises(StorageUnavailableError):
            await storage.ping()
        await storage.close()

    @pytest.mark.asyncio
    async def test_initialize_is_idempotent(self, tmp_path: Path, make_listing) -> None:
        db_path = str(tmp_path / "nested" / "listings.db")
        first = ListingStorage(db_path)
        await first.initialize()
        await first.save_listing(make_listing("a1"))
        await first.close()

        second = ListingStorage(db_path)
        await second.initialize()
        assert await second.get_listing("a1") is not None
        await second.close()
