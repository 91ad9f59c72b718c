"""Duplicate groups and master records, computed at read time from confirmed matches."""

from __future__ import annotations

import statistics
from collections import defaultdict
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Final

from reality_dedup.logging import get_logger
from reality_dedup.models import (
    CitySavings,
    DuplicateGroup,
    DuplicateListing,
    DuplicateStats,
    Listing,
    MasterRecord,
)
from reality_dedup.utils.union_find import UnionFind

if TYPE_CHECKING:
    from reality_dedup.db.storage import ListingStorage

logger = get_logger(__name__)

# Savings percentages at which the recommendation gets more insistent
STRONG_SAVINGS_PCT: Final = 10.0
MODERATE_SAVINGS_PCT: Final = 5.0

TOP_CITIES: Final = 5
DEFAULT_GROUP_LIMIT: Final = 50


def completeness(listing: Listing) -> int:
    """Number of optional attributes the listing actually publishes."""
    return sum(
        [
            listing.has_price,
            listing.has_area,
            listing.rooms is not None,
            listing.district is not None,
            listing.street is not None or listing.address is not None,
            listing.floor is not None,
            listing.description is not None,
            listing.source_url is not None,
        ]
    )


def select_master(listings: list[Listing]) -> Listing:
    """Pick the representative listing: most complete, then first seen, then lowest ID."""
    if not listings:
        raise ValueError("Cannot select a master from an empty group")
    return min(listings, key=lambda item: (-completeness(item), item.created_at, item.id))


def summarize_group(listings: list[Listing], *, now: datetime | None = None) -> DuplicateGroup:
    """Build the price-comparison view of a group of duplicate listings.

    Prices of 0 (price on request) are shown but excluded from min, max,
    median and savings.

    Args:
        listings: Members of one connected component.
        now: Reference time for days on market.

    Returns:
        DuplicateGroup with members ordered cheapest first.
    """
    now = now or datetime.now(UTC)
    master = select_master(listings)
    priced = [item for item in listings if item.has_price]
    best = (
        min(priced, key=lambda item: (item.price, item.created_at, item.id)) if priced else None
    )

    min_price = min(item.price for item in priced) if priced else None
    max_price = max(item.price for item in priced) if priced else None
    median_price = statistics.median(item.price for item in priced) if priced else None
    savings = (max_price - min_price) if min_price is not None and max_price is not None else 0
    savings_percent = round(savings / max_price * 100, 1) if max_price else 0.0

    ordered = sorted(listings, key=lambda item: (not item.has_price, item.price, item.id))
    members = tuple(
        DuplicateListing(
            id=item.id,
            source=item.source,
            title=item.title,
            price=item.price,
            price_per_m2=item.price_per_m2,
            source_url=item.source_url,
            days_on_market=max(0, (now - item.created_at).days),
            is_best_price=best is not None and item.id == best.id,
            is_master=item.id == master.id,
        )
        for item in ordered
    )

    return DuplicateGroup(
        listing_ids=tuple(sorted(item.id for item in listings)),
        listings=members,
        master_id=master.id,
        city=master.city,
        count=len(listings),
        min_price=min_price,
        max_price=max_price,
        median_price=median_price,
        potential_savings=savings,
        savings_percent=savings_percent,
        best_price_source=best.source if best else None,
        sources=tuple(sorted({item.source for item in listings}, key=lambda s: s.value)),
    )


def build_recommendation(group: DuplicateGroup) -> str:
    """Short buyer-facing advice based on the price spread."""
    if group.best_price_source is None or group.min_price == group.max_price:
        return "Prices are the same across portals"
    if group.savings_percent > STRONG_SAVINGS_PCT:
        return (
            f"Same property is {group.savings_percent}% cheaper on "
            f"{group.best_price_source.display_name}"
        )
    if group.savings_percent > MODERATE_SAVINGS_PCT:
        return (
            f"Price differs by {group.savings_percent}% between portals; "
            "compare the offers before contacting the seller"
        )
    return "Prices are similar across portals"


def build_master_record(group: DuplicateGroup, master: Listing) -> MasterRecord:
    """Wrap a non-trivial group into its master record."""
    return MasterRecord(
        id=f"master_{master.id}",
        master=master,
        group=group,
        best_price=group.min_price,
        best_price_source=group.best_price_source,
        worst_price=group.max_price,
        potential_savings=group.potential_savings,
        savings_percent=group.savings_percent,
        recommendation=build_recommendation(group),
    )


class MasterRecordService:
    """Read surface over confirmed matches: groups, master records and stats."""

    def __init__(self, storage: ListingStorage) -> None:
        self._storage = storage

    async def _component_ids(self, listing_id: str) -> set[str]:
        """Breadth-first walk over confirmed edges starting at listing_id."""
        seen = {listing_id}
        frontier = {listing_id}
        while frontier:
            edges = await self._storage.get_confirmed_neighbors(frontier)
            reached = {node for edge in edges for node in edge}
            frontier = reached - seen
            seen |= frontier
        return seen

    async def build_group(self, listing_id: str) -> DuplicateGroup | None:
        """Compute the duplicate group containing a listing.

        Returns:
            The group (trivial when the listing has no confirmed duplicates),
            or None if the listing is unknown.
        """
        listing = await self._storage.get_listing(listing_id)
        if listing is None:
            return None
        member_ids = await self._component_ids(listing_id)
        listings = await self._storage.get_listings(member_ids)
        return summarize_group(list(listings.values()))

    async def get_master_record(self, listing_id: str) -> MasterRecord | None:
        """Master record for the group containing a listing.

        Returns:
            None when the listing is unknown or has no confirmed duplicates.
        """
        group = await self.build_group(listing_id)
        if group is None or group.is_trivial:
            return None
        master = await self._storage.get_listing(group.master_id)
        if master is None:
            return None
        return build_master_record(group, master)

    async def find_all_groups(
        self, city: str | None = None, limit: int | None = None
    ) -> list[DuplicateGroup]:
        """All duplicate groups of two or more listings.

        Args:
            city: Restrict to one city (matched on the normalized city key).
            limit: Maximum number of groups to return.

        Returns:
            Groups ordered by size, then potential savings, then first ID.
        """
        edges = await self._storage.get_confirmed_edges(city)
        uf = UnionFind()
        for a, b in edges:
            uf.union(a, b)
        components = [members for members in uf.groups().values() if len(members) >= 2]
        listings = await self._storage.get_listings(
            listing_id for members in components for listing_id in members
        )

        now = datetime.now(UTC)
        groups: list[DuplicateGroup] = []
        for members in components:
            present = [listings[i] for i in members if i in listings]
            if len(present) < 2:
                continue
            groups.append(summarize_group(present, now=now))

        groups.sort(key=lambda g: (-g.count, -g.potential_savings, g.listing_ids[0]))
        logger.debug("duplicate_groups_built", city=city, groups=len(groups), edges=len(edges))
        return groups[:limit] if limit is not None else groups

    async def list_duplicate_groups(
        self, city: str | None = None, limit: int = DEFAULT_GROUP_LIMIT
    ) -> list[DuplicateGroup]:
        """Duplicate groups for display, largest first."""
        return await self.find_all_groups(city=city, limit=limit)

    async def get_duplicate_stats(self, city: str | None = None) -> DuplicateStats:
        """Aggregate duplicate counts and savings, with the top cities by savings."""
        groups = await self.find_all_groups(city=city)
        by_city: dict[str, list[DuplicateGroup]] = defaultdict(list)
        for group in groups:
            by_city[group.city].append(group)

        top = sorted(
            (
                CitySavings(
                    city=name,
                    groups=len(city_groups),
                    savings=sum(g.potential_savings for g in city_groups),
                )
                for name, city_groups in by_city.items()
            ),
            key=lambda c: (-c.savings, c.city),
        )[:TOP_CITIES]

        return DuplicateStats(
            total_duplicate_groups=len(groups),
            total_duplicate_listings=sum(g.count for g in groups),
            potential_savings=sum(g.potential_savings for g in groups),
            top_savings=tuple(top),
        )
