"""Shared row-mapping utilities for database modules."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import Any

import aiosqlite

from reality_dedup.models import (
    DecisionSource,
    Fingerprint,
    Listing,
    ListingSource,
    ListingStatus,
    ListingType,
    Match,
    MatchStatus,
)

LISTING_COLUMNS: tuple[str, ...] = (
    "id",
    "source",
    "external_id",
    "title",
    "description",
    "price",
    "area_m2",
    "rooms",
    "city",
    "district",
    "street",
    "address",
    "floor",
    "listing_type",
    "source_url",
    "status",
    "created_at",
    "updated_at",
)


def to_utc_iso(value: datetime) -> str:
    """Serialize a datetime as UTC ISO-8601 so stored timestamps compare as text."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat()


def from_iso(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def listing_to_values(listing: Listing) -> tuple[Any, ...]:
    """Column values for an INSERT into listings, in LISTING_COLUMNS order."""
    return (
        listing.id,
        listing.source.value,
        listing.external_id,
        listing.title,
        listing.description,
        listing.price,
        listing.area_m2,
        listing.rooms,
        listing.city,
        listing.district,
        listing.street,
        listing.address,
        listing.floor,
        listing.listing_type.value,
        str(listing.source_url) if listing.source_url else None,
        listing.status.value,
        to_utc_iso(listing.created_at),
        to_utc_iso(listing.updated_at),
    )


def row_to_listing(row: aiosqlite.Row) -> Listing:
    """Convert a database row to a Listing.

    Args:
        row: Database row from the listings table.

    Returns:
        Listing instance.
    """
    return Listing(
        id=row["id"],
        source=ListingSource(row["source"]),
        external_id=row["external_id"],
        title=row["title"],
        description=row["description"],
        price=row["price"],
        area_m2=row["area_m2"],
        rooms=row["rooms"],
        city=row["city"],
        district=row["district"],
        street=row["street"],
        address=row["address"],
        floor=row["floor"],
        listing_type=ListingType(row["listing_type"]),
        source_url=row["source_url"] if row["source_url"] else None,
        status=ListingStatus(row["status"]),
        created_at=from_iso(row["created_at"]),
        updated_at=from_iso(row["updated_at"]),
    )


def row_to_fingerprint(row: aiosqlite.Row) -> Fingerprint:
    """Convert a row carrying a fingerprint_json column to a Fingerprint."""
    return Fingerprint.model_validate_json(row["fingerprint_json"])


def row_to_match(row: aiosqlite.Row) -> Match:
    """Convert a database row to a Match.

    Args:
        row: Database row from the listing_matches table.

    Returns:
        Match instance.
    """
    reasons = json.loads(row["reasons"]) if row["reasons"] else []
    return Match(
        listing_a_id=row["listing_a_id"],
        listing_b_id=row["listing_b_id"],
        confidence=row["confidence"],
        status=MatchStatus(row["status"]),
        decision_source=DecisionSource(row["decision_source"]),
        reasons=tuple(reasons),
        input_digest=row["input_digest"] or "",
        decided_by=row["decided_by"],
        created_at=from_iso(row["created_at"]),
        updated_at=from_iso(row["updated_at"]),
    )
