"""Deterministic fingerprints for listing comparison."""

import hashlib
import math
from typing import Final

from reality_dedup.models import Fingerprint, Listing, MatchingConfig
from reality_dedup.utils.address import normalize_address, normalize_city, normalize_district
from reality_dedup.utils.text import (
    DEFAULT_BOILERPLATE_KEYWORDS,
    normalize_description,
    normalize_title,
)

FLOOR_UNKNOWN: Final = "unknown"


def _md5(text: str) -> str | None:
    if not text:
        return None
    return hashlib.md5(text.encode("utf-8"), usedforsecurity=False).hexdigest()


def area_bucket(area_m2: float, granularity: int = 5) -> int | None:
    """Round floor area half-up to the bucket granularity (64 -> 65, 62.4 -> 60).

    Returns None when the area is unknown (0).
    """
    if area_m2 <= 0:
        return None
    return int(math.floor(area_m2 / granularity + 0.5)) * granularity


def price_bucket(price: float, band_pct: float = 0.05) -> int | None:
    """Snap a price to a geometric band of band_pct of its own value.

    Bands are relative, so 80 000 EUR and 800 000 EUR listings get equally
    fine-grained buckets. Returns None for price on request (0).
    """
    if price <= 0:
        return None
    step = math.log1p(band_pct)
    index = math.floor(math.log(price) / step + 0.5)
    return round(math.exp(index * step))


def floor_bucket(floor: int | None) -> str:
    """Coarse floor band: ground, 1-3, 4-6, 7+ or unknown."""
    if floor is None:
        return FLOOR_UNKNOWN
    if floor <= 0:
        return "ground"
    if floor <= 3:
        return "1-3"
    if floor <= 6:
        return "4-6"
    return "7+"


def description_hash(
    description: str | None, keywords: tuple[str, ...] = DEFAULT_BOILERPLATE_KEYWORDS
) -> str | None:
    """128-bit hash of the normalized description opening, None if empty."""
    return _md5(normalize_description(description, keywords))


def generate_fingerprint(listing: Listing, config: MatchingConfig | None = None) -> Fingerprint:
    """Derive the comparison fingerprint for a listing.

    Identical listing attributes always produce an identical fingerprint.
    Missing district yields a coarse, city-only location; missing area or
    price yields a low-confidence fingerprint instead of an error.

    Args:
        listing: Normalized listing row.
        config: Matching configuration (bucket sizes, boilerplate phrases).

    Returns:
        Fingerprint for the listing.
    """
    config = config or MatchingConfig()
    city_key = normalize_city(listing.city)
    district_key = normalize_district(listing.district, city_key)
    address = normalize_address(listing.street, listing.address, listing.city)
    title = normalize_title(listing.title, config.boilerplate_keywords)

    return Fingerprint(
        listing_id=listing.id,
        address_normalized=address,
        address_hash=_md5(address),
        title_normalized=title,
        title_hash=_md5(title),
        area_bucket=area_bucket(listing.area_m2, config.area_bucket_m2),
        price_bucket=price_bucket(listing.price, config.price_band_pct),
        floor_bucket=floor_bucket(listing.floor),
        rooms=listing.rooms,
        description_hash=description_hash(listing.description, config.boilerplate_keywords),
        city_key=city_key,
        district_key=district_key,
        location_key=f"{city_key}|{district_key}" if district_key else city_key,
        is_coarse=district_key is None,
        low_confidence=not listing.has_area or not listing.has_price,
    )


def fingerprint_changed(previous: Fingerprint | None, current: Fingerprint) -> bool:
    """Whether the comparison inputs changed materially since the last fingerprint."""
    return previous is None or previous.digest != current.digest
