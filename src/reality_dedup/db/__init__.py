"""Database storage for listings, fingerprints and matches."""

from reality_dedup.db.storage import ListingNotFoundError, ListingStorage, StorageUnavailableError

__all__ = ["ListingNotFoundError", "ListingStorage", "StorageUnavailableError"]
