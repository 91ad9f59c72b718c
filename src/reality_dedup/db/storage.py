"""SQLite storage for listings, fingerprints and pairwise matches."""

from __future__ import annotations

import json
from collections.abc import Iterable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Final

import aiosqlite

from reality_dedup.db.row_mappers import (
    LISTING_COLUMNS,
    listing_to_values,
    row_to_fingerprint,
    row_to_listing,
    row_to_match,
    to_utc_iso,
)
from reality_dedup.db.run_repo import RunRepository
from reality_dedup.logging import get_logger
from reality_dedup.matching.fingerprint import fingerprint_changed
from reality_dedup.models import (
    DecisionSource,
    Fingerprint,
    Listing,
    ListingStatus,
    Match,
    MatchingConfig,
    MatchStatus,
    pair_key,
)
from reality_dedup.utils.address import normalize_city

# SQLite caps host parameters per statement; batch IN (...) lookups below it
_IN_CLAUSE_BATCH: Final = 500

# Float slack so SQL range prefilters never drop a row the Python filter keeps
_BAND_SLACK: Final = 1e-6

__all__ = ["ListingNotFoundError", "ListingStorage", "StorageUnavailableError"]

logger = get_logger(__name__)


class StorageUnavailableError(Exception):
    """Raised when the listing store cannot be opened or queried."""


class ListingNotFoundError(Exception):
    """Raised when an operation names a listing that is not stored."""


def _batched(ids: list[str]) -> Iterable[list[str]]:
    for start in range(0, len(ids), _IN_CLAUSE_BATCH):
        yield ids[start : start + _IN_CLAUSE_BATCH]


class ListingStorage:
    """SQLite-based storage for listings and their duplicate matches."""

    def __init__(self, db_path: str) -> None:
        """Initialize storage with database path.

        Args:
            db_path: Path to SQLite database file, or ":memory:" for in-memory.
        """
        self.db_path = db_path
        self._conn: aiosqlite.Connection | None = None
        self._ensure_directory()
        self._runs = RunRepository(self._get_connection)

    def _ensure_directory(self) -> None:
        """Ensure the directory for the database exists."""
        if self.db_path != ":memory:":
            path = Path(self.db_path)
            path.parent.mkdir(parents=True, exist_ok=True)

    async def _get_connection(self) -> aiosqlite.Connection:
        """Get or create the database connection."""
        if self._conn is None:
            self._conn = await aiosqlite.connect(self.db_path)
            self._conn.row_factory = aiosqlite.Row
            await self._conn.execute("PRAGMA journal_mode=WAL")
            await self._conn.execute("PRAGMA busy_timeout=5000")
            await self._conn.execute("PRAGMA synchronous=NORMAL")
            await self._conn.execute("PRAGMA foreign_keys=ON")
        return self._conn

    async def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    async def ping(self) -> None:
        """Verify the store answers queries.

        Raises:
            StorageUnavailableError: If the database cannot be reached.
        """
        try:
            conn = await self._get_connection()
            await conn.execute("SELECT 1")
        except (aiosqlite.Error, OSError) as e:
            raise StorageUnavailableError(f"Cannot reach {self.db_path}: {e}") from e

    async def initialize(self) -> None:
        """Initialize the database schema."""
        conn = await self._get_connection()
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS listings (
                id TEXT PRIMARY KEY,
                source TEXT NOT NULL,
                external_id TEXT,
                title TEXT NOT NULL DEFAULT '',
                description TEXT,
                price REAL NOT NULL DEFAULT 0,
                area_m2 REAL NOT NULL DEFAULT 0,
                rooms INTEGER,
                city TEXT NOT NULL,
                district TEXT,
                street TEXT,
                address TEXT,
                floor INTEGER,
                listing_type TEXT NOT NULL DEFAULT 'sale',
                source_url TEXT,
                status TEXT NOT NULL DEFAULT 'active',
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_listings_updated_at
            ON listings(updated_at)
        """)

        # Fingerprint fields used in WHERE clauses are denormalized next to the JSON.
        # matched_digest is the digest whose candidates have all been scored.
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS fingerprints (
                listing_id TEXT PRIMARY KEY,
                city_key TEXT NOT NULL,
                district_key TEXT,
                area_bucket INTEGER,
                price_bucket INTEGER,
                address_hash TEXT,
                description_hash TEXT,
                is_coarse BOOLEAN NOT NULL DEFAULT 0,
                low_confidence BOOLEAN NOT NULL DEFAULT 0,
                digest TEXT NOT NULL,
                fingerprint_json TEXT NOT NULL,
                computed_at TEXT NOT NULL,
                matched_digest TEXT,
                FOREIGN KEY (listing_id) REFERENCES listings(id) ON DELETE CASCADE
            )
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_fingerprints_city
            ON fingerprints(city_key)
        """)

        # One row per unordered pair: listing_a_id always sorts first
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS listing_matches (
                listing_a_id TEXT NOT NULL,
                listing_b_id TEXT NOT NULL,
                confidence REAL NOT NULL,
                status TEXT NOT NULL,
                decision_source TEXT NOT NULL,
                reasons TEXT,
                input_digest TEXT,
                decided_by TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                PRIMARY KEY (listing_a_id, listing_b_id),
                CHECK (listing_a_id < listing_b_id),
                FOREIGN KEY (listing_a_id) REFERENCES listings(id) ON DELETE CASCADE,
                FOREIGN KEY (listing_b_id) REFERENCES listings(id) ON DELETE CASCADE
            )
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_matches_listing_b
            ON listing_matches(listing_b_id)
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_matches_status
            ON listing_matches(status)
        """)

        # Dedup runs table for observability
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS dedup_runs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                started_at TEXT NOT NULL,
                completed_at TEXT,
                status TEXT NOT NULL DEFAULT 'running',
                listings_checked INTEGER DEFAULT 0,
                fingerprints_created INTEGER DEFAULT 0,
                pairs_scored INTEGER DEFAULT 0,
                matches_found INTEGER DEFAULT 0,
                pairs_rejected INTEGER DEFAULT 0,
                pairs_unresolved INTEGER DEFAULT 0,
                failures INTEGER DEFAULT 0,
                error_message TEXT,
                duration_seconds REAL
            )
        """)

        # Migrate: add columns that may not exist in older databases
        for table, column, col_type, default in [
            ("listings", "external_id", "TEXT", None),
            ("listings", "listing_type", "TEXT", "'sale'"),
            ("fingerprints", "matched_digest", "TEXT", None),
        ]:
            try:
                default_clause = f" DEFAULT {default}" if default is not None else ""
                await conn.execute(
                    f"ALTER TABLE {table} ADD COLUMN {column} {col_type}{default_clause}"
                )
            except aiosqlite.OperationalError as e:
                if "duplicate column" not in str(e).lower():
                    raise

        await conn.commit()

        logger.info("database_initialized", db_path=self.db_path)

    # ------------------------------------------------------------------
    # Listings (written by the ingestion pipeline)
    # ------------------------------------------------------------------

    async def save_listing(self, listing: Listing) -> None:
        """Save or update a listing.

        created_at (first seen) is kept from the first save.
        """
        conn = await self._get_connection()
        col_list = ", ".join(LISTING_COLUMNS)
        placeholders = ", ".join("?" for _ in LISTING_COLUMNS)
        updates = ", ".join(
            f"{col} = excluded.{col}" for col in LISTING_COLUMNS if col not in ("id", "created_at")
        )
        await conn.execute(
            f"""
            INSERT INTO listings ({col_list})
            VALUES ({placeholders})
            ON CONFLICT(id) DO UPDATE SET {updates}
            """,
            listing_to_values(listing),
        )
        await conn.commit()

        logger.debug("listing_saved", listing_id=listing.id, source=listing.source.value)

    async def get_listing(self, listing_id: str) -> Listing | None:
        """Get a listing by ID.

        Args:
            listing_id: Listing identifier.

        Returns:
            Listing if found, None otherwise.
        """
        conn = await self._get_connection()
        cursor = await conn.execute("SELECT * FROM listings WHERE id = ?", (listing_id,))
        row = await cursor.fetchone()
        if row is None:
            return None
        return row_to_listing(row)

    async def get_listings(self, listing_ids: Iterable[str]) -> dict[str, Listing]:
        """Get several listings keyed by ID; unknown IDs are absent from the result."""
        conn = await self._get_connection()
        result: dict[str, Listing] = {}
        for batch in _batched(sorted(set(listing_ids))):
            placeholders = ", ".join("?" for _ in batch)
            cursor = await conn.execute(
                f"SELECT * FROM listings WHERE id IN ({placeholders})", batch
            )
            for row in await cursor.fetchall():
                result[row["id"]] = row_to_listing(row)
        return result

    async def mark_listing_removed(self, listing_id: str) -> None:
        """Soft-remove a listing; its matches are kept for history."""
        conn = await self._get_connection()
        await conn.execute(
            "UPDATE listings SET status = ?, updated_at = ? WHERE id = ?",
            (ListingStatus.REMOVED.value, datetime.now(UTC).isoformat(), listing_id),
        )
        await conn.commit()

    async def get_listings_needing_fingerprint(self, limit: int | None = None) -> list[Listing]:
        """Active listings with no fingerprint, or updated since it was computed.

        Args:
            limit: Maximum number of listings to return (None for all).

        Returns:
            Listings ordered by first seen, then ID.
        """
        conn = await self._get_connection()
        query = """
            SELECT l.* FROM listings l
            LEFT JOIN fingerprints f ON f.listing_id = l.id
            WHERE l.status != ?
              AND (f.listing_id IS NULL OR l.updated_at > f.computed_at)
            ORDER BY l.created_at ASC, l.id ASC
        """
        params: list[Any] = [ListingStatus.REMOVED.value]
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
        cursor = await conn.execute(query, params)
        rows = await cursor.fetchall()
        return [row_to_listing(row) for row in rows]

    # ------------------------------------------------------------------
    # Fingerprints
    # ------------------------------------------------------------------

    async def get_fingerprint(self, listing_id: str) -> Fingerprint | None:
        """Get the stored fingerprint of a listing."""
        conn = await self._get_connection()
        cursor = await conn.execute(
            "SELECT fingerprint_json FROM fingerprints WHERE listing_id = ?", (listing_id,)
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return row_to_fingerprint(row)

    async def get_fingerprints(self, listing_ids: Iterable[str]) -> dict[str, Fingerprint]:
        """Get several fingerprints keyed by listing ID."""
        conn = await self._get_connection()
        result: dict[str, Fingerprint] = {}
        for batch in _batched(sorted(set(listing_ids))):
            placeholders = ", ".join("?" for _ in batch)
            cursor = await conn.execute(
                f"SELECT listing_id, fingerprint_json FROM fingerprints "
                f"WHERE listing_id IN ({placeholders})",
                batch,
            )
            for row in await cursor.fetchall():
                result[row["listing_id"]] = row_to_fingerprint(row)
        return result

    async def save_fingerprint(self, fingerprint: Fingerprint) -> bool:
        """Save a fingerprint, committed before the listing is offered as a candidate.

        Args:
            fingerprint: Freshly generated fingerprint.

        Returns:
            True if the fingerprint is new or its digest changed, False if only
            the computation timestamp was refreshed.
        """
        conn = await self._get_connection()
        now = datetime.now(UTC).isoformat()
        cursor = await conn.execute(
            "SELECT fingerprint_json FROM fingerprints WHERE listing_id = ?",
            (fingerprint.listing_id,),
        )
        row = await cursor.fetchone()
        previous = row_to_fingerprint(row) if row is not None else None

        if not fingerprint_changed(previous, fingerprint):
            await conn.execute(
                "UPDATE fingerprints SET computed_at = ? WHERE listing_id = ?",
                (now, fingerprint.listing_id),
            )
            await conn.commit()
            return False

        await conn.execute(
            """
            INSERT INTO fingerprints (
                listing_id, city_key, district_key, area_bucket, price_bucket,
                address_hash, description_hash, is_coarse, low_confidence,
                digest, fingerprint_json, computed_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(listing_id) DO UPDATE SET
                city_key = excluded.city_key,
                district_key = excluded.district_key,
                area_bucket = excluded.area_bucket,
                price_bucket = excluded.price_bucket,
                address_hash = excluded.address_hash,
                description_hash = excluded.description_hash,
                is_coarse = excluded.is_coarse,
                low_confidence = excluded.low_confidence,
                digest = excluded.digest,
                fingerprint_json = excluded.fingerprint_json,
                computed_at = excluded.computed_at
            """,
            (
                fingerprint.listing_id,
                fingerprint.city_key,
                fingerprint.district_key,
                fingerprint.area_bucket,
                fingerprint.price_bucket,
                fingerprint.address_hash,
                fingerprint.description_hash,
                fingerprint.is_coarse,
                fingerprint.low_confidence,
                fingerprint.digest,
                fingerprint.model_dump_json(),
                now,
            ),
        )
        await conn.commit()
        logger.debug(
            "fingerprint_saved",
            listing_id=fingerprint.listing_id,
            location=fingerprint.location_key,
            low_confidence=fingerprint.low_confidence,
        )
        return True

    async def get_listings_needing_match(
        self, limit: int | None = None
    ) -> list[tuple[Listing, Fingerprint]]:
        """Active listings whose current fingerprint has not been fully matched.

        A listing stays here until mark_listing_matched records its current
        digest, so work interrupted between runs is picked up again.

        Returns:
            (listing, fingerprint) pairs ordered by first seen, then ID.
        """
        conn = await self._get_connection()
        query = """
            SELECT l.*, f.fingerprint_json FROM listings l
            JOIN fingerprints f ON f.listing_id = l.id
            WHERE l.status != ?
              AND (f.matched_digest IS NULL OR f.matched_digest != f.digest)
            ORDER BY l.created_at ASC, l.id ASC
        """
        params: list[Any] = [ListingStatus.REMOVED.value]
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
        cursor = await conn.execute(query, params)
        rows = await cursor.fetchall()
        return [(row_to_listing(row), row_to_fingerprint(row)) for row in rows]

    async def mark_listing_matched(self, listing_id: str, digest: str) -> bool:
        """Record that every candidate of a fingerprint digest has been scored.

        Returns:
            False if the stored fingerprint has moved on to another digest.
        """
        conn = await self._get_connection()
        cursor = await conn.execute(
            "UPDATE fingerprints SET matched_digest = digest WHERE listing_id = ? AND digest = ?",
            (listing_id, digest),
        )
        await conn.commit()
        return cursor.rowcount > 0

    async def find_candidate_rows(
        self,
        listing: Listing,
        fingerprint: Fingerprint,
        config: MatchingConfig,
    ) -> list[tuple[Listing, Fingerprint]]:
        """Prefilter stored listings by city, type, area and price bands.

        Unknown areas or prices (0) on either side pass the band. District and
        room filters are applied by the caller.
        """
        conn = await self._get_connection()
        area_tol = config.candidate_area_tolerance + _BAND_SLACK
        price_tol = config.candidate_price_tolerance + _BAND_SLACK
        cursor = await conn.execute(
            """
            SELECT l.*, f.fingerprint_json
            FROM listings l
            JOIN fingerprints f ON f.listing_id = l.id
            WHERE f.city_key = ?
              AND l.listing_type = ?
              AND l.status != ?
              AND l.id != ?
              AND (? <= 0 OR l.area_m2 <= 0 OR l.area_m2 BETWEEN ? AND ?)
              AND (? <= 0 OR l.price <= 0 OR l.price BETWEEN ? AND ?)
            """,
            (
                fingerprint.city_key,
                listing.listing_type.value,
                ListingStatus.REMOVED.value,
                listing.id,
                listing.area_m2,
                listing.area_m2 * (1 - area_tol),
                listing.area_m2 * (1 + area_tol),
                listing.price,
                listing.price * (1 - price_tol),
                listing.price * (1 + price_tol),
            ),
        )
        rows = await cursor.fetchall()
        return [(row_to_listing(row), row_to_fingerprint(row)) for row in rows]

    # ------------------------------------------------------------------
    # Matches
    # ------------------------------------------------------------------

    async def get_match(self, first_id: str, second_id: str) -> Match | None:
        """Get the match for a pair in either order."""
        a, b = pair_key(first_id, second_id)
        conn = await self._get_connection()
        cursor = await conn.execute(
            "SELECT * FROM listing_matches WHERE listing_a_id = ? AND listing_b_id = ?",
            (a, b),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return row_to_match(row)

    async def upsert_match(self, match: Match) -> bool:
        """Insert or update an automated match decision.

        Human decisions are never overwritten.

        Returns:
            True if a row was written.
        """
        conn = await self._get_connection()
        now = datetime.now(UTC).isoformat()
        try:
            cursor = await conn.execute(
                """
                INSERT INTO listing_matches (
                    listing_a_id, listing_b_id, confidence, status, decision_source,
                    reasons, input_digest, decided_by, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(listing_a_id, listing_b_id) DO UPDATE SET
                    confidence = excluded.confidence,
                    status = excluded.status,
                    decision_source = excluded.decision_source,
                    reasons = excluded.reasons,
                    input_digest = excluded.input_digest,
                    updated_at = excluded.updated_at
                WHERE listing_matches.decision_source != ?
                """,
                (
                    match.listing_a_id,
                    match.listing_b_id,
                    match.confidence,
                    match.status.value,
                    match.decision_source.value,
                    json.dumps(list(match.reasons)),
                    match.input_digest,
                    match.decided_by,
                    to_utc_iso(match.created_at),
                    now,
                    DecisionSource.HUMAN_CONFIRMED.value,
                ),
            )
        except aiosqlite.IntegrityError as e:
            if "UNIQUE" not in str(e).upper():
                raise
            logger.debug("match_already_recorded", pair=match.pair)
            return False
        await conn.commit()
        return cursor.rowcount > 0

    async def set_match_decision(
        self,
        first_id: str,
        second_id: str,
        *,
        confirmed: bool,
        decided_by: str | None = None,
    ) -> Match:
        """Record a human confirm/reject decision for a pair.

        Args:
            first_id: One listing of the pair.
            second_id: The other listing.
            confirmed: True to confirm as duplicates, False to reject.
            decided_by: Reviewer identifier.

        Returns:
            The stored match.

        Raises:
            ListingNotFoundError: If either listing is not stored.
        """
        a, b = pair_key(first_id, second_id)
        found = await self.get_listings([a, b])
        missing = [listing_id for listing_id in (a, b) if listing_id not in found]
        if missing:
            raise ListingNotFoundError(f"Unknown listing(s): {', '.join(missing)}")

        status = MatchStatus.CONFIRMED if confirmed else MatchStatus.REJECTED
        now = datetime.now(UTC).isoformat()
        conn = await self._get_connection()
        await conn.execute(
            """
            INSERT INTO listing_matches (
                listing_a_id, listing_b_id, confidence, status, decision_source,
                reasons, input_digest, decided_by, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, '', ?, ?, ?)
            ON CONFLICT(listing_a_id, listing_b_id) DO UPDATE SET
                status = excluded.status,
                decision_source = excluded.decision_source,
                decided_by = excluded.decided_by,
                updated_at = excluded.updated_at
            """,
            (
                a,
                b,
                1.0 if confirmed else 0.0,
                status.value,
                DecisionSource.HUMAN_CONFIRMED.value,
                json.dumps(["human_review"]),
                decided_by,
                now,
                now,
            ),
        )
        await conn.commit()
        logger.info("match_decided_by_human", pair=(a, b), status=status.value, by=decided_by)

        match = await self.get_match(a, b)
        assert match is not None
        return match

    async def get_matches_for_listing(
        self, listing_id: str, status: MatchStatus | None = None
    ) -> list[Match]:
        """Get all matches touching a listing, optionally filtered by status."""
        conn = await self._get_connection()
        query = "SELECT * FROM listing_matches WHERE (listing_a_id = ? OR listing_b_id = ?)"
        params: list[Any] = [listing_id, listing_id]
        if status is not None:
            query += " AND status = ?"
            params.append(status.value)
        cursor = await conn.execute(query + " ORDER BY listing_a_id, listing_b_id", params)
        rows = await cursor.fetchall()
        return [row_to_match(row) for row in rows]

    async def get_rejected_partner_ids(self, listing_id: str) -> set[str]:
        """IDs of listings already rejected as duplicates of listing_id."""
        matches = await self.get_matches_for_listing(listing_id, MatchStatus.REJECTED)
        return {m.other(listing_id) for m in matches}

    async def get_unresolved_matches(self, limit: int | None = None) -> list[Match]:
        """Matches still in candidate status, oldest first."""
        conn = await self._get_connection()
        query = "SELECT * FROM listing_matches WHERE status = ? ORDER BY updated_at ASC"
        params: list[Any] = [MatchStatus.CANDIDATE.value]
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
        cursor = await conn.execute(query, params)
        rows = await cursor.fetchall()
        return [row_to_match(row) for row in rows]

    async def get_confirmed_neighbors(self, listing_ids: Iterable[str]) -> list[tuple[str, str]]:
        """Confirmed edges touching any of the given listings."""
        conn = await self._get_connection()
        edges: set[tuple[str, str]] = set()
        for batch in _batched(sorted(set(listing_ids))):
            placeholders = ", ".join("?" for _ in batch)
            cursor = await conn.execute(
                f"""
                SELECT listing_a_id, listing_b_id FROM listing_matches
                WHERE status = ?
                  AND (listing_a_id IN ({placeholders}) OR listing_b_id IN ({placeholders}))
                """,
                [MatchStatus.CONFIRMED.value, *batch, *batch],
            )
            for row in await cursor.fetchall():
                edges.add((row["listing_a_id"], row["listing_b_id"]))
        return sorted(edges)

    async def get_confirmed_edges(self, city: str | None = None) -> list[tuple[str, str]]:
        """All confirmed edges, optionally restricted to those touching one city.

        A pair whose listings lie in different cities is returned for both.
        """
        conn = await self._get_connection()
        if city:
            cursor = await conn.execute(
                """
                SELECT m.listing_a_id, m.listing_b_id
                FROM listing_matches m
                WHERE m.status = ?
                  AND EXISTS (
                      SELECT 1 FROM fingerprints f
                      WHERE f.listing_id IN (m.listing_a_id, m.listing_b_id)
                        AND f.city_key = ?
                  )
                ORDER BY m.listing_a_id, m.listing_b_id
                """,
                (MatchStatus.CONFIRMED.value, normalize_city(city)),
            )
        else:
            cursor = await conn.execute(
                """
                SELECT listing_a_id, listing_b_id FROM listing_matches
                WHERE status = ?
                ORDER BY listing_a_id, listing_b_id
                """,
                (MatchStatus.CONFIRMED.value,),
            )
        rows = await cursor.fetchall()
        return [(row["listing_a_id"], row["listing_b_id"]) for row in rows]

    async def count_matches_by_status(self) -> dict[str, int]:
        """Number of stored matches per status."""
        conn = await self._get_connection()
        cursor = await conn.execute(
            "SELECT status, COUNT(*) AS n FROM listing_matches GROUP BY status"
        )
        rows = await cursor.fetchall()
        return {row["status"]: row["n"] for row in rows}

    # ------------------------------------------------------------------
    # Facade: dedup run tracking (delegates to RunRepository)
    # ------------------------------------------------------------------

    async def create_dedup_run(self) -> int:
        """Create a new dedup run record."""
        return await self._runs.create_dedup_run()

    async def update_dedup_run(self, run_id: int, **counts: int) -> None:
        """Update count columns on a dedup run."""
        await self._runs.update_dedup_run(run_id, **counts)

    async def complete_dedup_run(
        self,
        run_id: int,
        status: str,
        *,
        error_message: str | None = None,
    ) -> None:
        """Mark a dedup run as completed or failed."""
        await self._runs.complete_dedup_run(run_id, status, error_message=error_message)

    async def get_last_dedup_run(self) -> dict[str, Any] | None:
        """Get the most recent finished dedup run."""
        return await self._runs.get_last_dedup_run()
