"""Batch deduplication job and command-line entry point."""

import argparse
import asyncio
import json
import sys
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Final, TypeVar

import aiosqlite
from pydantic import ValidationError

from reality_dedup.config import Settings
from reality_dedup.db import ListingNotFoundError, ListingStorage, StorageUnavailableError
from reality_dedup.logging import bound_run, configure_logging, get_logger
from reality_dedup.matching import (
    AnthropicTieBreaker,
    CandidateSearch,
    MasterRecordService,
    MatchScorer,
    PersistOutcome,
    TieBreaker,
    generate_fingerprint,
)
from reality_dedup.models import (
    Fingerprint,
    Listing,
    ListingStatus,
    MatchingConfig,
    MatchStatus,
    RunSummary,
    pair_key,
)

logger = get_logger(__name__)

T = TypeVar("T")

# SQLite error messages that indicate a lock held by another writer
_TRANSIENT_STORAGE_ERRORS: Final = ("locked", "busy")


@dataclass
class RunContext:
    """State threaded through the stages of one deduplication run."""

    storage: ListingStorage
    config: MatchingConfig
    scorer: MatchScorer
    search: CandidateSearch
    worker_concurrency: int = 8
    retry_attempts: int = 3
    retry_delay: float = 0.5
    run_id: int | None = None
    processed_pairs: set[tuple[str, str]] = field(default_factory=set)
    failed_pairs: set[tuple[str, str]] = field(default_factory=set)
    listings_checked: int = 0
    fingerprints_created: int = 0
    pairs_scored: int = 0
    matches_found: int = 0
    pairs_rejected: int = 0
    pairs_unresolved: int = 0
    failures: int = 0

    def record(self, outcome: PersistOutcome) -> None:
        """Tally the outcome of one scored pair."""
        self.pairs_scored += 1
        if outcome.newly_confirmed:
            self.matches_found += 1
        elif outcome.match.status == MatchStatus.REJECTED and outcome.written:
            self.pairs_rejected += 1
        elif outcome.match.status == MatchStatus.CANDIDATE:
            self.pairs_unresolved += 1

    def counts(self) -> dict[str, int]:
        return {
            "listings_checked": self.listings_checked,
            "fingerprints_created": self.fingerprints_created,
            "pairs_scored": self.pairs_scored,
            "matches_found": self.matches_found,
            "pairs_rejected": self.pairs_rejected,
            "pairs_unresolved": self.pairs_unresolved,
            "failures": self.failures,
        }


def _is_transient(error: aiosqlite.OperationalError) -> bool:
    message = str(error).lower()
    return any(marker in message for marker in _TRANSIENT_STORAGE_ERRORS)


async def with_storage_retry(
    ctx: RunContext,
    func: Callable[..., Awaitable[T]],
    *args: object,
) -> T:
    """Call a storage coroutine, retrying when the database is locked.

    Args:
        ctx: Run context holding the retry policy.
        func: Storage method to call.
        *args: Positional arguments for func.

    Returns:
        Whatever func returns.

    Raises:
        aiosqlite.OperationalError: If the error is not transient or retries run out.
    """
    for attempt in range(1, ctx.retry_attempts + 1):
        try:
            return await func(*args)
        except aiosqlite.OperationalError as e:
            if not _is_transient(e) or attempt >= ctx.retry_attempts:
                raise
            logger.warning(
                "storage_retry",
                operation=getattr(func, "__name__", repr(func)),
                attempt=attempt,
                error=str(e),
            )
            await asyncio.sleep(ctx.retry_delay * attempt)
    raise AssertionError("unreachable")


async def generate_fingerprints(ctx: RunContext) -> int:
    """Fingerprint every listing that lacks a current fingerprint.

    Each fingerprint is stored before any listing is matched, so later
    searches in the same run see it. A new or materially changed digest
    puts the listing on the matching work list kept in storage.

    Returns:
        Number of new or materially changed fingerprints.
    """
    listings = await with_storage_retry(ctx, ctx.storage.get_listings_needing_fingerprint)
    ctx.listings_checked = len(listings)
    if not listings:
        logger.info("no_listings_need_fingerprint")
        return 0

    semaphore = asyncio.Semaphore(ctx.worker_concurrency)

    async def _fingerprint_one(listing: Listing) -> bool | None:
        async with semaphore:
            try:
                fingerprint = generate_fingerprint(listing, ctx.config)
                changed = await with_storage_retry(ctx, ctx.storage.save_fingerprint, fingerprint)
            except Exception:
                logger.error("fingerprint_failed", listing_id=listing.id, exc_info=True)
                return None
            return changed

    tasks = [asyncio.create_task(_fingerprint_one(listing)) for listing in listings]
    created = 0
    failed = 0
    for coro in asyncio.as_completed(tasks):
        changed = await coro
        if changed is None:
            failed += 1
        elif changed:
            created += 1

    ctx.failures += failed
    ctx.fingerprints_created += created
    logger.info(
        "fingerprints_generated",
        checked=len(listings),
        created=created,
        unchanged=len(listings) - created - failed,
    )
    return created


async def score_pair(
    ctx: RunContext,
    listing1: Listing,
    listing2: Listing,
    fp1: Fingerprint,
    fp2: Fingerprint,
) -> PersistOutcome | None:
    """Score and persist one pair, at most once per run.

    Returns:
        The outcome, or None if the pair was already handled or failed.
    """
    pair = pair_key(listing1.id, listing2.id)
    if pair in ctx.processed_pairs:
        return None
    ctx.processed_pairs.add(pair)
    try:
        outcome = await with_storage_retry(
            ctx, ctx.scorer.score_and_persist, listing1, listing2, fp1, fp2
        )
    except Exception:
        logger.error("pair_scoring_failed", pair=pair, exc_info=True)
        ctx.failed_pairs.add(pair)
        ctx.failures += 1
        return None
    ctx.record(outcome)
    return outcome


async def _rescore_existing_matches(
    ctx: RunContext, listing: Listing, fp: Fingerprint
) -> set[tuple[str, str]]:
    """Re-score automated matches of a changed listing that search did not return.

    Returns:
        Pairs attempted.
    """
    matches = await with_storage_retry(ctx, ctx.storage.get_matches_for_listing, listing.id)
    partner_ids = [
        m.other(listing.id)
        for m in matches
        if not m.is_human_decision and m.pair not in ctx.processed_pairs
    ]
    if not partner_ids:
        return set()
    partners = await with_storage_retry(ctx, ctx.storage.get_listings, partner_ids)
    fingerprints = await with_storage_retry(ctx, ctx.storage.get_fingerprints, partner_ids)
    attempted: set[tuple[str, str]] = set()
    for partner_id in partner_ids:
        partner = partners.get(partner_id)
        partner_fp = fingerprints.get(partner_id)
        if partner is None or partner_fp is None or partner.status == ListingStatus.REMOVED:
            continue
        attempted.add(pair_key(listing.id, partner_id))
        await score_pair(ctx, listing, partner, fp, partner_fp)
    return attempted


async def match_listings(ctx: RunContext) -> int:
    """Search and score candidates for every listing on the matching work list.

    The work list lives in storage: a listing leaves it only once all of its
    pairs were scored without error, so a run that stops early or fails on a
    listing leaves that listing for the next run.

    Returns:
        Number of pairs that became confirmed.
    """
    pending = await with_storage_retry(ctx, ctx.storage.get_listings_needing_match)
    if not pending:
        return 0
    before = ctx.matches_found
    semaphore = asyncio.Semaphore(ctx.worker_concurrency)

    async def _match_one(listing: Listing, fp: Fingerprint) -> None:
        async with semaphore:
            try:
                candidates = await with_storage_retry(ctx, ctx.search.find_candidates, listing, fp)
                pairs: set[tuple[str, str]] = set()
                for candidate in candidates:
                    pairs.add(pair_key(listing.id, candidate.listing.id))
                    await score_pair(ctx, listing, candidate.listing, fp, candidate.fingerprint)
                pairs |= await _rescore_existing_matches(ctx, listing, fp)
                if pairs & ctx.failed_pairs:
                    return
                await with_storage_retry(
                    ctx, ctx.storage.mark_listing_matched, listing.id, fp.digest
                )
            except Exception:
                logger.error("listing_matching_failed", listing_id=listing.id, exc_info=True)
                ctx.failures += 1

    await asyncio.gather(*(_match_one(listing, fp) for listing, fp in pending))

    found = ctx.matches_found - before
    logger.info(
        "listings_matched",
        listings=len(pending),
        pairs_scored=ctx.pairs_scored,
        matches_found=found,
    )
    return found


async def retry_unresolved(ctx: RunContext) -> int:
    """Give candidate pairs not touched this run another pass at the tie-breaker.

    Returns:
        Number of pairs that became confirmed.
    """
    if not ctx.scorer.has_tie_breaker:
        return 0
    matches = await with_storage_retry(ctx, ctx.storage.get_unresolved_matches)
    pending = [m for m in matches if m.pair not in ctx.processed_pairs]
    if not pending:
        return 0

    ids = {listing_id for m in pending for listing_id in m.pair}
    listings = await with_storage_retry(ctx, ctx.storage.get_listings, ids)
    fingerprints = await with_storage_retry(ctx, ctx.storage.get_fingerprints, ids)

    before = ctx.matches_found
    for m in pending:
        a, b = m.pair
        if a not in listings or b not in listings or a not in fingerprints or b not in fingerprints:
            continue
        if ListingStatus.REMOVED in (listings[a].status, listings[b].status):
            continue
        await score_pair(ctx, listings[a], listings[b], fingerprints[a], fingerprints[b])

    found = ctx.matches_found - before
    logger.info("unresolved_matches_retried", pending=len(pending), matches_found=found)
    return found


def build_tie_breaker(settings: Settings) -> AnthropicTieBreaker | None:
    """Create the AI tie-breaker if it is enabled and an API key is set."""
    if not settings.ai_tiebreak_enabled:
        logger.info("skipping_ai_tiebreak", reason="not_configured")
        return None
    return AnthropicTieBreaker(
        api_key=settings.anthropic_api_key.get_secret_value(),
        model=settings.ai_model,
        timeout_seconds=settings.ai_timeout_seconds,
        max_concurrency=settings.ai_max_concurrency,
        max_retries=settings.ai_max_retries,
    )


async def open_storage(settings: Settings) -> ListingStorage:
    """Open and initialize the listing store.

    Raises:
        StorageUnavailableError: If the database cannot be opened or migrated.
    """
    storage: ListingStorage | None = None
    try:
        storage = ListingStorage(settings.database_path)
        await storage.ping()
        await storage.initialize()
    except (aiosqlite.Error, OSError, StorageUnavailableError) as e:
        if storage is not None:
            await storage.close()
        logger.error("storage_unavailable", path=settings.database_path, error=str(e))
        if isinstance(e, StorageUnavailableError):
            raise
        raise StorageUnavailableError(f"Cannot open {settings.database_path}: {e}") from e
    return storage


async def run_full_deduplication(
    settings: Settings,
    *,
    storage: ListingStorage | None = None,
    tie_breaker: TieBreaker | None = None,
) -> RunSummary:
    """Run one batch: fingerprint, search, score and persist matches.

    Partial failures are logged and counted in the summary. Only an
    unreachable store propagates.

    Args:
        settings: Application settings.
        storage: Open storage to use (opened from settings if omitted).
        tie_breaker: AI tie-breaker (built from settings if omitted).

    Returns:
        Counts for this run.

    Raises:
        StorageUnavailableError: If the store cannot be opened at run start.
    """
    started = time.monotonic()
    owns_storage = storage is None
    if storage is None:
        storage = await open_storage(settings)
    else:
        await storage.ping()

    owns_tie_breaker = tie_breaker is None
    if tie_breaker is None:
        tie_breaker = build_tie_breaker(settings)

    config = settings.get_matching_config()
    ctx = RunContext(
        storage=storage,
        config=config,
        scorer=MatchScorer(storage, config, tie_breaker),
        search=CandidateSearch(storage, config),
        worker_concurrency=settings.worker_concurrency,
        retry_attempts=settings.storage_retry_attempts,
        retry_delay=settings.storage_retry_delay_seconds,
    )

    try:
        ctx.run_id = await storage.create_dedup_run()
        logger.info("dedup_run_started", run_id=ctx.run_id, ai_tiebreak=tie_breaker is not None)
        try:
            with bound_run(ctx.run_id):
                await generate_fingerprints(ctx)
                await match_listings(ctx)
                await retry_unresolved(ctx)
        except Exception as e:
            logger.error("dedup_run_failed", run_id=ctx.run_id, exc_info=True)
            await storage.update_dedup_run(ctx.run_id, **ctx.counts())
            await storage.complete_dedup_run(ctx.run_id, "failed", error_message=str(e))
            raise
        await storage.update_dedup_run(ctx.run_id, **ctx.counts())
        await storage.complete_dedup_run(ctx.run_id, "completed")
    finally:
        if owns_tie_breaker and tie_breaker is not None:
            await tie_breaker.close()
        if owns_storage:
            await storage.close()

    summary = RunSummary(
        run_id=ctx.run_id,
        duration_ms=int((time.monotonic() - started) * 1000),
        **ctx.counts(),
    )
    logger.info("dedup_run_complete", **summary.model_dump())
    return summary


async def import_listings(storage: ListingStorage, path: Path) -> tuple[int, int]:
    """Load normalized listings from a JSON Lines file.

    Invalid lines are logged and skipped.

    Returns:
        (imported, skipped) counts.
    """
    imported = 0
    skipped = 0
    with path.open(encoding="utf-8") as f:
        for line_no, line in enumerate(f, start=1):
            if not line.strip():
                continue
            try:
                listing = Listing.model_validate_json(line)
            except ValidationError as e:
                logger.warning(
                    "listing_import_skipped",
                    line=line_no,
                    errors=e.error_count(),
                    error=str(e).splitlines()[0],
                )
                skipped += 1
                continue
            await storage.save_listing(listing)
            imported += 1
    logger.info("listings_imported", path=str(path), imported=imported, skipped=skipped)
    return imported, skipped


def _print_json(payload: object) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False, default=str))


async def run_cli_command(settings: Settings, args: argparse.Namespace) -> int:
    """Execute one CLI command against the configured store.

    Returns:
        Process exit code.
    """
    other_command = (
        args.import_jsonl
        or args.master_record
        or args.groups
        or args.stats
        or args.confirm
        or args.reject
    )
    if not other_command:
        summary = await run_full_deduplication(settings)
        print(f"\n{'=' * 60}")
        print(f"Fingerprints created: {summary.fingerprints_created}")
        print(f"Matches found:        {summary.matches_found}")
        print(f"Pairs scored:         {summary.pairs_scored}")
        print(f"Unresolved pairs:     {summary.pairs_unresolved}")
        print(f"Failures:             {summary.failures}")
        print(f"Duration:             {summary.duration_ms} ms")
        print(f"{'=' * 60}\n")
        return 0

    storage = await open_storage(settings)
    try:
        if args.import_jsonl:
            imported, skipped = await import_listings(storage, Path(args.import_jsonl))
            print(f"Imported {imported} listings ({skipped} skipped)")
            return 0 if imported or not skipped else 1

        if args.confirm or args.reject:
            first, second = args.confirm or args.reject
            try:
                match = await storage.set_match_decision(
                    first, second, confirmed=bool(args.confirm), decided_by=args.reviewer
                )
            except (ListingNotFoundError, ValueError) as e:
                print(f"Error: {e}")
                return 1
            _print_json(match.model_dump(mode="json"))
            return 0

        service = MasterRecordService(storage)
        if args.master_record:
            record = await service.get_master_record(args.master_record)
            if record is None:
                print(f"No duplicates found for listing {args.master_record}")
                return 1
            _print_json(record.model_dump(mode="json"))
        elif args.groups:
            groups = await service.list_duplicate_groups(city=args.city, limit=args.limit)
            _print_json([g.model_dump(mode="json") for g in groups])
        elif args.stats:
            stats = await service.get_duplicate_stats(city=args.city)
            _print_json(stats.model_dump(mode="json"))
        return 0
    finally:
        await storage.close()


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Reality Dedup - cross-portal duplicate detection for Slovak listings"
    )
    parser.add_argument(
        "--import-jsonl",
        metavar="PATH",
        help="Load normalized listings from a JSON Lines file",
    )
    parser.add_argument(
        "--master-record",
        metavar="LISTING_ID",
        help="Print the master record for the group containing a listing",
    )
    parser.add_argument(
        "--groups",
        action="store_true",
        help="List duplicate groups, largest first",
    )
    parser.add_argument(
        "--stats",
        action="store_true",
        help="Print duplicate statistics and the cities with the most savings",
    )
    parser.add_argument("--city", default=None, help="With --groups/--stats: filter by city")
    parser.add_argument(
        "--limit",
        type=int,
        default=50,
        help="With --groups: maximum number of groups",
    )
    decision = parser.add_mutually_exclusive_group()
    decision.add_argument(
        "--confirm",
        nargs=2,
        metavar=("A", "B"),
        help="Confirm two listings as duplicates (human review)",
    )
    decision.add_argument(
        "--reject",
        nargs=2,
        metavar=("A", "B"),
        help="Reject two listings as duplicates (human review)",
    )
    parser.add_argument(
        "--reviewer",
        default="cli",
        help="With --confirm/--reject: who made the decision",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug-level logging for troubleshooting",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Emit logs as JSON lines",
    )
    args = parser.parse_args()

    import logging

    configure_logging(
        json_output=args.json_logs, level=logging.DEBUG if args.debug else logging.INFO
    )

    try:
        settings = Settings()
    except ValidationError as e:
        logger.error("failed_to_load_settings", error=str(e))
        print(f"Error: Failed to load settings. {e}")
        print("Settings are read from REALITY_DEDUP_* environment variables or a .env file.")
        print("Optional: REALITY_DEDUP_ANTHROPIC_API_KEY enables the AI tie-breaker")
        sys.exit(1)

    try:
        exit_code = asyncio.run(run_cli_command(settings, args))
    except StorageUnavailableError as e:
        print(f"Error: {e}")
        sys.exit(2)
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
