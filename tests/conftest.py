"""Shared pytest fixtures."""

import gc
import os
import sys
import threading
from collections.abc import AsyncGenerator, Callable
from datetime import UTC, datetime
from typing import Any

import pytest
import pytest_asyncio
from hypothesis import HealthCheck, settings

from reality_dedup.config import Settings
from reality_dedup.db.storage import ListingStorage
from reality_dedup.models import Listing, ListingSource, TieBreakVerdict


def pytest_configure(config: pytest.Config) -> None:
    """Force line-buffered stdout when piped."""
    if hasattr(sys.stdout, "reconfigure") and not sys.stdout.isatty():
        sys.stdout.reconfigure(line_buffering=True)
    if hasattr(sys.stderr, "reconfigure") and not sys.stderr.isatty():
        sys.stderr.reconfigure(line_buffering=True)


# Hypothesis settings profiles for different environments
settings.register_profile("fast", max_examples=10)
settings.register_profile(
    "ci",
    max_examples=200,
    suppress_health_check=[HealthCheck.too_slow],
)
settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "fast"))

# Fixed first-seen time so stored listings are never newer than their fingerprints
FIRST_SEEN = datetime(2025, 3, 1, 9, 0, tzinfo=UTC)


@pytest.fixture(autouse=True)
def _isolate_settings_from_dotenv(monkeypatch: pytest.MonkeyPatch) -> None:
    """Prevent the local .env file from leaking into test Settings instances."""
    monkeypatch.setattr(
        Settings,
        "model_config",
        {**Settings.model_config, "env_file": None},
    )
    monkeypatch.delenv("REALITY_DEDUP_ANTHROPIC_API_KEY", raising=False)


@pytest.fixture(autouse=True)
def _cleanup_aiosqlite_threads():
    """Safety net: detect and stop leaked aiosqlite worker threads.

    aiosqlite v0.22+ creates a non-daemon worker thread per connection that
    blocks on SimpleQueue.get() indefinitely.  If a test leaks a connection
    (doesn't call ``await conn.close()``), the thread prevents clean process exit.
    """
    yield

    from aiosqlite.core import _STOP_RUNNING_SENTINEL, Connection

    leaked = False

    gc.collect()
    for obj in gc.get_objects():
        if isinstance(obj, Connection) and obj._connection is not None:
            leaked = True
            obj.stop()

    for thread in threading.enumerate():
        if "_connection_worker_thread" in (thread.name or "") and thread.is_alive():
            leaked = True
            tx = getattr(thread, "_args", (None,))[0]
            if tx is not None and hasattr(tx, "put_nowait"):
                tx.put_nowait((None, lambda: _STOP_RUNNING_SENTINEL))
                thread.join(timeout=1.0)

    if leaked:
        import warnings

        warnings.warn(
            "Test leaked aiosqlite connection(s), add 'await storage.close()' to fixture teardown",
            ResourceWarning,
            stacklevel=1,
        )


@pytest.fixture
def make_listing() -> Callable[..., Listing]:
    """Factory for listings with Bratislava-Ruzinov defaults."""

    def _make(listing_id: str = "a1", **overrides: Any) -> Listing:
        fields: dict[str, Any] = {
            "id": listing_id,
            "source": ListingSource.NEHNUTELNOSTI,
            "title": "3-izbový byt, Ružinov",
            "price": 180_000,
            "area_m2": 65,
            "rooms": 3,
            "city": "Bratislava",
            "district": "Ružinov",
            "created_at": FIRST_SEEN,
            "updated_at": FIRST_SEEN,
        }
        fields.update(overrides)
        return Listing(**fields)

    return _make


@pytest_asyncio.fixture
async def storage() -> AsyncGenerator[ListingStorage, None]:
    """Create an in-memory storage instance."""
    storage = ListingStorage(":memory:")
    await storage.initialize()
    yield storage
    await storage.close()


@pytest.fixture
def test_settings() -> Settings:
    """Settings without an API key, so no tie-breaker is built."""
    return Settings(database_path=":memory:", anthropic_api_key="")


class FakeTieBreaker:
    """Tie-breaker returning a canned verdict and recording its calls."""

    def __init__(self, verdict: TieBreakVerdict | None) -> None:
        self.verdict = verdict
        self.calls: list[tuple[str, str]] = []
        self.closed = False

    async def decide(self, listing1: Listing, listing2: Listing) -> TieBreakVerdict | None:
        self.calls.append((listing1.id, listing2.id))
        return self.verdict

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_tie_breaker_factory() -> Callable[[TieBreakVerdict | None], FakeTieBreaker]:
    return FakeTieBreaker
