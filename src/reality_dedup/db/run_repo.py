"""Run repository: bookkeeping for batch deduplication runs."""

from __future__ import annotations

from collections.abc import Callable, Coroutine
from datetime import UTC, datetime
from typing import Any

import aiosqlite

from reality_dedup.logging import get_logger

logger = get_logger(__name__)


class RunRepository:
    """Database operations for dedup run tracking."""

    def __init__(
        self,
        get_connection: Callable[[], Coroutine[Any, Any, aiosqlite.Connection]],
    ) -> None:
        self._get_connection = get_connection

    async def create_dedup_run(self) -> int:
        """Create a new dedup run record.

        Returns:
            The ID of the new run.
        """
        conn = await self._get_connection()
        cursor = await conn.execute(
            "INSERT INTO dedup_runs (started_at, status) VALUES (?, 'running')",
            (datetime.now(UTC).isoformat(),),
        )
        await conn.commit()
        return cursor.lastrowid  # type: ignore[return-value]

    async def update_dedup_run(self, run_id: int, **counts: int) -> None:
        """Update count columns on a dedup run.

        Args:
            run_id: The dedup run ID.
            **counts: Column name/value pairs to update (e.g. matches_found=3).
        """
        if not counts:
            return
        conn = await self._get_connection()
        set_clauses = ", ".join(f"{k} = ?" for k in counts)
        values: list[Any] = list(counts.values())
        values.append(run_id)
        await conn.execute(
            f"UPDATE dedup_runs SET {set_clauses} WHERE id = ?",
            values,
        )
        await conn.commit()

    async def complete_dedup_run(
        self,
        run_id: int,
        status: str,
        *,
        error_message: str | None = None,
    ) -> None:
        """Mark a dedup run as completed or failed.

        Args:
            run_id: The dedup run ID.
            status: Final status ('completed' or 'failed').
            error_message: Error message if status is 'failed'.
        """
        conn = await self._get_connection()
        now = datetime.now(UTC).isoformat()
        cursor = await conn.execute("SELECT started_at FROM dedup_runs WHERE id = ?", (run_id,))
        row = await cursor.fetchone()
        duration = None
        if row:
            started = datetime.fromisoformat(row["started_at"])
            duration = (datetime.fromisoformat(now) - started).total_seconds()

        await conn.execute(
            """
            UPDATE dedup_runs
            SET completed_at = ?, status = ?, error_message = ?, duration_seconds = ?
            WHERE id = ?
            """,
            (now, status, error_message, duration, run_id),
        )
        await conn.commit()
        logger.debug("dedup_run_recorded", run_id=run_id, status=status)

    async def get_last_dedup_run(self) -> dict[str, Any] | None:
        """Get the most recent finished dedup run.

        Returns:
            Dict with run data, or None if no runs exist.
        """
        conn = await self._get_connection()
        cursor = await conn.execute(
            """
            SELECT * FROM dedup_runs
            WHERE status IN ('completed', 'failed')
            ORDER BY id DESC LIMIT 1
            """
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return dict(row)
