"""
Watermark tracking for incremental index synchronization.

A watermark is the epoch-millisecond boundary below which every change in
the board database is known to be reflected in the search index.  Each
sync cycle reads rows changed strictly after the watermark and, only if
every index write succeeded, advances it to the cycle's start time.

Manifesto:
    Without a watermark every cycle would re-read the whole board.  With
    one that advances too eagerly, a failed write would be lost forever.
    Key principles:

    - **Forward-only advancement:** ``advance()`` never moves backward
    - **Single writer:** Only the orchestrator calls ``advance()``
    - **Persistence-agnostic:** In-memory (default) or PostgreSQL table

Architecture:
    ::

        SyncOrchestrator ── cycle Succeeded ──► store.advance(key, cycle_start_ms)
                                                     │
                         ┌───────────────────────────┴──────────────┐
                         ▼                                          ▼
                 in-memory dict                     boardsync_watermarks table
             (lost on restart → resync             key | high_water | updated_at
              from epoch, large but safe)

Examples:
    >>> store = WatermarkStore()
    >>> await store.current("board_search")
    0
    >>> await store.advance("board_search", 150)
    Watermark(key='board_search', high_water=150, ...)
    >>> await store.advance("board_search", 100)  # ignored, forward-only
    Watermark(key='board_search', high_water=150, ...)

Guardrails:
    ❌ DON'T: Advance after a partially failed cycle
    ✅ DO: Leave the watermark untouched so the next cycle re-reads the window

    ❌ DON'T: Use "now at end of cycle" as the new watermark
    ✅ DO: Use the time captured before the change queries ran

Tags:
    watermark, incremental, cursor, resume, checkpoint, boardsync
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from .logging import get_logger
from .timestamps import utc_now

if TYPE_CHECKING:
    from asyncpg import Pool

logger = get_logger(__name__)

WATERMARKS_TABLE = "boardsync_watermarks"

_CREATE_TABLE_SQL = f"""
CREATE TABLE IF NOT EXISTS {WATERMARKS_TABLE} (
    key         TEXT PRIMARY KEY,
    high_water  BIGINT NOT NULL,
    updated_at  TIMESTAMPTZ NOT NULL
)
"""


@dataclass(frozen=True, slots=True)
class Watermark:
    """High-water mark for one sync pipeline.

    Attributes:
        key: Pipeline name (e.g. ``"board_search"``).
        high_water: Epoch milliseconds; everything at or before it is indexed.
        updated_at: When this watermark was last advanced.
    """

    key: str
    high_water: int
    updated_at: datetime | None = None


class WatermarkStore:
    """Forward-only watermark store.

    If *pool* is supplied (an asyncpg pool or anything exposing
    ``fetchrow()`` and ``execute()`` coroutines), watermarks are persisted
    to the ``boardsync_watermarks`` table.  Otherwise an in-memory dict is
    used and a restart falls back to a full resync from epoch.

    Args:
        pool: Optional database pool.
    """

    def __init__(self, pool: Pool | None = None) -> None:
        self._pool = pool
        self._mem: dict[str, Watermark] = {}
        self._table_ready = False

    @property
    def persistent(self) -> bool:
        return self._pool is not None

    async def get(self, key: str) -> Watermark | None:
        """Return the stored watermark, or ``None`` if never advanced."""
        if self._pool is not None:
            return await self._get_db(key)
        return self._mem.get(key)

    async def current(self, key: str) -> int:
        """Return the current high-water value, ``0`` (epoch) if unset."""
        wm = await self.get(key)
        return wm.high_water if wm is not None else 0

    async def advance(self, key: str, high_water: int) -> Watermark:
        """Move the watermark forward (forward-only).

        If *high_water* is ≤ the stored value the call is a no-op and the
        existing watermark is returned unchanged.
        """
        existing = await self.get(key)
        if existing is not None and high_water <= existing.high_water:
            return existing

        wm = Watermark(key=key, high_water=high_water, updated_at=utc_now())
        if self._pool is not None:
            await self._upsert_db(wm)
        else:
            self._mem[key] = wm

        logger.debug(
            "watermark.advanced",
            key=key,
            previous=existing.high_water if existing else 0,
            high_water=high_water,
        )
        return wm

    # -- internal: database backend ------------------------------------------

    async def _ensure_table(self) -> None:
        assert self._pool is not None
        if not self._table_ready:
            await self._pool.execute(_CREATE_TABLE_SQL)
            self._table_ready = True

    async def _get_db(self, key: str) -> Watermark | None:
        await self._ensure_table()
        row = await self._pool.fetchrow(
            f"SELECT high_water, updated_at FROM {WATERMARKS_TABLE} WHERE key = $1",
            key,
        )
        if row is None:
            return None
        return Watermark(key=key, high_water=row["high_water"], updated_at=row["updated_at"])

    async def _upsert_db(self, wm: Watermark) -> None:
        await self._ensure_table()
        # GREATEST keeps the row monotonic even if two processes race
        await self._pool.execute(
            f"INSERT INTO {WATERMARKS_TABLE} (key, high_water, updated_at) "
            "VALUES ($1, $2, $3) "
            "ON CONFLICT (key) DO UPDATE SET "
            f"  high_water = GREATEST({WATERMARKS_TABLE}.high_water, excluded.high_water), "
            "  updated_at = excluded.updated_at",
            wm.key,
            wm.high_water,
            wm.updated_at,
        )


__all__ = ["Watermark", "WatermarkStore", "WATERMARKS_TABLE"]
