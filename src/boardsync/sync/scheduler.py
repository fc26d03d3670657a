"""Sync scheduler: runs the orchestrator on a fixed interval.

┌──────────────────────────────────────────────────────────────────────────────┐
│  SYNC SCHEDULER                                                               │
│                                                                               │
│   backend (timing)                  SyncScheduler                            │
│   ┌──────────────┐   tick()   ┌──────────────────────────────────────┐       │
│   │ Asyncio      │ ─────────► │ report = orchestrator.run_cycle()    │       │
│   │ backend      │            │   skipped?  → stats.cycles_skipped   │       │
│   └──────────────┘            │   outcome   → stats.cycles_*         │       │
│                               └──────────────────────────────────────┘       │
│                                                                               │
│  Public API:                                                                  │
│  ├── start()     start ticking (first cycle immediately by default)          │
│  ├── stop()      stop ticking, wait for the in-flight cycle                  │
│  ├── trigger()   run one tick now (same overlap rules as a timer tick)       │
│  └── health()    backend health + stats + current watermark                  │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from boardsync.core.logging import get_logger
from boardsync.core.scheduling import AsyncioSchedulerBackend, BackendHealth, SchedulerBackend
from boardsync.core.timestamps import utc_now

from .models import CycleReport, CycleState
from .orchestrator import SyncOrchestrator

logger = get_logger(__name__)

# a tick that fires this late is worth a warning
DRIFT_WARNING_MS = 1000.0


@dataclass
class SchedulerStats:
    """Counters since the scheduler was created."""

    tick_count: int = 0
    cycles_run: int = 0
    cycles_skipped: int = 0
    cycles_succeeded: int = 0
    cycles_failed: int = 0
    last_outcome: CycleState | None = None
    last_tick: datetime | None = None
    last_error: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "tick_count": self.tick_count,
            "cycles_run": self.cycles_run,
            "cycles_skipped": self.cycles_skipped,
            "cycles_succeeded": self.cycles_succeeded,
            "cycles_failed": self.cycles_failed,
            "last_outcome": self.last_outcome.value if self.last_outcome else None,
            "last_tick": self.last_tick.isoformat() if self.last_tick else None,
            "last_error": self.last_error,
        }


@dataclass
class SchedulerHealth:
    """Health status for the sync scheduler."""

    healthy: bool
    backend: BackendHealth
    watermark: int | None = None
    collections_ready: bool = False
    dead_letters: int = 0
    drift_warning: bool = False
    stats: SchedulerStats = field(default_factory=SchedulerStats)

    def to_dict(self) -> dict[str, Any]:
        return {
            "healthy": self.healthy,
            "backend": self.backend.to_dict(),
            "watermark": self.watermark,
            "collections_ready": self.collections_ready,
            "dead_letters": self.dead_letters,
            "drift_warning": self.drift_warning,
            "stats": self.stats.to_dict(),
        }


class SyncScheduler:
    """Drives :class:`SyncOrchestrator` from a timing backend.

    Example:
        >>> scheduler = SyncScheduler(orchestrator, interval_seconds=10.0)
        >>> scheduler.start()            # first cycle fires immediately
        >>> ...
        >>> await scheduler.stop()
    """

    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        backend: SchedulerBackend | None = None,
        interval_seconds: float = 10.0,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be greater than 0")
        self.orchestrator = orchestrator
        self.backend = backend if backend is not None else AsyncioSchedulerBackend()
        self.interval = interval_seconds

        self._stats = SchedulerStats()
        self._running = False

    # === Lifecycle ===

    def start(self, *, run_immediately: bool = True) -> None:
        """Start ticking. Must be called from a running event loop."""
        if self._running:
            logger.warning("scheduler.already_running")
            return
        logger.info(
            "scheduler.starting",
            backend=self.backend.name,
            interval_seconds=self.interval,
            run_immediately=run_immediately,
        )
        self.backend.start(self.tick, self.interval, run_immediately=run_immediately)
        self._running = True

    async def stop(self) -> None:
        """Stop ticking and wait for the in-flight cycle to finish."""
        if not self._running:
            return
        logger.info("scheduler.stopping")
        await self.backend.stop()
        self._running = False
        logger.info("scheduler.stopped", **self._stats.to_dict())

    @property
    def is_running(self) -> bool:
        return self._running

    # === Ticks ===

    async def tick(self) -> CycleReport:
        """Run one cycle, counting it in the stats."""
        self._stats.tick_count += 1
        self._stats.last_tick = utc_now()

        report = await self.orchestrator.run_cycle()
        if report.skipped:
            self._stats.cycles_skipped += 1
            return report

        self._stats.cycles_run += 1
        self._stats.last_outcome = report.outcome
        if report.succeeded:
            self._stats.cycles_succeeded += 1
            self._stats.last_error = None
        else:
            self._stats.cycles_failed += 1
            self._stats.last_error = report.error
        return report

    async def trigger(self) -> CycleReport:
        """Manually run one tick now."""
        logger.info("scheduler.manual_trigger")
        return await self.tick()

    # === Health ===

    async def health(self) -> SchedulerHealth:
        backend_health = self.backend.health()
        watermark = await self.orchestrator.current_watermark()
        drift = backend_health.drift_ms
        return SchedulerHealth(
            healthy=self._running and backend_health.healthy,
            backend=backend_health,
            watermark=watermark,
            collections_ready=self.orchestrator.collections_ready,
            dead_letters=len(self.orchestrator.rejects.dead_letters),
            drift_warning=drift is not None and drift > DRIFT_WARNING_MS,
            stats=self._stats,
        )


__all__ = ["SyncScheduler", "SchedulerStats", "SchedulerHealth"]
