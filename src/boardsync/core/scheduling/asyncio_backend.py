"""Asyncio-based fixed-interval scheduler backend.

┌──────────────────────────────────────────────────────────────────────────────┐
│  ASYNCIO BACKEND                                                              │
│                                                                               │
│   start()                                                                     │
│      │                                                                        │
│      ▼                                                                        │
│   timer task:                                                                 │
│       deadline = loop.time() + interval                                       │
│       while True:                                                             │
│           await asyncio.sleep(deadline - loop.time())                         │
│           spawn tick task ◄──── not awaited, so a slow tick never delays      │
│           deadline += interval   the next one                                 │
│                                                                               │
│   stop()                                                                      │
│       cancel timer task, then await every in-flight tick task                 │
│                                                                               │
│  Runs inside the caller's event loop so ticks share the asyncpg pool and     │
│  the httpx client with the rest of the process.                              │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

import asyncio
from datetime import datetime

from ..logging import get_logger
from ..timestamps import utc_now
from .protocol import BackendHealth, TickCallback

logger = get_logger(__name__)


class AsyncioSchedulerBackend:
    """Fixed-interval tick loop running on the current event loop.

    Example:
        >>> backend = AsyncioSchedulerBackend()
        >>> async def my_tick():
        ...     print("Tick!")
        >>> backend.start(my_tick, interval_seconds=5.0)
        >>> # ... later ...
        >>> await backend.stop()
    """

    name = "asyncio"

    def __init__(self) -> None:
        self._timer: asyncio.Task[None] | None = None
        self._in_flight: set[asyncio.Task[None]] = set()
        self._tick_count = 0
        self._last_tick: datetime | None = None
        self._last_drift_ms: float | None = None
        self._interval: float = 10.0

    def start(
        self,
        tick_callback: TickCallback,
        interval_seconds: float = 10.0,
        *,
        run_immediately: bool = False,
    ) -> None:
        """Start the timer task. Must be called from a running event loop."""
        if self.is_running:
            logger.warning("scheduler.backend.already_started", backend=self.name)
            return

        self._interval = interval_seconds
        loop = asyncio.get_running_loop()

        async def _loop() -> None:
            logger.info("scheduler.backend.started", backend=self.name, interval_seconds=interval_seconds)
            if run_immediately:
                self._fire(tick_callback)
            deadline = loop.time() + interval_seconds
            while True:
                await asyncio.sleep(max(0.0, deadline - loop.time()))
                self._last_drift_ms = (loop.time() - deadline) * 1000
                self._fire(tick_callback)
                deadline += interval_seconds

        self._timer = loop.create_task(_loop(), name="boardsync-scheduler")

    def _fire(self, tick_callback: TickCallback) -> None:
        self._tick_count += 1
        self._last_tick = utc_now()
        task = asyncio.get_running_loop().create_task(self._run_tick(tick_callback))
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)

    async def _run_tick(self, tick_callback: TickCallback) -> None:
        try:
            await tick_callback()
        except Exception:
            logger.exception("scheduler.tick.failed", backend=self.name)

    async def stop(self) -> None:
        """Stop ticking and let in-flight ticks run to completion."""
        if self._timer is None:
            return
        self._timer.cancel()
        try:
            await self._timer
        except asyncio.CancelledError:
            pass
        self._timer = None

        if self._in_flight:
            logger.info("scheduler.backend.draining", in_flight=len(self._in_flight))
            await asyncio.gather(*self._in_flight, return_exceptions=True)
        logger.info("scheduler.backend.stopped", backend=self.name)

    def health(self) -> BackendHealth:
        return BackendHealth(
            healthy=self.is_running,
            backend=self.name,
            tick_count=self._tick_count,
            last_tick=self._last_tick,
            drift_ms=self._last_drift_ms,
            extra={"interval_seconds": self._interval, "in_flight": len(self._in_flight)},
        )

    @property
    def is_running(self) -> bool:
        return self._timer is not None and not self._timer.done()

    @property
    def tick_count(self) -> int:
        return self._tick_count

    @property
    def last_tick(self) -> datetime | None:
        return self._last_tick
