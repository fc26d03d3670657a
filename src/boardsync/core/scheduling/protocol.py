"""Scheduler backend protocol.

┌──────────────────────────────────────────────────────────────────────────────┐
│  SCHEDULER BACKEND PROTOCOL                                                   │
│                                                                               │
│  Backends control WHEN ticks happen; SyncScheduler controls WHAT happens on  │
│  each tick (run one sync cycle, or skip it if one is already running).       │
│                                                                               │
│   ┌──────────────────┐      tick()       ┌─────────────────┐                 │
│   │ Asyncio Backend  │ ────────────────► │  SyncScheduler  │ ──► run_cycle() │
│   │ (fixed interval) │                   │  (skip if busy) │                 │
│   └──────────────────┘                   └─────────────────┘                 │
│                                                                               │
│  Ticks fire on the wall-clock interval whether or not the previous tick has  │
│  finished; overlap handling is the orchestrator's entry guard.               │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

TickCallback = Callable[[], Awaitable[None]]


@runtime_checkable
class SchedulerBackend(Protocol):
    """Protocol for pluggable scheduler timing backends.

    A backend is responsible ONLY for timing: calling the tick callback
    at the specified interval.
    """

    name: str

    def start(
        self,
        tick_callback: TickCallback,
        interval_seconds: float = 10.0,
        *,
        run_immediately: bool = False,
    ) -> None:
        """Start the tick loop.

        Args:
            tick_callback: Async function to call on each tick.
            interval_seconds: How often to tick (default: 10s).
            run_immediately: Fire one tick at start instead of after the
                first interval.
        """
        ...

    async def stop(self) -> None:
        """Stop the tick loop and wait for in-flight ticks to finish."""
        ...

    def health(self) -> BackendHealth:
        """Return backend health status."""
        ...


@dataclass
class BackendHealth:
    """Structured backend health response."""

    healthy: bool
    backend: str
    tick_count: int = 0
    last_tick: datetime | None = None
    drift_ms: float | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "healthy": self.healthy,
            "backend": self.backend,
            "tick_count": self.tick_count,
            "last_tick": self.last_tick.isoformat() if self.last_tick else None,
            "drift_ms": self.drift_ms,
            **self.extra,
        }
