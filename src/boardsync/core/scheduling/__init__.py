"""Interval scheduling primitives.

Backends decide when a tick fires; :class:`boardsync.sync.scheduler.SyncScheduler`
decides what a tick does.
"""

from .asyncio_backend import AsyncioSchedulerBackend
from .protocol import BackendHealth, SchedulerBackend, TickCallback

__all__ = [
    "AsyncioSchedulerBackend",
    "BackendHealth",
    "SchedulerBackend",
    "TickCallback",
]
