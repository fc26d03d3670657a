"""
Sync service: wires settings into a running sync process.

Startup order matches the board deployment: check configuration, open
the database pool and the index HTTP client, ensure collections, run one
cycle right away, then keep ticking on the polling interval.

When index credentials or the database URL are missing the service does
not crash the host process.  It logs a :class:`MissingConfigError`, stays
in disabled mode, and never runs a cycle. An unreachable database is
not fatal either: cycles fail their reads and the pool is retried on the
next one.

Examples:
    >>> service = SyncService.from_settings()
    >>> await service.run_forever()      # until SIGINT / SIGTERM

    >>> report = await SyncService.from_settings().run_once()
    >>> report.succeeded
    True
"""

from __future__ import annotations

import asyncio
import signal
from collections.abc import Awaitable, Callable
from typing import Any

import httpx

from boardsync.core.database import LazyPool, create_pool
from boardsync.core.errors import MissingConfigError, error_summary
from boardsync.core.logging import get_logger
from boardsync.core.rejects import RejectSink
from boardsync.core.settings import SyncSettings, load_settings
from boardsync.core.watermarks import WatermarkStore

from .index_client import IndexClient
from .mapper import DocumentMapper
from .models import CycleReport
from .orchestrator import SyncOrchestrator
from .reader import ChangeReader
from .scheduler import SyncScheduler
from .sources import default_sources

logger = get_logger(__name__)

PoolFactory = Callable[..., Awaitable[Any]]
HttpClientFactory = Callable[[SyncSettings], httpx.AsyncClient]


def check_config(settings: SyncSettings) -> MissingConfigError | None:
    """Return the first missing required setting, or ``None``."""
    if not settings.typesense_host:
        return MissingConfigError("TYPESENSE_HOST", "Search index host is not configured")
    if not settings.typesense_api_key:
        return MissingConfigError("TYPESENSE_API_KEY", "Search index API key is not configured")
    if not settings.database_url:
        return MissingConfigError("DATABASE_URL", "Board database URL is not configured")
    return None


class SyncService:
    """Owns the pool, the HTTP client, the orchestrator and the scheduler.

    Args:
        settings: Loaded process settings.
        pool_factory: Creates the database pool (``create_pool`` by default).
        http_client_factory: Creates the index HTTP client.
    """

    def __init__(
        self,
        settings: SyncSettings,
        *,
        pool_factory: PoolFactory = create_pool,
        http_client_factory: HttpClientFactory = IndexClient.create_http_client,
    ) -> None:
        self.settings = settings
        self._pool_factory = pool_factory
        self._http_client_factory = http_client_factory

        self.pool: LazyPool | None = None
        self.http: httpx.AsyncClient | None = None
        self.orchestrator: SyncOrchestrator | None = None
        self.scheduler: SyncScheduler | None = None
        self.disabled_reason: str | None = None

    @classmethod
    def from_settings(cls, settings: SyncSettings | None = None, **kwargs: Any) -> SyncService:
        return cls(settings if settings is not None else load_settings(), **kwargs)

    @property
    def disabled(self) -> bool:
        return self.disabled_reason is not None

    async def setup(self) -> bool:
        """Build all components. Returns ``False`` in disabled mode."""
        if self.orchestrator is not None:
            return True

        missing = check_config(self.settings)
        if missing is not None:
            self.disabled_reason = missing.message
            logger.error("sync.service.disabled", **error_summary(missing))
            return False

        settings = self.settings
        self.pool = LazyPool(
            self._pool_factory,
            settings.database_url,
            min_size=settings.db_min_pool_size,
            max_size=settings.db_max_pool_size,
        )
        # an unreachable database fails cycles until it comes back
        if not await self.pool.connect():
            logger.warning("sync.service.database_unavailable")

        self.http = self._http_client_factory(settings)
        sources = default_sources(settings)
        self.orchestrator = SyncOrchestrator(
            reader=ChangeReader(self.pool),
            mapper=DocumentMapper(sources),
            index=IndexClient(self.http),
            watermarks=WatermarkStore(self.pool if settings.persist_watermark else None),
            sources=sources,
            batch_size=settings.upsert_batch_size,
            rejects=RejectSink(alert_threshold=settings.reject_alert_threshold),
            watermark_key=settings.watermark_key,
        )
        self.scheduler = SyncScheduler(
            self.orchestrator,
            interval_seconds=settings.polling_interval_seconds,
        )

        # a failure here is not fatal; each cycle re-ensures until it works
        await self.orchestrator.ensure_collections()
        return True

    async def start(self) -> bool:
        """Set up and start ticking, first cycle immediately."""
        if not await self.setup():
            return False
        assert self.scheduler is not None
        self.scheduler.start(run_immediately=True)
        logger.info(
            "sync.service.started",
            interval_ms=self.settings.polling_interval_ms,
            collections=[self.settings.suggestions_collection, self.settings.comments_collection],
            persist_watermark=self.settings.persist_watermark,
        )
        return True

    async def stop(self) -> None:
        """Stop the scheduler, then close the HTTP client and the pool."""
        if self.scheduler is not None:
            await self.scheduler.stop()
        if self.http is not None:
            await self.http.aclose()
            self.http = None
        if self.pool is not None:
            await self.pool.close()
            self.pool = None
        logger.info("sync.service.stopped")

    async def run_once(self) -> CycleReport | None:
        """Run a single cycle and shut down. ``None`` in disabled mode."""
        if not await self.setup():
            return None
        assert self.orchestrator is not None
        try:
            return await self.orchestrator.run_cycle()
        finally:
            await self.stop()

    async def run_forever(self, stop_event: asyncio.Event | None = None) -> None:
        """Run until *stop_event* is set or SIGINT / SIGTERM arrives.

        In disabled mode this still blocks, so a host process keeps its
        other responsibilities.
        """
        stop_event = stop_event if stop_event is not None else asyncio.Event()
        loop = asyncio.get_running_loop()
        installed: list[signal.Signals] = []
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop_event.set)
                installed.append(sig)
            except (NotImplementedError, RuntimeError):
                pass  # not supported on this platform / not the main thread

        try:
            await self.start()
            await stop_event.wait()
            logger.info("sync.service.shutdown_requested")
        finally:
            for sig in installed:
                loop.remove_signal_handler(sig)
            await self.stop()


__all__ = ["SyncService", "check_config"]
