"""
Sync cycle orchestrator: one read → map → upsert → delete pass.

Manifesto:
    The index may lag the board but must never silently diverge from it.
    The orchestrator gets there with one rule: the watermark moves only
    after a cycle in which every index write succeeded.  Anything less
    leaves the lower bound where it was, so the next cycle re-reads the
    same window and retries by construction.

    - **Single cycle at a time:** the entry guard skips, never queues
    - **Start time is the candidate:** captured before the first query
    - **Nothing escapes:** every error ends up on the ``CycleReport``

Architecture:
    ::

        run_cycle()
          │  state IDLE? ── no ──► CycleReport(skipped=True)
          ▼
        RUNNING   cycle_start = clock()
          │
          ├─ collections ready?  (re-ensured if not) ── no ──► FAILED
          ├─ since = watermarks.current(key)
          │
          ├─ for each RecordSource:
          │     reader.fetch_changes(source, since)
          │     mapper.to_document(record)   Err → RejectSink
          │     index.upsert_batch(collection, documents)
          │     index.delete_by_ids(collection, deleted_ids)
          │
          ├─ decide_outcome(records)
          │     SUCCEEDED ──► watermarks.advance(key, cycle_start)
          ├─ rejects.end_cycle(watermark_advanced, mapped, deleted)
          ▼
        SUCCEEDED | PARTIALLY_FAILED | FAILED ──► IDLE

Examples:
    >>> orchestrator = SyncOrchestrator(reader, mapper, index, WatermarkStore(), default_sources())
    >>> await orchestrator.ensure_collections()
    True
    >>> report = await orchestrator.run_cycle()
    >>> report.outcome, report.watermark_after
    (<CycleState.SUCCEEDED: 'succeeded'>, 1718000000000)

Guardrails:
    ❌ DON'T: ``await`` anything between the state check and RUNNING
    ✅ DO: Keep check-and-set synchronous so two ticks cannot both enter

    ❌ DON'T: Let a mapping reject fail the cycle
    ✅ DO: Route it to the RejectSink and keep going

Tags:
    orchestrator, state-machine, watermark, at-least-once, boardsync
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import Any, Protocol

from boardsync.core.errors import SearchIndexError, error_summary
from boardsync.core.logging import LogContext, get_logger
from boardsync.core.rejects import Reject, RejectSink
from boardsync.core.result import Err, Ok
from boardsync.core.timestamps import generate_ulid, now_ms
from boardsync.core.watermarks import WatermarkStore

from .index_client import DeleteResult, UpsertResult
from .mapper import DocumentMapper
from .models import (
    ChangeSet,
    CycleReport,
    CycleState,
    RecordChanges,
    RecordTypeReport,
    validate_cycle_transition,
)
from .reader import ChangeReader
from .sources import RecordSource

logger = get_logger(__name__)

DEFAULT_WATERMARK_KEY = "board_search"


class SearchIndex(Protocol):
    """What the orchestrator needs from the index client."""

    async def ensure_collection(self, schema: dict[str, Any]) -> bool: ...

    async def upsert_batch(
        self, collection: str, documents: Sequence[dict[str, Any]], batch_size: int = 100
    ) -> UpsertResult: ...

    async def delete_by_ids(self, collection: str, ids: Sequence[str]) -> DeleteResult: ...


def decide_outcome(records: Sequence[RecordTypeReport]) -> CycleState:
    """Classify a finished cycle.

    Every document upserted and every id deleted is one write; a failed
    read counts as one failed write.  No failures is SUCCEEDED, some
    failures next to some successes is PARTIALLY_FAILED, only failures is
    FAILED.
    """
    succeeded = sum(r.successful_writes for r in records)
    failed = sum(r.failed_writes + (0 if r.read_ok else 1) for r in records)
    if failed == 0:
        return CycleState.SUCCEEDED
    if succeeded > 0:
        return CycleState.PARTIALLY_FAILED
    return CycleState.FAILED


class SyncOrchestrator:
    """Owns the cycle state and the watermark between cycles.

    Args:
        reader: Change reader over the board database.
        mapper: Record → document mapper.
        index: Search index client.
        watermarks: Watermark store; only this class advances it.
        sources: Record types to sync, in order.
        batch_size: Upsert sub-batch size.
        rejects: Sink for mapping rejections (a fresh one if omitted).
        watermark_key: Key of this pipeline's watermark.
        clock: Epoch-millisecond clock, injectable for tests.
    """

    def __init__(
        self,
        reader: ChangeReader,
        mapper: DocumentMapper,
        index: SearchIndex,
        watermarks: WatermarkStore,
        sources: Sequence[RecordSource],
        *,
        batch_size: int = 100,
        rejects: RejectSink | None = None,
        watermark_key: str = DEFAULT_WATERMARK_KEY,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._reader = reader
        self._mapper = mapper
        self._index = index
        self._watermarks = watermarks
        self._sources = list(sources)
        self._batch_size = batch_size
        self._rejects = rejects if rejects is not None else RejectSink()
        self._watermark_key = watermark_key
        self._clock = clock

        self._state = CycleState.IDLE
        self._collections_ready = False
        self._last_report: CycleReport | None = None

    # -- state -----------------------------------------------------------------

    @property
    def state(self) -> CycleState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is not CycleState.IDLE

    @property
    def collections_ready(self) -> bool:
        return self._collections_ready

    @property
    def last_report(self) -> CycleReport | None:
        return self._last_report

    @property
    def rejects(self) -> RejectSink:
        return self._rejects

    @property
    def watermark_key(self) -> str:
        return self._watermark_key

    async def current_watermark(self) -> int:
        return await self._watermarks.current(self._watermark_key)

    def _transition(self, target: CycleState) -> None:
        validate_cycle_transition(self._state, target)
        self._state = target

    # -- collections -----------------------------------------------------------

    async def ensure_collections(self) -> bool:
        """Ensure every source's collection exists. Returns overall readiness."""
        ready = True
        for source in self._sources:
            if not await self._index.ensure_collection(source.collection_schema()):
                ready = False
        self._collections_ready = ready
        if not ready:
            logger.warning("sync.collections.not_ready")
        return ready

    def _collection_missing(self, source: RecordSource) -> None:
        # the next cycle re-ensures before writing
        self._collections_ready = False
        logger.warning("sync.collections.missing", collection=source.collection)

    # -- cycle -----------------------------------------------------------------

    async def run_cycle(self) -> CycleReport:
        """Run one cycle, or skip if one is already running.

        Never raises for read, write or watermark failures; they are
        recorded on the returned report.
        """
        cycle_id = generate_ulid()
        if self._state is not CycleState.IDLE:
            logger.info("sync.cycle.skipped", cycle_id=cycle_id, state=self._state.value)
            return CycleReport(cycle_id=cycle_id, skipped=True)

        self._transition(CycleState.RUNNING)
        cycle_start = self._clock()
        report = CycleReport(cycle_id=cycle_id, cycle_start_ms=cycle_start)

        try:
            async with LogContext(cycle_id=cycle_id):
                try:
                    outcome = await self._execute(report, cycle_start)
                except Exception as exc:
                    logger.exception("sync.cycle.crashed")
                    report.error = error_summary(exc)
                    outcome = CycleState.FAILED

                self._transition(outcome)
                report.outcome = outcome
                self._last_report = report
                log = logger.info if outcome is CycleState.SUCCEEDED else logger.warning
                log(
                    "sync.cycle.finished",
                    outcome=outcome.value,
                    watermark_before=report.watermark_before,
                    watermark_after=report.watermark_after,
                    upserted=sum(r.upserted for r in report.records),
                    deleted=sum(r.deleted for r in report.records if r.delete_ok),
                    rejected=report.rejected,
                    failed_writes=sum(r.failed_writes for r in report.records),
                )
        finally:
            self._state = CycleState.IDLE
        return report

    async def _execute(self, report: CycleReport, cycle_start: int) -> CycleState:
        if not self._collections_ready and not await self.ensure_collections():
            report.error = {
                "error_type": "CollectionsNotReady",
                "message": "Search collections are missing; cycle not run",
            }
            logger.error("sync.cycle.collections_missing")
            return CycleState.FAILED

        try:
            since = await self._watermarks.current(self._watermark_key)
        except Exception as exc:
            report.error = error_summary(exc)
            logger.error("sync.watermark.read_failed", **report.error)
            return CycleState.FAILED

        report.watermark_before = since
        report.watermark_after = since
        logger.info("sync.cycle.started", since_ms=since, cycle_start_ms=cycle_start)

        change_set = ChangeSet()
        mapped: list[tuple[str, str]] = []
        deleted: list[tuple[str, str]] = []
        read_any = False
        for source in self._sources:
            record_report = RecordTypeReport(record_type=source.record_type, collection=source.collection)
            report.records.append(record_report)

            changes = await self._read(source, since, record_report)
            if changes is None:
                continue
            read_any = read_any or not changes.is_empty

            documents = self._map(changes, mapped)
            record_report.rejected = len(changes.updated) - len(documents)
            change_set.add(source.record_type, documents, changes.deleted_ids)
            deleted.extend((source.record_type.value, record_id) for record_id in changes.deleted_ids)

            await self._upsert(source, change_set.upserts[source.record_type], record_report)
            await self._delete(source, change_set.deletes[source.record_type], record_report)

        report.rejected = len(self._rejects.cycle_rejects)
        outcome = decide_outcome(report.records)

        # an empty window has nothing to commit; the next cycle reads it again
        if outcome is CycleState.SUCCEEDED and read_any:
            try:
                watermark = await self._watermarks.advance(self._watermark_key, cycle_start)
                report.watermark_after = watermark.high_water
            except Exception as exc:
                report.error = error_summary(exc)
                logger.error("sync.watermark.write_failed", **report.error)
                outcome = CycleState.FAILED

        self._rejects.end_cycle(report.watermark_advanced, mapped, deleted)
        return outcome

    async def _read(
        self, source: RecordSource, since: int, record_report: RecordTypeReport
    ) -> RecordChanges | None:
        try:
            changes = await self._reader.fetch_changes(source, since)
        except Exception as exc:
            record_report.read_ok = False
            record_report.errors.append(error_summary(exc))
            logger.error(
                "sync.reader.failed",
                record_type=source.record_type.value,
                **error_summary(exc),
            )
            return None
        record_report.updated = len(changes.updated)
        record_report.deleted = len(changes.deleted_ids)
        return changes

    def _map(self, changes: RecordChanges, mapped: list[tuple[str, str]]) -> list[dict[str, Any]]:
        documents: list[dict[str, Any]] = []
        for record in changes.updated:
            match self._mapper.to_document(record):
                case Ok(document):
                    documents.append(document)
                    mapped.append((changes.record_type.value, document["id"]))
                case Err(error):
                    self._rejects.write(Reject.from_mapping_error(error, record.to_raw()))
        return documents

    async def _upsert(
        self, source: RecordSource, documents: list[dict[str, Any]], record_report: RecordTypeReport
    ) -> None:
        if not documents:
            return
        try:
            result = await self._index.upsert_batch(source.collection, documents, self._batch_size)
        except Exception as exc:
            record_report.failed_upsert_ids = [doc["id"] for doc in documents]
            record_report.failed_writes += len(documents)
            record_report.errors.append(error_summary(exc))
            logger.error("sync.upsert.crashed", collection=source.collection, **error_summary(exc))
            if isinstance(exc, SearchIndexError) and exc.is_not_found:
                self._collection_missing(source)
            return
        record_report.upserted = result.succeeded
        record_report.successful_writes += result.succeeded
        record_report.failed_upsert_ids = result.failed_ids
        record_report.failed_writes += len(result.failed)
        record_report.errors.extend(result.errors)
        if result.collection_missing:
            self._collection_missing(source)

    async def _delete(
        self, source: RecordSource, ids: list[str], record_report: RecordTypeReport
    ) -> None:
        if not ids:
            return
        try:
            result = await self._index.delete_by_ids(source.collection, ids)
        except Exception as exc:
            record_report.delete_ok = False
            record_report.failed_writes += len(ids)
            record_report.errors.append(error_summary(exc))
            logger.error("sync.delete.crashed", collection=source.collection, **error_summary(exc))
            return
        if result.collection_missing:
            self._collection_missing(source)
        if result.ok:
            record_report.successful_writes += len(ids)
        else:
            record_report.delete_ok = False
            record_report.failed_writes += len(ids)
            if result.error:
                record_report.errors.append(result.error)


__all__ = ["SyncOrchestrator", "SearchIndex", "decide_outcome", "DEFAULT_WATERMARK_KEY"]
