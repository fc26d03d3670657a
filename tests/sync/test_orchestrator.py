"""
Tests for SyncOrchestrator.

Tests cover:
- The worked cycles (first sync, quiet cycle, soft delete, partial batch failure)
- Delete-wins and idempotent upserts
- Watermark: advance only on success, forward-only, captured before I/O
- Entry guard: overlapping triggers are skipped
- Missing collections, read failures, watermark failures
- Mapping rejects and dead letters
"""

from __future__ import annotations

import asyncio

import pytest
from structlog.testing import capture_logs

from boardsync.core.rejects import RejectSink
from boardsync.sync.mapper import DocumentMapper
from boardsync.sync.models import CycleState, RecordType, RecordTypeReport
from boardsync.sync.orchestrator import SyncOrchestrator, decide_outcome
from boardsync.sync.reader import ChangeReader


class TestWorkedCycles:
    """The example cycles from the design, end to end."""

    @pytest.mark.asyncio
    async def test_first_sync_then_quiet_cycle(self, orchestrator, db, index, clock, watermarks):
        db.suggestion("a", timestamp=50, updated_at=100)

        clock.now = 150
        report = await orchestrator.run_cycle()
        assert report.outcome is CycleState.SUCCEEDED
        assert report.watermark_before == 0
        assert report.watermark_after == 150
        assert set(index.documents("suggestions")) == {"a"}
        assert index.documents("suggestions")["a"]["updatedAt"] == 100

        clock.now = 200
        index.upsert_calls.clear()
        report = await orchestrator.run_cycle()
        assert report.outcome is CycleState.SUCCEEDED
        assert index.upsert_calls == []
        assert index.delete_calls == []
        assert await watermarks.current("board_search") == 150

    @pytest.mark.asyncio
    async def test_soft_delete_removes_document(self, orchestrator, db, index, clock, watermarks):
        db.suggestion("a", timestamp=50, updated_at=100)
        clock.now = 150
        await orchestrator.run_cycle()

        db.suggestion("a", timestamp=50, updated_at=220, deleted_at=200)
        clock.now = 250
        report = await orchestrator.run_cycle()

        assert report.outcome is CycleState.SUCCEEDED
        assert index.delete_calls == [("suggestions", ["a"])]
        assert index.upsert_calls == [("suggestions", ["a"])]
        assert "a" not in index.documents("suggestions")
        assert await watermarks.current("board_search") == 250

    @pytest.mark.asyncio
    async def test_partial_batch_failure_keeps_watermark(self, orchestrator, db, index, clock, watermarks):
        orchestrator._batch_size = 100
        for rid in ("a", "b", "c"):
            db.suggestion(rid, timestamp=100)
        index.fail_ids = {"b"}

        clock.now = 150
        report = await orchestrator.run_cycle()
        assert report.outcome is CycleState.PARTIALLY_FAILED
        assert not report.succeeded
        assert report.for_type(RecordType.SUGGESTION).failed_upsert_ids == ["b"]
        assert await watermarks.current("board_search") == 0

        # next cycle re-reads the same window and re-sends all three
        index.fail_ids = set()
        clock.now = 300
        report = await orchestrator.run_cycle()
        assert report.succeeded
        assert index.upsert_calls[-1] == ("suggestions", ["a", "b", "c"])
        assert set(index.documents("suggestions")) == {"a", "b", "c"}
        assert await watermarks.current("board_search") == 300


class TestDeleteWins:
    @pytest.mark.asyncio
    async def test_updated_and_deleted_goes_to_delete_only(self, orchestrator, db, index):
        db.suggestion("a", timestamp=50, updated_at=120, deleted_at=110)
        await orchestrator.run_cycle()
        upserted = [rid for _, ids in index.upsert_calls for rid in ids]
        assert "a" not in upserted
        assert index.delete_calls == [("suggestions", ["a"])]

    @pytest.mark.asyncio
    async def test_delete_of_never_indexed_record_succeeds(self, orchestrator, db, index, watermarks):
        db.suggestion("ghost", timestamp=50, deleted_at=60)
        report = await orchestrator.run_cycle()
        assert report.succeeded
        assert await watermarks.current("board_search") == 150


class TestIdempotentUpsert:
    @pytest.mark.asyncio
    async def test_same_upsert_twice_same_document(self, orchestrator, db, index, watermarks):
        db.suggestion("a", timestamp=100)
        await orchestrator.run_cycle()
        first = dict(index.documents("suggestions")["a"])

        # force a re-read of the same window
        orchestrator._watermarks = type(watermarks)()
        await orchestrator.run_cycle()
        assert index.documents("suggestions")["a"] == first
        assert len(index.documents("suggestions")) == 1


class TestWatermark:
    @pytest.mark.asyncio
    async def test_start_time_captured_before_io(self, db, index, watermarks, sources):
        """The clock is read once, before the first query."""
        ticks = iter([150, 999])

        orch = SyncOrchestrator(
            ChangeReader(db), DocumentMapper(sources), index, watermarks, sources, clock=lambda: next(ticks)
        )
        db.suggestion("a", timestamp=100)
        report = await orch.run_cycle()
        assert report.cycle_start_ms == 150
        assert await watermarks.current("board_search") == 150

    @pytest.mark.asyncio
    async def test_monotonic_across_mixed_cycles(self, orchestrator, db, index, clock, watermarks):
        seen = []
        for step, fail in enumerate([False, True, False, True, True, False]):
            db.suggestion(f"s-{step}", timestamp=clock.now + 1)
            index.fail_every = 1 if fail else None
            clock.now += 100
            await orchestrator.run_cycle()
            seen.append(await watermarks.current("board_search"))
        assert seen == sorted(seen)

    @pytest.mark.asyncio
    async def test_clock_going_backwards_does_not_rewind(self, orchestrator, db, clock, watermarks):
        db.suggestion("a", timestamp=100)
        clock.now = 500
        await orchestrator.run_cycle()
        db.suggestion("b", timestamp=600)
        clock.now = 400
        await orchestrator.run_cycle()
        assert await watermarks.current("board_search") == 500

    @pytest.mark.asyncio
    async def test_delete_failure_keeps_watermark(self, orchestrator, db, index, watermarks):
        db.suggestion("a", timestamp=50, deleted_at=100)
        index.fail_deletes = True
        report = await orchestrator.run_cycle()
        assert report.outcome is CycleState.FAILED
        assert not report.for_type(RecordType.SUGGESTION).delete_ok
        assert await watermarks.current("board_search") == 0

    @pytest.mark.asyncio
    async def test_watermark_write_failure_fails_cycle(self, orchestrator, db):
        class BrokenStore:
            async def current(self, key):
                return 0

            async def advance(self, key, value):
                raise ConnectionError("db gone")

        orchestrator._watermarks = BrokenStore()
        db.suggestion("a", timestamp=100)
        report = await orchestrator.run_cycle()
        assert report.outcome is CycleState.FAILED
        assert report.watermark_after == 0
        assert report.error["message"] == "db gone"

    @pytest.mark.asyncio
    async def test_watermark_read_failure_fails_cycle(self, orchestrator, index):
        class BrokenStore:
            async def current(self, key):
                raise ConnectionError("db gone")

        orchestrator._watermarks = BrokenStore()
        report = await orchestrator.run_cycle()
        assert report.outcome is CycleState.FAILED
        assert index.upsert_calls == []


class TestEntryGuard:
    """A trigger while RUNNING is a no-op."""

    @pytest.mark.asyncio
    async def test_overlapping_trigger_is_skipped(self, db, index, watermarks, sources):
        gate = asyncio.Event()
        entered = asyncio.Event()

        class SlowDb(type(db)):
            async def fetch(self, query, *args):
                entered.set()
                await gate.wait()
                return await super().fetch(query, *args)

        slow = SlowDb()
        slow.suggestion("a", timestamp=100)
        orch = SyncOrchestrator(ChangeReader(slow), DocumentMapper(sources), index, watermarks, sources)

        first = asyncio.create_task(orch.run_cycle())
        await entered.wait()
        assert orch.state is CycleState.RUNNING

        with capture_logs() as logs:
            second = await orch.run_cycle()
        assert second.skipped
        assert second.outcome is None
        assert any(e["event"] == "sync.cycle.skipped" for e in logs)

        gate.set()
        report = await first
        assert report.succeeded
        assert orch.state is CycleState.IDLE
        assert index.upsert_calls == [("suggestions", ["a"])]

    @pytest.mark.asyncio
    async def test_concurrent_triggers_run_one_cycle(self, db, index, watermarks, sources):
        gate = asyncio.Event()

        class SlowDb(type(db)):
            async def fetch(self, query, *args):
                await gate.wait()
                return await super().fetch(query, *args)

        orch = SyncOrchestrator(ChangeReader(SlowDb()), DocumentMapper(sources), index, watermarks, sources)
        tasks = [asyncio.create_task(orch.run_cycle()) for _ in range(5)]
        await asyncio.sleep(0)
        gate.set()
        reports = await asyncio.gather(*tasks)
        assert sum(not r.skipped for r in reports) == 1

    @pytest.mark.asyncio
    async def test_returns_to_idle_after_failure(self, orchestrator, db):
        db.fail_with = ConnectionError("db gone")
        report = await orchestrator.run_cycle()
        assert report.outcome is CycleState.FAILED
        assert orchestrator.state is CycleState.IDLE
        assert not orchestrator.is_running


class TestCollections:
    @pytest.mark.asyncio
    async def test_missing_collections_fail_without_reading(self, orchestrator, db, index):
        index.ensure_ok = False
        report = await orchestrator.run_cycle()
        assert report.outcome is CycleState.FAILED
        assert report.error["error_type"] == "CollectionsNotReady"
        assert db.queries == []

    @pytest.mark.asyncio
    async def test_collections_re_ensured_until_ready(self, orchestrator, db, index):
        index.ensure_ok = False
        await orchestrator.run_cycle()
        index.ensure_ok = True
        db.suggestion("a", timestamp=100)
        report = await orchestrator.run_cycle()
        assert report.succeeded
        assert orchestrator.collections_ready

    @pytest.mark.asyncio
    async def test_ready_collections_not_rechecked(self, orchestrator, index):
        assert await orchestrator.ensure_collections()
        calls = index.ensure_calls
        await orchestrator.run_cycle()
        assert index.ensure_calls == calls

    @pytest.mark.asyncio
    async def test_vanished_collection_is_recreated(self, orchestrator, db, index, clock, watermarks):
        db.suggestion("a", timestamp=100)
        assert (await orchestrator.run_cycle()).succeeded

        index.drop_collection("suggestions")
        db.suggestion("b", timestamp=200)
        clock.now = 300
        with capture_logs() as logs:
            report = await orchestrator.run_cycle()
        assert report.outcome is CycleState.FAILED
        assert await watermarks.current(orchestrator.watermark_key) == 150
        assert not orchestrator.collections_ready
        assert any(e["event"] == "sync.collections.missing" for e in logs)

        calls = index.ensure_calls
        clock.now = 400
        report = await orchestrator.run_cycle()
        assert report.succeeded
        assert index.ensure_calls == calls + 2
        assert "b" in index.documents("suggestions")

    @pytest.mark.asyncio
    async def test_delete_into_vanished_collection_resets_readiness(self, orchestrator, db, index, clock):
        db.suggestion("a", timestamp=100)
        await orchestrator.run_cycle()

        index.drop_collection("suggestions")
        db.suggestion("a", timestamp=100, updated_at=220, deleted_at=200)
        clock.now = 300
        report = await orchestrator.run_cycle()
        assert report.succeeded
        assert not orchestrator.collections_ready


class TestFailures:
    @pytest.mark.asyncio
    async def test_read_failure_of_one_type(self, orchestrator, db, index, watermarks):
        db.suggestion("a", timestamp=100)

        original = db.fetch

        async def fetch(query, *args):
            if '"comment"' in query:
                raise ConnectionError("comment table locked")
            return await original(query, *args)

        db.fetch = fetch
        report = await orchestrator.run_cycle()
        assert report.outcome is CycleState.PARTIALLY_FAILED
        assert not report.for_type(RecordType.COMMENT).read_ok
        assert "a" in index.documents("suggestions")
        assert await watermarks.current("board_search") == 0

    @pytest.mark.asyncio
    async def test_everything_fails(self, orchestrator, db, index):
        db.suggestion("a", timestamp=100)
        index.fail_every = 1
        report = await orchestrator.run_cycle()
        assert report.outcome is CycleState.FAILED

    @pytest.mark.asyncio
    async def test_index_exception_is_contained(self, orchestrator, db, index):
        async def explode(*args, **kwargs):
            raise RuntimeError("client bug")

        index.upsert_batch = explode
        db.suggestion("a", timestamp=100)
        report = await orchestrator.run_cycle()
        assert report.outcome is CycleState.FAILED
        assert report.for_type(RecordType.SUGGESTION).failed_upsert_ids == ["a"]


class TestRejects:
    @pytest.mark.asyncio
    async def test_malformed_row_is_skipped_not_fatal(self, orchestrator, db, index):
        db.suggestion("good", timestamp=100)
        db.suggestion("bad", timestamp=100, body=None)
        with capture_logs() as logs:
            report = await orchestrator.run_cycle()
        assert report.succeeded
        assert report.rejected == 1
        assert report.for_type(RecordType.SUGGESTION).rejected == 1
        assert set(index.documents("suggestions")) == {"good"}
        rejected = [e for e in logs if e["event"] == "sync.mapping.rejected"]
        assert rejected[0]["record_id"] == "bad"

    @pytest.mark.asyncio
    async def test_reject_becomes_dead_letter_when_watermark_moves(self, orchestrator, db):
        db.suggestion("bad", timestamp=100, body=None)
        await orchestrator.run_cycle()
        assert [d.record_id for d in orchestrator.rejects.dead_letters] == ["bad"]

    @pytest.mark.asyncio
    async def test_repeated_reject_while_pinned(self, db, index, watermarks, sources, clock):
        sink = RejectSink(alert_threshold=2)
        orch = SyncOrchestrator(
            ChangeReader(db), DocumentMapper(sources), index, watermarks, sources, rejects=sink, clock=clock
        )
        db.suggestion("bad", timestamp=100, body=None)
        db.suggestion("a", timestamp=100)
        index.fail_ids = {"a"}

        with capture_logs() as logs:
            await orch.run_cycle()
            await orch.run_cycle()
        assert sink.streak("suggestion", "bad") == 2
        assert any(e["event"] == "sync.mapping.repeated_reject" for e in logs)
        assert sink.dead_letters == []

    @pytest.mark.asyncio
    async def test_fixed_row_recovers(self, orchestrator, db, clock, index):
        db.suggestion("bad", timestamp=100, body=None)
        await orchestrator.run_cycle()
        db.suggestion("bad", timestamp=100, updated_at=200, body="fixed")
        clock.now = 300
        await orchestrator.run_cycle()
        assert orchestrator.rejects.dead_letters == []
        assert index.documents("suggestions")["bad"]["body"] == "fixed"

    @pytest.mark.asyncio
    async def test_deleted_row_clears_streak_and_dead_letter(self, orchestrator, db, clock, index):
        db.suggestion("bad", timestamp=100, body=None)
        db.suggestion("a", timestamp=100)
        index.fail_ids = {"a"}
        await orchestrator.run_cycle()
        assert orchestrator.rejects.streak("suggestion", "bad") == 1

        index.fail_ids = set()
        db.suggestion("bad", timestamp=100, updated_at=200, deleted_at=200, body=None)
        clock.now = 300
        report = await orchestrator.run_cycle()
        assert report.succeeded
        assert orchestrator.rejects.streak("suggestion", "bad") == 0
        assert orchestrator.rejects.dead_letters == []


class TestComments:
    @pytest.mark.asyncio
    async def test_comments_synced_to_their_collection(self, orchestrator, db, index):
        db.comment("c-1", timestamp=100, is_root_comment=False, parent_comment_id="c-0")
        report = await orchestrator.run_cycle()
        assert report.succeeded
        doc = index.documents("comments")["c-1"]
        assert doc["suggestionId"] == "s-1"
        assert doc["parentCommentId"] == "c-0"


class TestLogging:
    @pytest.mark.asyncio
    async def test_started_and_finished_events(self, orchestrator, db):
        db.suggestion("a", timestamp=100)
        with capture_logs() as logs:
            report = await orchestrator.run_cycle()
        events = {e["event"]: e for e in logs}
        assert events["sync.cycle.started"]["since_ms"] == 0
        finished = events["sync.cycle.finished"]
        assert finished["outcome"] == "succeeded"
        assert finished["watermark_after"] == 150
        assert orchestrator.last_report is report


class TestDecideOutcome:
    def _report(self, **kwargs):
        return RecordTypeReport(RecordType.SUGGESTION, "suggestions", **kwargs)

    def test_no_writes_is_success(self):
        assert decide_outcome([self._report()]) is CycleState.SUCCEEDED

    def test_mixed(self):
        assert (
            decide_outcome([self._report(successful_writes=2, failed_writes=1)])
            is CycleState.PARTIALLY_FAILED
        )

    def test_only_failures(self):
        assert decide_outcome([self._report(failed_writes=3)]) is CycleState.FAILED
        assert decide_outcome([self._report(read_ok=False)]) is CycleState.FAILED
