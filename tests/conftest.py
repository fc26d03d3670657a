"""
Shared fixtures for boardsync tests.

FakeBoardDatabase stands in for the asyncpg pool: it keeps rows per table
and answers the two change queries the reader builds.  FakeIndex stands in
for the Typesense client and can be told to fail specific documents or
every Nth call.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from datetime import datetime
from typing import Any

import pytest

from boardsync.core.rejects import RejectSink
from boardsync.core.timestamps import from_epoch_ms
from boardsync.core.watermarks import WatermarkStore
from boardsync.sync.index_client import DeleteResult, FailedDocument, UpsertResult
from boardsync.sync.mapper import DocumentMapper
from boardsync.sync.orchestrator import SyncOrchestrator
from boardsync.sync.reader import ChangeReader
from boardsync.sync.sources import default_sources


def ms(value: int) -> datetime:
    """Epoch milliseconds → aware datetime, for building rows."""
    return from_epoch_ms(value)


def suggestion_row(
    id: str,
    *,
    timestamp: int = 50,
    updated_at: int | None = None,
    deleted_at: int | None = None,
    body: Any = "Add dark mode",
    category_id: Any = "cat-1",
    user_id: Any = "user-1",
    display_name: Any = "Ada",
) -> dict[str, Any]:
    return {
        "id": id,
        "body": body,
        "user_id": user_id,
        "display_name": display_name,
        "category_id": category_id,
        "timestamp": ms(timestamp),
        "updated_at": ms(updated_at) if updated_at is not None else None,
        "deleted_at": ms(deleted_at) if deleted_at is not None else None,
    }


def comment_row(
    id: str,
    *,
    suggestion_id: str = "s-1",
    timestamp: int = 50,
    updated_at: int | None = None,
    deleted_at: int | None = None,
    body: Any = "Agreed",
    is_root_comment: Any = True,
    parent_comment_id: Any = None,
) -> dict[str, Any]:
    return {
        "id": id,
        "body": body,
        "user_id": "user-2",
        "display_name": "Grace",
        "suggestion_id": suggestion_id,
        "timestamp": ms(timestamp),
        "updated_at": ms(updated_at) if updated_at is not None else None,
        "deleted_at": ms(deleted_at) if deleted_at is not None else None,
        "is_root_comment": is_root_comment,
        "parent_comment_id": parent_comment_id,
    }


class FakeBoardDatabase:
    """In-memory answer to the reader's two query shapes."""

    _TABLE = re.compile(r'FROM "(\w+)"')

    def __init__(self) -> None:
        self.tables: dict[str, dict[str, dict[str, Any]]] = {"suggestion": {}, "comment": {}}
        self.queries: list[tuple[str, tuple[Any, ...]]] = []
        self.fail_with: Exception | None = None
        # rows returned by the updated query regardless of filters (race simulation)
        self.extra_updated: dict[str, list[dict[str, Any]]] = {}

    def put(self, table: str, row: dict[str, Any]) -> None:
        self.tables[table][row["id"]] = row

    def suggestion(self, id: str, **kwargs: Any) -> dict[str, Any]:
        row = suggestion_row(id, **kwargs)
        self.put("suggestion", row)
        return row

    def comment(self, id: str, **kwargs: Any) -> dict[str, Any]:
        row = comment_row(id, **kwargs)
        self.put("comment", row)
        return row

    def live_ids(self, table: str) -> set[str]:
        return {rid for rid, row in self.tables[table].items() if row.get("deleted_at") is None}

    async def fetch(self, query: str, *args: Any) -> Sequence[dict[str, Any]]:
        self.queries.append((query, args))
        if self.fail_with is not None:
            raise self.fail_with
        table = self._TABLE.search(query).group(1)
        since: datetime = args[0]
        rows = list(self.tables[table].values())

        if '"deleted_at" IS NOT NULL' in query:
            return [dict(r) for r in rows if r.get("deleted_at") is not None and r["deleted_at"] > since]

        def changed(row: dict[str, Any]) -> datetime:
            return row.get("updated_at") or row["timestamp"]

        result = [
            dict(r) for r in rows if changed(r) > since and r.get("deleted_at") is None
        ]
        result.extend(dict(r) for r in self.extra_updated.get(table, []))
        return result


class FakeIndex:
    """In-memory search index with failure injection.

    Attributes:
        collections: name → {id → document}.
        fail_ids: Document ids rejected item-by-item on upsert.
        fail_every: When set, every Nth upsert/delete call fails as a whole.
        ensure_ok: What ``ensure_collection`` reports.
        dropped: Collections deleted behind the client's back; writes to
            them answer like a 404 until ``ensure_collection`` recreates them.
    """

    def __init__(self) -> None:
        self.collections: dict[str, dict[str, dict[str, Any]]] = {}
        self.fail_ids: set[str] = set()
        self.fail_every: int | None = None
        self.fail_deletes = False
        self.ensure_ok = True
        self.calls = 0
        self.upsert_calls: list[tuple[str, list[str]]] = []
        self.delete_calls: list[tuple[str, list[str]]] = []
        self.ensure_calls = 0
        self.dropped: set[str] = set()

    def _call_fails(self) -> bool:
        self.calls += 1
        return self.fail_every is not None and self.calls % self.fail_every == 0

    def drop_collection(self, collection: str) -> None:
        self.collections.pop(collection, None)
        self.dropped.add(collection)

    def documents(self, collection: str) -> dict[str, dict[str, Any]]:
        return self.collections.get(collection, {})

    async def ensure_collection(self, schema: dict[str, Any]) -> bool:
        self.ensure_calls += 1
        if self.ensure_ok:
            self.collections.setdefault(schema["name"], {})
            self.dropped.discard(schema["name"])
        return self.ensure_ok

    async def upsert_batch(
        self, collection: str, documents: Sequence[dict[str, Any]], batch_size: int = 100
    ) -> UpsertResult:
        self.upsert_calls.append((collection, [d["id"] for d in documents]))
        result = UpsertResult(collection=collection, attempted=len(documents))
        if collection in self.dropped:
            result.failed = [FailedDocument(id=d["id"], error="not found") for d in documents]
            result.errors.append({"error_type": "SearchIndexError", "kind": "not_found", "status_code": 404})
            return result
        if self._call_fails():
            result.failed = [FailedDocument(id=d["id"], error="unavailable") for d in documents]
            return result
        store = self.collections.setdefault(collection, {})
        for doc in documents:
            if doc["id"] in self.fail_ids:
                result.failed.append(FailedDocument(id=doc["id"], error="rejected"))
            else:
                store[doc["id"]] = dict(doc)
                result.succeeded += 1
        return result

    async def delete_by_ids(self, collection: str, ids: Sequence[str]) -> DeleteResult:
        self.delete_calls.append((collection, list(ids)))
        if collection in self.dropped:
            return DeleteResult(collection=collection, requested=len(ids), collection_missing=True)
        if self.fail_deletes or self._call_fails():
            return DeleteResult(
                collection=collection,
                requested=len(ids),
                ok=False,
                error={"message": "delete failed"},
            )
        store = self.collections.setdefault(collection, {})
        removed = sum(1 for i in ids if store.pop(i, None) is not None)
        return DeleteResult(collection=collection, requested=len(ids), num_deleted=removed)


class ManualClock:
    """Epoch-ms clock the test sets explicitly."""

    def __init__(self, now: int = 0) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now


@pytest.fixture()
def db() -> FakeBoardDatabase:
    return FakeBoardDatabase()


@pytest.fixture()
def index() -> FakeIndex:
    return FakeIndex()


@pytest.fixture()
def clock() -> ManualClock:
    return ManualClock(150)


@pytest.fixture()
def watermarks() -> WatermarkStore:
    return WatermarkStore()


@pytest.fixture()
def sources():
    return default_sources()


@pytest.fixture()
def orchestrator(db, index, watermarks, clock, sources) -> SyncOrchestrator:
    return SyncOrchestrator(
        reader=ChangeReader(db),
        mapper=DocumentMapper(sources),
        index=index,
        watermarks=watermarks,
        sources=sources,
        batch_size=2,
        rejects=RejectSink(alert_threshold=2),
        clock=clock,
    )
