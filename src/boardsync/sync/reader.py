"""
Change reader: finds rows changed or soft-deleted after a watermark.

For each record type two queries run against the board database, both
with the same exclusive lower bound:

    updated:  COALESCE(updated_at, timestamp) > $1 AND deleted_at IS NULL
    deleted:  deleted_at IS NOT NULL AND deleted_at > $1

Deletion is detected by the soft-delete timestamp, never by absence.  The
two queries do not share a transaction, so a row can be returned by both
when a writer deletes it in between; the reader then keeps it only in the
deleted set.

Query errors propagate to the caller unchanged.  The reader never
retries; a failed read simply leaves the watermark where it is.

Examples:
    >>> reader = ChangeReader(pool)
    >>> changes = await reader.fetch_changes(suggestion_source(), since_ms=0)
    >>> len(changes.updated), len(changes.deleted)
    (42, 3)
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any, Protocol

from boardsync.core.logging import get_logger
from boardsync.core.timestamps import from_epoch_ms

from .models import Record, RecordChanges
from .sources import RecordSource

logger = get_logger(__name__)


class QueryExecutor(Protocol):
    """Anything with an asyncpg-style ``fetch``; an asyncpg pool qualifies."""

    async def fetch(self, query: str, *args: Any) -> Sequence[Mapping[str, Any]]: ...


def _quote(identifier: str) -> str:
    return '"' + identifier.replace('"', '""') + '"'


def build_updated_query(source: RecordSource) -> str:
    """Rows whose last change is after ``$1`` and which are not soft-deleted."""
    changed = (
        'COALESCE("updated_at", "timestamp")' if source.tracks_updates else '"timestamp"'
    )
    where = f"{changed} > $1"
    if source.soft_deletes:
        where += ' AND "deleted_at" IS NULL'
    columns = ", ".join(_quote(c) for c in source.columns)
    return f"SELECT {columns} FROM {_quote(source.table)} WHERE {where}"


def build_deleted_query(source: RecordSource) -> str | None:
    """Rows soft-deleted after ``$1``; ``None`` for types without soft deletes."""
    if not source.soft_deletes:
        return None
    columns = ", ".join(_quote(c) for c in source.columns)
    return (
        f"SELECT {columns} FROM {_quote(source.table)} "
        'WHERE "deleted_at" IS NOT NULL AND "deleted_at" > $1'
    )


def row_to_record(source: RecordSource, row: Mapping[str, Any]) -> Record:
    """Convert a driver row into a :class:`Record` without validating it."""
    data = dict(row)
    return Record(
        record_type=source.record_type,
        id=data.get("id"),
        body=data.get("body"),
        user_id=data.get("user_id"),
        display_name=data.get("display_name"),
        parent_id=data.get(source.parent_column),
        created_at=data.get("timestamp"),
        updated_at=data.get("updated_at"),
        deleted_at=data.get("deleted_at"),
        attributes={extra.column: data.get(extra.column) for extra in source.extra_fields},
    )


def _dedupe(records: list[Record]) -> dict[Any, Record]:
    by_id: dict[Any, Record] = {}
    for record in records:
        by_id[record.id] = record
    return by_id


class ChangeReader:
    """Reads per-type change sets from the board database.

    Args:
        executor: Query interface (asyncpg pool or a test double).
    """

    def __init__(self, executor: QueryExecutor) -> None:
        self._executor = executor

    async def fetch_changes(self, source: RecordSource, since_ms: int) -> RecordChanges:
        """Return rows of *source* updated or soft-deleted strictly after *since_ms*.

        On the first run (``since_ms == 0``) this is every live row plus
        every row ever soft-deleted.
        """
        since = from_epoch_ms(since_ms)

        updated_rows = await self._executor.fetch(build_updated_query(source), since)
        deleted_query = build_deleted_query(source)
        deleted_rows = (
            await self._executor.fetch(deleted_query, since) if deleted_query else []
        )

        deleted = _dedupe([row_to_record(source, r) for r in deleted_rows])
        # a row can only be in the updated query result while deleted_at is
        # NULL, so any id also in `deleted` was deleted after that read
        updated = {
            rid: record
            for rid, record in _dedupe([row_to_record(source, r) for r in updated_rows]).items()
            if rid not in deleted and not record.is_deleted
        }

        unaddressable = [r for r in deleted.values() if not isinstance(r.id, str) or not r.id]
        if unaddressable:
            logger.warning(
                "sync.reader.deleted_without_id",
                record_type=source.record_type.value,
                count=len(unaddressable),
            )

        changes = RecordChanges(
            record_type=source.record_type,
            updated=list(updated.values()),
            deleted=list(deleted.values()),
        )
        if not changes.is_empty:
            logger.info(
                "sync.reader.changes",
                record_type=source.record_type.value,
                since_ms=since_ms,
                updated=len(changes.updated),
                deleted=len(changes.deleted),
            )
        return changes


__all__ = [
    "ChangeReader",
    "QueryExecutor",
    "build_updated_query",
    "build_deleted_query",
    "row_to_record",
]
