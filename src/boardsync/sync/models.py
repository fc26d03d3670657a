"""Sync domain models.

Defines the data structures that flow through one sync cycle:

- Record: a row read from the board database (suggestion, comment, ...)
- RecordChanges: what the change reader found for one record type
- ChangeSet: documents to upsert and ids to delete, per record type
- CycleState: the orchestrator's state machine
- CycleReport / RecordTypeReport: what happened in one cycle
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from boardsync.core.errors import InvalidTransitionError


class RecordType(str, Enum):
    """Logical record types mirrored into the search index."""

    SUGGESTION = "suggestion"
    COMMENT = "comment"


@dataclass(frozen=True)
class Record:
    """One row of the board database, before mapping.

    Values are kept exactly as the driver returned them; validation and
    coercion belong to the document mapper.

    Attributes:
        record_type: Which table the row came from.
        id: Stable identifier.
        body: Text content.
        user_id: Author id.
        display_name: Author display name, optional.
        parent_id: Category id (suggestions) or suggestion id (comments).
        created_at: Creation timestamp.
        updated_at: Last-updated timestamp, optional.
        deleted_at: Soft-delete timestamp, optional.
        attributes: Type-specific columns (``is_root_comment`` ...).
    """

    record_type: RecordType
    id: Any
    body: Any = None
    user_id: Any = None
    display_name: Any = None
    parent_id: Any = None
    created_at: Any = None
    updated_at: Any = None
    deleted_at: Any = None
    attributes: dict[str, Any] = field(default_factory=dict)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def to_raw(self) -> dict[str, Any]:
        """Log-friendly dict of the row, timestamps as ISO strings."""
        raw: dict[str, Any] = {
            "id": self.id,
            "body": self.body,
            "user_id": self.user_id,
            "display_name": self.display_name,
            "parent_id": self.parent_id,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "deleted_at": self.deleted_at,
            **self.attributes,
        }
        return {k: v.isoformat() if isinstance(v, datetime) else v for k, v in raw.items()}


@dataclass
class RecordChanges:
    """Output of the change reader for one record type.

    ``updated`` and ``deleted`` are disjoint by id; when a row showed up in
    both raw query results it is kept only in ``deleted``.
    """

    record_type: RecordType
    updated: list[Record] = field(default_factory=list)
    deleted: list[Record] = field(default_factory=list)

    @property
    def deleted_ids(self) -> list[str]:
        return [r.id for r in self.deleted if isinstance(r.id, str) and r.id]

    @property
    def is_empty(self) -> bool:
        return not self.updated and not self.deleted


@dataclass
class ChangeSet:
    """Per-cycle documents to upsert and ids to delete, keyed by record type.

    Owned by the orchestrator for the duration of one cycle and discarded
    afterwards regardless of outcome.
    """

    upserts: dict[RecordType, list[dict[str, Any]]] = field(default_factory=dict)
    deletes: dict[RecordType, list[str]] = field(default_factory=dict)

    def add(self, record_type: RecordType, documents: list[dict[str, Any]], delete_ids: list[str]) -> None:
        self.upserts[record_type] = documents
        self.deletes[record_type] = delete_ids

    @property
    def is_empty(self) -> bool:
        return not any(self.upserts.values()) and not any(self.deletes.values())


class CycleState(str, Enum):
    """State of the sync orchestrator.

    Valid transition graph::

        IDLE     → RUNNING
        RUNNING  → SUCCEEDED | PARTIALLY_FAILED | FAILED
        SUCCEEDED        → IDLE
        PARTIALLY_FAILED → IDLE
        FAILED           → IDLE
    """

    IDLE = "idle"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    PARTIALLY_FAILED = "partially_failed"
    FAILED = "failed"


_OUTCOMES = frozenset({CycleState.SUCCEEDED, CycleState.PARTIALLY_FAILED, CycleState.FAILED})

CYCLE_VALID_TRANSITIONS: dict[CycleState, frozenset[CycleState]] = {
    CycleState.IDLE: frozenset({CycleState.RUNNING}),
    CycleState.RUNNING: _OUTCOMES,
    CycleState.SUCCEEDED: frozenset({CycleState.IDLE}),
    CycleState.PARTIALLY_FAILED: frozenset({CycleState.IDLE}),
    CycleState.FAILED: frozenset({CycleState.IDLE}),
}


def validate_cycle_transition(current: CycleState, target: CycleState) -> None:
    """Raise :class:`InvalidTransitionError` if *current → target* is illegal."""
    allowed = CYCLE_VALID_TRANSITIONS.get(current, frozenset())
    if target not in allowed:
        raise InvalidTransitionError(current.value, target.value)


@dataclass
class RecordTypeReport:
    """What one cycle did for one record type."""

    record_type: RecordType
    collection: str
    read_ok: bool = True
    updated: int = 0
    deleted: int = 0
    rejected: int = 0
    upserted: int = 0
    failed_upsert_ids: list[str] = field(default_factory=list)
    delete_ok: bool = True
    successful_writes: int = 0
    failed_writes: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.read_ok and self.failed_writes == 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "record_type": self.record_type.value,
            "collection": self.collection,
            "read_ok": self.read_ok,
            "updated": self.updated,
            "deleted": self.deleted,
            "rejected": self.rejected,
            "upserted": self.upserted,
            "failed_upsert_ids": self.failed_upsert_ids,
            "delete_ok": self.delete_ok,
            "errors": self.errors,
        }


@dataclass
class CycleReport:
    """Result of one ``run_cycle()`` call.

    A skipped trigger (a cycle was already running) has ``skipped=True``
    and no outcome.
    """

    cycle_id: str
    skipped: bool = False
    outcome: CycleState | None = None
    cycle_start_ms: int | None = None
    watermark_before: int | None = None
    watermark_after: int | None = None
    records: list[RecordTypeReport] = field(default_factory=list)
    error: dict[str, Any] | None = None
    rejected: int = 0

    @property
    def succeeded(self) -> bool:
        return self.outcome is CycleState.SUCCEEDED

    @property
    def watermark_advanced(self) -> bool:
        return (
            self.watermark_before is not None
            and self.watermark_after is not None
            and self.watermark_after > self.watermark_before
        )

    def for_type(self, record_type: RecordType) -> RecordTypeReport | None:
        for report in self.records:
            if report.record_type is record_type:
                return report
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "cycle_id": self.cycle_id,
            "skipped": self.skipped,
            "outcome": self.outcome.value if self.outcome else None,
            "cycle_start_ms": self.cycle_start_ms,
            "watermark_before": self.watermark_before,
            "watermark_after": self.watermark_after,
            "rejected": self.rejected,
            "records": [r.to_dict() for r in self.records],
            "error": self.error,
        }
