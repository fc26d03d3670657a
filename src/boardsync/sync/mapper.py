"""
Document mapper: board rows → search index documents.

Mapping is pure: no I/O, no logging, no clock.  ``to_document`` returns
``Ok(document)`` or ``Err(MappingError)``; it never raises for bad data,
so one malformed row cannot end a cycle.

Field mapping (suggestion shown; comments swap ``categoryId`` for
``suggestionId`` and add ``isRootComment`` / ``parentCommentId``)::

    id            → id            required, non-empty str
    body          → body          required, non-empty str
    user_id       → userId        required, non-empty str
    display_name  → displayName   optional str, omitted when NULL
    category_id   → categoryId    required, non-empty str
    timestamp     → timestamp     required datetime → epoch ms
    updated_at    → updatedAt     optional datetime → epoch ms

Optional fields that are NULL are left out of the document rather than
sent as null, so a document is always complete for the collection schema.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from boardsync.core.errors import MappingError
from boardsync.core.result import Err, Ok, Result
from boardsync.core.timestamps import to_epoch_ms

from .models import Record
from .sources import RecordSource


def _is_text(value: Any) -> bool:
    return isinstance(value, str) and value != ""


class DocumentMapper:
    """Maps :class:`Record` values using the record type registry."""

    def __init__(self, sources: list[RecordSource]) -> None:
        self._sources = {source.record_type: source for source in sources}

    def to_document(self, record: Record) -> Result[dict[str, Any]]:
        source = self._sources.get(record.record_type)
        if source is None:
            return Err(
                MappingError(
                    record.record_type.value,
                    record.id if isinstance(record.id, str) else None,
                    message=f"No record source registered for {record.record_type.value}",
                )
            )
        return map_record(source, record)


def map_record(source: RecordSource, record: Record) -> Result[dict[str, Any]]:
    """Map one record with *source*'s field layout."""
    missing: list[str] = []
    invalid: list[str] = []

    def require_text(name: str, value: Any) -> None:
        if value is None or value == "":
            missing.append(name)
        elif not isinstance(value, str):
            invalid.append(name)

    require_text("id", record.id)
    require_text("body", record.body)
    require_text("user_id", record.user_id)
    require_text(source.parent_column, record.parent_id)

    if record.created_at is None:
        missing.append("timestamp")
    elif not isinstance(record.created_at, datetime):
        invalid.append("timestamp")

    if record.updated_at is not None and not isinstance(record.updated_at, datetime):
        invalid.append("updated_at")
    if record.display_name is not None and not isinstance(record.display_name, str):
        invalid.append("display_name")

    for extra in source.extra_fields:
        value = record.attributes.get(extra.column)
        if value is None:
            if extra.required:
                missing.append(extra.column)
        elif not isinstance(value, extra.kind):
            invalid.append(extra.column)

    if missing or invalid:
        return Err(
            MappingError(
                source.record_type.value,
                record.id if _is_text(record.id) else None,
                missing=missing,
                invalid=invalid,
            )
        )

    document: dict[str, Any] = {
        "id": record.id,
        "body": record.body,
        "userId": record.user_id,
        source.parent_field: record.parent_id,
        "timestamp": to_epoch_ms(record.created_at),
    }
    if record.display_name is not None:
        document["displayName"] = record.display_name
    if record.updated_at is not None:
        document["updatedAt"] = to_epoch_ms(record.updated_at)
    for extra in source.extra_fields:
        value = record.attributes.get(extra.column)
        if value is not None:
            document[extra.field] = value

    return Ok(document)


__all__ = ["DocumentMapper", "map_record"]
