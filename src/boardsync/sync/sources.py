"""Record type registry.

Each :class:`RecordSource` describes how one board table is read and how
its rows become search documents: the table and parent column, the
document field names, type-specific extra columns, and the collection
schema.  The change reader, document mapper and orchestrator are all
driven by this registry, so adding a record type is one entry here.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from boardsync.core.settings import SyncSettings

from .models import RecordType

EMBEDDING_MODEL = "ts/all-MiniLM-L12-v2"


@dataclass(frozen=True)
class ExtraField:
    """A type-specific column copied into the document.

    Attributes:
        column: Column name in the board database.
        field: Field name in the index document.
        kind: Expected Python type after coercion (``bool`` or ``str``).
        required: Whether a ``None`` value rejects the row.
    """

    column: str
    field: str
    kind: type
    required: bool = False


@dataclass(frozen=True)
class RecordSource:
    """How one record type is read, mapped and indexed."""

    record_type: RecordType
    table: str
    collection: str
    parent_column: str
    parent_field: str
    extra_fields: tuple[ExtraField, ...] = ()
    tracks_updates: bool = True
    soft_deletes: bool = True
    schema_fields: tuple[dict[str, Any], ...] = field(default=())

    @property
    def columns(self) -> list[str]:
        cols = ["id", "body", "user_id", "display_name", self.parent_column, "timestamp"]
        if self.tracks_updates:
            cols.append("updated_at")
        if self.soft_deletes:
            cols.append("deleted_at")
        cols.extend(extra.column for extra in self.extra_fields)
        return cols

    def collection_schema(self) -> dict[str, Any]:
        """Typesense collection-create payload for this record type."""
        return {
            "name": self.collection,
            "fields": [dict(f) for f in self.schema_fields],
            "default_sorting_field": "timestamp",
        }


def _embedding_field() -> dict[str, Any]:
    return {
        "name": "embedding",
        "type": "float[]",
        "embed": {
            "from": ["body", "displayName"],
            "model_config": {"model_name": EMBEDDING_MODEL},
        },
        "optional": True,
    }


def suggestion_source(collection: str = "suggestions") -> RecordSource:
    return RecordSource(
        record_type=RecordType.SUGGESTION,
        table="suggestion",
        collection=collection,
        parent_column="category_id",
        parent_field="categoryId",
        schema_fields=(
            {"name": "id", "type": "string", "index": True},
            {"name": "body", "type": "string", "index": True},
            {"name": "userId", "type": "string", "facet": True, "index": True},
            {"name": "displayName", "type": "string", "optional": True, "index": True},
            {"name": "categoryId", "type": "string", "facet": True, "index": True},
            {"name": "timestamp", "type": "int64", "sort": True},
            {"name": "updatedAt", "type": "int64", "sort": True, "optional": True},
            _embedding_field(),
        ),
    )


def comment_source(collection: str = "comments") -> RecordSource:
    return RecordSource(
        record_type=RecordType.COMMENT,
        table="comment",
        collection=collection,
        parent_column="suggestion_id",
        parent_field="suggestionId",
        extra_fields=(
            ExtraField("is_root_comment", "isRootComment", bool, required=True),
            ExtraField("parent_comment_id", "parentCommentId", str),
        ),
        schema_fields=(
            {"name": "id", "type": "string", "index": True},
            {"name": "body", "type": "string", "index": True},
            {"name": "suggestionId", "type": "string", "facet": True, "index": True},
            {"name": "userId", "type": "string", "facet": True, "index": True},
            {"name": "displayName", "type": "string", "optional": True, "index": True},
            {"name": "timestamp", "type": "int64", "sort": True},
            {"name": "updatedAt", "type": "int64", "sort": True, "optional": True},
            {"name": "isRootComment", "type": "bool", "facet": True, "index": True},
            {"name": "parentCommentId", "type": "string", "optional": True, "index": True},
            _embedding_field(),
        ),
    )


def default_sources(settings: SyncSettings | None = None) -> list[RecordSource]:
    """The board's record types, with collection names from *settings*."""
    if settings is None:
        return [suggestion_source(), comment_source()]
    return [
        suggestion_source(settings.suggestions_collection),
        comment_source(settings.comments_collection),
    ]
