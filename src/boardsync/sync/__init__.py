"""Change synchronization between the board database and the search index."""

from .index_client import DeleteResult, IndexClient, UpsertResult, classify_status
from .mapper import DocumentMapper, map_record
from .models import (
    ChangeSet,
    CycleReport,
    CycleState,
    Record,
    RecordChanges,
    RecordType,
    RecordTypeReport,
)
from .orchestrator import SyncOrchestrator, decide_outcome
from .reader import ChangeReader, QueryExecutor
from .scheduler import SchedulerHealth, SchedulerStats, SyncScheduler
from .service import SyncService
from .sources import RecordSource, comment_source, default_sources, suggestion_source

__all__ = [
    "ChangeReader",
    "ChangeSet",
    "CycleReport",
    "CycleState",
    "DeleteResult",
    "DocumentMapper",
    "IndexClient",
    "QueryExecutor",
    "Record",
    "RecordChanges",
    "RecordSource",
    "RecordType",
    "RecordTypeReport",
    "SchedulerHealth",
    "SchedulerStats",
    "SyncOrchestrator",
    "SyncScheduler",
    "SyncService",
    "UpsertResult",
    "classify_status",
    "comment_source",
    "decide_outcome",
    "default_sources",
    "map_record",
    "suggestion_source",
]
