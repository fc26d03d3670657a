"""
boardsync: keeps the board's search index in step with its database.

Rows changed or soft-deleted in PostgreSQL since the last successful
cycle are mapped to Typesense documents and upserted or deleted on a
fixed interval.  The watermark only advances when every write in a cycle
succeeded, so failures are retried by re-reading the same window.

Packages:
    core    errors, logging, settings, watermarks, rejects, scheduling
    sync    record sources, reader, mapper, index client, orchestrator
    cli     ``boardsync`` command
"""

__version__ = "0.1.0"
