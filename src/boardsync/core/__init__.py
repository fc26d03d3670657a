"""
Ambient primitives for the board sync engine.

Modules:
    errors          Typed error hierarchy (BoardSyncError and friends)
    logging         structlog configuration, get_logger, LogContext
    settings        SyncSettings (pydantic-settings)
    timestamps      UTC / epoch-millisecond conversions, ULIDs
    result          Ok / Err values for per-item failures
    watermarks      Forward-only WatermarkStore (memory or PostgreSQL)
    rejects         RejectSink for mapping rejections and dead letters
    database        asyncpg pool helpers
    scheduling      Fixed-interval tick backends
"""

from .errors import (
    BoardSyncError,
    ConfigError,
    IndexErrorKind,
    InvalidConfigError,
    MappingError,
    MissingConfigError,
    SearchIndexError,
)
from .result import Err, Ok, Result
from .watermarks import Watermark, WatermarkStore

__all__ = [
    "BoardSyncError",
    "ConfigError",
    "IndexErrorKind",
    "InvalidConfigError",
    "MappingError",
    "MissingConfigError",
    "SearchIndexError",
    "Err",
    "Ok",
    "Result",
    "Watermark",
    "WatermarkStore",
]
