"""
Structured error types for the board sync engine.

Provides a typed hierarchy of errors with metadata for retry decisions,
categorization, and structured logging.  Every failure the sync engine
can observe is classified into one of these types so that call sites
never have to sniff error shapes.

Manifesto:
    - **Typed Error Hierarchy:** Different error types for different layers
    - **Explicit Retry Semantics:** Each error knows if it's retryable
    - **Rich Context:** Errors carry metadata for logging
    - **Error Chaining:** Preserve original exceptions while adding context

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                     BoardSyncError                              │
        │  (category, retryable, context, cause)                          │
        ├─────────────────────────────────────────────────────────────────┤
        │  ConfigError           ValidationError      DatabaseError       │
        │  (CONFIG)              (VALIDATION)         (DATABASE)          │
        │       │                     │                                   │
        │  MissingConfigError    MappingError                             │
        │  InvalidConfigError                                             │
        │                                                                 │
        │  SearchIndexError (INDEX, kind=...)                             │
        │  InvalidTransitionError (ORCHESTRATION)                         │
        └─────────────────────────────────────────────────────────────────┘

Examples:
    >>> error = SearchIndexError("Typesense unreachable", kind=IndexErrorKind.TRANSIENT)
    >>> error.retryable
    True

    >>> err = MappingError("suggestion", "s-1", missing=["body"])
    >>> err.to_dict()["missing"]
    ['body']

Guardrails:
    ❌ DON'T: Inspect raw HTTP error payloads at call sites
    ✅ DO: Raise SearchIndexError with a classified IndexErrorKind

    ❌ DON'T: Swallow the original exception
    ✅ DO: Pass it as cause= for error chaining

Tags:
    error-handling, exception-hierarchy, retry-logic, error-context, boardsync
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and log routing."""

    DATABASE = "DATABASE"
    INDEX = "INDEX"
    VALIDATION = "VALIDATION"
    CONFIG = "CONFIG"
    ORCHESTRATION = "ORCHESTRATION"
    INTERNAL = "INTERNAL"


@dataclass
class ErrorContext:
    """Structured metadata attached to an error.

    Attributes:
        cycle_id: Sync cycle during which the error happened.
        record_type: Logical record type (``"suggestion"``, ``"comment"``).
        collection: Search index collection name.
        url: URL that was being accessed.
        http_status: HTTP status code if applicable.
        metadata: Additional key-value pairs.
    """

    cycle_id: str | None = None
    record_type: str | None = None
    collection: str | None = None
    url: str | None = None
    http_status: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["cycle_id", "record_type", "collection", "url", "http_status"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class BoardSyncError(Exception):
    """Base exception for all board sync errors.

    Subclasses set ``default_category`` and ``default_retryable`` to give
    sensible defaults for their layer.  ``retryable`` is advisory: the
    orchestrator never retries inside a cycle, it leaves the watermark in
    place so the next cycle re-reads the same window.
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> BoardSyncError:
        """Add context to this error (fluent API).

        Usage:
            raise DatabaseError("select failed").with_context(record_type="comment")
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# CONFIGURATION ERRORS
# =============================================================================


class ConfigError(BoardSyncError):
    """
    Configuration error.

    Never retryable - configuration must be fixed.
    """

    default_category = ErrorCategory.CONFIG
    default_retryable = False


class MissingConfigError(ConfigError):
    """Required configuration is missing."""

    def __init__(self, key: str, message: str | None = None):
        self.key = key
        super().__init__(message or f"Missing required configuration: {key}")


class InvalidConfigError(ConfigError):
    """Configuration value is invalid."""

    def __init__(self, key: str, value: Any, message: str | None = None):
        self.key = key
        self.value = value
        super().__init__(message or f"Invalid configuration for {key}: {value!r}")


# =============================================================================
# VALIDATION ERRORS
# =============================================================================


class ValidationError(BoardSyncError):
    """
    Data validation error.

    Never retryable - data must be fixed.
    """

    default_category = ErrorCategory.VALIDATION
    default_retryable = False


class MappingError(ValidationError):
    """A source row could not be converted into an index document.

    The mapper returns this as a value (wrapped in ``Err``) rather than
    raising it, so one malformed row never aborts a cycle.

    Args:
        record_type: Logical record type of the row.
        record_id: Identifier of the row, if it had one.
        missing: Required fields that were absent or empty.
        invalid: Fields present but of the wrong type.
    """

    def __init__(
        self,
        record_type: str,
        record_id: str | None,
        *,
        missing: list[str] | None = None,
        invalid: list[str] | None = None,
        message: str | None = None,
    ):
        self.record_type = record_type
        self.record_id = record_id
        self.missing = missing or []
        self.invalid = invalid or []
        problems = ", ".join(
            [f"missing {name}" for name in self.missing]
            + [f"invalid {name}" for name in self.invalid]
        )
        super().__init__(
            message or f"Cannot map {record_type} {record_id!r}: {problems or 'unknown problem'}",
            context=ErrorContext(record_type=record_type),
        )

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["record_id"] = self.record_id
        if self.missing:
            result["missing"] = self.missing
        if self.invalid:
            result["invalid"] = self.invalid
        return result


# =============================================================================
# DATABASE ERRORS
# =============================================================================


class DatabaseError(BoardSyncError):
    """Database query or connection error."""

    default_category = ErrorCategory.DATABASE
    default_retryable = True


# =============================================================================
# SEARCH INDEX ERRORS
# =============================================================================


class IndexErrorKind(str, Enum):
    """Single classification of a failed search index call."""

    NOT_FOUND = "not_found"
    TRANSIENT = "transient"
    PERMANENT = "permanent"


class SearchIndexError(BoardSyncError):
    """A call to the search index failed as a whole.

    ``kind`` is the only thing callers should branch on.
    """

    default_category = ErrorCategory.INDEX

    def __init__(
        self,
        message: str,
        *,
        kind: IndexErrorKind,
        status_code: int | None = None,
        body: str | None = None,
        **kwargs: Any,
    ):
        kwargs.setdefault("retryable", kind is IndexErrorKind.TRANSIENT)
        super().__init__(message, **kwargs)
        self.kind = kind
        self.status_code = status_code
        self.body = body
        if status_code is not None:
            self.context.http_status = status_code

    @property
    def is_not_found(self) -> bool:
        return self.kind is IndexErrorKind.NOT_FOUND

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["kind"] = self.kind.value
        if self.body:
            result["body"] = self.body[:500]
        return result


# =============================================================================
# ORCHESTRATION ERRORS
# =============================================================================


class InvalidTransitionError(BoardSyncError):
    """Raised when an illegal cycle state transition is attempted."""

    default_category = ErrorCategory.ORCHESTRATION

    def __init__(self, current: str, target: str) -> None:
        self.current = current
        self.target = target
        super().__init__(f"Invalid CycleState transition: {current} → {target}")


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def error_summary(error: Exception) -> dict[str, Any]:
    """Return a log-friendly dict for any exception."""
    if isinstance(error, BoardSyncError):
        return error.to_dict()
    return {"error_type": type(error).__name__, "message": str(error)}


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "BoardSyncError",
    "ConfigError",
    "MissingConfigError",
    "InvalidConfigError",
    "ValidationError",
    "MappingError",
    "DatabaseError",
    "IndexErrorKind",
    "SearchIndexError",
    "InvalidTransitionError",
    "error_summary",
]
