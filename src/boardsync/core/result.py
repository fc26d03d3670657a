"""
Result values for operations that fail per item without aborting the batch.

``Ok[T]`` wraps a value, ``Err[T]`` wraps an exception.  The document
mapper returns ``Result[dict]`` so that a malformed row becomes a value
the orchestrator can log and count, not a raised fault that would end
the cycle.

Examples:
    >>> match mapper.to_document(record):
    ...     case Ok(document):
    ...         documents.append(document)
    ...     case Err(error):
    ...         rejects.write(Reject.from_mapping_error(error))

Tags:
    result-pattern, error-handling, boardsync
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """Successful result containing a value."""

    value: T

    def is_ok(self) -> bool:
        return True

    def is_err(self) -> bool:
        return False

    def unwrap(self) -> T:
        return self.value


@dataclass(frozen=True, slots=True)
class Err(Generic[T]):
    """Failed result containing an error."""

    error: Exception

    def is_ok(self) -> bool:
        return False

    def is_err(self) -> bool:
        return True

    def unwrap(self) -> T:
        """Raise the wrapped error."""
        raise self.error


Result = Ok[T] | Err[T]


__all__ = ["Ok", "Err", "Result"]
