"""
Reject handling for rows that fail document mapping.

A row that cannot be mapped is skipped so the rest of the cycle can
proceed.  Skipping silently would let a permanently malformed row sit
outside the index with nothing pointing at it, so every rejection goes
through a ``RejectSink``:

- each rejection is logged as ``sync.mapping.rejected``;
- while failed cycles keep the watermark pinned, the same row is re-read
  and re-rejected; reaching ``alert_threshold`` consecutive rejections
  logs ``sync.mapping.repeated_reject`` once;
- when a cycle succeeds and the watermark moves past a rejected row, the
  row will not be read again until it changes.  It becomes a dead letter
  (``sync.mapping.dead_letter``) and stays listed until a later cycle maps
  the same record cleanly or the record is deleted.  Rows without an id
  are kept as separate dead letters.

Architecture:
    ::

        DocumentMapper ──Err(MappingError)──► sink.write(Reject(...))
                                                   │
                                         sync.mapping.rejected
                                                   │
        orchestrator ── sink.end_cycle(watermark_advanced, mapped, deleted) ─┐
                                                                             ▼
                       advanced=True  → rejects become dead letters
                       advanced=False → streak += 1 (alert at threshold)
                       mapped ids     → streaks and dead letters cleared
                       deleted ids    → streaks and dead letters dropped

Examples:
    >>> sink = RejectSink(alert_threshold=2)
    >>> sink.write(Reject("suggestion", "s-1", "MISSING_FIELD", "missing body"))
    >>> sink.end_cycle(watermark_advanced=True)
    >>> [d.record_id for d in sink.dead_letters]
    ['s-1']

Guardrails:
    - Rejects never fail a cycle; they are data problems, not I/O problems
    - The sink lives for the process lifetime; dead letters are in memory

Tags:
    reject, dead-letter, validation, data-quality, boardsync
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from .errors import MappingError
from .logging import get_logger

logger = get_logger(__name__)


@dataclass
class Reject:
    """One rejected source row.

    Attributes:
        record_type: Logical record type (``"suggestion"``, ``"comment"``).
        record_id: Identifier of the row (may be ``None`` for id-less rows).
        reason_code: Machine-readable code (``MISSING_FIELD``, ``INVALID_TYPE``).
        reason_detail: Human-readable explanation.
        raw_data: Original row for debugging.
    """

    record_type: str
    record_id: str | None
    reason_code: str
    reason_detail: str
    raw_data: Any = None

    @classmethod
    def from_mapping_error(cls, error: MappingError, raw_data: Any = None) -> Reject:
        return cls(
            record_type=error.record_type,
            record_id=error.record_id,
            reason_code="MISSING_FIELD" if error.missing else "INVALID_TYPE",
            reason_detail=error.message,
            raw_data=raw_data,
        )


@dataclass
class DeadLetter:
    """A rejected record the watermark has moved past."""

    record_type: str
    record_id: str | None
    reason: str
    raw_data: Any = None


@dataclass
class RejectSink:
    """Process-lifetime sink for mapping rejections.

    Args:
        alert_threshold: Consecutive rejections (with the watermark pinned)
            before ``sync.mapping.repeated_reject`` is logged.
    """

    alert_threshold: int = 3
    _count: int = 0
    _cycle: list[Reject] = field(default_factory=list)
    _streaks: dict[tuple[str, str], int] = field(default_factory=dict)
    _dead: dict[tuple[str, str], DeadLetter] = field(default_factory=dict)
    _dead_unkeyed: list[DeadLetter] = field(default_factory=list)

    @property
    def count(self) -> int:
        """Number of rejects written over the process lifetime."""
        return self._count

    @property
    def cycle_rejects(self) -> list[Reject]:
        """Rejects written since the last ``end_cycle()``."""
        return list(self._cycle)

    @property
    def dead_letters(self) -> list[DeadLetter]:
        return [*self._dead.values(), *self._dead_unkeyed]

    def streak(self, record_type: str, record_id: str) -> int:
        return self._streaks.get((record_type, record_id), 0)

    def write(self, reject: Reject) -> None:
        """Record one rejection and log it."""
        self._count += 1
        self._cycle.append(reject)
        logger.warning(
            "sync.mapping.rejected",
            record_type=reject.record_type,
            record_id=reject.record_id,
            reason_code=reject.reason_code,
            reason=reject.reason_detail,
        )

    def end_cycle(
        self,
        watermark_advanced: bool,
        mapped: Iterable[tuple[str, str]] = (),
        deleted: Iterable[tuple[str, str]] = (),
    ) -> list[Reject]:
        """Close the current cycle and return its rejects.

        Args:
            watermark_advanced: Whether the cycle moved the watermark.
            mapped: ``(record_type, record_id)`` pairs that mapped cleanly
                this cycle; their streaks and dead letters are cleared.
            deleted: ``(record_type, record_id)`` pairs removed from the index
                this cycle; nothing is left to recover for them.
        """
        for key in deleted:
            self._streaks.pop(key, None)
            if self._dead.pop(key, None) is not None:
                logger.info("sync.mapping.dead_letter_deleted", record_type=key[0], record_id=key[1])
        for key in mapped:
            self._streaks.pop(key, None)
            if self._dead.pop(key, None) is not None:
                logger.info("sync.mapping.recovered", record_type=key[0], record_id=key[1])

        closed = self._cycle
        self._cycle = []

        if watermark_advanced:
            for reject in closed:
                letter = DeadLetter(
                    record_type=reject.record_type,
                    record_id=reject.record_id,
                    reason=reject.reason_detail,
                    raw_data=reject.raw_data,
                )
                if reject.record_id is None:
                    self._dead_unkeyed.append(letter)
                else:
                    key = (reject.record_type, reject.record_id)
                    self._streaks.pop(key, None)
                    self._dead[key] = letter
                logger.error(
                    "sync.mapping.dead_letter",
                    record_type=reject.record_type,
                    record_id=reject.record_id,
                    reason=reject.reason_detail,
                    raw=reject.raw_data,
                )
            return closed

        for key in {(r.record_type, r.record_id) for r in closed if r.record_id is not None}:
            streak = self._streaks.get(key, 0) + 1
            self._streaks[key] = streak
            if streak == self.alert_threshold:
                logger.error(
                    "sync.mapping.repeated_reject",
                    record_type=key[0],
                    record_id=key[1],
                    streak=streak,
                )
        return closed


__all__ = ["Reject", "RejectSink", "DeadLetter"]
