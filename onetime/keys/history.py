"""Append-only key history ledger.

One :class:`KeyHistory` exists per conversation. It records every extension
(bytes added by a key exchange) and consumption (bytes spent on a message) as a
:class:`KeyOperation` and caches the resulting key range in
:attr:`KeyHistory.current_state`.

The ledger performs no locking. Callers must serialize ``record_*`` calls per
conversation, e.g. through :class:`onetime.keys.lock.ExclusiveAccess`.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterator, Mapping, Optional

from onetime.config import KeyExchangeConfig

from .errors import KeyAlgebraError, LedgerCorruption
from .hashes import ledger_digest
from .interval import KeyInterval

logger = logging.getLogger(__name__)


class KeyOperationType(Enum):
    """Kind of ledger operation."""

    EXTENSION = "extension"
    CONSUMPTION = "consumption"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def kex_reason(kex_id: str) -> str:
    """Reason string recorded for a completed key exchange."""

    return f"kex id={kex_id}"


@dataclass(frozen=True, slots=True)
class KeyOperation:
    """A single recorded operation with its context.

    Args:
        type: Extension or consumption.
        segment: Interval added or removed.
        key_before: Ledger state before the operation.
        key_after: Ledger state after the operation.
        reason: Free text shown in the audit trail.
        reference_id: ``kex_id`` for extensions, ``message_id`` for consumptions.
        timestamp: When the operation was recorded (UTC).
    """

    type: KeyOperationType
    segment: KeyInterval
    key_before: KeyInterval
    key_after: KeyInterval
    reason: str
    reference_id: Optional[str] = None
    timestamp: datetime = field(default_factory=_utcnow)

    @property
    def kex_id(self) -> Optional[str]:
        return self.reference_id if self.type is KeyOperationType.EXTENSION else None

    @property
    def message_id(self) -> Optional[str]:
        return self.reference_id if self.type is KeyOperationType.CONSUMPTION else None

    @property
    def operator_symbol(self) -> str:
        return "+" if self.type is KeyOperationType.EXTENSION else "-"

    def format(self, index: int = 0) -> str:
        """Render one audit line, e.g. ``t1 : key = [0, 1024)\\t+ [0, 1024) by kex id=k``."""

        return (
            f"t{index} : key = {self.key_after.to_short_string()}"
            f"\t{self.operator_symbol} {self.segment.to_short_string()} by {self.reason}"
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-safe dict.

        The correlation id is stored as ``kexId`` or ``messageId`` depending on
        the operation type.
        """

        blob: dict[str, Any] = {
            "type": self.type.value,
            "segment": self.segment.to_dict(),
            "startIndex": self.segment.start_index,
            "endIndex": self.segment.end_index,
            "reason": self.reason,
            "timestamp": self.timestamp.isoformat(),
        }
        id_key = "kexId" if self.type is KeyOperationType.EXTENSION else "messageId"
        blob[id_key] = self.reference_id
        return blob


def operation_segment(blob: Mapping[str, Any], conversation_id: str) -> KeyInterval:
    """Extract the segment of a serialized operation.

    Records written by :meth:`KeyOperation.to_dict` carry a nested ``segment``;
    the flat ``startIndex``/``endIndex`` layout is accepted as well. When both
    are present they must describe the same range.

    Raises:
        LedgerCorruption: If the nested and flat ranges disagree.
    """

    seg = blob.get("segment")
    if seg is None:
        return KeyInterval(conversation_id, blob["startIndex"], blob["endIndex"])

    segment = KeyInterval.from_dict(seg)
    flat = (blob.get("startIndex", segment.start_index), blob.get("endIndex", segment.end_index))
    if flat != (segment.start_index, segment.end_index):
        raise LedgerCorruption(
            f"segment {segment} disagrees with flat range [{flat[0]}, {flat[1]})"
        )
    return segment


class KeyHistory:
    """Ordered, append-only ledger of key operations for one conversation.

    ``current_state`` always equals the fold of every recorded operation,
    starting from ``KeyInterval.empty(conversation_id)``.

    Example:
        >>> history = KeyHistory("conv")
        >>> _ = history.record_extension(KeyInterval("conv", 0, 1024), kex_reason("kex_123"), "kex_123")
        >>> seg = history.current_state.consume_segment(12)
        >>> _ = history.record_consumption(seg, 'send "hello world"', "msg_1")
        >>> str(history.current_state)
        '[12, 1024)'
    """

    def __init__(self, conversation_id: str) -> None:
        self.conversation_id = conversation_id
        self._operations: list[KeyOperation] = []
        self._current_state = KeyInterval.empty(conversation_id)

    @property
    def operations(self) -> tuple[KeyOperation, ...]:
        """Read-only snapshot of the recorded operations."""

        return tuple(self._operations)

    @property
    def length(self) -> int:
        return len(self._operations)

    @property
    def is_empty(self) -> bool:
        return not self._operations

    @property
    def initial_state(self) -> KeyInterval:
        return KeyInterval.empty(self.conversation_id)

    @property
    def current_state(self) -> KeyInterval:
        return self._current_state

    def __len__(self) -> int:
        return len(self._operations)

    def __iter__(self) -> Iterator[KeyOperation]:
        return iter(self.operations)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, KeyHistory):
            return NotImplemented
        return (
            self.conversation_id == other.conversation_id
            and self._operations == other._operations
        )

    def __repr__(self) -> str:
        return (
            f"KeyHistory(conversation_id={self.conversation_id!r}, "
            f"length={self.length}, current_state={self._current_state})"
        )

    def record_extension(
        self,
        segment: KeyInterval,
        reason: str,
        kex_id: Optional[str] = None,
        *,
        timestamp: Optional[datetime] = None,
    ) -> KeyOperation:
        """Record key bytes added by a key exchange.

        Raises:
            KeyAlgebraError: If ``segment`` cannot extend the current state. The
                ledger is left unchanged.
        """

        return self._record(KeyOperationType.EXTENSION, segment, reason, kex_id, timestamp)

    def record_consumption(
        self,
        segment: KeyInterval,
        reason: str,
        message_id: Optional[str] = None,
        *,
        timestamp: Optional[datetime] = None,
    ) -> KeyOperation:
        """Record key bytes spent on one message.

        Raises:
            KeyAlgebraError: If ``segment`` cannot be consumed from the current
                state. The ledger is left unchanged.
        """

        return self._record(KeyOperationType.CONSUMPTION, segment, reason, message_id, timestamp)

    def _record(
        self,
        op_type: KeyOperationType,
        segment: KeyInterval,
        reason: str,
        reference_id: Optional[str],
        timestamp: Optional[datetime],
    ) -> KeyOperation:
        key_before = self._current_state
        try:
            if op_type is KeyOperationType.EXTENSION:
                key_after = key_before.extend(segment)
            else:
                key_after = key_before.consume(segment)
        except KeyAlgebraError as e:
            logger.warning(
                "rejected %s of %s on %s for conversation %s: %s",
                op_type.value, segment, key_before, self.conversation_id, e,
            )
            raise

        operation = KeyOperation(
            type=op_type,
            segment=segment,
            key_before=key_before,
            key_after=key_after,
            reason=reason,
            reference_id=reference_id,
            timestamp=timestamp or _utcnow(),
        )
        self._operations.append(operation)
        self._current_state = key_after
        logger.debug("%s %s", self.conversation_id, operation.format(index=len(self._operations)))
        return operation

    def needs_key_exchange(
        self,
        threshold: Optional[int] = None,
        *,
        config: Optional[KeyExchangeConfig] = None,
    ) -> bool:
        """True when fewer than ``threshold`` key bytes remain.

        ``threshold`` defaults to ``config.low_key_threshold``; pass the active
        profile's :class:`KeyExchangeConfig` (e.g. ``Config().key_exchange``) so
        environment overrides apply.
        """

        if threshold is None:
            threshold = (config or KeyExchangeConfig()).low_key_threshold
        return self._current_state.length < threshold

    def format(self) -> str:
        """Render the full audit trail, one line per state transition."""

        lines = [f"t0 : key = {self.initial_state.to_short_string()}"]
        for i, op in enumerate(self._operations, start=1):
            lines.append(op.format(index=i))
        return "\n".join(lines)

    def fingerprint(self, *, digest_size: int = 32) -> str:
        """Hex digest over the canonical encoding of every operation."""

        canonical = json.dumps(
            [op.to_dict() for op in self._operations],
            sort_keys=True,
            separators=(",", ":"),
        ).encode("utf-8")
        return ledger_digest(canonical, digest_size=digest_size).hex()

    def copy(self) -> "KeyHistory":
        """Return an independent ledger with the same operations."""

        clone = KeyHistory(self.conversation_id)
        clone._operations = list(self._operations)
        clone._current_state = self._current_state
        return clone
