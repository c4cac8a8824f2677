"""Key interval algebra.

A :class:`KeyInterval` is the half-open byte range ``[start_index, end_index)``
of one conversation's one-time-pad key stream. Two operations combine
intervals:

- Extension (``+``): bytes from a completed key exchange are appended at the
  current end.
- Consumption (``-``): bytes spent on one message are removed from the current
  start.

Restricting extension to the end and consumption to the start turns the key
range into a strictly ordered, gap-free stream in which no offset can be handed
out twice.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

from .errors import (
    CrossConversationMismatch,
    InsufficientKeyMaterial,
    InvalidInterval,
    NonContiguousConsumption,
    NonContiguousExtension,
)

MAX_INDEX = 2**64 - 1


def _check_index(name: str, value: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidInterval(f"{name} must be an integer, got {type(value).__name__}")
    if not (0 <= value <= MAX_INDEX):
        raise InvalidInterval(f"{name} out of range: {value}")


@dataclass(frozen=True, slots=True)
class KeyInterval:
    """Immutable key range ``[start_index, end_index)``.

    Args:
        conversation_id: Opaque identifier of the conversation owning the key.
        start_index: Index of the first available byte (inclusive).
        end_index: First unavailable byte (exclusive).

    Raises:
        InvalidInterval: If ``start_index > end_index`` or an index is outside
            the unsigned 64-bit range.
    """

    conversation_id: str
    start_index: int
    end_index: int

    def __post_init__(self) -> None:
        if not isinstance(self.conversation_id, str):
            raise InvalidInterval(
                f"conversation_id must be a string, got {type(self.conversation_id).__name__}"
            )
        _check_index("start_index", self.start_index)
        _check_index("end_index", self.end_index)
        if self.start_index > self.end_index:
            raise InvalidInterval(
                f"start_index must not exceed end_index, got [{self.start_index}, {self.end_index})"
            )

    @classmethod
    def empty(cls, conversation_id: str) -> "KeyInterval":
        """Return ``[0, 0)`` for ``conversation_id``."""

        return cls(conversation_id, 0, 0)

    @classmethod
    def from_length(cls, conversation_id: str, length: int) -> "KeyInterval":
        """Return ``[0, length)`` for ``conversation_id``."""

        return cls(conversation_id, 0, length)

    @property
    def length(self) -> int:
        return self.end_index - self.start_index

    @property
    def is_empty(self) -> bool:
        return self.length == 0

    @property
    def is_not_empty(self) -> bool:
        return self.length > 0

    def _require_same_conversation(self, other: "KeyInterval", action: str) -> None:
        if other.conversation_id != self.conversation_id:
            raise CrossConversationMismatch(
                f"cannot {action} intervals from different conversations: "
                f"{self.conversation_id!r} and {other.conversation_id!r}"
            )

    def extend(self, segment: "KeyInterval") -> "KeyInterval":
        """Append ``segment`` at the current end.

        Example:
            >>> KeyInterval.empty("c").extend(KeyInterval("c", 0, 1024))
            KeyInterval(conversation_id='c', start_index=0, end_index=1024)

        Raises:
            CrossConversationMismatch: Different conversation ids.
            NonContiguousExtension: ``segment`` does not start at ``end_index``.
        """

        self._require_same_conversation(segment, "extend")
        if segment.start_index != self.end_index:
            raise NonContiguousExtension(
                f"segment must start at end_index. Expected {self.end_index}, got {segment.start_index}"
            )
        return KeyInterval(self.conversation_id, self.start_index, segment.end_index)

    def consume(self, segment: "KeyInterval") -> "KeyInterval":
        """Remove ``segment`` from the current start.

        Raises:
            CrossConversationMismatch: Different conversation ids.
            NonContiguousConsumption: ``segment`` does not start at ``start_index``.
            InsufficientKeyMaterial: ``segment`` ends past ``end_index``.
        """

        self._require_same_conversation(segment, "consume")
        if segment.start_index != self.start_index:
            raise NonContiguousConsumption(
                f"segment must start at start_index. Expected {self.start_index}, got {segment.start_index}"
            )
        if segment.end_index > self.end_index:
            raise InsufficientKeyMaterial(
                f"cannot consume more than available. Max: {self.end_index}, requested: {segment.end_index}"
            )
        return KeyInterval(self.conversation_id, segment.end_index, self.end_index)

    __add__ = extend
    __sub__ = consume

    def consume_segment(self, n: int) -> "KeyInterval":
        """Return the next ``n`` bytes available for allocation.

        This is a probe: availability is checked only when the segment is
        passed to :meth:`consume`, so calling it repeatedly has no effect.
        """

        return KeyInterval(self.conversation_id, self.start_index, self.start_index + n)

    def extend_segment(self, n: int) -> "KeyInterval":
        """Return the ``n`` bytes an upcoming key exchange would append."""

        return KeyInterval(self.conversation_id, self.end_index, self.end_index + n)

    def contains(self, other: "KeyInterval") -> bool:
        return (
            other.conversation_id == self.conversation_id
            and other.start_index >= self.start_index
            and other.end_index <= self.end_index
        )

    def overlaps(self, other: "KeyInterval") -> bool:
        # Half-open ranges: sharing an endpoint is not an overlap.
        if other.conversation_id != self.conversation_id:
            return False
        return self.start_index < other.end_index and other.start_index < self.end_index

    def __str__(self) -> str:
        return f"[{self.start_index}, {self.end_index})"

    def to_short_string(self) -> str:
        return str(self)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-safe dict."""

        return {
            "conversationId": self.conversation_id,
            "startIndex": self.start_index,
            "endIndex": self.end_index,
        }

    @classmethod
    def from_dict(cls, blob: Mapping[str, Any]) -> "KeyInterval":
        """Deserialize a dict produced by :meth:`to_dict`."""

        return cls(
            conversation_id=blob["conversationId"],
            start_index=blob["startIndex"],
            end_index=blob["endIndex"],
        )


def empty(conversation_id: str) -> KeyInterval:
    return KeyInterval.empty(conversation_id)


def extend(current: KeyInterval, segment: KeyInterval) -> KeyInterval:
    return current.extend(segment)


def consume(current: KeyInterval, segment: KeyInterval) -> KeyInterval:
    return current.consume(segment)


def consume_segment(current: KeyInterval, n: int) -> KeyInterval:
    return current.consume_segment(n)


def extend_segment(current: KeyInterval, n: int) -> KeyInterval:
    return current.extend_segment(n)


def contains(outer: KeyInterval, inner: KeyInterval) -> bool:
    return outer.contains(inner)


def overlaps(a: KeyInterval, b: KeyInterval) -> bool:
    return a.overlaps(b)
