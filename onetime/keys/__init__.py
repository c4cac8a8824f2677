"""One-time-pad key accounting.

This package tracks, per conversation, which offsets of the pre-shared key
stream are available, consumed, or yet to be exchanged. It never touches key
bytes itself; encryption and key transport live with the caller.

The most important exported API is :class:`~onetime.keys.history.KeyHistory`,
the append-only ledger through which every extension and consumption flows.
"""

from __future__ import annotations

from .errors import (
    CrossConversationMismatch,
    InsufficientKeyMaterial,
    InvalidInterval,
    KeyAlgebraError,
    LedgerCorruption,
    LockAcquisitionError,
    NonContiguousConsumption,
    NonContiguousExtension,
)
from .hashes import ledger_digest
from .history import KeyHistory, KeyOperation, KeyOperationType, kex_reason
from .interval import (
    KeyInterval,
    consume,
    consume_segment,
    contains,
    empty,
    extend,
    extend_segment,
    overlaps,
)
from .lock import ConversationLocks, ExclusiveAccess
from .serialization import (
    deserialize_key_history,
    dumps_key_history,
    loads_key_history,
    serialize_key_history,
)

__all__ = [
    "ConversationLocks",
    "CrossConversationMismatch",
    "ExclusiveAccess",
    "InsufficientKeyMaterial",
    "InvalidInterval",
    "KeyAlgebraError",
    "KeyHistory",
    "KeyInterval",
    "KeyOperation",
    "KeyOperationType",
    "LedgerCorruption",
    "LockAcquisitionError",
    "NonContiguousConsumption",
    "NonContiguousExtension",
    "consume",
    "consume_segment",
    "contains",
    "deserialize_key_history",
    "dumps_key_history",
    "empty",
    "extend",
    "extend_segment",
    "kex_reason",
    "ledger_digest",
    "loads_key_history",
    "overlaps",
    "serialize_key_history",
]
