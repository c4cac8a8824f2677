"""Serialization helpers for :class:`~onetime.keys.history.KeyHistory`.

A persisted ledger is one record per conversation::

    {
        "conversationId": "...",
        "operations": [{"type", "segment", "startIndex", "endIndex", "reason",
                        "kexId" | "messageId", "timestamp"}, ...],
        "currentState": {...},
        "digest": "<hex>",
    }

``currentState`` is a cache. Restoration never trusts it: the operations are
replayed through the key algebra and the replayed state must match the
snapshot and the digest.
"""

from __future__ import annotations

import hmac
import json
import logging
from datetime import datetime
from typing import Any, Mapping, Optional

from onetime.config import LedgerConfig

from .errors import KeyAlgebraError, LedgerCorruption
from .history import KeyHistory, KeyOperationType, operation_segment
from .interval import KeyInterval

logger = logging.getLogger(__name__)


def serialize_key_history(
    history: KeyHistory,
    *,
    config: Optional[LedgerConfig] = None,
) -> dict[str, Any]:
    """Serialize a :class:`KeyHistory` to a JSON-safe dict."""

    config = config or LedgerConfig()
    blob: dict[str, Any] = {
        "conversationId": history.conversation_id,
        "operations": [op.to_dict() for op in history.operations],
        "currentState": history.current_state.to_dict(),
    }
    if config.include_digest:
        blob["digest"] = history.fingerprint(digest_size=config.digest_size)
    return blob


def deserialize_key_history(
    blob: Mapping[str, Any],
    *,
    config: Optional[LedgerConfig] = None,
) -> KeyHistory:
    """Rebuild a ledger from :func:`serialize_key_history` output by replaying it.

    Raises:
        LedgerCorruption: If an operation does not compose with the previous
            state, or the replayed ledger disagrees with the persisted
            ``currentState`` or ``digest``.
    """

    config = config or LedgerConfig()
    try:
        conversation_id = blob["conversationId"]
        operations = blob.get("operations", [])
        if not isinstance(conversation_id, str):
            raise TypeError("conversationId must be a string")
        if not isinstance(operations, list):
            raise TypeError("operations must be a list")
    except (KeyError, TypeError, AttributeError) as e:
        raise LedgerCorruption(f"malformed key history record: {e!r}") from e

    history = KeyHistory(conversation_id)

    for i, item in enumerate(operations, start=1):
        try:
            op_type = KeyOperationType(item["type"])
            segment = operation_segment(item, conversation_id)
            ts_raw = item.get("timestamp")
            timestamp = datetime.fromisoformat(ts_raw) if ts_raw else None
            reason = str(item.get("reason", ""))
            if op_type is KeyOperationType.EXTENSION:
                history.record_extension(segment, reason, item.get("kexId"), timestamp=timestamp)
            else:
                history.record_consumption(segment, reason, item.get("messageId"), timestamp=timestamp)
        except (KeyAlgebraError, KeyError, ValueError, TypeError, AttributeError) as e:
            raise LedgerCorruption(
                f"operation t{i} of conversation {conversation_id!r} cannot be replayed: {e!r}"
            ) from e

    state_blob = blob.get("currentState")
    if state_blob is not None:
        try:
            stored = KeyInterval.from_dict(state_blob)
        except (KeyAlgebraError, KeyError, TypeError) as e:
            raise LedgerCorruption(
                f"malformed current state for conversation {conversation_id!r}: {e!r}"
            ) from e
        if stored != history.current_state:
            raise LedgerCorruption(
                f"persisted current state {stored} does not match replayed state "
                f"{history.current_state} for conversation {conversation_id!r}"
            )

    digest = blob.get("digest")
    if digest is not None and config.verify_digest_on_restore:
        digest = str(digest)
        size = len(digest) // 2
        if not (1 <= size <= 64):
            raise LedgerCorruption(f"malformed digest for conversation {conversation_id!r}")
        if not hmac.compare_digest(history.fingerprint(digest_size=size).encode(), digest.encode("utf-8")):
            raise LedgerCorruption(f"digest mismatch for conversation {conversation_id!r}")

    logger.debug("restored %r", history)
    return history


def dumps_key_history(history: KeyHistory, *, config: Optional[LedgerConfig] = None) -> str:
    """Serialize a ledger to JSON text."""

    return json.dumps(serialize_key_history(history, config=config), sort_keys=True)


def loads_key_history(data: str | bytes, *, config: Optional[LedgerConfig] = None) -> KeyHistory:
    """Restore a ledger from JSON text produced by :func:`dumps_key_history`."""

    return deserialize_key_history(json.loads(data), config=config)
