"""Conversation-scoped exclusive write access.

:class:`~onetime.keys.history.KeyHistory` does no locking of its own. Two
uncoordinated consumptions on the same conversation could allocate the same key
bytes, so writers first obtain an :class:`ExclusiveAccess` token from a
:class:`ConversationLocks` registry and record operations through it.

Usage::

    locks = ConversationLocks()
    with locks.acquire(history.conversation_id, holder_id="alice") as access:
        segment = history.current_state.consume_segment(len(ciphertext))
        send(ciphertext)
        access.record_consumption(history, segment, 'send "hi"', message_id)
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

from onetime.config import LockConfig

from .errors import CrossConversationMismatch, LockAcquisitionError
from .history import KeyHistory, KeyOperation
from .interval import KeyInterval

logger = logging.getLogger(__name__)


class ExclusiveAccess:
    """Token proving its holder is the single writer of one conversation's ledger.

    ``record_*`` checks the lease and then writes without holding the registry
    mutex. A lease that expires between the check and the write can be taken
    over by another holder in that window, so holders must finish well within
    ``lease_seconds``.
    """

    def __init__(
        self,
        registry: "ConversationLocks",
        conversation_id: str,
        holder_id: str,
        acquired_at: float,
    ) -> None:
        self._registry = registry
        self.conversation_id = conversation_id
        self.holder_id = holder_id
        self.acquired_at = acquired_at
        self._released = False

    @property
    def held(self) -> bool:
        """True while this token owns an unexpired lease."""

        return (
            not self._released
            and self._registry._current_lease(self.conversation_id) is self
            and not self._registry._is_expired(self, self._registry._clock())
        )

    def _check(self, history: KeyHistory) -> None:
        if not self.held:
            raise LockAcquisitionError(
                f"{self.holder_id} no longer holds the lock for conversation {self.conversation_id!r}"
            )
        if history.conversation_id != self.conversation_id:
            raise CrossConversationMismatch(
                f"token for {self.conversation_id!r} cannot write ledger of {history.conversation_id!r}"
            )

    def record_extension(
        self,
        history: KeyHistory,
        segment: KeyInterval,
        reason: str,
        kex_id: Optional[str] = None,
    ) -> KeyOperation:
        self._check(history)
        return history.record_extension(segment, reason, kex_id)

    def record_consumption(
        self,
        history: KeyHistory,
        segment: KeyInterval,
        reason: str,
        message_id: Optional[str] = None,
    ) -> KeyOperation:
        self._check(history)
        return history.record_consumption(segment, reason, message_id)

    def release(self) -> None:
        if self._released:
            return
        self._registry.release(self)

    def __enter__(self) -> "ExclusiveAccess":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

    def __repr__(self) -> str:
        return (
            f"ExclusiveAccess(conversation_id={self.conversation_id!r}, "
            f"holder_id={self.holder_id!r}, held={self.held})"
        )


class ConversationLocks:
    """In-process registry of per-conversation write leases.

    Args:
        config: Timeout, retry schedule and lease duration.
        clock: Monotonic clock, injectable for tests.
        sleep: Sleep function, injectable for tests.
    """

    def __init__(
        self,
        config: Optional[LockConfig] = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config or LockConfig()
        self._clock = clock
        self._sleep = sleep
        self._mutex = threading.Lock()
        self._leases: dict[str, ExclusiveAccess] = {}

    def _current_lease(self, conversation_id: str) -> Optional[ExclusiveAccess]:
        with self._mutex:
            return self._leases.get(conversation_id)

    def _is_expired(self, lease: ExclusiveAccess, now: float) -> bool:
        return now - lease.acquired_at >= self.config.lease_seconds

    def _try_acquire(self, conversation_id: str, holder_id: str) -> Optional[ExclusiveAccess]:
        with self._mutex:
            now = self._clock()
            existing = self._leases.get(conversation_id)
            if existing is not None:
                if not self._is_expired(existing, now):
                    logger.debug("lock for %s held by %s", conversation_id, existing.holder_id)
                    return None
                logger.warning(
                    "lock for %s expired (was held by %s), stealing it for %s",
                    conversation_id, existing.holder_id, holder_id,
                )
                existing._released = True
            token = ExclusiveAccess(self, conversation_id, holder_id, now)
            self._leases[conversation_id] = token
            return token

    def acquire(self, conversation_id: str, holder_id: str) -> ExclusiveAccess:
        """Obtain exclusive write access, retrying until the configured timeout.

        Raises:
            LockAcquisitionError: If the lock is still held when the timeout
                elapses.
        """

        deadline = self._clock() + self.config.timeout
        delays = self.config.retry_delays or (0.0,)
        attempt = 0
        while True:
            token = self._try_acquire(conversation_id, holder_id)
            if token is not None:
                logger.debug(
                    "lock for %s acquired by %s (attempt %d)", conversation_id, holder_id, attempt + 1
                )
                return token

            remaining = deadline - self._clock()
            if remaining <= 0:
                break
            delay = delays[min(attempt, len(delays) - 1)]
            self._sleep(min(delay, remaining))
            attempt += 1

        raise LockAcquisitionError(
            f"could not acquire lock for conversation {conversation_id!r} after {attempt + 1} attempts"
        )

    def release(self, token: ExclusiveAccess) -> None:
        with self._mutex:
            token._released = True
            if self._leases.get(token.conversation_id) is token:
                del self._leases[token.conversation_id]
                logger.debug("lock for %s released by %s", token.conversation_id, token.holder_id)
            else:
                logger.warning(
                    "lock for %s not released: %s no longer holds it",
                    token.conversation_id, token.holder_id,
                )

    def is_locked(self, conversation_id: str) -> bool:
        lease = self._current_lease(conversation_id)
        return lease is not None and not self._is_expired(lease, self._clock())

    def cleanup_expired(self) -> int:
        """Drop expired leases and return how many were removed."""

        with self._mutex:
            now = self._clock()
            expired = [cid for cid, lease in self._leases.items() if self._is_expired(lease, now)]
            for cid in expired:
                self._leases.pop(cid)._released = True
        return len(expired)
