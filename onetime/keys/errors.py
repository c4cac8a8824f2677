"""Shared exceptions for :mod:`onetime.keys`.

Every error here signals a protocol bug upstream. The algebra and the ledger
abort the single operation that raised and never clamp or resynchronize, since
tolerating a misaligned offset could hand out key bytes twice.
"""

from __future__ import annotations


class KeyAlgebraError(ValueError):
    """Base error for key interval and key history operations."""


class InvalidInterval(KeyAlgebraError):
    """Raised when an interval is constructed with ``start_index > end_index``."""


class CrossConversationMismatch(KeyAlgebraError):
    """Raised when algebra operands belong to different conversations."""


class NonContiguousExtension(KeyAlgebraError):
    """Raised when an extension segment does not start at the current end."""


class NonContiguousConsumption(KeyAlgebraError):
    """Raised when a consumption segment does not start at the current start."""


class InsufficientKeyMaterial(KeyAlgebraError):
    """Raised when a consumption segment runs past the available key bytes."""


class LedgerCorruption(KeyAlgebraError):
    """Raised when a persisted key history fails its consistency checks."""


class LockAcquisitionError(Exception):
    """Raised when exclusive write access to a ledger cannot be obtained or has been lost."""
