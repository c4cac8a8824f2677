"""Digest primitives for ledger integrity checks."""

from __future__ import annotations

from cryptography.hazmat.primitives import hashes


def ledger_digest(data: bytes, *, digest_size: int = 32) -> bytes:
    """Compute a BLAKE2b digest over canonical ledger bytes.

    Args:
        data: Canonical encoding of the ledger operations.
        digest_size: Output size in bytes (1..64).

    Returns:
        Digest bytes.
    """

    if not (1 <= digest_size <= 64):
        raise ValueError("digest_size must be in range 1..64")

    # cryptography only exposes the full-width BLAKE2b; truncate for shorter tags.
    h = hashes.Hash(hashes.BLAKE2b(64))
    h.update(digest_size.to_bytes(1, "big"))
    h.update(data)
    return h.finalize()[:digest_size]
