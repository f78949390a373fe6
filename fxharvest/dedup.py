"""
Content Deduplicator — SHA-256 fingerprints of decoded image bytes.

Two images with the same fingerprint are the same image, whatever
reference they were fetched from.
"""

from __future__ import annotations

import hashlib
from typing import Iterable, Optional, Set


def fingerprint(data: bytes) -> str:
    """Return the SHA-256 hex digest of *data*."""
    return hashlib.sha256(data).hexdigest()


class ContentDeduplicator:
    """Set of fingerprints already persisted in the current session.

    Not thread-safe; the controller only calls it from its single step
    sequence.
    """

    def __init__(self, seen: Optional[Iterable[str]] = None):
        self._seen: Set[str] = set(seen or ())

    @staticmethod
    def fingerprint(data: bytes) -> str:
        return fingerprint(data)

    def is_duplicate(self, digest: str) -> bool:
        return digest in self._seen

    def record(self, digest: str) -> None:
        self._seen.add(digest)

    def check_and_record(self, digest: str) -> bool:
        """Record *digest*; return True if it was not seen before."""
        if digest in self._seen:
            return False
        self._seen.add(digest)
        return True

    def forget(self, digest: str) -> None:
        self._seen.discard(digest)

    def reset(self) -> None:
        self._seen.clear()

    def __contains__(self, digest: object) -> bool:
        return digest in self._seen

    def __len__(self) -> int:
        return len(self._seen)
