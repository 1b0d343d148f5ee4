"""In-memory TTL cache for resume scan results."""

import hashlib
import threading
from typing import cast

from cachetools import TTLCache

from career_coach_api.models import ScanResponse


def content_digest(content: str) -> str:
    return hashlib.sha256(content.strip().encode("utf-8")).hexdigest()


class ScanCache:
    """Thread-safe cache keyed by the SHA-256 of the scanned text.

    Pasting the same resume twice should not cost a second model call.
    """

    def __init__(self, ttl_seconds: int = 3600, max_entries: int = 256):
        self._cache: TTLCache[str, ScanResponse] = TTLCache(maxsize=max_entries, ttl=ttl_seconds)
        self._lock = threading.Lock()

    def get(self, content: str) -> ScanResponse | None:
        """Return a copy of the cached result, or None if missing or expired."""
        with self._lock:
            result = self._cache.get(content_digest(content))
            return cast(ScanResponse, result).model_copy(deep=True) if result is not None else None

    def set(self, content: str, result: ScanResponse) -> None:
        with self._lock:
            self._cache[content_digest(content)] = result.model_copy(deep=True)

    def count(self) -> int:
        with self._lock:
            return len(self._cache)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()
