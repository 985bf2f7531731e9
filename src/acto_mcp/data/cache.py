"""Short-TTL response cache with lazy expiry."""

import hashlib
import json
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any


@dataclass
class CacheEntry:
    """A cached read result."""

    key: str
    value: Any
    stored_at: float


_MISSING = object()


def make_key(operation: str, params: dict[str, Any] | None, scope: str | None = None) -> str:
    """Build a deterministic cache key.

    `scope` separates results fetched under different credentials; only its
    digest ends up in the key.
    """
    serialized = json.dumps(params or {}, sort_keys=True, separators=(",", ":"), default=str)
    key = f"{operation}:{serialized}"
    if scope:
        key += ":" + hashlib.sha256(scope.encode("utf-8")).hexdigest()[:16]
    return key


class ResponseCache:
    """In-memory cache where entries are reusable while younger than `ttl`.

    Stale entries are never evicted, only ignored and later overwritten.
    """

    def __init__(self, ttl: float, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str, default: Any = _MISSING) -> Any:
        entry = self._entries.get(key)
        if entry is None or self._clock() - entry.stored_at >= self.ttl:
            return default
        return entry.value

    def lookup(self, key: str) -> tuple[bool, Any]:
        """Return (hit, value)."""
        value = self.get(key)
        if value is _MISSING:
            return False, None
        return True, value

    def set(self, key: str, value: Any) -> None:
        self._entries[key] = CacheEntry(key=key, value=value, stored_at=self._clock())

    def invalidate(self, prefix: str | None = None) -> int:
        """Drop entries whose key starts with `prefix` (all when None)."""
        if prefix is None:
            count = len(self._entries)
            self._entries.clear()
            return count
        doomed = [key for key in self._entries if key.startswith(prefix)]
        for key in doomed:
            del self._entries[key]
        return len(doomed)
