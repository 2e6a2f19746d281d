"""Read-through response caches for the NHTSA and search clients.

Entries are immutable lookups (decoded VINs, recall lists, search
snippets), so one cache per process is shared across requests.
"""

from __future__ import annotations

import time
from collections import OrderedDict
from typing import Any, Mapping

_DEFAULT_TTL_SECONDS = 900
_DEFAULT_MAX_ENTRIES = 512


def cache_key(url: str, params: Mapping[str, Any] | None = None) -> str:
    """Stable key regardless of parameter order."""
    if not params:
        return url
    query = "&".join(f"{k}={params[k]}" for k in sorted(params))
    return f"{url}?{query}"


class TTLCache:
    """Bounded cache; entries expire ``ttl`` seconds after being stored."""

    def __init__(
        self, ttl: float = _DEFAULT_TTL_SECONDS, *, max_entries: int = _DEFAULT_MAX_ENTRIES
    ) -> None:
        self.ttl = ttl
        self.max_entries = max_entries
        self._entries: OrderedDict[str, tuple[float, Any]] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if time.monotonic() >= expires_at:
            del self._entries[key]
            return None
        self._entries.move_to_end(key)
        return value

    def set(self, key: str, value: Any) -> None:
        self._entries[key] = (time.monotonic() + self.ttl, value)
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    def clear(self) -> None:
        self._entries.clear()


SHARED_NHTSA_CACHE = TTLCache()
SHARED_SEARCH_CACHE = TTLCache(ttl=300)
