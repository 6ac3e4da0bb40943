from __future__ import annotations

import hashlib
import json
import time
from dataclasses import dataclass
from typing import Any, Callable

from cachetools import LRUCache


@dataclass(frozen=True)
class CacheEntry:
    value: Any
    stored_at: float
    ttl: float


def make_key(operation: str, resource_id: str = "", **params: Any) -> str:
    """Deterministic cache key: ``operation:resource_id:<hash of params>``.

    The readable prefix lets callers drop every entry for one resource.
    """
    canonical = json.dumps(params, sort_keys=True, default=str, separators=(",", ":"))
    digest = hashlib.sha256(f"{operation}|{canonical}".encode()).hexdigest()[:32]
    return f"{key_prefix(operation, resource_id)}{digest}"


def key_prefix(operation: str, resource_id: str = "") -> str:
    return f"{operation}:{resource_id}:"


class ResponseCache:
    """Short-TTL in-memory response cache with lazy expiry.

    Expired entries are dropped when read. The store is capped at
    ``max_entries``; past that the least recently used entry is evicted, so
    one-off search keys that are never read again cannot pile up.
    Not shared between processes.
    """

    def __init__(
        self, max_entries: int = 2048, clock: Callable[[], float] = time.monotonic
    ) -> None:
        self._entries: LRUCache[str, CacheEntry] = LRUCache(maxsize=max_entries)
        self._clock = clock

    def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() - entry.stored_at > entry.ttl:
            del self._entries[key]
            return None
        return entry.value

    def set(self, key: str, value: Any, ttl: float) -> None:
        self._entries[key] = CacheEntry(value=value, stored_at=self._clock(), ttl=ttl)

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def delete_prefix(self, prefix: str) -> int:
        doomed = [k for k in list(self._entries) if k.startswith(prefix)]
        for key in doomed:
            del self._entries[key]
        return len(doomed)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
