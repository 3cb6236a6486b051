"""Time-bounded cache for query results, owned by whoever runs the queries."""

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from ..observability.logging import get_logger

logger = get_logger(__name__)


@dataclass
class CacheEntry:
    value: Any
    stored_at: float
    ttl: float

    def is_valid(self, now: float) -> bool:
        return now - self.stored_at < self.ttl


class TTLCache:
    """Key/value cache whose entries expire ``ttl`` seconds after being stored."""

    def __init__(self, default_ttl: float = 300.0, clock: Callable[[], float] = time.monotonic):
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}

    def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if not entry.is_valid(self._clock()):
            del self._entries[key]
            return None
        return entry.value

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        self._entries[key] = CacheEntry(
            value=value,
            stored_at=self._clock(),
            ttl=self.default_ttl if ttl is None else ttl,
        )

    def invalidate(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()
        logger.debug("Query cache cleared")

    def __len__(self) -> int:
        return len(self._entries)
