"""In-process TTL cache used by the API clients."""
from __future__ import annotations

import time
from typing import Any, Callable, Dict, Hashable, Optional, Tuple


class TTLCache:
    """Dictionary cache whose entries expire ``ttl_seconds`` after being set."""

    def __init__(self, ttl_seconds: float, *, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._items: Dict[Hashable, Tuple[float, Any]] = {}

    def get(self, key: Hashable) -> Optional[Any]:
        item = self._items.get(key)
        if item is None:
            return None
        stored_at, value = item
        if self._clock() - stored_at < self.ttl_seconds:
            return value
        del self._items[key]
        return None

    def set(self, key: Hashable, value: Any) -> None:
        self._items[key] = (self._clock(), value)

    def clear(self) -> None:
        self._items.clear()

    def __contains__(self, key: Hashable) -> bool:
        return self.get(key) is not None

    def __len__(self) -> int:
        return len(self._items)


__all__ = ["TTLCache"]
