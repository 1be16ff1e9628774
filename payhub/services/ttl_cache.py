"""Small in-process cache with per-entry expiry."""

from typing import Any, Hashable, Optional


class TTLCache:
    """Key/value cache whose entries expire ``ttl_seconds`` after being set.

    Callers pass the current time (any monotonic seconds value) to every
    call, so expiry is fully deterministic under test.
    """

    def __init__(self, ttl_seconds: float):
        if ttl_seconds < 0:
            raise ValueError("ttl_seconds must be >= 0")
        self.ttl_seconds = ttl_seconds
        self._entries: dict[Hashable, tuple[float, Any]] = {}

    def get(self, key: Hashable, now: float, default: Any = None) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            return default
        expires_at, value = entry
        if now >= expires_at:
            del self._entries[key]
            return default
        return value

    def contains(self, key: Hashable, now: float) -> bool:
        entry = self._entries.get(key)
        return entry is not None and now < entry[0]

    def set(self, key: Hashable, value: Any, now: float) -> None:
        self._entries[key] = (now + self.ttl_seconds, value)

    def invalidate(self, key: Optional[Hashable] = None) -> None:
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)

    def __len__(self) -> int:
        return len(self._entries)
