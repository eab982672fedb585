from __future__ import annotations

from dataclasses import dataclass
import time
from typing import Callable, Generic, Iterator, Optional, TypeVar

K = TypeVar("K")
V = TypeVar("V")

Clock = Callable[[], float]


@dataclass
class _Entry(Generic[V]):
    value: V
    expires_at: float


class TTLCache(Generic[K, V]):
    """In-memory TTL cache.

    Entries are dropped lazily on access; `prune()` sweeps everything stale.
    The clock returns epoch seconds and defaults to `time.time`.
    """

    def __init__(self, default_ttl_seconds: int = 120, clock: Optional[Clock] = None) -> None:
        self._default_ttl = max(1, int(default_ttl_seconds))
        self._clock: Clock = clock or time.time
        self._store: dict[K, _Entry[V]] = {}

    def _expired(self, entry: _Entry[V]) -> bool:
        return entry.expires_at <= self._clock()

    def get(self, key: K) -> Optional[V]:
        entry = self._store.get(key)
        if entry is None:
            return None
        if self._expired(entry):
            self._store.pop(key, None)
            return None
        return entry.value

    def set(self, key: K, value: V, ttl_seconds: Optional[float] = None) -> None:
        ttl = self._default_ttl if ttl_seconds is None else max(1.0, float(ttl_seconds))
        self._store[key] = _Entry(value=value, expires_at=self._clock() + ttl)

    def delete(self, key: K) -> None:
        self._store.pop(key, None)

    def clear(self) -> None:
        self._store.clear()

    def keys(self) -> Iterator[K]:
        """Iterate live keys (snapshot, safe against concurrent deletes)."""
        for key, entry in list(self._store.items()):
            if not self._expired(entry):
                yield key

    def prune(self) -> int:
        now = self._clock()
        stale = [k for k, v in self._store.items() if v.expires_at <= now]
        for k in stale:
            self._store.pop(k, None)
        return len(stale)

    def __len__(self) -> int:
        return sum(1 for _ in self.keys())
