import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from .config import CACHE_MAX_ENTRIES, CACHE_TTL_SECONDS


@dataclass
class CacheEntry:
    key: str
    value: Any
    stored_at: float


def make_cache_key(namespace: str, **fields: Any) -> str:
    """
    Case-insensitive key from the identifying fields of a query.
    Fields are sorted by name so GET params and POST bodies map to the same key.
    """
    parts = []
    for name in sorted(fields):
        value = fields[name]
        text = "" if value is None else str(value).strip().lower()
        parts.append(f"{name}={text}")
    return f"{namespace.lower()}|" + "|".join(parts)


class TTLCache:
    """Bounded in-memory cache; expiry is checked lazily on read, eviction is oldest-first."""

    def __init__(self,
                 ttl: float = CACHE_TTL_SECONDS,
                 max_entries: int = CACHE_MAX_ENTRIES,
                 clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self.max_entries = max_entries
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._clock() - entry.stored_at > self.ttl:
                del self._entries[key]
                return None
            return entry.value

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            if key not in self._entries and len(self._entries) >= self.max_entries:
                oldest = min(self._entries.values(), key=lambda e: e.stored_at)
                del self._entries[oldest.key]
            self._entries[key] = CacheEntry(key=key, value=value, stored_at=self._clock())

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._entries
