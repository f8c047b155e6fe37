# threatlens/services/signal_cache.py
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

from .signal_collectors import SignalOpinion

logger = logging.getLogger(__name__)

CacheKey = Tuple[str, str]  # (source, canonical domain)


@dataclass(frozen=True)
class CacheEntry:
    opinion: SignalOpinion
    expires_at: float


class SignalCache:
    """
    Per-(source, domain) opinion cache with a fixed TTL.
    Guarded by a lock so concurrent analyses can share it.
    """

    def __init__(self, ttl: float = 1800, max_entries: int = 1000,
                 clock: Optional[Callable[[], float]] = None):
        self.ttl = ttl
        self.max_entries = max_entries
        self._clock = clock or time.monotonic
        self._entries: Dict[CacheKey, CacheEntry] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, source: str, domain: str) -> Optional[SignalOpinion]:
        """Get cached opinion if not expired"""
        key = (source, domain)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None
            if self._clock() >= entry.expires_at:
                del self._entries[key]
                self.misses += 1
                return None
            self.hits += 1
            return entry.opinion

    def set(self, source: str, domain: str, opinion: SignalOpinion, ttl: Optional[float] = None):
        """Cache opinion with TTL"""
        expires_at = self._clock() + (self.ttl if ttl is None else ttl)
        with self._lock:
            self._entries[(source, domain)] = CacheEntry(opinion=opinion, expires_at=expires_at)

            # Simple cleanup: drop the oldest 20% when over the bound
            if len(self._entries) > self.max_entries:
                sorted_keys = sorted(self._entries, key=lambda k: self._entries[k].expires_at)
                evict = max(1, self.max_entries // 5)
                for k in sorted_keys[:evict]:
                    del self._entries[k]
                logger.info(f"Signal cache evicted {evict} entries")

    def clear(self):
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                "entries": len(self._entries),
                "hits": self.hits,
                "misses": self.misses,
                "max_entries": self.max_entries,
            }
