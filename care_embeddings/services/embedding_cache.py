"""In-memory result cache for embeddings.

Entries are keyed by normalized text and expire after a TTL. Expired
entries are dropped lazily on lookup and during sweeps; a sweep runs when
the cache grows past a size threshold or on a random fraction of writes.
The cache holds no persistent state, so a cold start yields identical
results at a higher cost.
"""

import logging
import random
import threading
import time
from collections import Counter, OrderedDict
from collections.abc import Callable

from care_embeddings.domain.models import CacheEntry, CacheStats, EmbeddingResult

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 3600.0
SWEEP_SIZE_THRESHOLD = 100
SWEEP_PROBABILITY = 0.1


def normalize_key(text: str) -> str:
    """Normalize text into a cache key (lower-cased, surrounding whitespace removed)."""
    return text.strip().lower()


class EmbeddingCache:
    """Thread-safe TTL cache of embedding results.

    Args:
        ttl_seconds: Entry lifetime; an entry aged exactly ``ttl_seconds`` is still fresh
        max_entries: Hard bound; oldest entries are evicted first beyond it
        sweep_threshold: Sweep on write once the cache holds more entries than this
        sweep_probability: Chance of an opportunistic sweep on any other write
        clock: Monotonic clock, injectable for tests
        rng: Random source returning floats in [0, 1)
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        max_entries: int = 10_000,
        sweep_threshold: int = SWEEP_SIZE_THRESHOLD,
        sweep_probability: float = SWEEP_PROBABILITY,
        clock: Callable[[], float] = time.monotonic,
        rng: Callable[[], float] = random.random,
    ):
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._sweep_threshold = sweep_threshold
        self._sweep_probability = sweep_probability
        self._clock = clock
        self._rng = rng
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    @property
    def ttl_seconds(self) -> float:
        """Return the configured TTL."""
        return self._ttl

    def _is_expired(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.inserted_at > self._ttl

    def get(self, text: str) -> CacheEntry | None:
        """Look up a fresh entry, evicting it if it has expired.

        Args:
            text: Raw text; normalized before lookup

        Returns:
            The cache entry, or None on miss or expiry
        """
        key = normalize_key(text)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            if self._is_expired(entry, self._clock()):
                del self._entries[key]
                self._evictions += 1
                self._misses += 1
                logger.debug(f"Cache entry expired for key of length {len(key)}")
                return None
            self._hits += 1
            return entry

    def peek(self, text: str) -> CacheEntry | None:
        """Return a fresh entry without counting a hit or miss or evicting anything."""
        key = normalize_key(text)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or self._is_expired(entry, self._clock()):
                return None
            return entry

    def put(self, text: str, result: EmbeddingResult) -> CacheEntry:
        """Store a result under the normalized text, replacing any previous entry.

        Args:
            text: Raw text the result was generated for
            result: Result to cache

        Returns:
            The stored entry
        """
        key = normalize_key(text)
        with self._lock:
            entry = CacheEntry(key=key, result=result, inserted_at=self._clock())
            self._entries.pop(key, None)
            self._entries[key] = entry

            if len(self._entries) > self._sweep_threshold or self._rng() < self._sweep_probability:
                self.sweep()

            while len(self._entries) > self._max_entries:
                self._entries.popitem(last=False)
                self._evictions += 1
            return entry

    def sweep(self) -> int:
        """Remove every expired entry.

        Returns:
            Number of entries removed
        """
        with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._entries.items() if self._is_expired(entry, now)]
            for key in expired:
                del self._entries[key]
            self._evictions += len(expired)
            if expired:
                logger.debug(f"Swept {len(expired)} expired cache entries")
            return len(expired)

    def clear(self) -> int:
        """Drop every entry and reset counters.

        Returns:
            Number of entries dropped
        """
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            self._hits = 0
            self._misses = 0
            self._evictions = 0
            logger.info(f"Cleared {count} cache entries")
            return count

    def stats(self) -> CacheStats:
        """Return a snapshot of cache contents and effectiveness."""
        with self._lock:
            now = self._clock()
            entries = list(self._entries.values())
            ages = [now - entry.inserted_at for entry in entries]
            return CacheStats(
                size=len(entries),
                hits=self._hits,
                misses=self._misses,
                evictions=self._evictions,
                total_tokens=sum(entry.result.usage.total_tokens for entry in entries),
                total_cost=sum(entry.result.estimated_cost for entry in entries),
                model_distribution=dict(Counter(entry.result.model for entry in entries)),
                oldest_age_s=max(ages) if ages else None,
                newest_age_s=min(ages) if ages else None,
            )

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
