# src/pagepilot/cache/bounded_cache.py

"""
Size- and time-bounded LRU cache.

Values are stored JSON-serialized; the UTF-8 length of the payload is the
entry size. Writes that would overflow max_size_bytes evict least recently
used entries first, down to an empty cache if the new entry alone exceeds
the budget. Expired entries are purged lazily on access and by the optional
janitor loop.

Cache failures never reach the caller: a write that cannot be serialized
returns False, a payload that cannot be read back counts as a miss.

All public methods take an internal lock: the janitor runs on the background
loop thread while console commands touch the same cache from the main thread.
"""

from __future__ import annotations

import asyncio
import json
import logging
import threading
import time
from collections import OrderedDict
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from ..core.errors import CacheError

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


@dataclass(slots=True)
class CacheEntry:
    key: str
    payload: str
    size: int
    created_at: float
    expires_at: float
    hit_count: int = 0


@dataclass(slots=True, frozen=True)
class CacheMetrics:
    hits: int
    misses: int
    hit_rate: float
    total_size: int
    entry_count: int
    evictions: int


class BoundedCache:
    def __init__(
        self,
        max_size_bytes: int,
        default_ttl_seconds: float,
        *,
        clock: Clock = time.monotonic,
        name: str = "cache",
    ) -> None:
        if max_size_bytes <= 0:
            raise ValueError("max_size_bytes must be positive")
        if default_ttl_seconds <= 0:
            raise ValueError("default_ttl_seconds must be positive")
        self.max_size_bytes = int(max_size_bytes)
        self.default_ttl_seconds = float(default_ttl_seconds)
        self.name = name
        self._clock = clock
        self._lock = threading.RLock()
        # Ordered oldest access first.
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._total_size = 0
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    # ---- internals ----

    @staticmethod
    def _serialize(value: Any) -> str:
        try:
            return json.dumps(value, ensure_ascii=False, separators=(",", ":"))
        except (TypeError, ValueError) as e:
            raise CacheError(f"value is not serializable: {e}") from e

    @staticmethod
    def _deserialize(payload: str) -> Any:
        try:
            return json.loads(payload)
        except ValueError as e:
            raise CacheError(f"corrupt cache payload: {e}") from e

    def _remove(self, key: str) -> CacheEntry | None:
        entry = self._entries.pop(key, None)
        if entry is not None:
            self._total_size -= entry.size
        return entry

    def _is_expired(self, entry: CacheEntry, now: float) -> bool:
        return now > entry.expires_at

    # ---- public API ----

    def set(self, key: str, value: Any, ttl: float | None = None) -> bool:
        try:
            payload = self._serialize(value)
        except CacheError:
            logger.warning("[%s] failed to cache key=%s", self.name, key, exc_info=True)
            return False

        size = len(payload.encode("utf-8"))
        with self._lock:
            self._remove(key)

            freed = 0
            while self._entries and self._total_size + size > self.max_size_bytes:
                _, evicted = self._entries.popitem(last=False)
                self._total_size -= evicted.size
                self._evictions += 1
                freed += evicted.size
            if freed:
                logger.debug("[%s] evicted entries, freed %d bytes", self.name, freed)
            if size > self.max_size_bytes:
                logger.warning(
                    "[%s] entry key=%s is %d bytes, over the %d byte budget",
                    self.name,
                    key,
                    size,
                    self.max_size_bytes,
                )

            now = self._clock()
            self._entries[key] = CacheEntry(
                key=key,
                payload=payload,
                size=size,
                created_at=now,
                expires_at=now + (self.default_ttl_seconds if ttl is None else float(ttl)),
            )
            self._total_size += size
        return True

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None

            if self._is_expired(entry, self._clock()):
                self._remove(key)
                self._misses += 1
                return None

            try:
                value = self._deserialize(entry.payload)
            except CacheError:
                logger.warning("[%s] dropping unreadable entry key=%s", self.name, key, exc_info=True)
                self._remove(key)
                self._misses += 1
                return None

            entry.hit_count += 1
            self._entries.move_to_end(key)
            self._hits += 1
            return value

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._remove(key) is not None

    def invalidate_by_pattern(self, substring: str) -> int:
        with self._lock:
            keys = [k for k in self._entries if substring in k]
            for k in keys:
                self._remove(k)
        if keys:
            logger.info("[%s] invalidated %d entries matching %r", self.name, len(keys), substring)
        return len(keys)

    def preload(self, entries: Iterable[Any]) -> int:
        """
        Bulk insert. Each item is (key, value), (key, value, ttl) or a mapping
        with "key", "value" (or "data") and optional "ttl".
        """
        loaded = 0
        total = 0
        for item in entries:
            total += 1
            try:
                if isinstance(item, Mapping):
                    key = item["key"]
                    value = item["value"] if "value" in item else item["data"]
                    ttl = item.get("ttl")
                else:
                    key, value, *rest = item
                    ttl = rest[0] if rest else None
            except (KeyError, TypeError, ValueError):
                logger.warning("[%s] skipping malformed preload item %r", self.name, item)
                continue
            if self.set(str(key), value, ttl):
                loaded += 1
        logger.info("[%s] preloaded %d/%d entries", self.name, loaded, total)
        return loaded

    def purge_expired(self) -> int:
        with self._lock:
            now = self._clock()
            expired = [k for k, e in self._entries.items() if self._is_expired(e, now)]
            for k in expired:
                self._remove(k)
        if expired:
            logger.debug("[%s] cleanup removed %d expired entries", self.name, len(expired))
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._total_size = 0
            self._hits = 0
            self._misses = 0
            self._evictions = 0

    def dispose(self) -> None:
        self.clear()

    def metrics(self) -> CacheMetrics:
        with self._lock:
            accesses = self._hits + self._misses
            return CacheMetrics(
                hits=self._hits,
                misses=self._misses,
                hit_rate=(self._hits / accesses) if accesses else 0.0,
                total_size=self._total_size,
                entry_count=len(self._entries),
                evictions=self._evictions,
            )

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            entry = self._entries.get(key)  # type: ignore[arg-type]
            return entry is not None and not self._is_expired(entry, self._clock())


async def run_cache_janitor(cache: BoundedCache, *, interval_seconds: float = 300.0) -> None:
    """
    Periodically purge expired entries.

    To stop the janitor, cancel the coroutine/task.
    """
    sleep_s = max(0.5, float(interval_seconds))
    while True:
        await asyncio.sleep(sleep_s)
        try:
            cache.purge_expired()
        except Exception:
            logger.exception("[%s] cleanup failed", cache.name)
