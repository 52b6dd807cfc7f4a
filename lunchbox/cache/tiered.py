from __future__ import annotations

import asyncio
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, Iterable, TypeVar

from ..recommendations.models import Duration, Venue
from .backends import CacheBackend, MemoryBackend, RedisBackend
from .config import COST_PER_CALL_EUR, DEFAULT_CACHE_CONFIG, CacheConfig

logger = logging.getLogger(__name__)

V = TypeVar("V")


class _Miss:
    def __repr__(self) -> str:
        return "MISS"

    def __bool__(self) -> bool:
        return False


MISS: Any = _Miss()


def _identity(value: Any) -> Any:
    return value


@dataclass
class CacheLookup(Generic[V]):
    found: dict[str, V] = field(default_factory=dict)
    missing: list[str] = field(default_factory=list)


class BackgroundWriter:
    """Runs L2 writes without blocking the caller.

    Failures are logged and counted, never raised. ``flush()`` waits for the
    writes still in flight.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()
        self.completed = 0
        self.failures = 0

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def submit(self, write: Awaitable[Any], description: str) -> asyncio.Task | None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop to run on; L1 already holds the value.
            if asyncio.iscoroutine(write):
                write.close()
            logger.debug("Dropped L2 write for %s: no running event loop", description)
            return None
        task = loop.create_task(self._guard(write, description))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _guard(self, write: Awaitable[Any], description: str) -> None:
        try:
            await write
            self.completed += 1
        except Exception:
            self.failures += 1
            logger.warning("L2 cache write failed for %s", description, exc_info=True)

    async def flush(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks))


class TieredCache(Generic[V]):
    """One logical cache: in-process L1 in front of a shared L2 backend."""

    def __init__(
        self,
        name: str,
        l1_ttl: float,
        l2_ttl: float,
        backend: CacheBackend | None = None,
        *,
        encode: Callable[[V], Any] = _identity,
        decode: Callable[[Any], V] = _identity,
        writer: BackgroundWriter | None = None,
        clock: Callable[[], float] = time.time,
        cost_per_hit: float = 0.0,
    ) -> None:
        self.name = name
        self.l1_ttl = l1_ttl
        self.l2_ttl = l2_ttl
        self.backend = backend
        self.writer = writer or BackgroundWriter()
        self._encode = encode
        self._decode = decode
        self._clock = clock
        self._cost_per_hit = cost_per_hit
        self._lock = threading.Lock()
        self._l1: dict[str, tuple[float, V]] = {}
        self._reset_counters()

    def _reset_counters(self) -> None:
        self.hits = 0
        self.misses = 0
        self.l1_hits = 0
        self.l2_hits = 0
        self.l2_errors = 0

    # ── L1 ────────────────────────────────────────────────────────────

    def _l1_lookup(self, keys: list[str]) -> tuple[dict[str, V], list[str]]:
        now = self._clock()
        found: dict[str, V] = {}
        missing: list[str] = []
        with self._lock:
            for key in keys:
                entry = self._l1.get(key)
                if entry and now - entry[0] < self.l1_ttl:
                    found[key] = entry[1]
                    continue
                if entry:
                    del self._l1[key]
                missing.append(key)
        return found, missing

    def _l1_store(self, items: dict[str, V]) -> None:
        now = self._clock()
        with self._lock:
            for key, value in items.items():
                self._l1[key] = (now, value)

    # ── Public API ────────────────────────────────────────────────────

    async def get(self, key: str) -> V | Any:
        lookup = await self.get_many([key])
        return lookup.found.get(key, MISS)

    async def get_many(self, keys: Iterable[str]) -> CacheLookup[V]:
        ordered = list(dict.fromkeys(keys))
        found, l1_missing = self._l1_lookup(ordered)
        l1_hits = len(found)

        l2_found: dict[str, V] = {}
        if l1_missing and self.backend is not None:
            try:
                raw = await self.backend.get_many(self.name, l1_missing)
            except Exception:
                self.l2_errors += 1
                logger.warning("L2 lookup failed for %s cache", self.name, exc_info=True)
                raw = {}
            for key, value in raw.items():
                try:
                    l2_found[key] = self._decode(value)
                except Exception:
                    logger.warning("Discarding undecodable L2 entry %s:%s", self.name, key, exc_info=True)
            if l2_found:
                self._l1_store(l2_found)
            found.update(l2_found)

        missing = [k for k in ordered if k not in found]
        self.l1_hits += l1_hits
        self.l2_hits += len(l2_found)
        self.hits += len(found)
        self.misses += len(missing)

        if ordered:
            logger.debug(
                "%s cache lookup: L1=%d, L2=%d, miss=%d",
                self.name, l1_hits, len(l2_found), len(missing),
            )
        return CacheLookup(found={k: found[k] for k in ordered if k in found}, missing=missing)

    def put(self, key: str, value: V) -> None:
        self.put_many({key: value})

    def put_many(self, items: dict[str, V]) -> None:
        """Write L1 now and hand the L2 write to the background writer."""
        if not items:
            return
        self._l1_store(items)
        if self.backend is None:
            return
        try:
            encoded = {k: self._encode(v) for k, v in items.items()}
        except Exception:
            logger.warning("Could not encode %s cache entries for L2", self.name, exc_info=True)
            return
        self.writer.submit(
            self.backend.set_many(self.name, encoded, self.l2_ttl),
            f"{self.name} cache ({len(encoded)} entries)",
        )

    def clear(self) -> None:
        with self._lock:
            self._l1.clear()
        self._reset_counters()

    def stats(self) -> dict[str, Any]:
        total = self.hits + self.misses
        with self._lock:
            size = len(self._l1)
        return {
            "size": size,
            "hits": self.hits,
            "misses": self.misses,
            "l1_hits": self.l1_hits,
            "l2_hits": self.l2_hits,
            "hit_rate": round(self.hits / total * 100, 1) if total > 0 else 0.0,
            "estimated_savings_eur": round(self.hits * self._cost_per_hit, 3),
        }


@dataclass
class VenueCaches:
    search: TieredCache[list[str]]
    details: TieredCache[Venue]
    distance: TieredCache[Duration]
    backend: CacheBackend | None
    writer: BackgroundWriter

    def all(self) -> list[TieredCache]:
        return [self.search, self.details, self.distance]

    def stats(self) -> dict[str, Any]:
        per_cache = {c.name: c.stats() for c in self.all()}
        hits = sum(s["hits"] for s in per_cache.values())
        total = hits + sum(s["misses"] for s in per_cache.values())
        return {
            **per_cache,
            "total_saved_calls": hits,
            "total_estimated_savings_eur": round(
                sum(s["estimated_savings_eur"] for s in per_cache.values()), 3
            ),
            "overall_hit_rate": round(hits / total * 100, 1) if total else 0.0,
            "pending_l2_writes": self.writer.pending,
        }

    def log_summary(self) -> None:
        stats = self.stats()
        logger.info(
            "Cache summary: saved %d calls (~EUR %.3f), hit rate %.1f%%",
            stats["total_saved_calls"],
            stats["total_estimated_savings_eur"],
            stats["overall_hit_rate"],
        )

    def clear(self) -> None:
        for cache in self.all():
            cache.clear()


def default_backend(config: CacheConfig = DEFAULT_CACHE_CONFIG) -> CacheBackend:
    if config.redis_url:
        return RedisBackend(config.redis_url, history_max_len=config.history_max_len)
    logger.info("REDIS_URL not set, using process-local L2 cache")
    return MemoryBackend()


def build_caches(
    config: CacheConfig = DEFAULT_CACHE_CONFIG,
    backend: CacheBackend | None = None,
    clock: Callable[[], float] = time.time,
) -> VenueCaches:
    backend = backend if backend is not None else default_backend(config)
    writer = BackgroundWriter()
    common = {"backend": backend, "writer": writer, "clock": clock}
    return VenueCaches(
        search=TieredCache(
            "search", config.search_l1_ttl, config.search_l2_ttl,
            encode=list, decode=list,
            cost_per_hit=COST_PER_CALL_EUR["search"], **common,
        ),
        details=TieredCache(
            "details", config.details_l1_ttl, config.details_l2_ttl,
            encode=lambda v: v.model_dump(mode="json"), decode=Venue.model_validate,
            cost_per_hit=COST_PER_CALL_EUR["details"], **common,
        ),
        distance=TieredCache(
            "distance", config.distance_l1_ttl, config.distance_l2_ttl,
            encode=lambda v: v.model_dump(mode="json"), decode=Duration.model_validate,
            cost_per_hit=COST_PER_CALL_EUR["distance"], **common,
        ),
        backend=backend,
        writer=writer,
    )
