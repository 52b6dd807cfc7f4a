from __future__ import annotations

import json
import threading
import time
from typing import Any, Callable, Protocol

import redis.asyncio as redis


class CacheBackend(Protocol):
    """Shared L2 store. Values are JSON-compatible; keys are scoped by namespace."""

    async def get_many(self, namespace: str, keys: list[str]) -> dict[str, Any]:
        ...

    async def set_many(self, namespace: str, items: dict[str, Any], ttl: float) -> None:
        ...

    async def append_history(self, kind: str, record: dict[str, Any]) -> None:
        ...


class MemoryBackend:
    """Process-local L2. Used when no Redis is configured, and as the fake L2 in tests."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[tuple[str, str], tuple[float, float, Any]] = {}
        self.history: dict[str, list[dict[str, Any]]] = {}
        self.get_calls = 0
        self.set_calls = 0

    async def get_many(self, namespace: str, keys: list[str]) -> dict[str, Any]:
        self.get_calls += 1
        now = self._clock()
        found: dict[str, Any] = {}
        with self._lock:
            for key in keys:
                entry = self._entries.get((namespace, key))
                if entry is None:
                    continue
                inserted_at, ttl, value = entry
                if now - inserted_at >= ttl:
                    del self._entries[(namespace, key)]
                    continue
                found[key] = value
        return found

    async def set_many(self, namespace: str, items: dict[str, Any], ttl: float) -> None:
        self.set_calls += 1
        now = self._clock()
        with self._lock:
            for key, value in items.items():
                self._entries[(namespace, key)] = (now, ttl, value)

    async def append_history(self, kind: str, record: dict[str, Any]) -> None:
        with self._lock:
            self.history.setdefault(kind, []).append(record)

    def size(self, namespace: str | None = None) -> int:
        with self._lock:
            if namespace is None:
                return len(self._entries)
            return sum(1 for ns, _ in self._entries if ns == namespace)


class RedisBackend:
    """Shared L2 on Redis: one MGET per batch lookup, pipelined SETEX for writes."""

    def __init__(self, redis_url: str, prefix: str = "lunchbox", history_max_len: int = 1000) -> None:
        self.redis = redis.from_url(redis_url, decode_responses=True)
        self.prefix = prefix
        self.history_max_len = history_max_len

    def _name(self, namespace: str, key: str) -> str:
        return f"{self.prefix}:{namespace}:{key}"

    async def get_many(self, namespace: str, keys: list[str]) -> dict[str, Any]:
        if not keys:
            return {}
        raw = await self.redis.mget([self._name(namespace, k) for k in keys])
        return {k: json.loads(v) for k, v in zip(keys, raw) if v is not None}

    async def set_many(self, namespace: str, items: dict[str, Any], ttl: float) -> None:
        if not items:
            return
        async with self.redis.pipeline(transaction=False) as pipe:
            for key, value in items.items():
                pipe.setex(self._name(namespace, key), max(1, int(ttl)), json.dumps(value))
            await pipe.execute()

    async def append_history(self, kind: str, record: dict[str, Any]) -> None:
        name = f"{self.prefix}:history:{kind}"
        async with self.redis.pipeline(transaction=False) as pipe:
            pipe.lpush(name, json.dumps(record, default=str))
            pipe.ltrim(name, 0, self.history_max_len - 1)
            await pipe.execute()

    async def close(self) -> None:
        await self.redis.aclose()
