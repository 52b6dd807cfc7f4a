from __future__ import annotations

import logging
import os
import time
import uuid
from collections import OrderedDict
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Callable

from fastapi import Depends, FastAPI, Request
from fastapi.responses import StreamingResponse
from starlette.middleware.sessions import SessionMiddleware

from .cache.config import DEFAULT_CACHE_CONFIG
from .cache.tiered import VenueCaches, build_caches
from .pipeline.orchestrator import Orchestrator, PipelineState
from .providers.config import DEFAULT_PROVIDER_CONFIG
from .providers.places import GooglePlacesClient, SearchProvider
from .providers.routing import GoogleDistanceMatrixBackend, OsrmBackend, RoutingBackend
from .recommendations.models import Preferences

logger = logging.getLogger(__name__)

MAX_SESSIONS = int(os.environ.get("MAX_SESSIONS", "1000"))
SESSION_IDLE_TTL = float(os.environ.get("SESSION_IDLE_TTL", str(30 * 60)))


@dataclass
class Services:
    """Process-wide providers and caches shared by every session."""

    caches: VenueCaches
    places: SearchProvider
    primary_routing: RoutingBackend
    secondary_routing: RoutingBackend | None = None

    async def close(self) -> None:
        await self.caches.writer.flush()
        for client in (self.places, self.primary_routing, self.secondary_routing):
            aclose = getattr(client, "aclose", None)
            if aclose is not None:
                await aclose()
        close = getattr(self.caches.backend, "close", None)
        if close is not None:
            await close()


class SessionRegistry:
    """Orchestrators by session id, least recently used first.

    Sessions idle longer than *idle_ttl* are evicted, and the oldest ones go
    once there are more than *max_sessions*. A session with a search in
    flight is never evicted.
    """

    def __init__(
        self,
        max_sessions: int = MAX_SESSIONS,
        idle_ttl: float = SESSION_IDLE_TTL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_sessions = max_sessions
        self.idle_ttl = idle_ttl
        self._clock = clock
        self._entries: OrderedDict[str, tuple[Orchestrator, float]] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._entries

    def values(self) -> list[Orchestrator]:
        return [orchestrator for orchestrator, _ in self._entries.values()]

    def clear(self) -> None:
        self._entries.clear()

    def get_or_create(self, session_id: str, factory: Callable[[], Orchestrator]) -> Orchestrator:
        now = self._clock()
        entry = self._entries.pop(session_id, None)
        orchestrator = entry[0] if entry else factory()
        self._entries[session_id] = (orchestrator, now)
        self._evict(now, keep=session_id)
        return orchestrator

    def _evictable(self, session_id: str, keep: str) -> bool:
        orchestrator, _ = self._entries[session_id]
        return session_id != keep and orchestrator.state != PipelineState.PROCESSING

    def _evict(self, now: float, keep: str) -> None:
        for session_id, (_, last_used) in list(self._entries.items()):
            if now - last_used > self.idle_ttl and self._evictable(session_id, keep):
                del self._entries[session_id]
        overflow = len(self._entries) - self.max_sessions
        for session_id in list(self._entries):
            if overflow <= 0:
                break
            if self._evictable(session_id, keep):
                del self._entries[session_id]
                overflow -= 1
        if overflow > 0:
            logger.warning("%d sessions over the cap are still searching", overflow)


_services: Services | None = None
_orchestrators = SessionRegistry()


def build_services() -> Services:
    return Services(
        caches=build_caches(DEFAULT_CACHE_CONFIG),
        places=GooglePlacesClient(DEFAULT_PROVIDER_CONFIG),
        primary_routing=GoogleDistanceMatrixBackend(DEFAULT_PROVIDER_CONFIG),
        secondary_routing=OsrmBackend(DEFAULT_PROVIDER_CONFIG),
    )


def get_services() -> Services:
    global _services
    if _services is None:
        _services = build_services()
    return _services


def get_orchestrator(request: Request, services: Services = Depends(get_services)) -> Orchestrator:
    """One orchestrator per browser session, so a new search supersedes the last."""
    session_id = request.session.get("session_id")
    if not session_id:
        session_id = uuid.uuid4().hex
        request.session["session_id"] = session_id
    return _orchestrators.get_or_create(
        session_id,
        lambda: Orchestrator(
            services.places,
            services.caches,
            services.primary_routing,
            services.secondary_routing,
        ),
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    yield
    global _services
    for orchestrator in _orchestrators.values():
        await orchestrator.shutdown()
    _orchestrators.clear()
    if _services is not None:
        _services.caches.log_summary()
        await _services.close()
        _services = None


app = FastAPI(title="Lunchbox Venue Recommendation API", version="1.0.0", lifespan=lifespan)
app.add_middleware(
    SessionMiddleware,
    secret_key=os.environ.get("SESSION_SECRET", "lunchbox-secret-change-in-production"),
)


# ── Public endpoints ─────────────────────────────────────────────────────


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/search")
async def search(
    body: Preferences,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> StreamingResponse:
    async def stream() -> AsyncIterator[str]:
        async for event in orchestrator.run(body):
            yield event.model_dump_json() + "\n"

    return StreamingResponse(stream(), media_type="application/x-ndjson")


@app.post("/search/reset")
def reset_search(orchestrator: Orchestrator = Depends(get_orchestrator)) -> dict:
    orchestrator.reset()
    return orchestrator.snapshot()


@app.get("/state")
def state(orchestrator: Orchestrator = Depends(get_orchestrator)) -> dict:
    return orchestrator.snapshot()


@app.get("/cache/stats")
def cache_stats(services: Services = Depends(get_services)) -> dict:
    return services.caches.stats()


def main() -> None:
    import uvicorn

    uvicorn.run(
        app,
        host=os.environ.get("HOST", "0.0.0.0"),
        port=int(os.environ.get("PORT", "8000")),
    )


if __name__ == "__main__":
    main()
