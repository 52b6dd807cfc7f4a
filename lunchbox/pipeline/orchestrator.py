from __future__ import annotations

import asyncio
import logging
import random
from datetime import datetime
from enum import Enum
from typing import Any, AsyncIterator, Callable, Literal, Union

from pydantic import BaseModel, Field

from ..cache.tiered import VenueCaches
from ..errors import ExhaustionError, FatalError
from ..llm.config import DEFAULT_LLM_CONFIG, LLMConfig
from ..planner.intent import plan_queries
from ..providers.places import SearchProvider
from ..providers.routing import RoutingBackend
from ..recommendations.models import (
    Candidate,
    FinalResult,
    Preferences,
    Recommendation,
    walk_config,
)
from ..recommendations.scoring import ProximityTier, apply_proximity_filter, rank_candidates
from ..recommendations.selector import select
from ..sourcing.candidates import CandidateSourcer
from ..sourcing.durations import DurationResolver, sample_candidates
from ..sourcing.hours import local_time
from .config import DEFAULT_PIPELINE_CONFIG, PipelineConfig

logger = logging.getLogger(__name__)

CASH_WARNING = "Note: This location may be cash-only."
LIMITED_POOL_SIZE = 5


class PipelineState(str, Enum):
    INPUT = "INPUT"
    PROCESSING = "PROCESSING"
    RESULTS = "RESULTS"
    NO_RESULTS = "NO_RESULTS"
    ERROR = "ERROR"


# ── Events ───────────────────────────────────────────────────────────────


class LogEvent(BaseModel):
    type: Literal["log"] = "log"
    text: str


class ProgressEvent(BaseModel):
    type: Literal["progress"] = "progress"
    value: int = Field(..., ge=0, le=100)


class ResultsEvent(BaseModel):
    type: Literal["results"] = "results"
    results: list[FinalResult]


class NoResultsEvent(BaseModel):
    type: Literal["no_results"] = "no_results"
    reason: str


class ErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    reason: str


PipelineEvent = Union[LogEvent, ProgressEvent, ResultsEvent, NoResultsEvent, ErrorEvent]

_DONE = object()


def _server_now() -> datetime:
    return datetime.now().astimezone()


def build_results(recs: list[Recommendation], candidates: list[Candidate]) -> list[FinalResult]:
    by_id = {c.venue.id: c for c in candidates}
    results = []
    for rec in recs:
        candidate = by_id.get(rec.venue_id)
        if candidate is None:
            continue
        cash_only = rec.is_cash_only or candidate.venue.is_cash_only
        results.append(FinalResult(
            venue=candidate.venue,
            recommendation=rec,
            walking_time_text=candidate.duration.text if candidate.duration else "N/A",
            walking_time_seconds=candidate.duration_seconds,
            cash_warning=CASH_WARNING if cash_only else None,
        ))
    return results


class Orchestrator:
    """
    Runs searches for one session and tracks its state.

    Only the newest run is current: starting another run (or resetting)
    supersedes it. A superseded run keeps executing so its provider calls
    and cache writes complete, but its events are no longer delivered and
    it no longer changes the state.
    """

    def __init__(
        self,
        provider: SearchProvider,
        caches: VenueCaches,
        primary_routing: RoutingBackend,
        secondary_routing: RoutingBackend | None = None,
        *,
        llm_config: LLMConfig = DEFAULT_LLM_CONFIG,
        config: PipelineConfig = DEFAULT_PIPELINE_CONFIG,
        clock: Callable[[], datetime] = _server_now,
        rng: random.Random | None = None,
    ) -> None:
        self.caches = caches
        self.llm_config = llm_config
        self.config = config
        self.clock = clock
        self.rng = rng or random.Random()
        self.sourcer = CandidateSourcer(provider, caches, config)
        self.resolver = DurationResolver(primary_routing, secondary_routing, caches.distance, config)

        self.state = PipelineState.INPUT
        self.progress = 0
        self.logs: list[str] = []
        self.results: list[FinalResult] = []
        self.reason: str | None = None
        self._run_id = 0
        self._tasks: set[asyncio.Task] = set()
        self._reset_task: asyncio.Task | None = None

    # ── State ─────────────────────────────────────────────────────────

    def reset(self) -> None:
        """Return to INPUT. Any run still in flight is superseded."""
        self._run_id += 1
        self._cancel_reset_timer()
        self.state = PipelineState.INPUT
        self.progress = 0
        self.logs = []
        self.results = []
        self.reason = None

    def snapshot(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "progress": self.progress,
            "logs": list(self.logs),
            "result_count": len(self.results),
            "reason": self.reason,
        }

    def _cancel_reset_timer(self) -> None:
        if self._reset_task is not None and not self._reset_task.done():
            self._reset_task.cancel()
        self._reset_task = None

    def _schedule_error_reset(self, run_id: int) -> None:
        async def _reset_later() -> None:
            await asyncio.sleep(self.config.error_reset_delay)
            if self._run_id == run_id and self.state == PipelineState.ERROR:
                logger.info("Auto-resetting after error")
                self.reset()

        self._reset_task = asyncio.get_running_loop().create_task(_reset_later())

    async def wait_idle(self) -> None:
        """Wait for every run task, superseded ones included."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        await self.wait_idle()
        self._cancel_reset_timer()

    # ── Run ───────────────────────────────────────────────────────────

    async def run(self, preferences: Preferences) -> AsyncIterator[PipelineEvent]:
        self.reset()
        run_id = self._run_id
        self.state = PipelineState.PROCESSING

        queue: asyncio.Queue = asyncio.Queue()
        task = asyncio.get_running_loop().create_task(
            self._execute(preferences, run_id, queue.put_nowait)
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        while True:
            event = await queue.get()
            if event is _DONE:
                return
            if run_id != self._run_id:
                logger.info("Run %d superseded, no longer streaming its events", run_id)
                return
            yield event

    async def _execute(
        self,
        preferences: Preferences,
        run_id: int,
        emit: Callable[[Any], None],
    ) -> None:
        def current() -> bool:
            return run_id == self._run_id

        def log(text: str) -> None:
            if current():
                self.logs.append(text)
                emit(LogEvent(text=text))

        def progress(value: int) -> None:
            if current() and value >= self.progress:
                self.progress = value
                emit(ProgressEvent(value=value))

        terminal: PipelineEvent
        state: PipelineState
        results: list[FinalResult] = []
        try:
            results = await self._pipeline(preferences, log, progress)
            terminal, state = ResultsEvent(results=results), PipelineState.RESULTS
        except ExhaustionError as exc:
            terminal, state = NoResultsEvent(reason=str(exc)), PipelineState.NO_RESULTS
        except FatalError as exc:
            terminal, state = ErrorEvent(reason=str(exc)), PipelineState.ERROR
        except Exception as exc:
            logger.exception("Pipeline run failed")
            terminal, state = ErrorEvent(reason=f"Unexpected failure: {exc}"), PipelineState.ERROR

        if current():
            if state == PipelineState.ERROR:
                log(f"CRITICAL ERROR: {terminal.reason}")
                log("SYSTEM FAILURE. RESETTING...")
            self.state = state
            self.results = results
            self.reason = getattr(terminal, "reason", None)
            emit(terminal)
            if state == PipelineState.ERROR:
                self._schedule_error_reset(run_id)

        self._record_history(preferences, state, len(results))
        emit(_DONE)

    async def _pipeline(
        self,
        preferences: Preferences,
        log: Callable[[str], None],
        progress: Callable[[int], None],
    ) -> list[FinalResult]:
        origin = preferences.origin
        if origin is None:
            raise FatalError("A starting location is required")

        now = local_time(self.clock(), preferences.utc_offset_minutes)
        radius, max_duration = walk_config(preferences.walk_limit)
        progress(5)
        log(f"SCANNING {radius} M AROUND {preferences.address or 'YOUR LOCATION'}".upper())

        plan = await plan_queries(
            preferences.vibe, preferences.freestyle_prompt, preferences.address, self.llm_config,
        )
        log(f"SEARCH PLAN ({plan.source.upper()}): {', '.join(plan.queries)}")
        progress(15)

        sourced = await self.sourcer.source(plan, origin, radius, now, log)
        if not sourced.venues:
            raise ExhaustionError("No open food venues found nearby")
        progress(30)

        sample = sample_candidates(sourced.venues, self.config.duration_sample_size, self.rng)
        log(f"CALCULATING WALKING TIMES FOR {len(sample)} SPOTS")
        durations = await self.resolver.resolve(origin, sample)
        if durations.failed_count:
            log(f"NO WALKING TIME FOR {durations.failed_count} SPOTS")
        progress(60)

        candidates = [Candidate(venue=v, duration=durations.durations.get(v.id)) for v in sample]
        proximity = apply_proximity_filter(
            candidates, max_duration, log, origin,
            self.config.relaxed_factor, self.config.emergency_count,
        )
        if proximity.tier == ProximityTier.empty:
            raise ExhaustionError("Nothing reachable within walking distance")
        if len(proximity.candidates) < LIMITED_POOL_SIZE:
            log("WARNING: LIMITED CANDIDATE POOL")

        log("RANKING CANDIDATES")
        ranked = rank_candidates(proximity.candidates, preferences.price, max_duration, self.config.top_n)
        progress(75)

        selection = await select(
            ranked, preferences, now, self.llm_config, self.config,
            newly_opened_only=plan.newly_opened_only or preferences.newly_opened_only,
            popular_only=plan.popular_only,
            rng=self.rng,
            on_log=log,
        )
        progress(90)

        results = build_results(selection.recommendations, ranked)
        if not results:
            raise ExhaustionError("No venue matched your constraints")

        self.caches.log_summary()
        log(f"ANALYSIS COMPLETE. {len(results)} PICKS READY.")
        progress(100)
        return results

    def _record_history(self, preferences: Preferences, state: PipelineState, count: int) -> None:
        """Queue the history append on the L2 writer; failures are logged there."""
        backend = self.caches.backend
        if backend is None:
            return
        record = {
            "timestamp": self.clock().isoformat(),
            "address": preferences.address,
            "vibe": preferences.vibe.value if preferences.vibe else None,
            "price": preferences.price.value if preferences.price else None,
            "walk_limit": preferences.walk_limit.value,
            "prompt": preferences.freestyle_prompt,
            "outcome": state.value,
            "result_count": count,
        }
        self.caches.writer.submit(backend.append_history("search", record), "search history")
