"""
Fan-out / join helpers.

Every unit of a fan-out reports its own outcome as ``Ok`` or ``Failed`` so a
single failing search, detail fetch or routing batch never cancels its
siblings.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Generic, Iterable, TypeVar


T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Failed:
    reason: str
    error: BaseException | None = None
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return False


async def _run_unit(
    aw: Awaitable[T],
    timeout: float | None,
    semaphore: asyncio.Semaphore | None,
) -> Ok[T] | Failed:
    try:
        if semaphore is not None:
            async with semaphore:
                value = await asyncio.wait_for(aw, timeout)
        else:
            value = await asyncio.wait_for(aw, timeout)
        return Ok(value)
    except asyncio.TimeoutError as exc:
        return Failed(reason=f"timed out after {timeout}s", error=exc, timed_out=True)
    except Exception as exc:
        return Failed(reason=str(exc) or type(exc).__name__, error=exc)


async def gather_settled(
    units: Iterable[Awaitable[T]],
    timeout: float | None = None,
    limit: int | None = None,
) -> list[Ok[T] | Failed]:
    """Await all *units* concurrently and return their outcomes in order.

    ``timeout`` applies to each unit on its own; ``limit`` bounds how many
    run at the same time.
    """
    semaphore = asyncio.Semaphore(limit) if limit else None
    return list(
        await asyncio.gather(*(_run_unit(u, timeout, semaphore) for u in units))
    )
