"""
Cooperative yield points for long-running collection and optimization loops.

Everything runs on one thread. Loops call ``await scheduler.yield_now()`` at
their suspension points so the host event loop can service other work, such
as a UI or a coroutine that pauses the session.
"""

import asyncio
from enum import Enum
from typing import Awaitable, Callable, Optional


class HostVisibility(Enum):
    FOREGROUND = "foreground"
    BACKGROUND = "background"


class Scheduler:
    """Base scheduler: yields to the event loop at every yield point."""

    async def yield_now(self) -> None:
        await asyncio.sleep(0)


class ImmediateScheduler(Scheduler):
    """Never suspends. For batch runs where nothing else shares the loop."""

    async def yield_now(self) -> None:
        return None


class AdaptiveScheduler(Scheduler):
    """Yields every call in the foreground and every ``background_stride`` calls otherwise.

    A foreground host wants frequent turns to stay responsive. A backgrounded
    host only needs to keep its loop alive, so the engine runs longer
    stretches between suspensions. Both modes always make progress.
    """

    def __init__(
        self,
        visibility: HostVisibility = HostVisibility.FOREGROUND,
        foreground_delay: float = 0.0,
        background_stride: int = 16,
    ):
        if background_stride <= 0:
            raise ValueError("background_stride must be positive")
        if foreground_delay < 0:
            raise ValueError("foreground_delay must be non-negative")
        self.visibility = visibility
        self.foreground_delay = foreground_delay
        self.background_stride = background_stride
        self.calls = 0

    def set_visibility(self, visibility: HostVisibility) -> None:
        self.visibility = visibility

    async def yield_now(self) -> None:
        self.calls += 1
        if self.visibility is HostVisibility.FOREGROUND:
            await asyncio.sleep(self.foreground_delay)
        elif self.calls % self.background_stride == 0:
            await asyncio.sleep(0)


YieldPoint = Callable[[], Awaitable[bool]]


def make_yield_point(scheduler: Optional[Scheduler] = None) -> YieldPoint:
    """Yield point that suspends via ``scheduler`` and never asks to stop."""
    scheduler = scheduler or Scheduler()

    async def yield_point() -> bool:
        await scheduler.yield_now()
        return True

    return yield_point
