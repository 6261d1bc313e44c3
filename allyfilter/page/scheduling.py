"""
scheduling.py - Waiting and debouncing on the page's event loop

when_true() waits for a lazily built part of the page without blocking the
loop. DebounceGate coalesces bursts of triggers (ajax completions, content
mutations) into one run.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional


logger = logging.getLogger(__name__)

MUTATION = "mutation"


async def when_true(predicate: Callable[[], bool], max_iterations: int = 10, interval: float = 0.2) -> bool:
    """
    Poll predicate every interval seconds.

    Returns:
        True as soon as predicate holds, False once max_iterations polls
        have passed without it holding.
    """
    for _ in range(max_iterations + 1):
        if predicate():
            return True
        await asyncio.sleep(interval)
    return False


class DebounceGate:
    """
    Run func once things have been quiet for wait seconds.

    Every trigger() before the run fires pushes it back and shares its
    future. Mutation triggers are dropped during the startup grace period,
    which starts with start().
    """

    def __init__(self, func: Callable[[], Awaitable[Any]], wait: float = 1.0, startup_grace: float = 2.0):
        self.func = func
        self.wait = wait
        self.startup_grace = startup_grace
        self.runs = 0
        self._started_at: Optional[float] = None
        self._handle: Optional[asyncio.TimerHandle] = None
        self._pending: Optional[asyncio.Future] = None

    def start(self) -> None:
        self._started_at = asyncio.get_running_loop().time()

    def in_grace(self) -> bool:
        if self._started_at is None:
            return False
        return asyncio.get_running_loop().time() - self._started_at < self.startup_grace

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def trigger(self, source: str = "call") -> Optional[asyncio.Future]:
        """
        Schedule (or push back) a run.

        Returns:
            Future resolved with func's result, or None if the trigger was
            suppressed.
        """
        if source == MUTATION and self.in_grace():
            logger.debug("Ignoring %s trigger during startup grace", source)
            return None

        loop = asyncio.get_running_loop()
        if self._handle is not None:
            self._handle.cancel()
        if self._pending is None or self._pending.done():
            self._pending = loop.create_future()
        self._handle = loop.call_later(self.wait, self._fire)
        logger.debug("Run scheduled in %.2fs (%s)", self.wait, source)
        return self._pending

    def _fire(self) -> None:
        self._handle = None
        future, self._pending = self._pending, None
        self.runs += 1
        task = asyncio.ensure_future(self.func())

        def settle(done: asyncio.Task):
            if future is None or future.done():
                return
            if done.cancelled():
                future.cancel()
            elif done.exception() is not None:
                future.set_exception(done.exception())
            else:
                future.set_result(done.result())

        task.add_done_callback(settle)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
        self._pending = None
