"""Debounced quote previews for an owner's editing surface.

Each ``submit`` bumps a generation counter and restarts the wait. When the
wait elapses the pricing call runs, and its result is delivered only if no
newer draft arrived in the meantime; stale results are dropped.
"""

from __future__ import annotations

import asyncio
import inspect
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar, Union

import structlog

from menu_negotiation.config import settings

logger = structlog.get_logger(__name__)

D = TypeVar("D")
R = TypeVar("R")


class PreviewDebouncer(Generic[D, R]):
    def __init__(
        self,
        compute: Callable[[D], Union[R, Awaitable[R]]],
        on_result: Callable[[int, R], Any],
        delay: Optional[float] = None,
    ) -> None:
        self.compute = compute
        self.on_result = on_result
        self.delay = settings.preview_debounce_ms / 1000 if delay is None else delay
        self.generation = 0
        self.latest: Optional[R] = None
        self.latest_generation = 0
        self._task: Optional[asyncio.Task] = None

    def submit(self, draft: D) -> int:
        """Schedule a preview of ``draft``; must be called from a running loop."""
        self.generation += 1
        self._cancel_pending()
        self._task = asyncio.get_running_loop().create_task(self._run(self.generation, draft))
        return self.generation

    def cancel(self) -> None:
        """Drop whatever is pending; results already delivered stay."""
        self.generation += 1
        self._cancel_pending()

    async def flush(self) -> Optional[R]:
        """Wait for the pending preview, if any, and return the latest result."""
        task = self._task
        if task is not None:
            await asyncio.wait({task})
            if not task.cancelled() and task.exception() is not None:
                raise task.exception()
        return self.latest

    def _cancel_pending(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def _run(self, generation: int, draft: D) -> None:
        await asyncio.sleep(self.delay)
        if generation != self.generation:
            return
        result = self.compute(draft)
        if inspect.isawaitable(result):
            result = await result
        if generation != self.generation:
            logger.debug("preview_discarded", generation=generation, current=self.generation)
            return
        self.latest = result
        self.latest_generation = generation
        self.on_result(generation, result)
