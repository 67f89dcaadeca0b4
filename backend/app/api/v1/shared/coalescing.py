"""In-process de-duplication of concurrent cache misses."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RequestCoalescer(Generic[T]):
    """Run at most one factory per key; concurrent callers share its result.

    The shared work runs in its own task and callers await it through
    ``asyncio.shield``: a caller that disconnects stops waiting without
    cancelling the fetch the other callers (and the cache) still need.
    """

    def __init__(self) -> None:
        self._tasks: dict[str, asyncio.Task[T]] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._tasks)

    async def run(
        self, key: str, factory: Callable[[], Awaitable[T]]
    ) -> tuple[T, bool]:
        """Return ``(result, joined)``; ``joined`` is True for followers."""
        async with self._lock:
            task = self._tasks.get(key)
            joined = task is not None
            if task is None:
                task = asyncio.create_task(self._invoke(factory))
                self._tasks[key] = task
                task.add_done_callback(lambda done, key=key: self._forget(key, done))

        return await asyncio.shield(task), joined

    @staticmethod
    async def _invoke(factory: Callable[[], Awaitable[T]]) -> T:
        return await factory()

    def _forget(self, key: str, task: asyncio.Task[Any]) -> None:
        if self._tasks.get(key) is task:
            del self._tasks[key]
        if not task.cancelled() and task.exception() is not None:
            # Retrieved here so an unawaited failure is not reported twice
            logger.debug("Coalesced fetch for %s failed: %r", key, task.exception())


__all__ = ["RequestCoalescer"]
