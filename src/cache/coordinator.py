# src/cache/coordinator.py — v1
"""In-process single flight.

Concurrent callers asking for the same operation key share one task. The
task is awaited through ``asyncio.shield`` so a caller that gives up (timeout
or cancellation) never cancels the work other callers are waiting on.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class InFlight:
    """Registry of running operations keyed by string."""

    def __init__(self) -> None:
        self._tasks: dict[str, asyncio.Task[Any]] = {}

    def __contains__(self, key: str) -> bool:
        return key in self._tasks

    def __len__(self) -> int:
        return len(self._tasks)

    async def run(self, key: str, factory: Callable[[], Awaitable[T]]) -> T:
        """Join the running operation for key, or start one with factory()."""
        task = self._tasks.get(key)
        if task is None:
            task = asyncio.ensure_future(factory())
            self._tasks[key] = task
            task.add_done_callback(lambda t: self._finished(key, t))
        else:
            logger.debug("Joining in-flight operation %s", key)
        return await asyncio.shield(task)

    def _finished(self, key: str, task: asyncio.Task[Any]) -> None:
        if self._tasks.get(key) is task:
            del self._tasks[key]
        # Mark the failure as retrieved when every waiter was cancelled.
        if not task.cancelled():
            task.exception()
