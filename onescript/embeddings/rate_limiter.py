"""FIFO rate limiter — one in-flight call at a time with a fixed gap between calls."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]


class RateLimiter:
    """Serializes coroutine calls through a single first-come-first-served queue.

    Each submitted call runs only after the previous one has finished and
    ``min_delay`` seconds have elapsed since.  Construct one per process and
    share it; separate instances do not coordinate.
    """

    def __init__(self, min_delay: float = 1.0, sleep: Sleep = asyncio.sleep) -> None:
        self.min_delay = min_delay
        self._sleep = sleep
        self._queue: deque[tuple[Callable[[], Awaitable[Any]], asyncio.Future]] = deque()
        self._worker: asyncio.Task | None = None

    @property
    def pending(self) -> int:
        """Number of calls waiting for their turn."""
        return len(self._queue)

    async def submit(self, fn: Callable[[], Awaitable[Any]]) -> Any:
        """Queue ``fn`` and wait for its own result (or exception)."""
        future = asyncio.get_running_loop().create_future()
        self._queue.append((fn, future))
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._drain())
        return await future

    async def aclose(self) -> None:
        """Stop the worker and fail anything still queued."""
        if self._worker is not None and not self._worker.done():
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
        while self._queue:
            _, future = self._queue.popleft()
            if not future.done():
                future.cancel()

    async def _drain(self) -> None:
        while self._queue:
            fn, future = self._queue.popleft()
            if future.done():
                # Caller gave up while waiting; its slot is skipped.
                continue
            try:
                result = await fn()
            except asyncio.CancelledError:
                future.cancel()
                raise
            except Exception as exc:
                if not future.done():
                    future.set_exception(exc)
            else:
                if not future.done():
                    future.set_result(result)
            await self._sleep(self.min_delay)
