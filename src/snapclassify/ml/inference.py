"""Blocking-work offload layer.

Architecture:
    FlowController (event loop) -> asyncio.Semaphore(N) -> ThreadPoolExecutor(N) -> file I/O / ONNX

Model downloads, session creation, image reads and classification all block,
so they run on worker threads while controller state is only mutated back on
the event loop. Waiting callers queue without a timeout.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import Callable

    from snapclassify.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class InferencePool:
    """Manages the semaphore and thread pool for blocking ML work."""

    def __init__(self, settings: Settings) -> None:
        self._max_workers = settings.max_concurrent
        self._semaphore: asyncio.Semaphore | None = None
        self._executor = ThreadPoolExecutor(
            max_workers=settings.max_concurrent,
            thread_name_prefix="snapclassify-worker",
        )
        self._active_count: int = 0
        self._queue_depth: int = 0
        self._counter_lock = threading.Lock()

    async def run(self, func: Callable[..., T], *args: object) -> T:
        """Run a synchronous function on the worker pool and await its result."""
        if self._semaphore is None:
            # Created lazily so it binds to the running loop.
            self._semaphore = asyncio.Semaphore(self._max_workers)

        with self._counter_lock:
            self._queue_depth += 1
        try:
            await self._semaphore.acquire()
        finally:
            with self._counter_lock:
                self._queue_depth -= 1

        with self._counter_lock:
            self._active_count += 1
        try:
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(self._executor, func, *args)
        finally:
            self._semaphore.release()
            with self._counter_lock:
                self._active_count -= 1

    @property
    def active_count(self) -> int:
        """Number of currently running tasks."""
        with self._counter_lock:
            return self._active_count

    @property
    def queue_depth(self) -> int:
        """Number of tasks waiting for a worker slot."""
        with self._counter_lock:
            return self._queue_depth

    def shutdown(self) -> None:
        """Shut down the thread pool executor."""
        self._executor.shutdown(wait=True)
        logger.debug("Worker pool shut down")
