"""
Worker Pool Module
Bounded thread pool that runs the blocking calls of execution units and
applies admission control to the number of units in flight.
"""

import asyncio
import contextvars
import functools
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Awaitable, Callable, Dict

from table_migrator.config_manager import ConfigManager
from table_migrator.errors import WorkerPoolRejectedError
from table_migrator.utils.logger import get_logger

logger = get_logger(__name__)


class WorkerPool:
    """
    Runs blocking work on at most `max_pool_size` threads.

    At most `max_pool_size + queue_capacity` units may be admitted at once;
    admitting more raises `WorkerPoolRejectedError` instead of queueing
    without bound.
    """

    def __init__(self, max_pool_size: int = None, queue_capacity: int = None, config: Dict = None):
        if config is None:
            config = ConfigManager().get_migration_config()

        self.max_pool_size = max_pool_size or config.get('max_pool_size', 5)
        if queue_capacity is None:
            queue_capacity = config.get('queue_capacity', 40)
        self.queue_capacity = queue_capacity
        self.capacity = self.max_pool_size + self.queue_capacity

        self._executor = ThreadPoolExecutor(
            max_workers=self.max_pool_size,
            thread_name_prefix='migration-worker'
        )
        self._lock = threading.Lock()
        self._admitted = 0

        logger.info(
            f"Worker pool started with {self.max_pool_size} threads, "
            f"admission capacity {self.capacity}"
        )

    # ========================================
    # Admission control
    # ========================================

    @property
    def in_flight(self) -> int:
        with self._lock:
            return self._admitted

    def admit(self) -> None:
        """
        Reserve a slot for one unit.

        Raises:
            WorkerPoolRejectedError: If the pool is at capacity
        """
        with self._lock:
            if self._admitted >= self.capacity:
                raise WorkerPoolRejectedError(
                    f"Worker pool is full ({self._admitted}/{self.capacity} units in flight)"
                )
            self._admitted += 1

    def release(self) -> None:
        with self._lock:
            if self._admitted > 0:
                self._admitted -= 1

    async def run_admitted(self, coro_factory: Callable[[], Awaitable[Any]]) -> Any:
        """Await a coroutine that already holds a slot, releasing it afterwards."""
        try:
            return await coro_factory()
        finally:
            self.release()

    # ========================================
    # Blocking work
    # ========================================

    async def run(self, func: Callable, *args, **kwargs) -> Any:
        """
        Run a blocking callable on a pool thread and await its result.

        The caller's context variables (correlation id) are copied to the thread.
        """
        loop = asyncio.get_running_loop()
        context = contextvars.copy_context()
        call = functools.partial(context.run, func, *args, **kwargs)
        return await loop.run_in_executor(self._executor, call)

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting blocking work and release the threads."""
        self._executor.shutdown(wait=wait)
        logger.info("Worker pool shut down")
