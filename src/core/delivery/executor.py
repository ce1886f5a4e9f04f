"""Bounded pool for detached delivery tasks."""

import asyncio
import logging
from typing import Any, Coroutine, Dict, Optional, Set

logger = logging.getLogger(__name__)


class DeliveryExecutor:
    """
    Runs fire-and-forget delivery coroutines with bounded concurrency.

    :meth:`submit` never blocks the caller: the task is created immediately
    and waits on the pool's semaphore before running. Exceptions escaping a
    submitted coroutine are logged inside the task and never re-raised.
    """

    def __init__(self, name: str, max_concurrency: int = 10):
        """
        Initialize the executor.

        Args:
            name: Pool name used for task names and logs (e.g. "email-async")
            max_concurrency: Maximum coroutines running at once
        """
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.name = name
        self.max_concurrency = max_concurrency
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._tasks: Set[asyncio.Task] = set()
        self._accepting = True
        self._submitted = 0
        self._failed = 0

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def submit(self, coro: Coroutine[Any, Any, Any], task_name: Optional[str] = None) -> asyncio.Task:
        """
        Schedule a coroutine on the pool.

        Args:
            coro: Coroutine to run
            task_name: Optional task name for diagnostics

        Returns:
            The scheduled task

        Raises:
            RuntimeError: If the executor has been shut down
        """
        if not self._accepting:
            coro.close()
            raise RuntimeError(f"Executor '{self.name}' is shut down")

        self._submitted += 1
        task = asyncio.create_task(
            self._run(coro),
            name=task_name or f"{self.name}-{self._submitted}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, coro: Coroutine[Any, Any, Any]) -> Any:
        async with self._semaphore:
            try:
                return await coro
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._failed += 1
                logger.error(f"Unhandled error in '{self.name}' task: {e}", exc_info=True)
                return None

    async def shutdown(self, wait: bool = True, timeout: Optional[float] = None) -> None:
        """
        Stop accepting work and settle in-flight tasks.

        Args:
            wait: Await in-flight tasks; when False they are cancelled
            timeout: Seconds to wait before cancelling whatever is still running
        """
        self._accepting = False
        tasks = list(self._tasks)
        if not tasks:
            return

        if wait:
            logger.info(f"Waiting for {len(tasks)} '{self.name}' task(s) to finish")
            done, still_running = await asyncio.wait(tasks, timeout=timeout)
        else:
            still_running = set(tasks)

        for task in still_running:
            task.cancel()
        if still_running:
            logger.warning(f"Cancelled {len(still_running)} '{self.name}' task(s) on shutdown")
            await asyncio.gather(*still_running, return_exceptions=True)

    def stats(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "max_concurrency": self.max_concurrency,
            "pending": self.pending,
            "submitted": self._submitted,
            "failed": self._failed,
            "accepting": self._accepting,
        }
