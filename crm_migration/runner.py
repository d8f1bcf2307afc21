"""Worker pool executing migration jobs."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Set

logger = logging.getLogger(__name__)

Job = Callable[[str], Awaitable[object]]


class MigrationRunner:
    """
    Asyncio queue of migration ids consumed by a bounded worker pool.

    A migration id is never processed by two workers at once: submitting an
    id that is already queued is a no-op, and submitting one that is in
    flight schedules exactly one more run after the current one finishes.
    Workers start lazily on the first submit, inside the running loop.
    """

    def __init__(self, job: Job, max_workers: int = 2, on_error: Optional[Callable[[str, Exception], None]] = None):
        """
        Initialize the runner.

        Args:
            job: Coroutine function processing one migration id
            max_workers: Number of concurrent workers
            on_error: Called with (migration_id, exception) when a job crashes
        """
        self.job = job
        self.max_workers = max(1, max_workers)
        self.on_error = on_error
        self._queue: Optional[asyncio.Queue] = None
        self._workers = []
        self._scheduled: Set[str] = set()
        self._inflight: Set[str] = set()
        self._rerun: Set[str] = set()

    def _ensure_started(self) -> None:
        loop = asyncio.get_running_loop()
        if self._queue is not None and self._workers and self._workers[0].get_loop() is loop:
            return
        self._queue = asyncio.Queue()
        self._scheduled.clear()
        self._inflight.clear()
        self._rerun.clear()
        self._workers = [
            loop.create_task(self._worker(i), name=f"migration-worker-{i}")
            for i in range(self.max_workers)
        ]
        logger.debug(f"Started {self.max_workers} migration workers")

    def submit(self, migration_id: str) -> bool:
        """
        Schedule a migration id.

        Returns:
            True if queued now, False if it was already queued or deferred
            until the in-flight run finishes
        """
        self._ensure_started()
        if migration_id in self._scheduled:
            return False
        if migration_id in self._inflight:
            self._rerun.add(migration_id)
            return False
        self._scheduled.add(migration_id)
        self._queue.put_nowait(migration_id)
        return True

    async def _worker(self, index: int) -> None:
        while True:
            migration_id = await self._queue.get()
            self._scheduled.discard(migration_id)
            self._inflight.add(migration_id)
            try:
                await self.job(migration_id)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception(f"Migration job {migration_id} crashed")
                if self.on_error:
                    self.on_error(migration_id, e)
            finally:
                self._inflight.discard(migration_id)
                if migration_id in self._rerun:
                    self._rerun.discard(migration_id)
                    self._scheduled.add(migration_id)
                    self._queue.put_nowait(migration_id)
                self._queue.task_done()

    async def join(self) -> None:
        """Wait until every queued and in-flight job has finished."""
        if self._queue is not None:
            await self._queue.join()

    async def shutdown(self) -> None:
        """Cancel the workers."""
        for worker in self._workers:
            worker.cancel()
        if self._workers:
            await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        self._queue = None
