"""Supervised worker pool executing queued runs."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional

from config import get_pipeline_settings

from .queue import RunQueue


logger = logging.getLogger(__name__)

RunRunner = Callable[[str, str], Awaitable[None]]


class RunWorkerPool:
    """
    N worker tasks pulling (campaign_id, run_id) from the queue.

    A run that raises is logged and the worker moves on; the persisted Run
    status is the only completion signal.
    """

    def __init__(self, queue: RunQueue, runner: RunRunner, *, worker_count: Optional[int] = None) -> None:
        self.queue = queue
        self._runner = runner
        count = get_pipeline_settings().worker_count if worker_count is None else worker_count
        self.worker_count = max(1, int(count))
        self._workers: List[asyncio.Task] = []
        self.processed = 0
        self.failed = 0

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._workers)

    def start(self) -> None:
        if self.running:
            return
        self._workers = [
            asyncio.create_task(self._work(index), name=f"run-worker-{index}") for index in range(self.worker_count)
        ]
        logger.info("worker_pool_started workers=%d", self.worker_count)

    async def join(self) -> None:
        """Wait until the queue is drained and every picked run has finished."""
        await self.queue.join()

    async def stop(self, *, drain: bool = True) -> None:
        if drain:
            await self.join()
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        logger.info("worker_pool_stopped processed=%d failed=%d", self.processed, self.failed)

    async def _work(self, index: int) -> None:
        while True:
            campaign_id, run_id = await self.queue.dequeue()
            logger.info("worker_pick worker=%d run_id=%s campaign_id=%s", index, run_id, campaign_id)
            try:
                await self._runner(campaign_id, run_id)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self.failed += 1
                logger.error("worker_run_failed worker=%d run_id=%s error=%s", index, run_id, exc)
            finally:
                self.processed += 1
                self.queue.task_done()
