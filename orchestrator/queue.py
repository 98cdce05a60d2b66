"""Asyncio FIFO of (campaign_id, run_id) jobs with duplicate suppression."""

from __future__ import annotations

import asyncio
from collections import deque
from typing import Deque, Optional, Set, Tuple

RunJob = Tuple[str, str]


class RunQueue:
    """In-process queue feeding the worker pool."""

    def __init__(self) -> None:
        self._queue: Deque[RunJob] = deque()
        self._enqueued: Set[str] = set()
        self._unfinished = 0
        self._not_empty = asyncio.Condition()
        self._all_done = asyncio.Event()
        self._all_done.set()

    async def enqueue(self, campaign_id: str, run_id: str) -> bool:
        """Queue a run once. Returns True when newly enqueued."""
        async with self._not_empty:
            if run_id in self._enqueued:
                return False
            self._queue.append((campaign_id, run_id))
            self._enqueued.add(run_id)
            self._unfinished += 1
            self._all_done.clear()
            self._not_empty.notify()
            return True

    async def dequeue(self) -> RunJob:
        """Wait for the next job."""
        async with self._not_empty:
            while not self._queue:
                await self._not_empty.wait()
            job = self._queue.popleft()
            self._enqueued.discard(job[1])
            return job

    def dequeue_nowait(self) -> Optional[RunJob]:
        if not self._queue:
            return None
        job = self._queue.popleft()
        self._enqueued.discard(job[1])
        return job

    def task_done(self) -> None:
        if self._unfinished <= 0:
            raise ValueError("task_done() called too many times")
        self._unfinished -= 1
        if self._unfinished == 0:
            self._all_done.set()

    async def join(self) -> None:
        """Wait until every enqueued job has been marked done."""
        await self._all_done.wait()

    def size(self) -> int:
        return len(self._queue)

    def __contains__(self, run_id: object) -> bool:
        return run_id in self._enqueued
