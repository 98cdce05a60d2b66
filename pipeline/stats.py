"""Single-owner writer for a run's stats.

Platform tasks never touch the Run document directly. They send mutations to
a `RunStatsRecorder`, whose one consumer task applies them in arrival order
(read, apply, write), so concurrent per-platform updates cannot lose each
other's increments.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

from core import PlatformRunStats, Run, StageStatus
from orchestrator.store import CampaignRunStore


logger = logging.getLogger(__name__)

RunMutation = Callable[[Run], None]


@dataclass
class _Envelope:
    mutate: Optional[RunMutation]
    done: "asyncio.Future[Run]"


def platform_stats(run: Run, platform: str) -> PlatformRunStats:
    entry = run.stats.by_platform.get(platform)
    if entry is None:
        entry = PlatformRunStats()
        run.stats.by_platform[platform] = entry
    return entry


class RunStatsRecorder:
    """Owns all writes to one run while the pipeline executes it."""

    def __init__(self, runs: CampaignRunStore, run_id: str) -> None:
        self._runs = runs
        self.run_id = run_id
        self._inbox: "asyncio.Queue[_Envelope]" = asyncio.Queue()
        self._task: Optional[asyncio.Task] = None

    async def __aenter__(self) -> "RunStatsRecorder":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._consume(), name=f"run-stats-{self.run_id}")

    async def stop(self) -> None:
        """Drain pending mutations, then end the consumer."""
        if self._task is None:
            return
        loop = asyncio.get_running_loop()
        await self._inbox.put(_Envelope(mutate=None, done=loop.create_future()))
        await self._task
        self._task = None

    async def _consume(self) -> None:
        while True:
            envelope = await self._inbox.get()
            if envelope.mutate is None:
                envelope.done.set_result(None)
                return
            try:
                run = await self._runs.update_run(self.run_id, envelope.mutate)
            except Exception as exc:
                logger.error("run_stats_write_failed run_id=%s error=%s", self.run_id, exc)
                if not envelope.done.done():
                    envelope.done.set_exception(exc)
                continue
            if not envelope.done.done():
                envelope.done.set_result(run)

    async def apply(self, mutate: RunMutation) -> Run:
        if self._task is None:
            raise RuntimeError("RunStatsRecorder is not started")
        loop = asyncio.get_running_loop()
        envelope = _Envelope(mutate=mutate, done=loop.create_future())
        await self._inbox.put(envelope)
        return await envelope.done

    async def update_platform(self, platform: str, **fields: Any) -> Run:
        def _apply(run: Run) -> None:
            entry = platform_stats(run, platform)
            for key, value in fields.items():
                setattr(entry, key, value)

        return await self.apply(_apply)

    async def increment_platform(self, platform: str, **deltas: int) -> Run:
        def _apply(run: Run) -> None:
            entry = platform_stats(run, platform)
            for key, delta in deltas.items():
                setattr(entry, key, int(getattr(entry, key) or 0) + int(delta))

        return await self.apply(_apply)

    async def set_stage(self, platform: str, stage: str, status: StageStatus, error: Optional[str] = None) -> Run:
        def _apply(run: Run) -> None:
            entry = platform_stats(run, platform)
            setattr(entry, f"{stage}_status", status)
            if error:
                entry.error = error

        return await self.apply(_apply)

    async def set_links(self, platform: str, urls: List[str]) -> Run:
        def _apply(run: Run) -> None:
            run.links_by_platform[platform] = list(urls)
            platform_stats(run, platform).urls_found = len(urls)

        return await self.apply(_apply)

    async def add_job(self, platform: str, job_id: str) -> Run:
        def _apply(run: Run) -> None:
            run.job_ids.setdefault(platform, []).append(job_id)

        return await self.apply(_apply)

    async def set_run_sentiment(self, avg_sentiment: Optional[float]) -> Run:
        def _apply(run: Run) -> None:
            run.stats.avg_sentiment = avg_sentiment

        return await self.apply(_apply)
