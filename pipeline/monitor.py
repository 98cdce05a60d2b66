"""Provider job monitor: poll until ready/failed/timeout, plus bounded download retry."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Dict, List, Optional

from tenacity import AsyncRetrying, stop_after_attempt, wait_fixed

from config import get_pipeline_settings
from core import JobState, JobStatus
from utils.exceptions import JobFailedError, JobTimeoutError


logger = logging.getLogger(__name__)

PollFn = Callable[[str], Awaitable[JobStatus]]
ProgressFn = Callable[[str, JobStatus], None]

_KNOWN_STATUSES = {state.value for state in JobState}
_FAILED_STATUSES = {JobState.FAILED.value, JobState.ERROR.value}


class JobMonitor:
    """
    Shared by every platform task.

    A failing poll call is treated as transient: it is logged and polling
    continues until the deadline. Only a `failed`/`error` status or the
    deadline ends the wait unsuccessfully.
    """

    def __init__(
        self,
        *,
        poll_interval: Optional[float] = None,
        timeout: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        settings = get_pipeline_settings()
        self.poll_interval = float(settings.poll_interval_sec if poll_interval is None else poll_interval)
        self.timeout = float(settings.job_timeout_sec if timeout is None else timeout)
        self._sleep = sleep
        self._clock = clock

    async def wait_for_completion(
        self,
        job_id: str,
        poll_fn: PollFn,
        *,
        poll_interval: Optional[float] = None,
        timeout: Optional[float] = None,
        on_progress: Optional[ProgressFn] = None,
    ) -> JobStatus:
        interval = self.poll_interval if poll_interval is None else float(poll_interval)
        limit = self.timeout if timeout is None else float(timeout)
        deadline = self._clock() + limit
        last_status: Optional[str] = None

        logger.info("job_wait_start job_id=%s timeout=%.0fs interval=%.1fs", job_id, limit, interval)
        while True:
            try:
                status = await poll_fn(job_id)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.warning("job_poll_error job_id=%s error=%s", job_id, exc)
                status = None

            if status is not None:
                if status.status != last_status:
                    logger.info(
                        "job_status job_id=%s status=%s progress=%s",
                        job_id,
                        status.status,
                        "n/a" if status.progress is None else status.progress,
                    )
                    last_status = status.status
                if on_progress is not None:
                    on_progress(job_id, status)
                if status.status == JobState.READY.value:
                    return status
                if status.status in _FAILED_STATUSES:
                    raise JobFailedError(f"Job failed: {status.error or 'Unknown error'}", job_id=job_id)
                if status.status not in _KNOWN_STATUSES:
                    logger.warning("job_status_unknown job_id=%s status=%s", job_id, status.status)

            if self._clock() + interval > deadline:
                raise JobTimeoutError(f"Job timeout after {limit:.0f}s", job_id=job_id)
            await self._sleep(interval)

    async def wait_for_multiple(
        self,
        job_ids: List[str],
        poll_fn: PollFn,
        *,
        poll_interval: Optional[float] = None,
        timeout: Optional[float] = None,
    ) -> Dict[str, object]:
        """Wait for several jobs; each entry is the final JobStatus or the exception it raised."""
        results = await asyncio.gather(
            *(
                self.wait_for_completion(job_id, poll_fn, poll_interval=poll_interval, timeout=timeout)
                for job_id in job_ids
            ),
            return_exceptions=True,
        )
        failed = sum(1 for item in results if isinstance(item, BaseException))
        logger.info("job_wait_many total=%d failed=%d", len(job_ids), failed)
        return dict(zip(job_ids, results))


async def download_with_retry(
    download_fn: Callable[[str], Awaitable[List[dict]]],
    job_id: str,
    *,
    attempts: Optional[int] = None,
    backoff: Optional[float] = None,
) -> List[dict]:
    """Download a ready snapshot with a fixed backoff between attempts; re-raises the last error."""
    settings = get_pipeline_settings()
    max_attempts = max(1, int(settings.download_max_attempts if attempts is None else attempts))
    wait_sec = float(settings.download_backoff_sec if backoff is None else backoff)

    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_fixed(wait_sec),
        reraise=True,
    ):
        with attempt:
            number = attempt.retry_state.attempt_number
            if number > 1:
                logger.warning("download_retry job_id=%s attempt=%d/%d", job_id, number, max_attempts)
            return await download_fn(job_id)
    return []
