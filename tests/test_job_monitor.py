from __future__ import annotations

from typing import List

import pytest

from core import JobStatus
from pipeline.monitor import JobMonitor, download_with_retry
from utils.exceptions import JobFailedError, JobTimeoutError, ProviderError


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def _monitor(clock: FakeClock, *, interval: float = 3.0, timeout: float = 10.0) -> JobMonitor:
    return JobMonitor(poll_interval=interval, timeout=timeout, sleep=clock.sleep, clock=clock)


def _scripted(statuses: List[object]):
    calls = {"count": 0}

    async def poll(job_id: str) -> JobStatus:
        item = statuses[min(calls["count"], len(statuses) - 1)]
        calls["count"] += 1
        if isinstance(item, Exception):
            raise item
        return JobStatus(status=str(item))

    return poll, calls


@pytest.mark.asyncio
async def test_wait_returns_when_job_is_ready() -> None:
    clock = FakeClock()
    poll, calls = _scripted(["pending", "running", "ready"])
    progress = []

    status = await _monitor(clock).wait_for_completion("job_1", poll, on_progress=lambda job, st: progress.append(st.status))

    assert status.status == "ready"
    assert calls["count"] == 3
    assert clock.sleeps == [3.0, 3.0]
    assert progress == ["pending", "running", "ready"]


@pytest.mark.asyncio
async def test_wait_raises_on_failed_status() -> None:
    clock = FakeClock()

    async def poll(job_id: str) -> JobStatus:
        return JobStatus(status="FAILED", error="dataset rejected input")

    with pytest.raises(JobFailedError) as info:
        await _monitor(clock).wait_for_completion("job_2", poll)
    assert info.value.job_id == "job_2"
    assert "dataset rejected input" in info.value.message


@pytest.mark.asyncio
async def test_wait_times_out_at_deadline() -> None:
    clock = FakeClock()
    poll, calls = _scripted(["running"])

    with pytest.raises(JobTimeoutError):
        await _monitor(clock, interval=3.0, timeout=10.0).wait_for_completion("job_3", poll)
    assert calls["count"] == 4
    assert clock.now == 9.0


@pytest.mark.asyncio
async def test_transient_poll_errors_and_unknown_statuses_keep_polling() -> None:
    clock = FakeClock()
    poll, calls = _scripted([RuntimeError("connection reset"), "queued_for_review", ProviderError("502"), "ready"])

    status = await _monitor(clock).wait_for_completion("job_4", poll)
    assert status.status == "ready"
    assert calls["count"] == 4


@pytest.mark.asyncio
async def test_wait_for_multiple_reports_each_outcome() -> None:
    clock = FakeClock()

    async def poll(job_id: str) -> JobStatus:
        return JobStatus(status="ready" if job_id == "ok" else "error", error="boom")

    results = await _monitor(clock).wait_for_multiple(["ok", "bad"], poll)
    assert isinstance(results["ok"], JobStatus)
    assert isinstance(results["bad"], JobFailedError)


@pytest.mark.asyncio
async def test_download_with_retry_recovers_from_transient_failures() -> None:
    attempts = {"count": 0}

    async def download(job_id: str) -> List[dict]:
        attempts["count"] += 1
        if attempts["count"] < 3:
            raise ProviderError("snapshot not ready")
        return [{"url": "https://tiktok.com/@a/video/1"}]

    records = await download_with_retry(download, "job_5", attempts=3, backoff=0)
    assert records == [{"url": "https://tiktok.com/@a/video/1"}]
    assert attempts["count"] == 3


@pytest.mark.asyncio
async def test_download_with_retry_reraises_after_last_attempt() -> None:
    attempts = {"count": 0}

    async def download(job_id: str) -> List[dict]:
        attempts["count"] += 1
        raise ProviderError("still broken")

    with pytest.raises(ProviderError):
        await download_with_retry(download, "job_6", attempts=2, backoff=0)
    assert attempts["count"] == 2
