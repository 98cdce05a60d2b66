"""Per-platform stage work: discover (keyword / search / dual) and fetch."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from core import Campaign, Platform, Run, StageStatus
from sources.registry import DiscoveryMode, SourceRegistry, discovery_mode, get_platform_spec

from .dedup import PostDeduplicator
from .monitor import JobMonitor, download_with_retry
from .normalize import normalize_record
from .relevance import RelevanceGate
from .sanitize import extract_platform_urls, sanitize_urls
from .stats import RunStatsRecorder


logger = logging.getLogger(__name__)


@dataclass
class RunContext:
    """Everything a platform task needs for one run."""

    campaign: Campaign
    run: Run
    registry: SourceRegistry
    recorder: RunStatsRecorder
    dedup: PostDeduplicator
    monitor: JobMonitor
    gate: Optional[RelevanceGate] = None


@dataclass
class IngestCounts:
    scraped: int = 0
    new: int = 0
    updated: int = 0
    filtered: int = 0
    failed: int = 0


@dataclass
class DiscoverOutcome:
    platform: str
    mode: DiscoveryMode
    needs_fetch: bool
    urls: List[str] = field(default_factory=list)
    counts: IngestCounts = field(default_factory=IngestCounts)


class PlatformTask:
    """Stage-1/2 work for one platform of one run. Errors propagate to the stage barrier."""

    def __init__(self, platform: Platform | str, ctx: RunContext) -> None:
        self.platform = Platform(platform)
        self.ctx = ctx
        self.mode = discovery_mode(self.platform, ctx.campaign.settings)
        self.limit = ctx.campaign.settings.post_limit(self.platform.value)

    @property
    def name(self) -> str:
        return self.platform.value

    async def discover(self) -> DiscoverOutcome:
        recorder = self.ctx.recorder
        needs_fetch = self.mode != DiscoveryMode.KEYWORD
        await recorder.update_platform(self.name, discover_status=StageStatus.RUNNING, needs_fetch=needs_fetch)
        logger.info("discover_start run_id=%s platform=%s mode=%s", self.ctx.run.id, self.name, self.mode.value)

        try:
            if self.mode == DiscoveryMode.KEYWORD:
                counts = await self._keyword_discovery()
                urls: List[str] = []
            elif self.mode == DiscoveryMode.SERP:
                counts = IngestCounts()
                urls = await self._search_discovery()
            else:
                counts, urls = await self._dual_discovery()
        except Exception as exc:
            await recorder.update_platform(
                self.name,
                discover_status=StageStatus.FAILED,
                fetch_status=StageStatus.SKIPPED,
                error=f"discover: {exc}",
            )
            logger.error("discover_failed run_id=%s platform=%s error=%s", self.ctx.run.id, self.name, exc)
            raise

        if needs_fetch:
            await recorder.set_links(self.name, urls)
        await recorder.update_platform(
            self.name,
            discover_status=StageStatus.COMPLETED,
            fetch_status=StageStatus.PENDING if needs_fetch else StageStatus.SKIPPED,
        )
        logger.info(
            "discover_done run_id=%s platform=%s urls=%d scraped=%d",
            self.ctx.run.id,
            self.name,
            len(urls),
            counts.scraped,
        )
        return DiscoverOutcome(platform=self.name, mode=self.mode, needs_fetch=needs_fetch, urls=urls, counts=counts)

    async def fetch(self, urls: List[str]) -> IngestCounts:
        recorder = self.ctx.recorder
        clean = sanitize_urls(urls, self.platform)
        if not clean:
            await recorder.update_platform(self.name, fetch_status=StageStatus.COMPLETED)
            logger.info("fetch_skip_empty run_id=%s platform=%s", self.ctx.run.id, self.name)
            return IngestCounts()

        await recorder.update_platform(self.name, fetch_status=StageStatus.RUNNING)
        provider = self.ctx.registry.provider(self.platform)
        try:
            job_id = await provider.trigger_by_urls(clean)
            counts = await self._collect(job_id)
        except Exception as exc:
            await recorder.update_platform(self.name, fetch_status=StageStatus.FAILED, error=f"fetch: {exc}")
            logger.error("fetch_failed run_id=%s platform=%s error=%s", self.ctx.run.id, self.name, exc)
            raise
        await recorder.update_platform(self.name, fetch_status=StageStatus.COMPLETED)
        logger.info("fetch_done run_id=%s platform=%s urls=%d scraped=%d", self.ctx.run.id, self.name, len(clean), counts.scraped)
        return counts

    async def _keyword_discovery(self) -> IngestCounts:
        provider = self.ctx.registry.provider(self.platform)
        options: Dict[str, Any] = {"num_of_posts": self.limit}
        options.update(get_platform_spec(self.platform).keyword_options)
        job_id = await provider.trigger_by_keyword(self.ctx.campaign.query, options)
        return await self._collect(job_id)

    async def _search_discovery(self) -> List[str]:
        campaign = self.ctx.campaign
        results = await self.ctx.registry.search.search(
            campaign.query, self.name, google_domain=campaign.settings.google_domain
        )
        urls = extract_platform_urls(results, self.platform)[: self.limit]
        logger.info("search_urls run_id=%s platform=%s results=%d urls=%d", self.ctx.run.id, self.name, len(results), len(urls))
        return urls

    async def _dual_discovery(self) -> Tuple[IngestCounts, List[str]]:
        """Keyword posts and search URLs; the task fails only when both halves fail."""
        keyword_result, search_result = await asyncio.gather(
            self._keyword_discovery(), self._search_discovery(), return_exceptions=True
        )
        if isinstance(keyword_result, BaseException) and isinstance(search_result, BaseException):
            raise keyword_result
        if isinstance(keyword_result, BaseException):
            logger.warning("dual_keyword_failed run_id=%s platform=%s error=%s", self.ctx.run.id, self.name, keyword_result)
            keyword_result = IngestCounts()
        if isinstance(search_result, BaseException):
            logger.warning("dual_search_failed run_id=%s platform=%s error=%s", self.ctx.run.id, self.name, search_result)
            search_result = []
        return keyword_result, search_result

    async def _collect(self, job_id: str) -> IngestCounts:
        provider = self.ctx.registry.provider(self.platform)
        await self.ctx.recorder.add_job(self.name, job_id)
        await self.ctx.monitor.wait_for_completion(job_id, provider.poll_status)
        records = await download_with_retry(provider.download, job_id)
        return await self.ingest_records(records)

    async def ingest_records(self, records: List[Dict[str, Any]]) -> IngestCounts:
        """Normalize, gate and dedup each record; a bad record is counted, never fatal."""
        ctx = self.ctx
        counts = IngestCounts()
        for raw in records:
            try:
                record = normalize_record(self.platform, raw)
            except ValueError as exc:
                logger.debug("record_skipped platform=%s reason=%s", self.name, exc)
                counts.failed += 1
                continue

            if ctx.gate is not None:
                decision = await ctx.gate.check(record.text)
                if not decision.relevant:
                    counts.filtered += 1
                    continue

            try:
                result = await ctx.dedup.ingest(record, ctx.campaign.id, ctx.run.id, ctx.run.run_number)
            except Exception as exc:
                logger.warning("record_ingest_failed platform=%s url=%s error=%s", self.name, record.url, exc)
                counts.failed += 1
                continue
            counts.scraped += 1
            if result.created:
                counts.new += 1
            else:
                counts.updated += 1

        await ctx.recorder.increment_platform(
            self.name,
            posts_scraped=counts.scraped,
            posts_new=counts.new,
            posts_updated=counts.updated,
            posts_filtered=counts.filtered,
            posts_failed=counts.failed,
        )
        return counts
