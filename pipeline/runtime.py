"""Run orchestrator: discover -> fetch -> classify -> aggregate for one campaign run."""

from __future__ import annotations

import asyncio
import logging
from time import perf_counter
from typing import Dict, List, Optional, Sequence, Tuple
from uuid import uuid4

from aggregator.trends import build_analytics
from config import get_pipeline_settings
from core import AnalysisStatus, Analytics, Campaign, Run
from orchestrator.store import CampaignRunStore
from sources.registry import SourceRegistry

from .classify import BatchClassifier, ClassifySummary
from .dedup import PostDeduplicator
from .monitor import JobMonitor
from .platform_tasks import DiscoverOutcome, IngestCounts, PlatformTask, RunContext
from .relevance import RelevanceGate
from .stats import RunStatsRecorder


logger = logging.getLogger(__name__)


def _new_analytics_id() -> str:
    return f"ana_{uuid4().hex[:16]}"


class RunPipeline:
    """
    Executes one Run end to end.

    Stage 1 and stage 2 wait for every platform task to settle; a failing
    platform is recorded on its sub-record and never stops the others.
    Loading the Campaign/Run, classify and aggregate are fatal: the Run is
    marked failed and the error re-raised.
    """

    def __init__(
        self,
        runs: CampaignRunStore,
        registry: SourceRegistry,
        *,
        monitor: Optional[JobMonitor] = None,
        batch_size: Optional[int] = None,
        embed: bool = True,
    ) -> None:
        settings = get_pipeline_settings()
        self.runs = runs
        self.registry = registry
        self.monitor = monitor or JobMonitor()
        self.batch_size = int(settings.classify_batch_size if batch_size is None else batch_size)
        self.embed = embed

    async def run_pipeline(self, campaign_id: str, run_id: str) -> None:
        started = perf_counter()
        logger.info("run_start run_id=%s campaign_id=%s", run_id, campaign_id)
        try:
            await self._execute(campaign_id, run_id)
        except Exception as exc:
            logger.exception("run_failed run_id=%s campaign_id=%s error=%s", run_id, campaign_id, exc)
            try:
                await self.runs.mark_run_failed(run_id, str(exc) or exc.__class__.__name__)
            except Exception as mark_exc:
                logger.error("run_mark_failed_error run_id=%s error=%s", run_id, mark_exc)
            raise
        logger.info("run_done run_id=%s elapsed_sec=%.2f", run_id, perf_counter() - started)

    async def _execute(self, campaign_id: str, run_id: str) -> None:
        campaign = await self.runs.require_campaign(campaign_id)
        run = await self.runs.require_run(run_id)
        if run.is_terminal:
            logger.warning("run_skip_terminal run_id=%s status=%s", run.id, run.status.value)
            return

        dedup = PostDeduplicator(self.runs.posts)
        gate = None
        if campaign.settings.enable_relevance_filter:
            gate = RelevanceGate.for_campaign(self.registry.classifier, campaign.query, campaign.settings)

        async with RunStatsRecorder(self.runs, run.id) as recorder:
            ctx = RunContext(
                campaign=campaign,
                run=run,
                registry=self.registry,
                recorder=recorder,
                dedup=dedup,
                monitor=self.monitor,
                gate=gate,
            )
            tasks = [PlatformTask(platform, ctx) for platform in campaign.platforms]

            outcomes = await self.discover_stage(run, tasks)
            await self.fetch_stage(run, tasks, outcomes)
            await self.classify_stage(campaign, run, recorder)

        run = await self.runs.require_run(run.id)
        await self.aggregate_stage(campaign, run)

        completed = await self.runs.mark_run_completed(run.id)
        if completed is None:
            logger.warning("run_completion_skipped run_id=%s reason=already_terminal", run.id)
            return
        await self.runs.bump_campaign_stats(campaign.id, completed)
        logger.info(
            "run_completed run_id=%s scraped=%d analyzed=%d failed=%d avg_sentiment=%s",
            completed.id,
            completed.stats.posts_scraped,
            completed.stats.posts_analyzed,
            completed.stats.posts_failed,
            completed.stats.avg_sentiment,
        )

    async def discover_stage(
        self, run: Run, tasks: Sequence[PlatformTask]
    ) -> List[DiscoverOutcome | BaseException]:
        logger.info("stage_start run_id=%s stage=discover platforms=%d", run.id, len(tasks))
        outcomes = await asyncio.gather(*(task.discover() for task in tasks), return_exceptions=True)
        failed = [task.name for task, outcome in zip(tasks, outcomes) if isinstance(outcome, BaseException)]
        logger.info(
            "stage_done run_id=%s stage=discover ok=%d failed=%s",
            run.id,
            len(tasks) - len(failed),
            failed,
        )
        return list(outcomes)

    async def fetch_stage(
        self,
        run: Run,
        tasks: Sequence[PlatformTask],
        outcomes: Sequence[DiscoverOutcome | BaseException],
    ) -> Dict[str, IngestCounts | BaseException]:
        pending: List[Tuple[PlatformTask, DiscoverOutcome]] = [
            (task, outcome)
            for task, outcome in zip(tasks, outcomes)
            if not isinstance(outcome, BaseException) and outcome.needs_fetch
        ]
        if not pending:
            logger.info("stage_skip run_id=%s stage=fetch reason=no_platforms", run.id)
            return {}

        logger.info("stage_start run_id=%s stage=fetch platforms=%s", run.id, [task.name for task, _ in pending])
        results = await asyncio.gather(*(task.fetch(outcome.urls) for task, outcome in pending), return_exceptions=True)
        settled = {task.name: result for (task, _), result in zip(pending, results)}
        failed = [name for name, result in settled.items() if isinstance(result, BaseException)]
        logger.info("stage_done run_id=%s stage=fetch ok=%d failed=%s", run.id, len(settled) - len(failed), failed)
        return settled

    async def classify_stage(self, campaign: Campaign, run: Run, recorder: RunStatsRecorder) -> ClassifySummary:
        logger.info("stage_start run_id=%s stage=classify", run.id)
        classifier = BatchClassifier(
            self.registry.classifier,
            self.runs.posts,
            batch_size=self.batch_size,
            embed=self.embed,
        )
        summary = await classifier.classify_run(campaign, run, recorder)
        logger.info("stage_done run_id=%s stage=classify analyzed=%d failed=%d", run.id, summary.analyzed, summary.failed)
        return summary

    async def aggregate_stage(self, campaign: Campaign, run: Run) -> Analytics:
        logger.info("stage_start run_id=%s stage=aggregate", run.id)
        posts = self.runs.posts
        analyzed = await posts.list_created_in_run(
            campaign.id, run.id, platforms=campaign.platforms, status=AnalysisStatus.ANALYZED
        )
        seen = await posts.list_seen_in_run(campaign.id, run.run_number, platforms=campaign.platforms)
        analytics = build_analytics(_new_analytics_id(), campaign, run, analyzed, seen)
        await self.runs.analytics.save(analytics)
        logger.info("stage_done run_id=%s stage=aggregate analytics_id=%s posts=%d", run.id, analytics.id, analytics.post_count)
        return analytics
