"""Service layer for campaigns, run triggering and result queries."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Set, Tuple

from pydantic import ValidationError

from core import (
    ALL_PLATFORMS,
    Analytics,
    Campaign,
    CampaignSettings,
    CampaignStatus,
    Post,
    Run,
    RunState,
    ScheduleConfig,
)
from sources.registry import SourceRegistry
from storage.vector_search import SearchResult, rank_by_similarity
from utils.exceptions import CampaignPausedError, ConfigurationError, InvalidCampaignError

from .queue import RunQueue
from .store import CampaignRunStore


logger = logging.getLogger(__name__)

_PLATFORM_NAMES = {platform.value for platform in ALL_PLATFORMS}


def _run_summary(run: Optional[Run]) -> Optional[Dict[str, Any]]:
    if run is None:
        return None
    return {
        "id": run.id,
        "run_number": run.run_number,
        "status": run.status.value,
        "started_at": run.started_at.isoformat(),
        "completed_at": run.completed_at.isoformat() if run.completed_at else None,
        "posts_scraped": run.stats.posts_scraped,
        "posts_analyzed": run.stats.posts_analyzed,
        "error": run.error,
    }


class ListeningService:
    """
    Entry points used by the HTTP app and the CLI.

    `trigger_run` only persists a `running` Run and hands it to the queue;
    callers observe progress through the stored Run.
    """

    def __init__(
        self,
        runs: CampaignRunStore,
        queue: RunQueue,
        *,
        registry: Optional[SourceRegistry] = None,
        sweep_cutoff_minutes: Optional[int] = None,
    ) -> None:
        self.runs = runs
        self.queue = queue
        self.registry = registry
        self.sweep_cutoff_minutes = sweep_cutoff_minutes
        self._background: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------ campaigns

    async def create_campaign(
        self,
        query: str,
        platforms: List[str],
        *,
        settings: Optional[CampaignSettings | Dict[str, Any]] = None,
        schedule: Optional[ScheduleConfig | Dict[str, Any]] = None,
        trigger_first_run: bool = False,
    ) -> Tuple[Campaign, Optional[str]]:
        """Validate and persist a campaign; optionally trigger its first run."""
        names = [str(item or "").strip().lower() for item in (platforms or [])]
        unknown = sorted({name for name in names if name not in _PLATFORM_NAMES})
        if unknown:
            raise InvalidCampaignError("unsupported platforms", {"platforms": unknown})
        if not str(query or "").strip():
            raise InvalidCampaignError("query is required")
        try:
            campaign_settings = CampaignSettings.model_validate(settings or {})
            campaign_schedule = ScheduleConfig.model_validate(schedule or {})
            campaign = await self.runs.create_campaign(
                query,
                names,
                settings=campaign_settings,
                schedule=campaign_schedule,
            )
        except ValidationError as exc:
            raise InvalidCampaignError("invalid campaign", {"errors": exc.errors(include_url=False)}) from exc

        run_id = await self.trigger_run(campaign.id) if trigger_first_run else None
        return campaign, run_id

    async def get_campaign(self, campaign_id: str) -> Campaign:
        return await self.runs.require_campaign(campaign_id)

    async def list_campaigns(self, *, status: Optional[CampaignStatus] = None) -> List[Dict[str, Any]]:
        """Campaigns enriched with run/post totals. Schedules the stuck-run sweeper."""
        self._schedule_sweep()
        items: List[Dict[str, Any]] = []
        for campaign in await self.runs.list_campaigns(status=status):
            post_counts = await self.runs.posts.count_posts(campaign.id, platforms=campaign.platforms)
            payload = campaign.model_dump(mode="json")
            payload["total_runs"] = await self.runs.count_runs(campaign.id)
            payload["latest_run"] = _run_summary(await self.runs.get_latest_run(campaign.id))
            payload["total_posts"] = sum(post_counts.values())
            items.append(payload)
        return items

    async def set_campaign_status(self, campaign_id: str, status: CampaignStatus | str) -> Campaign:
        try:
            value = CampaignStatus(status)
        except ValueError as exc:
            raise InvalidCampaignError("invalid campaign status", {"status": status}) from exc
        return await self.runs.set_campaign_status(campaign_id, value)

    async def delete_campaign(self, campaign_id: str) -> Dict[str, int]:
        return await self.runs.delete_campaign(campaign_id)

    async def delete_all_campaigns(self) -> Dict[str, int]:
        """Admin wipe: every campaign with its runs, posts and analytics."""
        deleted = await self.runs.delete_all()
        logger.warning("all_campaigns_deleted counts=%s", deleted)
        return deleted

    # ----------------------------------------------------------------------- runs

    async def trigger_run(self, campaign_id: str) -> str:
        """Create a `running` Run for the campaign, enqueue it and return its id."""
        campaign = await self.runs.require_campaign(campaign_id)
        if campaign.status == CampaignStatus.PAUSED:
            raise CampaignPausedError(campaign_id)
        run = await self.runs.create_run(campaign.id)
        await self.queue.enqueue(campaign.id, run.id)
        logger.info("run_triggered run_id=%s campaign_id=%s run_number=%d", run.id, campaign.id, run.run_number)
        return run.id

    async def get_run(self, run_id: str) -> Run:
        return await self.runs.require_run(run_id)

    async def list_runs(self, campaign_id: str, *, limit: int = 20, offset: int = 0) -> Tuple[List[Run], int]:
        await self.runs.require_campaign(campaign_id)
        runs = await self.runs.list_runs(campaign_id, limit=max(0, int(limit)), offset=max(0, int(offset)))
        return runs, await self.runs.count_runs(campaign_id)

    async def sweep_stuck_runs(self, cutoff_minutes: Optional[int] = None) -> List[str]:
        minutes = self.sweep_cutoff_minutes if cutoff_minutes is None else cutoff_minutes
        return await self.runs.cleanup_stuck_runs(minutes)

    def _schedule_sweep(self) -> None:
        task = asyncio.create_task(self.sweep_stuck_runs(), name="stuck-run-sweep")
        self._background.add(task)
        task.add_done_callback(self._sweep_done)

    def _sweep_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("stuck_run_sweep_failed error=%s", exc)

    async def wait_background(self) -> None:
        """Wait for background sweeps started by reads."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # -------------------------------------------------------------------- results

    async def get_posts(
        self,
        campaign_id: str,
        *,
        platform: Optional[str] = None,
        run_id: Optional[str] = None,
        sentiment: Optional[str] = None,
        sort_by: str = "recent",
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[Post], int]:
        campaign = await self.runs.require_campaign(campaign_id)
        platforms = [platform] if platform else campaign.platforms
        if platform and str(platform).strip().lower() not in _PLATFORM_NAMES:
            raise InvalidCampaignError("unsupported platform", {"platform": platform})
        return await self.runs.posts.get_posts(
            campaign.id,
            platforms=platforms,
            run_id=run_id,
            sentiment=sentiment,
            sort_by=sort_by,
            limit=limit,
            offset=offset,
        )

    async def get_campaign_stats(self, campaign_id: str) -> Dict[str, Any]:
        """Campaign aggregate plus live post and run counts across platforms."""
        campaign = await self.runs.require_campaign(campaign_id)
        post_counts = await self.runs.posts.count_posts(campaign.id, platforms=campaign.platforms)
        completed = await self.runs.list_runs(campaign.id, status=RunState.COMPLETED)
        failed = await self.runs.list_runs(campaign.id, status=RunState.FAILED)

        by_platform: Dict[str, Any] = {}
        for platform in campaign.platforms:
            entry = campaign.stats.by_platform.get(platform.value)
            by_platform[platform.value] = {
                "total_posts": post_counts.get(platform.value, 0),
                "avg_sentiment": entry.avg_sentiment if entry else None,
                "last_run_at": entry.last_run_at.isoformat() if entry and entry.last_run_at else None,
            }

        return {
            "campaign_id": campaign.id,
            "query": campaign.query,
            "status": campaign.status.value,
            "total_runs": await self.runs.count_runs(campaign.id),
            "completed_runs": len(completed),
            "failed_runs": len(failed),
            "total_posts": sum(post_counts.values()),
            "posts_analyzed": sum(run.stats.posts_analyzed for run in completed),
            "avg_sentiment_overall": campaign.stats.avg_sentiment_overall,
            "last_run_at": campaign.stats.last_run_at.isoformat() if campaign.stats.last_run_at else None,
            "latest_run": _run_summary(await self.runs.get_latest_run(campaign.id)),
            "by_platform": by_platform,
        }

    async def get_sentiment_trend(self, campaign_id: str) -> List[Dict[str, Any]]:
        await self.runs.require_campaign(campaign_id)
        return await self.runs.get_sentiment_trend(campaign_id)

    async def get_latest_analytics(self, campaign_id: str) -> Optional[Analytics]:
        await self.runs.require_campaign(campaign_id)
        return await self.runs.analytics.get_latest(campaign_id)

    async def get_run_analytics(self, run_id: str) -> Optional[Analytics]:
        await self.runs.require_run(run_id)
        return await self.runs.analytics.get_for_run(run_id)

    async def semantic_search(
        self,
        campaign_id: str,
        query: str,
        *,
        limit: int = 20,
        min_similarity: float = 0.3,
        platforms: Optional[List[str]] = None,
        sentiment: Optional[str] = None,
    ) -> List[SearchResult]:
        """
        Rank the campaign's analyzed posts by cosine similarity to the query.

        The query is embedded with the classifier's embedding model; posts
        without an embedding are not searchable.
        """
        campaign = await self.runs.require_campaign(campaign_id)
        text = str(query or "").strip()
        if not text:
            raise InvalidCampaignError("search query is required")
        if self.registry is None:
            raise ConfigurationError("no classifier client configured")
        classifier = self.registry.classifier

        names = [str(item or "").strip().lower() for item in (platforms or [])]
        unknown = sorted({name for name in names if name not in _PLATFORM_NAMES})
        if unknown:
            raise InvalidCampaignError("unsupported platforms", {"platforms": unknown})
        try:
            posts = await self.runs.posts.list_embedded(
                campaign.id,
                platforms=names or campaign.platforms,
                sentiment=sentiment,
            )
        except ValueError as exc:
            raise InvalidCampaignError("invalid sentiment filter", {"sentiment": sentiment}) from exc

        query_embedding = await classifier.embed(text)
        results = rank_by_similarity(query_embedding, posts, limit=limit, min_similarity=min_similarity)
        logger.info(
            "semantic_search campaign_id=%s candidates=%d matches=%d top_score=%s",
            campaign.id,
            len(posts),
            len(results),
            f"{results[0].score:.3f}" if results else None,
        )
        return results
