"""Campaign and run persistence, run-number allocation and the stuck-run sweeper."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional
from uuid import uuid4

from config import get_pipeline_settings
from core import (
    Campaign,
    CampaignSettings,
    CampaignStatus,
    PlatformCampaignStats,
    Run,
    RunState,
    ScheduleConfig,
)
from storage.analytics_store import AnalyticsStore
from storage.document_store import BaseDocumentStore
from storage.post_store import PostStore
from utils.exceptions import CampaignNotFoundError, RunNotFoundError


logger = logging.getLogger(__name__)

CAMPAIGNS_COLLECTION = "campaigns"
RUNS_COLLECTION = "runs"

STUCK_RUN_ERROR = "Run marked as failed by system cleanup (stuck in running state)"

RunMutation = Callable[[Run], None]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_run_id() -> str:
    return f"run_{_utcnow().strftime('%Y%m%d_%H%M%S')}_{uuid4().hex[:8]}"


def _new_campaign_id() -> str:
    return f"cmp_{uuid4().hex[:12]}"


class CampaignRunStore:
    """
    Typed accessors over the document store.

    Every run mutation goes through `update_run`, which holds a store-wide
    lock across read/apply/write. Terminal runs keep their status, error and
    terminal timestamps whatever a mutation does.
    """

    def __init__(
        self,
        store: BaseDocumentStore,
        *,
        posts: Optional[PostStore] = None,
        analytics: Optional[AnalyticsStore] = None,
    ) -> None:
        self._store = store
        self.posts = posts or PostStore(store)
        self.analytics = analytics or AnalyticsStore(store)
        self._run_lock = asyncio.Lock()
        self._campaign_lock = asyncio.Lock()
        self._number_locks: Dict[str, asyncio.Lock] = {}

    # ------------------------------------------------------------------ campaigns

    async def create_campaign(
        self,
        query: str,
        platforms: List[str],
        *,
        settings: Optional[CampaignSettings] = None,
        schedule: Optional[ScheduleConfig] = None,
        campaign_id: Optional[str] = None,
    ) -> Campaign:
        campaign = Campaign(
            id=campaign_id or _new_campaign_id(),
            query=query,
            platforms=platforms,
            settings=settings or CampaignSettings(),
            schedule=schedule or ScheduleConfig(),
        )
        await self._store.insert(CAMPAIGNS_COLLECTION, campaign.id, campaign.model_dump(mode="json"))
        logger.info("campaign_created campaign_id=%s platforms=%s", campaign.id, [p.value for p in campaign.platforms])
        return campaign

    async def get_campaign(self, campaign_id: str) -> Optional[Campaign]:
        doc = await self._store.get(CAMPAIGNS_COLLECTION, campaign_id)
        return Campaign.model_validate(doc) if doc else None

    async def require_campaign(self, campaign_id: str) -> Campaign:
        campaign = await self.get_campaign(campaign_id)
        if campaign is None:
            raise CampaignNotFoundError(campaign_id)
        return campaign

    async def list_campaigns(self, *, status: Optional[CampaignStatus] = None) -> List[Campaign]:
        filters: Dict[str, Any] = {}
        if status is not None:
            filters["status"] = CampaignStatus(status).value
        docs = await self._store.query(CAMPAIGNS_COLLECTION, filters, order_by="created_at", descending=True)
        return [Campaign.model_validate(doc) for doc in docs]

    async def update_campaign(self, campaign_id: str, mutate: Callable[[Campaign], None]) -> Campaign:
        async with self._campaign_lock:
            campaign = await self.require_campaign(campaign_id)
            mutate(campaign)
            campaign.updated_at = _utcnow()
            await self._store.upsert(CAMPAIGNS_COLLECTION, campaign.id, campaign.model_dump(mode="json"))
            return campaign

    async def set_campaign_status(self, campaign_id: str, status: CampaignStatus) -> Campaign:
        value = CampaignStatus(status)

        def _apply(campaign: Campaign) -> None:
            campaign.status = value

        campaign = await self.update_campaign(campaign_id, _apply)
        logger.info("campaign_status campaign_id=%s status=%s", campaign_id, value.value)
        return campaign

    async def delete_campaign(self, campaign_id: str) -> Dict[str, int]:
        """Cascade: runs, posts in every platform collection, analytics, then the campaign."""
        await self.require_campaign(campaign_id)
        counts = {
            "runs": await self._store.delete_where(RUNS_COLLECTION, {"campaign_id": campaign_id}),
            "posts": await self.posts.delete_for_campaign(campaign_id),
            "analytics": await self.analytics.delete_for_campaign(campaign_id),
        }
        await self._store.delete(CAMPAIGNS_COLLECTION, campaign_id)
        self._number_locks.pop(campaign_id, None)
        logger.info("campaign_deleted campaign_id=%s cascade=%s", campaign_id, counts)
        return counts

    async def delete_all(self) -> Dict[str, int]:
        deleted = {"campaigns": 0, "runs": 0, "posts": 0, "analytics": 0}
        for campaign in await self.list_campaigns():
            counts = await self.delete_campaign(campaign.id)
            deleted["campaigns"] += 1
            for key, value in counts.items():
                deleted[key] += value
        return deleted

    # ----------------------------------------------------------------------- runs

    async def allocate_run_number(self, campaign_id: str) -> int:
        docs = await self._store.query(
            RUNS_COLLECTION, {"campaign_id": campaign_id}, order_by="run_number", descending=True, limit=1
        )
        return int(docs[0].get("run_number") or 0) + 1 if docs else 1

    async def create_run(self, campaign_id: str) -> Run:
        """Allocate the next run number and persist a `running` run."""
        lock = self._number_locks.setdefault(campaign_id, asyncio.Lock())
        async with lock:
            run_number = await self.allocate_run_number(campaign_id)
            run = Run(id=_new_run_id(), campaign_id=campaign_id, run_number=run_number)
            await self._store.insert(RUNS_COLLECTION, run.id, run.model_dump(mode="json"))
        logger.info("run_created run_id=%s campaign_id=%s run_number=%d", run.id, campaign_id, run_number)
        return run

    async def get_run(self, run_id: str) -> Optional[Run]:
        doc = await self._store.get(RUNS_COLLECTION, run_id)
        return Run.model_validate(doc) if doc else None

    async def require_run(self, run_id: str) -> Run:
        run = await self.get_run(run_id)
        if run is None:
            raise RunNotFoundError(run_id)
        return run

    async def get_latest_run(self, campaign_id: str) -> Optional[Run]:
        runs = await self.list_runs(campaign_id, limit=1)
        return runs[0] if runs else None

    async def list_runs(
        self,
        campaign_id: str,
        *,
        status: Optional[RunState] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Run]:
        filters: Dict[str, Any] = {"campaign_id": campaign_id}
        if status is not None:
            filters["status"] = RunState(status).value
        docs = await self._store.query(
            RUNS_COLLECTION, filters, order_by="run_number", descending=True, limit=limit, offset=offset
        )
        return [Run.model_validate(doc) for doc in docs]

    async def count_runs(self, campaign_id: str) -> int:
        return await self._store.count(RUNS_COLLECTION, {"campaign_id": campaign_id})

    async def update_run(self, run_id: str, mutate: RunMutation) -> Run:
        async with self._run_lock:
            run = await self.require_run(run_id)
            frozen = run.model_copy(deep=True) if run.is_terminal else None
            mutate(run)
            if frozen is not None:
                run.status = frozen.status
                run.error = frozen.error
                run.completed_at = frozen.completed_at
                run.failed_at = frozen.failed_at
            run.stats.recompute_totals()
            run.updated_at = _utcnow()
            await self._store.upsert(RUNS_COLLECTION, run.id, run.model_dump(mode="json"))
            return run

    async def _transition(self, run_id: str, target: RunState, error: Optional[str] = None) -> Optional[Run]:
        """`running -> target`, or None when the run is already terminal."""
        async with self._run_lock:
            run = await self.require_run(run_id)
            if run.is_terminal:
                logger.warning(
                    "run_transition_ignored run_id=%s status=%s target=%s", run_id, run.status.value, target.value
                )
                return None
            now = _utcnow()
            run.status = target
            run.updated_at = now
            if target == RunState.COMPLETED:
                run.completed_at = now
            else:
                run.error = str(error or "unknown error")
                run.failed_at = now
            await self._store.upsert(RUNS_COLLECTION, run.id, run.model_dump(mode="json"))
            return run

    async def mark_run_completed(self, run_id: str) -> Optional[Run]:
        return await self._transition(run_id, RunState.COMPLETED)

    async def mark_run_failed(self, run_id: str, error: str) -> Optional[Run]:
        return await self._transition(run_id, RunState.FAILED, error)

    async def cleanup_stuck_runs(self, cutoff_minutes: Optional[int] = None, *, now: Optional[datetime] = None) -> List[str]:
        """Fail every running run whose last activity is older than the cutoff. Returns swept run ids."""
        minutes = get_pipeline_settings().stuck_run_cutoff_minutes if cutoff_minutes is None else int(cutoff_minutes)
        cutoff = (now or _utcnow()) - timedelta(minutes=minutes)
        candidates = await self._store.query(RUNS_COLLECTION, {"status": RunState.RUNNING.value})
        swept: List[str] = []
        for doc in candidates:
            run = Run.model_validate(doc)
            if run.last_activity_at >= cutoff:
                continue
            if await self.mark_run_failed(run.id, STUCK_RUN_ERROR) is not None:
                swept.append(run.id)
        if swept:
            logger.warning("stuck_runs_swept count=%d cutoff_minutes=%d run_ids=%s", len(swept), minutes, swept)
        return swept

    # ---------------------------------------------------------------------- stats

    async def bump_campaign_stats(self, campaign_id: str, run: Run) -> Campaign:
        """Fold a completed run into the campaign aggregate."""
        post_counts = await self.posts.count_posts(campaign_id)
        completed = await self.list_runs(campaign_id, status=RunState.COMPLETED)
        sentiments = [item.stats.avg_sentiment for item in completed if item.stats.avg_sentiment is not None]
        if run.stats.avg_sentiment is not None and all(item.id != run.id for item in completed):
            sentiments.append(run.stats.avg_sentiment)
        last_run_at = run.completed_at or _utcnow()

        def _apply(campaign: Campaign) -> None:
            stats = campaign.stats
            stats.total_runs += 1
            stats.last_run_at = last_run_at
            stats.total_posts_found = sum(post_counts.get(p.value, 0) for p in campaign.platforms)
            stats.avg_sentiment_overall = round(sum(sentiments) / len(sentiments), 2) if sentiments else None
            for platform in campaign.platforms:
                entry = stats.by_platform.get(platform.value) or PlatformCampaignStats()
                entry.total_posts = post_counts.get(platform.value, 0)
                sub = run.stats.by_platform.get(platform.value)
                if sub is not None and sub.avg_sentiment is not None:
                    entry.avg_sentiment = sub.avg_sentiment
                entry.last_run_at = last_run_at
                stats.by_platform[platform.value] = entry

        return await self.update_campaign(campaign_id, _apply)

    async def get_sentiment_trend(self, campaign_id: str) -> List[Dict[str, Any]]:
        runs = await self.list_runs(campaign_id, status=RunState.COMPLETED)
        trend = []
        for run in sorted(runs, key=lambda item: item.run_number):
            trend.append(
                {
                    "run_id": run.id,
                    "run_number": run.run_number,
                    "date": (run.completed_at or run.started_at).isoformat(),
                    "avg_sentiment": run.stats.avg_sentiment,
                    "posts_analyzed": run.stats.posts_analyzed,
                    "posts_scraped": run.stats.posts_scraped,
                }
            )
        return trend
