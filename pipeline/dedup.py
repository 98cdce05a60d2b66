"""Cross-run post deduplication keyed by normalized platform URL."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Optional
from uuid import NAMESPACE_URL, uuid5

from core import AnalysisStatus, EngagementSnapshot, Platform, Post, PostAnalysis
from storage.post_store import PostStore
from utils.exceptions import DocumentExistsError

from .normalize import NormalizedRecord
from .sanitize import normalize_platform_url


logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def post_key(campaign_id: str, platform: Platform | str, platform_url: str) -> str:
    """Deterministic post id, so concurrent first sightings collide on insert."""
    seed = f"{campaign_id}:{Platform(platform).value}:{platform_url}"
    return f"post_{uuid5(NAMESPACE_URL, seed).hex}"


def _snapshot(record: NormalizedRecord, run_number: int, run_id: str) -> EngagementSnapshot:
    return EngagementSnapshot(
        run_number=int(run_number),
        run_id=run_id,
        timestamp=_utcnow(),
        **record.engagement.model_dump(),
    )


@dataclass
class IngestResult:
    created: bool
    post: Post


class PostDeduplicator:
    """
    Resolve / merge / materialize posts.

    Invariant: one Post per (campaign, platform, normalized url), with
    ``len(engagement_history) == total_appearances``.
    """

    def __init__(self, posts: PostStore) -> None:
        self._posts = posts
        self._key_locks: Dict[str, asyncio.Lock] = {}

    async def resolve(self, platform_url: str, platform: Platform | str, campaign_id: str) -> Optional[Post]:
        url = normalize_platform_url(platform_url, platform)
        if not url:
            return None
        found = await self._posts.get(platform, post_key(campaign_id, platform, url))
        if found is not None:
            return found
        return await self._posts.find_by_url(platform, campaign_id, url)

    def merge(self, existing: Post, record: NormalizedRecord, run_number: int, run_id: str) -> Post:
        """Return `existing` extended with this sighting. Does not persist."""
        post = existing.model_copy(deep=True)
        history = list(post.engagement_history)
        history.append(_snapshot(record, run_number, run_id))
        # stable sort keeps arrival order within one run
        history.sort(key=lambda item: item.run_number)
        post.engagement_history = history
        post.total_appearances = len(history)
        post.last_seen_run = max(int(post.last_seen_run), int(run_number))
        post.engagement = record.engagement.model_copy()
        post.raw_data = dict(record.raw)
        if record.text:
            post.text = record.text
        if record.hashtags:
            post.hashtags = list(record.hashtags)
        post.scraped_at = _utcnow()
        return post

    def materialize(self, record: NormalizedRecord, campaign_id: str, run_id: str, run_number: int) -> Post:
        now = _utcnow()
        return Post(
            id=post_key(campaign_id, record.platform, record.url),
            campaign_id=campaign_id,
            run_id=run_id,
            platform=record.platform,
            platform_url=record.url,
            post_id=record.post_id,
            content_type=record.content_type,
            text=record.text,
            hashtags=list(record.hashtags),
            author=record.author,
            date_posted=record.date_posted,
            engagement=record.engagement.model_copy(),
            raw_data=dict(record.raw),
            analysis=PostAnalysis(status=AnalysisStatus.PENDING),
            first_seen_run=int(run_number),
            last_seen_run=int(run_number),
            total_appearances=1,
            engagement_history=[_snapshot(record, run_number, run_id)],
            created_at=now,
            updated_at=now,
            scraped_at=now,
        )

    async def ingest(self, record: NormalizedRecord, campaign_id: str, run_id: str, run_number: int) -> IngestResult:
        """Merge into an existing post or insert a new one; a lost insert race falls back to merge."""
        key = post_key(campaign_id, record.platform, record.url)
        lock = self._key_locks.setdefault(key, asyncio.Lock())
        async with lock:
            return await self._ingest_locked(record, campaign_id, run_id, run_number)

    async def _ingest_locked(
        self, record: NormalizedRecord, campaign_id: str, run_id: str, run_number: int
    ) -> IngestResult:
        existing = await self.resolve(record.url, record.platform, campaign_id)
        if existing is None:
            fresh = self.materialize(record, campaign_id, run_id, run_number)
            try:
                await self._posts.insert(fresh)
                return IngestResult(created=True, post=fresh)
            except DocumentExistsError:
                logger.info("dedup_insert_conflict platform=%s url=%s", record.platform.value, record.url)
                existing = await self.resolve(record.url, record.platform, campaign_id)
                if existing is None:
                    raise

        merged = self.merge(existing, record, run_number, run_id)
        await self._posts.save(merged)
        return IngestResult(created=False, post=merged)
