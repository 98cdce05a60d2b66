"""Typed accessors for deduplicated posts, partitioned by platform collection."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from core import ALL_PLATFORMS, AnalysisStatus, Platform, Post
from .document_store import BaseDocumentStore


_SORT_FIELDS = {
    "recent": "scraped_at",
    "date": "date_posted",
    "sentiment": "analysis.sentiment_score",
    "likes": "engagement.likes",
    "comments": "engagement.comments",
    "views": "engagement.views",
    "appearances": "total_appearances",
}

_SENTIMENT_FILTERS: Dict[str, Dict[str, Any]] = {
    "positive": {"analysis.sentiment_score__gte": 8},
    "neutral": {"analysis.sentiment_score__gte": 4, "analysis.sentiment_score__lte": 7},
    "negative": {"analysis.sentiment_score__lte": 3},
}


def collection_for(platform: Any) -> str:
    return Platform(platform).collection


def _sentiment_filter(sentiment: str) -> Dict[str, Any]:
    bucket = _SENTIMENT_FILTERS.get(str(sentiment).strip().lower())
    if bucket is None:
        raise ValueError(f"unknown sentiment filter: {sentiment}")
    return bucket


def _platforms(platforms: Optional[Iterable[Any]]) -> List[Platform]:
    if platforms is None:
        return list(ALL_PLATFORMS)
    return [Platform(item) for item in platforms]


class PostStore:
    """Post persistence over a document store."""

    def __init__(self, store: BaseDocumentStore) -> None:
        self._store = store

    async def get(self, platform: Any, post_id: str) -> Optional[Post]:
        doc = await self._store.get(collection_for(platform), post_id)
        return Post.model_validate(doc) if doc else None

    async def find_by_url(self, platform: Any, campaign_id: str, platform_url: str) -> Optional[Post]:
        """Exact lookup on the normalized dedup key."""
        docs = await self._store.query(
            collection_for(platform),
            {"campaign_id": campaign_id, "platform_url": platform_url},
            order_by="created_at",
            limit=1,
        )
        return Post.model_validate(docs[0]) if docs else None

    async def insert(self, post: Post) -> Post:
        """Insert-if-absent; raises `DocumentExistsError` on conflict."""
        await self._store.insert(post.platform.collection, post.id, post.model_dump(mode="json"))
        return post

    async def save(self, post: Post) -> Post:
        post.updated_at = datetime.now(timezone.utc)
        await self._store.upsert(post.platform.collection, post.id, post.model_dump(mode="json"))
        return post

    async def list_seen_in_run(
        self,
        campaign_id: str,
        run_number: int,
        *,
        platforms: Optional[Iterable[Any]] = None,
        status: Optional[AnalysisStatus] = None,
    ) -> List[Post]:
        """Posts created or re-seen by the given run, across platform collections."""
        filters: Dict[str, Any] = {"campaign_id": campaign_id, "last_seen_run": int(run_number)}
        if status is not None:
            filters["analysis.status"] = AnalysisStatus(status).value
        return await self._query_many(_platforms(platforms), filters, order_by="created_at")

    async def list_created_in_run(
        self,
        campaign_id: str,
        run_id: str,
        *,
        platforms: Optional[Iterable[Any]] = None,
        status: Optional[AnalysisStatus] = None,
    ) -> List[Post]:
        filters: Dict[str, Any] = {"campaign_id": campaign_id, "run_id": run_id}
        if status is not None:
            filters["analysis.status"] = AnalysisStatus(status).value
        return await self._query_many(_platforms(platforms), filters, order_by="created_at")

    async def get_posts(
        self,
        campaign_id: str,
        *,
        platforms: Optional[Iterable[Any]] = None,
        run_id: Optional[str] = None,
        sentiment: Optional[str] = None,
        sort_by: str = "recent",
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[Post], int]:
        """Filtered, sorted, paged listing. Returns (page, total)."""
        filters: Dict[str, Any] = {"campaign_id": campaign_id}
        if run_id:
            filters["run_id"] = run_id
        if sentiment:
            filters.update(_sentiment_filter(sentiment))

        posts = await self._query_many(_platforms(platforms), filters)
        field = _SORT_FIELDS.get(str(sort_by or "recent").strip().lower(), "scraped_at")
        posts.sort(key=lambda post: _sort_value(post, field), reverse=True)
        start = max(0, int(offset))
        return posts[start:start + max(0, int(limit))], len(posts)

    async def list_embedded(
        self,
        campaign_id: str,
        *,
        platforms: Optional[Iterable[Any]] = None,
        sentiment: Optional[str] = None,
    ) -> List[Post]:
        """Analyzed posts carrying an embedding, optionally within one sentiment bucket."""
        filters: Dict[str, Any] = {
            "campaign_id": campaign_id,
            "analysis.status": AnalysisStatus.ANALYZED.value,
            "analysis.embedding__exists": True,
        }
        if sentiment:
            filters.update(_sentiment_filter(sentiment))
        return await self._query_many(_platforms(platforms), filters)

    async def count_posts(self, campaign_id: str, *, platforms: Optional[Iterable[Any]] = None) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for platform in _platforms(platforms):
            counts[platform.value] = await self._store.count(platform.collection, {"campaign_id": campaign_id})
        return counts

    async def delete_for_campaign(self, campaign_id: str) -> int:
        deleted = 0
        for platform in ALL_PLATFORMS:
            deleted += await self._store.delete_where(platform.collection, {"campaign_id": campaign_id})
        return deleted

    async def _query_many(
        self,
        platforms: List[Platform],
        filters: Dict[str, Any],
        *,
        order_by: Optional[str] = None,
    ) -> List[Post]:
        posts: List[Post] = []
        for platform in platforms:
            docs = await self._store.query(platform.collection, filters, order_by=order_by)
            posts.extend(Post.model_validate(doc) for doc in docs)
        return posts


def _sort_value(post: Post, field: str) -> Tuple[int, float]:
    value: Any = post
    for part in field.split("."):
        value = getattr(value, part, None)
        if value is None:
            return (0, 0.0)
    if isinstance(value, datetime):
        return (1, value.timestamp())
    return (1, float(value))
