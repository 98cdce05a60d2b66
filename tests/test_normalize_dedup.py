from __future__ import annotations

import asyncio
from typing import Optional

import pytest

from core import AnalysisStatus, Platform, Post
from pipeline.dedup import PostDeduplicator, post_key
from pipeline.normalize import normalize_record
from storage.document_store import MemoryDocumentStore
from storage.post_store import PostStore

from fakes import instagram_record, tiktok_record


def test_normalize_tiktok_maps_engagement_and_hashtags() -> None:
    record = normalize_record("tiktok", tiktok_record("7001", "Loving these runners #RunClub #shoes", likes=42, comments=7))

    assert record.platform == Platform.TIKTOK
    assert record.url == "https://tiktok.com/@creator/video/7001"
    assert record.post_id == "7001"
    assert record.content_type == "video"
    assert record.author == "creator"
    assert record.hashtags == ["runclub", "shoes"]
    assert record.engagement.likes == 42
    assert record.engagement.comments == 7
    assert record.engagement.views == 420
    assert record.date_posted is not None and record.date_posted.year == 2026


def test_normalize_parses_abbreviated_counts_and_epoch_dates() -> None:
    raw = {
        "url": "https://www.reddit.com/r/running/comments/x1/title/?tl=it",
        "title": "Best trainers?",
        "description": "Asking for a friend",
        "num_upvotes": "1.2K",
        "num_comments": "3,400",
        "user_posted": "runner42",
        "date_posted": 1760000000000,
    }
    record = normalize_record(Platform.REDDIT, raw)

    assert record.url == "https://reddit.com/r/running/comments/x1/title"
    assert record.text == "Best trainers? Asking for a friend"
    assert record.engagement.likes == 1200
    assert record.engagement.comments == 3400
    assert record.date_posted is not None and record.date_posted.tzinfo is not None


def test_normalize_instagram_detects_reels() -> None:
    raw = instagram_record("R1", "new drop")
    raw["url"] = "https://www.instagram.com/reel/R1/"
    assert normalize_record("instagram", raw).content_type == "reel"


def test_normalize_rejects_records_without_url() -> None:
    with pytest.raises(ValueError):
        normalize_record("tiktok", {"description": "no link"})
    with pytest.raises(ValueError):
        normalize_record("instagram", {"error": "dead_page", "input": {"url": ""}})


def _store() -> PostStore:
    return PostStore(MemoryDocumentStore())


@pytest.mark.asyncio
async def test_ingest_creates_then_merges_across_runs() -> None:
    posts = _store()
    dedup = PostDeduplicator(posts)

    first = await dedup.ingest(normalize_record("tiktok", tiktok_record("1", "first", likes=10)), "cmp", "run_a", 1)
    assert first.created is True
    assert first.post.total_appearances == 1
    assert first.post.first_seen_run == 1
    assert first.post.analysis.status == AnalysisStatus.PENDING

    raw = tiktok_record("1", "first, edited", likes=25)
    raw["url"] = "https://tiktok.com/@creator/video/1?utm_source=copy"
    second = await dedup.ingest(normalize_record("tiktok", raw), "cmp", "run_b", 2)

    assert second.created is False
    assert second.post.id == first.post.id
    assert second.post.run_id == "run_a"
    assert second.post.first_seen_run == 1
    assert second.post.last_seen_run == 2
    assert second.post.total_appearances == 2
    assert [item.run_number for item in second.post.engagement_history] == [1, 2]
    assert second.post.engagement.likes == 25
    assert second.post.text == "first, edited"

    stored, total = await posts.get_posts("cmp", platforms=["tiktok"])
    assert total == 1
    assert len(stored[0].engagement_history) == stored[0].total_appearances == 2


@pytest.mark.asyncio
async def test_same_url_in_other_campaign_is_a_separate_post() -> None:
    posts = _store()
    dedup = PostDeduplicator(posts)
    record = normalize_record("tiktok", tiktok_record("9", "shared"))

    a = await dedup.ingest(record, "cmp_a", "run_a", 1)
    b = await dedup.ingest(record, "cmp_b", "run_b", 1)

    assert a.created and b.created
    assert a.post.id != b.post.id
    assert post_key("cmp_a", "tiktok", record.url) == a.post.id


@pytest.mark.asyncio
async def test_repeat_within_one_run_keeps_history_consistent() -> None:
    dedup = PostDeduplicator(_store())
    record = normalize_record("instagram", instagram_record("DUP", "twice"))

    await dedup.ingest(record, "cmp", "run_1", 1)
    result = await dedup.ingest(record, "cmp", "run_1", 1)

    assert result.post.total_appearances == 2
    assert len(result.post.engagement_history) == 2
    assert result.post.last_seen_run == 1


@pytest.mark.asyncio
async def test_concurrent_first_sightings_produce_one_post() -> None:
    posts = _store()
    dedup = PostDeduplicator(posts)
    record = normalize_record("tiktok", tiktok_record("77", "race"))

    results = await asyncio.gather(*(dedup.ingest(record, "cmp", "run_1", 1) for _ in range(5)))

    assert sum(1 for item in results if item.created) == 1
    stored, total = await posts.get_posts("cmp")
    assert total == 1
    assert stored[0].total_appearances == 5
    assert len(stored[0].engagement_history) == 5


class _StaleResolveDeduplicator(PostDeduplicator):
    """First lookup misses, simulating a writer that inserted between resolve and insert."""

    def __init__(self, posts: PostStore) -> None:
        super().__init__(posts)
        self.lookups = 0

    async def resolve(self, platform_url, platform, campaign_id) -> Optional[Post]:
        self.lookups += 1
        if self.lookups == 1:
            return None
        return await super().resolve(platform_url, platform, campaign_id)


@pytest.mark.asyncio
async def test_lost_insert_race_falls_back_to_merge() -> None:
    posts = _store()
    record = normalize_record("tiktok", tiktok_record("5", "conflict"))
    await PostDeduplicator(posts).ingest(record, "cmp", "run_1", 1)

    dedup = _StaleResolveDeduplicator(posts)
    result = await dedup.ingest(record, "cmp", "run_2", 2)

    assert result.created is False
    assert dedup.lookups == 2
    assert result.post.total_appearances == 2
    assert result.post.last_seen_run == 2


@pytest.mark.asyncio
async def test_resolve_normalizes_lookup_url() -> None:
    dedup = PostDeduplicator(_store())
    record = normalize_record("instagram", instagram_record("Q1", "hello"))
    await dedup.ingest(record, "cmp", "run_1", 1)

    found = await dedup.resolve("http://www.instagram.com/p/Q1/?igshid=abc", "instagram", "cmp")
    assert found is not None
    assert found.platform_url == "https://instagram.com/p/Q1"
    assert await dedup.resolve("", "instagram", "cmp") is None
