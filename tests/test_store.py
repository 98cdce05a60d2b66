from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from core import Analytics, AnalysisStatus, CampaignStatus, PostAnalysis, RunState
from orchestrator.store import RUNS_COLLECTION, STUCK_RUN_ERROR
from pipeline.dedup import PostDeduplicator
from pipeline.normalize import normalize_record
from storage.document_store import DiskDocumentStore, MemoryDocumentStore
from storage.query import apply_query, matches
from utils.exceptions import CampaignNotFoundError, DocumentExistsError, RunNotFoundError

from fakes import instagram_record, make_runs, tiktok_record


def test_query_lookups_and_ordering() -> None:
    docs = [
        {"id": "a", "status": "running", "stats": {"n": 3}, "updated_at": "2026-10-01T10:00:00+00:00"},
        {"id": "b", "status": "completed", "stats": {"n": 7}, "updated_at": "2026-10-02T10:00:00Z"},
        {"id": "c", "status": "running", "updated_at": "2026-09-30T10:00:00Z"},
    ]

    assert matches(docs[0], {"status": "running", "stats.n__gte": 3})
    assert not matches(docs[2], {"stats.n__gte": 0})
    assert matches(docs[2], {"stats.n__exists": False})
    assert matches(docs[1], {"status__in": ["completed", "failed"], "status__ne": "running"})

    cutoff = datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)
    stale = apply_query(docs, {"status": "running", "updated_at__lt": cutoff}, order_by="updated_at")
    assert [doc["id"] for doc in stale] == ["c", "a"]

    paged = apply_query(docs, None, order_by="updated_at", descending=True, limit=1, offset=1)
    assert [doc["id"] for doc in paged] == ["a"]


@pytest.mark.asyncio
async def test_memory_store_insert_is_if_absent() -> None:
    store = MemoryDocumentStore()
    await store.insert("things", "k1", {"id": "k1", "v": 1})
    with pytest.raises(DocumentExistsError):
        await store.insert("things", "k1", {"id": "k1", "v": 2})
    assert (await store.get("things", "k1"))["v"] == 1


@pytest.mark.asyncio
async def test_disk_store_roundtrip_and_conflict(tmp_path) -> None:
    store = DiskDocumentStore(root_dir=str(tmp_path / "docs"))
    await store.insert("runs", "run_1", {"id": "run_1", "status": "running"})
    with pytest.raises(DocumentExistsError):
        await store.insert("runs", "run_1", {"id": "run_1"})

    await store.upsert("runs", "run_1", {"id": "run_1", "status": "failed"})
    assert await store.count("runs", {"status": "failed"}) == 1
    assert await store.list_collections() == ["runs"]
    assert await store.delete("runs", "run_1") is True
    assert await store.get("runs", "run_1") is None


@pytest.mark.asyncio
async def test_campaign_crud_and_status() -> None:
    runs = make_runs()
    campaign = await runs.create_campaign("running shoes", ["tiktok", "TikTok", "reddit"])
    assert [p.value for p in campaign.platforms] == ["tiktok", "reddit"]

    paused = await runs.set_campaign_status(campaign.id, CampaignStatus.PAUSED)
    assert paused.status == CampaignStatus.PAUSED
    assert [c.id for c in await runs.list_campaigns(status=CampaignStatus.PAUSED)] == [campaign.id]
    assert await runs.list_campaigns(status=CampaignStatus.ACTIVE) == []

    with pytest.raises(CampaignNotFoundError):
        await runs.require_campaign("cmp_missing")


@pytest.mark.asyncio
async def test_concurrent_run_creation_gets_unique_sequential_numbers() -> None:
    runs = make_runs()
    campaign = await runs.create_campaign("q", ["tiktok"])

    created = await asyncio.gather(*(runs.create_run(campaign.id) for _ in range(6)))

    assert sorted(run.run_number for run in created) == [1, 2, 3, 4, 5, 6]
    assert await runs.count_runs(campaign.id) == 6
    latest = await runs.get_latest_run(campaign.id)
    assert latest is not None and latest.run_number == 6
    page = await runs.list_runs(campaign.id, limit=2, offset=1)
    assert [run.run_number for run in page] == [5, 4]


@pytest.mark.asyncio
async def test_terminal_run_keeps_its_status() -> None:
    runs = make_runs()
    campaign = await runs.create_campaign("q", ["tiktok"])
    run = await runs.create_run(campaign.id)

    completed = await runs.mark_run_completed(run.id)
    assert completed is not None and completed.status == RunState.COMPLETED
    assert await runs.mark_run_failed(run.id, "late failure") is None

    def _tamper(item) -> None:
        item.status = RunState.RUNNING
        item.error = "overwritten"
        item.stats.urls_found = 99

    updated = await runs.update_run(run.id, _tamper)
    assert updated.status == RunState.COMPLETED
    assert updated.error is None
    assert updated.completed_at == completed.completed_at

    with pytest.raises(RunNotFoundError):
        await runs.update_run("run_missing", _tamper)


@pytest.mark.asyncio
async def test_sweeper_fails_only_stale_running_runs() -> None:
    runs = make_runs()
    campaign = await runs.create_campaign("q", ["tiktok"])
    stale = await runs.create_run(campaign.id)
    done = await runs.create_run(campaign.id)
    await runs.mark_run_completed(done.id)

    now = datetime.now(timezone.utc) + timedelta(minutes=90)
    fresh = await runs.create_run(campaign.id)
    fresh_doc = fresh.model_dump(mode="json")
    fresh_doc["updated_at"] = (now - timedelta(minutes=5)).isoformat()
    await runs._store.upsert(RUNS_COLLECTION, fresh.id, fresh_doc)

    swept = await runs.cleanup_stuck_runs(60, now=now)

    assert swept == [stale.id]
    failed = await runs.require_run(stale.id)
    assert failed.status == RunState.FAILED
    assert failed.error == STUCK_RUN_ERROR
    assert failed.failed_at is not None
    assert (await runs.require_run(done.id)).status == RunState.COMPLETED
    assert (await runs.require_run(fresh.id)).status == RunState.RUNNING

    assert await runs.cleanup_stuck_runs(60, now=now) == []
    assert (await runs.require_run(stale.id)).failed_at == failed.failed_at


@pytest.mark.asyncio
async def test_get_posts_filters_sorts_and_pages() -> None:
    runs = make_runs()
    dedup = PostDeduplicator(runs.posts)
    scored = [("a", 9, 5), ("b", 5, 50), ("c", 2, 20)]
    for code, score, likes in scored:
        result = await dedup.ingest(normalize_record("instagram", instagram_record(code, code, likes=likes)), "cmp", "run_1", 1)
        result.post.analysis = PostAnalysis(status=AnalysisStatus.ANALYZED, sentiment_score=score)
        await runs.posts.save(result.post)
    await dedup.ingest(normalize_record("tiktok", tiktok_record("t1", "pending one", likes=1)), "cmp", "run_1", 1)

    positive, total = await runs.posts.get_posts("cmp", sentiment="positive")
    assert total == 1 and positive[0].post_id == "a"
    neutral, _ = await runs.posts.get_posts("cmp", sentiment="neutral")
    assert [p.post_id for p in neutral] == ["b"]

    by_likes, total = await runs.posts.get_posts("cmp", sort_by="likes", limit=2)
    assert total == 4
    assert [p.post_id for p in by_likes] == ["b", "c"]

    tiktok_only, total = await runs.posts.get_posts("cmp", platforms=["tiktok"])
    assert total == 1 and tiktok_only[0].platform.value == "tiktok"

    with pytest.raises(ValueError):
        await runs.posts.get_posts("cmp", sentiment="ecstatic")

    pending = await runs.posts.list_seen_in_run("cmp", 1, status=AnalysisStatus.PENDING)
    assert [p.post_id for p in pending] == ["t1"]
    assert await runs.posts.count_posts("cmp", platforms=["instagram", "tiktok"]) == {"instagram": 3, "tiktok": 1}


@pytest.mark.asyncio
async def test_delete_campaign_cascades() -> None:
    runs = make_runs()
    keep = await runs.create_campaign("other", ["tiktok"])
    campaign = await runs.create_campaign("q", ["tiktok", "instagram"])
    run = await runs.create_run(campaign.id)
    dedup = PostDeduplicator(runs.posts)
    await dedup.ingest(normalize_record("tiktok", tiktok_record("1", "x")), campaign.id, run.id, 1)
    await dedup.ingest(normalize_record("instagram", instagram_record("I", "y")), campaign.id, run.id, 1)
    await dedup.ingest(normalize_record("tiktok", tiktok_record("1", "x")), keep.id, "run_other", 1)
    await runs.analytics.save(Analytics(id="ana_1", campaign_id=campaign.id, run_id=run.id))

    counts = await runs.delete_campaign(campaign.id)

    assert counts == {"runs": 1, "posts": 2, "analytics": 1}
    assert await runs.get_campaign(campaign.id) is None
    assert await runs.get_run(run.id) is None
    assert (await runs.posts.count_posts(keep.id))["tiktok"] == 1
    assert await runs.get_campaign(keep.id) is not None


@pytest.mark.asyncio
async def test_bump_campaign_stats_and_trend() -> None:
    runs = make_runs()
    campaign = await runs.create_campaign("q", ["tiktok"])
    dedup = PostDeduplicator(runs.posts)

    for number, sentiment in ((1, 6.0), (2, 8.0)):
        run = await runs.create_run(campaign.id)
        await dedup.ingest(normalize_record("tiktok", tiktok_record(str(number), "x")), campaign.id, run.id, run.run_number)

        def _stats(item, value=sentiment) -> None:
            item.stats.avg_sentiment = value

        await runs.update_run(run.id, _stats)
        completed = await runs.mark_run_completed(run.id)
        await runs.bump_campaign_stats(campaign.id, completed)

    refreshed = await runs.require_campaign(campaign.id)
    assert refreshed.stats.total_runs == 2
    assert refreshed.stats.total_posts_found == 2
    assert refreshed.stats.avg_sentiment_overall == 7.0
    assert refreshed.stats.by_platform["tiktok"].total_posts == 2

    trend = await runs.get_sentiment_trend(campaign.id)
    assert [(item["run_number"], item["avg_sentiment"]) for item in trend] == [(1, 6.0), (2, 8.0)]
