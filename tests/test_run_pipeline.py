from __future__ import annotations

from typing import Any, Dict, List

import pytest

from config.settings import get_settings
from core import AnalysisStatus, CampaignSettings, PostAnalysis, RunState, StageStatus
from pipeline.dedup import PostDeduplicator
from pipeline.normalize import normalize_record
from pipeline.runtime import RunPipeline
from utils.exceptions import CampaignNotFoundError, ConfigurationError

from fakes import (
    FakeClassifier,
    FakeProvider,
    FakeSearch,
    fast_monitor,
    instagram_record,
    instagram_url,
    make_registry,
    make_runs,
    tiktok_record,
)


def _reddit_record(post_id: str, title: str, url: str, upvotes: int = 10) -> Dict[str, Any]:
    return {
        "url": url,
        "post_id": post_id,
        "title": title,
        "description": "",
        "num_upvotes": upvotes,
        "num_comments": 3,
        "user_posted": "redditor",
        "date_posted": "2026-10-03T09:00:00Z",
    }


def _pipeline(runs, registry) -> RunPipeline:
    return RunPipeline(runs, registry, monitor=fast_monitor(), batch_size=2)


@pytest.mark.asyncio
async def test_run_end_to_end_with_cross_run_dedup() -> None:
    runs = make_runs()
    events: List[str] = []
    campaign = await runs.create_campaign("running shoes", ["tiktok", "instagram"])

    previous = await runs.create_run(campaign.id)
    seeded = await PostDeduplicator(runs.posts).ingest(
        normalize_record("instagram", instagram_record("A", "seen last week", likes=10)),
        campaign.id,
        previous.id,
        previous.run_number,
    )
    seeded.post.analysis = PostAnalysis(status=AnalysisStatus.ANALYZED, sentiment_score=7)
    await runs.posts.save(seeded.post)
    await runs.mark_run_completed(previous.id)

    tiktok = FakeProvider(
        "tiktok",
        keyword_records=[tiktok_record("1", "I love running"), tiktok_record("2", "I hate blisters")],
        polls_before_ready=3,
        events=events,
    )
    instagram = FakeProvider(
        "instagram",
        url_records={
            instagram_url("A"): instagram_record("A", "seen last week, still popular", likes=60),
            instagram_url("B"): instagram_record("B", "love the colorway"),
            instagram_url("C"): instagram_record("C", "hate the sizing"),
        },
        events=events,
    )
    search = FakeSearch(
        {
            "instagram": [
                "https://www.instagram.com/p/A/",
                "https://www.instagram.com/p/B/?utm_source=ig_web_copy_link",
                "https://www.instagram.com/p/C/",
                "https://www.instagram.com/someshop/",
            ]
        }
    )
    classifier = FakeClassifier()
    registry = make_registry({"tiktok": tiktok, "instagram": instagram}, search=search, classifier=classifier)
    run = await runs.create_run(campaign.id)
    assert run.run_number == 2

    await _pipeline(runs, registry).run_pipeline(campaign.id, run.id)

    stored = await runs.require_run(run.id)
    assert stored.status == RunState.COMPLETED
    assert stored.completed_at is not None

    tiktok_stats = stored.stats.by_platform["tiktok"]
    assert tiktok_stats.discover_status == StageStatus.COMPLETED
    assert tiktok_stats.fetch_status == StageStatus.SKIPPED
    assert tiktok_stats.posts_scraped == 2 and tiktok_stats.posts_new == 2
    assert tiktok.keyword_calls[0]["keyword"] == "running shoes"

    instagram_stats = stored.stats.by_platform["instagram"]
    assert instagram_stats.needs_fetch is True
    assert instagram_stats.urls_found == 3
    assert instagram_stats.fetch_status == StageStatus.COMPLETED
    assert (instagram_stats.posts_scraped, instagram_stats.posts_new, instagram_stats.posts_updated) == (3, 2, 1)
    assert stored.links_by_platform["instagram"] == [instagram_url("A"), instagram_url("B"), instagram_url("C")]
    assert instagram.url_calls == [[instagram_url("A"), instagram_url("B"), instagram_url("C")]]

    assert stored.stats.posts_scraped == 5
    assert stored.stats.posts_analyzed == 4
    assert stored.stats.avg_sentiment == 5.5
    assert len(classifier.classified) == 4

    repeat = await PostDeduplicator(runs.posts).resolve(instagram_url("A"), "instagram", campaign.id)
    assert repeat is not None
    assert repeat.total_appearances == 2
    assert repeat.first_seen_run == 1 and repeat.last_seen_run == 2
    assert repeat.engagement.likes == 60
    assert repeat.analysis.sentiment_score == 7

    assert await runs.analytics.count_for_run(run.id) == 1
    analytics = await runs.analytics.get_for_run(run.id)
    assert analytics.post_count == 4
    assert [row["post_id"] for row in analytics.engagement_trends["trending"]] == [repeat.id]

    refreshed = await runs.require_campaign(campaign.id)
    assert refreshed.stats.total_runs == 1
    assert refreshed.stats.total_posts_found == 5


@pytest.mark.asyncio
async def test_fetch_starts_only_after_every_discovery_settles() -> None:
    runs = make_runs()
    events: List[str] = []
    campaign = await runs.create_campaign("q", ["instagram", "tiktok"])
    registry = make_registry(
        {
            "tiktok": FakeProvider("tiktok", keyword_records=[tiktok_record("1", "x")], polls_before_ready=5, events=events),
            "instagram": FakeProvider("instagram", url_records={instagram_url("Z"): instagram_record("Z", "z")}, events=events),
        },
        search=FakeSearch({"instagram": ["https://instagram.com/p/Z"]}),
        classifier=FakeClassifier(),
    )
    run = await runs.create_run(campaign.id)

    await _pipeline(runs, registry).run_pipeline(campaign.id, run.id)

    assert events.index("instagram:trigger_urls") > events.index("tiktok:download")


@pytest.mark.asyncio
async def test_failing_platform_does_not_stop_the_others() -> None:
    runs = make_runs()
    campaign = await runs.create_campaign("q", ["tiktok", "instagram"])
    tiktok = FakeProvider("tiktok", fail_trigger=True)
    instagram = FakeProvider("instagram", url_records={instagram_url("OK"): instagram_record("OK", "love it")})
    registry = make_registry(
        {"tiktok": tiktok, "instagram": instagram},
        search=FakeSearch({"instagram": ["https://instagram.com/p/OK/"]}),
        classifier=FakeClassifier(),
    )
    run = await runs.create_run(campaign.id)

    await _pipeline(runs, registry).run_pipeline(campaign.id, run.id)

    stored = await runs.require_run(run.id)
    assert stored.status == RunState.COMPLETED
    failed = stored.stats.by_platform["tiktok"]
    assert failed.discover_status == StageStatus.FAILED
    assert failed.fetch_status == StageStatus.SKIPPED
    assert "trigger rejected" in failed.error
    assert stored.stats.by_platform["instagram"].posts_scraped == 1
    assert stored.stats.posts_analyzed == 1


@pytest.mark.asyncio
async def test_fetch_failure_is_recorded_per_platform() -> None:
    runs = make_runs()
    campaign = await runs.create_campaign("q", ["instagram"])
    registry = make_registry(
        {"instagram": FakeProvider("instagram", fail_trigger=True)},
        search=FakeSearch({"instagram": ["https://instagram.com/p/X/"]}),
        classifier=FakeClassifier(),
    )
    run = await runs.create_run(campaign.id)

    await _pipeline(runs, registry).run_pipeline(campaign.id, run.id)

    stored = await runs.require_run(run.id)
    assert stored.status == RunState.COMPLETED
    entry = stored.stats.by_platform["instagram"]
    assert entry.discover_status == StageStatus.COMPLETED
    assert entry.fetch_status == StageStatus.FAILED
    assert entry.error.startswith("fetch:")
    assert await runs.analytics.count_for_run(run.id) == 1


@pytest.mark.asyncio
async def test_missing_classifier_fails_the_run() -> None:
    runs = make_runs()
    campaign = await runs.create_campaign("q", ["tiktok"])
    registry = make_registry({"tiktok": FakeProvider("tiktok", keyword_records=[tiktok_record("1", "x")])})
    run = await runs.create_run(campaign.id)

    with pytest.raises(ConfigurationError):
        await _pipeline(runs, registry).run_pipeline(campaign.id, run.id)

    stored = await runs.require_run(run.id)
    assert stored.status == RunState.FAILED
    assert stored.error == "no classifier client configured"
    assert stored.failed_at is not None
    assert stored.stats.by_platform["tiktok"].posts_scraped == 1
    assert (await runs.require_campaign(campaign.id)).stats.total_runs == 0


@pytest.mark.asyncio
async def test_missing_campaign_marks_run_failed() -> None:
    runs = make_runs()
    campaign = await runs.create_campaign("q", ["tiktok"])
    run = await runs.create_run(campaign.id)

    with pytest.raises(CampaignNotFoundError):
        await _pipeline(runs, make_registry({})).run_pipeline("cmp_gone", run.id)
    assert (await runs.require_run(run.id)).status == RunState.FAILED


@pytest.mark.asyncio
async def test_terminal_run_is_not_executed_again() -> None:
    runs = make_runs()
    campaign = await runs.create_campaign("q", ["tiktok"])
    tiktok = FakeProvider("tiktok", keyword_records=[tiktok_record("1", "x")])
    run = await runs.create_run(campaign.id)
    await runs.mark_run_failed(run.id, "swept")

    await _pipeline(runs, make_registry({"tiktok": tiktok}, classifier=FakeClassifier())).run_pipeline(campaign.id, run.id)

    assert tiktok.keyword_calls == []
    stored = await runs.require_run(run.id)
    assert stored.status == RunState.FAILED and stored.error == "swept"


@pytest.mark.asyncio
async def test_keyword_discovery_uses_configured_default_post_limit(monkeypatch) -> None:
    monkeypatch.setenv("PIPELINE_DEFAULT_POST_LIMIT", "7")
    get_settings.cache_clear()
    try:
        runs = make_runs()
        campaign = await runs.create_campaign("q", ["tiktok", "youtube"], settings=CampaignSettings(post_limits={"youtube": 30}))
        tiktok = FakeProvider("tiktok", keyword_records=[tiktok_record("1", "x")])
        youtube = FakeProvider("youtube")
        registry = make_registry({"tiktok": tiktok, "youtube": youtube}, classifier=FakeClassifier())
        run = await runs.create_run(campaign.id)

        await _pipeline(runs, registry).run_pipeline(campaign.id, run.id)
    finally:
        get_settings.cache_clear()

    assert tiktok.keyword_calls[0]["num_of_posts"] == 7
    assert youtube.keyword_calls[0]["num_of_posts"] == 30


@pytest.mark.asyncio
async def test_reddit_dual_discovery_merges_keyword_and_search_halves() -> None:
    runs = make_runs()
    campaign = await runs.create_campaign("q", ["reddit"])
    keyword_url = "https://www.reddit.com/r/running/comments/k1/keyword_post/"
    search_url = "https://www.reddit.com/r/running/comments/s1/search_post/"
    reddit = FakeProvider(
        "reddit",
        keyword_records=[_reddit_record("k1", "keyword post", keyword_url)],
        url_records={
            "https://reddit.com/r/running/comments/k1/keyword_post": _reddit_record("k1", "keyword post", keyword_url, upvotes=30),
            "https://reddit.com/r/running/comments/s1/search_post": _reddit_record("s1", "search post", search_url),
        },
    )
    search = FakeSearch({"reddit": [search_url, keyword_url + "?tl=de", "https://www.reddit.com/user/someone/"]})
    registry = make_registry({"reddit": reddit}, search=search, classifier=FakeClassifier())
    run = await runs.create_run(campaign.id)

    await _pipeline(runs, registry).run_pipeline(campaign.id, run.id)

    stored = await runs.require_run(run.id)
    entry = stored.stats.by_platform["reddit"]
    assert entry.discover_status == StageStatus.COMPLETED
    assert entry.fetch_status == StageStatus.COMPLETED
    assert entry.urls_found == 2
    assert (entry.posts_scraped, entry.posts_new, entry.posts_updated) == (3, 2, 1)
    assert reddit.keyword_calls[0]["sort_by"] == "Hot"
    assert len(stored.job_ids["reddit"]) == 2

    posts, total = await runs.posts.get_posts(campaign.id)
    assert total == 2
    keyword_post = next(post for post in posts if post.post_id == "k1")
    assert keyword_post.total_appearances == 2
    assert keyword_post.engagement.likes == 30


@pytest.mark.asyncio
async def test_reddit_dual_discovery_survives_one_failed_half() -> None:
    runs = make_runs()
    campaign = await runs.create_campaign("q", ["reddit"])
    url = "https://www.reddit.com/r/a/comments/k9/post/"
    registry = make_registry(
        {"reddit": FakeProvider("reddit", keyword_records=[_reddit_record("k9", "only keyword", url)])},
        search=FakeSearch(fail={"reddit"}),
        classifier=FakeClassifier(),
    )
    run = await runs.create_run(campaign.id)

    await _pipeline(runs, registry).run_pipeline(campaign.id, run.id)

    entry = (await runs.require_run(run.id)).stats.by_platform["reddit"]
    assert entry.discover_status == StageStatus.COMPLETED
    assert entry.posts_scraped == 1
    assert entry.urls_found == 0


@pytest.mark.asyncio
async def test_reddit_dual_discovery_fails_when_both_halves_fail() -> None:
    runs = make_runs()
    campaign = await runs.create_campaign("q", ["reddit"])
    registry = make_registry(
        {"reddit": FakeProvider("reddit", fail_trigger=True)},
        search=FakeSearch(fail={"reddit"}),
        classifier=FakeClassifier(),
    )
    run = await runs.create_run(campaign.id)

    await _pipeline(runs, registry).run_pipeline(campaign.id, run.id)

    stored = await runs.require_run(run.id)
    assert stored.status == RunState.COMPLETED
    assert stored.stats.by_platform["reddit"].discover_status == StageStatus.FAILED


@pytest.mark.asyncio
async def test_relevance_filter_drops_off_topic_records() -> None:
    runs = make_runs()
    settings = CampaignSettings(enable_relevance_filter=True, relevance_threshold=0.6)
    campaign = await runs.create_campaign("running shoes", ["tiktok"], settings=settings)
    provider = FakeProvider(
        "tiktok",
        keyword_records=[
            tiktok_record("1", "these running shoes are light"),
            tiktok_record("2", "my sourdough starter is alive"),
        ],
    )
    classifier = FakeClassifier(relevance=lambda text: 0.9 if "shoes" in text else 0.1)
    run = await runs.create_run(campaign.id)

    await _pipeline(runs, make_registry({"tiktok": provider}, classifier=classifier)).run_pipeline(campaign.id, run.id)

    entry = (await runs.require_run(run.id)).stats.by_platform["tiktok"]
    assert entry.posts_scraped == 1
    assert entry.posts_filtered == 1
    _, total = await runs.posts.get_posts(campaign.id)
    assert total == 1
