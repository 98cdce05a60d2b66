"""
Trend Calculator
聚合单次运行的情感、话题与互动统计
"""
from collections import defaultdict
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional
import logging

from rich.console import Console
from rich.table import Table

from core import Analytics, Campaign, Post, Run, SentimentDistribution


logger = logging.getLogger(__name__)
console = Console()

_BUCKETS = ("negative", "neutral", "positive")


def sentiment_bucket(score: Optional[float]) -> Optional[str]:
    """<=3 negative, <=7 neutral, otherwise positive."""
    if not score:
        return None
    if score <= 3:
        return "negative"
    if score <= 7:
        return "neutral"
    return "positive"


def _round1(value: float) -> float:
    return round(float(value) * 10) / 10


def _score(post: Post) -> Optional[int]:
    return post.analysis.sentiment_score


def _interaction(post: Post) -> int:
    return post.engagement.likes + post.engagement.comments


def _preview(post: Post, limit: int = 100) -> str:
    return (post.text or "")[:limit]


def calculate_sentiment_distribution(posts: Iterable[Post]) -> SentimentDistribution:
    counts = {bucket: 0 for bucket in _BUCKETS}
    for post in posts:
        bucket = sentiment_bucket(_score(post))
        if bucket:
            counts[bucket] += 1
    total = sum(counts.values())
    percentages = {bucket: (round(counts[bucket] / total * 100) if total else 0) for bucket in _BUCKETS}
    return SentimentDistribution(counts=counts, percentages=percentages, total=total)


def calculate_sentiment_over_time(posts: Iterable[Post]) -> List[Dict[str, Any]]:
    by_date: Dict[str, List[int]] = defaultdict(list)
    for post in posts:
        score = _score(post)
        if not score or post.date_posted is None:
            continue
        by_date[post.date_posted.date().isoformat()].append(score)
    return [
        {"date": day, "avg_sentiment": _round1(sum(scores) / len(scores)), "post_count": len(scores)}
        for day, scores in sorted(by_date.items())
    ]


def calculate_top_hashtags(posts: Iterable[Post], limit: int = 20) -> List[Dict[str, Any]]:
    stats: Dict[str, List[int]] = defaultdict(list)
    for post in posts:
        score = _score(post)
        if not score:
            continue
        for tag in post.hashtags:
            clean = str(tag or "").strip().lstrip("#").lower()
            if clean:
                stats[clean].append(score)
    rows = [
        {"tag": tag, "count": len(scores), "avg_sentiment": _round1(sum(scores) / len(scores))}
        for tag, scores in stats.items()
    ]
    rows.sort(key=lambda row: row["count"], reverse=True)
    return rows[:limit]


def calculate_top_topics(posts: Iterable[Post], limit: int = 20) -> List[Dict[str, Any]]:
    counts: Dict[str, int] = defaultdict(int)
    totals: Dict[str, int] = defaultdict(int)
    for post in posts:
        score = _score(post)
        for topic in post.analysis.topics:
            clean = str(topic or "").strip().lower()
            if not clean:
                continue
            counts[clean] += 1
            if score:
                totals[clean] += score
    rows = [
        {"topic": topic, "count": count, "avg_sentiment": _round1(totals[topic] / count)}
        for topic, count in counts.items()
    ]
    rows.sort(key=lambda row: row["count"], reverse=True)
    return rows[:limit]


def calculate_engagement_correlation(posts: Iterable[Post]) -> Dict[str, Any]:
    ranges: Dict[str, Dict[str, Any]] = {
        "negative": {"range": "1-3", "post_count": 0, "avg_engagement": 0},
        "neutral": {"range": "4-7", "post_count": 0, "avg_engagement": 0},
        "positive": {"range": "8-10", "post_count": 0, "avg_engagement": 0},
    }
    totals: Dict[str, int] = defaultdict(int)
    for post in posts:
        bucket = sentiment_bucket(_score(post))
        if not bucket:
            continue
        ranges[bucket]["post_count"] += 1
        totals[bucket] += _interaction(post)
    for bucket, entry in ranges.items():
        if entry["post_count"]:
            entry["avg_engagement"] = round(totals[bucket] / entry["post_count"])
    return ranges


def calculate_content_type_performance(posts: Iterable[Post]) -> Dict[str, Any]:
    groups: Dict[str, Dict[str, int]] = {}
    for post in posts:
        content_type = post.content_type or "post"
        entry = groups.setdefault(content_type, {"count": 0, "total_sentiment": 0, "total_engagement": 0})
        entry["count"] += 1
        entry["total_sentiment"] += _score(post) or 0
        entry["total_engagement"] += _interaction(post)
    return {
        content_type: {
            "count": entry["count"],
            "avg_sentiment": _round1(entry["total_sentiment"] / entry["count"]),
            "avg_engagement": round(entry["total_engagement"] / entry["count"]),
        }
        for content_type, entry in groups.items()
    }


def _post_card(post: Post) -> Dict[str, Any]:
    return {
        "post_id": post.id,
        "platform": post.platform.value,
        "platform_url": post.platform_url,
        "user": post.author,
        "description": _preview(post),
        "sentiment_score": post.analysis.sentiment_score,
        "sentiment_label": post.analysis.sentiment_label,
        "likes": post.engagement.likes,
        "comments": post.engagement.comments,
        "date_posted": post.date_posted.isoformat() if post.date_posted else None,
    }


def get_top_posts(posts: Iterable[Post], criteria: str = "sentiment", limit: int = 10) -> List[Dict[str, Any]]:
    items = list(posts)
    if criteria == "sentiment":
        ranked = sorted((p for p in items if _score(p)), key=lambda p: _score(p), reverse=True)
    elif criteria == "engagement":
        ranked = sorted(items, key=_interaction, reverse=True)
    elif criteria == "negative":
        ranked = sorted((p for p in items if _score(p)), key=lambda p: _score(p))
    else:
        ranked = items
    return [_post_card(post) for post in ranked[:limit]]


def find_trending_posts(posts: Iterable[Post], limit: int = 10) -> List[Dict[str, Any]]:
    """Posts whose weighted engagement grew between first and last sighting (comments weigh 5x)."""
    rows = []
    for post in posts:
        history = post.engagement_history
        if len(history) < 2:
            continue
        first, last = history[0], history[-1]
        likes_growth = last.likes - first.likes
        comments_growth = last.comments - first.comments
        total_growth = likes_growth + comments_growth * 5
        if total_growth <= 0:
            continue
        growth_rate = ((last.likes - first.likes) / first.likes * 100) if first.likes > 0 else 0
        rows.append(
            {
                "post_id": post.id,
                "platform": post.platform.value,
                "platform_url": post.platform_url,
                "user": post.author,
                "description": _preview(post),
                "appearances": post.total_appearances,
                "first_seen": first.timestamp.isoformat(),
                "last_seen": last.timestamp.isoformat(),
                "engagement_growth": {"likes": likes_growth, "comments": comments_growth, "total": total_growth},
                "growth_rate": round(growth_rate),
                "current_engagement": {"likes": last.likes, "comments": last.comments},
            }
        )
    rows.sort(key=lambda row: row["engagement_growth"]["total"], reverse=True)
    return rows[:limit]


def find_viral_posts(posts: Iterable[Post], limit: int = 10) -> List[Dict[str, Any]]:
    rows = []
    for post in posts:
        history = post.engagement_history
        if post.total_appearances < 2 or len(history) < 2:
            continue
        latest = history[-1]
        avg_growth = (latest.likes - history[0].likes) / (len(history) - 1)
        rows.append(
            {
                "post_id": post.id,
                "platform": post.platform.value,
                "platform_url": post.platform_url,
                "user": post.author,
                "description": _preview(post),
                "appearances": post.total_appearances,
                "total_likes": latest.likes,
                "avg_growth_per_run": round(avg_growth),
                "sentiment_score": post.analysis.sentiment_score,
            }
        )
    rows.sort(key=lambda row: row["total_likes"], reverse=True)
    return rows[:limit]


def calculate_engagement_velocity(posts: Iterable[Post], limit: int = 10) -> List[Dict[str, Any]]:
    """Likes per hour between the last two sightings."""
    rows = []
    for post in posts:
        history = sorted(post.engagement_history, key=lambda item: item.timestamp)
        if len(history) < 2:
            continue
        prev, current = history[-2], history[-1]
        hours = (current.timestamp - prev.timestamp).total_seconds() / 3600
        velocity = (current.likes - prev.likes) / hours if hours > 0 else 0
        if velocity > 0:
            rows.append(
                {
                    "post_id": post.id,
                    "platform": post.platform.value,
                    "velocity": round(velocity, 2),
                    "current_likes": current.likes,
                }
            )
    rows.sort(key=lambda row: row["velocity"], reverse=True)
    return rows[:limit]


def _platform_summary(posts: List[Post]) -> Dict[str, Any]:
    scores = [_score(post) for post in posts if _score(post)]
    return {
        "post_count": len(posts),
        "sentiment_distribution": calculate_sentiment_distribution(posts).model_dump(),
        "avg_sentiment": _round1(sum(scores) / len(scores)) if scores else None,
        "top_topics": calculate_top_topics(posts, limit=10),
    }


def build_analytics(
    analytics_id: str,
    campaign: Campaign,
    run: Run,
    analyzed_posts: List[Post],
    seen_posts: Optional[List[Post]] = None,
    *,
    created_at: Optional[datetime] = None,
) -> Analytics:
    """
    Compute one Analytics record.

    Args:
        analyzed_posts: analyzed posts first seen in this run (main statistics)
        seen_posts: every post sighted in this run (engagement trends)
    """
    by_platform_posts: Dict[str, List[Post]] = defaultdict(list)
    for post in analyzed_posts:
        by_platform_posts[post.platform.value].append(post)

    trend_source = seen_posts if seen_posts is not None else analyzed_posts
    fields: Dict[str, Any] = {}
    if created_at is not None:
        fields["created_at"] = created_at

    analytics = Analytics(
        id=analytics_id,
        campaign_id=campaign.id,
        run_id=run.id,
        query=campaign.query,
        platforms=[platform.value for platform in campaign.platforms],
        post_count=len(analyzed_posts),
        posts_by_platform={platform: len(items) for platform, items in by_platform_posts.items()},
        sentiment_distribution=calculate_sentiment_distribution(analyzed_posts),
        sentiment_over_time=calculate_sentiment_over_time(analyzed_posts),
        top_hashtags=calculate_top_hashtags(analyzed_posts, limit=20),
        top_topics=calculate_top_topics(analyzed_posts, limit=20),
        engagement_correlation=calculate_engagement_correlation(analyzed_posts),
        content_type_performance=calculate_content_type_performance(analyzed_posts),
        top_posts={
            "by_sentiment": get_top_posts(analyzed_posts, "sentiment", 10),
            "by_engagement": get_top_posts(analyzed_posts, "engagement", 10),
            "most_negative": get_top_posts(analyzed_posts, "negative", 5),
        },
        engagement_trends={
            "trending": find_trending_posts(trend_source),
            "viral": find_viral_posts(trend_source),
            "velocity": calculate_engagement_velocity(trend_source),
        },
        by_platform={platform: _platform_summary(items) for platform, items in by_platform_posts.items()},
        **fields,
    )
    logger.info(
        "analytics_built run_id=%s posts=%d trending=%d viral=%d",
        run.id,
        analytics.post_count,
        len(analytics.engagement_trends["trending"]),
        len(analytics.engagement_trends["viral"]),
    )
    return analytics


def print_analytics_summary(analytics: Analytics) -> None:
    """Rich table of the headline numbers (CLI)."""
    table = Table(title=f"Analytics {analytics.run_id}")
    table.add_column("Platform", style="cyan")
    table.add_column("Posts", justify="right")
    table.add_column("Avg sentiment", justify="right")
    table.add_column("Top topic")
    for platform, summary in sorted(analytics.by_platform.items()):
        topics = summary.get("top_topics") or []
        avg = summary.get("avg_sentiment")
        table.add_row(
            platform,
            str(summary.get("post_count", 0)),
            "-" if avg is None else f"{avg:.1f}",
            topics[0]["topic"] if topics else "-",
        )
    dist = analytics.sentiment_distribution
    table.add_row(
        "[bold]total[/bold]",
        str(analytics.post_count),
        "",
        f"+{dist.counts.get('positive', 0)} ={dist.counts.get('neutral', 0)} -{dist.counts.get('negative', 0)}",
    )
    console.print(table)
