"""
Aggregator Module
运行级统计聚合
"""
from .trends import (
    build_analytics,
    calculate_sentiment_distribution,
    find_trending_posts,
    find_viral_posts,
    print_analytics_summary,
    sentiment_bucket,
)

__all__ = [
    "build_analytics",
    "calculate_sentiment_distribution",
    "find_trending_posts",
    "find_viral_posts",
    "print_analytics_summary",
    "sentiment_bucket",
]
