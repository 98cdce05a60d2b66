"""Core contracts and shared types for the listening pipeline."""

from .contracts import (
    ALL_PLATFORMS,
    AnalysisStatus,
    Analytics,
    Campaign,
    CampaignSettings,
    CampaignStats,
    CampaignStatus,
    ClassificationResult,
    Engagement,
    EngagementSnapshot,
    JobState,
    JobStatus,
    Platform,
    PlatformCampaignStats,
    PlatformRunStats,
    Post,
    PostAnalysis,
    RelevanceScore,
    Run,
    RunState,
    RunStats,
    ScheduleConfig,
    SentimentDistribution,
    StageStatus,
    sentiment_label_for,
)

__all__ = [
    "ALL_PLATFORMS",
    "AnalysisStatus",
    "Analytics",
    "Campaign",
    "CampaignSettings",
    "CampaignStats",
    "CampaignStatus",
    "ClassificationResult",
    "Engagement",
    "EngagementSnapshot",
    "JobState",
    "JobStatus",
    "Platform",
    "PlatformCampaignStats",
    "PlatformRunStats",
    "Post",
    "PostAnalysis",
    "RelevanceScore",
    "Run",
    "RunState",
    "RunStats",
    "ScheduleConfig",
    "SentimentDistribution",
    "StageStatus",
    "sentiment_label_for",
]
