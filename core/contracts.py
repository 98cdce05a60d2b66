"""Canonical data contracts for campaigns, runs, posts and analytics."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from config import get_pipeline_settings


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Platform(str, Enum):
    """Supported content platforms."""

    INSTAGRAM = "instagram"
    TIKTOK = "tiktok"
    TWITTER = "twitter"
    REDDIT = "reddit"
    FACEBOOK = "facebook"
    YOUTUBE = "youtube"
    LINKEDIN = "linkedin"

    @property
    def collection(self) -> str:
        return f"{self.value}_posts"


ALL_PLATFORMS: List[Platform] = list(Platform)


class CampaignStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"


class RunState(str, Enum):
    """Run lifecycle. `running` is the only non-terminal state."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class AnalysisStatus(str, Enum):
    PENDING = "pending"
    ANALYZED = "analyzed"
    FAILED = "failed"


class StageStatus(str, Enum):
    """Per-platform stage outcome recorded on the run."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class JobState(str, Enum):
    """Provider job statuses understood by the job monitor."""

    PENDING = "pending"
    RUNNING = "running"
    READY = "ready"
    FAILED = "failed"
    ERROR = "error"


def _coerce_count(value: Any) -> int:
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return max(0, int(value))
    text = str(value).strip().replace(",", "")
    if not text:
        return 0
    multiplier = 1
    suffix = text[-1].upper()
    if suffix in {"K", "M", "B"}:
        multiplier = {"K": 1_000, "M": 1_000_000, "B": 1_000_000_000}[suffix]
        text = text[:-1]
    try:
        return max(0, int(float(text) * multiplier))
    except ValueError:
        return 0


class ScheduleConfig(BaseModel):
    """Recurring trigger descriptor carried by a campaign."""

    enabled: bool = False
    interval_minutes: Optional[int] = None
    duration_days: Optional[int] = None
    next_run: Optional[datetime] = None
    started_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None


class CampaignSettings(BaseModel):
    """Per-campaign fetch and filtering options."""

    post_limits: Dict[str, int] = Field(default_factory=dict)
    reddit_use_dual_search: bool = True
    enable_relevance_filter: bool = False
    relevance_threshold: float = 0.7
    google_domain: str = "google.com"

    @field_validator("relevance_threshold", mode="before")
    @classmethod
    def _clamp_threshold(cls, value: Any) -> float:
        try:
            number = float(0.7 if value is None else value)
        except (TypeError, ValueError):
            number = 0.7
        return max(0.0, min(1.0, number))

    @field_validator("google_domain", mode="before")
    @classmethod
    def _domain(cls, value: Any) -> str:
        text = str(value or "").strip().lower()
        if text.startswith("www."):
            text = text[4:]
        return text or "google.com"

    def post_limit(self, platform: str, default: Optional[int] = None) -> int:
        """Per-platform limit, else `default`, else `PIPELINE_DEFAULT_POST_LIMIT`."""
        if default is None:
            default = get_pipeline_settings().default_post_limit
        value = self.post_limits.get(str(platform))
        try:
            return max(1, int(value)) if value is not None else default
        except (TypeError, ValueError):
            return default


class PlatformCampaignStats(BaseModel):
    total_posts: int = 0
    avg_sentiment: Optional[float] = None
    last_run_at: Optional[datetime] = None


class CampaignStats(BaseModel):
    """Aggregate counters bumped after every completed run."""

    total_runs: int = 0
    total_posts_found: int = 0
    avg_sentiment_overall: Optional[float] = None
    last_run_at: Optional[datetime] = None
    by_platform: Dict[str, PlatformCampaignStats] = Field(default_factory=dict)


class Campaign(BaseModel):
    """Persistent listening configuration, runnable many times."""

    id: str
    query: str
    platforms: List[Platform]
    settings: CampaignSettings = Field(default_factory=CampaignSettings)
    schedule: ScheduleConfig = Field(default_factory=ScheduleConfig)
    status: CampaignStatus = CampaignStatus.ACTIVE
    stats: CampaignStats = Field(default_factory=CampaignStats)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @field_validator("id", "query", mode="before")
    @classmethod
    def _non_empty_text(cls, value: Any) -> str:
        text = str(value or "").strip()
        if not text:
            raise ValueError("value is required")
        return text

    @field_validator("platforms", mode="before")
    @classmethod
    def _unique_platforms(cls, value: Any) -> List[str]:
        if isinstance(value, (str, Platform)):
            value = [value]
        seen: List[str] = []
        for item in list(value or []):
            name = item.value if isinstance(item, Platform) else str(item or "").strip().lower()
            if name and name not in seen:
                seen.append(name)
        if not seen:
            raise ValueError("at least one platform is required")
        return seen


class PlatformRunStats(BaseModel):
    """Per-platform sub-record of a run; the source of truth for run totals."""

    discover_status: StageStatus = StageStatus.PENDING
    fetch_status: StageStatus = StageStatus.PENDING
    needs_fetch: bool = False
    urls_found: int = 0
    posts_scraped: int = 0
    posts_new: int = 0
    posts_updated: int = 0
    posts_filtered: int = 0
    posts_failed: int = 0
    posts_analyzed: int = 0
    analysis_failed: int = 0
    avg_sentiment: Optional[float] = None
    error: Optional[str] = None


class RunStats(BaseModel):
    urls_found: int = 0
    posts_scraped: int = 0
    posts_analyzed: int = 0
    posts_failed: int = 0
    avg_sentiment: Optional[float] = None
    by_platform: Dict[str, PlatformRunStats] = Field(default_factory=dict)

    def recompute_totals(self) -> None:
        """Derive run-wide counters from the platform sub-records."""
        records = list(self.by_platform.values())
        self.urls_found = sum(item.urls_found for item in records)
        self.posts_scraped = sum(item.posts_scraped for item in records)
        self.posts_analyzed = sum(item.posts_analyzed for item in records)
        self.posts_failed = sum(item.posts_failed + item.analysis_failed for item in records)


class Run(BaseModel):
    """One execution of a campaign pipeline."""

    id: str
    campaign_id: str
    run_number: int
    status: RunState = RunState.RUNNING
    stats: RunStats = Field(default_factory=RunStats)
    links_by_platform: Dict[str, List[str]] = Field(default_factory=dict)
    job_ids: Dict[str, List[str]] = Field(default_factory=dict)
    error: Optional[str] = None
    started_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status != RunState.RUNNING

    @property
    def last_activity_at(self) -> datetime:
        return self.updated_at or self.started_at


class Engagement(BaseModel):
    """Current engagement figures of a post."""

    likes: int = 0
    comments: int = 0
    shares: int = 0
    views: int = 0

    @field_validator("likes", "comments", "shares", "views", mode="before")
    @classmethod
    def _count(cls, value: Any) -> int:
        return _coerce_count(value)

    @property
    def total(self) -> int:
        return self.likes + self.comments + self.shares


class EngagementSnapshot(Engagement):
    """Engagement observed for a post during one run."""

    run_number: int
    run_id: str
    timestamp: datetime = Field(default_factory=_utcnow)


class PostAnalysis(BaseModel):
    status: AnalysisStatus = AnalysisStatus.PENDING
    sentiment_score: Optional[int] = None
    sentiment_label: Optional[str] = None
    topics: List[str] = Field(default_factory=list)
    brand_mentioned: Optional[bool] = None
    summary: Optional[str] = None
    language: Optional[str] = None
    embedding: Optional[List[float]] = None
    analyzed_at: Optional[datetime] = None
    model: Optional[str] = None
    error: Optional[str] = None


class Post(BaseModel):
    """Deduplicated post; unique per (campaign, platform, platform_url)."""

    id: str
    campaign_id: str
    run_id: str
    platform: Platform
    platform_url: str
    post_id: Optional[str] = None
    content_type: Optional[str] = None
    text: str = ""
    hashtags: List[str] = Field(default_factory=list)
    author: Optional[str] = None
    date_posted: Optional[datetime] = None
    engagement: Engagement = Field(default_factory=Engagement)
    raw_data: Dict[str, Any] = Field(default_factory=dict)
    analysis: PostAnalysis = Field(default_factory=PostAnalysis)
    first_seen_run: int
    last_seen_run: int
    total_appearances: int = 1
    engagement_history: List[EngagementSnapshot] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    scraped_at: datetime = Field(default_factory=_utcnow)


class SentimentDistribution(BaseModel):
    counts: Dict[str, int] = Field(default_factory=lambda: {"positive": 0, "neutral": 0, "negative": 0})
    percentages: Dict[str, float] = Field(default_factory=lambda: {"positive": 0.0, "neutral": 0.0, "negative": 0.0})
    total: int = 0


class Analytics(BaseModel):
    """Aggregate statistics over the analyzed posts of one run."""

    id: str
    campaign_id: str
    run_id: str
    query: str = ""
    platforms: List[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utcnow)
    post_count: int = 0
    posts_by_platform: Dict[str, int] = Field(default_factory=dict)
    sentiment_distribution: SentimentDistribution = Field(default_factory=SentimentDistribution)
    sentiment_over_time: List[Dict[str, Any]] = Field(default_factory=list)
    top_hashtags: List[Dict[str, Any]] = Field(default_factory=list)
    top_topics: List[Dict[str, Any]] = Field(default_factory=list)
    engagement_correlation: Dict[str, Any] = Field(default_factory=dict)
    content_type_performance: Dict[str, Any] = Field(default_factory=dict)
    top_posts: Dict[str, List[Dict[str, Any]]] = Field(default_factory=dict)
    engagement_trends: Dict[str, Any] = Field(default_factory=dict)
    by_platform: Dict[str, Dict[str, Any]] = Field(default_factory=dict)


class JobStatus(BaseModel):
    """Provider job poll result. Unrecognized statuses are kept verbatim."""

    status: str
    progress: Optional[float] = None
    error: Optional[str] = None
    raw: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("status", mode="before")
    @classmethod
    def _lower(cls, value: Any) -> str:
        return str(value or "").strip().lower() or "unknown"


class ClassificationResult(BaseModel):
    """Classifier output for one post."""

    sentiment_score: int
    sentiment_label: str = ""
    topics: List[str] = Field(default_factory=list)
    brand_mentioned: bool = False
    summary: str = ""
    language: str = "en"

    @field_validator("sentiment_score", mode="before")
    @classmethod
    def _clamp_score(cls, value: Any) -> int:
        try:
            number = int(float(value))
        except (TypeError, ValueError):
            return 5
        return max(1, min(10, number))

    def model_post_init(self, __context: Any) -> None:
        # label always follows the score
        self.sentiment_label = sentiment_label_for(self.sentiment_score)


class RelevanceScore(BaseModel):
    score: float = 1.0
    is_relevant: bool = True
    reason: str = ""

    @field_validator("score", mode="before")
    @classmethod
    def _clamp(cls, value: Any) -> float:
        try:
            number = float(value)
        except (TypeError, ValueError):
            return 0.0
        return max(0.0, min(1.0, number))


def sentiment_label_for(score: Optional[float]) -> Optional[str]:
    """1-3 negative, 4-7 neutral, 8-10 positive."""
    if score is None:
        return None
    if score >= 8:
        return "positive"
    if score >= 4:
        return "neutral"
    return "negative"
