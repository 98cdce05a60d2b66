"""Listening pipeline stages: discover, fetch, dedup, classify, aggregate."""

from .classify import BatchClassifier, ClassifySummary
from .dedup import IngestResult, PostDeduplicator, post_key
from .monitor import JobMonitor, download_with_retry
from .normalize import NormalizedRecord, normalize_record
from .platform_tasks import PlatformTask, RunContext
from .relevance import RelevanceDecision, RelevanceGate
from .runtime import RunPipeline
from .sanitize import normalize_platform_url, sanitize_urls
from .stats import RunStatsRecorder

__all__ = [
    "BatchClassifier",
    "ClassifySummary",
    "IngestResult",
    "JobMonitor",
    "NormalizedRecord",
    "PlatformTask",
    "PostDeduplicator",
    "RelevanceDecision",
    "RelevanceGate",
    "RunContext",
    "RunPipeline",
    "RunStatsRecorder",
    "download_with_retry",
    "normalize_platform_url",
    "normalize_record",
    "post_key",
    "sanitize_urls",
]
