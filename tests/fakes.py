"""In-memory fakes for provider, search and classifier clients used across tests."""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Dict, Iterable, List, Optional

from core import ClassificationResult, JobStatus, RelevanceScore
from orchestrator.store import CampaignRunStore
from pipeline.monitor import JobMonitor
from sources.base import ClassifierClient, ContentProviderClient, UrlSearchClient
from sources.registry import SourceRegistry
from storage.document_store import MemoryDocumentStore
from utils.exceptions import ClassifierError, ProviderError


class FakeProvider(ContentProviderClient):
    """Keyword jobs return `keyword_records`; URL jobs return the records registered for each URL."""

    def __init__(
        self,
        platform: str,
        *,
        keyword_records: Optional[List[Dict[str, Any]]] = None,
        url_records: Optional[Dict[str, Dict[str, Any]]] = None,
        fail_trigger: bool = False,
        trigger_delay: float = 0.0,
        polls_before_ready: int = 1,
        events: Optional[List[str]] = None,
    ) -> None:
        super().__init__(platform)
        self.keyword_records = list(keyword_records or [])
        self.url_records = dict(url_records or {})
        self.fail_trigger = fail_trigger
        self.trigger_delay = trigger_delay
        self.polls_before_ready = polls_before_ready
        self.events = events if events is not None else []
        self.keyword_calls: List[Dict[str, Any]] = []
        self.url_calls: List[List[str]] = []
        self._jobs: Dict[str, List[Dict[str, Any]]] = {}
        self._polls: Dict[str, int] = {}

    def _new_job(self, records: List[Dict[str, Any]]) -> str:
        job_id = f"{self.platform}_job_{len(self._jobs) + 1}"
        self._jobs[job_id] = records
        self._polls[job_id] = 0
        return job_id

    async def trigger_by_keyword(self, keyword: str, options: Optional[Dict[str, Any]] = None) -> str:
        self.events.append(f"{self.platform}:trigger_keyword")
        if self.trigger_delay:
            await asyncio.sleep(self.trigger_delay)
        if self.fail_trigger:
            raise ProviderError("trigger rejected", provider="fake", platform=self.platform)
        self.keyword_calls.append({"keyword": keyword, **dict(options or {})})
        return self._new_job(list(self.keyword_records))

    async def trigger_by_urls(self, urls: List[str]) -> str:
        self.events.append(f"{self.platform}:trigger_urls")
        if self.fail_trigger:
            raise ProviderError("trigger rejected", provider="fake", platform=self.platform)
        self.url_calls.append(list(urls))
        return self._new_job([self.url_records[url] for url in urls if url in self.url_records])

    async def poll_status(self, job_id: str) -> JobStatus:
        self._polls[job_id] += 1
        if self._polls[job_id] >= self.polls_before_ready:
            return JobStatus(status="ready", progress=100)
        return JobStatus(status="running", progress=50)

    async def download(self, job_id: str) -> List[Dict[str, Any]]:
        self.events.append(f"{self.platform}:download")
        return list(self._jobs[job_id])


class FakeSearch(UrlSearchClient):
    def __init__(self, results: Optional[Dict[str, List[Any]]] = None, *, fail: Iterable[str] = ()) -> None:
        self.results = dict(results or {})
        self.fail = set(fail)
        self.calls: List[str] = []

    async def search(self, query: str, platform: str, *, google_domain: Optional[str] = None) -> List[Dict[str, Any]]:
        self.calls.append(platform)
        if platform in self.fail:
            raise ProviderError("search unavailable", provider="fake-serp", platform=platform)
        return [{"link": item} if isinstance(item, str) else item for item in self.results.get(platform, [])]


class FakeClassifier(ClassifierClient):
    """Scores by keyword: 'love' -> 9, 'hate' -> 2, otherwise 5. Texts containing 'boom' fail."""

    model_name = "fake-model"

    def __init__(
        self,
        *,
        relevance: Optional[Callable[[str], float]] = None,
        fail_embed: bool = False,
        delay: float = 0.0,
        embedder: Optional[Callable[[str], List[float]]] = None,
    ) -> None:
        self.relevance = relevance
        self.embedder = embedder
        self.fail_embed = fail_embed
        self.delay = delay
        self.classified: List[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def classify(self, post: Dict[str, Any]) -> ClassificationResult:
        text = str(post.get("text") or "")
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            if "boom" in text:
                raise ClassifierError("model crashed", model=self.model_name)
            self.classified.append(text)
            lowered = text.lower()
            score = 9 if "love" in lowered else 2 if "hate" in lowered else 5
            return ClassificationResult(sentiment_score=score, topics=["shoes"], summary=text[:20])
        finally:
            self.in_flight -= 1

    async def embed(self, text: str) -> List[float]:
        if self.fail_embed:
            raise ClassifierError("embedding backend down", model="fake-embed")
        if self.embedder is not None:
            return self.embedder(text)
        return [0.1, 0.2, 0.3]

    async def score_relevance(self, text: str, query: str) -> RelevanceScore:
        if self.relevance is None:
            return RelevanceScore(score=1.0, is_relevant=True)
        score = self.relevance(text)
        return RelevanceScore(score=score, is_relevant=score >= 0.5, reason="fake")


def make_registry(
    providers: Dict[str, ContentProviderClient],
    *,
    search: Optional[UrlSearchClient] = None,
    classifier: Optional[ClassifierClient] = None,
) -> SourceRegistry:
    return SourceRegistry(providers=providers, search=search or FakeSearch(), classifier=classifier)


def make_runs() -> CampaignRunStore:
    return CampaignRunStore(MemoryDocumentStore())


def fast_monitor(timeout: float = 5.0) -> JobMonitor:
    return JobMonitor(poll_interval=0.0, timeout=timeout)


def tiktok_record(video_id: str, text: str, likes: int = 10, comments: int = 1) -> Dict[str, Any]:
    return {
        "url": f"https://www.tiktok.com/@creator/video/{video_id}",
        "post_id": video_id,
        "description": text,
        "digg_count": likes,
        "comment_count": comments,
        "share_count": 0,
        "play_count": likes * 10,
        "profile_username": "creator",
        "create_time": "2026-10-01T12:00:00Z",
    }


def instagram_record(shortcode: str, text: str, likes: int = 20, comments: int = 2) -> Dict[str, Any]:
    return {
        "url": f"https://www.instagram.com/p/{shortcode}/",
        "post_id": shortcode,
        "description": text,
        "likes": likes,
        "num_comments": comments,
        "user_posted": "shopper",
        "date_posted": "2026-10-02T08:30:00Z",
    }


def instagram_url(shortcode: str) -> str:
    return f"https://instagram.com/p/{shortcode}"
