"""
Source Clients
外部数据源抽象基类: content providers, URL search, classifier
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from core import ClassificationResult, JobStatus, RelevanceScore


RawRecord = Dict[str, Any]


class ContentProviderClient(ABC):
    """
    Asynchronous scrape-job provider for one platform.

    Jobs are triggered, polled until ready, then downloaded as raw records.
    """

    def __init__(self, platform: str):
        self.platform = platform

    @abstractmethod
    async def trigger_by_urls(self, urls: List[str]) -> str:
        """Start a fetch job for known post URLs. Returns the job id."""
        pass

    @abstractmethod
    async def trigger_by_keyword(self, keyword: str, options: Optional[Dict[str, Any]] = None) -> str:
        """Start a keyword discovery job. Returns the job id."""
        pass

    @abstractmethod
    async def poll_status(self, job_id: str) -> JobStatus:
        pass

    @abstractmethod
    async def download(self, job_id: str) -> List[RawRecord]:
        pass


class UrlSearchClient(ABC):
    """Search-engine style discovery returning organic result dicts."""

    @abstractmethod
    async def search(self, query: str, platform: str, *, google_domain: Optional[str] = None) -> List[Dict[str, Any]]:
        pass


class ClassifierClient(ABC):
    """Sentiment/topic classifier, embedder and relevance scorer."""

    model_name: str = ""

    @abstractmethod
    async def classify(self, post: Dict[str, Any]) -> ClassificationResult:
        """
        Classify one post.

        Args:
            post: dict with at least ``text``; ``hashtags``, ``author`` and
                engagement figures are used when present
        """
        pass

    @abstractmethod
    async def embed(self, text: str) -> List[float]:
        pass

    @abstractmethod
    async def score_relevance(self, text: str, query: str) -> RelevanceScore:
        pass
