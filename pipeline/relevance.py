"""Optional relevance gate applied before deduplication."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from core import CampaignSettings
from sources.base import ClassifierClient


logger = logging.getLogger(__name__)

MIN_CONTENT_CHARS = 10


@dataclass
class RelevanceDecision:
    relevant: bool
    score: float
    reason: str = ""


class RelevanceGate:
    """Scores record text against the campaign query; fails open on classifier errors."""

    def __init__(self, classifier: ClassifierClient, query: str, *, threshold: float = 0.7, enabled: bool = True) -> None:
        self._classifier = classifier
        self.query = str(query or "").strip()
        self.threshold = max(0.0, min(1.0, float(threshold)))
        self.enabled = bool(enabled)

    @classmethod
    def for_campaign(cls, classifier: ClassifierClient, query: str, settings: CampaignSettings) -> "RelevanceGate":
        return cls(
            classifier,
            query,
            threshold=settings.relevance_threshold,
            enabled=settings.enable_relevance_filter,
        )

    async def check(self, text: str) -> RelevanceDecision:
        if not self.enabled:
            return RelevanceDecision(relevant=True, score=1.0, reason="filter disabled")
        content = str(text or "").strip()
        if len(content) < MIN_CONTENT_CHARS:
            return RelevanceDecision(relevant=True, score=1.0, reason="insufficient content")
        try:
            result = await self._classifier.score_relevance(content, self.query)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("relevance_check_failed_open query=%s error=%s", self.query, exc)
            return RelevanceDecision(relevant=True, score=1.0, reason="relevance check failed")
        return RelevanceDecision(relevant=result.score >= self.threshold, score=result.score, reason=result.reason)
