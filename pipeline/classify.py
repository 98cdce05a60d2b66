"""
Classify stage
批量情感/主题分类

Pending posts of a run are processed in sequential batches; posts inside a
batch are classified concurrently. A post that fails is marked failed on its
own analysis record and never aborts the stage.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

from core import AnalysisStatus, Campaign, Post, PostAnalysis, Run
from sources.base import ClassifierClient
from storage.post_store import PostStore

from .stats import RunStatsRecorder


logger = logging.getLogger(__name__)


@dataclass
class ClassifySummary:
    analyzed: int = 0
    failed: int = 0
    scores_by_platform: Dict[str, List[int]] = field(default_factory=lambda: defaultdict(list))
    failed_by_platform: Dict[str, int] = field(default_factory=lambda: defaultdict(int))

    @property
    def avg_sentiment(self) -> Optional[float]:
        scores = [score for items in self.scores_by_platform.values() for score in items]
        return round(sum(scores) / len(scores), 1) if scores else None


def _classifier_input(post: Post) -> Dict[str, object]:
    return {
        "text": post.text or "",
        "hashtags": list(post.hashtags),
        "author": post.author,
        "platform": post.platform.value,
        "engagement": post.engagement.model_dump(),
    }


class BatchClassifier:
    """Runs the classifier over a run's pending posts."""

    def __init__(
        self,
        classifier: ClassifierClient,
        posts: PostStore,
        *,
        batch_size: int = 20,
        embed: bool = True,
    ) -> None:
        self.classifier = classifier
        self.posts = posts
        self.batch_size = max(1, int(batch_size))
        self.embed = embed

    async def classify_run(self, campaign: Campaign, run: Run, recorder: Optional[RunStatsRecorder] = None) -> ClassifySummary:
        """
        Classify the run's pending posts batch by batch.

        Classifier and embed errors are isolated per post. A storage error
        surfaces after its batch settles and fails the stage.
        """
        pending = await self.posts.list_seen_in_run(
            campaign.id,
            run.run_number,
            platforms=campaign.platforms,
            status=AnalysisStatus.PENDING,
        )
        summary = ClassifySummary()
        total_batches = (len(pending) + self.batch_size - 1) // self.batch_size
        logger.info(
            "classify_start run_id=%s pending=%d batch_size=%d batches=%d",
            run.id,
            len(pending),
            self.batch_size,
            total_batches,
        )

        for index in range(0, len(pending), self.batch_size):
            batch = pending[index:index + self.batch_size]
            results = await asyncio.gather(*(self.classify_post(post) for post in batch), return_exceptions=True)
            for post, result in zip(batch, results):
                if isinstance(result, BaseException):
                    raise result
                if result.analysis.status == AnalysisStatus.ANALYZED:
                    summary.analyzed += 1
                    summary.scores_by_platform[post.platform.value].append(int(result.analysis.sentiment_score or 0))
                else:
                    summary.failed += 1
                    summary.failed_by_platform[post.platform.value] += 1
            logger.info(
                "classify_batch run_id=%s batch=%d/%d size=%d",
                run.id,
                index // self.batch_size + 1,
                total_batches,
                len(batch),
            )

        if recorder is not None:
            await self._record(summary, recorder)
        logger.info(
            "classify_done run_id=%s analyzed=%d failed=%d avg_sentiment=%s",
            run.id,
            summary.analyzed,
            summary.failed,
            summary.avg_sentiment,
        )
        return summary

    async def classify_post(self, post: Post) -> Post:
        """Classify one post and persist the analysis. Only storage errors propagate."""
        now = datetime.now(timezone.utc)
        try:
            result = await self.classifier.classify(_classifier_input(post))
        except Exception as exc:
            logger.warning("classify_post_failed post_id=%s platform=%s error=%s", post.id, post.platform.value, exc)
            post.analysis = PostAnalysis(
                status=AnalysisStatus.FAILED,
                error=str(exc),
                analyzed_at=now,
                model=self.classifier.model_name or None,
            )
            return await self.posts.save(post)

        embedding: Optional[List[float]] = None
        if self.embed and post.text:
            try:
                embedding = await self.classifier.embed(post.text)
            except Exception as exc:
                logger.warning("embed_failed post_id=%s error=%s", post.id, exc)

        post.analysis = PostAnalysis(
            status=AnalysisStatus.ANALYZED,
            sentiment_score=result.sentiment_score,
            sentiment_label=result.sentiment_label,
            topics=list(result.topics),
            brand_mentioned=result.brand_mentioned,
            summary=result.summary,
            language=result.language,
            embedding=embedding or None,
            analyzed_at=now,
            model=self.classifier.model_name or None,
        )
        return await self.posts.save(post)

    async def _record(self, summary: ClassifySummary, recorder: RunStatsRecorder) -> None:
        platforms = set(summary.scores_by_platform) | set(summary.failed_by_platform)
        for platform in sorted(platforms):
            scores = summary.scores_by_platform.get(platform, [])
            await recorder.update_platform(
                platform,
                posts_analyzed=len(scores),
                analysis_failed=summary.failed_by_platform.get(platform, 0),
                avg_sentiment=round(sum(scores) / len(scores), 1) if scores else None,
            )
        await recorder.set_run_sentiment(summary.avg_sentiment)
