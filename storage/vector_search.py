"""
Vector Search
基于 post embedding 的语义检索 (in-memory cosine similarity)
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, List, Sequence

from core import Post


@dataclass
class SearchResult:
    """搜索结果"""
    post: Post
    score: float

    def to_dict(self) -> dict:
        payload = self.post.model_dump(mode="json", exclude={"raw_data": True, "analysis": {"embedding"}})
        payload["similarity_score"] = round(self.score, 4)
        return payload


def cosine_similarity(left: Sequence[float], right: Sequence[float]) -> float:
    """Cosine of two vectors; 0.0 for empty, zero-norm or mismatched vectors."""
    if not left or not right or len(left) != len(right):
        return 0.0
    dot = sum(a * b for a, b in zip(left, right))
    norm = math.sqrt(sum(a * a for a in left)) * math.sqrt(sum(b * b for b in right))
    if norm == 0:
        return 0.0
    return dot / norm


def rank_by_similarity(
    query_embedding: Sequence[float],
    posts: Iterable[Post],
    *,
    limit: int = 20,
    min_similarity: float = 0.3,
) -> List[SearchResult]:
    """Score posts against the query vector, drop those under the threshold, best first."""
    results: List[SearchResult] = []
    for post in posts:
        if not post.analysis.embedding:
            continue
        score = cosine_similarity(query_embedding, post.analysis.embedding)
        if score >= min_similarity:
            results.append(SearchResult(post=post, score=score))
    results.sort(key=lambda item: item.score, reverse=True)
    return results[:max(0, int(limit))]
