"""
Storage Module
存储模块 - 文档存储, posts and analytics
"""
from .document_store import (
    BaseDocumentStore,
    MemoryDocumentStore,
    DiskDocumentStore,
    get_document_store,
)
from .post_store import PostStore, collection_for
from .analytics_store import AnalyticsStore, ANALYTICS_COLLECTION
from .vector_search import SearchResult, cosine_similarity, rank_by_similarity

__all__ = [
    # Document Store
    "BaseDocumentStore",
    "MemoryDocumentStore",
    "DiskDocumentStore",
    "get_document_store",
    # Typed stores
    "PostStore",
    "collection_for",
    "AnalyticsStore",
    "ANALYTICS_COLLECTION",
    # Semantic search
    "SearchResult",
    "cosine_similarity",
    "rank_by_similarity",
]
