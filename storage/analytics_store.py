"""Analytics snapshot persistence."""

from __future__ import annotations

from typing import List, Optional

from core import Analytics
from .document_store import BaseDocumentStore


ANALYTICS_COLLECTION = "analytics"


class AnalyticsStore:
    def __init__(self, store: BaseDocumentStore) -> None:
        self._store = store

    async def save(self, analytics: Analytics) -> Analytics:
        await self._store.upsert(ANALYTICS_COLLECTION, analytics.id, analytics.model_dump(mode="json"))
        return analytics

    async def get_for_run(self, run_id: str) -> Optional[Analytics]:
        docs = await self._store.query(ANALYTICS_COLLECTION, {"run_id": run_id}, order_by="created_at", descending=True, limit=1)
        return Analytics.model_validate(docs[0]) if docs else None

    async def get_latest(self, campaign_id: str) -> Optional[Analytics]:
        docs = await self._store.query(
            ANALYTICS_COLLECTION, {"campaign_id": campaign_id}, order_by="created_at", descending=True, limit=1
        )
        return Analytics.model_validate(docs[0]) if docs else None

    async def list_for_campaign(self, campaign_id: str) -> List[Analytics]:
        docs = await self._store.query(ANALYTICS_COLLECTION, {"campaign_id": campaign_id}, order_by="created_at")
        return [Analytics.model_validate(doc) for doc in docs]

    async def count_for_run(self, run_id: str) -> int:
        return await self._store.count(ANALYTICS_COLLECTION, {"run_id": run_id})

    async def delete_for_campaign(self, campaign_id: str) -> int:
        return await self._store.delete_where(ANALYTICS_COLLECTION, {"campaign_id": campaign_id})
