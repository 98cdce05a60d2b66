"""SERP adapter: paginated Google results through the BrightData request API."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from config import get_provider_settings, get_serp_settings
from config.settings import SerpSettings
from utils.exceptions import ConfigurationError, ProviderError

from .base import UrlSearchClient
from .registry import build_search_queries


logger = logging.getLogger(__name__)


class SerpSearchClient(UrlSearchClient):
    def __init__(
        self,
        *,
        settings: Optional[SerpSettings] = None,
        api_key: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._settings = settings or get_serp_settings()
        self._api_key = api_key or self._settings.api_key
        if self._api_key is None and settings is None:
            self._api_key = get_provider_settings().api_key
        self._client = client

    async def search(self, query: str, platform: str, *, google_domain: Optional[str] = None) -> List[Dict[str, Any]]:
        """Run every platform-scoped query; a failing query is logged and skipped."""
        domain = google_domain or self._settings.google_domain
        results: List[Dict[str, Any]] = []
        errors: List[str] = []
        for search_query in build_search_queries(query, platform):
            try:
                results.extend(await self.fetch_results(search_query, domain, self._settings.max_results))
            except (ProviderError, httpx.HTTPError) as exc:
                logger.error("serp_query_failed platform=%s query=%s error=%s", platform, search_query, exc)
                errors.append(str(exc))
        if errors and not results:
            raise ProviderError("all SERP queries failed", provider="serp", platform=platform, errors=errors)
        logger.info("serp_done platform=%s results=%d", platform, len(results))
        return results

    async def fetch_results(self, query: str, google_domain: str, max_results: int) -> List[Dict[str, Any]]:
        """Paginate until empty page or `max_results`; partial results survive a failing page."""
        per_page = max(1, int(self._settings.results_per_page))
        max_pages = max(1, -(-int(max_results) // per_page))
        collected: List[Dict[str, Any]] = []
        for page in range(max_pages):
            try:
                rows = await self._fetch_page_with_retry(query, google_domain, page * per_page)
            except (ProviderError, httpx.HTTPError):
                if collected:
                    logger.warning("serp_partial query=%s pages=%d", query, page)
                    break
                raise
            if not rows:
                break
            collected.extend(rows)
            if len(collected) >= max_results:
                break
            if page < max_pages - 1 and self._settings.retry_delay > 0:
                await asyncio.sleep(self._settings.retry_delay)
        return collected[:max_results]

    async def _fetch_page_with_retry(self, query: str, google_domain: str, start: int) -> List[Dict[str, Any]]:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(max(1, int(self._settings.retry_attempts))),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            retry=retry_if_exception_type(httpx.TransportError),
            reraise=True,
        ):
            with attempt:
                return await self._fetch_page(query, google_domain, start)
        return []

    async def _fetch_page(self, query: str, google_domain: str, start: int) -> List[Dict[str, Any]]:
        if not self._api_key:
            raise ConfigurationError("SERP_API_KEY is not set")
        target = f"https://www.{google_domain}/search?q={quote(query, safe='')}&start={start}&brd_json=1"
        payload = {"zone": self._settings.zone, "url": target, "format": "raw", "method": "GET"}
        headers = {"Authorization": f"Bearer {self._api_key}", "Content-Type": "application/json"}
        if self._client is not None:
            response = await self._client.post(
                self._settings.api_url, json=payload, headers=headers, timeout=self._settings.request_timeout
            )
        else:
            async with httpx.AsyncClient(timeout=httpx.Timeout(self._settings.request_timeout)) as client:
                response = await client.post(self._settings.api_url, json=payload, headers=headers)
        if response.status_code >= 400:
            raise ProviderError(
                f"SERP request failed with HTTP {response.status_code}",
                provider="serp",
                status_code=response.status_code,
            )
        try:
            data = json.loads(response.text) if response.text else {}
        except json.JSONDecodeError as exc:
            raise ProviderError("SERP response is not JSON", provider="serp") from exc
        rows = data.get("organic") or data.get("results") or []
        return [row for row in rows if isinstance(row, dict)]
