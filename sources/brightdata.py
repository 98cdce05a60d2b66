"""BrightData datasets v3 adapter (trigger / progress / snapshot download)."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from config import get_provider_settings
from config.settings import ProviderSettings
from core import JobStatus
from utils.exceptions import ConfigurationError, ProviderError

from .base import ContentProviderClient, RawRecord


logger = logging.getLogger(__name__)


class BrightDataClient(ContentProviderClient):
    """One dataset per platform; each call opens a short-lived httpx client unless one is injected."""

    def __init__(
        self,
        platform: str,
        *,
        settings: Optional[ProviderSettings] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        super().__init__(platform)
        self._settings = settings or get_provider_settings()
        self._client = client
        self.dataset_id = self._settings.dataset_id(platform)
        self.base_url = self._settings.base_url.rstrip("/")

    def is_configured(self) -> bool:
        return bool(self._settings.api_key and self.dataset_id)

    def _headers(self) -> Dict[str, str]:
        if not self._settings.api_key:
            raise ConfigurationError("BRIGHTDATA_API_KEY is not set", {"platform": self.platform})
        return {"Authorization": f"Bearer {self._settings.api_key}", "Content-Type": "application/json"}

    async def _request(self, method: str, path: str, *, timeout: float, **kwargs: Any) -> httpx.Response:
        url = f"{self.base_url}{path}"
        if self._client is not None:
            response = await self._client.request(method, url, headers=self._headers(), timeout=timeout, **kwargs)
        else:
            async with httpx.AsyncClient(timeout=httpx.Timeout(timeout)) as client:
                response = await client.request(method, url, headers=self._headers(), **kwargs)
        if response.status_code >= 400:
            raise ProviderError(
                f"BrightData {method} {path} failed with HTTP {response.status_code}",
                provider="brightdata",
                platform=self.platform,
                status_code=response.status_code,
                body=response.text[:500],
            )
        return response

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    async def _trigger(self, payload: List[Dict[str, Any]], params: Dict[str, str]) -> str:
        query = {"dataset_id": self.dataset_id, "include_errors": "true", **params}
        response = await self._request(
            "POST", "/trigger", timeout=self._settings.request_timeout, params=query, json=payload
        )
        snapshot_id = str((response.json() or {}).get("snapshot_id") or "").strip()
        if not snapshot_id:
            raise ProviderError("No snapshot_id returned from API", provider="brightdata", platform=self.platform)
        logger.info("provider_trigger platform=%s job_id=%s inputs=%d", self.platform, snapshot_id, len(payload))
        return snapshot_id

    async def trigger_by_urls(self, urls: List[str]) -> str:
        inputs = [{"url": url} for url in urls if str(url or "").strip()]
        if not inputs:
            raise ProviderError("No valid URLs to scrape", provider="brightdata", platform=self.platform)
        return await self._trigger(inputs, {})

    async def trigger_by_keyword(self, keyword: str, options: Optional[Dict[str, Any]] = None) -> str:
        entry: Dict[str, Any] = {"keyword": str(keyword or "").strip()}
        for key, value in dict(options or {}).items():
            if value is not None:
                entry[key] = str(value) if key == "num_of_posts" else value
        return await self._trigger([entry], {"type": "discover_new", "discover_by": "keyword"})

    async def poll_status(self, job_id: str) -> JobStatus:
        response = await self._request("GET", f"/progress/{job_id}", timeout=self._settings.request_timeout)
        data = response.json() or {}
        progress = data.get("progress")
        try:
            progress = float(progress) if progress is not None else None
        except (TypeError, ValueError):
            progress = None
        return JobStatus(
            status=data.get("status"),
            progress=progress,
            error=data.get("error") or data.get("error_message"),
            raw=data,
        )

    async def download(self, job_id: str) -> List[RawRecord]:
        response = await self._request(
            "GET", f"/snapshot/{job_id}", timeout=self._settings.download_timeout, params={"format": "json"}
        )
        data = response.json()
        if isinstance(data, dict):
            # the API answers 200 with a status body while the snapshot is still building
            if str(data.get("status") or "").lower() in {"building", "running", "pending"}:
                raise ProviderError("snapshot not ready for download", provider="brightdata", job_id=job_id)
            data = [data]
        records = [item for item in list(data or []) if isinstance(item, dict)]
        logger.info("provider_download platform=%s job_id=%s records=%d", self.platform, job_id, len(records))
        return records
