"""HTTP API for campaigns, runs and listening results."""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone
import logging
from typing import Any, AsyncIterator, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator

from core import CampaignStatus
from orchestrator.service import ListeningService
from utils.exceptions import (
    CampaignNotFoundError,
    CampaignPausedError,
    InvalidCampaignError,
    ListeningEngineError,
    RunNotFoundError,
)
from webapp.runtime import ListeningRuntime, get_runtime


logger = logging.getLogger(__name__)


class CampaignCreatePayload(BaseModel):
    query: str
    platforms: List[str] = Field(default_factory=list)
    settings: Dict[str, Any] = Field(default_factory=dict)
    schedule: Dict[str, Any] = Field(default_factory=dict)
    trigger_first_run: bool = False

    @field_validator("query")
    @classmethod
    def _strip_required(cls, value: str) -> str:
        text = str(value or "").strip()
        if not text:
            raise ValueError("value is required")
        return text

    @field_validator("platforms", mode="before")
    @classmethod
    def _split_platforms(cls, value: Any) -> List[str]:
        if isinstance(value, str):
            value = value.split(",")
        return [str(item or "").strip().lower() for item in (value or []) if str(item or "").strip()]


class CampaignStatusPayload(BaseModel):
    status: CampaignStatus


class SearchPayload(BaseModel):
    query: str
    limit: int = Field(default=20, ge=1, le=200)
    min_similarity: float = Field(default=0.3, ge=0.0, le=1.0)
    platforms: List[str] = Field(default_factory=list)
    sentiment: Optional[str] = None


def _error_body(exc: ListeningEngineError) -> Dict[str, Any]:
    return {"detail": exc.message, **({"details": exc.details} if exc.details else {})}


def create_app(runtime: Optional[ListeningRuntime] = None, *, start_workers: bool = True) -> FastAPI:
    """Build the API; `runtime` defaults to the process-wide singletons."""

    def _runtime() -> ListeningRuntime:
        return runtime or get_runtime()

    def _service() -> ListeningService:
        return _runtime().service

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        workers = _runtime().workers if start_workers else None
        if workers is not None:
            workers.start()
        try:
            yield
        finally:
            if workers is not None:
                await workers.stop(drain=False)

    app = FastAPI(title="Listening Engine API", version="1.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ListeningEngineError)
    async def _engine_error(_: Request, exc: ListeningEngineError) -> JSONResponse:
        if isinstance(exc, (CampaignNotFoundError, RunNotFoundError)):
            status_code = 404
        elif isinstance(exc, CampaignPausedError):
            status_code = 409
        elif isinstance(exc, InvalidCampaignError):
            status_code = 422
        else:
            logger.error("api_error type=%s error=%s", exc.__class__.__name__, exc)
            status_code = 500
        return JSONResponse(status_code=status_code, content=_error_body(exc))

    @app.get("/health")
    async def health() -> Dict[str, Any]:
        return {"ok": True, "ts": datetime.now(timezone.utc).isoformat(timespec="seconds")}

    @app.get("/api/campaigns")
    async def list_campaigns(status: Optional[CampaignStatus] = None) -> Dict[str, Any]:
        campaigns = await _service().list_campaigns(status=status)
        return {"campaigns": campaigns, "count": len(campaigns)}

    @app.post("/api/campaigns", status_code=201)
    async def create_campaign(payload: CampaignCreatePayload) -> Dict[str, Any]:
        campaign, run_id = await _service().create_campaign(
            payload.query,
            payload.platforms,
            settings=payload.settings,
            schedule=payload.schedule,
            trigger_first_run=payload.trigger_first_run,
        )
        return {"campaign": campaign.model_dump(mode="json"), "run_id": run_id}

    @app.delete("/api/campaigns")
    async def delete_all_campaigns() -> Dict[str, Any]:
        return {"deleted": await _service().delete_all_campaigns()}

    @app.get("/api/campaigns/{campaign_id}")
    async def get_campaign(campaign_id: str) -> Dict[str, Any]:
        campaign = await _service().get_campaign(campaign_id)
        return campaign.model_dump(mode="json")

    @app.patch("/api/campaigns/{campaign_id}/status")
    async def set_campaign_status(campaign_id: str, payload: CampaignStatusPayload) -> Dict[str, Any]:
        campaign = await _service().set_campaign_status(campaign_id, payload.status)
        return {"campaign_id": campaign.id, "status": campaign.status.value}

    @app.delete("/api/campaigns/{campaign_id}")
    async def delete_campaign(campaign_id: str) -> Dict[str, Any]:
        deleted = await _service().delete_campaign(campaign_id)
        return {"campaign_id": campaign_id, "deleted": deleted}

    @app.post("/api/campaigns/{campaign_id}/runs", status_code=202)
    async def trigger_run(campaign_id: str) -> Dict[str, Any]:
        run_id = await _service().trigger_run(campaign_id)
        return {"campaign_id": campaign_id, "run_id": run_id, "status": "running"}

    @app.get("/api/campaigns/{campaign_id}/runs")
    async def list_runs(
        campaign_id: str,
        limit: int = Query(default=20, ge=1, le=200),
        offset: int = Query(default=0, ge=0),
    ) -> Dict[str, Any]:
        runs, total = await _service().list_runs(campaign_id, limit=limit, offset=offset)
        return {"runs": [run.model_dump(mode="json") for run in runs], "total": total}

    @app.get("/api/runs/{run_id}")
    async def get_run(run_id: str) -> Dict[str, Any]:
        run = await _service().get_run(run_id)
        return run.model_dump(mode="json")

    @app.get("/api/runs/{run_id}/analytics")
    async def get_run_analytics(run_id: str) -> Dict[str, Any]:
        analytics = await _service().get_run_analytics(run_id)
        if analytics is None:
            raise HTTPException(status_code=404, detail="analytics not found")
        return analytics.model_dump(mode="json")

    @app.get("/api/campaigns/{campaign_id}/posts")
    async def get_posts(
        campaign_id: str,
        platform: Optional[str] = None,
        run_id: Optional[str] = None,
        sentiment: Optional[str] = None,
        sort_by: str = "recent",
        limit: int = Query(default=50, ge=1, le=500),
        offset: int = Query(default=0, ge=0),
    ) -> Dict[str, Any]:
        try:
            posts, total = await _service().get_posts(
                campaign_id,
                platform=platform,
                run_id=run_id,
                sentiment=sentiment,
                sort_by=sort_by,
                limit=limit,
                offset=offset,
            )
        except ValueError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        return {
            "posts": [post.model_dump(mode="json", exclude={"raw_data"}) for post in posts],
            "total": total,
            "limit": limit,
            "offset": offset,
        }

    @app.get("/api/campaigns/{campaign_id}/stats")
    async def get_campaign_stats(campaign_id: str) -> Dict[str, Any]:
        return await _service().get_campaign_stats(campaign_id)

    @app.get("/api/campaigns/{campaign_id}/sentiment-trend")
    async def get_sentiment_trend(campaign_id: str) -> Dict[str, Any]:
        trend = await _service().get_sentiment_trend(campaign_id)
        return {"campaign_id": campaign_id, "trend": trend}

    @app.get("/api/campaigns/{campaign_id}/analytics/latest")
    async def get_latest_analytics(campaign_id: str) -> Dict[str, Any]:
        analytics = await _service().get_latest_analytics(campaign_id)
        if analytics is None:
            raise HTTPException(status_code=404, detail="analytics not found")
        return analytics.model_dump(mode="json")

    @app.post("/api/campaigns/{campaign_id}/search")
    async def semantic_search(campaign_id: str, payload: SearchPayload) -> Dict[str, Any]:
        results = await _service().semantic_search(
            campaign_id,
            payload.query,
            limit=payload.limit,
            min_similarity=payload.min_similarity,
            platforms=payload.platforms,
            sentiment=payload.sentiment,
        )
        return {
            "campaign_id": campaign_id,
            "query": payload.query,
            "results": [item.to_dict() for item in results],
            "count": len(results),
        }

    return app


app = create_app()
