"""Shared runtime singletons for the web and CLI entrypoints."""

from __future__ import annotations

from typing import Optional

from config import get_pipeline_settings
from orchestrator.queue import RunQueue
from orchestrator.service import ListeningService
from orchestrator.store import CampaignRunStore
from orchestrator.workers import RunWorkerPool
from pipeline.runtime import RunPipeline
from sources.registry import SourceRegistry
from storage.document_store import BaseDocumentStore, get_document_store


class ListeningRuntime:
    """Wires store, registry, pipeline, queue, worker pool and service together."""

    def __init__(
        self,
        *,
        store: Optional[BaseDocumentStore] = None,
        registry: Optional[SourceRegistry] = None,
        pipeline: Optional[RunPipeline] = None,
        worker_count: Optional[int] = None,
    ) -> None:
        settings = get_pipeline_settings()
        self.store = store or get_document_store()
        self.runs = CampaignRunStore(self.store)
        self.registry = registry or SourceRegistry.from_settings()
        self.pipeline = pipeline or RunPipeline(self.runs, self.registry)
        self.queue = RunQueue()
        self.workers = RunWorkerPool(
            self.queue,
            self.pipeline.run_pipeline,
            worker_count=settings.worker_count if worker_count is None else worker_count,
        )
        self.service = ListeningService(
            self.runs,
            self.queue,
            registry=self.registry,
            sweep_cutoff_minutes=settings.stuck_run_cutoff_minutes,
        )


_RUNTIME: Optional[ListeningRuntime] = None


def get_runtime() -> ListeningRuntime:
    global _RUNTIME
    if _RUNTIME is None:
        _RUNTIME = ListeningRuntime()
    return _RUNTIME


def set_runtime(runtime: Optional[ListeningRuntime]) -> None:
    global _RUNTIME
    _RUNTIME = runtime


def get_service() -> ListeningService:
    return get_runtime().service


def get_worker_pool() -> RunWorkerPool:
    return get_runtime().workers
