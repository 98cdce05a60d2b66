"""Campaign/run persistence, run queue, worker pool and service facade."""

from .queue import RunQueue
from .service import ListeningService
from .store import STUCK_RUN_ERROR, CampaignRunStore
from .workers import RunWorkerPool

__all__ = [
    "CampaignRunStore",
    "ListeningService",
    "RunQueue",
    "RunWorkerPool",
    "STUCK_RUN_ERROR",
]
