from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from redis import Redis
from rq import Queue, Worker

from .indexing import WhooshBookIndexer
from .service import LibraryService
from .store import SqlAlchemyDocumentStore

logger = logging.getLogger(__name__)


@dataclass
class WorkerConfig:
    database_url: str
    whoosh_index_dir: Optional[str] = None
    use_batch_writes: bool = False
    favorite_genres_limit: int = 3


def build_worker_service(config: WorkerConfig) -> LibraryService:
    store = SqlAlchemyDocumentStore(config.database_url)
    indexer = WhooshBookIndexer(Path(config.whoosh_index_dir)) if config.whoosh_index_dir else None
    return LibraryService.from_store(
        store,
        indexer=indexer,
        use_batch_writes=config.use_batch_writes,
        favorite_genres_limit=config.favorite_genres_limit,
    )


def run_statistics_refresh(user_id: str, config: WorkerConfig) -> dict:
    """
    RQ task entrypoint. Recomputes and stores one user's statistics; raising
    marks the RQ job as failed.
    """
    service = build_worker_service(config)
    result = service.refresh_statistics(user_id)
    if not result.success:
        raise RuntimeError(f"Statistics refresh failed for {user_id}: {result.error.detail or result.error.message}")
    stats = result.data
    logger.info("Refreshed statistics for %s: %d books", user_id, stats.books_in_library)
    return {"user_id": user_id, "books_in_library": stats.books_in_library}


def run_retention_sweep(user_id: str, max_age_days: int, config: WorkerConfig) -> int:
    """RQ task entrypoint. Deletes events older than ``max_age_days``."""
    service = build_worker_service(config)
    result = service.purge_events(user_id, max_age_days)
    if not result.success:
        raise RuntimeError(f"Retention sweep failed for {user_id}: {result.error.detail or result.error.message}")
    logger.info("Retention sweep for %s removed %d events", user_id, result.data)
    return result.data


class MaintenanceQueue:
    """
    Redis-backed queue for background library maintenance using RQ. Workers
    are started by calling `work()` in a dedicated process.
    """

    def __init__(self, redis_url: str = "redis://localhost:6379/0", queue_name: str = "librarium-maintenance"):
        self.redis = Redis.from_url(redis_url)
        self.queue = Queue(queue_name, connection=self.redis)

    def enqueue_statistics_refresh(self, user_id: str, config: WorkerConfig):
        """
        RQ job_id is derived from the user so repeated refresh requests
        collapse onto the same job.
        """
        return self.queue.enqueue(
            run_statistics_refresh,
            user_id,
            config,
            job_id=f"refresh-statistics-{user_id}",
            retry=None,
        )

    def enqueue_retention_sweep(self, user_id: str, max_age_days: int, config: WorkerConfig):
        return self.queue.enqueue(
            run_retention_sweep,
            user_id,
            max_age_days,
            config,
            job_id=f"retention-sweep-{user_id}",
            retry=None,
        )

    def work(self):
        worker = Worker([self.queue], connection=self.redis)
        worker.work(with_scheduler=True)


class QueuedStatisticsRefresher:
    """Hands statistics refreshes to the maintenance queue instead of running them inline."""

    def __init__(self, queue: MaintenanceQueue, config: WorkerConfig):
        self.queue = queue
        self.config = config

    def request_refresh(self, user_id: str) -> None:
        self.queue.enqueue_statistics_refresh(user_id, self.config)
