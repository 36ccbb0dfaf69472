from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Optional

from fastapi import Header, HTTPException
from sqlalchemy.engine import make_url

from librarium.config import LibraryConfig, configure_logging
from librarium.library import (
    DocumentStore,
    GeminiTextGenerator,
    LibraryProvider,
    LibraryService,
    MaintenanceQueue,
    PersonalizedMessageService,
    QueuedStatisticsRefresher,
    SqlAlchemyDocumentStore,
    WhooshBookIndexer,
    WorkerConfig,
)


@lru_cache(maxsize=1)
def get_config() -> LibraryConfig:
    config = LibraryConfig.from_env()
    configure_logging(config.log_level)
    return config


def _ensure_sqlite_dir(database_url: str) -> None:
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)


@lru_cache(maxsize=1)
def get_store() -> DocumentStore:
    config = get_config()
    _ensure_sqlite_dir(config.database_url)
    return SqlAlchemyDocumentStore(config.database_url)


@lru_cache(maxsize=1)
def get_indexer() -> Optional[WhooshBookIndexer]:
    whoosh_dir = get_config().whoosh_index_dir
    return WhooshBookIndexer(Path(whoosh_dir)) if whoosh_dir else None


def worker_config() -> WorkerConfig:
    config = get_config()
    return WorkerConfig(
        database_url=config.database_url,
        whoosh_index_dir=config.whoosh_index_dir,
        use_batch_writes=config.use_batch_writes,
        favorite_genres_limit=config.favorite_genres_limit,
    )


@lru_cache(maxsize=1)
def get_queue() -> MaintenanceQueue:
    config = get_config()
    return MaintenanceQueue(config.redis_url, config.queue_name)


@lru_cache(maxsize=1)
def get_service() -> LibraryService:
    config = get_config()
    refresher = None
    if config.queue_statistics_refresh:
        refresher = QueuedStatisticsRefresher(get_queue(), worker_config())
    return LibraryService.from_store(
        get_store(),
        indexer=get_indexer(),
        refresher=refresher,
        use_batch_writes=config.use_batch_writes,
        favorite_genres_limit=config.favorite_genres_limit,
    )


@lru_cache(maxsize=1)
def get_provider() -> LibraryProvider:
    config = get_config()
    service = get_service()
    generator = None
    if config.gemini_api_key:
        generator = GeminiTextGenerator(config.gemini_api_key, model_name=config.gemini_model)
    return LibraryProvider(service, messages=PersonalizedMessageService(generator, clock=service.clock))


def get_user_id(x_user_id: Optional[str] = Header(default=None)) -> str:
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail={"message": "Missing X-User-Id header"})
    return x_user_id.strip()
