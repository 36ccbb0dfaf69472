from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

_TRUE = {"1", "true", "yes", "on"}


def _flag(value: Optional[str], default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in _TRUE


@dataclass
class LibraryConfig:
    database_url: str = "sqlite+pysqlite:///./data/librarium.db"
    redis_url: str = "redis://localhost:6379/0"
    queue_name: str = "librarium-maintenance"
    whoosh_index_dir: Optional[str] = "./data/whoosh"
    use_batch_writes: bool = False
    queue_statistics_refresh: bool = False
    recent_events_limit: int = 10
    favorite_genres_limit: int = 3
    event_retention_days: int = 365
    gemini_api_key: Optional[str] = None
    gemini_model: str = "gemini-2.5-flash-lite"
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "LibraryConfig":
        env = os.environ if environ is None else environ
        defaults = cls()
        return cls(
            database_url=env.get("DATABASE_URL", defaults.database_url),
            redis_url=env.get("REDIS_URL", defaults.redis_url),
            queue_name=env.get("QUEUE_NAME", defaults.queue_name),
            whoosh_index_dir=env.get("WHOOSH_DIR", defaults.whoosh_index_dir) or None,
            use_batch_writes=_flag(env.get("USE_BATCH_WRITES"), defaults.use_batch_writes),
            queue_statistics_refresh=_flag(env.get("QUEUE_STATISTICS_REFRESH"), defaults.queue_statistics_refresh),
            recent_events_limit=int(env.get("RECENT_EVENTS_LIMIT", defaults.recent_events_limit)),
            favorite_genres_limit=int(env.get("FAVORITE_GENRES_LIMIT", defaults.favorite_genres_limit)),
            event_retention_days=int(env.get("EVENT_RETENTION_DAYS", defaults.event_retention_days)),
            gemini_api_key=env.get("GEMINI_API_KEY") or None,
            gemini_model=env.get("GEMINI_MODEL", defaults.gemini_model),
            log_level=env.get("LOG_LEVEL", defaults.log_level),
        )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)
