from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from librarium.config import LibraryConfig
from librarium.library import LibraryProvider

from api.dependencies import get_config, get_provider, get_user_id
from api.serializers import activity_to_dict, event_to_dict, respond

router = APIRouter(prefix="/events", tags=["events"])


class PurgeRequest(BaseModel):
    max_age_days: Optional[int] = None


@router.get("")
def list_events(
    limit: Optional[int] = None,
    type: Optional[str] = None,
    user_id: str = Depends(get_user_id),
    provider: LibraryProvider = Depends(get_provider),
    config: LibraryConfig = Depends(get_config),
):
    if type:
        return respond(provider.events_by_type(user_id, type), event_to_dict)
    limit = limit if limit is not None else config.recent_events_limit
    return respond(provider.recent_events(user_id, limit), event_to_dict)


@router.get("/activity")
def activity_feed(
    limit: Optional[int] = None,
    user_id: str = Depends(get_user_id),
    provider: LibraryProvider = Depends(get_provider),
    config: LibraryConfig = Depends(get_config),
):
    limit = limit if limit is not None else config.recent_events_limit
    return respond(provider.activity_feed(user_id, limit), activity_to_dict)


@router.post("/purge")
def purge_events(
    body: PurgeRequest,
    user_id: str = Depends(get_user_id),
    provider: LibraryProvider = Depends(get_provider),
    config: LibraryConfig = Depends(get_config),
):
    max_age_days = body.max_age_days if body.max_age_days is not None else config.event_retention_days
    return respond(provider.purge_events(user_id, max_age_days))
