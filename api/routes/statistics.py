from __future__ import annotations

from fastapi import APIRouter, Depends

from librarium.library import LibraryProvider

from api.dependencies import get_provider, get_user_id
from api.serializers import respond, statistics_to_dict

router = APIRouter(prefix="/statistics", tags=["statistics"])


@router.get("")
def get_statistics(user_id: str = Depends(get_user_id), provider: LibraryProvider = Depends(get_provider)):
    return respond(provider.get_statistics(user_id), statistics_to_dict)


@router.post("/refresh")
def refresh_statistics(user_id: str = Depends(get_user_id), provider: LibraryProvider = Depends(get_provider)):
    return respond(provider.refresh_statistics(user_id), statistics_to_dict)
