from __future__ import annotations

from fastapi import APIRouter, Depends

from librarium.library import LibraryProvider, PersonalizedMessage
from librarium.library.models import to_iso

from api.dependencies import get_provider, get_user_id
from api.serializers import respond

router = APIRouter(prefix="/messages", tags=["messages"])


def _message_to_dict(message: PersonalizedMessage) -> dict:
    return {
        "content": message.content,
        "generated": message.generated,
        "created_at": to_iso(message.created_at),
    }


@router.get("/personalized")
async def personalized_message(
    display_name: str = "Reader",
    user_id: str = Depends(get_user_id),
    provider: LibraryProvider = Depends(get_provider),
):
    result = await provider.personalized_message(user_id, display_name)
    return respond(result, _message_to_dict)
