from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence

from .models import (
    Book,
    BookEvent,
    CommentPayload,
    ManualUpdatePayload,
    ProgressUpdatePayload,
    RatingAddedPayload,
    ReadingState,
    ReviewPayload,
    StateChangePayload,
)


class ActivityType(str, Enum):
    ADDED = "added"
    STARTED = "started"
    FINISHED = "finished"
    PROGRESS = "progress"
    RATED = "rated"
    COMMENTED = "commented"
    REVIEWED = "reviewed"
    MANUALLY_UPDATED = "manually_updated"


@dataclass(frozen=True)
class ActivityItem:
    id: str
    type: ActivityType
    book_id: str
    book_title: str
    timestamp: datetime
    details: Optional[str] = None


def activity_from_event(event: BookEvent, book: Optional[Book]) -> Optional[ActivityItem]:
    """Display form of one event; ``None`` when the book is gone."""
    if book is None:
        return None
    payload = event.payload
    details: Optional[str] = None
    if isinstance(payload, StateChangePayload):
        if payload.override:
            kind = ActivityType.MANUALLY_UPDATED
            details = f"state set to {payload.new_state.value}"
        elif payload.new_state == ReadingState.IN_PROGRESS:
            kind = ActivityType.STARTED
        elif payload.new_state == ReadingState.FINISHED:
            kind = ActivityType.FINISHED
        else:
            kind = ActivityType.ADDED
    elif isinstance(payload, ProgressUpdatePayload):
        kind = ActivityType.PROGRESS
        details = f"page {payload.new_page}" if payload.new_page else None
    elif isinstance(payload, RatingAddedPayload):
        kind = ActivityType.RATED
        details = f"{payload.rating} stars"
    elif isinstance(payload, CommentPayload):
        kind = ActivityType.COMMENTED
        details = f"page {payload.page}" if payload.page else None
    elif isinstance(payload, ReviewPayload):
        kind = ActivityType.REVIEWED
    elif isinstance(payload, ManualUpdatePayload):
        kind = ActivityType.MANUALLY_UPDATED
        details = ", ".join(payload.fields) or None
    else:
        return None
    return ActivityItem(
        id=event.id,
        type=kind,
        book_id=event.book_id,
        book_title=book.title,
        timestamp=event.timestamp,
        details=details,
    )


def build_activity_feed(
    events: Iterable[BookEvent],
    books: Sequence[Book],
    limit: Optional[int] = None,
    include_added: bool = True,
) -> List[ActivityItem]:
    """
    Merge event activity with "added" entries derived from each book's
    ``added_at``, newest first. Adding a book records no event, so the
    added entries come from the books themselves.
    """
    by_id: Dict[str, Book] = {b.id: b for b in books}
    items = [item for item in (activity_from_event(e, by_id.get(e.book_id)) for e in events) if item]
    if include_added:
        items.extend(
            ActivityItem(
                id=f"added-{book.id}",
                type=ActivityType.ADDED,
                book_id=book.id,
                book_title=book.title,
                timestamp=book.added_at,
            )
            for book in books
            if book.added_at is not None
        )
    items.sort(key=lambda item: item.timestamp, reverse=True)
    return items[:limit] if limit is not None else items
