"""
Append-only event log.

Each event is stored once under ``users/{uid}/events/{event_id}`` with a
server-assigned id and timestamp and is never edited afterwards. Reads come
back newest first. The only deletion path is ``purge_older_than``, a bulk
retention sweep; there is no per-event delete.
"""

from __future__ import annotations

import logging
from dataclasses import fields
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Type

from .errors import StoreErrorCode, StoreResult
from .models import (
    BookEvent,
    CommentPayload,
    EventPayload,
    EventType,
    ManualUpdatePayload,
    PendingEvent,
    ProgressUpdatePayload,
    RatingAddedPayload,
    ReadingState,
    ReviewPayload,
    StateChangePayload,
    from_iso,
    to_iso,
)
from .repository import events_collection
from .store import SERVER_TIMESTAMP, Document, DocumentStore, Query, WriteBatch

logger = logging.getLogger(__name__)

PAYLOAD_TYPES: Dict[EventType, Type[Any]] = {
    EventType.STATE_CHANGE: StateChangePayload,
    EventType.PROGRESS_UPDATE: ProgressUpdatePayload,
    EventType.RATING_ADDED: RatingAddedPayload,
    EventType.COMMENT: CommentPayload,
    EventType.REVIEW: ReviewPayload,
    EventType.MANUAL_UPDATE: ManualUpdatePayload,
}


def encode_payload(payload: EventPayload) -> Dict[str, Any]:
    event_type = getattr(payload, "event_type", None)
    if PAYLOAD_TYPES.get(event_type) is not type(payload):
        raise TypeError(f"Unsupported event payload: {type(payload).__name__}")
    data: Dict[str, Any] = {}
    for f in fields(payload):
        value = getattr(payload, f.name)
        if isinstance(value, Enum):
            value = value.value
        elif isinstance(value, tuple):
            value = list(value)
        data[f.name] = value
    return data


def decode_payload(event_type: EventType, data: Dict[str, Any]) -> EventPayload:
    if event_type == EventType.STATE_CHANGE:
        previous = data.get("previous_state")
        return StateChangePayload(
            new_state=ReadingState(data["new_state"]),
            previous_state=ReadingState(previous) if previous else None,
            override=bool(data.get("override", False)),
        )
    if event_type == EventType.PROGRESS_UPDATE:
        return ProgressUpdatePayload(previous_page=int(data["previous_page"]), new_page=int(data["new_page"]))
    if event_type == EventType.RATING_ADDED:
        return RatingAddedPayload(rating=int(data["rating"]))
    if event_type == EventType.COMMENT:
        return CommentPayload(
            text=data["text"],
            reading_state=ReadingState(data["reading_state"]),
            page=int(data["page"]),
        )
    if event_type == EventType.REVIEW:
        return ReviewPayload(text=data["text"])
    return ManualUpdatePayload(fields=tuple(data.get("fields") or ()))


def event_to_document(user_id: str, event: PendingEvent) -> Dict[str, Any]:
    payload = encode_payload(event.payload)
    return {
        "book_id": event.book_id,
        "user_id": user_id,
        "type": event.type.value,
        "timestamp": SERVER_TIMESTAMP,
        "data": payload,
    }


def event_from_document(document: Document) -> BookEvent:
    data = document.data
    event_type = EventType(data["type"])
    return BookEvent(
        id=document.id,
        book_id=data["book_id"],
        user_id=data["user_id"],
        timestamp=from_iso(data["timestamp"]),
        payload=decode_payload(event_type, data.get("data") or {}),
    )


class EventLog:
    """
    Recorder and query surface for book events. No business validation
    happens here; the mutation orchestrator owns that.
    """

    DEFAULT_RECENT_LIMIT = 10

    def __init__(self, store: DocumentStore):
        self.store = store

    def _events(self, result: StoreResult[List[Document]]) -> StoreResult[List[BookEvent]]:
        if not result.success:
            return StoreResult.fail(result.error or "Unknown storage error", result.code)
        try:
            return StoreResult.ok([event_from_document(d) for d in result.data or []])
        except (KeyError, ValueError) as exc:
            logger.warning("Unreadable event document: %s", exc)
            return StoreResult.fail(f"Unreadable event document: {exc}", StoreErrorCode.UNKNOWN)

    def _newest_first(self, user_id: str) -> Query:
        return Query(events_collection(user_id)).order("timestamp", descending=True)

    def append(self, user_id: str, event: PendingEvent) -> StoreResult[str]:
        try:
            data = event_to_document(user_id, event)
        except TypeError as exc:
            return StoreResult.fail(str(exc), StoreErrorCode.INVALID_ARGUMENT)
        return self.store.add(events_collection(user_id), data)

    def stage(self, batch: WriteBatch, user_id: str, event: PendingEvent) -> str:
        """Place an append into ``batch``; it lands when the batch commits."""
        return batch.add(events_collection(user_id), event_to_document(user_id, event))

    def by_book(self, user_id: str, book_id: str) -> StoreResult[List[BookEvent]]:
        return self._events(self.store.query(self._newest_first(user_id).where("book_id", "==", book_id)))

    def recent(self, user_id: str, limit: int = DEFAULT_RECENT_LIMIT) -> StoreResult[List[BookEvent]]:
        if limit < 1:
            return StoreResult.fail("Limit must be a positive number", StoreErrorCode.INVALID_ARGUMENT)
        return self._events(self.store.query(self._newest_first(user_id).take(limit)))

    def by_type(self, user_id: str, event_type: EventType) -> StoreResult[List[BookEvent]]:
        return self._events(
            self.store.query(self._newest_first(user_id).where("type", "==", EventType(event_type).value))
        )

    def purge_older_than(self, user_id: str, cutoff: datetime, book_id: Optional[str] = None) -> StoreResult[int]:
        query = Query(events_collection(user_id)).where("timestamp", "<", to_iso(cutoff))
        if book_id is not None:
            query = query.where("book_id", "==", book_id)
        found = self.store.query(query)
        if not found.success:
            return StoreResult.fail(found.error or "Unknown storage error", found.code)
        documents = found.data or []
        if not documents:
            return StoreResult.ok(0)
        batch = self.store.batch()
        for document in documents:
            batch.delete(document.path)
        committed = batch.commit()
        if not committed.success:
            return StoreResult.fail(committed.error or "Unknown storage error", committed.code)
        logger.info("Purged %d events for user %s older than %s", len(documents), user_id, cutoff.isoformat())
        return StoreResult.ok(len(documents))
