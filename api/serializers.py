from __future__ import annotations

from dataclasses import fields
from enum import Enum
from typing import Any, Callable, Dict, Optional

from fastapi import HTTPException

from librarium.library import ActivityItem, Book, BookEvent, ErrorCategory, ProviderResult, StandardError, Statistics
from librarium.library.models import to_iso

_CATEGORY_STATUS = {
    ErrorCategory.VALIDATION: 422,
    ErrorCategory.AUTHORIZATION: 403,
    ErrorCategory.AUTHENTICATION: 401,
    ErrorCategory.NETWORK: 503,
    ErrorCategory.BUSINESS_LOGIC: 409,
}


def status_for(error: StandardError) -> int:
    if error.type == "not_found":
        return 404
    return _CATEGORY_STATUS.get(error.category, 500)


def error_to_dict(error: StandardError) -> Dict[str, Any]:
    return {
        "id": error.id,
        "type": error.type,
        "category": error.category.value,
        "severity": error.severity.value,
        "message": error.user_message,
        "recoverable": error.recoverable,
        "retryable": error.retryable,
        "timestamp": to_iso(error.timestamp),
    }


def book_to_dict(book: Book) -> Dict[str, Any]:
    return {
        "id": book.id,
        "title": book.title,
        "author": book.author,
        "state": book.state.value,
        "progress": {
            "current_page": book.progress.current_page,
            "total_pages": book.progress.total_pages,
        },
        "is_owned": book.is_owned,
        "rating": book.rating,
        "isbn": book.isbn,
        "genre": book.genre,
        "cover_image": book.cover_image,
        "published_date": book.published_date,
        "description": book.description,
        "added_at": to_iso(book.added_at),
        "updated_at": to_iso(book.updated_at),
        "started_at": to_iso(book.started_at),
        "finished_at": to_iso(book.finished_at),
    }


def event_to_dict(event: BookEvent) -> Dict[str, Any]:
    payload = {}
    for f in fields(event.payload):
        value = getattr(event.payload, f.name)
        payload[f.name] = value.value if isinstance(value, Enum) else value
    return {
        "id": event.id,
        "book_id": event.book_id,
        "type": event.type.value,
        "timestamp": to_iso(event.timestamp),
        "data": payload,
    }


def statistics_to_dict(stats: Statistics) -> Dict[str, Any]:
    return {
        "total_books_read": stats.total_books_read,
        "currently_reading": stats.currently_reading,
        "books_in_library": stats.books_in_library,
        "total_pages_read": stats.total_pages_read,
        "average_rating": stats.average_rating,
        "reading_streak": stats.reading_streak,
        "books_read_this_month": stats.books_read_this_month,
        "books_read_this_year": stats.books_read_this_year,
        "favorite_genres": list(stats.favorite_genres),
        "last_activity_at": to_iso(stats.last_activity_at),
        "computed_at": to_iso(stats.computed_at),
    }


def activity_to_dict(item: ActivityItem) -> Dict[str, Any]:
    return {
        "id": item.id,
        "type": item.type.value,
        "book_id": item.book_id,
        "book_title": item.book_title,
        "details": item.details,
        "timestamp": to_iso(item.timestamp),
    }


def respond(result: ProviderResult[Any], serialize: Optional[Callable[[Any], Any]] = None) -> Dict[str, Any]:
    """Unwrap a provider result into a response body or raise the mapped HTTP error."""
    if not result.success:
        raise HTTPException(status_code=status_for(result.error), detail=error_to_dict(result.error))
    data = result.data
    if serialize is not None and data is not None:
        data = [serialize(item) for item in data] if isinstance(data, list) else serialize(data)
    return {"data": data, "warnings": [error_to_dict(w) for w in result.warnings]}
