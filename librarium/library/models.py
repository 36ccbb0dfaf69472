from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from numbers import Integral, Real
from typing import Any, ClassVar, Optional, Tuple, Union


class ReadingState(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    FINISHED = "finished"


class EventType(str, Enum):
    STATE_CHANGE = "state_change"
    PROGRESS_UPDATE = "progress_update"
    RATING_ADDED = "rating_added"
    COMMENT = "comment"
    REVIEW = "review"
    MANUAL_UPDATE = "manual_update"


MIN_RATING = 1
MAX_RATING = 5
COMMENT_MAX_LENGTH = 2000
REVIEW_MIN_LENGTH = 10
REVIEW_MAX_LENGTH = 5000


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class Progress:
    current_page: int = 0
    total_pages: int = 0


@dataclass
class Book:
    id: str
    title: str
    author: str
    state: ReadingState = ReadingState.NOT_STARTED
    progress: Progress = field(default_factory=Progress)
    is_owned: bool = False
    rating: Optional[int] = None
    isbn: Optional[str] = None
    genre: Optional[str] = None
    cover_image: Optional[str] = None
    published_date: Optional[str] = None
    description: Optional[str] = None
    added_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None


@dataclass
class BookDraft:
    """
    Caller-supplied data for a new book. State, progress position and
    timestamps are owned by the library service, not the caller.
    """

    title: str
    author: str
    total_pages: int = 0
    is_owned: bool = False
    isbn: Optional[str] = None
    genre: Optional[str] = None
    cover_image: Optional[str] = None
    published_date: Optional[str] = None
    description: Optional[str] = None


@dataclass
class BookUpdate:
    """
    Field changes for a manual edit. ``None`` means "leave unchanged".
    """

    title: Optional[str] = None
    author: Optional[str] = None
    state: Optional[ReadingState] = None
    current_page: Optional[int] = None
    total_pages: Optional[int] = None
    is_owned: Optional[bool] = None
    rating: Optional[int] = None
    isbn: Optional[str] = None
    genre: Optional[str] = None
    cover_image: Optional[str] = None
    published_date: Optional[str] = None
    description: Optional[str] = None

    METADATA_FIELDS: ClassVar[Tuple[str, ...]] = (
        "title",
        "author",
        "is_owned",
        "isbn",
        "genre",
        "cover_image",
        "published_date",
        "description",
    )


# region Event payloads


@dataclass(frozen=True)
class StateChangePayload:
    event_type: ClassVar[EventType] = EventType.STATE_CHANGE
    new_state: ReadingState
    previous_state: Optional[ReadingState] = None
    override: bool = False


@dataclass(frozen=True)
class ProgressUpdatePayload:
    event_type: ClassVar[EventType] = EventType.PROGRESS_UPDATE
    previous_page: int
    new_page: int


@dataclass(frozen=True)
class RatingAddedPayload:
    event_type: ClassVar[EventType] = EventType.RATING_ADDED
    rating: int


@dataclass(frozen=True)
class CommentPayload:
    event_type: ClassVar[EventType] = EventType.COMMENT
    text: str
    reading_state: ReadingState
    page: int


@dataclass(frozen=True)
class ReviewPayload:
    event_type: ClassVar[EventType] = EventType.REVIEW
    text: str


@dataclass(frozen=True)
class ManualUpdatePayload:
    event_type: ClassVar[EventType] = EventType.MANUAL_UPDATE
    fields: Tuple[str, ...]


EventPayload = Union[
    StateChangePayload,
    ProgressUpdatePayload,
    RatingAddedPayload,
    CommentPayload,
    ReviewPayload,
    ManualUpdatePayload,
]

# endregion


@dataclass(frozen=True)
class PendingEvent:
    """An event that has not been appended yet: no id, no server timestamp."""

    book_id: str
    payload: EventPayload

    @property
    def type(self) -> EventType:
        return self.payload.event_type


@dataclass(frozen=True)
class BookEvent:
    id: str
    book_id: str
    user_id: str
    timestamp: datetime
    payload: EventPayload

    @property
    def type(self) -> EventType:
        return self.payload.event_type


@dataclass
class Statistics:
    total_books_read: int = 0
    currently_reading: int = 0
    books_in_library: int = 0
    total_pages_read: int = 0
    average_rating: float = 0.0
    reading_streak: int = 0
    books_read_this_month: int = 0
    books_read_this_year: int = 0
    favorite_genres: Tuple[str, ...] = ()
    last_activity_at: Optional[datetime] = None
    computed_at: datetime = field(default_factory=utcnow)


# region Validation predicates


def is_whole_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, Integral):
        return True
    if isinstance(value, Real):
        number = float(value)
        return math.isfinite(number) and number.is_integer()
    return False


def is_valid_reading_state(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    return value in {state.value for state in ReadingState}


def is_valid_event_type(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    return value in {event_type.value for event_type in EventType}


def validate_progress(current_page: Any, total_pages: Any) -> bool:
    if not is_whole_number(current_page) or not is_whole_number(total_pages):
        return False
    if total_pages < 0:
        return False
    return 0 <= current_page <= total_pages


def validate_rating(rating: Any) -> bool:
    if not is_whole_number(rating):
        return False
    return MIN_RATING <= rating <= MAX_RATING


def validate_comment(text: Any) -> bool:
    if not isinstance(text, str):
        return False
    return 1 <= len(text.strip()) <= COMMENT_MAX_LENGTH


def validate_comment_page(page: Any, total_pages: Any) -> bool:
    if not is_whole_number(page) or not is_whole_number(total_pages):
        return False
    return 0 <= page <= total_pages


def validate_review(text: Any) -> bool:
    if not isinstance(text, str):
        return False
    return REVIEW_MIN_LENGTH <= len(text.strip()) <= REVIEW_MAX_LENGTH


# endregion
