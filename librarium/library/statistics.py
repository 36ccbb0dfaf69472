from __future__ import annotations

from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Iterable, List, Optional, Sequence

from .models import Book, BookEvent, ReadingState, Statistics, utcnow

DEFAULT_FAVORITE_GENRES = 3
DEFAULT_STREAK_DAYS = 30


def round_half_up(value: float, places: int = 1) -> float:
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def _local(value: datetime, now: datetime) -> datetime:
    if now.tzinfo is None:
        return value.replace(tzinfo=None) if value.tzinfo else value
    return value.astimezone(now.tzinfo)


def favorite_genres(books: Iterable[Book], limit: int = DEFAULT_FAVORITE_GENRES) -> List[str]:
    """
    Most frequent genres, case-insensitive. The first spelling seen is the
    one reported; equal counts keep first-seen order.
    """
    counts: Dict[str, int] = {}
    spelling: Dict[str, str] = {}
    for book in books:
        genre = (book.genre or "").strip()
        if not genre:
            continue
        key = genre.casefold()
        if key not in counts:
            counts[key] = 0
            spelling[key] = genre
        counts[key] += 1
    ranked = sorted(counts, key=lambda key: -counts[key])
    return [spelling[key] for key in ranked[:limit]]


def compute_statistics(
    books: Sequence[Book],
    events: Optional[Sequence[BookEvent]] = None,
    now: Optional[datetime] = None,
    favorite_genres_limit: int = DEFAULT_FAVORITE_GENRES,
    streak_days: int = DEFAULT_STREAK_DAYS,
) -> Statistics:
    """
    Derive dashboard statistics from a snapshot of the user's books.

    Month and year are calendar buckets in the timezone of ``now``. The
    reading streak is the number of books finished within the trailing
    ``streak_days`` window, not a run of consecutive days.
    """
    now = now or utcnow()
    finished = [b for b in books if b.state == ReadingState.FINISHED]

    ratings = [b.rating for b in finished if b.rating is not None]
    average = round_half_up(sum(ratings) / len(ratings)) if ratings else 0.0

    window_start = now - timedelta(days=streak_days)
    streak = 0
    this_month = 0
    this_year = 0
    for book in finished:
        if book.finished_at is None:
            continue
        finished_at = _local(book.finished_at, now)
        if window_start <= finished_at <= now:
            streak += 1
        if finished_at.year == now.year:
            this_year += 1
            if finished_at.month == now.month:
                this_month += 1

    last_activity = None
    if events:
        last_activity = max((e.timestamp for e in events if e.timestamp is not None), default=None)

    return Statistics(
        total_books_read=len(finished),
        currently_reading=sum(1 for b in books if b.state == ReadingState.IN_PROGRESS),
        books_in_library=len(books),
        total_pages_read=sum(b.progress.total_pages for b in finished),
        average_rating=average,
        reading_streak=streak,
        books_read_this_month=this_month,
        books_read_this_year=this_year,
        favorite_genres=tuple(favorite_genres(books, favorite_genres_limit)),
        last_activity_at=last_activity,
        computed_at=now,
    )
