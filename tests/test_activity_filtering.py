from datetime import datetime, timedelta, timezone

from librarium.library import (
    ActivityType,
    Book,
    BookEvent,
    CommentPayload,
    ManualUpdatePayload,
    Progress,
    ProgressUpdatePayload,
    RatingAddedPayload,
    ReadingState,
    ReviewPayload,
    StateChangePayload,
    build_activity_feed,
    calculate_progress,
    filter_and_sort_books,
)

NOW = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)


def _book(book_id, title, author="Author", state=ReadingState.NOT_STARTED, current=0, total=100, **kwargs):
    return Book(
        id=book_id,
        title=title,
        author=author,
        state=state,
        progress=Progress(current, total),
        added_at=kwargs.pop("added_at", NOW - timedelta(days=10)),
        **kwargs,
    )


def _event(event_id, book_id, payload, minutes_ago):
    return BookEvent(event_id, book_id, "u1", NOW - timedelta(minutes=minutes_ago), payload)


def test_calculate_progress():
    assert calculate_progress(_book("a", "A", state=ReadingState.FINISHED, current=10)) == 100
    assert calculate_progress(_book("a", "A", current=50)) == 0
    assert calculate_progress(_book("a", "A", state=ReadingState.IN_PROGRESS, current=1, total=3)) == 33
    assert calculate_progress(_book("a", "A", state=ReadingState.IN_PROGRESS, current=5, total=0)) == 0


def test_filter_and_sort_books():
    books = [
        _book("1", "dune", "Frank Herbert", ReadingState.FINISHED, is_owned=True, rating=5),
        _book("2", "Emma", "Jane Austen", ReadingState.IN_PROGRESS, 30, 100),
        _book("3", "Anathem", "Neal Stephenson", description="A monastery of mathematicians", is_owned=True),
    ]
    assert [b.id for b in filter_and_sort_books(books)] == ["3", "1", "2"]
    assert [b.id for b in filter_and_sort_books(books, search="austen")] == ["2"]
    assert [b.id for b in filter_and_sort_books(books, search="MONASTERY")] == ["3"]
    assert [b.id for b in filter_and_sort_books(books, state="finished")] == ["1"]
    assert [b.id for b in filter_and_sort_books(books, ownership="wishlist")] == ["2"]
    assert [b.id for b in filter_and_sort_books(books, ownership="owned", sort_by="rating", descending=True)] == [
        "1",
        "3",
    ]
    assert [b.id for b in filter_and_sort_books(books, sort_by="progress", descending=True)] == ["1", "2", "3"]
    assert [b.id for b in filter_and_sort_books(books, sort_by="unknown")] == ["3", "1", "2"]


def test_activity_feed_maps_events_and_merges_added_entries():
    books = [_book("b1", "Dune", added_at=NOW - timedelta(days=1))]
    events = [
        _event("e1", "b1", StateChangePayload(ReadingState.IN_PROGRESS, ReadingState.NOT_STARTED), 60),
        _event("e2", "b1", ProgressUpdatePayload(0, 42), 50),
        _event("e3", "b1", StateChangePayload(ReadingState.FINISHED, ReadingState.IN_PROGRESS), 40),
        _event("e4", "b1", RatingAddedPayload(5), 30),
        _event("e5", "b1", CommentPayload("Great", ReadingState.FINISHED, 0), 20),
        _event("e6", "b1", ReviewPayload("A classic worth rereading."), 10),
        _event("e7", "b1", StateChangePayload(ReadingState.IN_PROGRESS, ReadingState.FINISHED, override=True), 5),
        _event("e8", "b1", ManualUpdatePayload(("title", "genre")), 1),
        _event("gone", "deleted-book", RatingAddedPayload(3), 0),
    ]
    feed = build_activity_feed(events, books)

    assert [item.id for item in feed] == ["e8", "e7", "e6", "e5", "e4", "e3", "e2", "e1", "added-b1"]
    kinds = {item.id: item for item in feed}
    assert kinds["e1"].type == ActivityType.STARTED
    assert kinds["e2"].details == "page 42"
    assert kinds["e3"].type == ActivityType.FINISHED
    assert kinds["e4"].details == "5 stars"
    assert kinds["e5"].type == ActivityType.COMMENTED and kinds["e5"].details is None
    assert kinds["e6"].type == ActivityType.REVIEWED
    assert kinds["e7"].type == ActivityType.MANUALLY_UPDATED
    assert kinds["e7"].details == "state set to in_progress"
    assert kinds["e8"].details == "title, genre"
    assert kinds["added-b1"].book_title == "Dune"

    assert len(build_activity_feed(events, books, limit=3)) == 3
    assert all(i.type != ActivityType.ADDED for i in build_activity_feed(events, books, include_added=False))
