import pytest

from librarium.library import (
    BookDraft,
    BookUpdate,
    CancellationToken,
    ErrorSeverity,
    EventLog,
    EventType,
    LibraryService,
    Query,
    ReadingState,
    ServiceErrorType,
    StoreErrorCode,
    StoreResult,
)
from librarium.library.errors import present
from librarium.library.repository import BookRepository, StatisticsRepository


class BrokenEventLog(EventLog):
    def append(self, user_id, event):
        return StoreResult.fail("event store offline", StoreErrorCode.UNAVAILABLE)


class FailingRefresher:
    def __init__(self):
        self.calls = []

    def request_refresh(self, user_id):
        self.calls.append(user_id)
        raise ConnectionError("redis down")


class RecordingRefresher:
    def __init__(self):
        self.calls = []

    def request_refresh(self, user_id):
        self.calls.append(user_id)


class BrokenIndexer:
    def index_book(self, user_id, book):
        raise OSError("index locked")

    def delete_book(self, user_id, book_id):
        raise OSError("index locked")

    def search(self, user_id, query_str, limit=10):
        raise OSError("index locked")


def _add(service, title="Dune", author="Frank Herbert", pages=400, **kwargs):
    result = service.add_book("u1", BookDraft(title=title, author=author, total_pages=pages, **kwargs))
    assert result.success, result.error
    return result.data


def _finish(service, book_id):
    assert service.update_book_state("u1", book_id, ReadingState.IN_PROGRESS).success
    return service.update_book_state("u1", book_id, ReadingState.FINISHED)


def test_add_book_starts_unread(service, clock):
    book = _add(service, title="  Dune ", genre=" ", isbn="0441172717")
    assert book.title == "Dune"
    assert book.state == ReadingState.NOT_STARTED
    assert book.progress.current_page == 0
    assert book.progress.total_pages == 400
    assert book.genre is None
    assert book.added_at == clock.now
    assert service.book_history("u1", book.id).data == []


def test_add_book_validation(service):
    result = service.add_book("u1", BookDraft(title=" ", author="", total_pages=-3))
    assert not result.success
    assert result.error.type == ServiceErrorType.VALIDATION
    assert len(result.error.context["errors"]) == 3
    assert not service.add_book("", BookDraft(title="A", author="B")).success


def test_state_lifecycle_records_events_and_timestamps(service, clock):
    book = _add(service)
    started = service.update_book_state("u1", book.id, "in_progress")
    assert started.success
    assert started.data.started_at == clock.now

    clock.advance(days=3)
    finished = service.update_book_state("u1", book.id, ReadingState.FINISHED)
    assert finished.complete
    assert finished.data.finished_at == clock.now
    assert finished.data.progress.current_page == 400

    history = service.book_history("u1", book.id).data
    assert [e.payload.new_state for e in history] == [ReadingState.FINISHED, ReadingState.IN_PROGRESS]
    assert history[1].payload.previous_state == ReadingState.NOT_STARTED


@pytest.mark.parametrize(
    "steps,target",
    [
        ([], ReadingState.FINISHED),
        ([], ReadingState.NOT_STARTED),
        ([ReadingState.IN_PROGRESS], ReadingState.NOT_STARTED),
        ([ReadingState.IN_PROGRESS, ReadingState.FINISHED], ReadingState.IN_PROGRESS),
    ],
)
def test_illegal_transitions_are_business_rule_errors(service, steps, target):
    book = _add(service)
    for step in steps:
        assert service.update_book_state("u1", book.id, step).success
    result = service.update_book_state("u1", book.id, target)
    assert not result.success
    assert result.error.type == ServiceErrorType.BUSINESS_RULE
    assert result.error.message.startswith("Cannot transition from")
    assert len(service.book_history("u1", book.id).data) == len(steps)


def test_stale_state_hint_is_rejected(service):
    book = _add(service)
    service.update_book_state("u1", book.id, ReadingState.IN_PROGRESS)
    result = service.update_book_state("u1", book.id, ReadingState.IN_PROGRESS, current_state="not_started")
    assert result.error.type == ServiceErrorType.BUSINESS_RULE
    assert result.error.context["actual_state"] == "in_progress"


def test_unknown_state_and_missing_book(service):
    book = _add(service)
    assert service.update_book_state("u1", book.id, "paused").error.type == ServiceErrorType.VALIDATION
    missing = service.update_book_state("u1", "nope", ReadingState.IN_PROGRESS)
    assert missing.error.type == ServiceErrorType.NOT_FOUND
    assert missing.error.message == "Book not found"


def test_invalid_state_hint_is_a_validation_error(service):
    book = _add(service)
    result = service.update_book_state("u1", book.id, ReadingState.IN_PROGRESS, current_state="garbage")
    assert result.error.type == ServiceErrorType.VALIDATION
    assert result.error.message == "Invalid reading state: garbage"
    assert service.get_book("u1", book.id).data.state == ReadingState.NOT_STARTED

    missing = service.update_book_state("u1", "nope", ReadingState.IN_PROGRESS, current_state="garbage")
    assert missing.error.type == ServiceErrorType.VALIDATION


def test_unhashable_state_and_event_type_are_validation_errors(service):
    book = _add(service)
    manual = service.update_book_manual("u1", book.id, BookUpdate(state=["finished"]))
    assert manual.error.type == ServiceErrorType.VALIDATION
    assert service.events_by_type("u1", ["state_change"]).error.type == ServiceErrorType.VALIDATION


def test_progress_updates(service):
    book = _add(service, pages=300)
    service.update_book_state("u1", book.id, ReadingState.IN_PROGRESS)

    updated = service.update_book_progress("u1", book.id, 120)
    assert updated.data.progress.current_page == 120
    assert updated.data.state == ReadingState.IN_PROGRESS
    event = service.book_history("u1", book.id).data[0]
    assert (event.payload.previous_page, event.payload.new_page) == (0, 120)

    assert service.update_book_progress("u1", book.id, 301).error.message == "Current page must be between 0 and 300"
    assert service.update_book_progress("u1", book.id, 12.5).error.message == "Current page must be a whole number"
    assert service.get_book("u1", book.id).data.progress.current_page == 120


def test_rating_updates(service):
    book = _add(service)
    _finish(service, book.id)
    assert service.update_book_rating("u1", book.id, 4).data.rating == 4
    for bad in (0, 6, 3.5, float("nan")):
        result = service.update_book_rating("u1", book.id, bad)
        assert result.error.type == ServiceErrorType.VALIDATION
    assert service.book_history("u1", book.id).data[0].type == EventType.RATING_ADDED


def test_failing_subscriber_does_not_fail_add_book(store, service):
    def explode(docs):
        if docs:
            raise RuntimeError("subscriber transform failed")
        return docs

    subscription = store.subscribe(Query("users/u1/books"), transform=explode)
    added = service.add_book("u1", BookDraft("Dune", "Frank Herbert", 400))
    assert added.success
    assert len(service.list_books("u1").data) == 1
    assert not subscription.active


def test_event_append_failure_is_a_warning(store, clock):
    service = LibraryService(
        BookRepository(store),
        BrokenEventLog(store),
        StatisticsRepository(store),
        clock=clock,
    )
    book = _add(service)
    result = service.update_book_state("u1", book.id, ReadingState.IN_PROGRESS)

    assert result.success
    assert not result.complete
    assert result.data.state == ReadingState.IN_PROGRESS
    assert [w.type for w in result.warnings] == [ServiceErrorType.EVENT_LOG]
    assert result.warnings[0].context["event_type"] == "state_change"

    presented = present(result)
    assert presented.success
    assert presented.warnings[0].severity == ErrorSeverity.LOW


def test_batch_mode_writes_book_and_events_together(store, clock):
    service = LibraryService.from_store(store, clock=clock, use_batch_writes=True)
    book = _add(service)
    result = service.update_book_state("u1", book.id, ReadingState.IN_PROGRESS)
    assert result.complete
    assert service.get_book("u1", book.id).data.state == ReadingState.IN_PROGRESS
    assert len(service.book_history("u1", book.id).data) == 1


def test_manual_update_uses_override_path(service, clock):
    book = _add(service, pages=200)
    _finish(service, book.id)
    clock.advance(hours=1)

    result = service.update_book_manual(
        "u1",
        book.id,
        BookUpdate(state=ReadingState.IN_PROGRESS, current_page=50, rating=3, title="Dune (Deluxe)", genre="Sci-Fi"),
    )
    assert result.success
    assert result.data.state == ReadingState.IN_PROGRESS
    assert result.data.finished_at is None
    assert result.data.progress.current_page == 50

    newest = service.book_history("u1", book.id).data[:4]
    assert [e.type for e in newest] == [
        EventType.MANUAL_UPDATE,
        EventType.RATING_ADDED,
        EventType.PROGRESS_UPDATE,
        EventType.STATE_CHANGE,
    ]
    assert newest[3].payload.override is True
    assert newest[3].payload.previous_state == ReadingState.FINISHED
    assert newest[0].payload.fields == ("title", "genre")


def test_manual_update_validation_and_no_op(service):
    book = _add(service)
    invalid = service.update_book_manual("u1", book.id, BookUpdate(current_page=999, rating=9))
    assert invalid.error.type == ServiceErrorType.VALIDATION
    assert len(invalid.error.context["errors"]) == 2

    unchanged = service.update_book_manual("u1", book.id, BookUpdate(title="Dune", state=ReadingState.NOT_STARTED))
    assert unchanged.success
    assert service.book_history("u1", book.id).data == []


def test_delete_keeps_history(service):
    book = _add(service)
    service.update_book_state("u1", book.id, ReadingState.IN_PROGRESS)
    assert service.delete_book("u1", book.id).success
    assert service.get_book("u1", book.id).error.type == ServiceErrorType.NOT_FOUND
    assert len(service.book_history("u1", book.id).data) == 1
    assert service.delete_book("u1", book.id).error.type == ServiceErrorType.NOT_FOUND


def test_comments_and_reviews(service, clock):
    book = _add(service, pages=100)
    service.update_book_state("u1", book.id, ReadingState.IN_PROGRESS)
    service.update_book_progress("u1", book.id, 30)

    comment = service.add_comment("u1", book.id, "  The spice must flow  ")
    assert comment.success
    stored = service.book_comments("u1", book.id).data
    assert [c.id for c in stored] == [comment.data]
    assert stored[0].payload.text == "The spice must flow"
    assert stored[0].payload.page == 30
    assert stored[0].payload.reading_state == ReadingState.IN_PROGRESS

    assert not service.add_comment("u1", book.id, "", page=1).success
    assert not service.add_comment("u1", book.id, "Too far", page=101).success

    assert service.book_review("u1", book.id).data is None
    assert not service.add_review("u1", book.id, "short").success
    service.add_review("u1", book.id, "A first take on the book.")
    clock.advance(minutes=5)
    second = service.add_review("u1", book.id, "A better, second take on it.")
    assert service.book_review("u1", book.id).data.id == second.data


def test_import_books_is_all_or_nothing(service):
    drafts = [BookDraft("Emma", "Jane Austen", 300), BookDraft("", "Nobody", 10)]
    failed = service.import_books("u1", drafts)
    assert failed.error.context["index"] == 1
    assert service.list_books("u1").data == []

    imported = service.import_books("u1", drafts[:1] + [BookDraft("Persuasion", "Jane Austen", 250)])
    assert [b.title for b in imported.data] == ["Emma", "Persuasion"]
    assert len(service.list_books("u1").data) == 2
    assert service.import_books("u1", []).error.message == "Nothing to import"


def test_list_and_filter_by_state(service, clock):
    first = _add(service, title="Emma")
    clock.advance(minutes=1)
    second = _add(service, title="Dune")
    service.update_book_state("u1", second.id, ReadingState.IN_PROGRESS)

    assert [b.id for b in service.list_books("u1").data] == [second.id, first.id]
    assert [b.id for b in service.books_by_state("u1", "in_progress").data] == [second.id]
    assert service.books_by_state("u1", "reading").error.type == ServiceErrorType.VALIDATION
    assert service.list_books("u2").data == []


def test_statistics_are_refreshed_and_stored(service):
    book = _add(service, pages=200, genre="Sci-Fi")
    _finish(service, book.id)
    service.update_book_rating("u1", book.id, 5)

    stored = service.statistics.get("u1")
    assert stored.success
    assert stored.data.total_books_read == 1
    assert stored.data.total_pages_read == 200
    assert stored.data.average_rating == 5.0
    assert stored.data.favorite_genres == ("Sci-Fi",)
    assert stored.data.last_activity_at is not None


def test_queued_refresher_failure_is_a_warning(store, clock):
    refresher = FailingRefresher()
    service = LibraryService.from_store(store, clock=clock, refresher=refresher)
    result = service.add_book("u1", BookDraft("Dune", "Frank Herbert", 400))
    assert result.success
    assert refresher.calls == ["u1"]
    assert result.warnings[0].message == "Your statistics will update shortly."
    assert not service.statistics.get("u1").success


def test_queued_refresher_is_used_instead_of_inline(store, clock):
    refresher = RecordingRefresher()
    service = LibraryService.from_store(store, clock=clock, refresher=refresher)
    book = _add(service)
    service.update_book_state("u1", book.id, ReadingState.IN_PROGRESS)
    assert refresher.calls == ["u1", "u1"]
    assert service.statistics.get("u1").code == StoreErrorCode.NOT_FOUND


def test_search_without_index_and_with_broken_index(store, clock):
    plain = LibraryService.from_store(store, clock=clock)
    _add(plain, title="Dune")
    _add(plain, title="Emma", author="Jane Austen")
    assert [b.title for b in plain.search_books("u1", "austen").data] == ["Emma"]
    assert plain.search_books("u1", "  ").error.type == ServiceErrorType.VALIDATION

    broken = LibraryService.from_store(store, clock=clock, indexer=BrokenIndexer())
    result = broken.search_books("u1", "dune")
    assert [b.title for b in result.data] == ["Dune"]
    assert result.warnings[0].message == "Search results may be incomplete."

    added = broken.add_book("u1", BookDraft("Anathem", "Neal Stephenson"))
    assert added.success
    assert added.warnings[-1].message == "Search results may be out of date."


def test_recent_events_activity_and_purge(service, clock):
    book = _add(service)
    service.update_book_state("u1", book.id, ReadingState.IN_PROGRESS)
    clock.advance(days=400)
    service.update_book_progress("u1", book.id, 10)

    assert [e.type for e in service.recent_events("u1", 5).data] == [
        EventType.PROGRESS_UPDATE,
        EventType.STATE_CHANGE,
    ]
    assert service.recent_events("u1", 0).error.type == ServiceErrorType.VALIDATION
    assert [e.type for e in service.events_by_type("u1", "state_change").data] == [EventType.STATE_CHANGE]
    assert service.events_by_type("u1", "deleted").error.type == ServiceErrorType.VALIDATION

    feed = service.activity_feed("u1").data
    assert [item.type.value for item in feed] == ["progress", "started", "added"]

    assert service.purge_events("u1", 365).data == 1
    assert service.purge_events("u1", 0).error.type == ServiceErrorType.VALIDATION
    assert len(service.recent_events("u1").data) == 1


def test_watch_books_and_statistics(service):
    token = CancellationToken()
    books = service.watch_books("u1", token)
    stats = service.watch_statistics("u1", token)
    assert books.next_snapshot(timeout=1) == []
    assert stats.next_snapshot(timeout=1).books_in_library == 0

    book = _add(service)
    assert [b.id for b in books.next_snapshot(timeout=1)] == [book.id]
    assert stats.next_snapshot(timeout=1).books_in_library == 1

    service.update_book_state("u1", book.id, ReadingState.IN_PROGRESS)
    assert stats.next_snapshot(timeout=1).currently_reading == 1

    token.cancel()
    _add(service, title="Emma")
    assert books.next_snapshot(timeout=0.05) is None
    assert stats.next_snapshot(timeout=0.05) is None
