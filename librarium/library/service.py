"""
Mutation orchestrator for a user's library.

``LibraryService`` is the only component that changes persisted books. Each
mutation validates its input, writes the book, appends the matching history
event and then triggers a statistics refresh. The book write is the primary
outcome: when it succeeds but the event append, refresh or search indexing
fails, the call still succeeds and carries the secondary failures as
``warnings``.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any, Callable, List, Optional, Protocol, Sequence, Tuple, Union

from .activity import ActivityItem, build_activity_feed
from .errors import ServiceError, ServiceErrorType, ServiceResult, StoreResult, service_error_from_store
from .events import EventLog
from .filtering import filter_and_sort_books
from .indexing import BookIndexer
from .models import (
    Book,
    BookDraft,
    BookEvent,
    BookUpdate,
    CommentPayload,
    EventPayload,
    EventType,
    ManualUpdatePayload,
    PendingEvent,
    Progress,
    ProgressUpdatePayload,
    RatingAddedPayload,
    ReadingState,
    ReviewPayload,
    StateChangePayload,
    Statistics,
    is_valid_event_type,
    is_whole_number,
    utcnow,
    validate_comment,
    validate_comment_page,
    validate_progress,
    validate_rating,
    validate_review,
)
from .repository import BookRepository, StatisticsRepository
from .state_machine import can_transition, coerce_state, plan_manual_override
from .statistics import DEFAULT_FAVORITE_GENRES, compute_statistics
from .store import CancellationToken, DocumentStore, Subscription
from .validation import (
    ValidationResult,
    validate_book_update,
    validate_cover_url,
    validate_isbn,
    validate_published_date,
    validate_string_field,
)

LoggerLike = Union[logging.Logger, logging.LoggerAdapter]


class StatisticsRefresher(Protocol):
    """Runs (or schedules) a statistics recomputation for one user."""

    def request_refresh(self, user_id: str) -> None:
        ...


def _fail(error_type: ServiceErrorType, message: str, **context: Any) -> ServiceResult[Any]:
    return ServiceResult.fail(ServiceError(error_type, message, context=context))


def _invalid(message: str, **context: Any) -> ServiceResult[Any]:
    return _fail(ServiceErrorType.VALIDATION, message, **context)


def _from_store(result: StoreResult[Any], resource: str = "book") -> ServiceResult[Any]:
    return ServiceResult.fail(service_error_from_store(result, resource))


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def validate_draft(draft: BookDraft) -> ValidationResult:
    result = ValidationResult()
    if not isinstance(draft.title, str) or not draft.title.strip():
        result.errors.append("Book title cannot be empty")
    if not isinstance(draft.author, str) or not draft.author.strip():
        result.errors.append("Book author cannot be empty")
    if not is_whole_number(draft.total_pages) or draft.total_pages < 0:
        result.errors.append("Total pages must be a whole number of at least 0")
    if not isinstance(draft.is_owned, bool):
        result.errors.append("Ownership status must be true or false")
    if draft.isbn and draft.isbn.strip():
        result.extend(validate_isbn(draft.isbn))
    if draft.cover_image and draft.cover_image.strip():
        result.extend(validate_cover_url(draft.cover_image))
    if draft.published_date and draft.published_date.strip():
        result.extend(validate_published_date(draft.published_date))
    if draft.description is not None:
        result.extend(validate_string_field(draft.description, "Description", required=False))
    return result


class LibraryService:
    def __init__(
        self,
        books: BookRepository,
        events: EventLog,
        statistics: StatisticsRepository,
        indexer: Optional[BookIndexer] = None,
        refresher: Optional[StatisticsRefresher] = None,
        clock: Callable[[], datetime] = utcnow,
        logger: Optional[LoggerLike] = None,
        use_batch_writes: bool = False,
        favorite_genres_limit: int = DEFAULT_FAVORITE_GENRES,
    ):
        self.books = books
        self.events = events
        self.statistics = statistics
        self.indexer = indexer
        self.refresher = refresher
        self.clock = clock
        self.logger = logger or logging.getLogger(__name__)
        self.use_batch_writes = use_batch_writes
        self.favorite_genres_limit = favorite_genres_limit

    @classmethod
    def from_store(cls, store: DocumentStore, **kwargs: Any) -> "LibraryService":
        return cls(BookRepository(store), EventLog(store), StatisticsRepository(store), **kwargs)

    @property
    def store(self) -> DocumentStore:
        return self.books.store

    # region Internals
    def _load(self, user_id: str, book_id: str) -> Tuple[Optional[Book], Optional[ServiceResult[Any]]]:
        if not user_id:
            return None, _invalid("User ID is required")
        if not book_id:
            return None, _invalid("Book ID is required")
        result = self.books.get(user_id, book_id)
        if not result.success:
            return None, _from_store(result)
        return result.data, None

    def _persist(
        self,
        user_id: str,
        book: Book,
        payloads: Sequence[EventPayload],
    ) -> Tuple[Optional[Book], List[ServiceError], Optional[ServiceResult[Any]]]:
        """
        Write ``book`` and log one event per payload. Returns the stored book,
        event-log warnings, and a failure result when the book write failed.
        """
        pending = [PendingEvent(book.id, payload) for payload in payloads]
        if self.use_batch_writes and pending:
            batch = self.store.batch()
            self.books.save(user_id, book, batch=batch)
            for event in pending:
                self.events.stage(batch, user_id, event)
            committed = batch.commit()
            if not committed.success:
                return None, [], _from_store(committed)
            stored = self.books.get(user_id, book.id)
            return (stored.data if stored.success else book), [], None

        saved = self.books.save(user_id, book)
        if not saved.success:
            return None, [], _from_store(saved)
        warnings: List[ServiceError] = []
        for event in pending:
            appended = self.events.append(user_id, event)
            if not appended.success:
                self.logger.warning(
                    "Book %s was updated but its %s event was not recorded: %s",
                    book.id,
                    event.type.value,
                    appended.error,
                )
                warnings.append(
                    ServiceError(
                        ServiceErrorType.EVENT_LOG,
                        "Your change was saved, but it could not be added to the reading history.",
                        appended.error,
                        {"book_id": book.id, "event_type": event.type.value},
                    )
                )
        return saved.data, warnings, None

    def _trigger_refresh(self, user_id: str) -> List[ServiceError]:
        if self.refresher is not None:
            try:
                self.refresher.request_refresh(user_id)
            except Exception as exc:  # noqa: BLE001
                self.logger.warning("Statistics refresh could not be scheduled for %s: %s", user_id, exc)
                return [
                    ServiceError(
                        ServiceErrorType.REPOSITORY,
                        "Your statistics will update shortly.",
                        str(exc),
                        {"user_id": user_id},
                    )
                ]
            return []
        refreshed = self.refresh_statistics(user_id)
        if not refreshed.success and refreshed.error is not None:
            self.logger.warning("Statistics refresh failed for %s: %s", user_id, refreshed.error.detail)
            return [replace(refreshed.error, message="Your statistics will update shortly.")]
        return []

    def _index(self, user_id: str, book: Book) -> List[ServiceError]:
        if self.indexer is None:
            return []
        try:
            self.indexer.index_book(user_id, book)
        except Exception as exc:  # noqa: BLE001
            self.logger.warning("Indexing failed for book %s: %s", book.id, exc)
            return [ServiceError(ServiceErrorType.REPOSITORY, "Search results may be out of date.", str(exc))]
        return []

    def _unindex(self, user_id: str, book_id: str) -> List[ServiceError]:
        if self.indexer is None:
            return []
        try:
            self.indexer.delete_book(user_id, book_id)
        except Exception as exc:  # noqa: BLE001
            self.logger.warning("Could not remove book %s from the search index: %s", book_id, exc)
            return [ServiceError(ServiceErrorType.REPOSITORY, "Search results may be out of date.", str(exc))]
        return []

    # endregion

    # region Reads
    def get_book(self, user_id: str, book_id: str) -> ServiceResult[Book]:
        book, failure = self._load(user_id, book_id)
        if failure:
            return failure
        return ServiceResult.ok(book)

    def list_books(self, user_id: str) -> ServiceResult[List[Book]]:
        if not user_id:
            return _invalid("User ID is required")
        result = self.books.list_all(user_id)
        if not result.success:
            return _from_store(result)
        return ServiceResult.ok(result.data or [])

    def books_by_state(self, user_id: str, state: Any) -> ServiceResult[List[Book]]:
        target = coerce_state(state)
        if target is None:
            return _invalid(f"Invalid reading state: {state}")
        if not user_id:
            return _invalid("User ID is required")
        result = self.books.list_all(user_id, state=target)
        if not result.success:
            return _from_store(result)
        return ServiceResult.ok(result.data or [])

    def book_history(self, user_id: str, book_id: str) -> ServiceResult[List[BookEvent]]:
        if not user_id or not book_id:
            return _invalid("User ID and book ID are required")
        result = self.events.by_book(user_id, book_id)
        if not result.success:
            return _from_store(result, "event")
        return ServiceResult.ok(result.data or [])

    def recent_events(self, user_id: str, limit: int = EventLog.DEFAULT_RECENT_LIMIT) -> ServiceResult[List[BookEvent]]:
        if not user_id:
            return _invalid("User ID is required")
        if not is_whole_number(limit) or limit < 1:
            return _invalid("Limit must be a positive whole number")
        result = self.events.recent(user_id, int(limit))
        if not result.success:
            return _from_store(result, "event")
        return ServiceResult.ok(result.data or [])

    def events_by_type(self, user_id: str, event_type: Any) -> ServiceResult[List[BookEvent]]:
        if not user_id:
            return _invalid("User ID is required")
        if not isinstance(event_type, EventType) and not is_valid_event_type(event_type):
            return _invalid(f"Invalid event type: {event_type}")
        result = self.events.by_type(user_id, EventType(event_type))
        if not result.success:
            return _from_store(result, "event")
        return ServiceResult.ok(result.data or [])

    def book_comments(self, user_id: str, book_id: str) -> ServiceResult[List[BookEvent]]:
        history = self.book_history(user_id, book_id)
        if not history.success:
            return history
        return ServiceResult.ok([e for e in history.data or [] if e.type == EventType.COMMENT])

    def book_review(self, user_id: str, book_id: str) -> ServiceResult[Optional[BookEvent]]:
        """The newest review event for a book, or ``None``."""
        history = self.book_history(user_id, book_id)
        if not history.success:
            return history
        reviews = [e for e in history.data or [] if e.type == EventType.REVIEW]
        return ServiceResult.ok(reviews[0] if reviews else None)

    def activity_feed(
        self, user_id: str, limit: int = EventLog.DEFAULT_RECENT_LIMIT
    ) -> ServiceResult[List[ActivityItem]]:
        """Recent events plus "added" entries, newest first."""
        recent = self.recent_events(user_id, limit)
        if not recent.success:
            return recent
        listed = self.list_books(user_id)
        if not listed.success:
            return listed
        return ServiceResult.ok(build_activity_feed(recent.data or [], listed.data or [], limit=int(limit)))

    def search_books(self, user_id: str, query: str, limit: int = 10) -> ServiceResult[List[Book]]:
        if not query or not query.strip():
            return _invalid("Search query cannot be empty")
        listed = self.list_books(user_id)
        if not listed.success:
            return listed
        books = listed.data or []
        if self.indexer is None:
            return ServiceResult.ok(filter_and_sort_books(books, search=query)[:limit])
        try:
            ids = self.indexer.search(user_id, query, limit=limit)
        except Exception as exc:  # noqa: BLE001
            self.logger.warning("Index search failed, falling back to a scan: %s", exc)
            fallback = filter_and_sort_books(books, search=query)[:limit]
            return ServiceResult.ok(
                fallback,
                warnings=(ServiceError(ServiceErrorType.REPOSITORY, "Search results may be incomplete.", str(exc)),),
            )
        by_id = {b.id: b for b in books}
        return ServiceResult.ok([by_id[i] for i in ids if i in by_id])

    def get_statistics(self, user_id: str) -> ServiceResult[Statistics]:
        """Compute statistics on demand without persisting them."""
        listed = self.list_books(user_id)
        if not listed.success:
            return listed
        latest = self.events.recent(user_id, 1)
        events = latest.data if latest.success else None
        return ServiceResult.ok(
            compute_statistics(
                listed.data or [],
                events=events,
                now=self.clock(),
                favorite_genres_limit=self.favorite_genres_limit,
            )
        )

    # endregion

    # region Mutations
    def add_book(self, user_id: str, draft: BookDraft) -> ServiceResult[Book]:
        if not user_id:
            return _invalid("User ID is required")
        validation = validate_draft(draft)
        if not validation.is_valid:
            return _invalid("; ".join(validation.errors), errors=validation.errors)

        book = self._new_book(draft)
        saved, _, failure = self._persist(user_id, book, ())
        if failure:
            return failure
        self.logger.info("Added book %s for user %s", book.id, user_id)
        warnings = self._trigger_refresh(user_id) + self._index(user_id, saved)
        return ServiceResult.ok(saved, warnings=tuple(warnings))

    def _new_book(self, draft: BookDraft) -> Book:
        now = self.clock()
        return Book(
            id=self.books.new_id(),
            title=draft.title.strip(),
            author=draft.author.strip(),
            state=ReadingState.NOT_STARTED,
            progress=Progress(current_page=0, total_pages=int(draft.total_pages)),
            is_owned=draft.is_owned,
            isbn=_clean(draft.isbn),
            genre=_clean(draft.genre),
            cover_image=_clean(draft.cover_image),
            published_date=_clean(draft.published_date),
            description=_clean(draft.description),
            added_at=now,
            updated_at=now,
        )

    def import_books(self, user_id: str, drafts: Sequence[BookDraft]) -> ServiceResult[List[Book]]:
        """Add many books at once. Either every book is written or none is."""
        if not user_id:
            return _invalid("User ID is required")
        if not drafts:
            return _invalid("Nothing to import")
        for position, draft in enumerate(drafts):
            validation = validate_draft(draft)
            if not validation.is_valid:
                return _invalid(
                    f"Invalid book data: {'; '.join(validation.errors)}",
                    index=position,
                    errors=validation.errors,
                )

        books = [self._new_book(draft) for draft in drafts]
        batch = self.store.batch()
        for book in books:
            self.books.save(user_id, book, batch=batch)
        committed = batch.commit()
        if not committed.success:
            return _from_store(committed)
        self.logger.info("Imported %d books for user %s", len(books), user_id)

        warnings = self._trigger_refresh(user_id)
        for book in books:
            warnings += self._index(user_id, book)
        return ServiceResult.ok(books, warnings=tuple(warnings))

    def update_book_state(
        self,
        user_id: str,
        book_id: str,
        new_state: Any,
        current_state: Any = None,
    ) -> ServiceResult[Book]:
        target = coerce_state(new_state)
        if target is None:
            return _invalid(f"Invalid reading state: {new_state}")
        expected = None
        if current_state is not None:
            expected = coerce_state(current_state)
            if expected is None:
                return _invalid(f"Invalid reading state: {current_state}")
        book, failure = self._load(user_id, book_id)
        if failure:
            return failure

        if expected is not None and expected != book.state:
            return _fail(
                ServiceErrorType.BUSINESS_RULE,
                "This book was changed elsewhere. Reload it and try again.",
                expected_state=str(getattr(current_state, "value", current_state)),
                actual_state=book.state.value,
            )
        if not can_transition(book.state, target):
            return _fail(
                ServiceErrorType.BUSINESS_RULE,
                f"Cannot transition from {book.state.value} to {target.value}",
                current_state=book.state.value,
                new_state=target.value,
            )

        previous = book.state
        now = self.clock()
        book.state = target
        if target == ReadingState.IN_PROGRESS and book.started_at is None:
            book.started_at = now
        elif target == ReadingState.FINISHED:
            if book.finished_at is None:
                book.finished_at = now
            book.progress.current_page = book.progress.total_pages

        saved, warnings, failure = self._persist(
            user_id, book, [StateChangePayload(new_state=target, previous_state=previous)]
        )
        if failure:
            return failure
        self.logger.info("Book %s moved from %s to %s", book_id, previous.value, target.value)
        warnings += self._trigger_refresh(user_id)
        return ServiceResult.ok(saved, warnings=tuple(warnings))

    def update_book_progress(self, user_id: str, book_id: str, current_page: Any) -> ServiceResult[Book]:
        if not is_whole_number(current_page):
            return _invalid("Current page must be a whole number")
        book, failure = self._load(user_id, book_id)
        if failure:
            return failure
        total = book.progress.total_pages
        if not validate_progress(current_page, total):
            return _invalid(f"Current page must be between 0 and {total}", current_page=current_page)

        previous = book.progress.current_page
        book.progress.current_page = int(current_page)
        saved, warnings, failure = self._persist(
            user_id, book, [ProgressUpdatePayload(previous_page=previous, new_page=int(current_page))]
        )
        if failure:
            return failure
        warnings += self._trigger_refresh(user_id)
        return ServiceResult.ok(saved, warnings=tuple(warnings))

    def update_book_rating(self, user_id: str, book_id: str, rating: Any) -> ServiceResult[Book]:
        if not validate_rating(rating):
            return _invalid("Rating must be a whole number between 1 and 5", rating=rating)
        book, failure = self._load(user_id, book_id)
        if failure:
            return failure

        book.rating = int(rating)
        saved, warnings, failure = self._persist(user_id, book, [RatingAddedPayload(rating=int(rating))])
        if failure:
            return failure
        warnings += self._trigger_refresh(user_id)
        return ServiceResult.ok(saved, warnings=tuple(warnings))

    def update_book_manual(self, user_id: str, book_id: str, update: BookUpdate) -> ServiceResult[Book]:
        """
        Correct a book by hand. The state machine is bypassed through the
        named override path, so the recorded state change is flagged
        ``override=True``; every other field is still validated.
        """
        book, failure = self._load(user_id, book_id)
        if failure:
            return failure
        validation = validate_book_update(update, book)
        if not validation.is_valid:
            return _invalid("; ".join(validation.errors), errors=validation.errors)

        payloads: List[EventPayload] = []
        if update.state is not None:
            override = plan_manual_override(book, update.state, self.clock())
            if override.changed:
                override.apply(book)
                payloads.append(
                    StateChangePayload(
                        new_state=override.new_state,
                        previous_state=override.previous_state,
                        override=True,
                    )
                )

        changed_fields: List[str] = []
        if update.total_pages is not None and int(update.total_pages) != book.progress.total_pages:
            book.progress.total_pages = int(update.total_pages)
            changed_fields.append("total_pages")
        if update.current_page is not None and int(update.current_page) != book.progress.current_page:
            payloads.append(
                ProgressUpdatePayload(previous_page=book.progress.current_page, new_page=int(update.current_page))
            )
            book.progress.current_page = int(update.current_page)
        if update.rating is not None and int(update.rating) != book.rating:
            book.rating = int(update.rating)
            payloads.append(RatingAddedPayload(rating=book.rating))

        for name in BookUpdate.METADATA_FIELDS:
            value = getattr(update, name)
            if value is None:
                continue
            if isinstance(value, str):
                value = value.strip() if name in ("title", "author") else _clean(value)
            if getattr(book, name) != value:
                setattr(book, name, value)
                changed_fields.append(name)
        if changed_fields:
            payloads.append(ManualUpdatePayload(fields=tuple(changed_fields)))

        if not payloads:
            return ServiceResult.ok(book)

        saved, warnings, failure = self._persist(user_id, book, payloads)
        if failure:
            return failure
        self.logger.info("Manual update of book %s: %d change(s)", book_id, len(payloads))
        warnings += self._trigger_refresh(user_id)
        if changed_fields:
            warnings += self._index(user_id, saved)
        return ServiceResult.ok(saved, warnings=tuple(warnings))

    def delete_book(self, user_id: str, book_id: str) -> ServiceResult[None]:
        """Remove the book. Its event history is kept."""
        _, failure = self._load(user_id, book_id)
        if failure:
            return failure
        deleted = self.books.delete(user_id, book_id)
        if not deleted.success:
            return _from_store(deleted)
        self.logger.info("Deleted book %s for user %s", book_id, user_id)
        warnings = self._unindex(user_id, book_id) + self._trigger_refresh(user_id)
        return ServiceResult.ok(None, warnings=tuple(warnings))

    def add_comment(self, user_id: str, book_id: str, text: Any, page: Any = None) -> ServiceResult[str]:
        if not validate_comment(text):
            return _invalid("Comment must be between 1 and 2000 characters")
        book, failure = self._load(user_id, book_id)
        if failure:
            return failure
        page = book.progress.current_page if page is None else page
        if not validate_comment_page(page, book.progress.total_pages):
            return _invalid(f"Page must be between 0 and {book.progress.total_pages}", page=page)

        payload = CommentPayload(text=text.strip(), reading_state=book.state, page=int(page))
        appended = self.events.append(user_id, PendingEvent(book_id, payload))
        if not appended.success:
            return _from_store(appended, "event")
        return ServiceResult.ok(appended.data)

    def add_review(self, user_id: str, book_id: str, text: Any) -> ServiceResult[str]:
        """Record a review; a later review supersedes an earlier one."""
        if not validate_review(text):
            return _invalid("Review must be between 10 and 5000 characters")
        _, failure = self._load(user_id, book_id)
        if failure:
            return failure
        appended = self.events.append(user_id, PendingEvent(book_id, ReviewPayload(text=text.strip())))
        if not appended.success:
            return _from_store(appended, "event")
        return ServiceResult.ok(appended.data)

    def refresh_statistics(self, user_id: str) -> ServiceResult[Statistics]:
        """Recompute statistics and overwrite the stored summary."""
        computed = self.get_statistics(user_id)
        if not computed.success:
            return computed
        saved = self.statistics.save(user_id, computed.data)
        if not saved.success:
            return _from_store(saved, "statistics")
        return computed

    def purge_events(self, user_id: str, max_age_days: Any) -> ServiceResult[int]:
        if not user_id:
            return _invalid("User ID is required")
        if not is_whole_number(max_age_days) or max_age_days < 1:
            return _invalid("Retention must be a positive whole number of days")
        cutoff = self.clock() - timedelta(days=int(max_age_days))
        purged = self.events.purge_older_than(user_id, cutoff)
        if not purged.success:
            return _from_store(purged, "event")
        return ServiceResult.ok(purged.data)

    # endregion

    # region Realtime
    def watch_books(self, user_id: str, token: Optional[CancellationToken] = None) -> Subscription[List[Book]]:
        return self.books.watch(user_id, token)

    def watch_statistics(
        self, user_id: str, token: Optional[CancellationToken] = None
    ) -> Subscription[Statistics]:
        """Statistics recomputed from every book snapshot the store pushes."""
        return self.store.subscribe(
            self.books.watch_query(user_id),
            token,
            lambda docs: compute_statistics(
                self.books.from_documents(docs),
                now=self.clock(),
                favorite_genres_limit=self.favorite_genres_limit,
            ),
        )

    # endregion
