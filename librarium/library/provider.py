from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, List, Optional, Union

from .activity import ActivityItem
from .error_logging import ErrorLogger
from .errors import ErrorCategory, ProviderResult, ServiceResult, present, run_classified, run_classified_async
from .messages import MessageContext, PersonalizedMessage, PersonalizedMessageService
from .models import Book, BookDraft, BookEvent, BookUpdate, Statistics
from .service import LibraryService
from .store import CancellationToken, Subscription


class LibraryProvider:
    """
    Presentation boundary over ``LibraryService``. Every call comes back as a
    ``ProviderResult``: business failures are re-classified into
    ``StandardError`` values, anything raised on the way is caught and
    classified as well, and every failure or warning goes to the error logger.
    """

    def __init__(
        self,
        service: LibraryService,
        messages: Optional[PersonalizedMessageService] = None,
        error_logger: Optional[ErrorLogger] = None,
        logger: Optional[Union[logging.Logger, logging.LoggerAdapter]] = None,
    ):
        self.service = service
        self.messages = messages or PersonalizedMessageService(clock=service.clock)
        self.logger = logger or logging.getLogger(__name__)
        self.error_logger = error_logger or ErrorLogger(self.logger)

    def _report(self, result: ProviderResult[Any]) -> ProviderResult[Any]:
        if result.error is not None:
            self.error_logger.log_error(result.error)
        for warning in result.warnings:
            self.error_logger.log_error(warning)
        return result

    def _call(self, operation: str, fn: Callable[[], ServiceResult[Any]], **context: Any) -> ProviderResult[Any]:
        context = {"operation": operation, **context}
        outer = run_classified(fn, context, ErrorCategory.UNKNOWN)
        if not outer.success:
            return self._report(outer)
        return self._report(present(outer.data, context))

    async def _call_async(
        self, operation: str, fn: Callable[[], Awaitable[ServiceResult[Any]]], **context: Any
    ) -> ProviderResult[Any]:
        context = {"operation": operation, **context}
        outer = await run_classified_async(fn, context, ErrorCategory.UNKNOWN)
        if not outer.success:
            return self._report(outer)
        return self._report(present(outer.data, context))

    # region Books
    def get_book(self, user_id: str, book_id: str) -> ProviderResult[Book]:
        return self._call("get_book", lambda: self.service.get_book(user_id, book_id), book_id=book_id)

    def list_books(self, user_id: str) -> ProviderResult[List[Book]]:
        return self._call("list_books", lambda: self.service.list_books(user_id))

    def books_by_state(self, user_id: str, state: Any) -> ProviderResult[List[Book]]:
        return self._call("books_by_state", lambda: self.service.books_by_state(user_id, state), state=str(state))

    def search_books(self, user_id: str, query: str, limit: int = 10) -> ProviderResult[List[Book]]:
        return self._call("search_books", lambda: self.service.search_books(user_id, query, limit), query=query)

    def add_book(self, user_id: str, draft: BookDraft) -> ProviderResult[Book]:
        self.error_logger.log_user_action("add_book", {"user_id": user_id, "title": draft.title})
        return self._call("add_book", lambda: self.service.add_book(user_id, draft))

    def import_books(self, user_id: str, drafts: List[BookDraft]) -> ProviderResult[List[Book]]:
        self.error_logger.log_user_action("import_books", {"user_id": user_id, "count": len(drafts)})
        return self._call("import_books", lambda: self.service.import_books(user_id, drafts))

    def update_book_state(
        self, user_id: str, book_id: str, new_state: Any, current_state: Any = None
    ) -> ProviderResult[Book]:
        return self._call(
            "update_book_state",
            lambda: self.service.update_book_state(user_id, book_id, new_state, current_state),
            book_id=book_id,
            new_state=str(getattr(new_state, "value", new_state)),
        )

    def update_book_progress(self, user_id: str, book_id: str, current_page: Any) -> ProviderResult[Book]:
        return self._call(
            "update_book_progress",
            lambda: self.service.update_book_progress(user_id, book_id, current_page),
            book_id=book_id,
        )

    def update_book_rating(self, user_id: str, book_id: str, rating: Any) -> ProviderResult[Book]:
        return self._call(
            "update_book_rating",
            lambda: self.service.update_book_rating(user_id, book_id, rating),
            book_id=book_id,
        )

    def update_book_manual(self, user_id: str, book_id: str, update: BookUpdate) -> ProviderResult[Book]:
        self.error_logger.log_user_action("update_book_manual", {"user_id": user_id, "book_id": book_id})
        return self._call(
            "update_book_manual",
            lambda: self.service.update_book_manual(user_id, book_id, update),
            book_id=book_id,
        )

    def delete_book(self, user_id: str, book_id: str) -> ProviderResult[None]:
        self.error_logger.log_user_action("delete_book", {"user_id": user_id, "book_id": book_id})
        return self._call("delete_book", lambda: self.service.delete_book(user_id, book_id), book_id=book_id)

    # endregion

    # region Events
    def add_comment(self, user_id: str, book_id: str, text: Any, page: Any = None) -> ProviderResult[str]:
        return self._call(
            "add_comment", lambda: self.service.add_comment(user_id, book_id, text, page), book_id=book_id
        )

    def add_review(self, user_id: str, book_id: str, text: Any) -> ProviderResult[str]:
        return self._call("add_review", lambda: self.service.add_review(user_id, book_id, text), book_id=book_id)

    def book_history(self, user_id: str, book_id: str) -> ProviderResult[List[BookEvent]]:
        return self._call("book_history", lambda: self.service.book_history(user_id, book_id), book_id=book_id)

    def book_comments(self, user_id: str, book_id: str) -> ProviderResult[List[BookEvent]]:
        return self._call("book_comments", lambda: self.service.book_comments(user_id, book_id), book_id=book_id)

    def book_review(self, user_id: str, book_id: str) -> ProviderResult[Optional[BookEvent]]:
        return self._call("book_review", lambda: self.service.book_review(user_id, book_id), book_id=book_id)

    def recent_events(self, user_id: str, limit: int = 10) -> ProviderResult[List[BookEvent]]:
        return self._call("recent_events", lambda: self.service.recent_events(user_id, limit))

    def events_by_type(self, user_id: str, event_type: Any) -> ProviderResult[List[BookEvent]]:
        return self._call(
            "events_by_type",
            lambda: self.service.events_by_type(user_id, event_type),
            event_type=str(getattr(event_type, "value", event_type)),
        )

    def activity_feed(self, user_id: str, limit: int = 10) -> ProviderResult[List[ActivityItem]]:
        return self._call("activity_feed", lambda: self.service.activity_feed(user_id, limit))

    def purge_events(self, user_id: str, max_age_days: Any) -> ProviderResult[int]:
        return self._call("purge_events", lambda: self.service.purge_events(user_id, max_age_days))

    # endregion

    # region Statistics and messages
    def get_statistics(self, user_id: str) -> ProviderResult[Statistics]:
        return self._call("get_statistics", lambda: self.service.get_statistics(user_id))

    def refresh_statistics(self, user_id: str) -> ProviderResult[Statistics]:
        return self._call("refresh_statistics", lambda: self.service.refresh_statistics(user_id))

    async def personalized_message(self, user_id: str, display_name: str) -> ProviderResult[PersonalizedMessage]:
        async def _generate() -> ServiceResult[PersonalizedMessage]:
            books = self.service.list_books(user_id)
            if not books.success:
                return books
            stats = self.service.get_statistics(user_id)
            if not stats.success:
                return stats
            feed = self.service.activity_feed(user_id, 3)
            context = MessageContext(
                display_name=display_name,
                books=books.data or [],
                stats=stats.data,
                recent_activity=feed.data if feed.success else [],
            )
            return await self.messages.get_message(user_id, context)

        return await self._call_async("personalized_message", _generate)

    # endregion

    # region Realtime
    def watch_books(self, user_id: str, token: Optional[CancellationToken] = None) -> Subscription[List[Book]]:
        return self.service.watch_books(user_id, token)

    def watch_statistics(self, user_id: str, token: Optional[CancellationToken] = None) -> Subscription[Statistics]:
        return self.service.watch_statistics(user_id, token)

    # endregion
