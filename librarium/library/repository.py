from __future__ import annotations

from dataclasses import asdict
from typing import Any, Callable, Dict, List, Optional

from .errors import StoreResult
from .models import Book, Progress, ReadingState, Statistics, from_iso, to_iso
from .store import SERVER_TIMESTAMP, CancellationToken, Document, DocumentStore, Query, Subscription, WriteBatch


def books_collection(user_id: str) -> str:
    return f"users/{user_id}/books"


def events_collection(user_id: str) -> str:
    return f"users/{user_id}/events"


def statistics_path(user_id: str) -> str:
    return f"users/{user_id}/statistics/summary"


# region Mapping


def book_to_document(book: Book) -> Dict[str, Any]:
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


def book_from_document(document: Document) -> Book:
    data = document.data
    progress = data.get("progress") or {}
    return Book(
        id=document.id,
        title=data.get("title", ""),
        author=data.get("author", ""),
        state=ReadingState(data.get("state", ReadingState.NOT_STARTED.value)),
        progress=Progress(
            current_page=int(progress.get("current_page") or 0),
            total_pages=int(progress.get("total_pages") or 0),
        ),
        is_owned=bool(data.get("is_owned", False)),
        rating=data.get("rating"),
        isbn=data.get("isbn"),
        genre=data.get("genre"),
        cover_image=data.get("cover_image"),
        published_date=data.get("published_date"),
        description=data.get("description"),
        added_at=from_iso(data.get("added_at")),
        updated_at=from_iso(data.get("updated_at")),
        started_at=from_iso(data.get("started_at")),
        finished_at=from_iso(data.get("finished_at")),
    )


def statistics_to_document(stats: Statistics) -> Dict[str, Any]:
    data = asdict(stats)
    data["favorite_genres"] = list(stats.favorite_genres)
    data["last_activity_at"] = to_iso(stats.last_activity_at)
    data["computed_at"] = to_iso(stats.computed_at)
    return data


def statistics_from_document(document: Document) -> Statistics:
    data = dict(document.data)
    data["favorite_genres"] = tuple(data.get("favorite_genres") or ())
    data["last_activity_at"] = from_iso(data.get("last_activity_at"))
    data["computed_at"] = from_iso(data.get("computed_at"))
    return Statistics(**data)


def _map(result: StoreResult[Any], fn: Callable[[Any], Any]) -> StoreResult[Any]:
    if not result.success:
        return StoreResult.fail(result.error or "Unknown storage error", result.code)
    return StoreResult.ok(fn(result.data))


# endregion


class BookRepository:
    """
    Book documents under ``users/{uid}/books``. Timestamps handed to the store
    as ``SERVER_TIMESTAMP`` come back as the store clock value.
    """

    def __init__(self, store: DocumentStore):
        self.store = store

    def _path(self, user_id: str, book_id: str) -> str:
        return f"{books_collection(user_id)}/{book_id}"

    def new_id(self) -> str:
        return self.store.new_id()

    def get(self, user_id: str, book_id: str) -> StoreResult[Book]:
        return _map(self.store.get(self._path(user_id, book_id)), book_from_document)

    def list_all(self, user_id: str, state: Optional[ReadingState] = None) -> StoreResult[List[Book]]:
        query = Query(books_collection(user_id)).order("added_at", descending=True)
        if state is not None:
            query = query.where("state", "==", state.value)
        return _map(self.store.query(query), lambda docs: [book_from_document(d) for d in docs])

    def save(self, user_id: str, book: Book, batch: Optional[WriteBatch] = None) -> StoreResult[Book]:
        """
        Write the whole book. ``updated_at`` is always stamped by the store.
        With ``batch`` the write is staged and the caller commits.
        """
        data = book_to_document(book)
        data["updated_at"] = SERVER_TIMESTAMP
        path = self._path(user_id, book.id)
        if batch is not None:
            batch.set(path, data)
            return StoreResult.ok(book)
        result = self.store.set(path, data)
        if not result.success:
            return StoreResult.fail(result.error or "Unknown storage error", result.code)
        return self.get(user_id, book.id)

    def delete(self, user_id: str, book_id: str) -> StoreResult[None]:
        return self.store.delete(self._path(user_id, book_id))

    def watch_query(self, user_id: str) -> Query:
        return Query(books_collection(user_id)).order("added_at", descending=True)

    @staticmethod
    def from_documents(documents: List[Document]) -> List[Book]:
        return [book_from_document(d) for d in documents]

    def watch(self, user_id: str, token: Optional[CancellationToken] = None) -> Subscription[List[Book]]:
        return self.store.subscribe(self.watch_query(user_id), token, self.from_documents)


class StatisticsRepository:
    def __init__(self, store: DocumentStore):
        self.store = store

    def get(self, user_id: str) -> StoreResult[Statistics]:
        return _map(self.store.get(statistics_path(user_id)), statistics_from_document)

    def save(self, user_id: str, stats: Statistics) -> StoreResult[str]:
        return self.store.set(statistics_path(user_id), statistics_to_document(stats))

