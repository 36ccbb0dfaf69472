from __future__ import annotations

from pathlib import Path
from typing import List, Protocol

from whoosh import index
from whoosh.fields import ID, TEXT, Schema
from whoosh.qparser import MultifieldParser, OrGroup
from whoosh.query import Term

from .models import Book

SEARCH_FIELDS = ["title", "author", "description", "genre"]


class BookIndexer(Protocol):
    def index_book(self, user_id: str, book: Book) -> None:
        ...

    def delete_book(self, user_id: str, book_id: str) -> None:
        ...

    def search(self, user_id: str, query_str: str, limit: int = 10) -> List[str]:
        ...


class WhooshBookIndexer:
    """
    File-system backed Whoosh index of book text fields. One document per
    (user, book); re-indexing a book replaces its document.
    """

    def __init__(self, index_dir: Path):
        self.index_dir = Path(index_dir)
        self.index_dir.mkdir(parents=True, exist_ok=True)
        self.schema = Schema(
            key=ID(stored=True, unique=True),
            user_id=ID(stored=True),
            book_id=ID(stored=True),
            title=TEXT(stored=True),
            author=TEXT(stored=True),
            description=TEXT,
            genre=TEXT(stored=True),
        )
        if index.exists_in(self.index_dir):
            self.ix = index.open_dir(self.index_dir)
        else:
            self.ix = index.create_in(self.index_dir, self.schema)

    @staticmethod
    def _key(user_id: str, book_id: str) -> str:
        return f"{user_id}:{book_id}"

    def index_book(self, user_id: str, book: Book) -> None:
        writer = self.ix.writer()
        writer.update_document(
            key=self._key(user_id, book.id),
            user_id=user_id,
            book_id=book.id,
            title=book.title,
            author=book.author,
            description=book.description or "",
            genre=book.genre or "",
        )
        writer.commit()

    def delete_book(self, user_id: str, book_id: str) -> None:
        writer = self.ix.writer()
        writer.delete_by_term("key", self._key(user_id, book_id))
        writer.commit()

    def search(self, user_id: str, query_str: str, limit: int = 10) -> List[str]:
        """Return matching book ids, best match first."""
        parser = MultifieldParser(SEARCH_FIELDS, schema=self.schema, group=OrGroup)
        q = parser.parse(query_str)
        with self.ix.searcher() as searcher:
            results = searcher.search(q, limit=limit, filter=Term("user_id", user_id))
            return [hit["book_id"] for hit in results]
