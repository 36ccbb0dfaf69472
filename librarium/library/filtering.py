from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional, Sequence

from .models import Book, ReadingState

SORT_KEYS: Dict[str, Callable[[Book], Any]] = {
    "title": lambda b: b.title.casefold(),
    "author": lambda b: b.author.casefold(),
    "pages": lambda b: b.progress.total_pages or 0,
    "rating": lambda b: b.rating or 0,
    "progress": lambda b: calculate_progress(b),
    "added": lambda b: b.added_at,
}


def calculate_progress(book: Book) -> int:
    """Reading progress as a whole percentage."""
    if book.state == ReadingState.FINISHED:
        return 100
    if book.state == ReadingState.NOT_STARTED:
        return 0
    current, total = book.progress.current_page, book.progress.total_pages
    if not current or not total:
        return 0
    return round(current / total * 100)


def matches_search(book: Book, search: str) -> bool:
    needle = search.strip().casefold()
    if not needle:
        return True
    haystacks = (book.title, book.author, book.description or "")
    return any(needle in text.casefold() for text in haystacks)


def filter_and_sort_books(
    books: Sequence[Book],
    search: str = "",
    state: Optional[str] = None,
    ownership: Optional[str] = None,
    sort_by: str = "title",
    descending: bool = False,
) -> List[Book]:
    """
    ``state`` and ``ownership`` accept ``"all"`` or ``None`` for no filter;
    ownership is ``"owned"`` or ``"wishlist"``. Unknown sort keys sort by title.
    """
    result = [b for b in books if matches_search(b, search)]
    if state and state != "all":
        result = [b for b in result if b.state.value == state]
    if ownership and ownership != "all":
        owned = ownership == "owned"
        result = [b for b in result if b.is_owned == owned]
    key = SORT_KEYS.get(sort_by, SORT_KEYS["title"])
    return sorted(result, key=key, reverse=descending)
