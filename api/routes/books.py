from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from librarium.library import BookDraft, BookUpdate, LibraryProvider, ReadingState, filter_and_sort_books

from api.dependencies import get_provider, get_user_id
from api.serializers import book_to_dict, event_to_dict, respond

router = APIRouter(prefix="/books", tags=["books"])


class BookCreate(BaseModel):
    title: str
    author: str
    total_pages: int = 0
    is_owned: bool = False
    isbn: Optional[str] = None
    genre: Optional[str] = None
    cover_image: Optional[str] = None
    published_date: Optional[str] = None
    description: Optional[str] = None

    def to_draft(self) -> BookDraft:
        return BookDraft(**self.model_dump())


class BookImport(BaseModel):
    books: List[BookCreate] = Field(default_factory=list)


class BookPatch(BaseModel):
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


class StateChange(BaseModel):
    state: str
    current_state: Optional[str] = None


class ProgressChange(BaseModel):
    current_page: int


class RatingChange(BaseModel):
    rating: int


class CommentCreate(BaseModel):
    text: str
    page: Optional[int] = None


class ReviewCreate(BaseModel):
    text: str


@router.get("")
def list_books(
    state: Optional[str] = None,
    search: str = "",
    ownership: Optional[str] = None,
    sort_by: str = "added",
    descending: bool = True,
    user_id: str = Depends(get_user_id),
    provider: LibraryProvider = Depends(get_provider),
):
    if state and state != "all":
        result = provider.books_by_state(user_id, state)
    else:
        result = provider.list_books(user_id)
    body = respond(result)
    books = filter_and_sort_books(body["data"] or [], search, None, ownership, sort_by, descending)
    body["data"] = [book_to_dict(b) for b in books]
    return body


@router.get("/search")
def search_books(
    q: str,
    limit: int = 10,
    user_id: str = Depends(get_user_id),
    provider: LibraryProvider = Depends(get_provider),
):
    return respond(provider.search_books(user_id, q, limit), book_to_dict)


@router.post("", status_code=201)
def add_book(
    body: BookCreate,
    user_id: str = Depends(get_user_id),
    provider: LibraryProvider = Depends(get_provider),
):
    return respond(provider.add_book(user_id, body.to_draft()), book_to_dict)


@router.post("/import", status_code=201)
def import_books(
    body: BookImport,
    user_id: str = Depends(get_user_id),
    provider: LibraryProvider = Depends(get_provider),
):
    drafts = [item.to_draft() for item in body.books]
    return respond(provider.import_books(user_id, drafts), book_to_dict)


@router.get("/{book_id}")
def get_book(book_id: str, user_id: str = Depends(get_user_id), provider: LibraryProvider = Depends(get_provider)):
    return respond(provider.get_book(user_id, book_id), book_to_dict)


@router.patch("/{book_id}")
def update_book(
    book_id: str,
    body: BookPatch,
    user_id: str = Depends(get_user_id),
    provider: LibraryProvider = Depends(get_provider),
):
    update = BookUpdate(**body.model_dump())
    return respond(provider.update_book_manual(user_id, book_id, update), book_to_dict)


@router.delete("/{book_id}")
def delete_book(book_id: str, user_id: str = Depends(get_user_id), provider: LibraryProvider = Depends(get_provider)):
    return respond(provider.delete_book(user_id, book_id))


@router.post("/{book_id}/state")
def change_state(
    book_id: str,
    body: StateChange,
    user_id: str = Depends(get_user_id),
    provider: LibraryProvider = Depends(get_provider),
):
    result = provider.update_book_state(user_id, book_id, body.state, body.current_state)
    return respond(result, book_to_dict)


@router.post("/{book_id}/progress")
def change_progress(
    book_id: str,
    body: ProgressChange,
    user_id: str = Depends(get_user_id),
    provider: LibraryProvider = Depends(get_provider),
):
    return respond(provider.update_book_progress(user_id, book_id, body.current_page), book_to_dict)


@router.post("/{book_id}/rating")
def change_rating(
    book_id: str,
    body: RatingChange,
    user_id: str = Depends(get_user_id),
    provider: LibraryProvider = Depends(get_provider),
):
    return respond(provider.update_book_rating(user_id, book_id, body.rating), book_to_dict)


@router.get("/{book_id}/events")
def book_history(book_id: str, user_id: str = Depends(get_user_id), provider: LibraryProvider = Depends(get_provider)):
    return respond(provider.book_history(user_id, book_id), event_to_dict)


@router.get("/{book_id}/comments")
def list_comments(book_id: str, user_id: str = Depends(get_user_id), provider: LibraryProvider = Depends(get_provider)):
    return respond(provider.book_comments(user_id, book_id), event_to_dict)


@router.post("/{book_id}/comments", status_code=201)
def add_comment(
    book_id: str,
    body: CommentCreate,
    user_id: str = Depends(get_user_id),
    provider: LibraryProvider = Depends(get_provider),
):
    return respond(provider.add_comment(user_id, book_id, body.text, body.page))


@router.get("/{book_id}/review")
def get_review(book_id: str, user_id: str = Depends(get_user_id), provider: LibraryProvider = Depends(get_provider)):
    return respond(provider.book_review(user_id, book_id), event_to_dict)


@router.post("/{book_id}/review", status_code=201)
def add_review(
    book_id: str,
    body: ReviewCreate,
    user_id: str = Depends(get_user_id),
    provider: LibraryProvider = Depends(get_provider),
):
    return respond(provider.add_review(user_id, book_id, body.text))
