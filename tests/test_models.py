import math

import pytest

from librarium.library import Book, BookUpdate, ReadingState
from librarium.library.models import (
    from_iso,
    is_valid_event_type,
    is_valid_reading_state,
    is_whole_number,
    to_iso,
    validate_comment,
    validate_comment_page,
    validate_progress,
    validate_rating,
    validate_review,
)
from librarium.library.validation import (
    validate_book_update,
    validate_cover_url,
    validate_isbn,
    validate_published_date,
)


@pytest.mark.parametrize(
    "current,total,expected",
    [
        (-1, 100, False),
        (101, 100, False),
        (100, 100, True),
        (0, 0, True),
        (50, 100, True),
        (0, -1, False),
        (10.5, 100, False),
        (10.0, 100, True),
        ("10", 100, False),
        (True, 100, False),
    ],
)
def test_validate_progress(current, total, expected):
    assert validate_progress(current, total) is expected


@pytest.mark.parametrize("rating", [1, 2, 3, 4, 5, 4.0])
def test_valid_ratings(rating):
    assert validate_rating(rating)


@pytest.mark.parametrize("rating", [0, 6, 3.5, math.nan, math.inf, True, "4", None])
def test_invalid_ratings(rating):
    assert not validate_rating(rating)


def test_is_whole_number():
    assert is_whole_number(3)
    assert is_whole_number(3.0)
    assert not is_whole_number(False)
    assert not is_whole_number(math.nan)


def test_state_and_event_type_guards():
    assert is_valid_reading_state("in_progress")
    assert not is_valid_reading_state("reading")
    assert is_valid_event_type("manual_update")
    assert not is_valid_event_type("deleted")


def test_comment_and_review_bounds():
    assert validate_comment("Great chapter")
    assert not validate_comment("   ")
    assert not validate_comment("x" * 2001)
    assert validate_review("Loved every page of it.")
    assert not validate_review("too short")
    assert not validate_review("y" * 5001)
    assert validate_comment_page(0, 0)
    assert not validate_comment_page(12, 10)


def test_iso_round_trip_keeps_microseconds_and_utc():
    value = from_iso("2024-03-01T10:15:30.123456+00:00")
    assert value.microsecond == 123456
    assert to_iso(value) == "2024-03-01T10:15:30.123456+00:00"
    assert from_iso("2024-03-01T10:15:30").tzinfo is not None
    assert to_iso(None) is None and from_iso("") is None


def _book(**kwargs):
    book = Book(id="b1", title="Dune", author="Frank Herbert")
    book.progress.total_pages = 400
    for key, value in kwargs.items():
        setattr(book, key, value)
    return book


def test_edit_validation_collects_every_problem():
    update = BookUpdate(title="  ", author="", current_page=500, rating=7, isbn="123")
    result = validate_book_update(update, _book())
    assert not result.is_valid
    assert "Title is required and cannot be empty" in result.errors
    assert "Author is required and cannot be empty" in result.errors
    assert "Current page cannot exceed total pages" in result.errors
    assert "Rating must be between 1 and 5 stars" in result.errors
    assert "ISBN must be 10 or 13 digits long" in result.errors


def test_edit_validation_uses_current_values_for_cross_field_checks():
    book = _book()
    book.progress.current_page = 300
    assert not validate_book_update(BookUpdate(total_pages=200), book).is_valid
    assert validate_book_update(BookUpdate(total_pages=350), book).is_valid


def test_edit_validation_allows_any_state():
    book = _book(state=ReadingState.FINISHED)
    assert validate_book_update(BookUpdate(state=ReadingState.NOT_STARTED), book).is_valid
    assert not validate_book_update(BookUpdate(state="paused"), book).is_valid


def test_field_validators():
    assert validate_isbn("978-0-441-17271-9").is_valid
    assert validate_isbn("044117271X").is_valid
    assert not validate_isbn("97804411727AB").is_valid
    assert validate_cover_url("https://example.com/cover.jpg").is_valid
    assert validate_cover_url("https://books.google.com/books/content?id=1").is_valid
    assert not validate_cover_url("https://example.com/page").is_valid
    assert not validate_cover_url("not a url").is_valid
    assert validate_published_date("1965").is_valid
    assert validate_published_date("1965-08-01").is_valid
    assert not validate_published_date("08/01/1965").is_valid
    assert not validate_published_date("0999").is_valid
