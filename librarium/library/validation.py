"""
Multi-error validation for manually edited books.

Manual edits may move a book to any reading state, so these checks cover
data integrity only: required text, progress bounds, rating, ISBN, cover URL,
published date and ownership. Each check returns every problem it finds so a
form can show them together.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, List, Optional
from urllib.parse import urlparse

from .models import Book, BookUpdate, is_valid_reading_state, is_whole_number, utcnow

DESCRIPTION_MAX_LENGTH = 500
MIN_PUBLICATION_YEAR = 1000

_IMAGE_SUFFIX = re.compile(r"\.(jpg|jpeg|png|gif|webp)$", re.IGNORECASE)
_TRUSTED_COVER_HOSTS = ("books.google.com",)
_DATE_FORMATS = (
    re.compile(r"^\d{4}$"),
    re.compile(r"^\d{4}-\d{2}$"),
    re.compile(r"^\d{4}-\d{2}-\d{2}$"),
)


@dataclass
class ValidationResult:
    errors: List[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def extend(self, other: "ValidationResult") -> None:
        self.errors.extend(other.errors)


def validate_progress_data(current_page: Any, total_pages: Any) -> ValidationResult:
    result = ValidationResult()
    total_ok = is_whole_number(total_pages)
    if not total_ok:
        result.errors.append("Total pages must be a valid number")
    elif total_pages < 0:
        result.errors.append("Total pages cannot be negative")

    if not is_whole_number(current_page):
        result.errors.append("Current page must be a valid number")
    elif current_page < 0:
        result.errors.append("Current page cannot be negative")
    elif total_ok and current_page > total_pages:
        result.errors.append("Current page cannot exceed total pages")
    return result


def validate_rating_value(rating: Any) -> ValidationResult:
    result = ValidationResult()
    if isinstance(rating, bool) or not isinstance(rating, (int, float)) or rating != rating:
        result.errors.append("Rating must be a valid number")
    elif rating < 1 or rating > 5:
        result.errors.append("Rating must be between 1 and 5 stars")
    elif not is_whole_number(rating):
        result.errors.append("Rating must be a whole number")
    return result


def validate_isbn(isbn: str) -> ValidationResult:
    result = ValidationResult()
    clean = re.sub(r"[-\s]", "", isbn)
    if len(clean) == 10:
        if not re.fullmatch(r"[0-9]{9}[0-9X]", clean):
            result.errors.append("Invalid ISBN-10 format")
    elif len(clean) == 13:
        if not re.fullmatch(r"[0-9]{13}", clean):
            result.errors.append("Invalid ISBN-13 format")
    else:
        result.errors.append("ISBN must be 10 or 13 digits long")
    return result


def validate_cover_url(url: str) -> ValidationResult:
    result = ValidationResult()
    parsed = urlparse(url)
    if not parsed.scheme or not parsed.netloc:
        result.errors.append("Invalid URL format")
        return result
    if not _IMAGE_SUFFIX.search(parsed.path) and not any(host in url for host in _TRUSTED_COVER_HOSTS):
        result.errors.append("URL should point to an image file or be from a trusted source")
    return result


def validate_published_date(value: str) -> ValidationResult:
    result = ValidationResult()
    if not any(pattern.match(value) for pattern in _DATE_FORMATS):
        result.errors.append("Date must be in format YYYY, YYYY-MM, or YYYY-MM-DD")
        return result
    year = int(value[:4])
    max_year = utcnow().year + 1
    if year < MIN_PUBLICATION_YEAR or year > max_year:
        result.errors.append(f"Year must be between {MIN_PUBLICATION_YEAR} and {max_year}")
    return result


def validate_string_field(value: Optional[str], field_name: str, required: bool = True) -> ValidationResult:
    result = ValidationResult()
    if required and (not value or not value.strip()):
        result.errors.append(f"{field_name} is required")
    elif value and len(value.strip()) > DESCRIPTION_MAX_LENGTH:
        result.errors.append(f"{field_name} cannot exceed {DESCRIPTION_MAX_LENGTH} characters")
    return result


def validate_book_update(update: BookUpdate, current: Book) -> ValidationResult:
    """
    Validate a manual edit against the book it will be applied to. Fields left
    as ``None`` fall back to the current values for cross-field checks.
    """
    result = ValidationResult()

    if update.title is not None and not update.title.strip():
        result.errors.append("Title is required and cannot be empty")
    if update.author is not None and not update.author.strip():
        result.errors.append("Author is required and cannot be empty")

    if update.state is not None and not is_valid_reading_state(update.state):
        result.errors.append("Invalid reading state")

    if update.current_page is not None or update.total_pages is not None:
        current_page = update.current_page if update.current_page is not None else current.progress.current_page
        total_pages = update.total_pages if update.total_pages is not None else current.progress.total_pages
        result.extend(validate_progress_data(current_page, total_pages))

    if update.rating is not None:
        result.extend(validate_rating_value(update.rating))

    if update.isbn and update.isbn.strip():
        result.extend(validate_isbn(update.isbn))
    if update.cover_image and update.cover_image.strip():
        result.extend(validate_cover_url(update.cover_image))
    if update.published_date and update.published_date.strip():
        result.extend(validate_published_date(update.published_date))
    if update.description is not None:
        result.extend(validate_string_field(update.description, "Description", required=False))

    if update.is_owned is not None and not isinstance(update.is_owned, bool):
        result.errors.append("Ownership status must be true or false")

    return result
