"""
Example: walk one book through the reading lifecycle using SQLite + Whoosh.

Usage:
    python3 library_demo.py --title "Dune" --author "Frank Herbert" --pages 412 --rating 5
"""

import argparse
from pathlib import Path

from librarium.config import configure_logging
from librarium.library import (
    BookDraft,
    ErrorLogger,
    LibraryProvider,
    LibraryService,
    ReadingState,
    SqlAlchemyDocumentStore,
    WhooshBookIndexer,
    session_logger,
)


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--title", required=True, help="Book title")
    parser.add_argument("--author", required=True, help="Book author")
    parser.add_argument("--pages", default=300, type=int, help="Total pages")
    parser.add_argument("--genre", default=None, help="Genre")
    parser.add_argument("--rating", default=None, type=int, help="Rating (1-5) given after finishing")
    parser.add_argument("--user-id", default="local-user", help="User id")
    parser.add_argument("--db", default=Path("./data/librarium.db"), type=Path, help="SQLite DB path")
    parser.add_argument("--whoosh-dir", default=Path("./data/whoosh"), type=Path, help="Whoosh index directory")
    parser.add_argument("--log-level", default="INFO", help="Logging level")
    args = parser.parse_args()

    configure_logging(args.log_level)
    args.db.parent.mkdir(parents=True, exist_ok=True)
    log = session_logger(user_id=args.user_id)

    store = SqlAlchemyDocumentStore(f"sqlite+pysqlite:///{args.db}")
    service = LibraryService.from_store(store, indexer=WhooshBookIndexer(args.whoosh_dir), logger=log)
    provider = LibraryProvider(service, error_logger=ErrorLogger(log), logger=log)

    added = provider.add_book(
        args.user_id,
        BookDraft(title=args.title, author=args.author, total_pages=args.pages, genre=args.genre),
    )
    if not added.success:
        print(f"Could not add book: {added.error.user_message}")
        return
    book_id = added.data.id
    print(f"Added {added.data.title!r} as {book_id}")

    steps = [
        ("start", lambda: provider.update_book_state(args.user_id, book_id, ReadingState.IN_PROGRESS)),
        ("progress", lambda: provider.update_book_progress(args.user_id, book_id, args.pages // 2)),
        ("finish", lambda: provider.update_book_state(args.user_id, book_id, ReadingState.FINISHED)),
    ]
    if args.rating is not None:
        steps.append(("rate", lambda: provider.update_book_rating(args.user_id, book_id, args.rating)))

    for name, step in steps:
        result = step()
        status = "ok" if result.success else f"failed: {result.error.user_message}"
        print(f"{name}: {status}")
        for warning in result.warnings:
            print(f"  warning: {warning.user_message}")

    history = provider.book_history(args.user_id, book_id)
    for event in history.data or []:
        print(f"{event.timestamp.isoformat()} {event.type.value}")

    stats = provider.refresh_statistics(args.user_id)
    if stats.success:
        print(
            f"Books read: {stats.data.total_books_read}, pages: {stats.data.total_pages_read}, "
            f"average rating: {stats.data.average_rating}"
        )


if __name__ == "__main__":
    main()
