from librarium.library import Book, WhooshBookIndexer


def _book(book_id, title, author, description=None, genre=None):
    return Book(id=book_id, title=title, author=author, description=description, genre=genre)


def test_index_search_and_delete(tmp_path):
    indexer = WhooshBookIndexer(tmp_path / "whoosh")
    indexer.index_book("u1", _book("b1", "Dune", "Frank Herbert", "Desert planet politics", "Sci-Fi"))
    indexer.index_book("u1", _book("b2", "Emma", "Jane Austen", "A matchmaker in Highbury"))
    indexer.index_book("u2", _book("b3", "Dune Messiah", "Frank Herbert"))

    assert indexer.search("u1", "dune") == ["b1"]
    assert indexer.search("u1", "austen") == ["b2"]
    assert indexer.search("u1", "desert") == ["b1"]
    assert indexer.search("u2", "herbert") == ["b3"]

    indexer.delete_book("u1", "b1")
    assert indexer.search("u1", "dune") == []
    assert indexer.search("u2", "dune") == ["b3"]


def test_reindexing_replaces_the_document(tmp_path):
    indexer = WhooshBookIndexer(tmp_path / "whoosh")
    indexer.index_book("u1", _book("b1", "Untitled", "Unknown"))
    indexer.index_book("u1", _book("b1", "Anathem", "Neal Stephenson"))
    assert indexer.search("u1", "untitled") == []
    assert indexer.search("u1", "anathem") == ["b1"]

    reopened = WhooshBookIndexer(tmp_path / "whoosh")
    assert reopened.search("u1", "stephenson") == ["b1"]
