from datetime import date

import pytest

from library_service.errors import (
    BookInUse,
    BookNotFound,
    BookValidationError,
    DuplicateIsbn,
    NotLibrarian,
)

DUNE = {
    "title": "Dune",
    "author": "Frank Herbert",
    "isbn": "9780441172719",
    "genre": "Fiction",
    "publication_date": "1965-08-01",
    "total_copies": 3,
}


def test_add_book(book_service, librarian):
    book = book_service.add_book(librarian, DUNE)

    assert book.id is not None
    assert book.genre == "FICTION"
    assert book.publication_date == date(1965, 8, 1)
    assert book.total_copies == book.available_copies == 3
    assert book_service.get_book(book.id) == book


def test_patron_cannot_add_book(book_service, make_user):
    with pytest.raises(NotLibrarian):
        book_service.add_book(make_user(), DUNE)


def test_duplicate_isbn(book_service, librarian):
    book_service.add_book(librarian, DUNE)
    with pytest.raises(DuplicateIsbn):
        book_service.add_book(librarian, dict(DUNE, title="Dune (reprint)"))


def test_get_missing_book(book_service):
    with pytest.raises(BookNotFound):
        book_service.get_book(404)


def test_search_filters_and_pages(book_service, librarian):
    book_service.add_book(librarian, DUNE)
    book_service.add_book(
        librarian, dict(DUNE, title="Dune Messiah", isbn="9780441172696", genre="fantasy")
    )
    book_service.add_book(
        librarian,
        dict(DUNE, title="Sapiens", author="Yuval Noah Harari", isbn="9780062316097", genre="history"),
    )

    assert book_service.search_books(title="dune")["total_elements"] == 2
    assert book_service.search_books(author="HARARI")["content"][0].title == "Sapiens"
    assert book_service.search_books(isbn="231609")["total_elements"] == 1
    assert [b.title for b in book_service.search_books(genre="FaNtAsY")["content"]] == ["Dune Messiah"]

    page = book_service.search_books(page=1, size=2)
    assert page["total_elements"] == 3
    assert page["total_pages"] == 2
    assert [b.title for b in page["content"]] == ["Sapiens"]


def test_search_rejects_unknown_genre(book_service):
    with pytest.raises(BookValidationError):
        book_service.search_books(genre="poetry")


def test_update_recomputes_available_copies(
    book_service, borrowing_service, librarian, make_user
):
    book = book_service.add_book(librarian, DUNE)
    borrowing_service.borrow(make_user(), book.id)
    borrowing_service.borrow(make_user(), book.id)

    updated = book_service.update_book(librarian, book.id, {"total_copies": 5, "title": ""})

    assert updated.title == "Dune"
    assert updated.total_copies == 5
    assert updated.available_copies == 3


def test_update_cannot_drop_below_lent_copies(book_service, borrowing_service, librarian, make_user):
    book = book_service.add_book(librarian, DUNE)
    borrowing_service.borrow(make_user(), book.id)
    borrowing_service.borrow(make_user(), book.id)

    with pytest.raises(BookValidationError):
        book_service.update_book(librarian, book.id, {"total_copies": 1})


def test_update_rejects_taken_isbn(book_service, librarian):
    book_service.add_book(librarian, DUNE)
    other = book_service.add_book(librarian, dict(DUNE, isbn="111"))

    with pytest.raises(DuplicateIsbn):
        book_service.update_book(librarian, other.id, {"isbn": DUNE["isbn"]})


def test_update_requires_librarian(book_service, librarian, make_user):
    book = book_service.add_book(librarian, DUNE)
    with pytest.raises(NotLibrarian):
        book_service.update_book(make_user(), book.id, {"title": "Mine now"})


def test_delete_book(book_service, borrowing_service, librarian, make_user):
    patron = make_user()
    book = book_service.add_book(librarian, DUNE)
    loan = borrowing_service.borrow(patron, book.id)

    with pytest.raises(BookInUse):
        book_service.delete_book(librarian, book.id)

    borrowing_service.return_book(patron, loan.id)
    book_service.delete_book(librarian, book.id)

    with pytest.raises(BookNotFound):
        book_service.get_book(book.id)
    assert borrowing_service.get_user_borrowing_history(patron) == []


def test_availability_snapshot(book_service, borrowing_service, librarian, make_user):
    book = book_service.add_book(librarian, DUNE)
    borrowing_service.borrow(make_user(), book.id)

    snapshot = book_service.availability_snapshot()

    assert snapshot == [
        {
            "id": book.id,
            "isbn": DUNE["isbn"],
            "title": "Dune",
            "total_copies": 3,
            "available_copies": 2,
        }
    ]


def test_book_record_serializes_dates(book_service, librarian):
    data = book_service.add_book(librarian, DUNE).to_dict()
    assert data["publication_date"] == "1965-08-01"
    assert data["genre"] == "FICTION"
