import threading

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from library_service.borrowing import BorrowingService
from library_service.errors import (
    BookUnavailable,
    BorrowLimitReached,
    ConflictError,
    StoreUnavailable,
)
from library_service.models import Book
from library_service.store import run_in_transaction


def test_commits_and_returns_result(session_factory, make_user):
    user_id = make_user()
    assert run_in_transaction(session_factory, lambda session: user_id) == user_id


def test_stale_data_is_retried(session_factory):
    calls = []

    def work(session):
        calls.append(1)
        if len(calls) < 3:
            raise StaleDataError("version mismatch")
        return "done"

    assert run_in_transaction(session_factory, work, retries=3) == "done"
    assert len(calls) == 3


def test_stale_data_gives_up_after_retries(session_factory):
    calls = []

    def work(session):
        calls.append(1)
        raise StaleDataError("version mismatch")

    with pytest.raises(StoreUnavailable):
        run_in_transaction(session_factory, work, retries=2)
    assert len(calls) == 3


def test_driver_failure_becomes_store_unavailable(session_factory):
    def work(session):
        raise OperationalError("SELECT 1", {}, Exception("database is locked"))

    with pytest.raises(StoreUnavailable):
        run_in_transaction(session_factory, work)


def test_integrity_error_becomes_conflict(session_factory):
    def work(session):
        raise IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed"))

    with pytest.raises(ConflictError, match="ISBN already exists"):
        run_in_transaction(session_factory, work, conflict_message="ISBN already exists")


def test_business_errors_pass_through_and_roll_back(session_factory, make_book, book_state):
    book_id = make_book(copies=2)

    def work(session):
        session.get(Book, book_id).available_copies = 0
        session.flush()
        raise BookUnavailable("nope")

    with pytest.raises(BookUnavailable):
        run_in_transaction(session_factory, work)
    assert book_state(book_id) == (2, 2)


def test_concurrent_borrowers_of_last_copy(session_factory, clock, make_user, make_book, book_state):
    patrons = [make_user() for _ in range(5)]
    book_id = make_book(copies=1)
    service = BorrowingService(session_factory, clock=clock, retries=5)

    barrier = threading.Barrier(len(patrons))
    successes, failures = [], []

    def attempt(patron):
        barrier.wait()
        try:
            successes.append(service.borrow(patron, book_id))
        except Exception as exc:
            failures.append(exc)

    threads = [threading.Thread(target=attempt, args=(p,)) for p in patrons]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(successes) == 1
    assert len(failures) == 4
    assert all(isinstance(exc, BookUnavailable) for exc in failures)
    assert book_state(book_id) == (1, 0)


def test_one_patron_borrowing_concurrently_respects_limit(
    session_factory, clock, make_user, make_book, borrowing_count
):
    patron = make_user()
    books = [make_book(copies=1) for _ in range(6)]
    service = BorrowingService(session_factory, clock=clock, retries=5)

    barrier = threading.Barrier(len(books))
    successes, failures = [], []

    def attempt(book_id):
        barrier.wait()
        try:
            successes.append(service.borrow(patron, book_id))
        except Exception as exc:
            failures.append(exc)

    threads = [threading.Thread(target=attempt, args=(b,)) for b in books]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(successes) == 3
    assert len(failures) == 3
    assert all(isinstance(exc, BorrowLimitReached) for exc in failures)
    assert borrowing_count() == 3
