import itertools
from datetime import date, timedelta

import pytest

from library_service.borrowing import BorrowingService
from library_service.catalog import BookService
from library_service.models import Book, Borrowing, BorrowingStatus, Genre, Role, User
from library_service.overdue import OverdueTracker
from library_service.store import create_session_factory, create_store_engine
from library_service.users import UserService
from library_service.validation import BorrowingValidator

TODAY = date(2026, 3, 15)


class FakeClock:
    def __init__(self, today=TODAY):
        self.today = today

    def __call__(self):
        return self.today

    def advance(self, days):
        self.today += timedelta(days=days)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def session_factory(tmp_path, request):
    # Each test gets its own database file
    db_file = tmp_path / f"test_{request.node.name}.db"
    engine = create_store_engine(f"sqlite:///{db_file}")
    factory = create_session_factory(engine)
    yield factory
    engine.dispose()


@pytest.fixture
def borrowing_service(session_factory, clock):
    return BorrowingService(session_factory, clock=clock)


@pytest.fixture
def validator(session_factory, clock):
    return BorrowingValidator(session_factory, clock=clock)


@pytest.fixture
def overdue_tracker(session_factory, clock):
    return OverdueTracker(session_factory, clock=clock)


@pytest.fixture
def book_service(session_factory):
    return BookService(session_factory)


@pytest.fixture
def user_service(session_factory):
    return UserService(session_factory)


@pytest.fixture
def make_user(session_factory):
    counter = itertools.count(1)

    def _make(name=None, role=Role.PATRON):
        n = next(counter)
        session = session_factory()
        try:
            user = User(
                name=name or f"User {n}",
                email=f"user{n}@example.com",
                password_hash="not-a-real-hash",
                phone="5550000000",
                role=role,
            )
            session.add(user)
            session.commit()
            return user.id
        finally:
            session.close()

    return _make


@pytest.fixture
def librarian(make_user):
    return make_user("Lena Librarian", Role.LIBRARIAN)


@pytest.fixture
def make_book(session_factory):
    counter = itertools.count(1)

    def _make(title=None, copies=1, available=None, genre=Genre.FICTION):
        n = next(counter)
        session = session_factory()
        try:
            book = Book(
                title=title or f"Book {n}",
                author=f"Author {n}",
                isbn=f"978-{n:010d}",
                genre=genre,
                publication_date=date(2000, 1, 1),
                total_copies=copies,
                available_copies=copies if available is None else available,
            )
            session.add(book)
            session.commit()
            return book.id
        finally:
            session.close()

    return _make


@pytest.fixture
def add_borrowing(session_factory):
    """Insert a borrowing directly, e.g. one that is already past due."""

    def _add(user_id, book_id, borrow_date, due_date=None, return_date=None):
        session = session_factory()
        try:
            book = session.get(Book, book_id)
            borrowing = Borrowing(
                user_id=user_id,
                book_id=book_id,
                borrow_date=borrow_date,
                due_date=due_date or borrow_date + timedelta(days=14),
                return_date=return_date,
                status=BorrowingStatus.RETURNED if return_date else BorrowingStatus.BORROWED,
            )
            if return_date is None:
                book.available_copies -= 1
            session.add(borrowing)
            session.commit()
            return borrowing.id
        finally:
            session.close()

    return _add


@pytest.fixture
def book_state(session_factory):
    """Return (total_copies, available_copies) as currently stored."""

    def _state(book_id):
        session = session_factory()
        try:
            book = session.get(Book, book_id)
            return book.total_copies, book.available_copies
        finally:
            session.close()

    return _state


@pytest.fixture
def borrowing_count(session_factory):
    def _count():
        session = session_factory()
        try:
            return session.query(Borrowing).count()
        finally:
            session.close()

    return _count
