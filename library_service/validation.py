"""
Business-rule checks consumed before any mutation.

BorrowingValidator holds the lending rules. The chain in ``check_borrow``
runs against an open session so the borrowing engine can evaluate it inside
its own transaction, with the User and Book rows already locked. The input validators
below it clean request payloads for the catalog and user services.
"""

import re
from datetime import date

from sqlalchemy import select

from .errors import (
    AlreadyBorrowed,
    BookNotFound,
    BookUnavailable,
    BookValidationError,
    BorrowLimitReached,
    HasOverdueBooks,
    MissingField,
    RoleNotEligible,
    UserNotFound,
    UserValidationError,
)
from .models import Book, Role, User, parse_genre
from .store import (
    DEFAULT_RETRIES,
    count_active_borrowings,
    count_overdue_borrowings,
    has_active_borrowing,
    run_in_transaction,
)


MAX_ACTIVE_BORROWINGS = 3

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
PHONE_RE = re.compile(r"^(\+\d{1,3}[- ]?)?\d{10}$")
MIN_PASSWORD_LENGTH = 8

# Free-text fields must arrive as JSON strings; identifiers like isbn and
# phone may be sent as numbers.
BOOK_TEXT_FIELDS = ("title", "author")
USER_TEXT_FIELDS = ("name", "email", "password")


class BorrowingValidator:
    def __init__(
        self,
        session_factory,
        clock=date.today,
        max_active_borrowings=MAX_ACTIVE_BORROWINGS,
        retries=DEFAULT_RETRIES,
    ):
        self.session_factory = session_factory
        self.clock = clock
        self.max_active_borrowings = max_active_borrowings
        self.retries = retries

    def check_borrow(self, session, user_id, book_id, today, lock=False):
        """
        Evaluate the borrow rules in order and return ``(user, book)``.

        Identity checks come before availability checks so the first
        failure reported for a given state is always the same one. With
        ``lock`` the User and Book rows are read FOR UPDATE.
        """
        if user_id is None:
            raise MissingField("User ID cannot be null")
        if book_id is None:
            raise MissingField("Book ID cannot be null")

        q = select(User).where(User.id == user_id)
        if lock:
            q = q.with_for_update()
        user = session.execute(q).scalar_one_or_none()
        if user is None:
            raise UserNotFound(f"User not found with ID: {user_id}")

        if user.role == Role.LIBRARIAN:
            raise RoleNotEligible("Librarians cannot borrow books")

        if count_overdue_borrowings(session, user.id, today) > 0:
            raise HasOverdueBooks("User has overdue books and is not eligible to borrow")

        if count_active_borrowings(session, user.id) >= self.max_active_borrowings:
            raise BorrowLimitReached(
                f"User has reached the limit of {self.max_active_borrowings} active borrowings"
            )

        q = select(Book).where(Book.id == book_id)
        if lock:
            q = q.with_for_update()
        book = session.execute(q).scalar_one_or_none()
        if book is None:
            raise BookNotFound(f"Book not found with ID: {book_id}")

        if book.available_copies <= 0:
            raise BookUnavailable("Book is not available for borrowing")

        if has_active_borrowing(session, user.id, book.id):
            raise AlreadyBorrowed("User already has an active borrowing of this book")

        return user, book

    def validate_borrow_request(self, user_id, book_id):
        """Run the full chain read-only; raises on the first violated rule."""
        today = self.clock()

        def work(session):
            self.check_borrow(session, user_id, book_id, today)

        run_in_transaction(self.session_factory, work, retries=self.retries)

    def is_eligible(self, user_id):
        """True when the user has no overdue borrowings."""
        today = self.clock()

        def work(session):
            user = session.get(User, user_id)
            if user is None:
                raise UserNotFound(f"User not found with ID: {user_id}")
            return count_overdue_borrowings(session, user.id, today) == 0

        return run_in_transaction(self.session_factory, work, retries=self.retries)


# ----------------- input validation -----------------

def _blank(value):
    return value is None or not str(value).strip()


def _require_strings(data, fields, error_cls):
    for field in fields:
        value = data.get(field)
        if value is not None and not isinstance(value, str):
            raise error_cls(f"{field} must be a string")


def parse_publication_date(value):
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        raise BookValidationError(f"Invalid publication date: {value}")


def parse_total_copies(value):
    try:
        copies = int(value)
    except (TypeError, ValueError):
        raise BookValidationError(f"Invalid total copies: {value}")
    if copies < 0:
        raise BookValidationError(BookValidationError.NEGATIVE_COPIES)
    return copies


def validate_book_input(data):
    """Validate a new-book payload and return the cleaned field values."""
    _require_strings(data, BOOK_TEXT_FIELDS, BookValidationError)
    if _blank(data.get("title")):
        raise BookValidationError(BookValidationError.EMPTY_TITLE)
    if _blank(data.get("author")):
        raise BookValidationError(BookValidationError.EMPTY_AUTHOR)
    if _blank(data.get("isbn")):
        raise BookValidationError(BookValidationError.EMPTY_ISBN)
    if _blank(data.get("genre")):
        raise BookValidationError(BookValidationError.EMPTY_GENRE)
    if data.get("publication_date") is None:
        raise BookValidationError(BookValidationError.EMPTY_PUBLICATION_DATE)

    return {
        "title": data["title"].strip(),
        "author": data["author"].strip(),
        "isbn": str(data["isbn"]).strip(),
        "genre": parse_genre(data["genre"]),
        "publication_date": parse_publication_date(data["publication_date"]),
        "total_copies": parse_total_copies(data.get("total_copies", 0)),
    }


def clean_book_update(data):
    """Keep only the non-blank fields of a partial book update."""
    _require_strings(data, BOOK_TEXT_FIELDS, BookValidationError)
    changes = {}
    for field in ("title", "author", "isbn"):
        if not _blank(data.get(field)):
            changes[field] = str(data[field]).strip()
    if not _blank(data.get("genre")):
        changes["genre"] = parse_genre(data["genre"])
    if data.get("publication_date") is not None:
        changes["publication_date"] = parse_publication_date(data["publication_date"])
    if data.get("total_copies") is not None:
        changes["total_copies"] = parse_total_copies(data["total_copies"])
    return changes


def validate_user_input(data):
    _require_strings(data, USER_TEXT_FIELDS, UserValidationError)
    if _blank(data.get("name")):
        raise UserValidationError(UserValidationError.EMPTY_NAME)
    if _blank(data.get("email")):
        raise UserValidationError(UserValidationError.EMPTY_EMAIL)
    if not EMAIL_RE.match(data["email"].strip()):
        raise UserValidationError(UserValidationError.INVALID_EMAIL_FORMAT)
    if _blank(data.get("phone")):
        raise UserValidationError(UserValidationError.EMPTY_PHONE)
    if not PHONE_RE.match(str(data["phone"]).strip()):
        raise UserValidationError(UserValidationError.INVALID_PHONE)


def validate_registration(data):
    validate_user_input(data)
    password = data.get("password") or ""
    if len(password) < MIN_PASSWORD_LENGTH:
        raise UserValidationError(UserValidationError.SHORT_PASSWORD)


def clean_user_update(data):
    """Keep only the non-blank fields of a partial profile update."""
    _require_strings(data, USER_TEXT_FIELDS, UserValidationError)
    changes = {}
    for field in ("name", "email", "phone"):
        if not _blank(data.get(field)):
            changes[field] = str(data[field]).strip()
    if "email" in changes and not EMAIL_RE.match(changes["email"]):
        raise UserValidationError(UserValidationError.INVALID_EMAIL_FORMAT)
    if "phone" in changes and not PHONE_RE.match(changes["phone"]):
        raise UserValidationError(UserValidationError.INVALID_PHONE)
    if not _blank(data.get("password")):
        password = data["password"]
        if len(password) < MIN_PASSWORD_LENGTH:
            raise UserValidationError(UserValidationError.SHORT_PASSWORD)
        changes["password"] = password
    if not _blank(data.get("role")):
        role = str(data["role"]).strip().upper()
        if role not in Role.ALL:
            raise UserValidationError(f"Invalid role: {data['role']}")
        changes["role"] = role
    return changes
