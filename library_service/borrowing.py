"""
Borrowing lifecycle engine.

A Borrowing moves BORROWED -> RETURNED exactly once. Each transition runs as
a single unit of work over the Borrowing and its Book's copy counters. A
borrow also updates the borrowing User. Both the User and the Book row are
read FOR UPDATE and carry an optimistic version, so neither two borrowers
racing for the last copy nor one user borrowing several books at once can
get past the rules twice.
"""

import logging
from datetime import date, timedelta

from sqlalchemy import select

from .errors import (
    AlreadyReturned,
    BorrowingNotFound,
    BorrowingValidationError,
    NotAuthorized,
    NotLibrarian,
    UserNotFound,
)
from .models import Book, Borrowing, BorrowingStatus, Role, User
from .records import BorrowingRecord
from .store import DEFAULT_RETRIES, run_in_transaction
from .validation import MAX_ACTIVE_BORROWINGS, BorrowingValidator

logger = logging.getLogger(__name__)

LOAN_PERIOD_DAYS = 14


def require_role(user, role, message=None):
    """Raise NotLibrarian unless ``user`` holds ``role``."""
    if user.role != role:
        raise NotLibrarian(message or f"Only {role.lower()}s can perform this action")


def load_user(session, user_id):
    user = session.get(User, user_id)
    if user is None:
        raise UserNotFound(f"User not found with ID: {user_id}")
    return user


def load_librarian(session, librarian_id, message=None):
    user = load_user(session, librarian_id)
    require_role(user, Role.LIBRARIAN, message)
    return user


class BorrowingService:
    def __init__(
        self,
        session_factory,
        clock=date.today,
        loan_period_days=LOAN_PERIOD_DAYS,
        max_active_borrowings=MAX_ACTIVE_BORROWINGS,
        retries=DEFAULT_RETRIES,
    ):
        self.session_factory = session_factory
        self.clock = clock
        self.loan_period = timedelta(days=loan_period_days)
        self.retries = retries
        self.validator = BorrowingValidator(
            session_factory,
            clock=clock,
            max_active_borrowings=max_active_borrowings,
            retries=retries,
        )

    def _run(self, work):
        return run_in_transaction(self.session_factory, work, retries=self.retries)

    def borrow(self, user_id, book_id):
        today = self.clock()

        def work(session):
            user, book = self.validator.check_borrow(
                session, user_id, book_id, today, lock=True
            )
            book.available_copies -= 1
            user.borrow_count += 1
            borrowing = Borrowing(
                user=user,
                book=book,
                borrow_date=today,
                due_date=today + self.loan_period,
                status=BorrowingStatus.BORROWED,
            )
            session.add(borrowing)
            session.flush()
            return BorrowingRecord.from_model(borrowing)

        try:
            record = self._run(work)
        except BorrowingValidationError as exc:
            logger.warning(
                "Borrow rejected user=%s book=%s: %s", user_id, book_id, exc.message
            )
            raise

        logger.info(
            "User %s borrowed book %s (borrowing %s, due %s)",
            record.user_id,
            record.book_id,
            record.id,
            record.due_date,
        )
        return record

    def return_book(self, user_id, borrowing_id):
        today = self.clock()

        def work(session):
            borrowing = session.execute(
                select(Borrowing).where(Borrowing.id == borrowing_id).with_for_update()
            ).scalar_one_or_none()
            if borrowing is None:
                raise BorrowingNotFound(f"Borrowing record not found with ID: {borrowing_id}")

            if borrowing.user_id != user_id:
                raise NotAuthorized("Only the borrower can return this book")

            if borrowing.status == BorrowingStatus.RETURNED or borrowing.return_date is not None:
                raise AlreadyReturned("This borrowing has already been returned")

            book = session.execute(
                select(Book).where(Book.id == borrowing.book_id).with_for_update()
            ).scalar_one()

            borrowing.status = BorrowingStatus.RETURNED
            borrowing.return_date = today
            if book.available_copies < book.total_copies:
                book.available_copies += 1
            else:
                logger.warning(
                    "Book %s already has all %s copies available; not incrementing",
                    book.id,
                    book.total_copies,
                )

            session.flush()
            return BorrowingRecord.from_model(borrowing)

        record = self._run(work)
        logger.info("User %s returned borrowing %s", user_id, record.id)
        return record

    def get_user_borrowing_history(self, user_id):
        def work(session):
            user = load_user(session, user_id)
            q = (
                select(Borrowing)
                .where(Borrowing.user_id == user.id)
                .order_by(Borrowing.borrow_date, Borrowing.id)
            )
            return [BorrowingRecord.from_model(b) for b in session.execute(q).scalars()]

        return self._run(work)

    def get_all_borrowing_history(self, librarian_id):
        def work(session):
            load_librarian(
                session, librarian_id, "Only librarians can view all borrowing history"
            )
            q = select(Borrowing).order_by(Borrowing.borrow_date, Borrowing.id)
            return [BorrowingRecord.from_model(b) for b in session.execute(q).scalars()]

        return self._run(work)
