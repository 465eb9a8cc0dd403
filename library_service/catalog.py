import logging
import math

from sqlalchemy import func, select

from .borrowing import load_librarian
from .errors import BookInUse, BookNotFound, BookValidationError, DuplicateIsbn
from .models import Book, parse_genre
from .records import BookRecord
from .store import DEFAULT_RETRIES, count_active_borrowings_for_book, run_in_transaction
from .validation import clean_book_update, validate_book_input

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 10


class BookService:
    """Book inventory: librarian-managed catalog plus public lookups."""

    def __init__(self, session_factory, retries=DEFAULT_RETRIES):
        self.session_factory = session_factory
        self.retries = retries

    def _run(self, work, conflict_message=None):
        return run_in_transaction(
            self.session_factory, work, retries=self.retries, conflict_message=conflict_message
        )

    def add_book(self, actor_id, data):
        fields = validate_book_input(data)

        def work(session):
            load_librarian(session, actor_id, "Only librarians can add books")
            existing = session.execute(
                select(Book).where(Book.isbn == fields["isbn"])
            ).scalar_one_or_none()
            if existing:
                raise DuplicateIsbn("ISBN already exists")

            book = Book(available_copies=fields["total_copies"], **fields)
            session.add(book)
            session.flush()
            return BookRecord.from_model(book)

        record = self._run(work, conflict_message="ISBN already exists")
        logger.info("Added book %s (isbn=%s, copies=%s)", record.id, record.isbn, record.total_copies)
        return record

    def get_book(self, book_id):
        def work(session):
            book = session.get(Book, book_id)
            if not book:
                raise BookNotFound(f"Book not found with ID: {book_id}")
            return BookRecord.from_model(book)

        return self._run(work)

    def search_books(self, title=None, author=None, isbn=None, genre=None, page=0, size=DEFAULT_PAGE_SIZE):
        """
        Substring search by title/author/isbn and exact genre match.

        ``page`` is zero-based. Returns a page dict with ``content`` holding
        BookRecords and the usual paging counters.
        """
        page = max(int(page), 0)
        size = max(int(size), 1)
        genre = parse_genre(genre) if genre else None

        def work(session):
            q = select(Book)
            if title:
                q = q.where(Book.title.ilike(f"%{title}%"))
            if author:
                q = q.where(Book.author.ilike(f"%{author}%"))
            if isbn:
                q = q.where(Book.isbn.ilike(f"%{isbn}%"))
            if genre:
                q = q.where(Book.genre == genre)

            total = session.execute(
                select(func.count()).select_from(q.subquery())
            ).scalar_one()
            books = session.execute(
                q.order_by(Book.id).offset(page * size).limit(size)
            ).scalars().all()
            return {
                "content": [BookRecord.from_model(b) for b in books],
                "page": page,
                "size": size,
                "total_elements": total,
                "total_pages": math.ceil(total / size),
            }

        return self._run(work)

    def update_book(self, actor_id, book_id, data):
        changes = clean_book_update(data)

        def work(session):
            load_librarian(session, actor_id, "Only librarians can update books")
            book = session.execute(
                select(Book).where(Book.id == book_id).with_for_update()
            ).scalar_one_or_none()
            if not book:
                raise BookNotFound(f"Book not found with ID: {book_id}")

            new_isbn = changes.get("isbn")
            if new_isbn and new_isbn != book.isbn:
                taken = session.execute(
                    select(Book.id).where(Book.isbn == new_isbn)
                ).scalar_one_or_none()
                if taken is not None:
                    raise DuplicateIsbn("ISBN already exists")

            total = changes.pop("total_copies", None)
            if total is not None and total != book.total_copies:
                lent = count_active_borrowings_for_book(session, book.id)
                if total < lent:
                    raise BookValidationError(
                        f"Total copies cannot be less than the {lent} copies currently borrowed"
                    )
                book.total_copies = total
                book.available_copies = total - lent

            for field, value in changes.items():
                setattr(book, field, value)

            session.flush()
            return BookRecord.from_model(book)

        record = self._run(work, conflict_message="ISBN already exists")
        logger.info("Updated book %s", record.id)
        return record

    def delete_book(self, actor_id, book_id):
        def work(session):
            load_librarian(session, actor_id, "Only librarians can delete books")
            book = session.get(Book, book_id)
            if not book:
                raise BookNotFound(f"Book not found with ID: {book_id}")
            if count_active_borrowings_for_book(session, book.id) > 0:
                raise BookInUse("Book has active borrowings and cannot be deleted")
            session.delete(book)

        self._run(work)
        logger.info("Deleted book %s", book_id)

    def availability_snapshot(self):
        def work(session):
            books = session.execute(select(Book).order_by(Book.id)).scalars().all()
            return [
                {
                    "id": b.id,
                    "isbn": b.isbn,
                    "title": b.title,
                    "total_copies": b.total_copies,
                    "available_copies": b.available_copies,
                }
                for b in books
            ]

        return self._run(work)
