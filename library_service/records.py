"""
Boundary types handed out by the services.

Records are built while the session is still open, so callers never touch a
detached ORM object. ``to_dict`` gives the JSON shape the API returns.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional


def _iso(value):
    return value.isoformat() if value is not None else None


@dataclass(frozen=True)
class UserRecord:
    id: int
    name: str
    email: str
    phone: Optional[str]
    role: str
    created_at: datetime

    @classmethod
    def from_model(cls, user) -> "UserRecord":
        return cls(
            id=user.id,
            name=user.name,
            email=user.email,
            phone=user.phone,
            role=user.role,
            created_at=user.created_at,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "role": self.role,
            "created_at": _iso(self.created_at),
        }


@dataclass(frozen=True)
class BookRecord:
    id: int
    title: str
    author: str
    isbn: str
    genre: str
    publication_date: Optional[date]
    total_copies: int
    available_copies: int
    created_at: datetime

    @classmethod
    def from_model(cls, book) -> "BookRecord":
        return cls(
            id=book.id,
            title=book.title,
            author=book.author,
            isbn=book.isbn,
            genre=book.genre,
            publication_date=book.publication_date,
            total_copies=book.total_copies,
            available_copies=book.available_copies,
            created_at=book.created_at,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "isbn": self.isbn,
            "genre": self.genre,
            "publication_date": _iso(self.publication_date),
            "total_copies": self.total_copies,
            "available_copies": self.available_copies,
            "created_at": _iso(self.created_at),
        }


@dataclass(frozen=True)
class BorrowingRecord:
    id: int
    user_id: int
    user_name: str
    book_id: int
    book_title: str
    book_author: str
    borrow_date: date
    due_date: date
    return_date: Optional[date]
    status: str
    created_at: datetime

    @classmethod
    def from_model(cls, borrowing) -> "BorrowingRecord":
        return cls(
            id=borrowing.id,
            user_id=borrowing.user.id,
            user_name=borrowing.user.name,
            book_id=borrowing.book.id,
            book_title=borrowing.book.title,
            book_author=borrowing.book.author,
            borrow_date=borrowing.borrow_date,
            due_date=borrowing.due_date,
            return_date=borrowing.return_date,
            status=borrowing.status,
            created_at=borrowing.created_at,
        )

    def is_overdue(self, today: date) -> bool:
        return self.return_date is None and self.due_date < today

    def overdue_days(self, today: date) -> int:
        """Whole days past the due date; 0 when not overdue."""
        return max(0, (today - self.due_date).days)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "user_name": self.user_name,
            "book_id": self.book_id,
            "book_title": self.book_title,
            "book_author": self.book_author,
            "borrow_date": _iso(self.borrow_date),
            "due_date": _iso(self.due_date),
            "return_date": _iso(self.return_date),
            "status": self.status,
            "created_at": _iso(self.created_at),
        }
