# library_service/models.py
from datetime import datetime

from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy import (
    Column,
    Integer,
    String,
    Date,
    DateTime,
    Enum,
    ForeignKey,
)

from .errors import BookValidationError

Base = declarative_base()


class Role:
    LIBRARIAN = "LIBRARIAN"
    PATRON = "PATRON"

    ALL = (LIBRARIAN, PATRON)


class Genre:
    FICTION = "FICTION"
    NON_FICTION = "NON_FICTION"
    SCIENCE = "SCIENCE"
    TECHNOLOGY = "TECHNOLOGY"
    HISTORY = "HISTORY"
    FANTASY = "FANTASY"
    BIOGRAPHY = "BIOGRAPHY"
    OTHER = "OTHER"

    ALL = (
        FICTION,
        NON_FICTION,
        SCIENCE,
        TECHNOLOGY,
        HISTORY,
        FANTASY,
        BIOGRAPHY,
        OTHER,
    )


class BorrowingStatus:
    # PENDING is reserved; borrow() creates records directly as BORROWED.
    PENDING = "PENDING"
    BORROWED = "BORROWED"
    RETURNED = "RETURNED"

    ALL = (PENDING, BORROWED, RETURNED)


def parse_genre(value):
    """Case-insensitive genre lookup ("science" -> "SCIENCE")."""
    normalized = str(value or "").strip().upper()
    if normalized not in Genre.ALL:
        raise BookValidationError(f"Invalid genre specified: {value}")
    return normalized


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    phone = Column(String(32))
    role = Column(Enum(*Role.ALL, name="user_role"), nullable=False, default=Role.PATRON)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    # Incremented by every borrow so concurrent borrows by one user collide
    # on the version check below.
    borrow_count = Column(Integer, nullable=False, default=0)
    version = Column(Integer, nullable=False)

    borrowings = relationship(
        "Borrowing", back_populates="user", cascade="all, delete-orphan"
    )

    __mapper_args__ = {"version_id_col": version}


class Book(Base):
    __tablename__ = "books"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(255), nullable=False)
    author = Column(String(255), nullable=False)
    isbn = Column(String(20), unique=True, nullable=False)
    genre = Column(Enum(*Genre.ALL, name="book_genre"), nullable=False)
    publication_date = Column(Date)
    total_copies = Column(Integer, nullable=False, default=0)
    available_copies = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    # Bumped on every UPDATE; a stale version aborts the flush.
    version = Column(Integer, nullable=False)

    borrowings = relationship(
        "Borrowing", back_populates="book", cascade="all, delete-orphan"
    )

    __mapper_args__ = {"version_id_col": version}


class Borrowing(Base):
    __tablename__ = "borrowings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    book_id = Column(Integer, ForeignKey("books.id"), nullable=False, index=True)
    borrow_date = Column(Date, nullable=False)
    due_date = Column(Date, nullable=False)
    return_date = Column(Date)
    status = Column(
        Enum(*BorrowingStatus.ALL, name="borrowing_status"),
        nullable=False,
        default=BorrowingStatus.BORROWED,
    )
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    user = relationship("User", back_populates="borrowings")
    book = relationship("Book", back_populates="borrowings")
