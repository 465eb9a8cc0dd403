"""
Entity store: engine/session setup, the transactional unit-of-work runner and
the handful of borrowing queries the lending rules depend on.

Services never hold a session between calls. Each operation hands a
``work(session)`` callable to :func:`run_in_transaction`, which commits on
success, rolls back on any error and translates driver failures into the
library's error taxonomy.
"""

import logging

from sqlalchemy import create_engine, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from .errors import ConflictError, StoreUnavailable
from .models import Base, Borrowing, BorrowingStatus

logger = logging.getLogger(__name__)

DEFAULT_RETRIES = 3


def create_store_engine(database_uri, echo=False):
    connect_args = {}
    if database_uri.startswith("sqlite"):
        # Flask serves requests from several threads; give writers time to
        # wait on SQLite's database lock instead of failing immediately.
        connect_args = {"check_same_thread": False, "timeout": 30}
    return create_engine(database_uri, echo=echo, future=True, connect_args=connect_args)


def create_session_factory(engine):
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


def run_in_transaction(session_factory, work, retries=DEFAULT_RETRIES, conflict_message=None):
    """
    Run ``work(session)`` as one atomic unit and return its result.

    An optimistic version conflict reruns the whole unit (validation
    included) up to ``retries`` more times. Integrity violations become a
    ConflictError, any other SQLAlchemy failure a StoreUnavailable.
    """
    attempt = 0
    while True:
        session = session_factory()
        try:
            result = work(session)
            session.commit()
            return result
        except StaleDataError as exc:
            session.rollback()
            attempt += 1
            if attempt > retries:
                logger.error("Giving up after %s optimistic lock conflicts", attempt)
                raise StoreUnavailable(
                    "The request conflicted with concurrent updates, please retry"
                ) from exc
            logger.info("Optimistic lock conflict, retrying (%s/%s)", attempt, retries)
        except IntegrityError as exc:
            session.rollback()
            logger.warning("Integrity violation: %s", exc.orig)
            raise ConflictError(conflict_message or "Conflicting record already exists") from exc
        except SQLAlchemyError as exc:
            session.rollback()
            logger.exception("Store failure")
            raise StoreUnavailable("The data store is unavailable") from exc
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


# ----------------- borrowing queries -----------------

def _active_clause():
    return (
        (Borrowing.status == BorrowingStatus.BORROWED)
        & Borrowing.return_date.is_(None)
    )


def count_active_borrowings(session, user_id):
    q = select(func.count(Borrowing.id)).where(
        (Borrowing.user_id == user_id) & _active_clause()
    )
    return session.execute(q).scalar_one()


def count_active_borrowings_for_book(session, book_id):
    q = select(func.count(Borrowing.id)).where(
        (Borrowing.book_id == book_id) & _active_clause()
    )
    return session.execute(q).scalar_one()


def count_overdue_borrowings(session, user_id, today):
    q = select(func.count(Borrowing.id)).where(
        (Borrowing.user_id == user_id)
        & (Borrowing.due_date < today)
        & Borrowing.return_date.is_(None)
    )
    return session.execute(q).scalar_one()


def has_active_borrowing(session, user_id, book_id):
    q = select(func.count(Borrowing.id)).where(
        (Borrowing.user_id == user_id)
        & (Borrowing.book_id == book_id)
        & _active_clause()
    )
    return session.execute(q).scalar_one() > 0


def count_borrowings_for_user(session, user_id):
    q = select(func.count(Borrowing.id)).where(Borrowing.user_id == user_id)
    return session.execute(q).scalar_one()


def find_overdue_borrowings(session, today):
    q = (
        select(Borrowing)
        .where((Borrowing.due_date < today) & Borrowing.return_date.is_(None))
        .order_by(Borrowing.due_date, Borrowing.id)
    )
    return session.execute(q).scalars().all()
