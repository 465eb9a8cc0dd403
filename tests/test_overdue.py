from datetime import timedelta

import pytest

from conftest import TODAY
from library_service.errors import NotLibrarian, UserNotFound
from library_service.overdue import NO_OVERDUE_BOOKS, render_report


def test_overdue_set(overdue_tracker, make_user, make_book, add_borrowing):
    patron = make_user()
    late = add_borrowing(patron, make_book(), TODAY - timedelta(days=20))
    add_borrowing(patron, make_book(), TODAY - timedelta(days=14))  # due today
    add_borrowing(patron, make_book(), TODAY - timedelta(days=3))  # not yet due
    # returned before the due date
    add_borrowing(
        patron, make_book(), TODAY - timedelta(days=30), return_date=TODAY - timedelta(days=20)
    )
    # returned after the due date
    add_borrowing(
        patron, make_book(), TODAY - timedelta(days=30), return_date=TODAY - timedelta(days=2)
    )

    overdue = overdue_tracker.get_overdue_books()

    assert [r.id for r in overdue] == [late]


def test_overdue_follows_the_clock(overdue_tracker, borrowing_service, make_user, make_book, clock):
    patron = make_user()
    record = borrowing_service.borrow(patron, make_book())
    assert overdue_tracker.get_overdue_books() == []

    clock.advance(15)
    assert [r.id for r in overdue_tracker.get_overdue_books()] == [record.id]

    borrowing_service.return_book(patron, record.id)
    assert overdue_tracker.get_overdue_books() == []


def test_report_lists_overdue_days(overdue_tracker, librarian, make_user, make_book, add_borrowing):
    alice, bob = make_user("Alice"), make_user("Bob")
    add_borrowing(
        alice,
        make_book("Dune"),
        TODAY - timedelta(days=17),
        due_date=TODAY - timedelta(days=3),
    )
    add_borrowing(
        bob,
        make_book("Emma"),
        TODAY - timedelta(days=24),
        due_date=TODAY - timedelta(days=10),
    )

    report = overdue_tracker.generate_overdue_report(librarian)
    lines = report.splitlines()

    assert "Total Overdue Books: 2" in lines
    dune = next(line for line in lines if line.startswith("Dune"))
    emma = next(line for line in lines if line.startswith("Emma"))
    assert dune == (
        f"Dune | Alice | {TODAY - timedelta(days=17)} | {TODAY - timedelta(days=3)}"
        " | 3 days | BORROWED"
    )
    assert "| 10 days |" in emma
    assert "Bob" in emma
    # oldest due date first
    assert lines.index(emma) < lines.index(dune)


def test_report_sentinel_when_nothing_is_overdue(overdue_tracker, librarian):
    assert overdue_tracker.generate_overdue_report(librarian) == NO_OVERDUE_BOOKS


def test_report_requires_librarian(overdue_tracker, make_user):
    with pytest.raises(NotLibrarian):
        overdue_tracker.generate_overdue_report(make_user())
    with pytest.raises(UserNotFound):
        overdue_tracker.generate_overdue_report(999)


def test_render_report_layout(overdue_tracker, make_user, make_book, add_borrowing):
    add_borrowing(make_user("Cem"), make_book("Ulysses"), TODAY - timedelta(days=15))
    records = overdue_tracker.get_overdue_books()

    report = render_report(records, TODAY)

    assert report.splitlines()[0] == "OVERDUE BOOKS REPORT"
    assert "Book Title | User Name | Borrow Date | Due Date | Overdue Days | Status" in report
    assert "| 1 days |" in report
    assert report.endswith(f"Last Updated: {TODAY.isoformat()}")
