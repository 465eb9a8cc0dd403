"""
Overdue tracking and the librarian's overdue report.

Nothing is cached: every call reads the store and compares against the
injected clock, so results move with the calendar.
"""

import logging
from datetime import date

from .borrowing import load_librarian
from .records import BorrowingRecord
from .store import DEFAULT_RETRIES, find_overdue_borrowings, run_in_transaction

logger = logging.getLogger(__name__)

NO_OVERDUE_BOOKS = "No overdue books currently."

REPORT_TITLE = "OVERDUE BOOKS REPORT"
REPORT_COLUMNS = "Book Title | User Name | Borrow Date | Due Date | Overdue Days | Status"


class OverdueTracker:
    def __init__(self, session_factory, clock=date.today, retries=DEFAULT_RETRIES):
        self.session_factory = session_factory
        self.clock = clock
        self.retries = retries

    def get_overdue_books(self):
        return self._overdue_on(self.clock())

    def _overdue_on(self, today):
        def work(session):
            return [
                BorrowingRecord.from_model(b)
                for b in find_overdue_borrowings(session, today)
            ]

        return run_in_transaction(self.session_factory, work, retries=self.retries)

    def generate_overdue_report(self, librarian_id):
        def work(session):
            load_librarian(
                session, librarian_id, "Only librarians can generate overdue book reports"
            )

        run_in_transaction(self.session_factory, work, retries=self.retries)

        today = self.clock()
        overdue = self._overdue_on(today)
        logger.info("Overdue report for librarian %s: %s entries", librarian_id, len(overdue))
        if not overdue:
            return NO_OVERDUE_BOOKS
        return render_report(overdue, today)


def render_report(records, today):
    lines = [
        REPORT_TITLE,
        "-" * 22,
        f"Total Overdue Books: {len(records)}",
        "",
        REPORT_COLUMNS,
        "-" * 60,
    ]
    for r in records:
        lines.append(
            f"{r.book_title} | {r.user_name} | {r.borrow_date.isoformat()} | "
            f"{r.due_date.isoformat()} | {r.overdue_days(today)} days | {r.status}"
        )
    lines.append("")
    lines.append(f"Last Updated: {today.isoformat()}")
    return "\n".join(lines)
