"""
Reporting Aggregator for ShelfDesk

Read-only projections over the transaction log:
- Usage by author / publisher / category
- Monthly usage split by borrower role
- Defaulters with their late-return counts
- Desk dashboard totals

Nothing here is persisted; every report is recomputed from a
LibraryState. Transactions pointing at a deleted book or user, or
missing their borrow date, are left out of the aggregates they cannot
contribute to.
"""

from collections import Counter, defaultdict
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from loguru import logger

from shelfdesk.clock import Clock, ensure_utc, utcnow
from shelfdesk.circulation.errors import InvalidInputError
from shelfdesk.reporting.defaulters import DEFAULT_LATE_RETURN_THRESHOLD, late_counts
from shelfdesk.storage.models import Role
from shelfdesk.storage.repository import LibraryRepository, LibraryState

DIMENSIONS = ("author", "publisher", "category")
UNKNOWN = "Unknown"


@dataclass
class UsageCount:
    """Transactions for one value of a book dimension."""

    value: str
    count: int

    def to_dict(self) -> dict:
        return {"value": self.value, "count": self.count}


class ReportAggregator:
    """
    Pure report builder.

    Usage:
        aggregator = ReportAggregator(late_return_threshold=2)
        state = repo.load_state()
        reports = aggregator.build(state, top=5)
    """

    def __init__(self, late_return_threshold: int = DEFAULT_LATE_RETURN_THRESHOLD):
        self.late_return_threshold = late_return_threshold

    def usage_by(self, state: LibraryState, dimension: str) -> list[UsageCount]:
        """
        Count transactions by a book attribute.

        Args:
            state: Books, users and transactions
            dimension: "author", "publisher" or "category"

        Returns:
            Counts sorted by count desc, then value asc
        """
        if dimension not in DIMENSIONS:
            raise InvalidInputError(
                "Unknown report dimension",
                detail=f"'{dimension}' is not one of {', '.join(DIMENSIONS)}",
            )

        books = {book.id: book for book in state.books}
        counts: Counter = Counter()
        skipped = 0

        for txn in state.transactions:
            book = books.get(txn.book_id)
            if book is None:
                skipped += 1
                continue
            value = (getattr(book, dimension) or "").strip() or UNKNOWN
            counts[value] += 1

        if skipped:
            logger.debug(f"usage_by({dimension}) skipped {skipped} transaction(s) with no book")

        return [
            UsageCount(value=value, count=count)
            for value, count in sorted(counts.items(), key=lambda item: (-item[1], item[0]))
        ]

    def monthly_usage(self, state: LibraryState) -> list[dict[str, Any]]:
        """Transactions per borrow month, split by role, newest month first."""
        roles = {user.id: user.role for user in state.users}
        months: dict[tuple[int, int], Counter] = defaultdict(Counter)
        skipped = 0

        for txn in state.transactions:
            role = roles.get(txn.user_id)
            if role is None or txn.borrow_date is None:
                skipped += 1
                continue
            borrowed = ensure_utc(txn.borrow_date)
            months[(borrowed.year, borrowed.month)][role] += 1

        if skipped:
            logger.debug(f"monthly_usage skipped {skipped} transaction(s)")

        rows = []
        for (year, month), counts in sorted(months.items(), reverse=True):
            student = counts.get(Role.STUDENT, 0)
            staff = counts.get(Role.STAFF, 0)
            rows.append({
                "period": f"{year:04d}-{month:02d}",
                "year": year,
                "month": month,
                "student": student,
                "staff": staff,
                "total": student + staff,
            })
        return rows

    def defaulters(self, state: LibraryState) -> list[dict[str, Any]]:
        """Users at or above the late-return threshold, most late returns first."""
        counts = late_counts(state.transactions)
        rows = [
            {
                "user_id": user.id,
                "name": user.name,
                "role": user.role.value,
                "late_count": counts[user.id],
            }
            for user in state.users
            if counts.get(user.id, 0) >= self.late_return_threshold
        ]
        rows.sort(key=lambda row: (-row["late_count"], row["name"], row["user_id"]))
        return rows

    def dashboard(self, state: LibraryState, now: datetime) -> dict[str, Any]:
        """Front-desk totals at `now`."""
        now = ensure_utc(now)
        total = sum(book.total_copies for book in state.books)
        available = sum(book.available_copies for book in state.books)

        open_loans = [txn for txn in state.transactions if txn.is_open]
        overdue = [txn for txn in open_loans if txn.due_date is not None and txn.is_overdue(now)]
        fines = sum((Decimal(txn.fine_amount) for txn in state.transactions), Decimal("0.00"))

        return {
            "total_titles": len(state.books),
            "total_copies": total,
            "available_copies": available,
            "borrowed_copies": total - available,
            "open_transactions": len(open_loans),
            "overdue_transactions": len(overdue),
            "total_fines": fines,
            "total_users": len(state.users),
            "students": sum(1 for user in state.users if user.role == Role.STUDENT),
            "staff": sum(1 for user in state.users if user.role == Role.STAFF),
            "defaulters": sum(1 for user in state.users if user.is_defaulter),
        }

    def build(self, state: LibraryState, top: Optional[int] = None) -> dict[str, Any]:
        """
        All circulation reports.

        Args:
            state: Books, users and transactions
            top: Keep only the first N rows of each usage breakdown

        Returns:
            by_author, by_publisher, by_category, by_month and defaulters
        """
        if top is not None and top < 1:
            raise InvalidInputError("top must be at least 1", detail=str(top))

        def limit(rows: list) -> list:
            return rows[:top] if top else rows

        return {
            "by_author": limit(self.usage_by(state, "author")),
            "by_publisher": limit(self.usage_by(state, "publisher")),
            "by_category": limit(self.usage_by(state, "category")),
            "by_month": self.monthly_usage(state),
            "defaulters": self.defaulters(state),
        }


class LibraryReports:
    """Reports over the current contents of a repository."""

    def __init__(
        self,
        repository: LibraryRepository,
        aggregator: Optional[ReportAggregator] = None,
        clock: Clock = utcnow,
    ):
        self.repository = repository
        self.aggregator = aggregator or ReportAggregator()
        self.clock = clock

    def get_reports(self, top: Optional[int] = None) -> dict[str, Any]:
        return self.aggregator.build(self.repository.load_state(), top=top)

    def dashboard(self) -> dict[str, Any]:
        return self.aggregator.dashboard(self.repository.load_state(), self.clock())
