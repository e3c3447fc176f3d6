"""
Unit tests for the reporting aggregator.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from shelfdesk.circulation.errors import InvalidInputError
from shelfdesk.reporting.aggregator import LibraryReports, ReportAggregator
from shelfdesk.storage.models import Role
from shelfdesk.storage.repository import LibraryState, StoredBook, StoredTransaction, StoredUser


def at(year, month, day=1):
    return datetime(year, month, day, 10, 0, tzinfo=timezone.utc)


def record(id, book_id, user_id, borrowed, returned_after=None, fine="0.00"):
    due = borrowed + timedelta(days=7)
    return StoredTransaction(
        id=id,
        book_id=book_id,
        user_id=user_id,
        borrow_date=borrowed,
        due_date=due,
        return_date=borrowed + returned_after if returned_after is not None else None,
        fine_amount=Decimal(fine),
    )


@pytest.fixture
def state() -> LibraryState:
    books = [
        StoredBook(id="b1", title="Dune", author="Frank Herbert", publisher="Chilton",
                   category="Science Fiction", total_copies=2, available_copies=1),
        StoredBook(id="b2", title="Emma", author="Jane Austen", publisher="Murray",
                   category="Classics", total_copies=1, available_copies=1),
        StoredBook(id="b3", title="Persuasion", author="Jane Austen", publisher="",
                   category="Classics", total_copies=1, available_copies=0),
    ]
    users = [
        StoredUser(id="u1", name="Ada", role=Role.STUDENT, is_defaulter=True),
        StoredUser(id="u2", name="Grace", role=Role.STAFF),
        StoredUser(id="u3", name="Alan", role=Role.STUDENT),
    ]
    transactions = [
        record("t1", "b1", "u1", at(2024, 1, 5), timedelta(days=9), "1.00"),
        record("t2", "b2", "u1", at(2024, 1, 20), timedelta(days=8), "0.50"),
        record("t3", "b3", "u2", at(2024, 2, 3), timedelta(days=3)),
        record("t4", "b2", "u3", at(2024, 2, 10), timedelta(days=12), "2.50"),
        record("t5", "b1", "u2", at(2024, 3, 1)),
        record("t6", "b3", "u3", at(2024, 3, 2)),
        # Book deleted after return
        record("t7", "gone", "u2", at(2024, 3, 3), timedelta(days=1)),
        # Borrower deleted
        record("t8", "b1", "ghost", at(2024, 3, 4), timedelta(days=1)),
    ]
    return LibraryState(books=books, users=users, transactions=transactions)


@pytest.fixture
def aggregator() -> ReportAggregator:
    return ReportAggregator(late_return_threshold=2)


class TestUsageBy:

    def test_by_author_sorted_by_count(self, aggregator, state):
        rows = [(r.value, r.count) for r in aggregator.usage_by(state, "author")]
        assert rows == [("Jane Austen", 4), ("Frank Herbert", 3)]

    def test_ties_sorted_by_value(self, aggregator, state):
        rows = [(r.value, r.count) for r in aggregator.usage_by(state, "publisher")]
        assert rows == [("Chilton", 3), ("Murray", 2), ("Unknown", 2)]

    def test_dangling_book_excluded(self, aggregator, state):
        total = sum(r.count for r in aggregator.usage_by(state, "category"))
        assert total == len(state.transactions) - 1

    def test_unknown_dimension(self, aggregator, state):
        with pytest.raises(InvalidInputError):
            aggregator.usage_by(state, "title")


class TestMonthlyUsage:

    def test_split_by_role_newest_first(self, aggregator, state):
        rows = aggregator.monthly_usage(state)

        assert [r["period"] for r in rows] == ["2024-03", "2024-02", "2024-01"]
        assert rows[0] == {"period": "2024-03", "year": 2024, "month": 3,
                           "student": 1, "staff": 2, "total": 3}
        assert rows[2]["student"] == 2 and rows[2]["staff"] == 0

    def test_missing_borrow_date_excluded(self, aggregator, state):
        state.transactions.append(
            StoredTransaction(id="bad", book_id="b1", user_id="u1",
                              borrow_date=None, due_date=None)
        )

        rows = aggregator.monthly_usage(state)
        assert sum(r["total"] for r in rows) == 7


class TestDefaulters:

    def test_threshold_and_order(self, aggregator, state):
        rows = aggregator.defaulters(state)

        assert rows == [{"user_id": "u1", "name": "Ada", "role": "Student", "late_count": 2}]

    def test_lower_threshold(self, state):
        rows = ReportAggregator(late_return_threshold=1).defaulters(state)

        assert [(r["name"], r["late_count"]) for r in rows] == [("Ada", 2), ("Alan", 1)]


class TestBuild:

    def test_all_sections(self, aggregator, state):
        reports = aggregator.build(state)

        assert set(reports) == {"by_author", "by_publisher", "by_category", "by_month", "defaulters"}

    def test_top_truncates_breakdowns(self, aggregator, state):
        reports = aggregator.build(state, top=1)

        assert [r.value for r in reports["by_author"]] == ["Jane Austen"]
        assert len(reports["by_publisher"]) == 1
        assert len(reports["by_month"]) == 3

    def test_invalid_top(self, aggregator, state):
        with pytest.raises(InvalidInputError):
            aggregator.build(state, top=0)


class TestDashboard:

    def test_totals(self, aggregator, state):
        dashboard = aggregator.dashboard(state, at(2024, 3, 9))

        assert dashboard["total_titles"] == 3
        assert dashboard["total_copies"] == 4
        assert dashboard["available_copies"] == 2
        assert dashboard["borrowed_copies"] == 2
        assert dashboard["open_transactions"] == 2
        # t5 due 2024-03-08, t6 due 2024-03-09 10:00
        assert dashboard["overdue_transactions"] == 1
        assert dashboard["total_fines"] == Decimal("4.00")
        assert (dashboard["students"], dashboard["staff"], dashboard["defaulters"]) == (2, 1, 1)


class TestLibraryReports:

    def test_reads_from_repository(self, circulation, repository, make_book, make_user, clock):
        book = make_book("Dune", copies=2)
        txn = circulation.borrow(make_user().id, book.id)
        clock.advance(days=9)
        circulation.return_book(txn.id)

        reports = LibraryReports(repository, ReportAggregator(), clock=clock)

        assert [(r.value, r.count) for r in reports.get_reports()["by_author"]] == [("Frank Herbert", 1)]
        assert reports.dashboard()["total_fines"] == Decimal("1.00")
