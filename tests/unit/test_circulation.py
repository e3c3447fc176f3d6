"""
Unit tests for the circulation transaction manager.
"""

from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from decimal import Decimal
from threading import Barrier

import pytest

from shelfdesk.circulation.errors import (
    AlreadyReturnedError,
    InvalidInputError,
    NotFoundError,
    UnavailableError,
)


def audit(repository, ledger):
    with repository.get_session() as session:
        return ledger.audit(session)


class TestBorrow:
    """Tests for borrow."""

    def test_borrow_creates_open_transaction(self, circulation, repository, make_book, make_user, clock):
        book = make_book(copies=2)
        user = make_user()

        txn = circulation.borrow(user.id, book.id)

        assert txn.is_open
        assert txn.borrow_date == clock.now
        assert txn.due_date == clock.now + timedelta(days=7)
        assert txn.fine_amount == Decimal("0.00")
        assert repository.get_book(book.id).available_copies == 1
        assert repository.get_transaction(txn.id).is_open

    def test_unknown_user(self, circulation, repository, make_book):
        book = make_book()

        with pytest.raises(NotFoundError):
            circulation.borrow("nobody", book.id)

        assert repository.get_book(book.id).available_copies == 1
        assert repository.list_transactions() == []

    def test_unknown_book(self, circulation, repository, make_user):
        user = make_user()

        with pytest.raises(NotFoundError):
            circulation.borrow(user.id, "missing")

        assert repository.list_transactions() == []

    def test_unavailable_writes_nothing(self, circulation, repository, make_book, make_user):
        book = make_book(copies=1)
        first, second = make_user("Ada"), make_user("Grace")
        circulation.borrow(first.id, book.id)

        with pytest.raises(UnavailableError):
            circulation.borrow(second.id, book.id)

        assert repository.get_book(book.id).available_copies == 0
        assert len(repository.list_transactions()) == 1


class TestReturn:
    """Tests for return_book."""

    def test_one_copy_scenario(self, circulation, repository, make_book, make_user, clock):
        book = make_book(copies=1)
        u1, u2 = make_user("Ada"), make_user("Grace")

        txn = circulation.borrow(u1.id, book.id)
        assert repository.get_book(book.id).available_copies == 0

        with pytest.raises(UnavailableError):
            circulation.borrow(u2.id, book.id)

        clock.advance(days=9)
        closed = circulation.return_book(txn.id)

        assert closed.fine_amount == Decimal("1.00")
        assert closed.return_date == clock.now
        assert repository.get_book(book.id).available_copies == 1

    def test_on_time_return_is_free(self, circulation, make_book, make_user, clock):
        txn = circulation.borrow(make_user().id, make_book().id)

        clock.advance(days=7)
        assert circulation.return_book(txn.id).fine_amount == Decimal("0.00")

    def test_fine_is_persisted(self, circulation, repository, make_book, make_user, clock):
        txn = circulation.borrow(make_user().id, make_book().id)

        clock.advance(days=7, minutes=1)
        circulation.return_book(txn.id)

        stored = repository.get_transaction(txn.id)
        assert stored.fine_amount == Decimal("0.50")
        assert stored.return_date > stored.due_date

    def test_return_twice(self, circulation, repository, make_book, make_user, clock):
        book = make_book(copies=2)
        txn = circulation.borrow(make_user().id, book.id)

        clock.advance(days=10)
        first = circulation.return_book(txn.id)

        clock.advance(days=5)
        with pytest.raises(AlreadyReturnedError):
            circulation.return_book(txn.id)

        stored = repository.get_transaction(txn.id)
        assert stored.fine_amount == first.fine_amount
        assert stored.return_date == first.return_date
        assert repository.get_book(book.id).available_copies == 2

    def test_unknown_transaction(self, circulation):
        with pytest.raises(NotFoundError):
            circulation.return_book("missing")


class TestConcurrency:
    """Borrow/return under concurrent callers."""

    def test_no_oversell(self, circulation, repository, ledger, make_book, make_user):
        copies, callers = 3, 8
        book = make_book(copies=copies)
        users = [make_user(f"Reader {i}") for i in range(callers)]
        barrier = Barrier(callers)

        def attempt(user_id):
            barrier.wait()
            try:
                circulation.borrow(user_id, book.id)
                return "ok"
            except UnavailableError:
                return "unavailable"

        with ThreadPoolExecutor(max_workers=callers) as pool:
            outcomes = list(pool.map(attempt, [u.id for u in users]))

        assert outcomes.count("ok") == copies
        assert outcomes.count("unavailable") == callers - copies
        assert repository.get_book(book.id).available_copies == 0
        assert len(repository.list_transactions(status="open")) == copies
        assert audit(repository, ledger) == []

    def test_concurrent_double_return(self, circulation, repository, make_book, make_user, clock):
        book = make_book(copies=1)
        txn = circulation.borrow(make_user().id, book.id)
        clock.advance(days=3)
        barrier = Barrier(2)

        def attempt(_):
            barrier.wait()
            try:
                circulation.return_book(txn.id)
                return "ok"
            except AlreadyReturnedError:
                return "already"

        with ThreadPoolExecutor(max_workers=2) as pool:
            outcomes = sorted(pool.map(attempt, range(2)))

        assert outcomes == ["already", "ok"]
        assert repository.get_book(book.id).available_copies == 1

    def test_invariants_after_mixed_operations(self, circulation, repository, ledger, make_book, make_user, clock):
        books = [make_book(f"Book {i}", copies=i + 1) for i in range(3)]
        users = [make_user(f"Reader {i}") for i in range(4)]
        open_txns = []

        for step in range(12):
            book = books[step % len(books)]
            user = users[step % len(users)]
            try:
                open_txns.append(circulation.borrow(user.id, book.id))
            except UnavailableError:
                circulation.return_book(open_txns.pop(0).id)
            clock.advance(hours=13)

        assert audit(repository, ledger) == []
        for book in books:
            stored = repository.get_book(book.id)
            assert 0 <= stored.available_copies <= stored.total_copies


class TestWaiveFine:
    """Tests for waive_fine."""

    def test_waive_zeroes_fine_and_keeps_return_date(self, circulation, repository, make_book, make_user, clock):
        txn = circulation.borrow(make_user().id, make_book().id)
        clock.advance(days=9)
        closed = circulation.return_book(txn.id)

        waived = circulation.waive_fine(txn.id)

        assert waived.fine_amount == Decimal("0.00")
        stored = repository.get_transaction(txn.id)
        assert stored.fine_amount == Decimal("0.00")
        assert stored.return_date == closed.return_date

    def test_waive_open_transaction_rejected(self, circulation, make_book, make_user):
        txn = circulation.borrow(make_user().id, make_book().id)

        with pytest.raises(InvalidInputError):
            circulation.waive_fine(txn.id)

    def test_waive_unknown(self, circulation):
        with pytest.raises(NotFoundError):
            circulation.waive_fine("missing")


class TestListTransactions:
    """Tests for transaction queries."""

    def test_status_filters(self, circulation, make_book, make_user, clock):
        user = make_user()
        book = make_book(copies=3)

        returned = circulation.borrow(user.id, book.id)
        clock.advance(days=1)
        late = circulation.borrow(user.id, book.id)
        clock.advance(days=1)
        circulation.return_book(returned.id)
        fresh = circulation.borrow(user.id, book.id)

        # late is due at day 8; fresh at day 9
        clock.advance(days=6, hours=12)

        assert [t.id for t in circulation.list_transactions()] == [fresh.id, late.id, returned.id]
        assert [t.id for t in circulation.list_transactions(status="open")] == [fresh.id, late.id]
        assert [t.id for t in circulation.list_transactions(status="closed")] == [returned.id]
        assert [t.id for t in circulation.list_transactions(status="overdue")] == [late.id]

    def test_filter_by_user_and_book(self, circulation, make_book, make_user):
        ada, grace = make_user("Ada"), make_user("Grace")
        dune, emma = make_book("Dune", copies=2), make_book("Emma", author="Jane Austen")

        circulation.borrow(ada.id, dune.id)
        circulation.borrow(grace.id, dune.id)
        circulation.borrow(ada.id, emma.id)

        assert len(circulation.list_transactions(user_id=ada.id)) == 2
        assert len(circulation.list_transactions(book_id=dune.id)) == 2
        assert len(circulation.list_transactions(user_id=ada.id, book_id=emma.id)) == 1

    def test_unknown_status(self, circulation):
        with pytest.raises(InvalidInputError):
            circulation.list_transactions(status="lost")

    def test_get_transaction(self, circulation, make_book, make_user):
        txn = circulation.borrow(make_user().id, make_book().id)

        assert circulation.get_transaction(txn.id).id == txn.id
        with pytest.raises(NotFoundError):
            circulation.get_transaction("missing")
