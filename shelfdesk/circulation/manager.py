"""
Circulation Transaction Manager

Borrow and return as atomic units spanning one book row and one
transaction row:

    borrow:  reserve_copy (conditional decrement) + insert open transaction
    return:  compare-and-swap close of the transaction + release_copy

Each unit verifies the book's inventory invariants before committing and
is retried as a whole on transient write conflicts. Snapshots are
published only after the commit, so subscribers never see state that
could still roll back.
"""

import uuid
from dataclasses import replace
from datetime import timedelta
from decimal import Decimal
from typing import Optional

from loguru import logger
from sqlalchemy import update
from sqlalchemy.orm import Session

from shelfdesk.clock import Clock, ensure_utc, utcnow
from shelfdesk.circulation.atomic import AtomicRunner, WriteConflict
from shelfdesk.circulation.errors import (
    AlreadyReturnedError,
    InvalidInputError,
    InvariantViolation,
    NotFoundError,
)
from shelfdesk.circulation.fines import ZERO, FineCalculator
from shelfdesk.circulation.ledger import InventoryLedger
from shelfdesk.storage.models import TransactionModel, UserModel
from shelfdesk.storage.repository import (
    TRANSACTION_STATUSES,
    LibraryRepository,
    StoredTransaction,
)

DEFAULT_LOAN_PERIOD = timedelta(days=7)


class CirculationManager:
    """
    Borrow/return state machine over the transaction log.

    Usage:
        manager = CirculationManager(repo, InventoryLedger(), FineCalculator(), notifier)
        txn = manager.borrow(user_id, book_id)
        closed = manager.return_book(txn.id)
    """

    def __init__(
        self,
        repository: LibraryRepository,
        ledger: Optional[InventoryLedger] = None,
        fine_calculator: Optional[FineCalculator] = None,
        notifier=None,
        clock: Clock = utcnow,
        loan_period: timedelta = DEFAULT_LOAN_PERIOD,
        max_retries: int = 5,
        retry_backoff: float = 0.02,
    ):
        """
        Initialize the manager.

        Args:
            repository: Storage for books, users and transactions
            ledger: Copy-count bookkeeping
            fine_calculator: Fine rules for late returns
            notifier: ChangeNotifier to publish to after each commit, or None
            clock: Source of "now"
            loan_period: Time between borrow and due date
            max_retries: Extra attempts on transient conflicts
            retry_backoff: Base backoff between attempts, in seconds
        """
        if loan_period <= timedelta(0):
            raise InvalidInputError("Loan period must be positive", detail=str(loan_period))

        self.repository = repository
        self.ledger = ledger or InventoryLedger()
        self.fine_calculator = fine_calculator or FineCalculator()
        self.notifier = notifier
        self.clock = clock
        self.loan_period = loan_period
        self.runner = AtomicRunner(
            repository.SessionLocal,
            max_retries=max_retries,
            backoff_seconds=retry_backoff,
        )

    # =========================================================================
    # Borrow / Return
    # =========================================================================

    def borrow(self, user_id: str, book_id: str) -> StoredTransaction:
        """
        Check out one copy of a book.

        Args:
            user_id: Borrowing user
            book_id: Book to take a copy of

        Returns:
            The new open transaction

        Raises:
            NotFoundError: Unknown user or book
            UnavailableError: No copies left; nothing is written
            ConflictError: Retries exhausted
        """

        def unit(session: Session) -> StoredTransaction:
            if session.get(UserModel, user_id) is None:
                raise NotFoundError("User", user_id)

            self.ledger.reserve_copy(session, book_id)

            now = ensure_utc(self.clock())
            txn = TransactionModel(
                id=str(uuid.uuid4()),
                book_id=book_id,
                user_id=user_id,
                borrow_date=now,
                due_date=now + self.loan_period,
                return_date=None,
                fine_amount=ZERO,
            )
            session.add(txn)
            session.flush()

            self.ledger.verify_book(session, book_id)

            return StoredTransaction.from_model(txn)

        stored = self.runner.run("borrow", unit)
        logger.info(f"Borrowed book {book_id} by user {user_id} (txn {stored.id})")

        self._publish("books", "transactions")
        return stored

    def return_book(self, transaction_id: str) -> StoredTransaction:
        """
        Close an open transaction and put the copy back.

        Calling this twice on the same transaction changes state once;
        the second call raises AlreadyReturnedError.

        Returns:
            The closed transaction with its final fine

        Raises:
            NotFoundError: Unknown transaction
            AlreadyReturnedError: Transaction already closed
            ConflictError: Retries exhausted
        """

        def unit(session: Session) -> StoredTransaction:
            model = session.get(TransactionModel, transaction_id)
            if model is None:
                raise NotFoundError("Transaction", transaction_id)

            current = StoredTransaction.from_model(model)
            if not current.is_open:
                raise AlreadyReturnedError(transaction_id)

            returned_at = ensure_utc(self.clock())
            fine = self.fine_calculator.compute(current.due_date, returned_at)
            closed = current.closed(returned_at, fine)

            result = session.execute(
                update(TransactionModel)
                .where(
                    TransactionModel.id == transaction_id,
                    TransactionModel.return_date.is_(None),
                    TransactionModel.version == current.version,
                )
                .values(
                    return_date=returned_at,
                    fine_amount=fine,
                    version=closed.version,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                # Someone else closed or touched it; rerun from the read
                raise WriteConflict(f"Transaction '{transaction_id}' changed during return")

            self._check_fine(closed)
            self.ledger.release_copy(session, current.book_id)
            self.ledger.verify_book(session, current.book_id)

            return closed

        closed = self.runner.run("return", unit)
        logger.info(
            f"Returned txn {closed.id} (book {closed.book_id}), fine {closed.fine_amount}"
        )

        self._publish("books", "transactions")
        return closed

    def waive_fine(self, transaction_id: str) -> StoredTransaction:
        """
        Zero the fine of a closed transaction.

        The return date stays as recorded. The next defaulter
        reconciliation stops counting this record as a late return.

        Raises:
            NotFoundError: Unknown transaction
            InvalidInputError: Transaction is still open
        """

        def unit(session: Session) -> tuple[StoredTransaction, Decimal]:
            model = session.get(TransactionModel, transaction_id)
            if model is None:
                raise NotFoundError("Transaction", transaction_id)

            current = StoredTransaction.from_model(model)
            if current.is_open:
                raise InvalidInputError(
                    "Only returned transactions carry a fine",
                    detail=f"Transaction '{transaction_id}' is still open",
                )
            if current.fine_amount == ZERO:
                return current, ZERO

            result = session.execute(
                update(TransactionModel)
                .where(
                    TransactionModel.id == transaction_id,
                    TransactionModel.version == current.version,
                )
                .values(fine_amount=ZERO, version=current.version + 1)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise WriteConflict(f"Transaction '{transaction_id}' changed during waive")

            return replace(current, fine_amount=ZERO, version=current.version + 1), current.fine_amount

        waived, previous_fine = self.runner.run("waive_fine", unit)

        if previous_fine != ZERO:
            logger.info(f"Waived fine {previous_fine} on txn {transaction_id}")
            self._publish("transactions")

        return waived

    # =========================================================================
    # Queries
    # =========================================================================

    def get_transaction(self, transaction_id: str) -> StoredTransaction:
        txn = self.repository.get_transaction(transaction_id)
        if txn is None:
            raise NotFoundError("Transaction", transaction_id)
        return txn

    def list_transactions(
        self,
        status: Optional[str] = None,
        user_id: Optional[str] = None,
        book_id: Optional[str] = None,
    ) -> list[StoredTransaction]:
        """
        List transactions, newest borrow first.

        Args:
            status: "open", "closed", "overdue" or None for all
            user_id: Restrict to one borrower
            book_id: Restrict to one book
        """
        if status is not None and status not in TRANSACTION_STATUSES:
            raise InvalidInputError(
                "Unknown transaction status",
                detail=f"'{status}' is not one of {', '.join(TRANSACTION_STATUSES)}",
            )

        return self.repository.list_transactions(
            status=status,
            user_id=user_id,
            book_id=book_id,
            now=self.clock(),
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _check_fine(txn: StoredTransaction) -> None:
        if txn.fine_amount < Decimal("0"):
            raise InvariantViolation("Negative fine", detail=f"txn {txn.id}: {txn.fine_amount}")
        if txn.fine_amount > ZERO and not txn.return_date > txn.due_date:
            raise InvariantViolation(
                "Fine charged on a timely return",
                detail=f"txn {txn.id}: returned {txn.return_date}, due {txn.due_date}",
            )

    def _publish(self, *collections: str) -> None:
        if self.notifier is None:
            return
        for collection in collections:
            self.notifier.publish(collection)
