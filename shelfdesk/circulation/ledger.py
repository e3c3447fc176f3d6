"""
Inventory Ledger

Owns the per-book copy counters. Every method takes the caller's
Session: counters only move inside an atomic unit that also writes the
matching transaction row, and become visible when that unit commits.

Invariants checked here:
- I1: 0 <= available_copies <= total_copies
- I2: total_copies - available_copies == open transactions for the book
"""

from typing import Optional

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from shelfdesk.circulation.errors import (
    InvalidInputError,
    InvariantViolation,
    NotFoundError,
    UnavailableError,
)
from shelfdesk.storage.models import BookModel
from shelfdesk.storage.repository import LibraryRepository


class InventoryLedger:
    """Copy-count bookkeeping for books."""

    def reserve_copy(self, session: Session, book_id: str) -> None:
        """
        Take one copy off the shelf.

        The availability check and the decrement are one conditional
        UPDATE, so two reservations can never both see the last copy.

        Raises:
            NotFoundError: Book does not exist
            UnavailableError: No copies left
        """
        result = session.execute(
            update(BookModel)
            .where(BookModel.id == book_id, BookModel.available_copies > 0)
            .values(
                available_copies=BookModel.available_copies - 1,
                version=BookModel.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            return

        if self._book_exists(session, book_id):
            raise UnavailableError(book_id)
        raise NotFoundError("Book", book_id)

    def release_copy(self, session: Session, book_id: str) -> None:
        """
        Put one copy back on the shelf.

        Raises:
            InvariantViolation: Book is missing or already fully available
        """
        result = session.execute(
            update(BookModel)
            .where(
                BookModel.id == book_id,
                BookModel.available_copies < BookModel.total_copies,
            )
            .values(
                available_copies=BookModel.available_copies + 1,
                version=BookModel.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            return

        if self._book_exists(session, book_id):
            raise InvariantViolation(
                "Release would exceed total copies",
                detail=f"Book '{book_id}' has every copy on the shelf already",
            )
        raise InvariantViolation(
            "Release for a missing book",
            detail=f"Book '{book_id}' is referenced by an open transaction but does not exist",
        )

    def verify_book(self, session: Session, book_id: str) -> None:
        """Check I1 and I2 for one book through the caller's session."""
        row = session.execute(
            select(BookModel.total_copies, BookModel.available_copies).where(
                BookModel.id == book_id
            )
        ).first()
        if row is None:
            raise InvariantViolation("Verified book is missing", detail=book_id)

        problem = self._check(book_id, row.total_copies, row.available_copies,
                              LibraryRepository.count_open_loans(session, book_id))
        if problem:
            raise InvariantViolation("Inventory invariant broken", detail=problem)

    def audit(self, session: Session) -> list[str]:
        """
        Check I1 and I2 for every book.

        Returns:
            Human-readable problems, empty when consistent
        """
        problems = []
        rows = session.execute(
            select(BookModel.id, BookModel.total_copies, BookModel.available_copies)
        ).all()

        for book_id, total, available in rows:
            problem = self._check(
                book_id, total, available,
                LibraryRepository.count_open_loans(session, book_id),
            )
            if problem:
                problems.append(problem)

        if problems:
            logger.error(f"Inventory audit found {len(problems)} problem(s)")
        return problems

    @staticmethod
    def resolve_copy_counts(
        total_copies: int,
        available_copies: Optional[int],
        on_loan: int,
    ) -> int:
        """
        Available copies for a direct inventory edit.

        Availability is clamped to ``total - on_loan``; an explicit value
        must agree with it.

        Args:
            total_copies: Requested total
            available_copies: Requested availability, or None to derive it
            on_loan: Open transactions for the book

        Returns:
            The available count to store

        Raises:
            InvalidInputError: Counts out of range or contradicting open loans
        """
        if total_copies < 1:
            raise InvalidInputError("total_copies must be at least 1", detail=str(total_copies))
        if available_copies is not None:
            if available_copies < 0:
                raise InvalidInputError(
                    "available_copies cannot be negative", detail=str(available_copies)
                )
            if available_copies > total_copies:
                raise InvalidInputError(
                    "available_copies cannot exceed total_copies",
                    detail=f"available={available_copies}, total={total_copies}",
                )
        if total_copies < on_loan:
            raise InvalidInputError(
                "total_copies cannot drop below copies on loan",
                detail=f"total={total_copies}, on_loan={on_loan}",
            )

        derived = total_copies - on_loan
        if available_copies is not None and available_copies != derived:
            raise InvalidInputError(
                "available_copies must equal total_copies minus copies on loan",
                detail=f"available={available_copies}, expected={derived}",
            )
        return derived

    @staticmethod
    def _check(book_id: str, total: int, available: int, open_loans: int) -> Optional[str]:
        if not 0 <= available <= total:
            return f"Book '{book_id}': available={available} outside 0..{total}"
        if total - available != open_loans:
            return (
                f"Book '{book_id}': {total - available} copies out "
                f"but {open_loans} open transactions"
            )
        return None

    @staticmethod
    def _book_exists(session: Session, book_id: str) -> bool:
        return session.scalar(select(BookModel.id).where(BookModel.id == book_id)) is not None
