"""
Database models for ShelfDesk.

Three collections: books, users and the transaction log. Transactions
reference books and users by id only, so deleting a book leaves its
closed history in place.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    Column,
    String,
    Integer,
    Boolean,
    DateTime,
    Numeric,
    CheckConstraint,
    Index,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Role(str, Enum):
    """Borrower role."""
    STUDENT = "Student"
    STAFF = "Staff"


class BookModel(Base):
    """SQLAlchemy model for books."""

    __tablename__ = "books"

    id = Column(String(36), primary_key=True)  # UUID

    title = Column(String(500), nullable=False, index=True)
    author = Column(String(300), nullable=False, index=True)
    publisher = Column(String(300), nullable=False, default="")
    category = Column(String(100), nullable=False, default="Fiction", index=True)

    # Copy counters, mutated only through the inventory ledger
    total_copies = Column(Integer, nullable=False, default=1)
    available_copies = Column(Integer, nullable=False, default=1)

    # Optimistic concurrency token
    version = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        CheckConstraint("total_copies >= 1", name="ck_books_total_positive"),
        CheckConstraint(
            "available_copies >= 0 AND available_copies <= total_copies",
            name="ck_books_available_in_range",
        ),
        Index("idx_books_title_author", "title", "author"),
    )

    __mapper_args__ = {"version_id_col": version}


class UserModel(Base):
    """SQLAlchemy model for borrowers."""

    __tablename__ = "users"

    id = Column(String(36), primary_key=True)  # UUID
    name = Column(String(255), nullable=False)
    role = Column(String(16), nullable=False, default=Role.STUDENT.value)

    # Derived; written only by the defaulter classifier
    is_defaulter = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        CheckConstraint("role IN ('Student', 'Staff')", name="ck_users_role"),
    )


class TransactionModel(Base):
    """SQLAlchemy model for one physical copy checkout."""

    __tablename__ = "transactions"

    id = Column(String(36), primary_key=True)  # UUID
    book_id = Column(String(36), nullable=False, index=True)
    user_id = Column(String(36), nullable=False, index=True)

    borrow_date = Column(DateTime(timezone=True), nullable=False, index=True)
    due_date = Column(DateTime(timezone=True), nullable=False)
    return_date = Column(DateTime(timezone=True), nullable=True)  # NULL = open

    fine_amount = Column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))

    version = Column(Integer, nullable=False, default=1)

    __table_args__ = (
        CheckConstraint("fine_amount >= 0", name="ck_transactions_fine_non_negative"),
        Index("idx_transactions_book_open", "book_id", "return_date"),
    )

    __mapper_args__ = {"version_id_col": version}
