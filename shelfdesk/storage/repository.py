"""
Library Repository for ShelfDesk

Structured storage for the circulation collections using SQLAlchemy:
- PostgreSQL (or any SQLAlchemy URL) for production
- SQLite for development/testing
- Plain dataclasses cross the repository boundary, never live ORM rows

Design Decisions:
1. SQLAlchemy ORM: Portable across databases
2. Counters and transaction rows are written by the circulation layer
   inside its own atomic units; this module owns reads and simple inserts
3. Reads open a short-lived session each and may be slightly stale
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Optional

from loguru import logger
from sqlalchemy import create_engine, func, or_, select, update
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from shelfdesk.clock import ensure_utc
from .models import Base, BookModel, UserModel, TransactionModel, Role


TRANSACTION_STATUSES = ("open", "closed", "overdue")


@dataclass
class StoredBook:
    """Data class for book data transfer."""

    id: str
    title: str
    author: str
    publisher: str = ""
    category: str = "Fiction"
    total_copies: int = 1
    available_copies: int = 1
    version: int = 1
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def on_loan(self) -> int:
        return self.total_copies - self.available_copies

    @classmethod
    def from_model(cls, model: BookModel) -> "StoredBook":
        """Create from SQLAlchemy model."""
        return cls(
            id=model.id,
            title=model.title,
            author=model.author,
            publisher=model.publisher or "",
            category=model.category or "",
            total_copies=model.total_copies,
            available_copies=model.available_copies,
            version=model.version,
            created_at=ensure_utc(model.created_at),
            updated_at=ensure_utc(model.updated_at),
        )

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "publisher": self.publisher,
            "category": self.category,
            "total_copies": self.total_copies,
            "available_copies": self.available_copies,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass
class StoredUser:
    """Data class for borrower data transfer."""

    id: str
    name: str
    role: Role = Role.STUDENT
    is_defaulter: bool = False
    created_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, model: UserModel) -> "StoredUser":
        return cls(
            id=model.id,
            name=model.name,
            role=Role(model.role),
            is_defaulter=bool(model.is_defaulter),
            created_at=ensure_utc(model.created_at),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "role": self.role.value,
            "is_defaulter": self.is_defaulter,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


@dataclass
class StoredTransaction:
    """Data class for one checkout record."""

    id: str
    book_id: str
    user_id: str
    borrow_date: datetime
    due_date: datetime
    return_date: Optional[datetime] = None
    fine_amount: Decimal = field(default_factory=lambda: Decimal("0.00"))
    version: int = 1

    @property
    def is_open(self) -> bool:
        return self.return_date is None

    def is_overdue(self, now: datetime) -> bool:
        """Open and past its due instant."""
        return self.is_open and self.due_date < ensure_utc(now)

    @classmethod
    def from_model(cls, model: TransactionModel) -> "StoredTransaction":
        return cls(
            id=model.id,
            book_id=model.book_id,
            user_id=model.user_id,
            borrow_date=ensure_utc(model.borrow_date),
            due_date=ensure_utc(model.due_date),
            return_date=ensure_utc(model.return_date),
            fine_amount=Decimal(model.fine_amount if model.fine_amount is not None else 0),
            version=model.version,
        )

    def closed(self, return_date: datetime, fine_amount: Decimal) -> "StoredTransaction":
        """Copy of this record as it reads once closed."""
        return replace(
            self,
            return_date=ensure_utc(return_date),
            fine_amount=fine_amount,
            version=self.version + 1,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "book_id": self.book_id,
            "user_id": self.user_id,
            "borrow_date": self.borrow_date.isoformat() if self.borrow_date else None,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "return_date": self.return_date.isoformat() if self.return_date else None,
            "fine_amount": str(self.fine_amount),
        }


@dataclass
class LibraryState:
    """All three collections read in one session."""

    books: list[StoredBook]
    users: list[StoredUser]
    transactions: list[StoredTransaction]


class LibraryRepository:
    """
    Repository for books, users and the transaction log.

    Usage:
        repo = LibraryRepository("sqlite:///./shelfdesk.db")

        book = repo.add_book(id="b1", title="Dune", author="Frank Herbert",
                             total_copies=2, available_copies=2)
        books = repo.list_books(query="dune")
    """

    def __init__(
        self,
        database_url: Optional[str] = None,
        sqlite_path: Optional[Path] = None,
        echo: bool = False,
        lock_timeout: float = 5.0,
    ):
        """
        Initialize repository.

        Args:
            database_url: SQLAlchemy database URL
            sqlite_path: Path for SQLite database
            echo: Log emitted SQL
            lock_timeout: Seconds a SQLite connection waits on a locked database
        """
        if database_url:
            # Strip async drivers for sync engine
            self.database_url = database_url.replace("+aiosqlite", "").replace("+asyncpg", "")
        elif sqlite_path:
            self.database_url = f"sqlite:///{sqlite_path}"
        else:
            # Default to in-memory SQLite
            self.database_url = "sqlite:///:memory:"

        engine_kwargs = {"echo": echo}
        if self.database_url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {
                "check_same_thread": False,
                "timeout": lock_timeout,
            }
            if ":memory:" in self.database_url:
                # One shared connection, otherwise each thread sees an empty database
                engine_kwargs["poolclass"] = StaticPool
        else:
            engine_kwargs["pool_pre_ping"] = True

        self.engine = create_engine(self.database_url, **engine_kwargs)

        Base.metadata.create_all(self.engine)

        self.SessionLocal = sessionmaker(bind=self.engine)

        logger.info(f"LibraryRepository initialized: {self.database_url[:50]}...")

    def get_session(self) -> Session:
        """Get database session."""
        return self.SessionLocal()

    def dispose(self) -> None:
        self.engine.dispose()

    # ------------------------------------------------------------------
    # Books
    # ------------------------------------------------------------------

    def add_book(self, id: str, title: str, author: str, **kwargs) -> StoredBook:
        """
        Insert a new book row.

        Args:
            id: Unique book ID
            title: Book title
            author: Primary author
            **kwargs: publisher, category, total_copies, available_copies

        Returns:
            Created StoredBook
        """
        with self.get_session() as session:
            book = BookModel(id=id, title=title, author=author, **kwargs)
            session.add(book)
            session.commit()
            session.refresh(book)

            return StoredBook.from_model(book)

    def get_book(self, book_id: str) -> Optional[StoredBook]:
        with self.get_session() as session:
            book = session.get(BookModel, book_id)
            return StoredBook.from_model(book) if book else None

    def list_books(self, query: Optional[str] = None) -> list[StoredBook]:
        """
        List books, optionally filtered by title/author/category.

        Args:
            query: Case-insensitive substring

        Returns:
            Books ordered by title
        """
        with self.get_session() as session:
            stmt = select(BookModel)

            if query and query.strip():
                pattern = f"%{query.strip()}%"
                stmt = stmt.where(
                    or_(
                        BookModel.title.ilike(pattern),
                        BookModel.author.ilike(pattern),
                        BookModel.category.ilike(pattern),
                    )
                )

            books = session.scalars(stmt.order_by(BookModel.title, BookModel.id)).all()
            return [StoredBook.from_model(b) for b in books]

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def add_user(self, id: str, name: str, role: Role) -> StoredUser:
        with self.get_session() as session:
            user = UserModel(id=id, name=name, role=Role(role).value, is_defaulter=False)
            session.add(user)
            session.commit()
            session.refresh(user)

            return StoredUser.from_model(user)

    def get_user(self, user_id: str) -> Optional[StoredUser]:
        with self.get_session() as session:
            user = session.get(UserModel, user_id)
            return StoredUser.from_model(user) if user else None

    def list_users(self) -> list[StoredUser]:
        with self.get_session() as session:
            users = session.scalars(
                select(UserModel).order_by(UserModel.created_at, UserModel.id)
            ).all()
            return [StoredUser.from_model(u) for u in users]

    def set_defaulter_flag(self, user_id: str, is_defaulter: bool) -> bool:
        """
        Write a user's defaulter flag if it differs.

        Returns:
            True if a row changed
        """
        with self.get_session() as session:
            result = session.execute(
                update(UserModel)
                .where(UserModel.id == user_id, UserModel.is_defaulter != is_defaulter)
                .values(is_defaulter=is_defaulter)
                .execution_options(synchronize_session=False)
            )
            session.commit()
            return result.rowcount > 0

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def get_transaction(self, transaction_id: str) -> Optional[StoredTransaction]:
        with self.get_session() as session:
            txn = session.get(TransactionModel, transaction_id)
            return StoredTransaction.from_model(txn) if txn else None

    def list_transactions(
        self,
        status: Optional[str] = None,
        user_id: Optional[str] = None,
        book_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> list[StoredTransaction]:
        """
        List transactions, newest borrow first.

        Args:
            status: "open", "closed" or "overdue" (open and past due at `now`)
            user_id: Restrict to one borrower
            book_id: Restrict to one book
            now: Reference instant for "overdue"

        Returns:
            Matching transactions
        """
        with self.get_session() as session:
            stmt = select(TransactionModel)

            if status in ("open", "overdue"):
                stmt = stmt.where(TransactionModel.return_date.is_(None))
            elif status == "closed":
                stmt = stmt.where(TransactionModel.return_date.isnot(None))

            if user_id:
                stmt = stmt.where(TransactionModel.user_id == user_id)
            if book_id:
                stmt = stmt.where(TransactionModel.book_id == book_id)

            stmt = stmt.order_by(TransactionModel.borrow_date.desc(), TransactionModel.id)
            txns = [StoredTransaction.from_model(t) for t in session.scalars(stmt).all()]

        if status == "overdue":
            # Compared in Python so naive SQLite timestamps are normalised first
            txns = [t for t in txns if now is not None and t.is_overdue(now)]

        return txns

    def load_state(self) -> LibraryState:
        """Read books, users and transactions in a single session."""
        with self.get_session() as session:
            books = session.scalars(select(BookModel).order_by(BookModel.title)).all()
            users = session.scalars(select(UserModel).order_by(UserModel.created_at)).all()
            txns = session.scalars(
                select(TransactionModel).order_by(TransactionModel.borrow_date.desc())
            ).all()

            return LibraryState(
                books=[StoredBook.from_model(b) for b in books],
                users=[StoredUser.from_model(u) for u in users],
                transactions=[StoredTransaction.from_model(t) for t in txns],
            )

    @staticmethod
    def count_open_loans(session: Session, book_id: str) -> int:
        """Open transactions for a book, read through the caller's session."""
        return session.scalar(
            select(func.count(TransactionModel.id)).where(
                TransactionModel.book_id == book_id,
                TransactionModel.return_date.is_(None),
            )
        ) or 0
