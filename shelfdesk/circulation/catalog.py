"""
Catalog management for books and borrowers.

Direct inventory edits go through the same atomic runner as borrow and
return, and keep the copy counters consistent with the open loans:
changing total_copies moves available_copies with it, and a book with
copies out cannot be deleted.
"""

import uuid
from typing import Any, Optional

from loguru import logger
from sqlalchemy.orm import Session

from shelfdesk.circulation.atomic import AtomicRunner
from shelfdesk.circulation.errors import InvalidInputError, NotFoundError
from shelfdesk.circulation.ledger import InventoryLedger
from shelfdesk.storage.models import BookModel, Role
from shelfdesk.storage.repository import LibraryRepository, StoredBook, StoredUser

TEXT_FIELDS = ("title", "author", "publisher", "category")
COUNT_FIELDS = ("total_copies", "available_copies")
REQUIRED_TEXT = ("title", "author")


class CatalogService:
    """
    Book and user management.

    Usage:
        catalog = CatalogService(repo, InventoryLedger(), notifier)
        book = catalog.create_book(title="Dune", author="Frank Herbert", total_copies=3)
        book = catalog.update_book(book.id, total_copies=5)
    """

    def __init__(
        self,
        repository: LibraryRepository,
        ledger: Optional[InventoryLedger] = None,
        notifier=None,
        max_retries: int = 5,
        retry_backoff: float = 0.02,
    ):
        self.repository = repository
        self.ledger = ledger or InventoryLedger()
        self.notifier = notifier
        self.runner = AtomicRunner(
            repository.SessionLocal,
            max_retries=max_retries,
            backoff_seconds=retry_backoff,
        )

    # =========================================================================
    # Books
    # =========================================================================

    def list_books(self, query: Optional[str] = None) -> list[StoredBook]:
        return self.repository.list_books(query=query)

    def get_book(self, book_id: str) -> StoredBook:
        book = self.repository.get_book(book_id)
        if book is None:
            raise NotFoundError("Book", book_id)
        return book

    def create_book(
        self,
        title: str,
        author: str,
        publisher: str = "",
        category: str = "Fiction",
        total_copies: int = 1,
        available_copies: Optional[int] = None,
    ) -> StoredBook:
        """
        Add a title to the inventory.

        A new title has nothing on loan, so available_copies defaults to
        total_copies and must equal it when given.

        Raises:
            InvalidInputError: Empty title/author or inconsistent counts
        """
        fields = self._clean_text(
            {"title": title, "author": author, "publisher": publisher, "category": category},
            required=REQUIRED_TEXT,
        )
        if not fields.get("category"):
            fields["category"] = "Fiction"

        available = self.ledger.resolve_copy_counts(total_copies, available_copies, on_loan=0)

        book = self.repository.add_book(
            id=str(uuid.uuid4()),
            total_copies=total_copies,
            available_copies=available,
            **fields,
        )
        logger.info(f"Created book {book.id}: '{book.title}' x{book.total_copies}")

        self._publish("books")
        return book

    def update_book(self, book_id: str, **fields: Any) -> StoredBook:
        """
        Partially update a book.

        Args:
            book_id: Book to edit
            **fields: Any of title, author, publisher, category,
                total_copies, available_copies

        Returns:
            The updated book

        Raises:
            NotFoundError: Unknown book
            InvalidInputError: Unknown field, empty title/author, or counts
                that contradict the copies currently on loan
        """
        unknown = set(fields) - set(TEXT_FIELDS) - set(COUNT_FIELDS)
        if unknown:
            raise InvalidInputError("Unknown book fields", detail=", ".join(sorted(unknown)))

        text = self._clean_text(
            {k: v for k, v in fields.items() if k in TEXT_FIELDS and v is not None},
            required=[k for k in REQUIRED_TEXT if fields.get(k) is not None],
        )
        total = fields.get("total_copies")
        available = fields.get("available_copies")

        def unit(session: Session) -> StoredBook:
            book = session.get(BookModel, book_id)
            if book is None:
                raise NotFoundError("Book", book_id)

            for name, value in text.items():
                setattr(book, name, value)

            if total is not None or available is not None:
                on_loan = self.repository.count_open_loans(session, book_id)
                new_total = total if total is not None else book.total_copies
                book.available_copies = self.ledger.resolve_copy_counts(
                    new_total, available, on_loan
                )
                book.total_copies = new_total

            # Version check: a concurrent borrow/return makes this flush stale
            session.flush()
            self.ledger.verify_book(session, book_id)

            return StoredBook.from_model(book)

        updated = self.runner.run("update_book", unit)
        logger.info(f"Updated book {book_id}: {sorted(fields)}")

        self._publish("books")
        return updated

    def delete_book(self, book_id: str) -> None:
        """
        Remove a book from the inventory.

        Closed transactions keep their book_id and become dangling
        references, which the reports skip.

        Raises:
            NotFoundError: Unknown book
            InvalidInputError: Copies are still on loan
        """

        def unit(session: Session) -> None:
            book = session.get(BookModel, book_id)
            if book is None:
                raise NotFoundError("Book", book_id)

            on_loan = self.repository.count_open_loans(session, book_id)
            if on_loan:
                raise InvalidInputError(
                    "Cannot delete a book with copies on loan",
                    detail=f"Book '{book_id}' has {on_loan} open transaction(s)",
                )

            session.delete(book)
            session.flush()

        self.runner.run("delete_book", unit)
        logger.info(f"Deleted book {book_id}")

        self._publish("books")

    # =========================================================================
    # Users
    # =========================================================================

    def list_users(self) -> list[StoredUser]:
        return self.repository.list_users()

    def get_user(self, user_id: str) -> StoredUser:
        user = self.repository.get_user(user_id)
        if user is None:
            raise NotFoundError("User", user_id)
        return user

    def create_user(self, name: str, role: str) -> StoredUser:
        """
        Register a borrower.

        Raises:
            InvalidInputError: Empty name or role other than Student/Staff
        """
        cleaned = self._clean_text({"name": name}, required=("name",))
        try:
            parsed_role = Role(role)
        except ValueError:
            raise InvalidInputError(
                "Invalid role",
                detail=f"'{role}' is not one of {', '.join(r.value for r in Role)}",
            )

        user = self.repository.add_user(
            id=str(uuid.uuid4()),
            name=cleaned["name"],
            role=parsed_role,
        )
        logger.info(f"Created {user.role.value} user {user.id}")

        self._publish("users")
        return user

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _clean_text(values: dict[str, Any], required=()) -> dict[str, str]:
        cleaned = {}
        for name, value in values.items():
            if value is None:
                value = ""
            if not isinstance(value, str):
                raise InvalidInputError(f"{name} must be text", detail=repr(value))
            cleaned[name] = value.strip()

        for name in required:
            if not cleaned.get(name):
                raise InvalidInputError(f"{name} cannot be empty")

        return cleaned

    def _publish(self, collection: str) -> None:
        if self.notifier is not None:
            self.notifier.publish(collection)
