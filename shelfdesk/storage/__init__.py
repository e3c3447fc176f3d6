"""
Storage Module for ShelfDesk

Persistent storage for the circulation collections:
- Books with copy counters
- Borrowers
- The borrow/return transaction log
"""

from shelfdesk.storage.models import (
    Base,
    BookModel,
    UserModel,
    TransactionModel,
    Role,
)
from shelfdesk.storage.repository import (
    LibraryRepository,
    LibraryState,
    StoredBook,
    StoredUser,
    StoredTransaction,
    TRANSACTION_STATUSES,
)

__all__ = [
    # Models
    "Base",
    "BookModel",
    "UserModel",
    "TransactionModel",
    "Role",
    # Repository
    "LibraryRepository",
    "LibraryState",
    "StoredBook",
    "StoredUser",
    "StoredTransaction",
    "TRANSACTION_STATUSES",
]
