"""
Circulation engine for ShelfDesk

Borrow/return transactions over a physical inventory:
- Fine calculation for late returns
- Copy-count ledger with conditional updates
- Atomic units with bounded retry
- Catalog management for books and borrowers
"""

from shelfdesk.circulation.errors import (
    ShelfDeskException,
    NotFoundError,
    UnavailableError,
    AlreadyReturnedError,
    ConflictError,
    InvalidInputError,
    InvariantViolation,
)
from shelfdesk.circulation.fines import (
    FineCalculator,
    compute_fine,
    days_late,
)
from shelfdesk.circulation.ledger import InventoryLedger
from shelfdesk.circulation.atomic import AtomicRunner, WriteConflict
from shelfdesk.circulation.manager import CirculationManager
from shelfdesk.circulation.catalog import CatalogService

__all__ = [
    # Errors
    "ShelfDeskException",
    "NotFoundError",
    "UnavailableError",
    "AlreadyReturnedError",
    "ConflictError",
    "InvalidInputError",
    "InvariantViolation",
    # Fines
    "FineCalculator",
    "compute_fine",
    "days_late",
    # Ledger
    "InventoryLedger",
    # Atomic units
    "AtomicRunner",
    "WriteConflict",
    # Services
    "CirculationManager",
    "CatalogService",
]
