"""
API Routes for ShelfDesk

Route modules:
- books: Inventory management
- users: Borrower registration
- transactions: Borrow, return and fine waivers
- reports: Usage statistics, defaulters and dashboard
- events: Live collection snapshots
"""

from shelfdesk.api.routes.books import router as books_router
from shelfdesk.api.routes.users import router as users_router
from shelfdesk.api.routes.transactions import router as transactions_router
from shelfdesk.api.routes.reports import router as reports_router
from shelfdesk.api.routes.events import router as events_router

__all__ = [
    "books_router",
    "users_router",
    "transactions_router",
    "reports_router",
    "events_router",
]
