"""
ShelfDesk - FastAPI Backend.

HTTP interface to the circulation engine.
"""

from .main import app, create_app, main
from .dependencies import (
    Settings,
    get_settings,
    get_service_container,
    init_services,
    ServiceContainer,
)
from .schemas import (
    BookCreate,
    BookUpdate,
    BookResponse,
    UserCreate,
    UserResponse,
    BorrowRequest,
    TransactionResponse,
    ReportsResponse,
    DashboardResponse,
    SnapshotResponse,
    HealthResponse,
    ErrorResponse,
)

__all__ = [
    # Application
    "app",
    "create_app",
    "main",
    # Dependencies
    "Settings",
    "get_settings",
    "get_service_container",
    "init_services",
    "ServiceContainer",
    # Schemas
    "BookCreate",
    "BookUpdate",
    "BookResponse",
    "UserCreate",
    "UserResponse",
    "BorrowRequest",
    "TransactionResponse",
    "ReportsResponse",
    "DashboardResponse",
    "SnapshotResponse",
    "HealthResponse",
    "ErrorResponse",
]
