"""
API Schemas for ShelfDesk

Pydantic models for request validation and response serialization:
- Book and user models
- Transaction models
- Report and dashboard models
- Snapshot, error and health models

Design Decisions:
1. Shape checks live here; rules that need stored state (copies on loan,
   open transactions) live in the services
2. Separate Request/Response: Clear distinction between inputs and outputs
3. Responses are built from the repository dataclasses (from_attributes)
4. Money is Decimal and serializes as a string, e.g. "1.00"
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

from shelfdesk.storage.models import Role


# =============================================================================
# Enums
# =============================================================================

class TransactionStatus(str, Enum):
    """Filter for transaction listings."""
    OPEN = "open"
    CLOSED = "closed"
    OVERDUE = "overdue"


class Collection(str, Enum):
    """Collections published to subscribers."""
    BOOKS = "books"
    USERS = "users"
    TRANSACTIONS = "transactions"


# =============================================================================
# Book Schemas
# =============================================================================

class BookBase(BaseModel):
    """Base book fields."""

    title: str = Field(..., min_length=1, max_length=500)
    author: str = Field(..., min_length=1, max_length=300)
    publisher: str = Field("", max_length=300)
    category: str = Field("Fiction", max_length=100)


class BookCreate(BookBase):
    """Book creation request."""

    total_copies: int = Field(1, ge=1)
    available_copies: Optional[int] = Field(None, ge=0)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "title": "Dune",
                "author": "Frank Herbert",
                "publisher": "Chilton Books",
                "category": "Science Fiction",
                "total_copies": 3,
            }
        }
    )


class BookUpdate(BaseModel):
    """Book update request (partial)."""

    title: Optional[str] = Field(None, min_length=1, max_length=500)
    author: Optional[str] = Field(None, min_length=1, max_length=300)
    publisher: Optional[str] = Field(None, max_length=300)
    category: Optional[str] = Field(None, max_length=100)

    total_copies: Optional[int] = Field(None, ge=1)
    available_copies: Optional[int] = Field(None, ge=0)


class BookResponse(BookBase):
    """Book response model."""

    id: str
    total_copies: int
    available_copies: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


# =============================================================================
# User Schemas
# =============================================================================

class UserCreate(BaseModel):
    """Borrower registration request."""

    name: str = Field(..., min_length=1, max_length=255)
    role: Role = Role.STUDENT

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("name cannot be blank")
        return v.strip()


class UserResponse(BaseModel):
    """Borrower response model."""

    id: str
    name: str
    role: Role
    is_defaulter: bool = False
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


# =============================================================================
# Transaction Schemas
# =============================================================================

class BorrowRequest(BaseModel):
    """Checkout request."""

    user_id: str = Field(..., min_length=1)
    book_id: str = Field(..., min_length=1)


class TransactionResponse(BaseModel):
    """One checkout record."""

    id: str
    book_id: str
    user_id: str
    borrow_date: datetime
    due_date: datetime
    return_date: Optional[datetime] = None
    fine_amount: Decimal = Decimal("0.00")

    model_config = ConfigDict(from_attributes=True)

    @computed_field
    @property
    def is_open(self) -> bool:
        return self.return_date is None


# =============================================================================
# Report Schemas
# =============================================================================

class UsageCountResponse(BaseModel):
    """Transaction count for one author/publisher/category."""

    value: str
    count: int

    model_config = ConfigDict(from_attributes=True)


class MonthlyUsageResponse(BaseModel):
    """Transactions in one borrow month, split by role."""

    period: str
    year: int
    month: int
    student: int = 0
    staff: int = 0
    total: int = 0


class DefaulterResponse(BaseModel):
    """Borrower at or above the late-return threshold."""

    user_id: str
    name: str
    role: Role
    late_count: int


class ReportsResponse(BaseModel):
    """All circulation reports."""

    by_author: list[UsageCountResponse]
    by_publisher: list[UsageCountResponse]
    by_category: list[UsageCountResponse]
    by_month: list[MonthlyUsageResponse]
    defaulters: list[DefaulterResponse]


class DashboardResponse(BaseModel):
    """Front-desk totals."""

    total_titles: int
    total_copies: int
    available_copies: int
    borrowed_copies: int
    open_transactions: int
    overdue_transactions: int
    total_fines: Decimal
    total_users: int
    students: int
    staff: int
    defaulters: int


class ReconcileResponse(BaseModel):
    """Result of a defaulter reconciliation pass."""

    changed_user_ids: list[str]
    changed: int


# =============================================================================
# Snapshot Schemas
# =============================================================================

class SnapshotResponse(BaseModel):
    """Full state of one collection."""

    collection: Collection
    version: int
    items: list[dict[str, Any]]
    published_at: Optional[datetime] = None


# =============================================================================
# Error Schemas
# =============================================================================

class ErrorResponse(BaseModel):
    """Standard error response."""

    error: str
    detail: Optional[str] = None
    code: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "error": "Book unavailable",
                "detail": "Book 'b1' has no available copies",
                "code": "UNAVAILABLE",
                "timestamp": "2025-01-20T12:00:00Z",
            }
        }
    )


# =============================================================================
# Health Check
# =============================================================================

class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
    inventory_problems: list[str] = Field(default_factory=list)
