"""
Transaction API Routes

Circulation desk operations:
- Borrow a copy
- Return a copy (fine computed at return time)
- Waive the fine on a returned copy
- Transaction listings for the desk views
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from loguru import logger

from shelfdesk.api.dependencies import get_circulation
from shelfdesk.api.schemas import (
    BorrowRequest,
    ErrorResponse,
    TransactionResponse,
    TransactionStatus,
)
from shelfdesk.circulation.manager import CirculationManager


router = APIRouter(prefix="/transactions", tags=["transactions"])


# =============================================================================
# Queries
# =============================================================================

@router.get("", response_model=list[TransactionResponse])
def list_transactions(
    status_filter: Optional[TransactionStatus] = Query(None, alias="status"),
    user_id: Optional[str] = Query(None),
    book_id: Optional[str] = Query(None),
    circulation: CirculationManager = Depends(get_circulation),
):
    """List transactions, newest borrow first."""
    return circulation.list_transactions(
        status=status_filter.value if status_filter else None,
        user_id=user_id,
        book_id=book_id,
    )


@router.get(
    "/{transaction_id}",
    response_model=TransactionResponse,
    responses={
        404: {"model": ErrorResponse, "description": "Transaction not found"},
    },
)
def get_transaction(
    transaction_id: str,
    circulation: CirculationManager = Depends(get_circulation),
):
    """Get one transaction."""
    return circulation.get_transaction(transaction_id)


# =============================================================================
# Circulation
# =============================================================================

@router.post(
    "/borrow",
    response_model=TransactionResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        404: {"model": ErrorResponse, "description": "User or book not found"},
        409: {"model": ErrorResponse, "description": "No copies available, or conflict"},
    },
)
def borrow_book(
    request: BorrowRequest,
    circulation: CirculationManager = Depends(get_circulation),
):
    """Check out one copy of a book to a user."""
    logger.info(f"Borrow request: user={request.user_id} book={request.book_id}")
    return circulation.borrow(request.user_id, request.book_id)


@router.post(
    "/{transaction_id}/return",
    response_model=TransactionResponse,
    responses={
        404: {"model": ErrorResponse, "description": "Transaction not found"},
        409: {"model": ErrorResponse, "description": "Already returned, or conflict"},
    },
)
def return_book(
    transaction_id: str,
    circulation: CirculationManager = Depends(get_circulation),
):
    """Return a borrowed copy and settle the fine."""
    logger.info(f"Return request: txn={transaction_id}")
    return circulation.return_book(transaction_id)


@router.post(
    "/{transaction_id}/waive-fine",
    response_model=TransactionResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Transaction still open"},
        404: {"model": ErrorResponse, "description": "Transaction not found"},
    },
)
def waive_fine(
    transaction_id: str,
    circulation: CirculationManager = Depends(get_circulation),
):
    """Zero the fine on a returned copy."""
    logger.info(f"Waive request: txn={transaction_id}")
    return circulation.waive_fine(transaction_id)
