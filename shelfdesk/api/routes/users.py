"""
User API Routes

Borrower registration and lookup. The defaulter flag is read-only here;
only the defaulter reconciliation writes it.
"""

from fastapi import APIRouter, Depends, status
from loguru import logger

from shelfdesk.api.dependencies import get_catalog
from shelfdesk.api.schemas import ErrorResponse, UserCreate, UserResponse
from shelfdesk.circulation.catalog import CatalogService


router = APIRouter(prefix="/users", tags=["users"])


@router.get("", response_model=list[UserResponse])
def list_users(catalog: CatalogService = Depends(get_catalog)):
    """List borrowers in registration order."""
    return catalog.list_users()


@router.post(
    "",
    response_model=UserResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"model": ErrorResponse, "description": "Invalid name or role"},
    },
)
def create_user(
    user: UserCreate,
    catalog: CatalogService = Depends(get_catalog),
):
    """Register a Student or Staff borrower."""
    logger.info(f"Creating {user.role.value} user")
    return catalog.create_user(name=user.name, role=user.role.value)


@router.get(
    "/{user_id}",
    response_model=UserResponse,
    responses={
        404: {"model": ErrorResponse, "description": "User not found"},
    },
)
def get_user(
    user_id: str,
    catalog: CatalogService = Depends(get_catalog),
):
    """Get a borrower by ID."""
    return catalog.get_user(user_id)
