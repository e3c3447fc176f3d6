"""
Book API Routes

Inventory management: list/search, create, read, update and delete books.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status
from loguru import logger

from shelfdesk.api.dependencies import get_catalog
from shelfdesk.api.schemas import (
    BookCreate,
    BookUpdate,
    BookResponse,
    ErrorResponse,
)
from shelfdesk.circulation.catalog import CatalogService


router = APIRouter(prefix="/books", tags=["books"])


@router.get(
    "",
    response_model=list[BookResponse],
)
def list_books(
    q: Optional[str] = Query(None, description="Filter by title, author or category"),
    catalog: CatalogService = Depends(get_catalog),
):
    """List books ordered by title, optionally filtered."""
    logger.info(f"Listing books: q={q!r}")
    return catalog.list_books(query=q)


@router.post(
    "",
    response_model=BookResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"model": ErrorResponse, "description": "Invalid book data"},
    },
)
def create_book(
    book: BookCreate,
    catalog: CatalogService = Depends(get_catalog),
):
    """
    Add a title to the inventory.

    available_copies defaults to total_copies and must equal it if given.
    """
    logger.info(f"Creating book: {book.title} by {book.author}")
    return catalog.create_book(**book.model_dump())


@router.get(
    "/{book_id}",
    response_model=BookResponse,
    responses={
        404: {"model": ErrorResponse, "description": "Book not found"},
    },
)
def get_book(
    book_id: str,
    catalog: CatalogService = Depends(get_catalog),
):
    """Get a book by ID."""
    return catalog.get_book(book_id)


@router.put(
    "/{book_id}",
    response_model=BookResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Counts contradict copies on loan"},
        404: {"model": ErrorResponse, "description": "Book not found"},
        409: {"model": ErrorResponse, "description": "Concurrent update conflict"},
    },
)
def update_book(
    book_id: str,
    book: BookUpdate,
    catalog: CatalogService = Depends(get_catalog),
):
    """
    Update a book.

    Supports partial updates - only provided fields are modified. Changing
    total_copies moves available_copies by the same amount.
    """
    fields = book.model_dump(exclude_none=True)
    logger.info(f"Updating book {book_id}: {sorted(fields)}")
    return catalog.update_book(book_id, **fields)


@router.delete(
    "/{book_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={
        400: {"model": ErrorResponse, "description": "Copies still on loan"},
        404: {"model": ErrorResponse, "description": "Book not found"},
    },
)
def delete_book(
    book_id: str,
    catalog: CatalogService = Depends(get_catalog),
):
    """Delete a book with no copies on loan."""
    logger.info(f"Deleting book: {book_id}")
    catalog.delete_book(book_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
