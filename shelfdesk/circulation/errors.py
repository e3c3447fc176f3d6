"""
Error taxonomy for ShelfDesk.

Every failure the engine reports to a caller is a ShelfDeskException
carrying a stable code and the HTTP status the API maps it to.
"""


class ShelfDeskException(Exception):
    """Base exception for ShelfDesk errors."""

    def __init__(
        self,
        message: str,
        code: str = "INTERNAL_ERROR",
        status_code: int = 500,
        detail: str = None,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.detail = detail
        super().__init__(message)


class NotFoundError(ShelfDeskException):
    """Referenced book, user or transaction does not exist."""

    def __init__(self, resource: str, identifier: str):
        self.resource = resource
        self.identifier = identifier
        super().__init__(
            message=f"{resource} not found",
            code="NOT_FOUND",
            status_code=404,
            detail=f"No {resource.lower()} with identifier '{identifier}' exists",
        )


class UnavailableError(ShelfDeskException):
    """No copies left to borrow."""

    def __init__(self, book_id: str):
        self.book_id = book_id
        super().__init__(
            message="Book unavailable",
            code="UNAVAILABLE",
            status_code=409,
            detail=f"Book '{book_id}' has no available copies",
        )


class AlreadyReturnedError(ShelfDeskException):
    """Return attempted on a closed transaction."""

    def __init__(self, transaction_id: str):
        self.transaction_id = transaction_id
        super().__init__(
            message="Transaction already returned",
            code="ALREADY_RETURNED",
            status_code=409,
            detail=f"Transaction '{transaction_id}' is already closed",
        )


class ConflictError(ShelfDeskException):
    """Concurrent modification persisted past the retry budget."""

    def __init__(self, operation: str, attempts: int, detail: str = None):
        self.operation = operation
        self.attempts = attempts
        super().__init__(
            message=f"{operation} conflicted with concurrent updates",
            code="CONFLICT",
            status_code=409,
            detail=detail or f"Gave up after {attempts} attempts",
        )


class InvalidInputError(ShelfDeskException):
    """Malformed create/update payload."""

    def __init__(self, message: str, detail: str = None):
        super().__init__(
            message=message,
            code="INVALID_INPUT",
            status_code=400,
            detail=detail,
        )


class InvariantViolation(ShelfDeskException):
    """An internal consistency check failed. Always a bug, never user error."""

    def __init__(self, message: str, detail: str = None):
        super().__init__(
            message=message,
            code="INVARIANT_VIOLATION",
            status_code=500,
            detail=detail,
        )
