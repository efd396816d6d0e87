"""
Error taxonomy for catalog operations.

Every core operation raises one of these (and nothing else) across its
boundary. Each error carries a stable machine-readable code and the HTTP
status the API layer renders it with.
"""

from typing import List, Optional


class CatalogError(Exception):
    """Base class for all catalog errors."""

    code = "catalog_error"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(CatalogError):
    """Malformed or missing input."""

    code = "validation_error"
    status_code = 400

    def __init__(self, message: str = "Invalid input", errors: Optional[List[str]] = None):
        super().__init__(message)
        self.errors = list(errors) if errors else [message]


class InvalidGradeError(ValidationError):
    """Rating grade outside 1..5 or not an integer."""

    code = "invalid_grade"

    def __init__(self, message: str = "Rating must be an integer between 1 and 5"):
        super().__init__(message, errors=[message])


class NotFoundError(CatalogError):
    """Referenced entity does not exist."""

    code = "not_found"
    status_code = 404

    def __init__(self, message: str = "Book not found"):
        super().__init__(message)


class UnauthenticatedError(CatalogError):
    """Missing or invalid credential. The message never says why."""

    code = "unauthenticated"
    status_code = 401

    def __init__(self, message: str = "Authentication failed"):
        super().__init__(message)


class ForbiddenError(CatalogError):
    """Authenticated, but not the owner of the resource."""

    code = "forbidden"
    status_code = 403

    def __init__(self, message: str = "Unauthorized access to this book"):
        super().__init__(message)


class DuplicateRatingError(CatalogError):
    """The user has already rated this book."""

    code = "duplicate_rating"
    status_code = 400

    def __init__(self, message: str = "You have already rated this book"):
        super().__init__(message)


class StorageError(CatalogError):
    """Document store or image storage failure."""

    code = "storage_failure"

    def __init__(self, message: str = "Storage operation failed", retryable: bool = False):
        super().__init__(message)
        self.retryable = retryable
        self.status_code = 503 if retryable else 500
