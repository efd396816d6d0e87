"""
API request and response schemas.

Responses use the camelCase keys of the stored documents (userId, imageUrl,
averageRating). averageRating is stored with three decimals and rounded to
one decimal here, at read time only.
"""

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, Field

from catalog.models import Book, Page

DISPLAY_PRECISION = 1


def display_rating(value: float) -> float:
    """Average rating as shown to clients."""
    return round(value, DISPLAY_PRECISION)


class RatingResponse(BaseModel):
    """Single rating in a book response."""
    user_id: str = Field(..., alias="userId", description="Rating user")
    grade: int = Field(..., description="Grade from 1 to 5")

    model_config = {"populate_by_name": True}


class BookResponse(BaseModel):
    """Book response model for API."""
    id: str = Field(..., description="Unique book identifier")
    title: str = Field(..., description="Book title")
    author: str = Field(..., description="Book author")
    genre: str = Field(..., description="Book genre")
    year: int = Field(..., description="Publication year")
    user_id: str = Field(..., alias="userId", description="Owner of the record")
    image_url: str = Field(..., alias="imageUrl", description="Cover image URL")
    ratings: List[RatingResponse] = Field(default_factory=list, description="Ratings")
    average_rating: float = Field(..., alias="averageRating", description="Average grade, one decimal")
    rating_count: int = Field(..., alias="ratingCount", description="Number of ratings")

    model_config = {"populate_by_name": True}

    @classmethod
    def from_book(cls, book: Book) -> "BookResponse":
        return cls(
            id=book.id,
            title=book.title,
            author=book.author,
            genre=book.genre,
            year=book.year,
            user_id=book.user_id,
            image_url=book.image_url,
            ratings=[RatingResponse(user_id=r.user_id, grade=r.grade) for r in book.ratings],
            average_rating=display_rating(book.average_rating),
            rating_count=book.rating_count,
        )


class BookPageResponse(BaseModel):
    """Paginated book listing."""
    items: List[BookResponse] = Field(..., description="Books on this page")
    total_count: int = Field(..., alias="totalCount", description="Books matching the filters")
    has_more: bool = Field(..., alias="hasMore", description="Whether another page follows")

    model_config = {"populate_by_name": True}

    @classmethod
    def from_page(cls, page: Page) -> "BookPageResponse":
        return cls(
            items=[BookResponse.from_book(book) for book in page.items],
            total_count=page.total_count,
            has_more=page.has_more,
        )


class RatingRequest(BaseModel):
    """Body of a rating submission. Any userId sent by the client is ignored."""
    rating: Optional[Any] = Field(None, description="Grade from 1 to 5")


class CredentialsRequest(BaseModel):
    """Signup and login body."""
    email: Optional[Any] = Field(None, description="Email address")
    password: Optional[Any] = Field(None, description="Password")


class LoginResponse(BaseModel):
    """Successful login."""
    user_id: str = Field(..., alias="userId")
    token: str = Field(..., description="Bearer token")

    model_config = {"populate_by_name": True}


class MessageResponse(BaseModel):
    """Acknowledgement of a mutation."""
    message: str = Field(..., description="Human-readable outcome")
    id: Optional[str] = Field(None, description="Identifier of the created resource")


class ErrorResponse(BaseModel):
    """Error response model."""
    error: str = Field(..., description="Error message")
    code: str = Field(..., description="Stable error code")
    detail: Optional[List[str]] = Field(None, description="Additional error details")
    status_code: int = Field(..., description="HTTP status code")


class HealthResponse(BaseModel):
    """Health check response model."""
    status: str = Field(..., description="Service status")
    timestamp: datetime = Field(..., description="Current timestamp")
    version: str = Field(..., description="API version")
    database_status: str = Field(..., description="Database connection status")
