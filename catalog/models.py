"""
Pydantic models for catalog documents.

Documents are stored with camelCase keys (userId, imageUrl, averageRating...);
the models expose snake_case attributes and accept either form.
"""

from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, Field


class Rating(BaseModel):
    """One user's grade for one book."""
    user_id: str = Field(..., alias="userId", description="Identifier of the rating user")
    grade: int = Field(..., ge=1, le=5, description="Grade from 1 to 5")

    model_config = {"populate_by_name": True}


class Book(BaseModel):
    """
    Book record as held by the store.

    average_rating is derived: it is only ever written by the rating ledger
    (or the repair command) and is 0 while the book has no ratings.
    """
    id: str = Field(..., description="Store-assigned identifier")
    title: str = Field(..., description="Book title")
    author: str = Field(..., description="Book author")
    genre: str = Field(..., description="Book genre")
    year: int = Field(..., description="Publication year")
    user_id: str = Field(..., alias="userId", description="Owner (creating user)")
    image_url: str = Field(..., alias="imageUrl", description="Cover image reference")
    ratings: List[Rating] = Field(default_factory=list, description="Ratings in submission order")
    average_rating: float = Field(default=0, alias="averageRating", description="Mean grade")
    rating_count: int = Field(default=0, alias="ratingCount", description="Number of ratings")
    revision: int = Field(default=0, description="Incremented on every write")
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")

    model_config = {"populate_by_name": True}

    @classmethod
    def from_document(cls, document: Mapping[str, Any]) -> "Book":
        """Build a Book from a raw store document."""
        data = dict(document)
        if "_id" in data:
            data["id"] = str(data.pop("_id"))
        return cls.model_validate(data)

    def has_rated(self, user_id: str) -> bool:
        return any(rating.user_id == user_id for rating in self.ratings)


class BookFields(BaseModel):
    """Validated, sanitized book input. Unset fields are None on partial updates."""
    title: Optional[str] = None
    author: Optional[str] = None
    genre: Optional[str] = None
    year: Optional[int] = None

    def to_document(self) -> Dict[str, Any]:
        """Only the fields that were supplied."""
        return self.model_dump(exclude_none=True)


class RatingState(BaseModel):
    """
    Minimal projection of a book needed to submit a rating.

    already_rated is computed from an $elemMatch projection on the caller's
    user id, so the full ratings list is never loaded.
    """
    book_id: str
    average_rating: float = 0
    rating_count: int = 0
    revision: int = 0
    already_rated: bool = False


class User(BaseModel):
    """Registered user. The password hash never leaves the service."""
    id: str = Field(..., description="Store-assigned identifier")
    email: str = Field(..., description="Unique, lowercased email address")
    password_hash: str = Field(..., alias="password", exclude=True, repr=False)
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")

    model_config = {"populate_by_name": True}

    @classmethod
    def from_document(cls, document: Mapping[str, Any]) -> "User":
        data = dict(document)
        if "_id" in data:
            data["id"] = str(data.pop("_id"))
        return cls.model_validate(data)


class Page(BaseModel):
    """One page of a listing."""
    items: List[Book] = Field(default_factory=list)
    total_count: int = Field(..., ge=0)
    has_more: bool = False
