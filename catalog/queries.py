"""
Catalog queries: listing with filters, sorting and pagination, and the
best-rated selection.

Query construction (filter and sort documents) and the post-query
arithmetic (page window, has_more, top-N) are plain functions so they can be
tested without a store.
"""

import re
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from pydantic import BaseModel, Field
from pymongo import ASCENDING, DESCENDING

from catalog.models import Book, Page
from catalog.store import BookStore

DEFAULT_TOP_LIMIT = 3


class SortBy(str, Enum):
    """Sort options for book listings."""
    TITLE = "title"
    AUTHOR = "author"
    YEAR = "year"
    RATING = "averageRating"


class SortOrder(str, Enum):
    """Sort order options."""
    ASC = "asc"
    DESC = "desc"


class BookQuery(BaseModel):
    """Filters, sort and optional pagination for book listing."""
    title: Optional[str] = Field(None, description="Case-insensitive substring of the title")
    author: Optional[str] = Field(None, description="Case-insensitive substring of the author")
    genre: Optional[str] = Field(None, description="Case-insensitive substring of the genre")
    year: Optional[int] = Field(None, description="Exact publication year")
    min_rating: Optional[float] = Field(None, ge=0, le=5, description="Minimum average rating")
    sort_by: SortBy = Field(SortBy.TITLE, description="Sort field")
    sort_order: SortOrder = Field(SortOrder.ASC, description="Sort order")
    page: Optional[int] = Field(None, ge=1, description="Page number; omit for all results")
    page_size: int = Field(20, ge=1, le=100, description="Items per page")


def substring_match(text: str) -> Dict[str, str]:
    """Case-insensitive substring condition; the text is matched literally."""
    return {"$regex": re.escape(text.strip()), "$options": "i"}


def build_book_filter(query: BookQuery) -> Dict[str, Any]:
    filter_query: Dict[str, Any] = {}
    for field in ("title", "author", "genre"):
        value = getattr(query, field)
        if value and value.strip():
            filter_query[field] = substring_match(value)
    if query.year is not None:
        filter_query["year"] = query.year
    if query.min_rating is not None:
        filter_query["averageRating"] = {"$gte": query.min_rating}
    return filter_query


def build_sort(query: BookQuery) -> List[Tuple[str, int]]:
    direction = ASCENDING if query.sort_order == SortOrder.ASC else DESCENDING
    return [(query.sort_by.value, direction), ("_id", ASCENDING)]


def page_window(page: int, page_size: int) -> Tuple[int, int]:
    """(skip, limit) for a 1-based page number."""
    if page < 1 or page_size < 1:
        raise ValueError("page and page_size must be at least 1")
    return (page - 1) * page_size, page_size


def paginate(items: List[Book], total_count: int, skip: int) -> Page:
    return Page(items=items, total_count=total_count, has_more=(skip + len(items)) < total_count)


def top_rated(books: Iterable[Book], limit: int = DEFAULT_TOP_LIMIT) -> List[Book]:
    """Highest average first; equal averages keep their input order."""
    return sorted(books, key=lambda book: book.average_rating, reverse=True)[:limit]


class CatalogQueryService:
    """Read-only catalog access. No authorization required."""

    def __init__(self, store: BookStore, top_limit: int = DEFAULT_TOP_LIMIT):
        self.store = store
        self.top_limit = top_limit

    async def get_book(self, book_id: str) -> Book:
        return await self.store.get(book_id)

    async def list_books(self, query: Optional[BookQuery] = None) -> Page:
        query = query or BookQuery()
        filter_query = build_book_filter(query)
        sort = build_sort(query)

        if query.page is None:
            items = await self.store.find(filter_query, sort)
            return Page(items=items, total_count=len(items), has_more=False)

        skip, limit = page_window(query.page, query.page_size)
        total_count = await self.store.count(filter_query)
        items = await self.store.find(filter_query, sort, skip=skip, limit=limit)
        return paginate(items, total_count, skip)

    async def best_rated(self) -> List[Book]:
        candidates = await self.store.find(
            {}, [("averageRating", DESCENDING), ("_id", ASCENDING)], limit=self.top_limit
        )
        return top_rated(candidates, self.top_limit)
