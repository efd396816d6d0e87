"""
MongoDB-backed record stores for books and users.

Thin async wrappers around Motor collections. Driver errors never leave this
module raw: they are logged and re-raised as StorageError, with timeouts and
connection losses flagged as retryable.
"""

from contextlib import contextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Tuple

import structlog
from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorCollection, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import (
    AutoReconnect, DuplicateKeyError, ExecutionTimeout, PyMongoError, WTimeoutError
)

from catalog.errors import NotFoundError, StorageError, ValidationError
from catalog.models import Book, RatingState, User

logger = structlog.get_logger(__name__)

_RETRYABLE_ERRORS = (AutoReconnect, ExecutionTimeout, WTimeoutError)


@contextmanager
def storage_errors(operation: str, **context):
    """Translate driver exceptions raised inside the block into StorageError."""
    try:
        yield
    except _RETRYABLE_ERRORS as e:
        logger.error("Store operation timed out", operation=operation, error=str(e), **context)
        raise StorageError(f"{operation} timed out", retryable=True) from e
    except PyMongoError as e:
        retryable = bool(getattr(e, "timeout", False))
        logger.error("Store operation failed", operation=operation, error=str(e), **context)
        raise StorageError(f"{operation} failed", retryable=retryable) from e


def to_object_id(book_id: str) -> ObjectId:
    """Parse an identifier; unparseable ids cannot exist, so they are NotFound."""
    if not isinstance(book_id, str):
        raise NotFoundError()
    try:
        return ObjectId(book_id)
    except InvalidId:
        raise NotFoundError() from None


class BookStore:
    """Book record store."""

    def __init__(self, collection: AsyncIOMotorCollection):
        self.collection = collection

    @classmethod
    def from_database(cls, database: AsyncIOMotorDatabase) -> "BookStore":
        return cls(database.books)

    async def create_indexes(self) -> None:
        with storage_errors("create_book_indexes"):
            await self.collection.create_index("userId")
            await self.collection.create_index([("averageRating", DESCENDING), ("_id", ASCENDING)])
            await self.collection.create_index("title")
        logger.info("Book indexes ensured")

    async def insert(self, document: Dict[str, Any]) -> str:
        now = datetime.utcnow()
        record = {
            **document,
            "ratings": [],
            "averageRating": 0,
            "ratingCount": 0,
            "revision": 0,
            "createdAt": now,
            "updatedAt": now,
        }
        with storage_errors("insert_book"):
            result = await self.collection.insert_one(record)
        return str(result.inserted_id)

    async def get(self, book_id: str) -> Book:
        object_id = to_object_id(book_id)
        with storage_errors("get_book", book_id=book_id):
            document = await self.collection.find_one({"_id": object_id})
        if document is None:
            raise NotFoundError()
        return Book.from_document(document)

    async def get_projection(self, book_id: str, fields: Sequence[str]) -> Dict[str, Any]:
        """Load only the named fields of a book."""
        object_id = to_object_id(book_id)
        projection = {field: 1 for field in fields}
        with storage_errors("get_book_projection", book_id=book_id):
            document = await self.collection.find_one({"_id": object_id}, projection)
        if document is None:
            raise NotFoundError()
        return document

    async def get_rating_state(self, book_id: str, user_id: str) -> RatingState:
        """Counters plus at most the caller's own rating, via $elemMatch."""
        object_id = to_object_id(book_id)
        projection = {
            "averageRating": 1,
            "ratingCount": 1,
            "revision": 1,
            "ratings": {"$elemMatch": {"userId": user_id}},
        }
        with storage_errors("get_rating_state", book_id=book_id):
            document = await self.collection.find_one({"_id": object_id}, projection)
        if document is None:
            raise NotFoundError()

        average_rating = document.get("averageRating", 0)
        rating_count = document.get("ratingCount")
        if rating_count is None:
            average_rating, rating_count = await self._legacy_rating_summary(object_id, book_id)
        return RatingState(
            book_id=book_id,
            average_rating=average_rating,
            rating_count=rating_count,
            revision=document.get("revision", 0),
            already_rated=bool(document.get("ratings")),
        )

    async def _legacy_rating_summary(self, object_id: ObjectId, book_id: str) -> Tuple[float, int]:
        """Mean and count derived from the ratings list, for books stored without ratingCount."""
        with storage_errors("get_rating_state", book_id=book_id):
            document = await self.collection.find_one({"_id": object_id}, {"ratings.grade": 1})
        if document is None:
            raise NotFoundError()
        grades = [rating["grade"] for rating in document.get("ratings", [])]
        logger.info("Rating count derived from ratings list", book_id=book_id, rating_count=len(grades))
        if not grades:
            return 0, 0
        return sum(grades) / len(grades), len(grades)

    async def append_rating(
        self,
        book_id: str,
        user_id: str,
        grade: int,
        new_average: float,
        expected_revision: int,
        rating_count: int,
    ) -> bool:
        """
        Conditionally append a rating.

        Matches only if nobody wrote the book since expected_revision was read
        and the user has no rating yet. rating_count is the count including
        the new rating; it is set rather than incremented so that books
        stored without the field get the right value. Returns False when
        nothing matched.
        """
        object_id = to_object_id(book_id)
        with storage_errors("append_rating", book_id=book_id):
            result = await self.collection.update_one(
                {
                    "_id": object_id,
                    "revision": expected_revision if expected_revision else {"$in": [0, None]},
                    "ratings.userId": {"$ne": user_id},
                },
                {
                    "$push": {"ratings": {"userId": user_id, "grade": grade}},
                    "$set": {
                        "averageRating": new_average,
                        "ratingCount": rating_count,
                        "updatedAt": datetime.utcnow(),
                    },
                    "$inc": {"revision": 1},
                },
            )
        return result.modified_count == 1

    async def update_fields(self, book_id: str, changes: Dict[str, Any]) -> bool:
        object_id = to_object_id(book_id)
        with storage_errors("update_book", book_id=book_id):
            result = await self.collection.update_one(
                {"_id": object_id},
                {"$set": {**changes, "updatedAt": datetime.utcnow()}, "$inc": {"revision": 1}},
            )
        return result.matched_count == 1

    async def delete(self, book_id: str) -> bool:
        object_id = to_object_id(book_id)
        with storage_errors("delete_book", book_id=book_id):
            result = await self.collection.delete_one({"_id": object_id})
        return result.deleted_count == 1

    async def find(
        self,
        filter_query: Dict[str, Any],
        sort: List[Tuple[str, int]],
        skip: int = 0,
        limit: Optional[int] = None,
    ) -> List[Book]:
        with storage_errors("find_books"):
            cursor = self.collection.find(filter_query).sort(sort).skip(skip)
            if limit:
                cursor = cursor.limit(limit)
            documents = await cursor.to_list(length=limit)
        return [Book.from_document(document) for document in documents]

    async def count(self, filter_query: Dict[str, Any]) -> int:
        with storage_errors("count_books"):
            return await self.collection.count_documents(filter_query)

    async def iter_rating_summaries(self) -> AsyncIterator[Tuple[str, List[int], float, int]]:
        """Yield (book_id, grades, averageRating, ratingCount) for every book."""
        projection = {"ratings.grade": 1, "averageRating": 1, "ratingCount": 1}
        with storage_errors("scan_ratings"):
            async for document in self.collection.find({}, projection):
                grades = [rating["grade"] for rating in document.get("ratings", [])]
                yield (
                    str(document["_id"]),
                    grades,
                    document.get("averageRating", 0),
                    document.get("ratingCount"),
                )

    async def set_rating_summary(self, book_id: str, average: float, count: int) -> None:
        object_id = to_object_id(book_id)
        with storage_errors("set_rating_summary", book_id=book_id):
            await self.collection.update_one(
                {"_id": object_id},
                {"$set": {"averageRating": average, "ratingCount": count}, "$inc": {"revision": 1}},
            )


class UserStore:
    """User accounts. Email uniqueness is enforced by a unique index."""

    def __init__(self, collection: AsyncIOMotorCollection):
        self.collection = collection

    @classmethod
    def from_database(cls, database: AsyncIOMotorDatabase) -> "UserStore":
        return cls(database.users)

    async def create_indexes(self) -> None:
        with storage_errors("create_user_indexes"):
            await self.collection.create_index("email", unique=True)
        logger.info("User indexes ensured")

    async def insert(self, email: str, password_hash: str) -> str:
        with storage_errors("insert_user"):
            try:
                result = await self.collection.insert_one(
                    {"email": email, "password": password_hash, "createdAt": datetime.utcnow()}
                )
            except DuplicateKeyError:
                raise ValidationError("Email already in use")
        return str(result.inserted_id)

    async def find_by_email(self, email: str) -> Optional[User]:
        with storage_errors("find_user"):
            document = await self.collection.find_one({"email": email})
        return User.from_document(document) if document else None
