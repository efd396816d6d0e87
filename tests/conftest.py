"""
Pytest configuration and shared fixtures.

The in-memory stores implement the same interface as the MongoDB-backed
stores so the ledger, the authorization gate and the services can be
exercised without a database.
"""

import asyncio
import re
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

import pytest
from bson import ObjectId

from api.config import APIConfig
from api.database import build_services
from catalog.access import AuthorizationGate
from catalog.credentials import CredentialService
from catalog.errors import NotFoundError, ValidationError
from catalog.images import LocalImageStorage
from catalog.models import Book, RatingState, User
from catalog.store import BookStore, UserStore, to_object_id
from catalog.validators import BookInputValidator

TEST_SECRET = "test-secret"
OWNER_ID = "64b7f0c2a1b2c3d4e5f60001"
OTHER_USER_ID = "64b7f0c2a1b2c3d4e5f60002"


def _matches(document: Dict[str, Any], filter_query: Dict[str, Any]) -> bool:
    for field, condition in filter_query.items():
        value = document.get(field)
        if isinstance(condition, dict):
            if "$regex" in condition:
                flags = re.IGNORECASE if "i" in condition.get("$options", "") else 0
                if value is None or not re.search(condition["$regex"], str(value), flags):
                    return False
            if "$gte" in condition and (value is None or value < condition["$gte"]):
                return False
            if "$gt" in condition and (value is None or value <= condition["$gt"]):
                return False
        elif value != condition:
            return False
    return True


class InMemoryBookStore(BookStore):
    """Dict-backed BookStore with the same conditional-write semantics."""

    def __init__(self, yield_between_read_and_write: bool = True):
        super().__init__(collection=None)
        self.documents: Dict[ObjectId, Dict[str, Any]] = {}
        self.yield_between_read_and_write = yield_between_read_and_write
        self.append_attempts = 0

    def add_book(self, **fields: Any) -> str:
        """Seed a book synchronously; returns its id."""
        object_id = ObjectId()
        document = {
            "_id": object_id,
            "title": "Nineteen Eighty-Four",
            "author": "George Orwell",
            "genre": "Dystopia",
            "year": 1949,
            "userId": OWNER_ID,
            "imageUrl": "http://localhost:8000/images/cover.webp",
            "ratings": [],
            "averageRating": 0,
            "ratingCount": 0,
            "revision": 0,
        }
        document.update(fields)
        self.documents[object_id] = document
        return str(object_id)

    def raw(self, book_id: str) -> Dict[str, Any]:
        return self.documents[ObjectId(book_id)]

    def _document(self, book_id: str) -> Dict[str, Any]:
        document = self.documents.get(to_object_id(book_id))
        if document is None:
            raise NotFoundError()
        return document

    async def insert(self, document: Dict[str, Any]) -> str:
        now = datetime.utcnow()
        return self.add_book(**document, createdAt=now, updatedAt=now)

    async def get(self, book_id: str) -> Book:
        return Book.from_document(self._document(book_id))

    async def get_projection(self, book_id: str, fields: Sequence[str]) -> Dict[str, Any]:
        document = self._document(book_id)
        projected = {"_id": document["_id"]}
        projected.update({field: document[field] for field in fields if field in document})
        return projected

    async def get_rating_state(self, book_id: str, user_id: str) -> RatingState:
        document = self._document(book_id)
        grades = [r["grade"] for r in document.get("ratings", [])]
        if "ratingCount" in document:
            average, count = document.get("averageRating", 0), document["ratingCount"]
        else:
            average, count = (sum(grades) / len(grades) if grades else 0), len(grades)
        state = RatingState(
            book_id=book_id,
            average_rating=average,
            rating_count=count,
            revision=document.get("revision") or 0,
            already_rated=any(r["userId"] == user_id for r in document.get("ratings", [])),
        )
        if self.yield_between_read_and_write:
            await asyncio.sleep(0)
        return state

    async def append_rating(self, book_id, user_id, grade, new_average, expected_revision,
                            rating_count) -> bool:
        self.append_attempts += 1
        document = self.documents.get(to_object_id(book_id))
        if document is None or (document.get("revision") or 0) != expected_revision:
            return False
        if any(r["userId"] == user_id for r in document.get("ratings", [])):
            return False
        document.setdefault("ratings", []).append({"userId": user_id, "grade": grade})
        document["averageRating"] = new_average
        document["ratingCount"] = rating_count
        document["revision"] = expected_revision + 1
        return True

    async def update_fields(self, book_id: str, changes: Dict[str, Any]) -> bool:
        document = self.documents.get(to_object_id(book_id))
        if document is None:
            return False
        document.update(changes)
        document["revision"] = (document.get("revision") or 0) + 1
        return True

    async def delete(self, book_id: str) -> bool:
        return self.documents.pop(to_object_id(book_id), None) is not None

    async def find(self, filter_query, sort: List[Tuple[str, int]], skip: int = 0,
                   limit: Optional[int] = None) -> List[Book]:
        documents = [d for d in self.documents.values() if _matches(d, filter_query)]
        for field, direction in reversed(sort):
            documents.sort(key=lambda d: d.get(field), reverse=direction < 0)
        documents = documents[skip:]
        if limit:
            documents = documents[:limit]
        return [Book.from_document(d) for d in documents]

    async def count(self, filter_query) -> int:
        return sum(1 for d in self.documents.values() if _matches(d, filter_query))

    async def iter_rating_summaries(self):
        for object_id, document in list(self.documents.items()):
            grades = [r["grade"] for r in document["ratings"]]
            yield str(object_id), grades, document.get("averageRating", 0), document.get("ratingCount")

    async def set_rating_summary(self, book_id: str, average: float, count: int) -> None:
        document = self._document(book_id)
        document["averageRating"] = average
        document["ratingCount"] = count
        document["revision"] = (document.get("revision") or 0) + 1


class InMemoryUserStore(UserStore):
    """Dict-backed UserStore enforcing unique emails."""

    def __init__(self):
        super().__init__(collection=None)
        self.documents: Dict[str, Dict[str, Any]] = {}

    async def insert(self, email: str, password_hash: str) -> str:
        if any(d["email"] == email for d in self.documents.values()):
            raise ValidationError("Email already in use")
        user_id = str(ObjectId())
        self.documents[user_id] = {"_id": user_id, "email": email, "password": password_hash}
        return user_id

    async def find_by_email(self, email: str) -> Optional[User]:
        for document in self.documents.values():
            if document["email"] == email:
                return User.from_document(document)
        return None


@pytest.fixture
def book_store():
    """Empty in-memory book store."""
    return InMemoryBookStore()


@pytest.fixture
def user_store():
    """Empty in-memory user store."""
    return InMemoryUserStore()


@pytest.fixture
def credentials():
    """Credential service with a fixed test secret."""
    return CredentialService(secret=TEST_SECRET)


@pytest.fixture
def gate(credentials, book_store):
    """Authorization gate over the in-memory book store."""
    return AuthorizationGate(credentials, book_store)


@pytest.fixture
def image_storage(tmp_path):
    """Image storage writing to a temporary directory."""
    return LocalImageStorage(directory=tmp_path / "images", base_url="http://testserver")


@pytest.fixture
def validator():
    """Book validator with a fixed current year."""
    return BookInputValidator(current_year=2024)


@pytest.fixture
def test_settings(tmp_path):
    """Settings for building services in tests."""
    return APIConfig(
        jwt_secret=TEST_SECRET,
        image_dir=str(tmp_path / "images"),
        public_base_url="http://testserver",
        log_format="console",
    )


@pytest.fixture
def services(book_store, user_store, test_settings):
    """Full service bundle over the in-memory stores."""
    return build_services(book_store, user_store, test_settings)


@pytest.fixture
def sample_book_input():
    """Valid raw book input."""
    return {
        "title": "Nineteen Eighty-Four",
        "author": "George Orwell",
        "genre": "Dystopia",
        "year": 1949,
    }
