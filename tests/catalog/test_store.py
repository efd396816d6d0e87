"""
Tests for the MongoDB stores, with the Motor collection mocked.

These pin down the exact queries sent to MongoDB: minimal projections,
the conditional rating write, and error translation.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from bson import ObjectId
from pymongo.errors import DuplicateKeyError, NetworkTimeout, OperationFailure

from catalog.errors import NotFoundError, StorageError, ValidationError
from catalog.ledger import RatingLedger
from catalog.store import BookStore, UserStore, to_object_id

BOOK_ID = "64b7f0c2a1b2c3d4e5f6aaaa"


@pytest.fixture
def collection():
    """Mocked Motor collection."""
    mock = MagicMock()
    mock.find_one = AsyncMock()
    mock.insert_one = AsyncMock()
    mock.update_one = AsyncMock()
    mock.delete_one = AsyncMock()
    mock.count_documents = AsyncMock()
    mock.create_index = AsyncMock()
    return mock


def test_to_object_id():
    assert to_object_id(BOOK_ID) == ObjectId(BOOK_ID)
    with pytest.raises(NotFoundError):
        to_object_id("nope")
    with pytest.raises(NotFoundError):
        to_object_id(None)
    with pytest.raises(NotFoundError):
        to_object_id(ObjectId(BOOK_ID))


class TestBookStore:
    """Test cases for BookStore."""

    @pytest.mark.asyncio
    async def test_insert_initializes_rating_fields(self, collection):
        collection.insert_one.return_value = MagicMock(inserted_id=ObjectId(BOOK_ID))
        store = BookStore(collection)

        book_id = await store.insert({"title": "Dune", "userId": "u1"})

        assert book_id == BOOK_ID
        document = collection.insert_one.call_args.args[0]
        assert document["title"] == "Dune"
        assert document["ratings"] == []
        assert document["averageRating"] == 0
        assert document["ratingCount"] == 0
        assert document["revision"] == 0

    @pytest.mark.asyncio
    async def test_get_not_found(self, collection):
        collection.find_one.return_value = None
        with pytest.raises(NotFoundError):
            await BookStore(collection).get(BOOK_ID)

    @pytest.mark.asyncio
    async def test_get_projection(self, collection):
        collection.find_one.return_value = {"_id": ObjectId(BOOK_ID), "userId": "u1"}
        document = await BookStore(collection).get_projection(BOOK_ID, ("userId",))

        assert document["userId"] == "u1"
        assert collection.find_one.call_args.args == ({"_id": ObjectId(BOOK_ID)}, {"userId": 1})

    @pytest.mark.asyncio
    async def test_rating_state_uses_elem_match(self, collection):
        collection.find_one.return_value = {
            "_id": ObjectId(BOOK_ID),
            "averageRating": 4.5,
            "ratingCount": 2,
            "revision": 7,
            "ratings": [{"userId": "u1", "grade": 5}],
        }
        state = await BookStore(collection).get_rating_state(BOOK_ID, "u1")

        projection = collection.find_one.call_args.args[1]
        assert projection["ratings"] == {"$elemMatch": {"userId": "u1"}}
        assert state.already_rated is True
        assert state.rating_count == 2
        assert state.revision == 7

    @pytest.mark.asyncio
    async def test_rating_state_without_match(self, collection):
        collection.find_one.return_value = {"_id": ObjectId(BOOK_ID), "averageRating": 0,
                                            "ratingCount": 0, "revision": 0}
        state = await BookStore(collection).get_rating_state(BOOK_ID, "u2")
        assert state.already_rated is False

    @pytest.mark.asyncio
    async def test_rating_state_derives_count_for_legacy_books(self, collection):
        collection.find_one.side_effect = [
            {"_id": ObjectId(BOOK_ID), "averageRating": 4.5},
            {"_id": ObjectId(BOOK_ID), "ratings": [{"grade": 5}, {"grade": 4}]},
        ]
        state = await BookStore(collection).get_rating_state(BOOK_ID, "u3")

        assert collection.find_one.call_args.args == ({"_id": ObjectId(BOOK_ID)}, {"ratings.grade": 1})
        assert state.rating_count == 2
        assert state.average_rating == 4.5
        assert state.revision == 0
        assert state.already_rated is False

    @pytest.mark.asyncio
    async def test_rating_legacy_book_keeps_earlier_grades(self, collection):
        legacy = {
            "_id": ObjectId(BOOK_ID),
            "title": "Dune",
            "author": "Frank Herbert",
            "genre": "SF",
            "year": 1965,
            "userId": "owner",
            "imageUrl": "http://localhost:8000/images/dune.webp",
            "averageRating": 4.5,
        }
        rated = {
            **legacy,
            "ratings": [
                {"userId": "u1", "grade": 5},
                {"userId": "u2", "grade": 4},
                {"userId": "u3", "grade": 1},
            ],
            "averageRating": 3.333,
            "ratingCount": 3,
            "revision": 1,
        }
        collection.find_one.side_effect = [
            legacy,
            {"_id": ObjectId(BOOK_ID), "ratings": [{"grade": 5}, {"grade": 4}]},
            rated,
        ]
        collection.update_one.return_value = MagicMock(modified_count=1)

        book = await RatingLedger(BookStore(collection), retry_delay=0).submit_rating(BOOK_ID, "u3", 1)

        filter_query, update = collection.update_one.call_args.args
        assert filter_query["revision"] == {"$in": [0, None]}
        assert update["$set"]["averageRating"] == pytest.approx(3.333, abs=1e-3)
        assert update["$set"]["ratingCount"] == 3
        assert book.rating_count == 3

    @pytest.mark.asyncio
    async def test_append_rating_is_conditional(self, collection):
        collection.update_one.return_value = MagicMock(modified_count=1)

        written = await BookStore(collection).append_rating(
            BOOK_ID, "u1", 4, 4.25, expected_revision=3, rating_count=4
        )

        assert written is True
        filter_query, update = collection.update_one.call_args.args
        assert filter_query == {
            "_id": ObjectId(BOOK_ID),
            "revision": 3,
            "ratings.userId": {"$ne": "u1"},
        }
        assert update["$push"] == {"ratings": {"userId": "u1", "grade": 4}}
        assert update["$set"]["averageRating"] == 4.25
        assert update["$set"]["ratingCount"] == 4
        assert update["$inc"] == {"revision": 1}

    @pytest.mark.asyncio
    async def test_append_rating_conflict(self, collection):
        collection.update_one.return_value = MagicMock(modified_count=0)
        written = await BookStore(collection).append_rating(
            BOOK_ID, "u1", 4, 4.0, expected_revision=0, rating_count=1
        )

        assert written is False
        filter_query = collection.update_one.call_args.args[0]
        assert filter_query["revision"] == {"$in": [0, None]}

    @pytest.mark.asyncio
    async def test_update_fields_bumps_revision(self, collection):
        collection.update_one.return_value = MagicMock(matched_count=1)
        updated = await BookStore(collection).update_fields(BOOK_ID, {"title": "New"})

        assert updated is True
        update = collection.update_one.call_args.args[1]
        assert update["$set"]["title"] == "New"
        assert update["$inc"] == {"revision": 1}

    @pytest.mark.asyncio
    async def test_delete(self, collection):
        collection.delete_one.return_value = MagicMock(deleted_count=0)
        assert await BookStore(collection).delete(BOOK_ID) is False

    @pytest.mark.asyncio
    async def test_timeout_is_retryable_storage_error(self, collection):
        collection.find_one.side_effect = NetworkTimeout("timed out")
        with pytest.raises(StorageError) as exc_info:
            await BookStore(collection).get(BOOK_ID)
        assert exc_info.value.retryable is True
        assert exc_info.value.status_code == 503
        assert exc_info.value.message == "get_book timed out"

    @pytest.mark.asyncio
    async def test_driver_error_is_storage_error(self, collection):
        collection.count_documents.side_effect = OperationFailure("boom")
        with pytest.raises(StorageError) as exc_info:
            await BookStore(collection).count({})
        assert exc_info.value.retryable is False
        assert "boom" not in exc_info.value.message


class TestUserStore:
    """Test cases for UserStore."""

    @pytest.mark.asyncio
    async def test_duplicate_email(self, collection):
        collection.insert_one.side_effect = DuplicateKeyError("E11000 duplicate key")
        with pytest.raises(ValidationError) as exc_info:
            await UserStore(collection).insert("a@b.io", "hash")
        assert exc_info.value.message == "Email already in use"

    @pytest.mark.asyncio
    async def test_find_by_email_hides_password(self, collection):
        collection.find_one.return_value = {"_id": ObjectId(BOOK_ID), "email": "a@b.io", "password": "hash"}
        user = await UserStore(collection).find_by_email("a@b.io")

        assert user.id == BOOK_ID
        assert user.password_hash == "hash"
        assert "password" not in user.model_dump()
        assert "password_hash" not in user.model_dump()

    @pytest.mark.asyncio
    async def test_unique_email_index(self, collection):
        await UserStore(collection).create_indexes()
        collection.create_index.assert_awaited_once_with("email", unique=True)
