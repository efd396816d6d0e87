"""
Rating ledger.

Enforces one rating per user per book and keeps averageRating up to date
incrementally: the new mean is derived from the stored mean and count, never
by re-summing the ratings list.

Concurrent submissions are serialized with optimistic concurrency. The
rating state is read with its revision, the new average computed, and the
write is conditional on the revision being unchanged; a conflicting write
causes a re-read and retry.
"""

import asyncio
from typing import Iterable, Optional

import structlog

from catalog.errors import DuplicateRatingError, StorageError
from catalog.models import Book
from catalog.store import BookStore
from catalog.validators import validate_grade
from utilities.logger import CatalogLogger

logger = structlog.get_logger(__name__)

AVERAGE_PRECISION = 3
DEFAULT_MAX_ATTEMPTS = 10


def incremental_average(old_average: float, count_after: int, grade: int,
                        precision: int = AVERAGE_PRECISION) -> float:
    """
    Mean after adding one grade.

    count_after is the number of ratings including the new one. The result is
    rounded to `precision` decimals before storage.
    """
    if count_after < 1:
        raise ValueError("count_after must be at least 1")
    previous = old_average if count_after > 1 else 0
    return round((previous * (count_after - 1) + grade) / count_after, precision)


def full_average(grades: Iterable[int], precision: int = AVERAGE_PRECISION) -> float:
    """Mean of all grades, 0 when there are none. Used to repair stored averages."""
    grades = list(grades)
    if not grades:
        return 0
    return round(sum(grades) / len(grades), precision)


class RatingLedger:
    """Appends ratings and maintains the running average."""

    def __init__(
        self,
        store: BookStore,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        retry_delay: float = 0.005,
        audit: Optional[CatalogLogger] = None,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.store = store
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self.audit = audit or CatalogLogger("catalog.ledger")

    async def submit_rating(self, book_id: str, user_id: str, grade) -> Book:
        """
        Record user_id's grade for book_id and return the updated book.

        Raises:
            InvalidGradeError: grade is not an integer in 1..5
            NotFoundError: the book does not exist
            DuplicateRatingError: the user already rated this book
            StorageError: store failure, or too many write conflicts
        """
        grade = validate_grade(grade)

        for attempt in range(1, self.max_attempts + 1):
            state = await self.store.get_rating_state(book_id, user_id)
            if state.already_rated:
                self.audit.log_duplicate_rating(book_id=book_id, user_id=user_id)
                raise DuplicateRatingError()

            rating_count = state.rating_count + 1
            new_average = incremental_average(state.average_rating, rating_count, grade)
            written = await self.store.append_rating(
                book_id, user_id, grade, new_average,
                expected_revision=state.revision, rating_count=rating_count
            )
            if written:
                self.audit.log_rating_submitted(
                    book_id=book_id,
                    user_id=user_id,
                    grade=grade,
                    average_rating=new_average,
                    rating_count=rating_count,
                )
                return await self.store.get(book_id)

            logger.debug("Rating write conflict", book_id=book_id, attempt=attempt)
            if self.retry_delay:
                await asyncio.sleep(self.retry_delay * attempt)

        logger.warning("Rating not recorded after retries", book_id=book_id, attempts=self.max_attempts)
        raise StorageError("Too many concurrent updates, try again", retryable=True)


async def repair_averages(store: BookStore) -> int:
    """
    Recompute averageRating and ratingCount of every book from its ratings.

    Maintenance path for documents written before ratingCount existed or
    edited by hand. Returns the number of books whose summary changed.
    """
    repaired = 0
    async for book_id, grades, stored_average, stored_count in store.iter_rating_summaries():
        average = full_average(grades)
        if average != stored_average or len(grades) != stored_count:
            await store.set_rating_summary(book_id, average, len(grades))
            repaired += 1
    logger.info("Rating summaries repaired", repaired=repaired)
    return repaired
