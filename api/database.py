"""
Database wiring for the FastAPI application.

Connects Motor to MongoDB, ensures indexes, and assembles the catalog
services that the routes use.
"""

from dataclasses import dataclass
from typing import Dict, Optional

import structlog
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from api.config import APIConfig
from catalog.access import AuthorizationGate
from catalog.credentials import CredentialService
from catalog.images import LocalImageStorage
from catalog.ledger import RatingLedger
from catalog.queries import CatalogQueryService
from catalog.services import BookService, UserService
from catalog.store import BookStore, UserStore
from catalog.validators import BookInputValidator, SanitizationCache

logger = structlog.get_logger(__name__)


def create_client(settings: APIConfig) -> AsyncIOMotorClient:
    """Motor client whose operations fail after the configured timeout."""
    return AsyncIOMotorClient(
        settings.mongodb_url,
        serverSelectionTimeoutMS=settings.mongodb_timeout_ms,
        timeoutMS=settings.mongodb_timeout_ms,
    )


class APIDatabaseService:
    """Owns the book and user stores of one database."""

    def __init__(self, database: AsyncIOMotorDatabase):
        self.database = database
        self.books = BookStore.from_database(database)
        self.users = UserStore.from_database(database)

    async def ensure_indexes(self) -> None:
        await self.users.create_indexes()
        await self.books.create_indexes()

    async def health_check(self) -> Dict:
        """
        Perform database health check.
        
        Returns:
            Dictionary with health status
        """
        try:
            await self.database.command("ping")
            books_count = await self.database.books.count_documents({})
            users_count = await self.database.users.count_documents({})
            
            return {
                "status": "healthy",
                "books_count": books_count,
                "users_count": users_count
            }
        except Exception as e:
            logger.error("Database health check failed", error=str(e))
            return {
                "status": "unhealthy",
                "error": str(e)
            }


@dataclass
class CatalogServices:
    """Everything the routes need, built once per application."""
    books: BookService
    ledger: RatingLedger
    queries: CatalogQueryService
    users: UserService
    gate: AuthorizationGate
    database: Optional[APIDatabaseService] = None


def build_services(
    book_store: BookStore,
    user_store: UserStore,
    settings: APIConfig,
    images: Optional[LocalImageStorage] = None,
    database: Optional[APIDatabaseService] = None,
) -> CatalogServices:
    credentials = CredentialService(
        secret=settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
        expire_hours=settings.access_token_expire_hours,
    )
    images = images or LocalImageStorage(
        directory=settings.get_image_path(),
        base_url=settings.public_base_url,
        max_bytes=settings.max_image_bytes,
    )
    gate = AuthorizationGate(credentials, book_store)
    validator = BookInputValidator(SanitizationCache(settings.sanitize_cache_size))
    return CatalogServices(
        books=BookService(book_store, gate, images, validator=validator),
        ledger=RatingLedger(book_store, max_attempts=settings.rating_retry_attempts),
        queries=CatalogQueryService(book_store, top_limit=settings.top_rated_limit),
        users=UserService(user_store, credentials),
        gate=gate,
        database=database,
    )
