#!/usr/bin/env python3
"""
Catalog Management Utility

This script provides maintenance commands for the catalog database:
- Create the indexes the API relies on
- Repair stored average ratings from the ratings lists
- Copy books and users from one database to another
- Show catalog statistics
"""

import asyncio
import sys
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

import structlog
from motor.motor_asyncio import AsyncIOMotorClient

from api.config import config
from api.database import APIDatabaseService, create_client
from catalog.ledger import repair_averages
from utilities.logger import setup_logging

logger = structlog.get_logger(__name__)

MIGRATED_COLLECTIONS = ("books", "users")


async def init_indexes():
    """Create indexes on books and users."""
    client = create_client(config)
    try:
        db_service = APIDatabaseService(client[config.mongodb_database])
        await db_service.ensure_indexes()
        print("Indexes created")
    finally:
        client.close()


async def recompute_averages():
    """Recompute averageRating and ratingCount for every book."""
    client = create_client(config)
    try:
        db_service = APIDatabaseService(client[config.mongodb_database])
        repaired = await repair_averages(db_service.books)
        print(f"Books repaired: {repaired}")
    finally:
        client.close()


async def migrate(source_url: str, target_url: str, source_db: str, target_db: str):
    """Copy every document of the migrated collections from source to target."""
    source_client = AsyncIOMotorClient(source_url)
    target_client = AsyncIOMotorClient(target_url)
    try:
        source = source_client[source_db]
        target = target_client[target_db]
        for name in MIGRATED_COLLECTIONS:
            documents = await source[name].find({}).to_list(length=None)
            print(f"Found {len(documents)} documents in {source_db}.{name}")
            if documents:
                result = await target[name].insert_many(documents, ordered=False)
                print(f"{len(result.inserted_ids)} documents inserted into {target_db}.{name}")
        logger.info("Migration completed", source_db=source_db, target_db=target_db)
        print("Migration completed successfully")
    finally:
        source_client.close()
        target_client.close()


async def show_statistics():
    """Show catalog statistics."""
    client = create_client(config)
    try:
        db_service = APIDatabaseService(client[config.mongodb_database])
        health = await db_service.health_check()
        if health["status"] != "healthy":
            print(f"Database unavailable: {health.get('error')}")
            return
        rated = await db_service.books.count({"ratingCount": {"$gt": 0}})
        print(f"Total Books: {health['books_count']}")
        print(f"Rated Books: {rated}")
        print(f"Total Users: {health['users_count']}")
    finally:
        client.close()


def print_usage():
    print("Usage: python manage_catalog.py [init-indexes|recompute-averages|migrate|stats] [args]")
    print()
    print("Commands:")
    print("  init-indexes        - Create database indexes")
    print("  recompute-averages  - Repair stored average ratings")
    print("  migrate             - Copy books and users between databases")
    print("  stats               - Show catalog statistics")
    print()
    print("Examples:")
    print("  python manage_catalog.py init-indexes")
    print("  python manage_catalog.py migrate mongodb://prod:27017 mongodb://dev:27017 book_rating book_rating_dev")


async def main():
    """Main function."""
    if len(sys.argv) < 2:
        print_usage()
        sys.exit(1)
    
    command = sys.argv[1].lower()
    
    setup_logging(
        log_level=config.log_level,
        log_format=config.log_format,
        log_file=config.log_file,
        debug=config.debug
    )
    
    if command == "init-indexes":
        await init_indexes()
    elif command == "recompute-averages":
        await recompute_averages()
    elif command == "migrate":
        if len(sys.argv) < 4:
            print("Error: source and target URLs required")
            print("Usage: python manage_catalog.py migrate <source_url> <target_url> [source_db] [target_db]")
            sys.exit(1)
        source_db = sys.argv[4] if len(sys.argv) > 4 else config.mongodb_database
        target_db = sys.argv[5] if len(sys.argv) > 5 else source_db
        await migrate(sys.argv[2], sys.argv[3], source_db, target_db)
    elif command == "stats":
        await show_statistics()
    else:
        print(f"Unknown command: {command}")
        print_usage()
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
