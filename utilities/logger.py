"""
Structured logging built on structlog.
Provides JSON or console output and an audit helper for catalog events.
"""

import logging
import sys
from pathlib import Path
from typing import Optional, Union

import structlog
from structlog.stdlib import LoggerFactory


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    log_file: Optional[Union[str, Path]] = None,
    debug: bool = False
) -> None:
    """
    Set up structured logging.
    
    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Output format (json or console)
        log_file: Optional log file path
        debug: Add call site information to every event
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )
    
    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]
    if debug:
        processors.append(structlog.processors.CallsiteParameterAdder())
    
    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))
    
    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )
    
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        
        file_handler = logging.FileHandler(log_path)
        file_handler.setLevel(getattr(logging, log_level.upper()))
        file_handler.setFormatter(logging.Formatter('%(message)s'))
        logging.getLogger().addHandler(file_handler)
    
    structlog.get_logger(__name__).info(
        "Logging system initialized",
        level=log_level,
        format=log_format,
        file=str(log_file) if log_file else None,
        debug=debug
    )


class CatalogLogger:
    """
    Audit logger for catalog mutations and access decisions.
    """
    
    def __init__(self, name: str = "catalog"):
        self.logger = structlog.get_logger(name)

    def log_book_created(self, book_id: str, user_id: str, title: str) -> None:
        self.logger.info("Book created", book_id=book_id, user_id=user_id, title=title)
    
    def log_book_updated(self, book_id: str, user_id: str, fields: list, image_replaced: bool) -> None:
        self.logger.info(
            "Book updated",
            book_id=book_id,
            user_id=user_id,
            fields=fields,
            image_replaced=image_replaced
        )
    
    def log_book_deleted(self, book_id: str, user_id: str) -> None:
        self.logger.info("Book deleted", book_id=book_id, user_id=user_id)
    
    def log_rating_submitted(
        self,
        book_id: str,
        user_id: str,
        grade: int,
        average_rating: float,
        rating_count: int
    ) -> None:
        self.logger.info(
            "Rating submitted",
            book_id=book_id,
            user_id=user_id,
            grade=grade,
            average_rating=average_rating,
            rating_count=rating_count
        )
    
    def log_duplicate_rating(self, book_id: str, user_id: str) -> None:
        self.logger.info("Duplicate rating rejected", book_id=book_id, user_id=user_id)
    
    def log_access_denied(self, book_id: str, user_id: str, reason: str) -> None:
        self.logger.warning(
            "Access denied",
            book_id=book_id,
            user_id=user_id,
            reason=reason
        )
    
    def log_image_release_failed(self, reference: str, error: Optional[str]) -> None:
        self.logger.warning("Image release failed", reference=reference, error=error)
