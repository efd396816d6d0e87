"""
FastAPI main application for the Book Rating API.
"""

import json
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, List, Optional, Tuple, Union

import structlog
from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.datastructures import UploadFile

from api.auth import get_current_user_id, get_services
from api.config import config
from api.database import APIDatabaseService, CatalogServices, build_services, create_client
from api.models import (
    BookPageResponse, BookResponse, CredentialsRequest, ErrorResponse,
    HealthResponse, LoginResponse, MessageResponse, RatingRequest
)
from catalog.errors import CatalogError, ValidationError
from catalog.queries import BookQuery, SortBy, SortOrder
from catalog.services import ImageUpload
from utilities.logger import setup_logging

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    setup_logging(
        log_level=config.log_level,
        log_format=config.log_format,
        log_file=config.log_file,
        debug=config.debug
    )
    logger.info("Starting Book Rating API")

    client = create_client(config)
    try:
        database = client[config.mongodb_database]
        await database.command("ping")
        logger.info("Database connection established")

        db_service = APIDatabaseService(database)
        await db_service.ensure_indexes()
        app.state.services = build_services(
            db_service.books, db_service.users, config, database=db_service
        )
    except Exception as e:
        logger.error("Failed to connect to database", error=str(e))
        client.close()
        raise

    yield

    logger.info("Shutting down Book Rating API")
    client.close()


app = FastAPI(
    title=config.api_title,
    description="""
    REST API for cataloguing and rating books.

    * **Books**: anyone can browse; authenticated users add books with a cover image
    * **Ownership**: only the user who created a book can modify or delete it
    * **Ratings**: each user rates a book at most once (1 to 5); the average is kept up to date

    ## Authentication

    Sign up and log in under `/api/auth`, then send the token:

    ```
    Authorization: Bearer your_token_here
    ```
    """,
    version=config.api_version,
    lifespan=lifespan
)

app.mount(
    "/images",
    StaticFiles(directory=config.get_image_path(), check_dir=False),
    name="images"
)


# Exception handlers
@app.exception_handler(CatalogError)
async def catalog_exception_handler(request: Request, exc: CatalogError):
    """Render catalog errors with their stable code and status."""
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == status.HTTP_401_UNAUTHORIZED else None
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=exc.message,
            code=exc.code,
            detail=exc.errors if isinstance(exc, ValidationError) else None,
            status_code=exc.status_code
        ).model_dump(),
        headers=headers
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Malformed bodies and query parameters are plain validation errors."""
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=ErrorResponse(
            error="Invalid request",
            code="validation_error",
            detail=[f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in exc.errors()],
            status_code=status.HTTP_400_BAD_REQUEST
        ).model_dump()
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Handle HTTP exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=str(exc.detail),
            code="http_error",
            status_code=exc.status_code
        ).model_dump(),
        headers=exc.headers
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions."""
    logger.error("Unhandled exception", error=str(exc), path=request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(
            error="Internal server error",
            code="internal_error",
            detail=[str(exc)] if config.debug else None,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR
        ).model_dump()
    )


def parse_book_json(text: Any) -> Any:
    """Decode the `book` form field."""
    if not isinstance(text, str):
        raise ValidationError("Invalid book data")
    try:
        return json.loads(text)
    except ValueError:
        raise ValidationError("Invalid book data") from None


FORM_CONTENT_TYPES = ("multipart/form-data", "application/x-www-form-urlencoded")


async def read_book_payload(request: Request, max_image_bytes: int) -> Tuple[Any, Optional[ImageUpload]]:
    """
    Extract book fields and the optional image from a request.

    Form requests carry the fields as a JSON string in `book` (or as plain
    form fields) and the file in `image`; other requests carry a JSON body
    and no image. At most max_image_bytes + 1 bytes of the image are read,
    so an oversized upload is rejected without being buffered whole.
    """
    content_type = request.headers.get("content-type", "")
    if content_type.startswith(FORM_CONTENT_TYPES):
        form = await request.form()
        if "book" in form:
            raw = parse_book_json(form.get("book"))
        else:
            raw = {key: value for key, value in form.items() if not isinstance(value, UploadFile)}

        upload = form.get("image")
        image = None
        if isinstance(upload, UploadFile):
            data = await upload.read(max_image_bytes + 1)
            if len(data) > max_image_bytes:
                raise ValidationError(f"Image exceeds {max_image_bytes} bytes")
            image = ImageUpload(data=data, content_type=upload.content_type or "")
        return raw, image

    try:
        return await request.json(), None
    except ValueError:
        raise ValidationError("Invalid book data") from None


# Health check endpoint (no authentication required)
@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check(request: Request):
    """Health check endpoint."""
    services: Optional[CatalogServices] = getattr(request.app.state, "services", None)
    db_status = "unavailable"
    if services is not None and services.database is not None:
        health_info = await services.database.health_check()
        db_status = health_info.get("status", "unknown")

    return HealthResponse(
        status="healthy" if db_status == "healthy" else "degraded",
        timestamp=datetime.utcnow(),
        version=config.api_version,
        database_status=db_status
    )


# Auth endpoints
@app.post(
    "/api/auth/signup",
    response_model=MessageResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Auth"]
)
async def signup(body: CredentialsRequest, services: CatalogServices = Depends(get_services)):
    """Create an account."""
    user_id = await services.users.signup(body.email, body.password)
    return MessageResponse(message="User created successfully", id=user_id)


@app.post("/api/auth/login", response_model=LoginResponse, tags=["Auth"])
async def login(body: CredentialsRequest, services: CatalogServices = Depends(get_services)):
    """Exchange email and password for a bearer token."""
    user_id, token = await services.users.login(body.email, body.password)
    return LoginResponse(user_id=user_id, token=token)


# Book endpoints (public)
@app.get(
    "/api/books",
    response_model=Union[BookPageResponse, List[BookResponse]],
    tags=["Books"]
)
async def list_books(
    title: Optional[str] = None,
    author: Optional[str] = None,
    genre: Optional[str] = None,
    year: Optional[int] = None,
    min_rating: Optional[float] = None,
    sort_by: SortBy = SortBy.TITLE,
    sort_order: SortOrder = SortOrder.ASC,
    page: Optional[int] = None,
    page_size: int = 20,
    services: CatalogServices = Depends(get_services)
):
    """
    List books with filtering, sorting and optional pagination.

    - **title**, **author**, **genre**: case-insensitive substring filters
    - **year**: exact publication year
    - **min_rating**: minimum average rating
    - **sort_by**: title (default), author, year, averageRating
    - **page** / **page_size**: when page is given, the response is
      `{items, totalCount, hasMore}`; otherwise it is a plain array
    """
    try:
        query = BookQuery(
            title=title,
            author=author,
            genre=genre,
            year=year,
            min_rating=min_rating,
            sort_by=sort_by,
            sort_order=sort_order,
            page=page,
            page_size=page_size
        )
    except ValueError as e:
        raise ValidationError("Invalid query parameters", errors=[str(e)]) from None

    result = await services.queries.list_books(query)
    if page is None:
        return [BookResponse.from_book(book) for book in result.items]
    return BookPageResponse.from_page(result)


@app.get("/api/books/bestrating", response_model=List[BookResponse], tags=["Books"])
async def best_rated_books(services: CatalogServices = Depends(get_services)):
    """The three books with the highest average rating."""
    books = await services.queries.best_rated()
    return [BookResponse.from_book(book) for book in books]


@app.get("/api/books/{book_id}", response_model=BookResponse, tags=["Books"])
async def get_book(book_id: str, services: CatalogServices = Depends(get_services)):
    """Get a single book by ID."""
    book = await services.queries.get_book(book_id)
    return BookResponse.from_book(book)


# Book endpoints (authenticated)
@app.post(
    "/api/books",
    response_model=MessageResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Books"]
)
async def create_book(
    request: Request,
    user_id: str = Depends(get_current_user_id),
    services: CatalogServices = Depends(get_services)
):
    """Create a book. Multipart: `book` (JSON string) and `image` (file)."""
    raw, image = await read_book_payload(request, services.books.images.max_bytes)
    book_id = await services.books.create_book(user_id, raw, image)
    return MessageResponse(message="Book added successfully!", id=book_id)


@app.put("/api/books/{book_id}", response_model=MessageResponse, tags=["Books"])
async def modify_book(
    book_id: str,
    request: Request,
    user_id: str = Depends(get_current_user_id),
    services: CatalogServices = Depends(get_services)
):
    """Modify a book you own. Send a new `image` to replace the cover."""
    raw, image = await read_book_payload(request, services.books.images.max_bytes)
    await services.books.update_book(book_id, user_id, raw, image)
    return MessageResponse(message="Book updated successfully!", id=book_id)


@app.delete("/api/books/{book_id}", response_model=MessageResponse, tags=["Books"])
async def delete_book(
    book_id: str,
    user_id: str = Depends(get_current_user_id),
    services: CatalogServices = Depends(get_services)
):
    """Delete a book you own."""
    await services.books.delete_book(book_id, user_id)
    return MessageResponse(message="Book deleted successfully!", id=book_id)


@app.post("/api/books/{book_id}/rating", response_model=BookResponse, tags=["Books"])
async def rate_book(
    book_id: str,
    body: RatingRequest,
    user_id: str = Depends(get_current_user_id),
    services: CatalogServices = Depends(get_services)
):
    """Rate a book from 1 to 5. Each user rates a book once."""
    book = await services.ledger.submit_rating(book_id, user_id, body.rating)
    return BookResponse.from_book(book)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "api.main:app",
        host=config.host,
        port=config.port,
        reload=config.debug,
        log_level="info"
    )
