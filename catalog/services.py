"""
Book and user services.

BookService orchestrates record mutations: validation happens before
anything is written, ownership is checked through the authorization gate,
and image references are released best effort after the record change.
UserService handles signup and login.
"""

import asyncio
from typing import Any, NamedTuple, Optional, Tuple

import structlog

from catalog.access import AuthorizationGate
from catalog.credentials import CredentialService, hash_password, verify_password
from catalog.errors import NotFoundError, StorageError, UnauthenticatedError, ValidationError
from catalog.images import LocalImageStorage
from catalog.store import BookStore, UserStore
from catalog.validators import BookInputValidator, validate_credentials
from utilities.logger import CatalogLogger

logger = structlog.get_logger(__name__)

INVALID_LOGIN = "Invalid email/password combination"


class ImageUpload(NamedTuple):
    """Raw uploaded image."""
    data: bytes
    content_type: str


class BookService:
    """Create, update and delete book records."""

    def __init__(
        self,
        store: BookStore,
        gate: AuthorizationGate,
        images: LocalImageStorage,
        validator: Optional[BookInputValidator] = None,
        audit: Optional[CatalogLogger] = None,
    ):
        self.store = store
        self.gate = gate
        self.images = images
        self.validator = validator or BookInputValidator()
        self.audit = audit or CatalogLogger("catalog.books")

    async def create_book(self, owner_id: str, raw: Any, image: Optional[ImageUpload]) -> str:
        """
        Create a book owned by owner_id and return its id.

        Client-supplied identity fields (_id, userId, ratings, averageRating)
        are ignored; only the validated book fields are stored.
        """
        fields = self.validator.validate_new(raw)
        if image is None:
            raise ValidationError("Image is required")

        image_url = await self.images.store(image.data, image.content_type)
        document = {**fields.to_document(), "userId": owner_id, "imageUrl": image_url}
        try:
            book_id = await self.store.insert(document)
        except StorageError:
            await self._release_image(image_url)
            raise

        self.audit.log_book_created(book_id=book_id, user_id=owner_id, title=fields.title)
        return book_id

    async def update_book(self, book_id: str, user_id: str, raw: Any,
                          image: Optional[ImageUpload] = None) -> None:
        """
        Merge the supplied fields into the book; owner only.

        A new image replaces the old one, whose reference is released after
        the record is updated.
        """
        current = await self.gate.require_owner(book_id, user_id, extra_fields=("imageUrl",))
        changes = self.validator.validate_changes(raw if raw is not None else {}).to_document()

        new_image_url = None
        if image is not None:
            new_image_url = await self.images.store(image.data, image.content_type)
            changes["imageUrl"] = new_image_url

        if not changes:
            logger.debug("Update without changes", book_id=book_id)
            return

        try:
            updated = await self.store.update_fields(book_id, changes)
        except StorageError:
            if new_image_url:
                await self._release_image(new_image_url)
            raise
        if not updated:
            if new_image_url:
                await self._release_image(new_image_url)
            raise NotFoundError()

        if new_image_url:
            await self._release_image(current.get("imageUrl"))

        self.audit.log_book_updated(
            book_id=book_id,
            user_id=user_id,
            fields=sorted(key for key in changes if key != "imageUrl"),
            image_replaced=new_image_url is not None,
        )

    async def delete_book(self, book_id: str, user_id: str) -> None:
        """Remove the book and release its image; owner only."""
        current = await self.gate.require_owner(book_id, user_id, extra_fields=("imageUrl",))
        if not await self.store.delete(book_id):
            raise NotFoundError()
        await self._release_image(current.get("imageUrl"))
        self.audit.log_book_deleted(book_id=book_id, user_id=user_id)

    async def _release_image(self, reference: Optional[str]) -> None:
        if not reference:
            return
        try:
            released = await self.images.release(reference)
            error = None if released else "release returned failure"
        except Exception as e:
            released, error = False, str(e)
        if not released:
            self.audit.log_image_release_failed(reference=reference, error=error)


class UserService:
    """Signup and login."""

    def __init__(self, store: UserStore, credentials: CredentialService):
        self.store = store
        self.credentials = credentials

    async def signup(self, email: Any, password: Any) -> str:
        """Create an account and return the new user id."""
        email, password = validate_credentials(email, password)
        password_hash = await asyncio.to_thread(hash_password, password)
        user_id = await self.store.insert(email, password_hash)
        logger.info("User created", user_id=user_id)
        return user_id

    async def login(self, email: Any, password: Any) -> Tuple[str, str]:
        """Return (user_id, token). Every failure gives the same error."""
        try:
            email, password = validate_credentials(email, password)
        except ValidationError:
            raise UnauthenticatedError(INVALID_LOGIN) from None

        user = await self.store.find_by_email(email)
        if user is None:
            raise UnauthenticatedError(INVALID_LOGIN)
        valid = await asyncio.to_thread(verify_password, password, user.password_hash)
        if not valid:
            logger.info("Login rejected", user_id=user.id)
            raise UnauthenticatedError(INVALID_LOGIN)
        return user.id, self.credentials.issue(user.id)
