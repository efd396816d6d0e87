"""
Authorization gate.

Two stateless checks run before any mutation:
- identity: the bearer credential resolves to a user id
- ownership: the caller is the book's owner (modify and delete only)

Both load the smallest projection that can answer the question; the image
and the full ratings list are never read just to authorize.
"""

from typing import Any, Dict, Iterable, Optional

from catalog.credentials import CredentialService
from catalog.errors import ForbiddenError, UnauthenticatedError
from catalog.store import BookStore
from utilities.logger import CatalogLogger

BEARER_SCHEME = "bearer"


class AuthorizationGate:
    """Identity and ownership checks."""

    def __init__(self, credentials: CredentialService, store: BookStore,
                 audit: Optional[CatalogLogger] = None):
        self.credentials = credentials
        self.store = store
        self.audit = audit or CatalogLogger("catalog.access")

    def authenticate(self, authorization: Optional[str]) -> str:
        """Resolve an Authorization header value to a user id."""
        if not authorization:
            raise UnauthenticatedError()
        scheme, _, token = authorization.strip().partition(" ")
        token = token.strip()
        if scheme.lower() != BEARER_SCHEME or not token:
            raise UnauthenticatedError()
        return self.credentials.verify(token)

    async def require_owner(self, book_id: str, user_id: str,
                            extra_fields: Iterable[str] = ()) -> Dict[str, Any]:
        """
        Ensure user_id owns book_id.

        Returns the projected document (userId plus extra_fields) so callers
        needing e.g. the image reference do not read the book twice.

        Raises:
            NotFoundError: the book does not exist
            ForbiddenError: the caller is not the owner
        """
        document = await self.store.get_projection(book_id, ("userId", *extra_fields))
        if str(document.get("userId")) != user_id:
            self.audit.log_access_denied(book_id=book_id, user_id=user_id, reason="not_owner")
            raise ForbiddenError()
        return document

