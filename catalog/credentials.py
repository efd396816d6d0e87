"""
Credential service: password hashing and bearer tokens.

Tokens are JWTs whose subject is the user id. Verification failures of any
kind (bad signature, expiry, malformed token, missing subject) collapse into
the same UnauthenticatedError so callers cannot tell them apart.
"""

from datetime import datetime, timedelta
from typing import Optional

import bcrypt
import structlog
from jose import JWTError, jwt

from catalog.errors import UnauthenticatedError

logger = structlog.get_logger(__name__)

BCRYPT_MAX_BYTES = 72


def _password_bytes(password: str) -> bytes:
    # bcrypt only looks at the first 72 bytes
    return password.encode("utf-8")[:BCRYPT_MAX_BYTES]


def hash_password(password: str) -> str:
    """Salted bcrypt hash of password."""
    return bcrypt.hashpw(_password_bytes(password), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(_password_bytes(password), password_hash.encode("utf-8"))
    except ValueError:
        return False


class CredentialService:
    """Issues and verifies bearer tokens mapped to a user id."""

    def __init__(self, secret: str, algorithm: str = "HS256", expire_hours: int = 24):
        self.secret = secret
        self.algorithm = algorithm
        self.expire_hours = expire_hours

    def issue(self, user_id: str, expires_in: Optional[timedelta] = None) -> str:
        expire = datetime.utcnow() + (expires_in or timedelta(hours=self.expire_hours))
        return jwt.encode({"sub": user_id, "exp": expire}, self.secret, algorithm=self.algorithm)

    def verify(self, token: str) -> str:
        """Return the user id in token or raise UnauthenticatedError."""
        try:
            payload = jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except JWTError as e:
            logger.warning("Token verification failed", error_type=type(e).__name__, token=token[:10] + "...")
            raise UnauthenticatedError() from None
        user_id = payload.get("sub")
        if not isinstance(user_id, str) or not user_id:
            logger.warning("Token without subject", token=token[:10] + "...")
            raise UnauthenticatedError()
        return user_id
