"""
Cover image storage.

Images are written to a local directory and referred to by their public URL.
Releasing an image is best effort: it reports success or failure and never
raises, since losing a stale file must not block a record mutation.
"""

import asyncio
from pathlib import Path
from typing import Union
from uuid import uuid4

import structlog

from catalog.errors import StorageError, ValidationError

logger = structlog.get_logger(__name__)

ALLOWED_CONTENT_TYPES = {
    "image/jpg": "jpg",
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
}
DEFAULT_MAX_BYTES = 1024 * 1024


class LocalImageStorage:
    """Stores uploaded images under `directory`, served at `base_url` + `url_prefix`."""

    def __init__(
        self,
        directory: Union[str, Path],
        base_url: str,
        max_bytes: int = DEFAULT_MAX_BYTES,
        url_prefix: str = "/images",
    ):
        self.directory = Path(directory)
        self.base_url = base_url.rstrip("/")
        self.max_bytes = max_bytes
        self.url_prefix = "/" + url_prefix.strip("/")

    @property
    def public_prefix(self) -> str:
        return f"{self.base_url}{self.url_prefix}/"

    def check_upload(self, data: bytes, content_type: str) -> str:
        """Return the file extension for an acceptable upload or raise ValidationError."""
        extension = ALLOWED_CONTENT_TYPES.get((content_type or "").lower())
        if extension is None:
            raise ValidationError("Invalid image type")
        if not data:
            raise ValidationError("Image is required")
        if len(data) > self.max_bytes:
            raise ValidationError(f"Image exceeds {self.max_bytes} bytes")
        return extension

    async def store(self, data: bytes, content_type: str) -> str:
        """Persist image bytes and return their reference (public URL)."""
        extension = self.check_upload(data, content_type)
        filename = f"{uuid4().hex}.{extension}"
        path = self.directory / filename
        try:
            await asyncio.to_thread(self._write, path, data)
        except OSError as e:
            logger.error("Failed to store image", path=str(path), error=str(e))
            raise StorageError("Image storage failed") from e
        logger.debug("Image stored", filename=filename, size=len(data))
        return self.public_prefix + filename

    def _write(self, path: Path, data: bytes) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)

    def path_for(self, reference: str) -> Union[Path, None]:
        """Local path for a reference this storage issued, else None."""
        if not reference or not reference.startswith(self.public_prefix):
            return None
        filename = reference[len(self.public_prefix):]
        if not filename or Path(filename).name != filename:
            return None
        return self.directory / filename

    async def release(self, reference: str) -> bool:
        """Delete the image behind reference. Returns False instead of raising."""
        path = self.path_for(reference)
        if path is None:
            logger.debug("Image reference not managed here", reference=reference)
            return False
        try:
            await asyncio.to_thread(path.unlink)
        except OSError as e:
            logger.debug("Image release failed", reference=reference, error=str(e))
            return False
        return True
