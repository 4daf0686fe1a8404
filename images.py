import logging
import os
import secrets
from datetime import datetime, timezone
from pathlib import Path
from typing import Annotated, Optional

from fastapi import Depends

from config import UPLOADS_DIR, UPLOADS_URL_PREFIX
from errors import ValidationError

logger = logging.getLogger(__name__)


class LocalImageStore:
    """Keeps uploaded product images on local disk.

    References handed out look like ``/uploads/<file>`` so the same string can
    be served by the static files mount and later released.
    """

    def __init__(self, directory: str, url_prefix: str = "/uploads") -> None:
        self.directory = Path(directory)
        self.url_prefix = url_prefix.rstrip("/")
        self.directory.mkdir(parents=True, exist_ok=True)

    def save(self, data: bytes, filename: str) -> str:
        if not data:
            raise ValidationError("Product image is required")

        base, ext = os.path.splitext(os.path.basename(filename or "image"))
        base = "".join(c for c in base if c.isalnum() or c in "-_") or "image"
        ext = ext.lower() if ext else ".bin"

        ts = int(datetime.now(timezone.utc).timestamp())
        name = f"{base}-{ts}-{secrets.token_hex(4)}{ext}"

        (self.directory / name).write_bytes(data)
        return f"{self.url_prefix}/{name}"

    def path_for(self, reference: str) -> Optional[Path]:
        prefix = self.url_prefix + "/"
        if not reference or not reference.startswith(prefix):
            return None
        name = reference[len(prefix):]
        # Only plain file names inside the store directory
        if not name or name != os.path.basename(name):
            return None
        return self.directory / name

    def release(self, reference: str) -> bool:
        """Delete the file behind a reference. Never raises."""
        path = self.path_for(reference)
        if path is None:
            logger.warning("Not releasing foreign image reference %r", reference)
            return False
        try:
            path.unlink()
        except FileNotFoundError:
            logger.warning("Image %s already gone", reference)
            return False
        except OSError as e:
            logger.warning("Error deleting image %s: %s", reference, e)
            return False
        return True


_store: Optional[LocalImageStore] = None


def get_image_store() -> LocalImageStore:
    """Process-wide store for dependency injection."""
    global _store
    if _store is None:
        _store = LocalImageStore(UPLOADS_DIR, UPLOADS_URL_PREFIX)
    return _store


ImageStoreDep = Annotated[LocalImageStore, Depends(get_image_store)]
