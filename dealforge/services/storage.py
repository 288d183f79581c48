"""
Object storage for source files and generated documents.

Objects live under a local root directory, addressed by slash-separated
keys. Downloads go through short-lived URLs signed with HMAC-SHA256.
"""
import hashlib
import hmac
import time
from pathlib import Path
from typing import Optional, Union
from urllib.parse import quote

import structlog

from dealforge.config import get_settings
from dealforge.exceptions import StorageError

logger = structlog.get_logger(__name__)


class ObjectStorage:
    """Filesystem-backed object store with signed download URLs."""

    def __init__(
        self,
        root: Optional[Union[str, Path]] = None,
        signing_secret: Optional[str] = None,
        base_url: str = "/api/v1/storage",
        default_ttl: Optional[int] = None,
    ):
        settings = get_settings()
        self.root = Path(root or settings.storage_dir).resolve()
        self._secret = (signing_secret or settings.storage_signing_secret).encode("utf-8")
        self.base_url = base_url.rstrip("/")
        self.default_ttl = default_ttl or settings.presigned_url_ttl_seconds

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if path != self.root and self.root not in path.parents:
            raise StorageError(key, "Key escapes the storage root")
        return path

    def put(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        path = self._path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as e:
            logger.error("storage_put_failed", key=key, error=str(e))
            raise StorageError(key, str(e)) from e
        logger.info("storage_put", key=key, size=len(data), content_type=content_type)
        return key

    def get(self, key: str) -> bytes:
        path = self._path(key)
        if not path.is_file():
            raise StorageError(key, "Object not found")
        return path.read_bytes()

    def exists(self, key: str) -> bool:
        return self._path(key).is_file()

    def delete(self, key: str) -> None:
        path = self._path(key)
        if path.is_file():
            path.unlink()

    def sign(self, key: str, expires: int) -> str:
        return hmac.new(self._secret, f"{key}:{expires}".encode("utf-8"), hashlib.sha256).hexdigest()

    def presigned_url(self, key: str, ttl: Optional[int] = None, now: Optional[float] = None) -> str:
        """URL that serves the object until ttl seconds from now."""
        expires = int((now if now is not None else time.time()) + (ttl or self.default_ttl))
        signature = self.sign(key, expires)
        return f"{self.base_url}/{quote(key)}?expires={expires}&signature={signature}"

    def verify_signature(self, key: str, expires: int, signature: str, now: Optional[float] = None) -> bool:
        if int(expires) < (now if now is not None else time.time()):
            return False
        return hmac.compare_digest(self.sign(key, int(expires)), signature or "")


_storage_instance: Optional[ObjectStorage] = None


def get_object_storage() -> ObjectStorage:
    """Get singleton object storage instance."""
    global _storage_instance
    if _storage_instance is None:
        _storage_instance = ObjectStorage()
    return _storage_instance
