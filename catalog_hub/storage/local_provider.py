"""
Local filesystem storage provider for development and tests.
Objects are addressed as {PUBLIC_BASE_URL}/files/local/<key> and served by the files router.
"""
from typing import Optional
from pathlib import Path
from urllib.parse import quote, unquote

import structlog

from ..config import settings
from .provider import StorageProvider

logger = structlog.get_logger(__name__)


class LocalStorageProvider(StorageProvider):
    """Local filesystem storage provider."""

    name = "local"

    def __init__(self, base_dir: Optional[str] = None, base_url: Optional[str] = None):
        self.base_dir = Path(base_dir or settings.storage_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)
        (self.base_dir / "uploads").mkdir(exist_ok=True)
        self.url_prefix = f"{(base_url or settings.public_base_url).rstrip('/')}/files/local/"

    def _path_for_key(self, key: str) -> Path:
        # Remove leading slash and sanitize
        clean_key = key.lstrip("/").replace("..", "").replace("\\", "/")
        return self.base_dir / "uploads" / clean_key

    def key_for_ref(self, ref: str) -> str:
        if not self.owns(ref):
            raise FileNotFoundError(ref)
        return unquote(ref[len(self.url_prefix):])

    def path_for_ref(self, ref: str) -> Path:
        return self._path_for_key(self.key_for_ref(ref))

    def put(self, data: bytes, content_type: str, key: str) -> str:
        path = self._path_for_key(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        logger.info("local_object_stored", key=key, size_bytes=len(data), content_type=content_type)
        return f"{self.url_prefix}{quote(key.lstrip('/'))}"

    def get(self, ref: str) -> bytes:
        path = self.path_for_ref(ref)
        if not path.is_file():
            raise FileNotFoundError(ref)
        return path.read_bytes()

    def exists(self, ref: str) -> bool:
        if not self.owns(ref):
            return False
        return self.path_for_ref(ref).is_file()

    def owns(self, ref: str) -> bool:
        return bool(ref) and ref.startswith(self.url_prefix)

    def get_download_url(self, ref: str, expires_s: int) -> Optional[str]:
        if self.exists(ref):
            return ref
        return None

    def delete(self, ref: str) -> None:
        if not self.owns(ref):
            return
        path = self.path_for_ref(ref)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("local_object_delete_failed", ref=ref, error=str(e))
