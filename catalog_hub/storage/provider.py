import os
import uuid
from datetime import datetime
from typing import Optional

from slugify import slugify


def canonical_key(category: Optional[str], original_name: str, owner: Optional[str] = None) -> str:
    today = datetime.utcnow().strftime("%Y-%m-%d")
    year = datetime.utcnow().strftime("%Y")
    safe_name = slugify(os.path.splitext(original_name)[0]) or "file"
    ext = os.path.splitext(original_name)[1].lower()
    folder = slugify(category or "files")
    owner_part = slugify(owner or "misc")
    return f"catalog/{year}/{folder}/{owner_part}/{today}_{uuid.uuid4().hex[:8]}_{safe_name}{ext}"


class StorageProvider:
    """Document store contract: durable byte blobs addressed by a stable reference URL."""

    name = "base"

    def put(self, data: bytes, content_type: str, key: str) -> str:
        raise NotImplementedError

    def get(self, ref: str) -> bytes:
        raise NotImplementedError

    def delete(self, ref: str) -> None:
        raise NotImplementedError

    def exists(self, ref: str) -> bool:
        raise NotImplementedError

    def owns(self, ref: str) -> bool:
        raise NotImplementedError

    def get_download_url(self, ref: str, expires_s: int) -> Optional[str]:
        raise NotImplementedError
