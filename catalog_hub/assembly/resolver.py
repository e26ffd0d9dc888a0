"""
Page-source resolution: turns one manifest entry into the raw bytes of its PDF.

Resolution never raises. Every problem (unknown id, media not uploaded yet,
unreachable URL, timeout, non-PDF payload) comes back as a ResolutionFailure so
the assembly engine can skip the entry and report it.
"""
import asyncio
import base64
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union
from urllib.parse import urlparse, unquote

import httpx
import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import settings
from ..models.models import Collateral, Product
from ..storage.provider import StorageProvider
from .manifest import ManifestEntry, PRODUCT, CORPORATE_FRONT, CORPORATE_BACK, ADVERTISEMENT, PROMOTION

logger = structlog.get_logger(__name__)

PDF_MAGIC = b"%PDF-"
# Readers accept the header anywhere in the first KiB
PDF_HEADER_WINDOW = 1024


@dataclass(frozen=True)
class SourceRecord:
    kind: str
    blob_ref: Optional[str]


@dataclass(frozen=True)
class PdfByteSource:
    entry: ManifestEntry
    data: bytes
    ref: str


@dataclass(frozen=True)
class ResolutionFailure:
    entry: ManifestEntry
    reason: str
    detail: Optional[str] = None

    def as_dict(self) -> dict:
        out = self.entry.as_dict()
        out["reason"] = self.reason
        if self.detail:
            out["detail"] = self.detail
        return out


Resolution = Union[PdfByteSource, ResolutionFailure]


class InvalidSourceId(ValueError):
    pass


class HttpStatusFailure(Exception):
    def __init__(self, status_code: int):
        self.status_code = status_code
        super().__init__(f"HTTP {status_code}")


class CatalogSourceLookup:
    """Finds the blob reference behind a manifest entry in the catalog tables."""

    def __init__(self, db: Session):
        self.db = db

    def find(self, entry: ManifestEntry) -> Optional[SourceRecord]:
        try:
            record_id = uuid.UUID(str(entry.source_id))
        except ValueError:
            raise InvalidSourceId(entry.source_id)
        if entry.kind == PRODUCT:
            product = self.db.get(Product, record_id)
            if product is None:
                return None
            return SourceRecord(kind=PRODUCT, blob_ref=product.pdf_ref)
        if entry.kind in (CORPORATE_FRONT, CORPORATE_BACK, ADVERTISEMENT, PROMOTION):
            item = self.db.get(Collateral, record_id)
            if item is None:
                return None
            return SourceRecord(kind=item.kind, blob_ref=item.blob_ref)
        return None


class PageSourceResolver:
    """Fetches PDF bytes for manifest entries with a bounded timeout per fetch.

    Use as an async context manager so a shared httpx client is opened once per
    assembly run; an externally supplied client is left open.
    """

    def __init__(
        self,
        lookup,
        store: Optional[StorageProvider] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
    ):
        self.lookup = lookup
        self.store = store
        self.timeout = settings.fetch_timeout_s if timeout is None else timeout
        self._client = http_client
        self._owns_client = http_client is None

    async def __aenter__(self) -> "PageSourceResolver":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, follow_redirects=True)
        return self._client

    async def resolve(self, entry: ManifestEntry) -> Resolution:
        try:
            record = self.lookup.find(entry)
        except InvalidSourceId:
            return self._fail(entry, "invalid_id")
        except SQLAlchemyError as e:
            return self._fail(entry, "lookup_failed", str(e))

        if record is None:
            return self._fail(entry, "not_found")
        if record.kind != entry.kind:
            return self._fail(entry, "kind_mismatch", f"record is {record.kind}")
        if not record.blob_ref:
            # Upload still in flight or failed; the record exists but has no media yet
            return self._fail(entry, "blob_unavailable")

        ref = record.blob_ref
        try:
            data = await asyncio.wait_for(self._fetch(ref), timeout=self.timeout)
        except (asyncio.TimeoutError, httpx.TimeoutException):
            return self._fail(entry, "timeout", ref)
        except HttpStatusFailure as e:
            return self._fail(entry, f"http_{e.status_code}", ref)
        except FileNotFoundError:
            return self._fail(entry, "blob_missing", ref)
        except (httpx.HTTPError, OSError, ValueError) as e:
            return self._fail(entry, "fetch_failed", str(e))
        except Exception as e:
            logger.exception("source_fetch_error", kind=entry.kind, source_id=entry.source_id, ref=ref)
            return self._fail(entry, "fetch_failed", str(e))

        if PDF_MAGIC not in data[:PDF_HEADER_WINDOW]:
            return self._fail(entry, "not_a_pdf", ref)
        logger.debug("source_resolved", kind=entry.kind, source_id=entry.source_id, size_bytes=len(data))
        return PdfByteSource(entry=entry, data=data, ref=ref)

    async def _fetch(self, ref: str) -> bytes:
        if ref.startswith("data:"):
            _, _, payload = ref.partition(",")
            return base64.b64decode(payload, validate=True)
        if self.store is not None and self.store.owns(ref):
            return await asyncio.to_thread(self.store.get, ref)
        scheme = urlparse(ref).scheme
        if scheme in ("http", "https"):
            response = await self._http().get(ref)
            if response.status_code >= 400:
                raise HttpStatusFailure(response.status_code)
            return response.content
        if scheme == "file":
            path = Path(unquote(urlparse(ref).path))
        else:
            path = Path(ref)
        return await asyncio.to_thread(path.read_bytes)

    def _fail(self, entry: ManifestEntry, reason: str, detail: Optional[str] = None) -> ResolutionFailure:
        logger.warning(
            "source_resolution_failed",
            position=entry.position,
            kind=entry.kind,
            source_id=entry.source_id,
            reason=reason,
            detail=detail,
        )
        return ResolutionFailure(entry=entry, reason=reason, detail=detail)
