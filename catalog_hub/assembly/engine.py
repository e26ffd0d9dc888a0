"""
PDF assembly: resolves every manifest entry concurrently, then copies pages into
a single document strictly in manifest order.
"""
import asyncio
import io
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import structlog
from PyPDF2 import PdfReader, PdfWriter

from ..config import settings
from .manifest import Manifest, ManifestEntry
from .resolver import PageSourceResolver, PdfByteSource, Resolution, ResolutionFailure

logger = structlog.get_logger(__name__)


class FatalAssemblyError(Exception):
    """Nothing could be assembled from the manifest."""

    def __init__(self, message: str, skipped: Optional[List[ResolutionFailure]] = None):
        self.skipped = list(skipped or [])
        super().__init__(message)


@dataclass
class AssemblyResult:
    data: bytes
    page_count: int
    skipped: List[ResolutionFailure] = field(default_factory=list)
    included: List[ManifestEntry] = field(default_factory=list)


def _read_pages(source: PdfByteSource) -> list:
    """Pages of one source, copied out in isolation.

    PyPDF2 loads page resources lazily, so a broken object only shows up when
    the page is copied or written. Every page goes through a scratch writer
    first; the merged document only ever receives pages re-read from that
    clean copy.
    """
    reader = PdfReader(io.BytesIO(source.data), strict=False)
    if reader.is_encrypted:
        # Owner-password-only files open with an empty user password
        reader.decrypt("")
    scratch = PdfWriter()
    copied = 0
    for page in reader.pages:
        scratch.add_page(page)
        copied += 1
    if not copied:
        return []
    buf = io.BytesIO()
    scratch.write(buf)
    return list(PdfReader(io.BytesIO(buf.getvalue())).pages)


def concatenate(resolutions: Sequence[Resolution]) -> AssemblyResult:
    """Concatenate resolved sources in the given order, skipping failures in place."""
    writer = PdfWriter()
    skipped: List[ResolutionFailure] = []
    included: List[ManifestEntry] = []
    page_count = 0

    for resolution in resolutions:
        if isinstance(resolution, ResolutionFailure):
            skipped.append(resolution)
            continue
        try:
            pages = _read_pages(resolution)
        except Exception as e:
            logger.warning(
                "source_unreadable",
                position=resolution.entry.position,
                kind=resolution.entry.kind,
                source_id=resolution.entry.source_id,
                error=str(e),
            )
            skipped.append(ResolutionFailure(entry=resolution.entry, reason="unreadable_pdf", detail=str(e)))
            continue
        for page in pages:
            writer.add_page(page)
        page_count += len(pages)
        included.append(resolution.entry)

    if not included:
        raise FatalAssemblyError("No page source could be resolved", skipped)
    if page_count == 0:
        raise FatalAssemblyError("Resolved page sources contain no pages", skipped)

    out = io.BytesIO()
    writer.write(out)
    return AssemblyResult(data=out.getvalue(), page_count=page_count, skipped=skipped, included=included)


class AssemblyEngine:
    def __init__(self, resolver: PageSourceResolver, concurrency: Optional[int] = None):
        self.resolver = resolver
        self.concurrency = max(1, concurrency or settings.assembly_concurrency)

    async def resolve_all(self, manifest: Manifest) -> List[Resolution]:
        semaphore = asyncio.Semaphore(self.concurrency)

        async def _bounded(entry: ManifestEntry) -> Resolution:
            async with semaphore:
                return await self.resolver.resolve(entry)

        # gather keeps input order regardless of completion order
        return list(await asyncio.gather(*(_bounded(entry) for entry in manifest)))

    async def assemble(self, manifest: Manifest) -> AssemblyResult:
        if len(manifest) == 0:
            raise FatalAssemblyError("Manifest is empty")
        resolutions = await self.resolve_all(manifest)
        result = await asyncio.to_thread(concatenate, resolutions)
        logger.info(
            "pdf_assembled",
            entries=len(manifest),
            included=len(result.included),
            skipped=len(result.skipped),
            page_count=result.page_count,
            size_bytes=len(result.data),
        )
        return result
