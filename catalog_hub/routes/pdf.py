import asyncio
import uuid
from datetime import datetime, timezone
from typing import List, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..assembly.engine import AssemblyEngine, FatalAssemblyError
from ..assembly.manifest import (
    ADVERTISEMENT,
    IncompleteSelectionError,
    InvalidPlacementError,
    Placement,
    Selection,
    build,
)
from ..assembly.resolver import CatalogSourceLookup, PageSourceResolver
from ..auth.security import get_current_user
from ..config import settings
from ..db import get_db
from ..models.models import Client, Collateral, User
from ..schemas.pdf import AdditionalPage, GeneratePdfRequest, GeneratePdfResponse, SkippedEntry
from ..services.shared_links import ShareableLinkService, as_utc
from ..storage.provider import StorageProvider, canonical_key
from .files import get_storage


router = APIRouter(prefix="/pdf", tags=["pdf"])
logger = structlog.get_logger(__name__)


def _placements(db: Session, pages: List[AdditionalPage]) -> List[Placement]:
    """Attach a kind to each additional page, reading it from the collateral record when the UI omits it."""
    placements = []
    for page in pages:
        kind = (page.kind or "").strip().lower()
        if not kind:
            kind = ADVERTISEMENT
            try:
                item = db.get(Collateral, uuid.UUID(page.id))
            except ValueError:
                item = None
            if item is not None:
                kind = item.kind
        placements.append(Placement(kind=kind, source_id=page.id, position=page.position))
    return placements


def _client(db: Session, client_id: Optional[str]) -> Optional[Client]:
    if not client_id:
        return None
    try:
        c = db.get(Client, uuid.UUID(client_id))
    except ValueError:
        c = None
    if c is None:
        raise HTTPException(status_code=400, detail="Client does not exist")
    return c


@router.post("/generate", response_model=GeneratePdfResponse)
async def generate_pdf(
    req: GeneratePdfRequest,
    db: Session = Depends(get_db),
    storage: StorageProvider = Depends(get_storage),
    user: User = Depends(get_current_user),
):
    selection = Selection(
        front_id=req.front_corporate_id,
        back_id=req.back_corporate_id,
        product_ids=tuple(req.product_ids),
        additional=tuple(_placements(db, req.additional_pages)),
    )
    try:
        manifest = build(selection)
    except IncompleteSelectionError as e:
        raise HTTPException(status_code=400, detail={"error": str(e), "field": e.field})
    except InvalidPlacementError as e:
        raise HTTPException(status_code=400, detail={"error": str(e), "id": e.source_id, "position": e.position})

    client = _client(db, req.client_id)
    if req.share and req.expires_at is not None and as_utc(req.expires_at) <= datetime.now(timezone.utc):
        raise HTTPException(status_code=400, detail="expiresAt must be in the future")

    async with PageSourceResolver(CatalogSourceLookup(db), store=storage) as resolver:
        try:
            result = await AssemblyEngine(resolver).assemble(manifest)
        except FatalAssemblyError as e:
            logger.warning("pdf_generate_failed", user_id=str(user.id), error=str(e), skipped=len(e.skipped))
            raise HTTPException(
                status_code=422,
                detail={
                    "error": f"Could not generate PDF: {e}",
                    "skipped": [f.as_dict() for f in e.skipped],
                },
            )

    name = f"{client.name if client else 'catalog'}.pdf"
    key = canonical_key("generated", name, owner=str(user.id))
    ref = await asyncio.to_thread(storage.put, result.data, "application/pdf", key)
    url = storage.get_download_url(ref, settings.download_url_ttl_s) or ref

    response = GeneratePdfResponse(
        url=url,
        ref=ref,
        page_count=result.page_count,
        skipped=[SkippedEntry(**f.as_dict()) for f in result.skipped],
    )
    if req.share:
        try:
            link = ShareableLinkService(db).create(
                selection.product_ids,
                owner_id=user.id,
                expires_at=req.expires_at,
                client_id=client.id if client else None,
            )
        except ValueError as e:
            # The merged PDF is only kept together with its link
            await asyncio.to_thread(storage.delete, ref)
            logger.warning("pdf_share_failed", user_id=str(user.id), ref=ref, error=str(e))
            raise HTTPException(status_code=400, detail=f"Could not share PDF: {e}")
        response.slug = link.slug
        response.shared_url = f"/shared/{link.slug}"
    logger.info(
        "pdf_generated",
        user_id=str(user.id),
        client_id=str(client.id) if client else None,
        page_count=result.page_count,
        skipped=len(result.skipped),
        ref=ref,
    )
    return response
