import uuid
from datetime import datetime, timezone
from typing import Dict, List

import structlog
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session, joinedload

from ..auth.security import get_current_user
from ..db import get_db
from ..models.models import Client, Order, OrderHistory, Product, User
from ..schemas.orders import OrderCreate
from ..schemas.pdf import SharedPdfCreate, SharedPdfCreated, SharedPdfListItem, SharedProductSummary
from ..services.shared_links import ShareableLinkService
from .orders import order_out
from .products import product_out


router = APIRouter(prefix="/shared-pdf", tags=["shared-pdf"])
logger = structlog.get_logger(__name__)


def _load_products(db: Session, product_ids: List[str]) -> List[Product]:
    """Live products for the ids, in link order; deleted products are left out."""
    uuids = []
    for pid in product_ids:
        try:
            uuids.append(uuid.UUID(pid))
        except ValueError:
            continue
    if not uuids:
        return []
    rows = db.query(Product).options(joinedload(Product.brand)).filter(Product.id.in_(uuids)).all()
    by_id: Dict[uuid.UUID, Product] = {p.id: p for p in rows}
    return [by_id[u] for u in uuids if u in by_id]


@router.post("", response_model=SharedPdfCreated)
def create_shared_pdf(
    payload: SharedPdfCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    product_ids = payload.product_ids
    if isinstance(product_ids, str):
        product_ids = [p.strip() for p in product_ids.split(",")]
    client_id = None
    if payload.client_id:
        try:
            client_id = uuid.UUID(payload.client_id)
        except ValueError:
            raise HTTPException(status_code=400, detail="Client does not exist")
        if db.get(Client, client_id) is None:
            raise HTTPException(status_code=400, detail="Client does not exist")
    try:
        link = ShareableLinkService(db).create(
            product_ids,
            owner_id=user.id,
            expires_at=payload.expires_at,
            client_id=client_id,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return SharedPdfCreated(slug=link.slug, url=f"/shared/{link.slug}", expires_at=link.expires_at)


@router.get("", response_model=List[SharedPdfListItem])
def list_shared_pdfs(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    now = datetime.now(timezone.utc)
    out = []
    for link in ShareableLinkService(db).list_for_owner(user.id):
        products = _load_products(db, link.product_ids)
        out.append(SharedPdfListItem(
            slug=link.slug,
            products=[SharedProductSummary(id=str(p.id), name=p.name, pdf_ref=p.pdf_ref) for p in products],
            client_id=link.client_id,
            created_at=link.created_at,
            expires_at=link.expires_at,
            expired=now > link.expires_at,
        ))
    return out


@router.get("/{slug}")
def get_shared_pdf(slug: str, db: Session = Depends(get_db)):
    link = ShareableLinkService(db).resolve(slug)
    if link is None:
        return JSONResponse(status_code=404, content={"error": "Shared link not found", "products": []})
    products = _load_products(db, link.product_ids)
    return {
        "slug": link.slug,
        "expiresAt": link.expires_at.isoformat(),
        "products": [product_out(p).model_dump(mode="json") for p in products],
    }


@router.post("/{slug}/orders", status_code=201)
def place_order(slug: str, payload: OrderCreate, db: Session = Depends(get_db)):
    """Public: a viewer of a live link orders some of its products."""
    link = ShareableLinkService(db).resolve(slug)
    if link is None:
        raise HTTPException(status_code=404, detail="Shared link not found")
    unknown = [pid for pid in payload.quantities if pid not in link.product_ids]
    if unknown:
        raise HTTPException(status_code=400, detail={"error": "Products are not part of this link", "ids": unknown})
    products = [pid for pid in link.product_ids if payload.quantities.get(pid, 0) > 0]
    order = Order(
        slug=link.slug,
        products=products,
        quantities={pid: payload.quantities[pid] for pid in products},
        status="CREATED",
    )
    order.history.append(OrderHistory(message="Order placed"))
    db.add(order)
    db.commit()
    db.refresh(order)
    logger.info("order_placed", order_id=str(order.id), slug=link.slug, products=len(products))
    return order_out(db, order)
