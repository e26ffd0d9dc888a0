import uuid
from typing import Dict, List, Optional, Tuple

import structlog
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..auth.security import get_current_user
from ..db import get_db
from ..models.models import ORDER_STATUSES, Order, OrderHistory, Product, SharedLink, User
from ..schemas.orders import OrderUpdate
from ..services.shared_links import as_utc


router = APIRouter(prefix="/orders", tags=["orders"])
logger = structlog.get_logger(__name__)


def _product_summaries(db: Session, product_ids: List[str]) -> List[Dict[str, str]]:
    """Id and name of the ordered products still in the catalog, in order."""
    uuids = []
    for pid in product_ids or []:
        try:
            uuids.append(uuid.UUID(str(pid)))
        except ValueError:
            continue
    if not uuids:
        return []
    names = dict(db.query(Product.id, Product.name).filter(Product.id.in_(uuids)).all())
    return [{"id": str(u), "name": names[u]} for u in uuids if u in names]


def order_out(db: Session, order: Order) -> dict:
    return {
        "id": str(order.id),
        "slug": order.slug,
        "status": order.status,
        "products": _product_summaries(db, order.products),
        "quantities": dict(order.quantities or {}),
        "created_at": as_utc(order.created_at).isoformat(),
        "updated_at": as_utc(order.updated_at).isoformat() if order.updated_at else None,
    }


def _order_for_user(db: Session, order_id: uuid.UUID, user: User) -> Tuple[Order, Optional[SharedLink]]:
    order = db.get(Order, order_id)
    if order is None:
        raise HTTPException(status_code=404, detail="Order not found")
    link = db.query(SharedLink).filter(SharedLink.slug == order.slug).first()
    is_admin = any(r.name == "admin" for r in user.roles)
    # Staff only see orders placed through their own links
    if not is_admin and (link is None or link.created_by_id != user.id):
        raise HTTPException(status_code=404, detail="Order not found")
    return order, link


def _order_detail(db: Session, order: Order, link: Optional[SharedLink]) -> dict:
    out = order_out(db, order)
    out["history"] = [
        {"id": str(h.id), "message": h.message, "created_at": as_utc(h.created_at).isoformat()}
        for h in order.history
    ]
    out["client"] = None
    out["created_by"] = None
    out["link_created_at"] = None
    if link is None:
        return out
    if link.client is not None:
        c = link.client
        out["client"] = {"name": c.name, "company": c.company, "email": c.email, "phone": c.phone}
    creator = db.get(User, link.created_by_id)
    if creator is not None:
        out["created_by"] = {"name": creator.name or creator.username, "email": creator.email}
    out["link_created_at"] = as_utc(link.created_at).isoformat()
    return out


@router.get("")
def list_orders(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    """Orders placed through the caller's shared links, newest first."""
    slugs = [s for (s,) in db.query(SharedLink.slug).filter(SharedLink.created_by_id == user.id).all()]
    if not slugs:
        return []
    orders = db.query(Order).filter(Order.slug.in_(slugs)).order_by(Order.created_at.desc()).all()
    return [order_out(db, o) for o in orders]


@router.get("/{order_id}")
def get_order(order_id: uuid.UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    order, link = _order_for_user(db, order_id, user)
    return _order_detail(db, order, link)


@router.patch("/{order_id}")
def update_order(
    order_id: uuid.UUID,
    body: OrderUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    order, link = _order_for_user(db, order_id, user)
    if body.status is None and body.updated_quantities is None:
        raise HTTPException(status_code=400, detail="Nothing to update")
    if body.status is not None and body.status not in ORDER_STATUSES:
        raise HTTPException(status_code=400, detail=f"status must be one of {', '.join(ORDER_STATUSES)}")
    if body.updated_quantities is not None:
        unknown = [pid for pid in body.updated_quantities if pid not in (order.products or [])]
        if unknown:
            raise HTTPException(status_code=400, detail={"error": "Products are not part of this order", "ids": unknown})

    if body.status is not None and body.status != order.status:
        order.status = body.status
        order.history.append(OrderHistory(message=f"Order status updated to {body.status}"))
    if body.updated_quantities is not None:
        # JSON columns are replaced, not mutated in place
        order.quantities = {**(order.quantities or {}), **body.updated_quantities}
        order.history.append(OrderHistory(message="Order quantities updated"))
    db.commit()
    db.refresh(order)
    logger.info("order_updated", order_id=str(order.id), status=order.status, user_id=str(user.id))
    return _order_detail(db, order, link)
