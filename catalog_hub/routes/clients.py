import uuid
from typing import Optional, List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..auth.security import get_current_user
from ..db import get_db
from ..models.models import Client
from ..schemas.catalog import ClientCreate, ClientUpdate, ClientResponse


router = APIRouter(prefix="/clients", tags=["clients"])


def _get_client(db: Session, client_id: uuid.UUID) -> Client:
    c = db.get(Client, client_id)
    if c is None:
        raise HTTPException(status_code=404, detail="Client not found")
    return c


@router.get("", response_model=List[ClientResponse])
def list_clients(q: Optional[str] = None, db: Session = Depends(get_db), _=Depends(get_current_user)):
    query = db.query(Client)
    if q and q.strip():
        term = f"%{q.strip()}%"
        query = query.filter(Client.name.ilike(term) | Client.company.ilike(term) | Client.email.ilike(term))
    return query.order_by(Client.name.asc()).all()


@router.post("", response_model=ClientResponse, status_code=201)
def create_client(payload: ClientCreate, db: Session = Depends(get_db), _=Depends(get_current_user)):
    if not payload.name.strip():
        raise HTTPException(status_code=400, detail="Client name is required")
    c = Client(**payload.model_dump())
    db.add(c)
    db.commit()
    db.refresh(c)
    return c


@router.get("/{client_id}", response_model=ClientResponse)
def get_client(client_id: uuid.UUID, db: Session = Depends(get_db), _=Depends(get_current_user)):
    return _get_client(db, client_id)


@router.patch("/{client_id}", response_model=ClientResponse)
def update_client(
    client_id: uuid.UUID,
    payload: ClientUpdate,
    db: Session = Depends(get_db),
    _=Depends(get_current_user),
):
    c = _get_client(db, client_id)
    data = payload.model_dump(exclude_unset=True)
    if "name" in data and not (data["name"] or "").strip():
        raise HTTPException(status_code=400, detail="Client name is required")
    for k, v in data.items():
        setattr(c, k, v)
    db.commit()
    db.refresh(c)
    return c


@router.delete("/{client_id}")
def delete_client(client_id: uuid.UUID, db: Session = Depends(get_db), _=Depends(get_current_user)):
    c = _get_client(db, client_id)
    db.delete(c)
    db.commit()
    return {"ok": True}
