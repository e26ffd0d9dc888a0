import uuid
from typing import List

from fastapi import APIRouter, Depends, HTTPException, UploadFile, File
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, require_roles
from ..db import get_db
from ..models.models import Brand
from ..schemas.catalog import BrandCreate, BrandUpdate, BrandResponse
from ..services.uploads import UploadQueue, create_upload_job
from ..storage.provider import StorageProvider
from .files import get_storage, get_upload_queue, read_upload


router = APIRouter(prefix="/brands", tags=["brands"])


def _get_brand(db: Session, brand_id: uuid.UUID) -> Brand:
    brand = db.get(Brand, brand_id)
    if brand is None:
        raise HTTPException(status_code=404, detail="Brand not found")
    return brand


@router.get("", response_model=List[BrandResponse])
def list_brands(db: Session = Depends(get_db), _=Depends(get_current_user)):
    return db.query(Brand).order_by(Brand.name.asc()).all()


@router.post("", response_model=BrandResponse, status_code=201)
def create_brand(payload: BrandCreate, db: Session = Depends(get_db), _=Depends(require_roles("admin"))):
    if not payload.name:
        raise HTTPException(status_code=400, detail="Brand name is required")
    brand = Brand(name=payload.name, description=payload.description)
    db.add(brand)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=409, detail="Brand name already exists")
    db.refresh(brand)
    return brand


@router.get("/{brand_id}", response_model=BrandResponse)
def get_brand(brand_id: uuid.UUID, db: Session = Depends(get_db), _=Depends(get_current_user)):
    return _get_brand(db, brand_id)


@router.patch("/{brand_id}", response_model=BrandResponse)
def update_brand(
    brand_id: uuid.UUID,
    payload: BrandUpdate,
    db: Session = Depends(get_db),
    _=Depends(require_roles("admin")),
):
    brand = _get_brand(db, brand_id)
    for k, v in payload.model_dump(exclude_unset=True).items():
        if k == "name" and not (v or "").strip():
            raise HTTPException(status_code=400, detail="Brand name is required")
        setattr(brand, k, v)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=409, detail="Brand name already exists")
    db.refresh(brand)
    return brand


@router.put("/{brand_id}/logo", response_model=BrandResponse)
async def replace_logo(
    brand_id: uuid.UUID,
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    queue: UploadQueue = Depends(get_upload_queue),
    _=Depends(require_roles("admin")),
):
    brand = _get_brand(db, brand_id)
    data = await read_upload(file)
    old_ref = brand.logo_ref
    brand.logo_ref = None
    task = create_upload_job(db, "brand", brand.id, "logo_ref", data,
                             file.content_type or "image/png", file.filename or "logo", replaces=old_ref)
    db.commit()
    queue.submit(task)
    db.refresh(brand)
    return brand


@router.delete("/{brand_id}")
def delete_brand(
    brand_id: uuid.UUID,
    db: Session = Depends(get_db),
    storage: StorageProvider = Depends(get_storage),
    _=Depends(require_roles("admin")),
):
    brand = _get_brand(db, brand_id)
    refs = [brand.logo_ref]
    for product in brand.products:
        refs += [product.pdf_ref, product.image_ref]
    db.delete(brand)
    db.commit()
    for ref in refs:
        if ref:
            storage.delete(ref)
    return {"ok": True}
