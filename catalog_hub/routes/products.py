import uuid
from typing import Optional, List

from fastapi import APIRouter, Depends, HTTPException, UploadFile, File, Form, Query
from sqlalchemy.orm import Session, joinedload

from ..auth.security import get_current_user, require_roles
from ..config import settings
from ..db import get_db
from ..models.models import Brand, Product
from ..schemas.catalog import ProductUpdate, ProductResponse, ProductPage, ProductFilterOptions
from ..services.uploads import UploadQueue, create_upload_job
from ..storage.provider import StorageProvider
from .files import get_storage, get_upload_queue, read_upload


router = APIRouter(prefix="/products", tags=["products"])

TEXT_FILTERS = ("name", "size", "flavor", "packet_style", "color", "corners")


def product_out(p: Product, upload_job_ids: Optional[List[uuid.UUID]] = None) -> ProductResponse:
    return ProductResponse(
        id=p.id,
        brand_id=p.brand_id,
        brand_name=p.brand.name if p.brand else None,
        name=p.name,
        size=p.size,
        flavor=p.flavor,
        packet_style=p.packet_style,
        color=p.color,
        corners=p.corners,
        tar=p.tar,
        nicotine=p.nicotine,
        co=p.co,
        fsp=bool(p.fsp),
        capsules=p.capsules or 0,
        image_ref=p.image_ref,
        pdf_ref=p.pdf_ref,
        media_pending=p.pdf_ref is None,
        created_at=p.created_at,
        upload_job_ids=upload_job_ids or [],
    )


def _get_product(db: Session, product_id: uuid.UUID) -> Product:
    product = db.query(Product).options(joinedload(Product.brand)).filter(Product.id == product_id).first()
    if product is None:
        raise HTTPException(status_code=404, detail="Product not found")
    return product


def _clean(v: Optional[str]) -> Optional[str]:
    if v is None:
        return None
    v = v.strip()
    return v or None


@router.get("", response_model=ProductPage)
def list_products(
    name: Optional[str] = None,
    size: Optional[str] = None,
    flavor: Optional[str] = None,
    packet_style: Optional[str] = None,
    color: Optional[str] = None,
    corners: Optional[str] = None,
    brand_id: Optional[uuid.UUID] = None,
    fsp: Optional[bool] = None,
    capsules: Optional[int] = None,
    tar: Optional[float] = None,
    nicotine: Optional[float] = None,
    co: Optional[float] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    _=Depends(get_current_user),
):
    q = db.query(Product).options(joinedload(Product.brand))
    text_values = {"name": name, "size": size, "flavor": flavor, "packet_style": packet_style, "color": color, "corners": corners}
    for field_name in TEXT_FILTERS:
        value = _clean(text_values[field_name])
        if value:
            q = q.filter(getattr(Product, field_name).ilike(f"%{value}%"))
    if brand_id is not None:
        q = q.filter(Product.brand_id == brand_id)
    if fsp is not None:
        q = q.filter(Product.fsp == fsp)
    if capsules is not None:
        q = q.filter(Product.capsules == capsules)
    if tar is not None:
        q = q.filter(Product.tar == tar)
    if nicotine is not None:
        q = q.filter(Product.nicotine == nicotine)
    if co is not None:
        q = q.filter(Product.co == co)

    total = q.count()
    rows = (
        q.order_by(Product.created_at.desc(), Product.name.asc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return ProductPage(items=[product_out(p) for p in rows], total=total, page=page, page_size=page_size)


@router.get("/filters", response_model=ProductFilterOptions)
def product_filter_options(db: Session = Depends(get_db), _=Depends(get_current_user)):
    def distinct(column) -> List[str]:
        rows = db.query(column).filter(column.isnot(None)).distinct().order_by(column.asc()).all()
        return [r[0] for r in rows if r[0]]

    return ProductFilterOptions(
        sizes=distinct(Product.size),
        flavors=distinct(Product.flavor),
        packet_styles=distinct(Product.packet_style),
        colors=distinct(Product.color),
        corners=distinct(Product.corners),
    )


@router.get("/recent", response_model=List[ProductResponse])
def recent_products(limit: int = Query(5, ge=1, le=50), db: Session = Depends(get_db), _=Depends(get_current_user)):
    rows = (
        db.query(Product)
        .options(joinedload(Product.brand))
        .order_by(Product.created_at.desc())
        .limit(limit)
        .all()
    )
    return [product_out(p) for p in rows]


@router.post("", response_model=ProductResponse, status_code=201)
async def create_product(
    brand_id: uuid.UUID = Form(...),
    name: str = Form(...),
    size: Optional[str] = Form(None),
    flavor: Optional[str] = Form(None),
    packet_style: Optional[str] = Form(None),
    color: Optional[str] = Form(None),
    corners: Optional[str] = Form(None),
    tar: Optional[float] = Form(None),
    nicotine: Optional[float] = Form(None),
    co: Optional[float] = Form(None),
    fsp: bool = Form(False),
    capsules: int = Form(0),
    pdf: Optional[UploadFile] = File(None),
    image: Optional[UploadFile] = File(None),
    db: Session = Depends(get_db),
    queue: UploadQueue = Depends(get_upload_queue),
    _=Depends(require_roles("admin")),
):
    if not _clean(name):
        raise HTTPException(status_code=400, detail="Product name is required")
    if db.get(Brand, brand_id) is None:
        raise HTTPException(status_code=400, detail="Brand does not exist")
    pdf_data = await read_upload(pdf) if pdf is not None and pdf.filename else None
    image_data = await read_upload(image) if image is not None and image.filename else None

    # Phase 1: the record is committed without media; uploads follow in the background
    product = Product(
        brand_id=brand_id,
        name=_clean(name),
        size=_clean(size),
        flavor=_clean(flavor),
        packet_style=_clean(packet_style),
        color=_clean(color),
        corners=_clean(corners),
        tar=tar,
        nicotine=nicotine,
        co=co,
        fsp=fsp,
        capsules=capsules,
    )
    db.add(product)
    db.flush()
    tasks = []
    if pdf_data is not None:
        tasks.append(create_upload_job(db, "product", product.id, "pdf_ref", pdf_data,
                                       pdf.content_type or "application/pdf", pdf.filename))
    if image_data is not None:
        tasks.append(create_upload_job(db, "product", product.id, "image_ref", image_data,
                                       image.content_type or "image/jpeg", image.filename))
    db.commit()
    for task in tasks:
        queue.submit(task)
    product = _get_product(db, product.id)
    return product_out(product, [t.job_id for t in tasks])


@router.get("/{product_id}", response_model=ProductResponse)
def get_product(product_id: uuid.UUID, db: Session = Depends(get_db), _=Depends(get_current_user)):
    return product_out(_get_product(db, product_id))


@router.patch("/{product_id}", response_model=ProductResponse)
def update_product(
    product_id: uuid.UUID,
    payload: ProductUpdate,
    db: Session = Depends(get_db),
    _=Depends(require_roles("admin")),
):
    product = _get_product(db, product_id)
    data = payload.model_dump(exclude_unset=True)
    if "name" in data and not data["name"]:
        raise HTTPException(status_code=400, detail="Product name is required")
    if "brand_id" in data and db.get(Brand, data["brand_id"]) is None:
        raise HTTPException(status_code=400, detail="Brand does not exist")
    for k, v in data.items():
        setattr(product, k, v)
    db.commit()
    return product_out(_get_product(db, product_id))


async def _replace_media(
    product_id: uuid.UUID,
    field: str,
    file: UploadFile,
    default_type: str,
    db: Session,
    queue: UploadQueue,
) -> ProductResponse:
    product = _get_product(db, product_id)
    data = await read_upload(file)
    old_ref = getattr(product, field)
    # Clear first so the worker's set-once update applies to the new blob
    setattr(product, field, None)
    task = create_upload_job(db, "product", product.id, field, data,
                             file.content_type or default_type, file.filename or "upload", replaces=old_ref)
    db.commit()
    queue.submit(task)
    return product_out(_get_product(db, product_id), [task.job_id])


@router.put("/{product_id}/pdf", response_model=ProductResponse)
async def replace_product_pdf(
    product_id: uuid.UUID,
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    queue: UploadQueue = Depends(get_upload_queue),
    _=Depends(require_roles("admin")),
):
    return await _replace_media(product_id, "pdf_ref", file, "application/pdf", db, queue)


@router.put("/{product_id}/image", response_model=ProductResponse)
async def replace_product_image(
    product_id: uuid.UUID,
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    queue: UploadQueue = Depends(get_upload_queue),
    _=Depends(require_roles("admin")),
):
    return await _replace_media(product_id, "image_ref", file, "image/jpeg", db, queue)


@router.get("/{product_id}/pdf")
def product_pdf_url(
    product_id: uuid.UUID,
    db: Session = Depends(get_db),
    storage: StorageProvider = Depends(get_storage),
    _=Depends(get_current_user),
):
    product = _get_product(db, product_id)
    if not product.pdf_ref:
        return {"url": None, "pending": True}
    url = storage.get_download_url(product.pdf_ref, settings.download_url_ttl_s) if storage.owns(product.pdf_ref) else product.pdf_ref
    return {"url": url, "pending": False}


@router.delete("/{product_id}")
def delete_product(
    product_id: uuid.UUID,
    db: Session = Depends(get_db),
    storage: StorageProvider = Depends(get_storage),
    _=Depends(require_roles("admin")),
):
    product = _get_product(db, product_id)
    refs = [product.pdf_ref, product.image_ref]
    db.delete(product)
    db.commit()
    for ref in refs:
        if ref:
            storage.delete(ref)
    return {"ok": True}
