import uuid
from typing import Optional, List

from fastapi import APIRouter, Depends, HTTPException, UploadFile, File, Form
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, require_roles
from ..db import get_db
from ..models.models import Collateral, COLLATERAL_KINDS
from ..schemas.catalog import CollateralResponse
from ..services.uploads import UploadQueue, create_upload_job
from ..storage.provider import StorageProvider
from .files import get_storage, get_upload_queue, read_upload


router = APIRouter(prefix="/collateral", tags=["collateral"])


def _kind(raw: Optional[str]) -> str:
    kind = (raw or "").strip().lower()
    if kind not in COLLATERAL_KINDS:
        raise HTTPException(status_code=400, detail=f"Invalid type; expected one of {', '.join(COLLATERAL_KINDS)}")
    return kind


def _get_item(db: Session, item_id: uuid.UUID) -> Collateral:
    item = db.get(Collateral, item_id)
    if item is None:
        raise HTTPException(status_code=404, detail="Collateral not found")
    return item


def _out(item: Collateral, job_id: Optional[uuid.UUID] = None) -> CollateralResponse:
    out = CollateralResponse.model_validate(item)
    out.upload_job_id = job_id
    return out


@router.get("", response_model=List[CollateralResponse])
def list_collateral(kind: Optional[str] = None, db: Session = Depends(get_db), _=Depends(get_current_user)):
    q = db.query(Collateral)
    if kind:
        q = q.filter(Collateral.kind == _kind(kind))
    return q.order_by(Collateral.created_at.desc()).all()


@router.post("", response_model=CollateralResponse, status_code=201)
async def create_collateral(
    kind: str = Form(...),
    title: Optional[str] = Form(None),
    file: Optional[UploadFile] = File(None),
    db: Session = Depends(get_db),
    queue: UploadQueue = Depends(get_upload_queue),
    _=Depends(require_roles("admin")),
):
    kind = _kind(kind)
    data = await read_upload(file) if file is not None and file.filename else None
    item = Collateral(kind=kind, title=(title or "").strip() or "Untitled")
    db.add(item)
    db.flush()
    task = None
    if data is not None:
        task = create_upload_job(db, "collateral", item.id, "blob_ref", data,
                                 file.content_type or "application/pdf", file.filename)
    db.commit()
    if task is not None:
        queue.submit(task)
    db.refresh(item)
    return _out(item, task.job_id if task else None)


@router.get("/{item_id}", response_model=CollateralResponse)
def get_collateral(item_id: uuid.UUID, db: Session = Depends(get_db), _=Depends(get_current_user)):
    return _get_item(db, item_id)


@router.put("/{item_id}/file", response_model=CollateralResponse)
async def replace_collateral_file(
    item_id: uuid.UUID,
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    queue: UploadQueue = Depends(get_upload_queue),
    _=Depends(require_roles("admin")),
):
    item = _get_item(db, item_id)
    data = await read_upload(file)
    old_ref = item.blob_ref
    item.blob_ref = None
    task = create_upload_job(db, "collateral", item.id, "blob_ref", data,
                             file.content_type or "application/pdf", file.filename or "upload", replaces=old_ref)
    db.commit()
    queue.submit(task)
    db.refresh(item)
    return _out(item, task.job_id)


@router.delete("/{item_id}")
def delete_collateral(
    item_id: uuid.UUID,
    db: Session = Depends(get_db),
    storage: StorageProvider = Depends(get_storage),
    _=Depends(require_roles("admin")),
):
    item = _get_item(db, item_id)
    ref = item.blob_ref
    db.delete(item)
    db.commit()
    if ref:
        storage.delete(ref)
    return {"ok": True}
