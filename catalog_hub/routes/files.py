import mimetypes
import uuid

from fastapi import APIRouter, Depends, HTTPException, Request, UploadFile
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session

from ..config import settings
from ..db import get_db
from ..auth.security import get_current_user
from ..models.models import UploadJob
from ..schemas.catalog import UploadJobResponse
from ..services.uploads import UploadQueue
from ..storage.blob_provider import BlobStorageProvider
from ..storage.local_provider import LocalStorageProvider
from ..storage.provider import StorageProvider


router = APIRouter(prefix="/files", tags=["files"])


def get_storage() -> StorageProvider:
    """
    Get storage provider based on configuration.
    Uses BlobStorageProvider when Azure Blob is configured, local filesystem storage otherwise.
    """
    if settings.storage_provider == "blob" and settings.azure_blob_connection and settings.azure_blob_container:
        return BlobStorageProvider()
    return LocalStorageProvider()


def get_upload_queue(request: Request) -> UploadQueue:
    queue = getattr(request.app.state, "upload_queue", None)
    if queue is None:
        queue = UploadQueue(store_factory=get_storage)
        request.app.state.upload_queue = queue
    return queue


async def read_upload(file: UploadFile) -> bytes:
    data = await file.read()
    if len(data) > settings.max_upload_mb * 1024 * 1024:
        raise HTTPException(status_code=413, detail=f"File exceeds {settings.max_upload_mb} MB")
    if not data:
        raise HTTPException(status_code=400, detail="Empty file")
    return data


@router.get("/local/{key:path}")
def download_local(key: str):
    storage = LocalStorageProvider()
    ref = f"{storage.url_prefix}{key}"
    path = storage.path_for_ref(ref)
    if not path.is_file():
        raise HTTPException(status_code=404, detail="File not found")
    media_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
    return FileResponse(path, media_type=media_type, filename=path.name)


@router.get("/uploads/{job_id}", response_model=UploadJobResponse)
def upload_status(job_id: uuid.UUID, db: Session = Depends(get_db), _=Depends(get_current_user)):
    job = db.get(UploadJob, job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Upload job not found")
    return job
