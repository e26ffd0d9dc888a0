"""
Two-phase media uploads.

Request handlers commit the catalog row with an empty reference plus a pending
UploadJob, then hand the bytes to the UploadQueue. The queue worker writes the
blob to the document store and sets the reference with a single conditional
update (only while it is still null). Failures are logged, retried, and left
visible on the job row; the reference stays null so a later replace can
re-upload. Queuing a new upload for a field supersedes any job still pending
for it, so the most recent file is the one that sticks.
"""
import asyncio
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

import structlog
from sqlalchemy.orm import Session

from ..config import settings
from ..db import SessionLocal, session_scope
from ..models.models import Brand, Collateral, Product, UploadJob
from ..storage.provider import StorageProvider, canonical_key

logger = structlog.get_logger(__name__)

# target_type -> (model, fields the worker may set)
UPLOAD_TARGETS = {
    "product": (Product, ("pdf_ref", "image_ref")),
    "collateral": (Collateral, ("blob_ref",)),
    "brand": (Brand, ("logo_ref",)),
}


@dataclass
class UploadTask:
    job_id: uuid.UUID
    target_type: str
    target_id: uuid.UUID
    field: str
    data: bytes
    content_type: str
    original_name: str
    replaces: Optional[str] = None


def create_upload_job(
    db: Session,
    target_type: str,
    target_id: uuid.UUID,
    field: str,
    data: bytes,
    content_type: str,
    original_name: str,
    replaces: Optional[str] = None,
) -> UploadTask:
    """Record a pending job for the target; the caller commits.

    Earlier jobs still pending for the same target field are marked
    superseded: only the newest upload may attach. A blob that a superseded
    job was going to replace is handed over to the new job.
    """
    model, fields = UPLOAD_TARGETS[target_type]
    if field not in fields:
        raise ValueError(f"{target_type} has no uploadable field {field!r}")
    job_id = uuid.uuid4()
    earlier = (
        db.query(UploadJob)
        .filter(
            UploadJob.target_type == target_type,
            UploadJob.target_id == target_id,
            UploadJob.field == field,
            UploadJob.status == "pending",
        )
        .all()
    )
    for prev in earlier:
        prev.status = "superseded"
        prev.error = f"superseded by {job_id}"
        prev.finished_at = datetime.now(timezone.utc)
        if replaces is None and prev.replaces:
            replaces = prev.replaces
        logger.info("upload_superseded", job_id=str(prev.id), superseded_by=str(job_id))
    job = UploadJob(
        id=job_id,
        target_type=target_type,
        target_id=target_id,
        field=field,
        original_name=original_name or "upload",
        content_type=content_type or "application/octet-stream",
        status="pending",
        attempts=0,
        replaces=replaces,
    )
    db.add(job)
    return UploadTask(
        job_id=job.id,
        target_type=target_type,
        target_id=target_id,
        field=field,
        data=data,
        content_type=job.content_type,
        original_name=job.original_name,
        replaces=replaces,
    )


class UploadQueue:
    def __init__(
        self,
        store_factory: Callable[[], StorageProvider],
        session_factory: Callable[[], Session] = SessionLocal,
        max_attempts: Optional[int] = None,
        retry_delay_s: Optional[float] = None,
    ):
        self.store_factory = store_factory
        self.session_factory = session_factory
        self.max_attempts = max(1, max_attempts or settings.upload_max_attempts)
        self.retry_delay_s = settings.upload_retry_delay_s if retry_delay_s is None else retry_delay_s
        self._queue: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None

    def start(self) -> None:
        if self._worker is not None and not self._worker.done():
            return
        self._queue = asyncio.Queue()
        self._worker = asyncio.create_task(self._run())
        logger.info("upload_queue_started")

    async def stop(self) -> None:
        if self._worker is None:
            return
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None
        self._queue = None
        logger.info("upload_queue_stopped")

    def submit(self, task: UploadTask) -> None:
        self.start()
        self._queue.put_nowait(task)
        logger.info("upload_enqueued", job_id=str(task.job_id), target_type=task.target_type,
                    target_id=str(task.target_id), field=task.field, size_bytes=len(task.data))

    async def join(self) -> None:
        if self._queue is not None:
            await self._queue.join()

    async def _run(self) -> None:
        while True:
            task = await self._queue.get()
            try:
                with structlog.contextvars.bound_contextvars(job_id=str(task.job_id)):
                    await self.process(task)
            except Exception:
                logger.exception("upload_worker_error", job_id=str(task.job_id))
            finally:
                self._queue.task_done()

    async def process(self, task: UploadTask) -> bool:
        """Store the blob and attach it to its record. Returns True when the reference was set."""
        if await asyncio.to_thread(self._job_status, task.job_id) == "superseded":
            logger.info("upload_skipped", job_id=str(task.job_id), reason="superseded")
            return False
        store = self.store_factory()
        key = canonical_key(task.target_type, task.original_name, owner=str(task.target_id))
        ref = None
        last_error = None
        attempts = 0
        while attempts < self.max_attempts:
            attempts += 1
            try:
                ref = await asyncio.to_thread(store.put, task.data, task.content_type, key)
                break
            except Exception as e:
                last_error = str(e)
                logger.warning("upload_attempt_failed", job_id=str(task.job_id), attempt=attempts, error=last_error)
                if attempts < self.max_attempts:
                    await asyncio.sleep(self.retry_delay_s)

        if ref is None:
            await asyncio.to_thread(self._finish_job, task.job_id, "failed", attempts, last_error)
            logger.error("upload_failed", job_id=str(task.job_id), target_type=task.target_type,
                         target_id=str(task.target_id), field=task.field, error=last_error)
            return False

        applied, reason, displaced = await asyncio.to_thread(self._attach, task, ref, attempts)
        if not applied:
            # Superseded, record deleted, or already holds another blob; drop the orphan
            await asyncio.to_thread(store.delete, ref)
            logger.warning("upload_discarded", job_id=str(task.job_id), reason=reason)
            return False
        for old in {task.replaces, displaced} - {None, ref}:
            await asyncio.to_thread(store.delete, old)
        logger.info("upload_completed", job_id=str(task.job_id), target_type=task.target_type,
                    target_id=str(task.target_id), field=task.field, ref=ref)
        return True

    def _attach(self, task: UploadTask, ref: str, attempts: int):
        """Set the reference for a claimed job. Returns (applied, failure reason, displaced ref)."""
        model, _ = UPLOAD_TARGETS[task.target_type]
        column = getattr(model, task.field)
        with session_scope(self.session_factory) as db:
            # Claim the job first; a newer upload for the same field may have superseded it
            claimed = (
                db.query(UploadJob)
                .filter(UploadJob.id == task.job_id, UploadJob.status == "pending")
                .update({"status": "done"}, synchronize_session=False)
            )
            if claimed != 1:
                return False, "superseded", None
            displaced = None
            updated = (
                db.query(model)
                .filter(model.id == task.target_id, column.is_(None))
                .update({task.field: ref}, synchronize_session=False)
            )
            if updated != 1:
                target = db.get(model, task.target_id)
                if target is None:
                    _mark_job(db, task.job_id, "failed", attempts, "target deleted")
                    return False, "target deleted", None
                current = getattr(target, task.field)
                if self._set_by_older_upload(db, task, current):
                    # An older upload attached while this one was queued; the newest file wins
                    updated = (
                        db.query(model)
                        .filter(model.id == task.target_id, column == current)
                        .update({task.field: ref}, synchronize_session=False)
                    )
                    displaced = current if updated == 1 else None
            if updated != 1:
                _mark_job(db, task.job_id, "failed", attempts, "reference already set")
                return False, "reference already set", None
            _mark_job(db, task.job_id, "done", attempts, None, result_ref=ref)
        return True, None, displaced

    @staticmethod
    def _set_by_older_upload(db: Session, task: UploadTask, current: Optional[str]) -> bool:
        if not current:
            return False
        this_job = db.get(UploadJob, task.job_id)
        owner = (
            db.query(UploadJob)
            .filter(
                UploadJob.target_type == task.target_type,
                UploadJob.target_id == task.target_id,
                UploadJob.field == task.field,
                UploadJob.result_ref == current,
            )
            .first()
        )
        return owner is not None and this_job is not None and owner.created_at < this_job.created_at

    def _finish_job(self, job_id: uuid.UUID, status: str, attempts: int, error: Optional[str]) -> None:
        with session_scope(self.session_factory) as db:
            _mark_job(db, job_id, status, attempts, error)

    def _job_status(self, job_id: uuid.UUID) -> Optional[str]:
        with session_scope(self.session_factory) as db:
            job = db.get(UploadJob, job_id)
            return job.status if job is not None else None


def _mark_job(
    db: Session,
    job_id: uuid.UUID,
    status: str,
    attempts: int,
    error: Optional[str],
    result_ref: Optional[str] = None,
) -> None:
    job = db.get(UploadJob, job_id)
    if job is None:
        return
    job.attempts = attempts
    if job.status == "superseded":
        return
    job.status = status
    job.error = error
    job.result_ref = result_ref
    job.finished_at = datetime.now(timezone.utc)
