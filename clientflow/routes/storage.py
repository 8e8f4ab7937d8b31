import mimetypes
import uuid
from typing import List, Optional

from fastapi import APIRouter, Body, Depends, File, Header, HTTPException, UploadFile
from fastapi.responses import Response
from sqlalchemy.orm import Session

from ..config import settings
from ..db import get_db
from ..models.models import WeeklyReport
from ..services.pg_errors import BackendError, INSUFFICIENT_PRIVILEGE
from ..auth.security import Actor, require_roles
from ..roles import Role
from ..storage.provider import StorageProvider, object_key
from ..storage.local_provider import LocalStorageProvider
from ..storage.blob_provider import BlobStorageProvider
from ..logging import structlog


router = APIRouter(prefix="/storage/v1", tags=["storage"])

BUCKETS = {"report-attachments", "shared-documents"}


def get_storage() -> StorageProvider:
    """
    Blob storage when configured for it, otherwise the local filesystem.
    """
    if settings.storage_provider == "blob" and settings.azure_blob_connection:
        return BlobStorageProvider()
    return LocalStorageProvider()


def _key(bucket: str, path: str) -> str:
    if bucket not in BUCKETS:
        raise HTTPException(status_code=404, detail="Bucket not found")
    try:
        return object_key(bucket, path)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid object path")


def _check_write(db: Session, actor: Actor, bucket: str, path: str) -> None:
    """
    Shared documents are managed by admins. Report attachments live under
    ``{report_id}/`` and only the report's author may write there.
    """
    if actor.is_admin:
        return
    if bucket == "report-attachments":
        try:
            report_id = uuid.UUID(path.lstrip("/").split("/", 1)[0])
        except ValueError:
            report_id = None
        if report_id is not None:
            report = db.query(WeeklyReport).filter(WeeklyReport.id == report_id, WeeklyReport.deleted_at.is_(None)).first()
            if report is not None and report.employee_id == actor.id:
                return
    raise BackendError(INSUFFICIENT_PRIVILEGE, f'permission denied for object "{bucket}/{path.lstrip("/")}"')


def public_url(bucket: str, path: str) -> str:
    return f"{settings.public_base_url}/storage/v1/object/public/{bucket}/{path.lstrip('/')}"


@router.post("/object/{bucket}/{path:path}")
async def upload_object(
    bucket: str,
    path: str,
    file: UploadFile = File(...),
    x_upsert: Optional[str] = Header(default=None),
    cache_control: Optional[str] = Header(default=None),
    actor: Actor = Depends(require_roles(Role.ADMIN, Role.EMPLOYEE)),
    storage: StorageProvider = Depends(get_storage),
    db: Session = Depends(get_db),
):
    key = _key(bucket, path)
    _check_write(db, actor, bucket, path)
    content = await file.read()
    if len(content) > settings.attachment_max_bytes:
        raise HTTPException(status_code=413, detail="The object exceeded the maximum allowed size")
    upsert = (x_upsert or "").lower() == "true"
    if not upsert and storage.exists(key):
        raise HTTPException(status_code=409, detail="The resource already exists")
    content_type = file.content_type or mimetypes.guess_type(path)[0] or "application/octet-stream"
    storage.copy_in(content, key, content_type=content_type, cache_control=f"max-age={cache_control or '3600'}")
    structlog.get_logger().info("storage_upload", key=key, size=len(content), actor=str(actor.id))
    return {"Key": key, "path": path.lstrip("/")}


@router.get("/object/public/{bucket}/{path:path}")
def download_public_object(bucket: str, path: str, storage: StorageProvider = Depends(get_storage)):
    key = _key(bucket, path)
    data = storage.read(key)
    if data is None:
        raise HTTPException(status_code=404, detail="Object not found")
    media_type = mimetypes.guess_type(path)[0] or "application/octet-stream"
    return Response(content=data, media_type=media_type, headers={"Cache-Control": "max-age=3600"})


@router.delete("/object/{bucket}")
def remove_objects(
    bucket: str,
    prefixes: List[str] = Body(..., embed=True),
    actor: Actor = Depends(require_roles(Role.ADMIN, Role.EMPLOYEE)),
    storage: StorageProvider = Depends(get_storage),
    db: Session = Depends(get_db),
):
    keys = [_key(bucket, path) for path in prefixes]
    for path in prefixes:
        _check_write(db, actor, bucket, path)
    removed = []
    for path, key in zip(prefixes, keys):
        if storage.delete(key):
            removed.append({"name": path, "bucket_id": bucket})
    structlog.get_logger().info("storage_remove", bucket=bucket, removed=len(removed), actor=str(actor.id))
    return removed
