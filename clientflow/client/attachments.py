"""Report attachments: object upload plus a report_attachments metadata row."""
import mimetypes
import secrets
import time
from typing import Any, Dict, List, Optional

from ..config import settings
from ..logging import structlog
from .errors import ApiError
from .session import AppState
from .validation import validate_file_size


BUCKET = "report-attachments"


def attachment_path(report_id: str, filename: str, timestamp_ms: Optional[int] = None, token: Optional[str] = None) -> str:
    """``{report_id}/{timestamp}-{random}.{ext}``; the original name lives only in the metadata row."""
    ext = filename.rsplit(".", 1)[-1].lower() if "." in filename else "bin"
    ts = timestamp_ms if timestamp_ms is not None else int(time.time() * 1000)
    return f"{report_id}/{ts}-{token or secrets.token_hex(4)}.{ext}"


async def upload_attachment(
    backend,
    state: AppState,
    report_id: str,
    filename: str,
    content: bytes,
    content_type: Optional[str] = None,
) -> Dict[str, Any]:
    max_mb = settings.attachment_max_bytes / (1024 * 1024)
    check = validate_file_size(len(content), max_mb)
    if not check.is_valid:
        raise ApiError(check.error, status=413)

    content_type = content_type or mimetypes.guess_type(filename)[0] or "application/octet-stream"
    path = attachment_path(report_id, filename)
    bucket = backend.storage.from_(BUCKET)
    await bucket.upload(path, content, content_type=content_type, cache_control="3600", upsert=False)

    try:
        result = await backend.table("report_attachments").insert({
            "report_id": report_id,
            "file_name": filename,
            "file_path": path,
            "file_url": bucket.get_public_url(path),
            "file_size": len(content),
            "file_type": content_type,
            "uploaded_by": state.user_id,
        })
    except ApiError:
        # Without its row the object is unreachable; take it back out
        structlog.get_logger().warning("attachment_row_failed", report_id=report_id, path=path)
        await bucket.remove([path])
        raise
    return result.data[0]


async def list_attachments(backend, report_id: str) -> List[Dict[str, Any]]:
    result = await backend.table("report_attachments").select("*").eq("report_id", report_id).order("created_at")
    return result.data or []


async def delete_attachment(backend, attachment: Dict[str, Any]) -> None:
    await backend.table("report_attachments").delete().eq("id", attachment["id"])
    if attachment.get("file_path"):
        await backend.storage.from_(BUCKET).remove([attachment["file_path"]])
