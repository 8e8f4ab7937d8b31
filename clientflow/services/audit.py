"""
Activity / audit trail.
Append-only rows in activity_logs for changes that matter to admins.
"""
from datetime import date, datetime
from typing import Any, Dict, Optional
import uuid

from sqlalchemy.orm import Session

from ..models.models import ActivityLog


def _jsonable(value: Any) -> Any:
    if isinstance(value, (uuid.UUID, datetime, date)):
        return str(value)
    return value


def record_activity(
    db: Session,
    entity_type: str,
    entity_id: Optional[uuid.UUID],
    action: str,
    actor_id: Optional[uuid.UUID] = None,
    changes: Optional[Dict] = None,
    context: Optional[Dict] = None,
    ip_address: Optional[str] = None,
) -> ActivityLog:
    """
    Add an activity entry to the session. The caller owns the transaction, so the
    entry commits (or rolls back) together with the change it describes.

    Args:
        entity_type: client|assignment|credential|report|profile
        action: CREATE|UPDATE|DELETE|RESTORE|APPROVE|REJECT|REVEAL
        changes: Before/after diff from compute_diff
        context: Extra data (client_id, reason, ...)
    """
    details: Dict[str, Any] = {}
    if changes:
        details["changes"] = changes
    if context:
        details["context"] = {k: _jsonable(v) for k, v in context.items()}
    entry = ActivityLog(
        user_id=actor_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        details=details,
        ip_address=ip_address,
    )
    db.add(entry)
    return entry


def compute_diff(before: Dict, after: Dict) -> Dict:
    """
    Compute a diff between two dictionaries.

    Returns:
        Dict with before/after values for changed fields
    """
    diff = {}
    for key in set(before.keys()) | set(after.keys()):
        before_val = before.get(key)
        after_val = after.get(key)
        if before_val != after_val:
            diff[key] = {"before": _jsonable(before_val), "after": _jsonable(after_val)}
    return diff
