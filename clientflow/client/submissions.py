"""
Daily submission reconciliation.

For every client/service assignment the caller can see, a day has at most one
daily_task_logs row. DailySubmissionService pairs assignments with those rows,
seeds default metrics where no row exists yet and writes drafts and
submissions back with update-by-id, else insert.
"""
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from ..logging import structlog
from ..metrics import MetricField, get_default_metrics, metric_fields
from .errors import ApiError
from .session import AppState


NOT_CONFIGURED = "Metrics not configured for this service yet."
ALREADY_SUBMITTED = "This log has already been submitted and can no longer be edited."

ASSIGNMENT_SELECT = "id, client_id, employee_id, service_id, clients(id, name), services(id, name, slug)"
ADMIN_ASSIGNMENT_SELECT = ASSIGNMENT_SELECT + ", profiles:employee_id(id, full_name)"


class SubmissionStatus(str, Enum):
    NOT_STARTED = "not_started"
    PENDING = "pending"
    SUBMITTED = "submitted"


@dataclass
class SubmissionRow:
    assignment_id: str
    log_date: date
    client_id: Optional[str] = None
    client_name: str = ""
    service_id: Optional[str] = None
    service_name: str = ""
    service_slug: Optional[str] = None
    employee_id: Optional[str] = None
    employee_name: Optional[str] = None
    log_id: Optional[str] = None
    metrics: Dict[str, Any] = field(default_factory=dict)
    notes: str = ""
    work_status: Optional[str] = None
    status: SubmissionStatus = SubmissionStatus.NOT_STARTED
    submitted_at: Optional[str] = None

    @property
    def read_only(self) -> bool:
        return self.status is SubmissionStatus.SUBMITTED

    @property
    def fields(self) -> List[MetricField]:
        return metric_fields(self.service_slug)

    @property
    def message(self) -> Optional[str]:
        return None if self.fields else NOT_CONFIGURED


@dataclass
class SubmissionSummary:
    total: int = 0
    submitted: int = 0
    draft: int = 0
    not_started: int = 0


def summarize(rows: Iterable[SubmissionRow]) -> SubmissionSummary:
    summary = SubmissionSummary()
    for row in rows:
        summary.total += 1
        if row.status is SubmissionStatus.SUBMITTED:
            summary.submitted += 1
        elif row.status is SubmissionStatus.PENDING:
            summary.draft += 1
        else:
            summary.not_started += 1
    return summary


def _as_date(value) -> date:
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def make_row(assignment: Dict[str, Any], log_date: date, log: Optional[Dict[str, Any]] = None) -> SubmissionRow:
    """Pair one assignment with its log for the day (or defaults when there is none)."""
    client = assignment.get("clients") or {}
    service = assignment.get("services") or {}
    employee = assignment.get("profiles") or {}
    slug = service.get("slug")
    row = SubmissionRow(
        assignment_id=assignment["id"],
        log_date=log_date,
        client_id=assignment.get("client_id"),
        client_name=client.get("name") or "",
        service_id=assignment.get("service_id"),
        service_name=service.get("name") or "",
        service_slug=slug,
        employee_id=assignment.get("employee_id"),
        employee_name=employee.get("full_name"),
        metrics=get_default_metrics(slug),
    )
    if log:
        # Stored metrics win; keys the service gained since are seeded with zero
        row.metrics.update(log.get("metrics") or {})
        row.log_id = log["id"]
        row.notes = log.get("notes") or ""
        row.work_status = log.get("work_status")
        row.submitted_at = log.get("submitted_at")
        row.status = SubmissionStatus(log.get("status") or SubmissionStatus.PENDING.value)
    return row


class DailySubmissionService:
    """
    One reconciliation for every page that edits daily logs. Admins work over
    all active assignments, employees over their own.
    """

    def __init__(self, backend, state: AppState):
        self._backend = backend
        self.state = state

    async def assignments(self, client_id: Optional[str] = None, employee_id: Optional[str] = None) -> List[Dict[str, Any]]:
        select = ADMIN_ASSIGNMENT_SELECT if self.state.is_admin else ASSIGNMENT_SELECT
        q = self._backend.table("client_assignments").select(select).eq("is_active", True)
        if not self.state.is_admin:
            q = q.eq("employee_id", self.state.user_id)
        elif employee_id:
            q = q.eq("employee_id", employee_id)
        if client_id:
            q = q.eq("client_id", client_id)
        result = await q.order("created_at")
        return result.data or []

    async def _logs(self, assignment_ids: List[str], start: date, end: date) -> List[Dict[str, Any]]:
        if not assignment_ids:
            return []
        q = self._backend.table("daily_task_logs").select("*").in_("assignment_id", assignment_ids)
        if start == end:
            q = q.eq("log_date", start)
        else:
            q = q.gte("log_date", start).lte("log_date", end)
        result = await q
        return result.data or []

    async def load(self, log_date: date, **filters) -> List[SubmissionRow]:
        assignments = await self.assignments(**filters)
        logs = await self._logs([a["id"] for a in assignments], log_date, log_date)
        by_assignment = {log["assignment_id"]: log for log in logs}
        return [make_row(a, log_date, by_assignment.get(a["id"])) for a in assignments]

    async def load_range(self, start: date, end: date, **filters) -> List[SubmissionRow]:
        """One row per assignment per day, newest day first."""
        if end < start:
            raise ValueError("end must not be before start")
        assignments = await self.assignments(**filters)
        logs = await self._logs([a["id"] for a in assignments], start, end)
        by_key = {(log["assignment_id"], _as_date(log["log_date"])): log for log in logs}
        rows: List[SubmissionRow] = []
        day = end
        while day >= start:
            rows.extend(make_row(a, day, by_key.get((a["id"], day))) for a in assignments)
            day -= timedelta(days=1)
        return rows

    async def _write(self, row: SubmissionRow, status: SubmissionStatus) -> SubmissionRow:
        if row.read_only:
            raise ApiError(ALREADY_SUBMITTED)
        payload: Dict[str, Any] = {
            "metrics": dict(row.metrics),
            "notes": row.notes or None,
            "status": status.value,
        }
        if row.work_status:
            payload["work_status"] = row.work_status
        if status is SubmissionStatus.SUBMITTED:
            payload["submitted_at"] = datetime.now(timezone.utc).isoformat()

        table = self._backend.table("daily_task_logs")
        if row.log_id:
            result = await table.update(payload).eq("id", row.log_id)
        else:
            payload.update(assignment_id=row.assignment_id, log_date=row.log_date.isoformat())
            result = await table.insert(payload)
        saved = result.data[0] if isinstance(result.data, list) and result.data else result.data
        if not saved:
            raise ApiError("Daily log not found", code="PGRST116", status=406)

        row.log_id = saved["id"]
        row.status = SubmissionStatus(saved.get("status") or status.value)
        row.submitted_at = saved.get("submitted_at")
        structlog.get_logger().info(
            "daily_log_saved", assignment_id=row.assignment_id, log_date=row.log_date.isoformat(), status=row.status.value,
        )
        return row

    async def save_draft(self, row: SubmissionRow) -> SubmissionRow:
        return await self._write(row, SubmissionStatus.PENDING)

    async def submit(self, row: SubmissionRow) -> SubmissionRow:
        return await self._write(row, SubmissionStatus.SUBMITTED)

    async def submit_all(self, rows: Iterable[SubmissionRow]) -> List[SubmissionRow]:
        """Submit every editable row that has been started."""
        out = []
        for row in rows:
            if row.status is SubmissionStatus.PENDING:
                out.append(await self.submit(row))
        return out

    async def summary(self, log_date: date) -> SubmissionSummary:
        return summarize(await self.load(log_date))
