"""
Weekly report drafts and the periodic auto-save that keeps them.

A ReportDraftSession owns the draft for one assignment and week. An AutoSaver
keeps exactly one timer alive for whichever session is currently selected.
"""
from datetime import date, datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol

import anyio

from ..config import settings
from ..logging import structlog
from .errors import ApiError, format_error
from .session import AppState


REPORT_FIELDS = ("work_summary", "key_wins", "challenges", "next_week_plan")


def get_week_start(day: date) -> date:
    """Monday of the week containing ``day``."""
    if isinstance(day, datetime):
        day = day.date()
    return day - timedelta(days=day.weekday())


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ReportDraftSession:
    def __init__(
        self,
        backend,
        state: AppState,
        assignment: Dict[str, Any],
        week_start: Optional[date] = None,
        draft_report_id: Optional[str] = None,
    ):
        self._backend = backend
        self.state = state
        self.assignment = assignment
        self.week_start = get_week_start(week_start or date.today())
        self.draft_report_id = draft_report_id
        self.content: Dict[str, str] = {f: "" for f in REPORT_FIELDS}
        self.dirty = False
        self.submitted = False
        self.last_auto_saved: Optional[str] = None

    @property
    def assignment_id(self) -> str:
        return self.assignment["id"]

    def edit(self, **changes: str) -> None:
        unknown = set(changes) - set(REPORT_FIELDS)
        if unknown:
            raise ValueError(f"Unknown report fields: {', '.join(sorted(unknown))}")
        self.content.update({k: v or "" for k, v in changes.items()})
        self.dirty = True

    async def resume(self) -> bool:
        """Pick up an existing draft for this assignment and week, if there is one."""
        result = await (
            self._backend.table("weekly_reports")
            .select("*")
            .eq("employee_id", self.state.user_id)
            .eq("assignment_id", self.assignment_id)
            .eq("week_start_date", self.week_start)
            .eq("is_draft", True)
            .order("updated_at", desc=True)
            .limit(1)
        )
        if not result.data:
            return False
        draft = result.data[0]
        self.draft_report_id = draft["id"]
        self.content = {f: draft.get(f) or "" for f in REPORT_FIELDS}
        self.last_auto_saved = draft.get("last_auto_saved")
        self.dirty = False
        return True

    def _payload(self) -> Dict[str, Any]:
        return {
            "employee_id": self.state.user_id,
            "client_id": self.assignment.get("client_id"),
            "service_id": self.assignment.get("service_id"),
            "assignment_id": self.assignment_id,
            "week_start_date": self.week_start.isoformat(),
            **{f: self.content[f] or None for f in REPORT_FIELDS},
        }

    async def _write(self, values: Dict[str, Any]) -> Dict[str, Any]:
        table = self._backend.table("weekly_reports")
        if self.draft_report_id:
            result = await table.update(values).eq("id", self.draft_report_id)
        else:
            result = await table.insert(values)
        if not result.data:
            raise ApiError("Report not found", code="PGRST116", status=406)
        row = result.data[0]
        self.draft_report_id = row["id"]
        return row

    async def save(self) -> Dict[str, Any]:
        stamp = _now()
        row = await self._write({
            **self._payload(),
            "is_draft": True,
            "status": "draft",
            "approval_status": "draft",
            "last_auto_saved": stamp,
        })
        self.last_auto_saved = row.get("last_auto_saved") or stamp
        self.dirty = False
        return row

    async def autosave(self) -> bool:
        """Save only when something changed since the last save."""
        if self.submitted or not self.dirty or not any(self.content.values()):
            return False
        await self.save()
        structlog.get_logger().info("report_autosaved", report_id=self.draft_report_id, assignment_id=self.assignment_id)
        return True

    async def submit(self) -> Dict[str, Any]:
        if not self.content["work_summary"].strip():
            raise ValueError("Work summary is required")
        row = await self._write({
            **self._payload(),
            "is_draft": False,
            "status": "submitted",
            "approval_status": "submitted",
            "submitted_at": _now(),
        })
        self.submitted = True
        self.dirty = False
        return row


class Timer(Protocol):
    def cancel(self) -> None: ...


TimerCallback = Callable[[], Awaitable[None]]
TimerFactory = Callable[[float, TimerCallback], Timer]


class IntervalTimer:
    """Runs ``callback`` every ``interval`` seconds in a task group until cancelled."""

    def __init__(self, task_group, interval: float, callback: TimerCallback):
        self.interval = interval
        self._callback = callback
        self._scope = anyio.CancelScope()
        task_group.start_soon(self._run)

    async def _run(self) -> None:
        with self._scope:
            while True:
                await anyio.sleep(self.interval)
                await self._callback()

    def cancel(self) -> None:
        self._scope.cancel()


def task_group_timers(task_group) -> TimerFactory:
    def factory(interval: float, callback: TimerCallback) -> Timer:
        return IntervalTimer(task_group, interval, callback)

    return factory


class AutoSaver:
    """
    Keeps one periodic save running for the selected draft. Selecting another
    draft (or none) cancels the running timer before anything else happens.
    """

    def __init__(self, timer_factory: TimerFactory, interval: Optional[float] = None):
        self._timer_factory = timer_factory
        self.interval = settings.autosave_interval_s if interval is None else interval
        self._timer: Optional[Timer] = None
        self.session: Optional[ReportDraftSession] = None
        self.last_error: Optional[str] = None

    @property
    def running(self) -> bool:
        return self._timer is not None

    def select(self, session: Optional[ReportDraftSession]) -> None:
        self._cancel()
        self.session = session
        if session is not None:
            self._timer = self._timer_factory(self.interval, self.tick)

    async def tick(self) -> None:
        session = self.session
        if session is None:
            return
        try:
            await session.autosave()
            self.last_error = None
        except ApiError as e:
            # The next tick tries again; nothing is retried in between
            self.last_error = format_error(e)
            structlog.get_logger().warning("report_autosave_failed", assignment_id=session.assignment_id, error=e.message)

    def _cancel(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def close(self) -> None:
        self._cancel()
        self.session = None
