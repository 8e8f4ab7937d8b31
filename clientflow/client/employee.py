"""
Employee workspace: prioritized tasks, daily tasks, daily submissions,
weekly reports with auto-save and attachments, and team progress.
"""
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

from .attachments import delete_attachment, list_attachments, upload_attachment
from .autosave import ReportDraftSession
from .errors import ApiError
from .submissions import ASSIGNMENT_SELECT, DailySubmissionService
from .validation import validate_required
from .workspace import Workspace


TASK_PRIORITIES = ("low", "medium", "high")


def _required(value: Any) -> None:
    check = validate_required(value)
    if not check.is_valid:
        raise ApiError(check.error, status=400)


class EmployeeWorkspace(Workspace):
    PAGES = (
        "dashboard",
        "my_tasks",
        "daily_tasks",
        "daily_submissions",
        "reports",
        "clients",
        "team_progress",
    )

    @property
    def submissions(self) -> DailySubmissionService:
        return DailySubmissionService(self._backend, self.state)

    # -- tasks --
    async def my_tasks(self) -> List[Dict[str, Any]]:
        """Own tasks, most urgent first (meeting proximity, priority, overdue)."""
        return await self._backend.rpc("get_prioritized_tasks_for_employee", {"p_employee_id": self.user_id})

    async def toggle_task(self, task: Dict[str, Any]) -> Dict[str, Any]:
        done = task.get("status") != "completed"
        changes = {
            "status": "completed" if done else "pending",
            "completed_at": datetime.now(timezone.utc).isoformat() if done else None,
        }
        result = await self._backend.table("tasks").update(changes).eq("id", task["id"])
        return result.data[0] if result.data else {**task, **changes}

    async def add_remarks(self, task_id: str, remarks: str) -> Dict[str, Any]:
        result = await self._backend.table("tasks").update({"remarks": remarks or None}).eq("id", task_id)
        return result.data[0] if result.data else {}

    async def peers(self) -> List[Dict[str, Any]]:
        result = await (
            self._backend.table("profiles")
            .select("id, full_name, email")
            .eq("status", "active")
            .neq("id", self.user_id)
            .order("full_name")
        )
        return result.data or []

    async def raise_task(self, assigned_to: str, title: str, due_date: date, priority: str = "medium",
                         description: Optional[str] = None, client_id: Optional[str] = None) -> Dict[str, Any]:
        """Create a task for a peer and let them know about it."""
        _required(title)
        _required(assigned_to)
        if priority not in TASK_PRIORITIES:
            raise ApiError(f"Priority must be one of: {', '.join(TASK_PRIORITIES)}", status=400)
        result = await self._backend.table("tasks").insert({
            "title": title.strip(),
            "description": description,
            "assigned_to": assigned_to,
            "created_by": self.user_id,
            "client_id": client_id,
            "priority": priority,
            "due_date": due_date,
            "status": "pending",
        })
        task = result.data[0]
        if assigned_to != self.user_id:
            sender = (self.state.profile or {}).get("full_name") or "A teammate"
            await self._backend.api("POST", "notifications/send", json={
                "userId": assigned_to,
                "title": "New Task Assigned",
                "message": f"{sender} assigned you a task: {task['title']}",
                "type": "info",
                "link": "/my-tasks",
            })
        return task

    # -- daily tasks --
    async def daily_tasks(self, task_date: date) -> List[Dict[str, Any]]:
        result = await (
            self._backend.table("daily_tasks")
            .select("*, clients(id, name)")
            .eq("employee_id", self.user_id)
            .eq("task_date", task_date)
            .order("created_at")
        )
        return result.data or []

    async def add_daily_task(self, title: str, task_date: date, client_id: Optional[str] = None) -> Dict[str, Any]:
        _required(title)
        result = await self._backend.table("daily_tasks").insert({
            "employee_id": self.user_id,
            "title": title.strip(),
            "task_date": task_date,
            "client_id": client_id,
            "is_completed": False,
        })
        return result.data[0]

    async def toggle_daily_task(self, task: Dict[str, Any]) -> Dict[str, Any]:
        result = await self._backend.table("daily_tasks").update({"is_completed": not task.get("is_completed")}).eq("id", task["id"])
        return result.data[0] if result.data else task

    async def delete_daily_task(self, task_id: str) -> None:
        await self._backend.table("daily_tasks").delete().eq("id", task_id)

    # -- clients and credentials --
    async def my_clients(self) -> List[Dict[str, Any]]:
        return await self._backend.api("GET", "clients")

    async def my_assignments(self) -> List[Dict[str, Any]]:
        return await self.submissions.assignments()

    async def credentials(self, client_id: Optional[str] = None) -> List[Dict[str, Any]]:
        return await self._backend.api("GET", "credentials", params={"client_id": client_id} if client_id else None)

    async def reveal_credential(self, credential_id: str) -> Dict[str, Any]:
        return await self._backend.api("POST", f"credentials/{credential_id}/reveal")

    async def add_client_note(self, client_id: str, note: str) -> Dict[str, Any]:
        _required(note)
        result = await self._backend.table("client_notes").insert({
            "client_id": client_id, "employee_id": self.user_id, "note": note,
        })
        return result.data[0]

    # -- weekly reports --
    async def my_reports(self, status: Optional[str] = None) -> List[Dict[str, Any]]:
        q = (
            self._backend.table("weekly_reports")
            .select("*, clients(id, name), services(id, name, slug)")
            .eq("employee_id", self.user_id)
        )
        if status and status != "all":
            q = q.eq("status", status)
        result = await q.order("week_start_date", desc=True)
        return result.data or []

    async def report_draft(self, assignment: Dict[str, Any], week_start: Optional[date] = None) -> ReportDraftSession:
        """A draft session for the assignment and week, resumed from any saved draft."""
        session = ReportDraftSession(self._backend, self.state, assignment, week_start=week_start)
        await session.resume()
        return session

    async def report_assignments(self) -> List[Dict[str, Any]]:
        result = await (
            self._backend.table("client_assignments")
            .select(ASSIGNMENT_SELECT)
            .eq("employee_id", self.user_id)
            .eq("is_active", True)
        )
        return result.data or []

    async def attach(self, report_id: str, filename: str, content: bytes, content_type: Optional[str] = None) -> Dict[str, Any]:
        return await upload_attachment(self._backend, self.state, report_id, filename, content, content_type)

    async def attachments(self, report_id: str) -> List[Dict[str, Any]]:
        return await list_attachments(self._backend, report_id)

    async def remove_attachment(self, attachment: Dict[str, Any]) -> None:
        await delete_attachment(self._backend, attachment)

    async def report_feedback(self, report_id: str) -> List[Dict[str, Any]]:
        result = await self._backend.table("report_feedback").select("*").eq("report_id", report_id).order("created_at")
        return result.data or []

    # -- team --
    async def team_progress(self, log_date: Optional[date] = None) -> List[Dict[str, Any]]:
        params = {"p_log_date": log_date.isoformat()} if log_date else {}
        return await self._backend.rpc("get_team_daily_progress", params)

    async def team_members(self) -> List[Dict[str, Any]]:
        return await self._backend.rpc("get_team_members", {"manager_user_id": self.user_id})

    async def account_manager_view(self) -> List[Dict[str, Any]]:
        return await self._backend.rpc("get_account_manager_daily_tasks")

    async def feedback(self) -> List[Dict[str, Any]]:
        result = await self._backend.table("feedback").select("*").eq("employee_id", self.user_id).order("created_at", desc=True)
        return result.data or []
