"""
Admin workspace: client setup, assignments, tasks, credentials, templates,
shared documents, team monitoring and report approvals.
"""
from datetime import date
import secrets
import time
from typing import Any, Dict, Iterable, List, Optional

from ..logging import structlog
from .errors import ApiError
from .submissions import DailySubmissionService, SubmissionRow
from .validation import validate_email, validate_file_size, validate_required, validate_url
from .workspace import Workspace


SHARED_DOCUMENTS_BUCKET = "shared-documents"

TASK_SELECT = "*, clients(id, name), profiles:assigned_to(id, full_name)"
REPORT_SELECT = "*, clients(id, name), services(id, name, slug), profiles:employee_id(id, full_name)"

PROFILE_ADMIN_FIELDS = {"full_name", "role", "status", "manager_id", "max_capacity", "skills", "phone"}


def _check_client(data: Dict[str, Any]) -> None:
    for check in (
        validate_required(data.get("name")) if "name" in data else None,
        validate_email(data["contact_email"]) if data.get("contact_email") else None,
        validate_url(data.get("website")),
    ):
        if check is not None and not check.is_valid:
            raise ApiError(check.error, status=400)


class AdminWorkspace(Workspace):
    PAGES = (
        "dashboard",
        "clients",
        "assignments",
        "tasks",
        "credentials",
        "report_templates",
        "shared_documents",
        "team",
        "reports",
        "daily_submissions",
        "account_manager",
        "settings",
    )

    @property
    def submissions(self) -> DailySubmissionService:
        return DailySubmissionService(self._backend, self.state)

    # -- clients --
    async def clients(self, status: Optional[str] = None) -> List[Dict[str, Any]]:
        params = {"status": status} if status else None
        return await self._backend.api("GET", "clients", params=params)

    async def client(self, client_id: str) -> Dict[str, Any]:
        return await self._backend.api("GET", f"clients/{client_id}")

    async def create_client(
        self,
        data: Dict[str, Any],
        service_ids: Iterable[str] = (),
        assignments: Iterable[Dict[str, Any]] = (),
    ) -> Dict[str, Any]:
        """The client, its enabled services and its assignments are stored together or not at all."""
        _check_client({"name": data.get("name"), **data})
        body = {**data, "service_ids": list(service_ids), "assignments": list(assignments)}
        client = await self._backend.api("POST", "clients", json=body)
        structlog.get_logger().info("client_created", client_id=client["id"])
        return client

    async def update_client(
        self,
        client_id: str,
        data: Dict[str, Any],
        service_ids: Optional[Iterable[str]] = None,
        assignments: Optional[Iterable[Dict[str, Any]]] = None,
    ) -> Dict[str, Any]:
        """Passing service_ids or assignments replaces that set; None leaves it as it is."""
        _check_client(data)
        body = dict(data)
        if service_ids is not None:
            body["service_ids"] = list(service_ids)
        if assignments is not None:
            body["assignments"] = list(assignments)
        return await self._backend.api("PATCH", f"clients/{client_id}", json=body)

    async def delete_client(self, client_id: str) -> None:
        await self._backend.api("DELETE", f"clients/{client_id}")

    async def services(self) -> List[Dict[str, Any]]:
        result = await self._backend.table("services").select("*").eq("is_active", True).order("name")
        return result.data or []

    # -- assignments --
    async def assignments(self, client_id: Optional[str] = None, employee_id: Optional[str] = None,
                          include_inactive: bool = False) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {"include_inactive": str(include_inactive).lower()}
        if client_id:
            params["client_id"] = client_id
        if employee_id:
            params["employee_id"] = employee_id
        return await self._backend.api("GET", "assignments", params=params)

    async def assign(self, client_id: str, employee_id: str, service_id: str, is_account_manager: bool = False) -> Dict[str, Any]:
        """Fails when the service is not enabled for the client, or with 23505 on a repeat."""
        return await self._backend.api("POST", "assignments", json={
            "client_id": client_id,
            "employee_id": employee_id,
            "service_id": service_id,
            "is_account_manager": is_account_manager,
        })

    async def deactivate_assignment(self, assignment_id: str) -> Dict[str, Any]:
        return await self._backend.api("POST", f"assignments/{assignment_id}/deactivate")

    async def remove_assignment(self, assignment_id: str) -> None:
        await self._backend.api("DELETE", f"assignments/{assignment_id}")

    async def available_team_members(self) -> List[Dict[str, Any]]:
        return await self._backend.rpc("get_available_team_members_for_assignment")

    # -- tasks --
    async def tasks(self, status: Optional[str] = None, assigned_to: Optional[str] = None,
                    client_id: Optional[str] = None) -> List[Dict[str, Any]]:
        q = self._backend.table("tasks").select(TASK_SELECT)
        if status and status != "all":
            q = q.eq("status", status)
        if assigned_to:
            q = q.eq("assigned_to", assigned_to)
        if client_id:
            q = q.eq("client_id", client_id)
        result = await q.order("due_date")
        return result.data or []

    async def create_task(self, title: str, assigned_to: str, due_date: date, priority: str = "medium",
                          description: Optional[str] = None, client_id: Optional[str] = None) -> Dict[str, Any]:
        check = validate_required(title)
        if not check.is_valid:
            raise ApiError(check.error, status=400)
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
        return result.data[0]

    async def update_task(self, task_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        result = await self._backend.table("tasks").update(changes).eq("id", task_id)
        return result.data[0] if result.data else {}

    async def delete_task(self, task_id: str) -> None:
        await self._backend.table("tasks").delete().eq("id", task_id)

    async def give_feedback(self, employee_id: str, feedback: str, feedback_type: str = "general",
                            task_id: Optional[str] = None) -> Dict[str, Any]:
        result = await self._backend.table("feedback").insert({
            "employee_id": employee_id,
            "given_by": self.user_id,
            "task_id": task_id,
            "feedback": feedback,
            "feedback_type": feedback_type,
        })
        return result.data[0]

    # -- credentials --
    async def credentials(self, client_id: Optional[str] = None) -> List[Dict[str, Any]]:
        return await self._backend.api("GET", "credentials", params={"client_id": client_id} if client_id else None)

    async def add_credential(self, client_id: str, tool_name: str, username: str, password: str,
                             notes: Optional[str] = None) -> Dict[str, Any]:
        return await self._backend.api("POST", "credentials", json={
            "client_id": client_id,
            "tool_name": tool_name,
            "username": username,
            "password": password,
            "notes": notes,
        })

    async def update_credential(self, credential_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        return await self._backend.api("PATCH", f"credentials/{credential_id}", json=changes)

    async def reveal_credential(self, credential_id: str) -> Dict[str, Any]:
        return await self._backend.api("POST", f"credentials/{credential_id}/reveal")

    async def delete_credential(self, credential_id: str) -> None:
        await self._backend.api("DELETE", f"credentials/{credential_id}")

    # -- report templates --
    async def report_templates(self, active_only: bool = True) -> List[Dict[str, Any]]:
        q = self._backend.table("report_templates").select("*")
        if active_only:
            q = q.eq("is_active", True)
        result = await q.order("name")
        return result.data or []

    async def save_report_template(self, name: str, template_data: Dict[str, Any], description: Optional[str] = None,
                                   is_default: bool = False, template_id: Optional[str] = None) -> Dict[str, Any]:
        values = {"name": name, "description": description, "template_data": template_data, "is_default": is_default}
        table = self._backend.table("report_templates")
        if template_id:
            result = await table.update(values).eq("id", template_id)
        else:
            result = await table.insert({**values, "created_by": self.user_id, "is_active": True})
        return result.data[0]

    async def archive_report_template(self, template_id: str) -> None:
        await self._backend.table("report_templates").update({"is_active": False}).eq("id", template_id)

    # -- shared documents --
    async def shared_documents(self, client_id: Optional[str] = None) -> List[Dict[str, Any]]:
        q = self._backend.table("shared_documents").select("*, clients(id, name)")
        if client_id:
            q = q.eq("client_id", client_id)
        result = await q.order("created_at", desc=True)
        return result.data or []

    async def share_document(self, client_id: str, filename: str, content: bytes, content_type: str,
                             description: Optional[str] = None) -> Dict[str, Any]:
        check = validate_file_size(len(content))
        if not check.is_valid:
            raise ApiError(check.error, status=413)
        ext = filename.rsplit(".", 1)[-1].lower() if "." in filename else "bin"
        path = f"{client_id}/{int(time.time() * 1000)}-{secrets.token_hex(4)}.{ext}"
        bucket = self._backend.storage.from_(SHARED_DOCUMENTS_BUCKET)
        await bucket.upload(path, content, content_type=content_type)
        try:
            result = await self._backend.table("shared_documents").insert({
                "client_id": client_id,
                "file_name": filename,
                "file_url": bucket.get_public_url(path),
                "file_type": content_type,
                "file_size": len(content),
                "description": description,
                "uploaded_by": self.user_id,
            })
        except ApiError:
            await bucket.remove([path])
            raise
        return result.data[0]

    async def delete_shared_document(self, document: Dict[str, Any]) -> None:
        await self._backend.table("shared_documents").delete().eq("id", document["id"])
        marker = f"/public/{SHARED_DOCUMENTS_BUCKET}/"
        url = document.get("file_url") or ""
        if marker in url:
            await self._backend.storage.from_(SHARED_DOCUMENTS_BUCKET).remove([url.split(marker, 1)[1]])

    # -- team monitoring --
    async def team_workload(self) -> List[Dict[str, Any]]:
        return await self._backend.rpc("get_account_manager_daily_tasks")

    async def team_members(self, manager_id: Optional[str] = None) -> List[Dict[str, Any]]:
        return await self._backend.rpc("get_team_members", {"manager_user_id": manager_id or self.user_id})

    async def managed_clients(self) -> List[Dict[str, Any]]:
        return await self._backend.rpc("get_managed_clients")

    async def team_daily_progress(self, log_date: Optional[date] = None) -> List[Dict[str, Any]]:
        params = {"p_log_date": log_date.isoformat()} if log_date else {}
        return await self._backend.rpc("get_team_daily_progress", params)

    async def daily_submissions(self, start: date, end: date, **filters) -> List[SubmissionRow]:
        return await self.submissions.load_range(start, end, **filters)

    # -- reports --
    async def reports(self, approval_status: Optional[str] = None, week_start: Optional[date] = None) -> List[Dict[str, Any]]:
        q = self._backend.table("weekly_reports").select(REPORT_SELECT).eq("is_draft", False)
        if approval_status and approval_status != "all":
            q = q.eq("approval_status", approval_status)
        if week_start:
            q = q.eq("week_start_date", week_start)
        result = await q.order("submitted_at", desc=True, nulls_first=False)
        return result.data or []

    async def report_status_summary(self, week: Optional[date] = None) -> Dict[str, Any]:
        return await self._backend.api("GET", "reports/status-summary", params={"week": week.isoformat()} if week else None)

    async def approve_report(self, report_id: str) -> Dict[str, Any]:
        return await self._backend.api("POST", f"reports/{report_id}/approve")

    async def reject_report(self, report_id: str, reason: Optional[str] = None) -> Dict[str, Any]:
        return await self._backend.api("POST", f"reports/{report_id}/reject", json={"reason": reason} if reason else None)

    async def send_report_reminders(self) -> Dict[str, Any]:
        return await self._backend.api("POST", "reports/send-reminders")

    async def report_pdf(self, report_id: str) -> bytes:
        return await self._backend.api("GET", f"reports/{report_id}/pdf")

    async def notify(self, user_id: str, title: str, message: str, type: str = "info", link: Optional[str] = None) -> None:
        await self._backend.api("POST", "notifications/send", json={
            "userId": user_id, "title": title, "message": message, "type": type, "link": link,
        })

    # -- settings --
    async def profiles(self, include_inactive: bool = False) -> List[Dict[str, Any]]:
        q = self._backend.table("profiles").select("*")
        if not include_inactive:
            q = q.eq("status", "active")
        result = await q.order("full_name")
        return result.data or []

    async def update_profile(self, profile_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        unknown = set(changes) - PROFILE_ADMIN_FIELDS
        if unknown:
            raise ValueError(f"Profile fields cannot be changed here: {', '.join(sorted(unknown))}")
        result = await self._backend.table("profiles").update(changes).eq("id", profile_id)
        return result.data[0] if result.data else {}

    async def activity(self, entity_type: Optional[str] = None, limit: int = 100) -> List[Dict[str, Any]]:
        q = self._backend.table("activity_logs").select("*")
        if entity_type:
            q = q.eq("entity_type", entity_type)
        result = await q.order("created_at", desc=True).limit(limit)
        return result.data or []
