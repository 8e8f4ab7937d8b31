"""Client portal: approved reports of one client, feedback on them, shared documents."""
from typing import Any, Dict, List, Optional

from .attachments import list_attachments
from .errors import ApiError
from .session import AppState
from .workspace import Workspace


class PortalWorkspace(Workspace):
    PAGES = ("dashboard", "reports", "documents")

    def __init__(self, backend, state: AppState):
        super().__init__(backend, state)
        if not state.portal_account:
            raise ValueError("Portal workspace needs a portal account")
        self.account = state.portal_account

    @property
    def client_id(self) -> str:
        return self.account["client_id"]

    async def client(self) -> Optional[Dict[str, Any]]:
        result = await self._backend.table("clients").select("id, name, website, status").eq("id", self.client_id).maybe_single()
        return result.data

    async def reports(self) -> List[Dict[str, Any]]:
        """Approved reports only; the backend never shows a portal user anything else."""
        result = await (
            self._backend.table("weekly_reports")
            .select("id, week_start_date, work_summary, key_wins, challenges, next_week_plan, approved_at, services(id, name, slug)")
            .eq("client_id", self.client_id)
            .eq("approval_status", "approved")
            .order("week_start_date", desc=True)
        )
        return result.data or []

    async def report_attachments(self, report_id: str) -> List[Dict[str, Any]]:
        return await list_attachments(self._backend, report_id)

    async def report_pdf(self, report_id: str) -> bytes:
        return await self._backend.api("GET", f"reports/{report_id}/pdf")

    async def my_feedback(self) -> List[Dict[str, Any]]:
        result = await self._backend.table("report_feedback").select("*").eq("portal_user_id", self.account["id"])
        return result.data or []

    async def give_feedback(self, report_id: str, rating: Optional[int] = None, feedback: Optional[str] = None) -> Dict[str, Any]:
        if rating is None and not (feedback or "").strip():
            raise ApiError("Please add a rating or a comment", status=400)
        if rating is not None and not 1 <= rating <= 5:
            raise ApiError("Rating must be between 1 and 5", status=400)
        result = await self._backend.table("report_feedback").insert({
            "report_id": report_id,
            "portal_user_id": self.account["id"],
            "rating": rating,
            "feedback": (feedback or "").strip() or None,
        })
        return result.data[0]

    async def documents(self) -> List[Dict[str, Any]]:
        result = await (
            self._backend.table("shared_documents")
            .select("id, file_name, file_url, file_type, file_size, description, created_at")
            .eq("client_id", self.client_id)
            .order("created_at", desc=True)
        )
        return result.data or []
