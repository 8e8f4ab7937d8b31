from typing import Any, Dict, List, Optional

from .session import AppState


class Workspace:
    """What every signed-in role can do, whatever its pages."""

    PAGES: tuple = ()
    HOME = "dashboard"

    def __init__(self, backend, state: AppState):
        self._backend = backend
        self.state = state

    @property
    def user_id(self) -> Optional[str]:
        return self.state.user_id

    async def notifications(self, unread_only: bool = False, limit: int = 50) -> List[Dict[str, Any]]:
        return await self._backend.api(
            "GET", "notifications", params={"unread_only": str(unread_only).lower(), "limit": limit},
        )

    async def mark_notification_read(self, notification_id: str) -> None:
        await self._backend.api("POST", f"notifications/{notification_id}/read")

    async def mark_all_notifications_read(self) -> None:
        await self._backend.api("POST", "notifications/read-all")
