"""
Role dispatch.

The role is resolved once when the profile loads (see session.py); this table
decides which workspace and which pages that role gets.
"""
from dataclasses import dataclass
from typing import Dict, Tuple, Type

from ..roles import Role
from .admin import AdminWorkspace
from .employee import EmployeeWorkspace
from .portal import PortalWorkspace
from .session import AppState, SessionStatus
from .workspace import Workspace


class WorkspaceUnavailable(Exception):
    def __init__(self, message: str, status: SessionStatus):
        super().__init__(message)
        self.status = status


@dataclass(frozen=True)
class RoleView:
    workspace: Type[Workspace]
    pages: Tuple[str, ...]
    home: str


ROLE_VIEWS: Dict[Role, RoleView] = {
    Role.ADMIN: RoleView(AdminWorkspace, AdminWorkspace.PAGES, "dashboard"),
    Role.EMPLOYEE: RoleView(EmployeeWorkspace, EmployeeWorkspace.PAGES, "dashboard"),
    Role.PORTAL: RoleView(PortalWorkspace, PortalWorkspace.PAGES, "reports"),
}

# Statuses each role may be opened from
_STATUS_FOR_ROLE = {
    Role.ADMIN: SessionStatus.AUTHENTICATED,
    Role.EMPLOYEE: SessionStatus.AUTHENTICATED,
    Role.PORTAL: SessionStatus.PORTAL,
}


def view_for(state: AppState) -> RoleView:
    if state.loading:
        raise WorkspaceUnavailable("Session is still loading", state.status)
    if state.role is None or state.status is SessionStatus.UNAUTHENTICATED:
        raise WorkspaceUnavailable("Not signed in", state.status)
    if _STATUS_FOR_ROLE[state.role] is not state.status:
        raise WorkspaceUnavailable(f"Role {state.role.value} does not match session status {state.status.value}", state.status)
    return ROLE_VIEWS[state.role]


def open_workspace(state: AppState, backend) -> Workspace:
    return view_for(state).workspace(backend, state)


def can_open(state: AppState, page: str) -> bool:
    try:
        return page in view_for(state).pages
    except WorkspaceUnavailable:
        return False
