"""
Row-level security for the table API.

Each table has a policy per role. A policy answers three questions:
  read(actor)            -> SQL clause limiting visible rows, None for all rows, False to deny
  write(actor)           -> same, for rows that may be updated / deleted
  check(db, actor, row)  -> whether a new or updated row (as a dict) may exist for this actor

Admins bypass every policy. Callers without a resolved role see nothing.
"""
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from ..auth.security import Actor
from ..models.models import (
    Profile,
    ClientPortalUser,
    Client,
    ClientAssignment,
    ClientCredential,
    ClientNote,
    SharedDocument,
    Task,
    DailyTask,
    TimeEntry,
    DailyTaskLog,
    Feedback,
    WeeklyReport,
    ReportAttachment,
    ReportFeedback,
    Notification,
    ActivityLog,
    DashboardWidget,
)
from ..roles import Role
from .pg_errors import permission_denied


DENY = False

# Tables whose rows belong to one employee (by employee_id) or one user (by user_id).
# The client-side secure query narrows the same tables; this is the enforcing copy.
EMPLOYEE_OWNED = {
    "weekly_reports": WeeklyReport.employee_id,
    "client_assignments": ClientAssignment.employee_id,
    "tasks": Task.assigned_to,
    "time_entries": TimeEntry.employee_id,
    "daily_tasks": DailyTask.employee_id,
}
USER_OWNED = {
    "notifications": Notification.user_id,
    "dashboard_widgets": DashboardWidget.user_id,
    "activity_logs": ActivityLog.user_id,
}


@dataclass
class Policy:
    read: Callable[[Actor], Any] = lambda a: DENY
    write: Callable[[Actor], Any] = lambda a: DENY
    check: Callable[[Session, Actor, Dict[str, Any]], bool] = lambda db, a, row: False


def _all(actor: Actor):
    return None


def _assigned_client_ids(actor: Actor):
    return select(ClientAssignment.client_id).where(
        ClientAssignment.employee_id == actor.id,
        ClientAssignment.is_active.is_(True),
    )


def _own_assignment_ids(actor: Actor):
    return select(ClientAssignment.id).where(ClientAssignment.employee_id == actor.id)


def _own_report_ids(actor: Actor):
    return select(WeeklyReport.id).where(WeeklyReport.employee_id == actor.id)


def _owns_assignment(db: Session, actor: Actor, assignment_id) -> bool:
    if assignment_id is None:
        return False
    return db.query(ClientAssignment.id).filter(
        ClientAssignment.id == assignment_id,
        ClientAssignment.employee_id == actor.id,
    ).first() is not None


def _owns_report(db: Session, actor: Actor, report_id) -> bool:
    if report_id is None:
        return False
    return db.query(WeeklyReport.id).filter(
        WeeklyReport.id == report_id,
        WeeklyReport.employee_id == actor.id,
    ).first() is not None


def _owned_by(column, key: str) -> Policy:
    return Policy(
        read=lambda a: column == a.id,
        write=lambda a: column == a.id,
        check=lambda db, a, row: row.get(key) == a.id,
    )


_READ_ONLY_ALL = Policy(read=_all)

EMPLOYEE_POLICIES: Dict[str, Policy] = {
    "profiles": Policy(
        read=_all,
        write=lambda a: Profile.id == a.id,
        check=lambda db, a, row: (
            row.get("id") == a.id
            and row.get("role") == (a.profile.role if a.profile else None)
            and row.get("manager_id") == (a.profile.manager_id if a.profile else None)
            and row.get("status") == (a.profile.status if a.profile else None)
        ),
    ),
    "clients": _READ_ONLY_ALL,
    "services": _READ_ONLY_ALL,
    "client_services": _READ_ONLY_ALL,
    "report_templates": _READ_ONLY_ALL,
    "client_assignments": Policy(read=lambda a: ClientAssignment.employee_id == a.id),
    "client_credentials": Policy(read=lambda a: ClientCredential.client_id.in_(_assigned_client_ids(a))),
    "shared_documents": Policy(read=lambda a: SharedDocument.client_id.in_(_assigned_client_ids(a))),
    "client_notes": Policy(
        read=lambda a: ClientNote.client_id.in_(_assigned_client_ids(a)),
        write=lambda a: ClientNote.employee_id == a.id,
        check=lambda db, a, row: row.get("employee_id") == a.id,
    ),
    "tasks": Policy(
        read=lambda a: or_(Task.assigned_to == a.id, Task.created_by == a.id),
        write=lambda a: or_(Task.assigned_to == a.id, Task.created_by == a.id),
        # Raising a task for a peer is allowed, but only in one's own name
        check=lambda db, a, row: row.get("created_by") == a.id or row.get("assigned_to") == a.id,
    ),
    "daily_tasks": _owned_by(DailyTask.employee_id, "employee_id"),
    "time_entries": _owned_by(TimeEntry.employee_id, "employee_id"),
    "weekly_reports": Policy(
        read=lambda a: WeeklyReport.employee_id == a.id,
        write=lambda a: WeeklyReport.employee_id == a.id,
        check=lambda db, a, row: row.get("employee_id") == a.id and "approved" not in (row.get("status"), row.get("approval_status")),
    ),
    "daily_task_logs": Policy(
        read=lambda a: DailyTaskLog.assignment_id.in_(_own_assignment_ids(a)),
        write=lambda a: DailyTaskLog.assignment_id.in_(_own_assignment_ids(a)),
        check=lambda db, a, row: _owns_assignment(db, a, row.get("assignment_id")),
    ),
    "report_attachments": Policy(
        read=lambda a: ReportAttachment.report_id.in_(_own_report_ids(a)),
        write=lambda a: ReportAttachment.uploaded_by == a.id,
        check=lambda db, a, row: row.get("uploaded_by") == a.id and _owns_report(db, a, row.get("report_id")),
    ),
    "report_feedback": Policy(read=lambda a: ReportFeedback.report_id.in_(_own_report_ids(a))),
    "feedback": Policy(
        read=lambda a: or_(Feedback.employee_id == a.id, Feedback.given_by == a.id),
        write=lambda a: Feedback.given_by == a.id,
        check=lambda db, a, row: row.get("given_by") == a.id,
    ),
    "notifications": Policy(
        read=lambda a: Notification.user_id == a.id,
        write=lambda a: Notification.user_id == a.id,
        # Marking read is the only change; creation goes through /api/notifications/send
        check=lambda db, a, row: row.get("user_id") == a.id and row.get("id") is not None,
    ),
    "dashboard_widgets": _owned_by(DashboardWidget.user_id, "user_id"),
    "activity_logs": Policy(
        read=lambda a: ActivityLog.user_id == a.id,
        check=lambda db, a, row: row.get("user_id") == a.id,
    ),
}


def _portal_client_id(actor: Actor):
    return actor.portal_user.client_id if actor.portal_user else None


def _approved_report_ids(actor: Actor):
    return select(WeeklyReport.id).where(
        WeeklyReport.client_id == _portal_client_id(actor),
        WeeklyReport.approval_status == "approved",
    )


def _portal_can_rate(db: Session, actor: Actor, row: Dict[str, Any]) -> bool:
    if row.get("portal_user_id") != actor.portal_user.id:
        return False
    return db.query(WeeklyReport.id).filter(
        WeeklyReport.id == row.get("report_id"),
        WeeklyReport.client_id == _portal_client_id(actor),
        WeeklyReport.approval_status == "approved",
    ).first() is not None


PORTAL_POLICIES: Dict[str, Policy] = {
    "clients": Policy(read=lambda a: Client.id == _portal_client_id(a)),
    "services": _READ_ONLY_ALL,
    "client_portal_users": Policy(read=lambda a: ClientPortalUser.id == a.portal_user.id),
    "weekly_reports": Policy(read=lambda a: WeeklyReport.id.in_(_approved_report_ids(a))),
    "report_attachments": Policy(read=lambda a: ReportAttachment.report_id.in_(_approved_report_ids(a))),
    "shared_documents": Policy(read=lambda a: SharedDocument.client_id == _portal_client_id(a)),
    "report_feedback": Policy(
        read=lambda a: ReportFeedback.portal_user_id == a.portal_user.id,
        write=lambda a: ReportFeedback.portal_user_id == a.portal_user.id,
        check=_portal_can_rate,
    ),
}

_POLICIES_BY_ROLE = {
    Role.EMPLOYEE: EMPLOYEE_POLICIES,
    Role.PORTAL: PORTAL_POLICIES,
}

_DENY_ALL = Policy()


def policy_for(actor: Actor, table: str) -> Optional[Policy]:
    """None means unrestricted (admin)."""
    if actor.role is Role.ADMIN:
        return None
    return _POLICIES_BY_ROLE.get(actor.role, {}).get(table, _DENY_ALL)


def read_clause(actor: Actor, table: str):
    policy = policy_for(actor, table)
    return None if policy is None else policy.read(actor)


def write_clause(actor: Actor, table: str):
    policy = policy_for(actor, table)
    return None if policy is None else policy.write(actor)


def ensure_row_allowed(db: Session, actor: Actor, table: str, row: Dict[str, Any]) -> None:
    policy = policy_for(actor, table)
    if policy is None:
        return
    if not policy.check(db, actor, row):
        raise permission_denied(table)
