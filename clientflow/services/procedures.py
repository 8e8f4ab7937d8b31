"""
Remote procedures exposed at /rest/v1/rpc/{name}.

These run with the caller's identity but read across the row-security boundary
(like SECURITY DEFINER functions), so each one applies its own visibility rule:
admins see the whole organization, account managers see the clients they manage,
employees see themselves.
"""
import uuid
from collections import defaultdict
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..auth.security import Actor
from ..models.models import Profile, Client, Service, ClientAssignment, Task, DailyTaskLog
from ..roles import Role
from .pg_errors import BackendError, INSUFFICIENT_PRIVILEGE
from .rest_query import coerce


PRIORITY_WEIGHT = {"low": 1, "medium": 2, "high": 3}
PRIORITY_SCORE = {"low": 10, "medium": 20, "high": 30}
OVERDUE_BONUS = 25
TEAM_DEPTH_LIMIT = 8


def _today() -> date:
    return datetime.now(timezone.utc).date()


def _require_profile(actor: Actor) -> None:
    if actor.role not in (Role.ADMIN, Role.EMPLOYEE):
        raise BackendError(INSUFFICIENT_PRIVILEGE, "permission denied for function")


def _param_uuid(params: Dict[str, Any], key: str, default: Optional[uuid.UUID] = None) -> uuid.UUID:
    raw = params.get(key)
    if raw in (None, ""):
        if default is None:
            raise BackendError("22023", f"missing required argument {key}")
        return default
    return coerce(Profile.__table__.c.id, raw)


def _managed_client_ids(db: Session, actor: Actor) -> List[uuid.UUID]:
    if actor.is_admin:
        return [cid for (cid,) in db.query(Client.id).filter(Client.deleted_at.is_(None)).all()]
    rows = db.query(ClientAssignment.client_id).filter(
        ClientAssignment.employee_id == actor.id,
        ClientAssignment.is_account_manager.is_(True),
        ClientAssignment.is_active.is_(True),
    ).distinct().all()
    return [cid for (cid,) in rows]


def _active_employees(db: Session, client_ids: Optional[List[uuid.UUID]] = None) -> List[Profile]:
    q = db.query(Profile).filter(
        Profile.role == "employee",
        Profile.status == "active",
        Profile.deleted_at.is_(None),
    )
    if client_ids is not None:
        member_ids = db.query(ClientAssignment.employee_id).filter(
            ClientAssignment.client_id.in_(client_ids),
            ClientAssignment.is_active.is_(True),
        )
        q = q.filter(Profile.id.in_(member_ids))
    return q.order_by(Profile.full_name).all()


def _pending_counts(db: Session, employee_ids: List[uuid.UUID]) -> Dict[uuid.UUID, int]:
    if not employee_ids:
        return {}
    rows = db.query(Task.assigned_to, func.count(Task.id)).filter(
        Task.assigned_to.in_(employee_ids),
        Task.status == "pending",
        Task.deleted_at.is_(None),
    ).group_by(Task.assigned_to).all()
    return dict(rows)


def _active_client_counts(db: Session, employee_ids: List[uuid.UUID]) -> Dict[uuid.UUID, int]:
    if not employee_ids:
        return {}
    rows = db.query(ClientAssignment.employee_id, func.count(func.distinct(ClientAssignment.client_id))).filter(
        ClientAssignment.employee_id.in_(employee_ids),
        ClientAssignment.is_active.is_(True),
    ).group_by(ClientAssignment.employee_id).all()
    return dict(rows)


def _same_day(value: Optional[datetime], day: date) -> bool:
    return value is not None and value.date() == day


def get_account_manager_daily_tasks(db: Session, actor: Actor, params: Dict[str, Any]) -> List[dict]:
    """Today's task load for every employee on the clients the caller manages."""
    _require_profile(actor)
    today = _today()
    members = _active_employees(db, None if actor.is_admin else _managed_client_ids(db, actor))
    ids = [m.id for m in members]
    tasks_by_member = defaultdict(list)
    if ids:
        for t in db.query(Task).filter(Task.assigned_to.in_(ids), Task.deleted_at.is_(None)).all():
            tasks_by_member[t.assigned_to].append(t)
    clients = _active_client_counts(db, ids)
    out = []
    for m in members:
        tasks = tasks_by_member[m.id]
        pending = [t for t in tasks if t.status == "pending"]
        weights = [PRIORITY_WEIGHT.get(t.priority, 2) for t in pending]
        out.append({
            "employee_id": m.id,
            "employee_name": m.full_name,
            "employee_email": m.email,
            "tasks_assigned_today": sum(1 for t in tasks if _same_day(t.created_at, today)),
            "tasks_completed_today": sum(1 for t in tasks if _same_day(t.completed_at, today)),
            "pending_tasks_count": len(pending),
            "active_clients_count": clients.get(m.id, 0),
            "avg_task_priority": round(sum(weights) / len(weights), 2) if weights else 0,
        })
    return out


def workload_score(pending_tasks: int, active_clients: int, max_capacity: Optional[int]) -> int:
    """Percent of capacity in use: each pending task counts 1, each active client 2."""
    capacity = max_capacity or 5
    return round(100 * (pending_tasks + 2 * active_clients) / (capacity * 3))


def availability_for(score: int) -> str:
    if score < 50:
        return "available"
    if score < 80:
        return "moderate"
    return "busy"


def get_available_team_members_for_assignment(db: Session, actor: Actor, params: Dict[str, Any]) -> List[dict]:
    _require_profile(actor)
    members = _active_employees(db)
    ids = [m.id for m in members]
    pending = _pending_counts(db, ids)
    clients = _active_client_counts(db, ids)
    out = []
    for m in members:
        score = workload_score(pending.get(m.id, 0), clients.get(m.id, 0), m.max_capacity)
        out.append({
            "employee_id": m.id,
            "employee_name": m.full_name,
            "employee_email": m.email,
            "pending_tasks_count": pending.get(m.id, 0),
            "workload_score": score,
            "availability_status": availability_for(score),
        })
    out.sort(key=lambda r: (r["workload_score"], r["employee_name"]))
    return out


def days_until_meeting(meeting_day: Optional[int], today: date) -> Optional[int]:
    if meeting_day is None:
        return None
    return (meeting_day - today.weekday()) % 7


def meeting_urgency(days: Optional[int]) -> tuple:
    """(score, label) for the next weekly client meeting."""
    if days is None:
        return 0, None
    if days == 0:
        return 50, "Meeting today"
    if days == 1:
        return 40, "Meeting tomorrow"
    if days == 2:
        return 30, "Meeting in 2 days"
    if days <= 4:
        return 15, f"Meeting in {days} days"
    return 0, None


def get_prioritized_tasks_for_employee(db: Session, actor: Actor, params: Dict[str, Any]) -> List[dict]:
    _require_profile(actor)
    employee_id = _param_uuid(params, "p_employee_id", actor.id)
    if employee_id != actor.id and not actor.is_admin:
        raise BackendError(INSUFFICIENT_PRIVILEGE, "permission denied for function get_prioritized_tasks_for_employee")
    today = _today()
    rows = (
        db.query(Task, Client)
        .outerjoin(Client, Task.client_id == Client.id)
        .filter(Task.assigned_to == employee_id, Task.deleted_at.is_(None))
        .all()
    )
    out = []
    for task, client in rows:
        days = days_until_meeting(client.weekly_meeting_day if client else None, today)
        urgency, label = meeting_urgency(days)
        score = PRIORITY_SCORE.get(task.priority, 20) + urgency
        if task.status == "pending" and task.due_date and task.due_date < today:
            score += OVERDUE_BONUS
        out.append({
            "id": task.id,
            "title": task.title,
            "description": task.description,
            "assigned_to": task.assigned_to,
            "created_by": task.created_by,
            "client_id": task.client_id,
            "client_name": client.name if client else None,
            "priority": task.priority,
            "due_date": task.due_date,
            "status": task.status,
            "completed_at": task.completed_at,
            "remarks": task.remarks,
            "created_at": task.created_at,
            "weekly_meeting_day": client.weekly_meeting_day if client else None,
            "meeting_time": client.meeting_time if client else None,
            "days_until_meeting": days,
            "meeting_priority_score": score,
            "meeting_urgency_label": label,
        })
    # Pending first, then most urgent, then earliest due
    out.sort(key=lambda r: (r["status"] != "pending", -r["meeting_priority_score"], r["due_date"] or date.max))
    return out


def get_team_members(db: Session, actor: Actor, params: Dict[str, Any]) -> List[dict]:
    """Everyone reporting to the manager, directly (level 1) or indirectly."""
    _require_profile(actor)
    manager_id = _param_uuid(params, "manager_user_id", actor.id)
    if manager_id != actor.id and not actor.is_admin:
        raise BackendError(INSUFFICIENT_PRIVILEGE, "permission denied for function get_team_members")
    out, frontier, seen, level = [], [manager_id], {manager_id}, 1
    while frontier and level <= TEAM_DEPTH_LIMIT:
        reports = (
            db.query(Profile)
            .filter(Profile.manager_id.in_(frontier), Profile.deleted_at.is_(None))
            .order_by(Profile.full_name)
            .all()
        )
        frontier = []
        for p in reports:
            if p.id in seen:
                continue
            seen.add(p.id)
            frontier.append(p.id)
            out.append({"id": p.id, "email": p.email, "full_name": p.full_name, "role": p.role, "status": p.status, "level": level})
        level += 1
    return out


def get_managed_clients(db: Session, actor: Actor, params: Dict[str, Any]) -> List[dict]:
    _require_profile(actor)
    client_ids = _managed_client_ids(db, actor)
    if not client_ids:
        return []
    counts = dict(
        db.query(ClientAssignment.client_id, func.count(func.distinct(ClientAssignment.employee_id)))
        .filter(ClientAssignment.client_id.in_(client_ids), ClientAssignment.is_active.is_(True))
        .group_by(ClientAssignment.client_id)
        .all()
    )
    clients = db.query(Client).filter(Client.id.in_(client_ids)).order_by(Client.name).all()
    return [{"client_id": c.id, "client_name": c.name, "employee_count": counts.get(c.id, 0)} for c in clients]


def get_team_daily_progress(db: Session, actor: Actor, params: Dict[str, Any]) -> List[dict]:
    _require_profile(actor)
    raw_date = params.get("p_log_date")
    log_date = coerce(DailyTaskLog.__table__.c.log_date, raw_date) if raw_date else _today()
    client_ids = _managed_client_ids(db, actor)
    if not client_ids:
        return []
    rows = (
        db.query(ClientAssignment, Profile, Client, Service, DailyTaskLog)
        .join(Profile, ClientAssignment.employee_id == Profile.id)
        .join(Client, ClientAssignment.client_id == Client.id)
        .join(Service, ClientAssignment.service_id == Service.id)
        .outerjoin(DailyTaskLog, (DailyTaskLog.assignment_id == ClientAssignment.id) & (DailyTaskLog.log_date == log_date))
        .filter(ClientAssignment.client_id.in_(client_ids), ClientAssignment.is_active.is_(True))
        .order_by(Client.name, Profile.full_name)
        .all()
    )
    return [
        {
            "employee_id": p.id,
            "employee_name": p.full_name,
            "client_id": c.id,
            "client_name": c.name,
            "service_id": s.id,
            "service_name": s.name,
            "assignment_id": a.id,
            "log_id": log.id if log else None,
            "notes": log.notes if log else None,
            "work_status": log.work_status if log else None,
            "submission_status": log.status if log else None,
            "submitted_at": log.submitted_at if log else None,
            "metrics": log.metrics if log else None,
        }
        for a, p, c, s, log in rows
    ]


PROCEDURES: Dict[str, Callable[[Session, Actor, Dict[str, Any]], List[dict]]] = {
    "get_account_manager_daily_tasks": get_account_manager_daily_tasks,
    "get_available_team_members_for_assignment": get_available_team_members_for_assignment,
    "get_prioritized_tasks_for_employee": get_prioritized_tasks_for_employee,
    "get_team_members": get_team_members,
    "get_managed_clients": get_managed_clients,
    "get_team_daily_progress": get_team_daily_progress,
}


def call_procedure(name: str, db: Session, actor: Actor, params: Dict[str, Any]) -> List[dict]:
    fn = PROCEDURES.get(name)
    if fn is None:
        raise BackendError("PGRST202", f"Could not find the function public.{name} in the schema cache", status_code=404)
    return fn(db, actor, params)
