from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Tuple
import uuid

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from ..db import get_db, atomic
from ..models.models import Client, ClientService, ClientAssignment
from ..schemas.clients import ClientCreate, ClientUpdate, ClientResponse, AssignmentInput
from ..auth.security import Actor, require_roles
from ..roles import Role
from ..services.audit import record_activity, compute_diff
from ..logging import structlog


router = APIRouter(prefix="/api/clients", tags=["clients"])

SERVICE_NOT_ENABLED = "This service is not enabled for this client. Please enable it in the client's services first."

_CLIENT_FIELDS = (
    "name", "industry", "status", "priority", "start_date", "notes",
    "contact_name", "contact_email", "contact_phone", "website",
    "health_status", "report_due_day", "weekly_meeting_day", "meeting_time",
)


def _snapshot(c: Client) -> Dict:
    return {f: getattr(c, f) for f in _CLIENT_FIELDS}


def _client_dict(db: Session, c: Client) -> Dict:
    service_ids = [sid for (sid,) in db.query(ClientService.service_id).filter(ClientService.client_id == c.id).all()]
    assignments = db.query(ClientAssignment).filter(
        ClientAssignment.client_id == c.id,
        ClientAssignment.deleted_at.is_(None),
    ).all()
    data = _snapshot(c)
    data.update(
        id=c.id,
        health_score=c.health_score,
        created_at=c.created_at,
        service_ids=service_ids,
        assignments=[
            AssignmentInput(employee_id=a.employee_id, service_id=a.service_id, is_account_manager=bool(a.is_account_manager))
            for a in assignments
        ],
    )
    return ClientResponse(**data).model_dump(mode="json")


def _dedupe(items: Iterable[AssignmentInput]) -> Dict[Tuple[uuid.UUID, uuid.UUID], AssignmentInput]:
    out: Dict[Tuple[uuid.UUID, uuid.UUID], AssignmentInput] = {}
    for s in items:
        out[(s.employee_id, s.service_id)] = s
    return out


def _sync_services(db: Session, client_id: uuid.UUID, service_ids: List[uuid.UUID]) -> set:
    wanted = set(service_ids)
    current = {cs.service_id: cs for cs in db.query(ClientService).filter(ClientService.client_id == client_id).all()}
    for sid, cs in current.items():
        if sid not in wanted:
            db.delete(cs)
    for sid in wanted - set(current):
        db.add(ClientService(client_id=client_id, service_id=sid))
    db.flush()
    return wanted


def _sync_assignments(db: Session, client_id: uuid.UUID, items: Optional[List[AssignmentInput]], enabled: set) -> None:
    current = {
        (a.employee_id, a.service_id): a
        for a in db.query(ClientAssignment).filter(ClientAssignment.client_id == client_id).all()
    }
    if items is None:
        # Keep the team, dropping only assignments whose service was disabled
        for key, a in current.items():
            if key[1] not in enabled:
                db.delete(a)
        db.flush()
        return

    wanted = _dedupe(items)
    for key, item in wanted.items():
        if item.service_id not in enabled:
            raise HTTPException(status_code=400, detail=SERVICE_NOT_ENABLED)
    for key, a in current.items():
        if key not in wanted:
            db.delete(a)
    db.flush()
    for key, item in wanted.items():
        existing = current.get(key)
        if existing is not None:
            existing.is_account_manager = item.is_account_manager
            existing.is_active = True
            existing.deleted_at = None
        else:
            db.add(ClientAssignment(
                client_id=client_id,
                employee_id=item.employee_id,
                service_id=item.service_id,
                is_account_manager=item.is_account_manager,
                is_active=True,
            ))
    db.flush()


@router.post("", status_code=201)
def create_client(
    payload: ClientCreate,
    request: Request,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(Role.ADMIN)),
):
    """
    Create a client together with its enabled services and assignments.
    Either all of it is stored or none of it is.
    """
    data = payload.model_dump(exclude={"service_ids", "assignments"}, exclude_none=True)
    with atomic(db):
        c = Client(**data)
        db.add(c)
        db.flush()
        enabled = _sync_services(db, c.id, payload.service_ids)
        _sync_assignments(db, c.id, payload.assignments, enabled)
        record_activity(
            db, "client", c.id, "CREATE", actor_id=actor.id,
            context={"services": len(enabled), "assignments": len(payload.assignments)},
            ip_address=request.client.host if request.client else None,
        )
    db.refresh(c)
    structlog.get_logger().info("client_created", client_id=str(c.id), actor=str(actor.id))
    return _client_dict(db, c)


@router.get("")
def list_clients(
    status: Optional[str] = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(Role.ADMIN, Role.EMPLOYEE)),
):
    q = db.query(Client).filter(Client.deleted_at.is_(None))
    if not actor.is_admin:
        assigned = db.query(ClientAssignment.client_id).filter(
            ClientAssignment.employee_id == actor.id,
            ClientAssignment.is_active.is_(True),
            ClientAssignment.deleted_at.is_(None),
        )
        q = q.filter(Client.id.in_(assigned))
    if status:
        q = q.filter(Client.status == status)
    return [_client_dict(db, c) for c in q.order_by(Client.name.asc()).all()]


@router.get("/{client_id}")
def get_client(
    client_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(Role.ADMIN, Role.EMPLOYEE)),
):
    c = db.query(Client).filter(Client.id == client_id, Client.deleted_at.is_(None)).first()
    if not c:
        raise HTTPException(status_code=404, detail="Not found")
    if not actor.is_admin:
        assigned = db.query(ClientAssignment.id).filter(
            ClientAssignment.client_id == client_id,
            ClientAssignment.employee_id == actor.id,
            ClientAssignment.is_active.is_(True),
        ).first()
        if not assigned:
            raise HTTPException(status_code=404, detail="Not found")
    return _client_dict(db, c)


@router.patch("/{client_id}")
def update_client(
    client_id: uuid.UUID,
    payload: ClientUpdate,
    request: Request,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(Role.ADMIN)),
):
    """
    Update client fields and, when given, replace its services and assignments
    in the same transaction. Existing assignments that survive keep their ids.
    """
    c = db.query(Client).filter(Client.id == client_id, Client.deleted_at.is_(None)).first()
    if not c:
        raise HTTPException(status_code=404, detail="Not found")
    before = _snapshot(c)
    fields = payload.model_dump(exclude_unset=True, exclude={"service_ids", "assignments"})
    with atomic(db):
        for k, v in fields.items():
            if k == "name" and not v:
                continue
            setattr(c, k, v)
        if payload.service_ids is not None:
            enabled = _sync_services(db, c.id, payload.service_ids)
        else:
            enabled = {sid for (sid,) in db.query(ClientService.service_id).filter(ClientService.client_id == c.id).all()}
        if payload.service_ids is not None or payload.assignments is not None:
            _sync_assignments(db, c.id, payload.assignments, enabled)
        record_activity(
            db, "client", c.id, "UPDATE", actor_id=actor.id,
            changes=compute_diff(before, _snapshot(c)),
            context={
                "services_replaced": payload.service_ids is not None,
                "assignments_replaced": payload.assignments is not None,
            },
            ip_address=request.client.host if request.client else None,
        )
    db.refresh(c)
    return _client_dict(db, c)


@router.delete("/{client_id}")
def delete_client(
    client_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(Role.ADMIN)),
):
    c = db.query(Client).filter(Client.id == client_id).first()
    if not c:
        return {"status": "ok"}
    with atomic(db):
        c.deleted_at = datetime.now(timezone.utc)
        db.query(ClientAssignment).filter(ClientAssignment.client_id == client_id).update(
            {"is_active": False, "deleted_at": c.deleted_at}, synchronize_session=False
        )
        record_activity(db, "client", c.id, "DELETE", actor_id=actor.id, context={"name": c.name})
    return {"status": "ok"}
