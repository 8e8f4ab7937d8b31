from typing import Optional
import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..db import get_db, atomic
from ..models.models import ClientAssignment, ClientService
from ..schemas.clients import AssignmentCreate, AssignmentResponse
from ..auth.security import Actor, require_roles
from ..roles import Role
from ..services.audit import record_activity
from .clients import SERVICE_NOT_ENABLED


router = APIRouter(prefix="/api/assignments", tags=["assignments"])


@router.post("", response_model=AssignmentResponse, status_code=201)
def create_assignment(
    payload: AssignmentCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(Role.ADMIN)),
):
    enabled = db.query(ClientService.id).filter(
        ClientService.client_id == payload.client_id,
        ClientService.service_id == payload.service_id,
    ).first()
    if not enabled:
        raise HTTPException(status_code=400, detail=SERVICE_NOT_ENABLED)
    removed = db.query(ClientAssignment).filter(
        ClientAssignment.client_id == payload.client_id,
        ClientAssignment.employee_id == payload.employee_id,
        ClientAssignment.service_id == payload.service_id,
        ClientAssignment.deleted_at.isnot(None),
    ).first()
    if removed is not None:
        # Soft-deleted rows still hold the unique key; bring the row back
        with atomic(db):
            removed.deleted_at = None
            removed.is_active = True
            removed.is_account_manager = payload.is_account_manager
            record_activity(db, "assignment", removed.id, "RESTORE", actor_id=actor.id, context={"client_id": payload.client_id})
        db.refresh(removed)
        return removed

    a = ClientAssignment(**payload.model_dump(), is_active=True)
    # A repeated (client, employee, service) triple fails with 23505
    with atomic(db):
        db.add(a)
        db.flush()
        record_activity(db, "assignment", a.id, "CREATE", actor_id=actor.id, context={"client_id": payload.client_id})
    db.refresh(a)
    return a


@router.get("", response_model=list[AssignmentResponse])
def list_assignments(
    client_id: Optional[uuid.UUID] = None,
    employee_id: Optional[uuid.UUID] = None,
    include_inactive: bool = False,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(Role.ADMIN, Role.EMPLOYEE)),
):
    q = db.query(ClientAssignment).filter(ClientAssignment.deleted_at.is_(None))
    if not actor.is_admin:
        q = q.filter(ClientAssignment.employee_id == actor.id)
    elif employee_id:
        q = q.filter(ClientAssignment.employee_id == employee_id)
    if client_id:
        q = q.filter(ClientAssignment.client_id == client_id)
    if not include_inactive:
        q = q.filter(ClientAssignment.is_active.is_(True))
    return q.order_by(ClientAssignment.created_at.desc()).all()


@router.post("/{assignment_id}/deactivate", response_model=AssignmentResponse)
def deactivate_assignment(
    assignment_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(Role.ADMIN)),
):
    a = db.query(ClientAssignment).filter(ClientAssignment.id == assignment_id).first()
    if not a:
        raise HTTPException(status_code=404, detail="Not found")
    with atomic(db):
        a.is_active = False
        record_activity(db, "assignment", a.id, "UPDATE", actor_id=actor.id, changes={"is_active": {"before": True, "after": False}})
    db.refresh(a)
    return a


@router.delete("/{assignment_id}")
def delete_assignment(
    assignment_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(Role.ADMIN)),
):
    a = db.query(ClientAssignment).filter(ClientAssignment.id == assignment_id).first()
    if not a:
        return {"status": "ok"}
    with atomic(db):
        record_activity(db, "assignment", a.id, "DELETE", actor_id=actor.id, context={"client_id": a.client_id})
        db.delete(a)
    return {"status": "ok"}
