from typing import Optional
import uuid

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from ..db import get_db, atomic
from ..models.models import ClientCredential, ClientAssignment
from ..schemas.clients import CredentialCreate, CredentialUpdate, CredentialResponse
from ..auth.security import Actor, require_roles
from ..roles import Role
from ..services.audit import record_activity
from ..services.crypto import encrypt_secret, decrypt_secret, CredentialDecryptError
from ..logging import structlog


router = APIRouter(prefix="/api/credentials", tags=["credentials"])


def _assigned_client_ids(db: Session, employee_id: uuid.UUID):
    return db.query(ClientAssignment.client_id).filter(
        ClientAssignment.employee_id == employee_id,
        ClientAssignment.is_active.is_(True),
        ClientAssignment.deleted_at.is_(None),
    )


def _get_visible(db: Session, credential_id: uuid.UUID, actor: Actor) -> ClientCredential:
    q = db.query(ClientCredential).filter(ClientCredential.id == credential_id)
    if not actor.is_admin:
        q = q.filter(ClientCredential.client_id.in_(_assigned_client_ids(db, actor.id)))
    cred = q.first()
    if not cred:
        raise HTTPException(status_code=404, detail="Not found")
    return cred


@router.post("", response_model=CredentialResponse, status_code=201)
def create_credential(
    payload: CredentialCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(Role.ADMIN)),
):
    cred = ClientCredential(
        client_id=payload.client_id,
        tool_name=payload.tool_name,
        username=payload.username,
        encrypted_password=encrypt_secret(payload.password),
        notes=payload.notes or "",
        created_by=actor.id,
    )
    with atomic(db):
        db.add(cred)
        db.flush()
        record_activity(db, "credential", cred.id, "CREATE", actor_id=actor.id, context={"client_id": cred.client_id, "tool_name": cred.tool_name})
    db.refresh(cred)
    return cred


@router.get("", response_model=list[CredentialResponse])
def list_credentials(
    client_id: Optional[uuid.UUID] = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(Role.ADMIN, Role.EMPLOYEE)),
):
    q = db.query(ClientCredential)
    if not actor.is_admin:
        q = q.filter(ClientCredential.client_id.in_(_assigned_client_ids(db, actor.id)))
    if client_id:
        q = q.filter(ClientCredential.client_id == client_id)
    return q.order_by(ClientCredential.tool_name.asc()).all()


@router.post("/{credential_id}/reveal")
def reveal_credential(
    credential_id: uuid.UUID,
    request: Request,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(Role.ADMIN, Role.EMPLOYEE)),
):
    """
    Decrypt one stored password. Every reveal is written to the activity trail.
    """
    cred = _get_visible(db, credential_id, actor)
    try:
        password = decrypt_secret(cred.encrypted_password)
    except CredentialDecryptError:
        structlog.get_logger().error("credential_decrypt_failed", credential_id=str(cred.id))
        raise HTTPException(status_code=500, detail="Stored credential could not be decrypted")
    with atomic(db):
        record_activity(
            db, "credential", cred.id, "REVEAL", actor_id=actor.id,
            context={"client_id": cred.client_id, "tool_name": cred.tool_name},
            ip_address=request.client.host if request.client else None,
        )
    return {"id": str(cred.id), "username": cred.username, "password": password}


@router.patch("/{credential_id}", response_model=CredentialResponse)
def update_credential(
    credential_id: uuid.UUID,
    payload: CredentialUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(Role.ADMIN)),
):
    cred = _get_visible(db, credential_id, actor)
    changed = []
    with atomic(db):
        for field, value in payload.model_dump(exclude_unset=True).items():
            if field == "password":
                if value:
                    cred.encrypted_password = encrypt_secret(value)
                    changed.append(field)
                continue
            if value is None and field != "notes":
                continue
            setattr(cred, field, value)
            changed.append(field)
        # Field names only, never the values
        record_activity(db, "credential", cred.id, "UPDATE", actor_id=actor.id, context={"fields": ",".join(sorted(changed))})
    db.refresh(cred)
    return cred


@router.delete("/{credential_id}")
def delete_credential(
    credential_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(Role.ADMIN)),
):
    cred = db.query(ClientCredential).filter(ClientCredential.id == credential_id).first()
    if not cred:
        return {"status": "ok"}
    with atomic(db):
        record_activity(db, "credential", cred.id, "DELETE", actor_id=actor.id, context={"client_id": cred.client_id})
        db.delete(cred)
    return {"status": "ok"}
