import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..db import get_db
from ..models.models import AuthUser, Notification
from ..schemas.reports import NotificationSend, NotificationOut
from ..auth.security import Actor, get_current_user, require_roles
from ..roles import Role
from ..services.notifications import create_notification


router = APIRouter(prefix="/api/notifications", tags=["notifications"])


@router.post("/send")
def send_notification(
    payload: NotificationSend,
    db: Session = Depends(get_db),
    _: Actor = Depends(require_roles(Role.ADMIN, Role.EMPLOYEE)),
):
    if not payload.user_id or not payload.title or not payload.message:
        raise HTTPException(status_code=400, detail="userId, title, and message are required")
    if not db.query(AuthUser.id).filter(AuthUser.id == payload.user_id).first():
        raise HTTPException(status_code=404, detail="User not found")
    create_notification(db, payload.user_id, payload.title, payload.message, type=payload.type, link=payload.link)
    db.commit()
    return {"success": True}


@router.get("", response_model=list[NotificationOut])
def list_notifications(
    unread_only: bool = False,
    limit: int = 50,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
):
    q = db.query(Notification).filter(Notification.user_id == user.id)
    if unread_only:
        q = q.filter(Notification.is_read.is_(False))
    return q.order_by(Notification.created_at.desc()).limit(min(max(limit, 1), 200)).all()


@router.post("/{notification_id}/read")
def mark_read(
    notification_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
):
    n = db.query(Notification).filter(Notification.id == notification_id, Notification.user_id == user.id).first()
    if not n:
        raise HTTPException(status_code=404, detail="Not found")
    n.is_read = True
    db.commit()
    return {"status": "ok"}


@router.post("/read-all")
def mark_all_read(db: Session = Depends(get_db), user: AuthUser = Depends(get_current_user)):
    updated = db.query(Notification).filter(
        Notification.user_id == user.id,
        Notification.is_read.is_(False),
    ).update({"is_read": True}, synchronize_session=False)
    db.commit()
    return {"status": "ok", "updated": updated}
