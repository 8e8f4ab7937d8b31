from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..db import get_db
from ..models.models import AuthUser, Profile, ClientPortalUser
from ..schemas.profile import ProfileOut, PortalUserOut, ProfileUpdate
from ..auth.security import get_current_user
from ..logging import structlog


router = APIRouter(prefix="/api", tags=["profile"])

# Marker key telling the client this caller belongs in the client portal
PORTAL_MARKER = "_portal_user"


def _auto_create_profile(db: Session, user: AuthUser) -> Profile:
    # The very first account bootstraps the organization as its admin
    has_admin = db.query(Profile.id).filter(Profile.role == "admin").first() is not None
    meta = user.user_metadata or {}
    profile = Profile(
        id=user.id,
        email=user.email,
        full_name=meta.get("full_name") or user.email.split("@")[0] or "User",
        role="employee" if has_admin else "admin",
        status="active",
        skills=[],
        max_capacity=40,
    )
    db.add(profile)
    db.commit()
    db.refresh(profile)
    structlog.get_logger().info("profile_auto_created", user_id=str(user.id), role=profile.role)
    return profile


@router.get("/profile")
def get_profile(user: AuthUser = Depends(get_current_user), db: Session = Depends(get_db)):
    """
    The caller's application profile, read without row-level security.
    Portal accounts get their portal record flagged with the portal marker instead.
    """
    profile = db.query(Profile).filter(Profile.id == user.id, Profile.deleted_at.is_(None)).first()
    if profile:
        return ProfileOut.model_validate(profile).model_dump(mode="json")

    portal_user = (
        db.query(ClientPortalUser)
        .filter(ClientPortalUser.auth_user_id == user.id, ClientPortalUser.is_active.is_(True))
        .first()
    )
    if portal_user:
        portal_user.last_login_at = datetime.now(timezone.utc)
        db.commit()
        return {PORTAL_MARKER: True, **PortalUserOut.model_validate(portal_user).model_dump(mode="json")}

    profile = _auto_create_profile(db, user)
    return ProfileOut.model_validate(profile).model_dump(mode="json")


@router.patch("/profile", response_model=ProfileOut)
def update_profile(req: ProfileUpdate, user: AuthUser = Depends(get_current_user), db: Session = Depends(get_db)):
    profile = db.query(Profile).filter(Profile.id == user.id).first()
    if not profile:
        raise HTTPException(status_code=404, detail="No profile found")
    for field, value in req.model_dump(exclude_unset=True).items():
        if field == "full_name" and not value:
            continue
        setattr(profile, field, value)
    db.commit()
    db.refresh(profile)
    return profile
