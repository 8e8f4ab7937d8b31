import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from passlib.context import CryptContext
import bcrypt
from sqlalchemy.orm import Session

from ..config import settings
from ..db import get_db
from ..models.models import AuthUser, Profile, ClientPortalUser
from ..roles import Role, resolve_role


pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
http_bearer = HTTPBearer(auto_error=False)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    # Accounts imported from the hosted backend still carry bcrypt hashes ($2a$/$2b$/$2y$)
    if hashed.startswith("$2a$") or hashed.startswith("$2b$") or hashed.startswith("$2y$"):
        pb = plain.encode("utf-8")[:72]
        try:
            return bcrypt.checkpw(pb, hashed.encode("utf-8"))
        except ValueError:
            return False
    try:
        return pwd_context.verify(plain, hashed)
    except ValueError:
        return False


def _create_token(sub: str, ttl_seconds: int, extra: Optional[dict] = None) -> str:
    now = datetime.now(tz=timezone.utc)
    payload = {
        "sub": sub,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(seconds=ttl_seconds)).timestamp()),
        "jti": str(uuid.uuid4()),
    }
    if extra:
        payload.update(extra)
    token = jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)
    return token


def create_access_token(user_id: str, email: Optional[str] = None) -> str:
    return _create_token(user_id, settings.jwt_ttl_seconds, extra={"email": email, "type": "access"})


def create_refresh_token(user_id: str) -> str:
    return _create_token(user_id, settings.refresh_ttl_seconds, extra={"type": "refresh"})


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="JWT expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")


def get_current_user(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
    db: Session = Depends(get_db),
) -> AuthUser:
    if creds is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
    payload = decode_token(creds.credentials)
    if payload.get("type") == "refresh":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    try:
        user_uuid = uuid.UUID(str(payload.get("sub")))
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid subject")
    user = db.query(AuthUser).filter(AuthUser.id == user_uuid).first()
    if user is None or not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not active")
    return user


@dataclass
class Actor:
    """The caller as the row-security layer sees it."""
    user: AuthUser
    role: Optional[Role]
    profile: Optional[Profile] = None
    portal_user: Optional[ClientPortalUser] = None

    @property
    def id(self) -> uuid.UUID:
        return self.user.id

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN


def resolve_actor(db: Session, user: AuthUser) -> Actor:
    profile = db.query(Profile).filter(Profile.id == user.id, Profile.deleted_at.is_(None)).first()
    if profile is not None:
        return Actor(user=user, role=resolve_role(profile.role), profile=profile)
    portal_user = (
        db.query(ClientPortalUser)
        .filter(ClientPortalUser.auth_user_id == user.id, ClientPortalUser.is_active.is_(True))
        .first()
    )
    if portal_user is not None:
        return Actor(user=user, role=Role.PORTAL, portal_user=portal_user)
    return Actor(user=user, role=None)


def get_current_actor(
    user: AuthUser = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Actor:
    return resolve_actor(db, user)


def require_roles(*required_roles: Role):
    def _dep(actor: Actor = Depends(get_current_actor)):
        if actor.role is None or actor.role not in required_roles:
            raise HTTPException(status_code=403, detail="Forbidden")
        return actor

    return _dep
