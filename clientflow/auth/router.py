import secrets
import smtplib
from datetime import datetime, timedelta, timezone
from email.message import EmailMessage

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Response, status
from pydantic import ValidationError
from sqlalchemy.orm import Session

from ..db import get_db
from ..config import settings
from ..models.models import AuthUser, RefreshToken, PasswordReset
from ..schemas.auth import (
    SignUpRequest,
    PasswordGrant,
    RefreshGrant,
    RecoverRequest,
    PasswordResetRequest,
    UpdateUserRequest,
    UserOut,
    SessionResponse,
)
from .security import (
    get_password_hash,
    verify_password,
    create_access_token,
    create_refresh_token,
    decode_token,
    get_current_user,
)
from ..logging import structlog


router = APIRouter(prefix="/auth", tags=["auth"])


def _as_utc(value: datetime) -> datetime:
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


def _issue_session(db: Session, user: AuthUser) -> SessionResponse:
    access = create_access_token(str(user.id), email=user.email)
    refresh = create_refresh_token(str(user.id))
    claims = decode_token(refresh)
    db.add(RefreshToken(
        user_id=user.id,
        jti=claims["jti"],
        expires_at=datetime.fromtimestamp(claims["exp"], tz=timezone.utc),
    ))
    user.last_sign_in_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(user)
    return SessionResponse(
        access_token=access,
        refresh_token=refresh,
        expires_in=settings.jwt_ttl_seconds,
        user=UserOut.model_validate(user),
    )


@router.post("/signup", response_model=SessionResponse)
def signup(req: SignUpRequest, db: Session = Depends(get_db)):
    email = req.email.lower()
    if db.query(AuthUser).filter(AuthUser.email == email).first():
        raise HTTPException(status_code=422, detail="User already registered")
    user = AuthUser(email=email, password_hash=get_password_hash(req.password), user_metadata=req.data or {})
    db.add(user)
    db.flush()
    structlog.get_logger().info("auth_signup", user_id=str(user.id))
    return _issue_session(db, user)


@router.post("/token", response_model=SessionResponse)
def token(grant_type: str = Query(...), payload: dict = Body(...), db: Session = Depends(get_db)):
    try:
        if grant_type == "password":
            return _password_grant(PasswordGrant.model_validate(payload), db)
        if grant_type == "refresh_token":
            return _refresh_grant(RefreshGrant.model_validate(payload), db)
    except ValidationError:
        raise HTTPException(status_code=400, detail="Invalid grant payload")
    raise HTTPException(status_code=400, detail="Unsupported grant_type")


def _password_grant(req: PasswordGrant, db: Session) -> SessionResponse:
    user = db.query(AuthUser).filter(AuthUser.email == req.email.lower()).first()
    if not user or not user.is_active or not verify_password(req.password, user.password_hash):
        raise HTTPException(status_code=400, detail="Invalid login credentials")
    return _issue_session(db, user)


def _refresh_grant(req: RefreshGrant, db: Session) -> SessionResponse:
    claims = decode_token(req.refresh_token)
    if claims.get("type") != "refresh":
        raise HTTPException(status_code=401, detail="Invalid refresh token")
    stored = db.query(RefreshToken).filter(RefreshToken.jti == claims.get("jti")).first()
    if stored is None or stored.revoked_at is not None or _as_utc(stored.expires_at) < datetime.now(timezone.utc):
        raise HTTPException(status_code=401, detail="Invalid refresh token: session expired")
    user = db.query(AuthUser).filter(AuthUser.id == stored.user_id).first()
    if user is None or not user.is_active:
        raise HTTPException(status_code=401, detail="User not active")
    # Rotate: every refresh token is single-use
    stored.revoked_at = datetime.now(timezone.utc)
    return _issue_session(db, user)


@router.post("/logout", status_code=204)
def logout(user: AuthUser = Depends(get_current_user), db: Session = Depends(get_db)):
    now = datetime.now(timezone.utc)
    db.query(RefreshToken).filter(
        RefreshToken.user_id == user.id,
        RefreshToken.revoked_at.is_(None),
    ).update({RefreshToken.revoked_at: now}, synchronize_session=False)
    db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/recover")
def recover(req: RecoverRequest, db: Session = Depends(get_db)):
    user = db.query(AuthUser).filter(AuthUser.email == req.email.lower()).first()
    # Same response whether or not the account exists
    if not user:
        return {"status": "ok"}
    token_value = secrets.token_urlsafe(32)
    db.add(PasswordReset(
        user_id=user.id,
        token=token_value,
        expires_at=datetime.now(timezone.utc) + timedelta(seconds=settings.password_reset_ttl_seconds),
    ))
    db.commit()
    try:
        if settings.smtp_host and settings.mail_from:
            link = f"{settings.public_base_url}/reset-password?token={token_value}"
            msg = EmailMessage()
            msg["Subject"] = f"Reset your {settings.app_name} password"
            msg["From"] = settings.mail_from
            msg["To"] = user.email
            msg.set_content(f"Click to reset your password: {link}")
            with smtplib.SMTP(settings.smtp_host, settings.smtp_port) as s:
                if settings.smtp_tls:
                    s.starttls()
                if settings.smtp_username and settings.smtp_password:
                    s.login(settings.smtp_username, settings.smtp_password)
                s.send_message(msg)
    except (smtplib.SMTPException, OSError) as e:
        structlog.get_logger().warning("password_reset_email_failed", error=str(e))
    return {"status": "ok"}


@router.post("/password/reset")
def password_reset(req: PasswordResetRequest, db: Session = Depends(get_db)):
    pr = db.query(PasswordReset).filter(PasswordReset.token == req.token).first()
    now_utc = datetime.now(timezone.utc)
    if not pr or pr.used_at is not None or _as_utc(pr.expires_at) < now_utc:
        raise HTTPException(status_code=400, detail="Invalid or expired token")
    user = db.query(AuthUser).filter(AuthUser.id == pr.user_id).first()
    if not user:
        raise HTTPException(status_code=400, detail="Invalid token")
    user.password_hash = get_password_hash(req.new_password)
    pr.used_at = now_utc
    db.commit()
    return {"status": "ok"}


@router.get("/user", response_model=UserOut)
def get_user(user: AuthUser = Depends(get_current_user)):
    return user


@router.put("/user", response_model=UserOut)
def update_user(req: UpdateUserRequest, user: AuthUser = Depends(get_current_user), db: Session = Depends(get_db)):
    if req.password:
        user.password_hash = get_password_hash(req.password)
    if req.data:
        user.user_metadata = {**(user.user_metadata or {}), **req.data}
    db.commit()
    db.refresh(user)
    structlog.get_logger().info("auth_user_updated", user_id=str(user.id), password_changed=bool(req.password))
    return user
