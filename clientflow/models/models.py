import uuid
from datetime import datetime, date
from typing import Optional

from sqlalchemy import (
    String,
    DateTime,
    Date,
    Boolean,
    ForeignKey,
    Integer,
    Float,
    JSON,
    UniqueConstraint,
    Text,
    Index,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship, Mapped, mapped_column

from ..db import Base


def uuid_pk() -> Mapped[uuid.UUID]:
    return mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)


def _fk(target: str, ondelete: str = "CASCADE", **kw):
    return mapped_column(UUID(as_uuid=True), ForeignKey(target, ondelete=ondelete), **kw)


# ---------- Auth ----------

class AuthUser(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = uuid_pk()
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    user_metadata: Mapped[Optional[dict]] = mapped_column(JSON, default=dict)  # {full_name: ...}
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    last_sign_in_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))


class RefreshToken(Base):
    __tablename__ = "refresh_tokens"

    id: Mapped[uuid.UUID] = uuid_pk()
    user_id: Mapped[uuid.UUID] = _fk("users.id")
    jti: Mapped[str] = mapped_column(String(128), unique=True, nullable=False, index=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    revoked_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))


class PasswordReset(Base):
    __tablename__ = "password_resets"

    id: Mapped[uuid.UUID] = uuid_pk()
    user_id: Mapped[uuid.UUID] = _fk("users.id")
    token: Mapped[str] = mapped_column(String(128), unique=True, index=True, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    used_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))


# ---------- People ----------

class Profile(Base):
    __tablename__ = "profiles"

    # Same id as the auth user it belongs to
    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="employee")  # admin|employee
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")  # active|inactive
    manager_id: Mapped[Optional[uuid.UUID]] = _fk("profiles.id", ondelete="SET NULL")
    max_capacity: Mapped[Optional[int]] = mapped_column(Integer, default=5)
    skills: Mapped[Optional[list]] = mapped_column(JSON, default=list)
    phone: Mapped[Optional[str]] = mapped_column(String(50))
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow)


class ClientPortalUser(Base):
    __tablename__ = "client_portal_users"

    id: Mapped[uuid.UUID] = uuid_pk()
    client_id: Mapped[uuid.UUID] = _fk("clients.id", nullable=False, index=True)
    auth_user_id: Mapped[Optional[uuid.UUID]] = _fk("users.id", ondelete="SET NULL", index=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    last_login_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)

    client = relationship("Client")


# ---------- Clients & services ----------

class Client(Base):
    __tablename__ = "clients"

    id: Mapped[uuid.UUID] = uuid_pk()
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    industry: Mapped[Optional[str]] = mapped_column(String(100))
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")  # active|paused|completed
    priority: Mapped[Optional[str]] = mapped_column(String(20), default="medium")  # low|medium|high
    start_date: Mapped[Optional[date]] = mapped_column(Date)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    contact_name: Mapped[Optional[str]] = mapped_column(String(255))
    contact_email: Mapped[Optional[str]] = mapped_column(String(255))
    contact_phone: Mapped[Optional[str]] = mapped_column(String(50))
    website: Mapped[Optional[str]] = mapped_column(String(500))
    health_status: Mapped[Optional[str]] = mapped_column(String(20), default="healthy")  # healthy|at_risk|critical
    health_score: Mapped[Optional[float]] = mapped_column(Float, default=100)
    report_due_day: Mapped[Optional[int]] = mapped_column(Integer, default=5)
    weekly_meeting_day: Mapped[Optional[int]] = mapped_column(Integer)  # 0=Monday .. 6=Sunday
    meeting_time: Mapped[Optional[str]] = mapped_column(String(5), default="10:00")
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow)

    services = relationship("ClientService", cascade="all, delete-orphan", passive_deletes=True)
    assignments = relationship("ClientAssignment", back_populates="client", cascade="all, delete-orphan", passive_deletes=True)


class Service(Base):
    __tablename__ = "services"

    id: Mapped[uuid.UUID] = uuid_pk()
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    slug: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    description: Mapped[Optional[str]] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)


class ClientService(Base):
    __tablename__ = "client_services"

    id: Mapped[uuid.UUID] = uuid_pk()
    client_id: Mapped[uuid.UUID] = _fk("clients.id", nullable=False)
    service_id: Mapped[uuid.UUID] = _fk("services.id", nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)

    __table_args__ = (UniqueConstraint("client_id", "service_id", name="uq_client_service"),)


class ClientAssignment(Base):
    __tablename__ = "client_assignments"

    id: Mapped[uuid.UUID] = uuid_pk()
    client_id: Mapped[uuid.UUID] = _fk("clients.id", nullable=False, index=True)
    employee_id: Mapped[uuid.UUID] = _fk("profiles.id", nullable=False, index=True)
    service_id: Mapped[uuid.UUID] = _fk("services.id", nullable=False)
    is_account_manager: Mapped[bool] = mapped_column(Boolean, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)

    client = relationship("Client", back_populates="assignments")
    service = relationship("Service")
    employee = relationship("Profile")

    __table_args__ = (UniqueConstraint("client_id", "employee_id", "service_id", name="uq_client_employee_service"),)


class ClientCredential(Base):
    __tablename__ = "client_credentials"

    id: Mapped[uuid.UUID] = uuid_pk()
    client_id: Mapped[uuid.UUID] = _fk("clients.id", nullable=False, index=True)
    tool_name: Mapped[str] = mapped_column(String(255), nullable=False)
    username: Mapped[str] = mapped_column(String(255), nullable=False)
    encrypted_password: Mapped[str] = mapped_column(Text, nullable=False)  # Fernet token
    notes: Mapped[Optional[str]] = mapped_column(Text, default="")
    created_by: Mapped[Optional[uuid.UUID]] = _fk("profiles.id", ondelete="SET NULL")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow)


class ClientNote(Base):
    __tablename__ = "client_notes"

    id: Mapped[uuid.UUID] = uuid_pk()
    client_id: Mapped[uuid.UUID] = _fk("clients.id", nullable=False, index=True)
    employee_id: Mapped[uuid.UUID] = _fk("profiles.id", nullable=False)
    note: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)


class SharedDocument(Base):
    __tablename__ = "shared_documents"

    id: Mapped[uuid.UUID] = uuid_pk()
    client_id: Mapped[uuid.UUID] = _fk("clients.id", nullable=False, index=True)
    file_name: Mapped[str] = mapped_column(String(500), nullable=False)
    file_url: Mapped[str] = mapped_column(String(1000), nullable=False)
    file_type: Mapped[Optional[str]] = mapped_column(String(100))
    file_size: Mapped[Optional[int]] = mapped_column(Integer, default=0)
    description: Mapped[Optional[str]] = mapped_column(Text)
    permissions: Mapped[Optional[str]] = mapped_column(String(20), default="view")
    uploaded_by: Mapped[uuid.UUID] = _fk("users.id", nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)


# ---------- Work ----------

class Task(Base):
    __tablename__ = "tasks"

    id: Mapped[uuid.UUID] = uuid_pk()
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    assigned_to: Mapped[uuid.UUID] = _fk("profiles.id", nullable=False, index=True)
    created_by: Mapped[Optional[uuid.UUID]] = _fk("profiles.id", ondelete="SET NULL")
    client_id: Mapped[Optional[uuid.UUID]] = _fk("clients.id", ondelete="SET NULL")
    priority: Mapped[str] = mapped_column(String(10), nullable=False, default="medium")  # low|medium|high
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")  # pending|completed
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    remarks: Mapped[Optional[str]] = mapped_column(Text)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow)


class DailyTask(Base):
    __tablename__ = "daily_tasks"

    id: Mapped[uuid.UUID] = uuid_pk()
    employee_id: Mapped[uuid.UUID] = _fk("profiles.id", nullable=False, index=True)
    client_id: Mapped[Optional[uuid.UUID]] = _fk("clients.id", ondelete="SET NULL")
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    task_date: Mapped[date] = mapped_column(Date, nullable=False)
    is_completed: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)


class TimeEntry(Base):
    __tablename__ = "time_entries"

    id: Mapped[uuid.UUID] = uuid_pk()
    employee_id: Mapped[uuid.UUID] = _fk("profiles.id", nullable=False, index=True)
    client_id: Mapped[uuid.UUID] = _fk("clients.id", nullable=False)
    service_id: Mapped[Optional[uuid.UUID]] = _fk("services.id", ondelete="SET NULL")
    hours: Mapped[float] = mapped_column(Float, nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    is_billable: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)


class DailyTaskLog(Base):
    __tablename__ = "daily_task_logs"

    id: Mapped[uuid.UUID] = uuid_pk()
    assignment_id: Mapped[uuid.UUID] = _fk("client_assignments.id", nullable=False, index=True)
    log_date: Mapped[date] = mapped_column(Date, nullable=False)
    metrics: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")  # pending|submitted
    work_status: Mapped[Optional[str]] = mapped_column(String(20))  # not_started|in_progress|completed|on_hold|review
    submitted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow)

    assignment = relationship("ClientAssignment")

    __table_args__ = (UniqueConstraint("assignment_id", "log_date", name="uq_daily_log_assignment_date"),)


class Feedback(Base):
    __tablename__ = "feedback"

    id: Mapped[uuid.UUID] = uuid_pk()
    employee_id: Mapped[uuid.UUID] = _fk("profiles.id", nullable=False, index=True)
    given_by: Mapped[uuid.UUID] = _fk("profiles.id", nullable=False)
    task_id: Mapped[Optional[uuid.UUID]] = _fk("tasks.id", ondelete="SET NULL")
    feedback: Mapped[str] = mapped_column(Text, nullable=False)
    feedback_type: Mapped[Optional[str]] = mapped_column(String(20), default="general")  # general|positive|improvement
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)


# ---------- Reports ----------

class ReportTemplate(Base):
    __tablename__ = "report_templates"

    id: Mapped[uuid.UUID] = uuid_pk()
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    template_data: Mapped[Optional[dict]] = mapped_column(JSON, default=dict)
    created_by: Mapped[uuid.UUID] = _fk("profiles.id", nullable=False)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)


class WeeklyReport(Base):
    __tablename__ = "weekly_reports"

    id: Mapped[uuid.UUID] = uuid_pk()
    employee_id: Mapped[uuid.UUID] = _fk("profiles.id", nullable=False, index=True)
    client_id: Mapped[uuid.UUID] = _fk("clients.id", nullable=False, index=True)
    service_id: Mapped[uuid.UUID] = _fk("services.id", nullable=False)
    assignment_id: Mapped[Optional[uuid.UUID]] = _fk("client_assignments.id", ondelete="SET NULL")
    week_start_date: Mapped[date] = mapped_column(Date, nullable=False)
    work_summary: Mapped[Optional[str]] = mapped_column(Text)
    key_wins: Mapped[Optional[str]] = mapped_column(Text)
    challenges: Mapped[Optional[str]] = mapped_column(Text)
    next_week_plan: Mapped[Optional[str]] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="draft")  # draft|submitted|approved|rejected
    approval_status: Mapped[Optional[str]] = mapped_column(String(20), default="draft")
    is_draft: Mapped[bool] = mapped_column(Boolean, default=False)
    last_auto_saved: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    report_template_id: Mapped[Optional[uuid.UUID]] = _fk("report_templates.id", ondelete="SET NULL")
    submitted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    approved_by: Mapped[Optional[uuid.UUID]] = _fk("profiles.id", ondelete="SET NULL")
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow)

    client = relationship("Client")
    service = relationship("Service")
    employee = relationship("Profile", foreign_keys=[employee_id])

    __table_args__ = (
        Index("idx_weekly_reports_week", "week_start_date"),
    )


class ReportAttachment(Base):
    __tablename__ = "report_attachments"

    id: Mapped[uuid.UUID] = uuid_pk()
    report_id: Mapped[uuid.UUID] = _fk("weekly_reports.id", nullable=False, index=True)
    file_name: Mapped[str] = mapped_column(String(500), nullable=False)
    file_path: Mapped[Optional[str]] = mapped_column(String(1000))
    file_url: Mapped[Optional[str]] = mapped_column(String(1000))
    file_size: Mapped[int] = mapped_column(Integer, nullable=False)
    file_type: Mapped[Optional[str]] = mapped_column(String(100))
    uploaded_by: Mapped[uuid.UUID] = _fk("users.id", nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)


class ReportFeedback(Base):
    __tablename__ = "report_feedback"

    id: Mapped[uuid.UUID] = uuid_pk()
    report_id: Mapped[uuid.UUID] = _fk("weekly_reports.id", nullable=False, index=True)
    portal_user_id: Mapped[uuid.UUID] = _fk("client_portal_users.id", nullable=False)
    rating: Mapped[Optional[int]] = mapped_column(Integer)
    feedback: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)


# ---------- Per-user ----------

class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[uuid.UUID] = uuid_pk()
    user_id: Mapped[uuid.UUID] = _fk("users.id", nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[Optional[str]] = mapped_column(String(20), default="info")  # info|warning|success|error
    is_read: Mapped[bool] = mapped_column(Boolean, default=False)
    link: Mapped[Optional[str]] = mapped_column(String(500))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)

    __table_args__ = (
        Index("idx_notifications_user_read", "user_id", "is_read"),
    )


class ActivityLog(Base):
    """Append-only activity trail, also used for audit of sensitive operations"""
    __tablename__ = "activity_logs"

    id: Mapped[uuid.UUID] = uuid_pk()
    user_id: Mapped[Optional[uuid.UUID]] = _fk("users.id", ondelete="SET NULL", index=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False)  # CREATE|UPDATE|DELETE|APPROVE|REJECT|REVEAL
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    details: Mapped[Optional[dict]] = mapped_column(JSON, default=dict)  # {changes: {...}, context: {...}}
    ip_address: Mapped[Optional[str]] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, index=True)

    __table_args__ = (
        Index("idx_activity_entity", "entity_type", "entity_id"),
    )


class DashboardWidget(Base):
    __tablename__ = "dashboard_widgets"

    id: Mapped[uuid.UUID] = uuid_pk()
    user_id: Mapped[uuid.UUID] = _fk("users.id", nullable=False, index=True)
    widget_type: Mapped[str] = mapped_column(String(50), nullable=False)
    position: Mapped[int] = mapped_column(Integer, default=0)
    config: Mapped[Optional[dict]] = mapped_column(JSON, default=dict)
    is_visible: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
