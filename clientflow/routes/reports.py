from datetime import date, datetime, timedelta, timezone
from typing import Optional
import uuid

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse
from slugify import slugify
from sqlalchemy.orm import Session

from ..db import get_db, atomic
from ..models.models import WeeklyReport, ClientAssignment, DailyTaskLog, Profile
from ..schemas.reports import RejectRequest, ReportReview, StatusSummary
from ..auth.security import Actor, require_roles
from ..roles import Role
from ..services.audit import record_activity, compute_diff
from ..services.notifications import create_notification, local_today, week_start, queue_report_reminders
from ..metrics import weekly_totals
from ..reports.pdf_report import create_weekly_report_pdf
from ..logging import structlog


router = APIRouter(prefix="/api/reports", tags=["reports"])


def _current_week(week: Optional[date]) -> date:
    return week_start(week or local_today())


@router.get("/status-summary", response_model=StatusSummary)
def status_summary(
    week: Optional[date] = None,
    db: Session = Depends(get_db),
    _=Depends(require_roles(Role.ADMIN)),
):
    start = _current_week(week)
    statuses = [s for (s,) in db.query(WeeklyReport.status).filter(
        WeeklyReport.week_start_date == start,
        WeeklyReport.deleted_at.is_(None),
    ).all()]
    total = db.query(ClientAssignment).filter(
        ClientAssignment.is_active.is_(True),
        ClientAssignment.deleted_at.is_(None),
    ).count()
    return StatusSummary(
        week_start=start,
        total_assignments=total,
        submitted=statuses.count("submitted"),
        approved=statuses.count("approved"),
        rejected=statuses.count("rejected"),
        draft=statuses.count("draft"),
        pending=max(total - len(statuses), 0),
    )


@router.post("/check-overdue")
def check_overdue(
    week: Optional[date] = None,
    db: Session = Depends(get_db),
    _=Depends(require_roles(Role.ADMIN)),
):
    with atomic(db):
        result = queue_report_reminders(db, _current_week(week))
    return {"success": True, "remindersSent": result["reminders_sent"], "missingReports": result["missing_reports"]}


@router.post("/send-reminders")
def send_reminders(
    week: Optional[date] = None,
    db: Session = Depends(get_db),
    _=Depends(require_roles(Role.ADMIN)),
):
    with atomic(db):
        result = queue_report_reminders(db, _current_week(week))
    structlog.get_logger().info("report_reminders_sent", **result)
    return {
        "success": True,
        "message": f"Sent {result['reminders_sent']} reminder notifications for {result['missing_reports']} missing reports.",
    }


def _get_report(db: Session, report_id: uuid.UUID) -> WeeklyReport:
    r = db.query(WeeklyReport).filter(WeeklyReport.id == report_id, WeeklyReport.deleted_at.is_(None)).first()
    if not r:
        raise HTTPException(status_code=404, detail="Report not found")
    return r


def _review_snapshot(r: WeeklyReport) -> dict:
    return {"status": r.status, "approval_status": r.approval_status, "approved_by": r.approved_by}


@router.post("/{report_id}/approve", response_model=ReportReview)
def approve_report(
    report_id: uuid.UUID,
    request: Request,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(Role.ADMIN)),
):
    r = _get_report(db, report_id)
    if r.is_draft or r.status == "draft":
        raise HTTPException(status_code=400, detail="Only submitted reports can be approved")
    before = _review_snapshot(r)
    with atomic(db):
        r.status = "approved"
        r.approval_status = "approved"
        r.approved_by = actor.id
        r.approved_at = datetime.now(timezone.utc)
        create_notification(
            db, r.employee_id, "Report Approved",
            f"Your report for the week of {r.week_start_date.isoformat()} was approved.",
            type="success", link=f"/reports/{r.id}",
        )
        record_activity(
            db, "report", r.id, "APPROVE", actor_id=actor.id,
            changes=compute_diff(before, _review_snapshot(r)),
            ip_address=request.client.host if request.client else None,
        )
    db.refresh(r)
    return r


@router.post("/{report_id}/reject", response_model=ReportReview)
def reject_report(
    report_id: uuid.UUID,
    request: Request,
    payload: Optional[RejectRequest] = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(Role.ADMIN)),
):
    r = _get_report(db, report_id)
    if r.is_draft or r.status == "draft":
        raise HTTPException(status_code=400, detail="Only submitted reports can be rejected")
    before = _review_snapshot(r)
    reason = payload.reason if payload else None
    message = f"Your report for the week of {r.week_start_date.isoformat()} needs changes."
    if reason:
        message += f" Reason: {reason}"
    with atomic(db):
        r.status = "rejected"
        r.approval_status = "rejected"
        r.approved_by = None
        r.approved_at = None
        create_notification(db, r.employee_id, "Report Rejected", message, type="error", link=f"/reports/{r.id}")
        record_activity(
            db, "report", r.id, "REJECT", actor_id=actor.id,
            changes=compute_diff(before, _review_snapshot(r)),
            context={"reason": reason},
            ip_address=request.client.host if request.client else None,
        )
    db.refresh(r)
    return r


def _can_download(actor: Actor, r: WeeklyReport) -> bool:
    if actor.is_admin:
        return True
    if actor.role is Role.EMPLOYEE:
        return r.employee_id == actor.id
    if actor.role is Role.PORTAL and actor.portal_user is not None:
        return r.client_id == actor.portal_user.client_id and r.status == "approved"
    return False


@router.get("/{report_id}/pdf")
def download_report_pdf(
    report_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(Role.ADMIN, Role.EMPLOYEE, Role.PORTAL)),
):
    r = _get_report(db, report_id)
    if not _can_download(actor, r):
        raise HTTPException(status_code=404, detail="Report not found")

    week_end = r.week_start_date + timedelta(days=6)
    logs_q = db.query(DailyTaskLog.metrics).filter(
        DailyTaskLog.status == "submitted",
        DailyTaskLog.log_date >= r.week_start_date,
        DailyTaskLog.log_date <= week_end,
    )
    if r.assignment_id:
        logs_q = logs_q.filter(DailyTaskLog.assignment_id == r.assignment_id)
    else:
        logs_q = logs_q.join(ClientAssignment, ClientAssignment.id == DailyTaskLog.assignment_id).filter(
            ClientAssignment.employee_id == r.employee_id,
            ClientAssignment.client_id == r.client_id,
            ClientAssignment.service_id == r.service_id,
        )
    daily = [m for (m,) in logs_q.all()]

    employee = db.query(Profile).filter(Profile.id == r.employee_id).first()
    buffer = create_weekly_report_pdf(
        client_name=r.client.name if r.client else "Client",
        service_name=r.service.name if r.service else "",
        employee_name=employee.full_name if employee else "",
        week_start_date=r.week_start_date,
        sections=[
            ("Work Summary", r.work_summary),
            ("Key Wins", r.key_wins),
            ("Challenges", r.challenges),
            ("Next Week Plan", r.next_week_plan),
        ],
        status=r.status,
        approved_at=r.approved_at,
        metrics=weekly_totals(r.service.slug if r.service else None, daily),
    )
    filename = f"{slugify(r.client.name if r.client else 'report')}-{r.week_start_date.isoformat()}.pdf"
    return StreamingResponse(
        buffer,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
