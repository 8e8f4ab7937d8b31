"""
In-app notifications and the weekly report reminder sweep.
"""
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional
import uuid

import pytz
from sqlalchemy.orm import Session

from ..config import settings
from ..models.models import Notification, ClientAssignment, Client, WeeklyReport


REMINDER_TITLE = "Weekly Report Reminder"


def local_today(timezone_str: Optional[str] = None) -> date:
    tz = pytz.timezone(timezone_str or settings.tz_default)
    return datetime.now(tz).date()


def week_start(day: date) -> date:
    """Monday of the week containing ``day``."""
    return day - timedelta(days=day.weekday())


def create_notification(
    db: Session,
    user_id: uuid.UUID,
    title: str,
    message: str,
    type: str = "info",
    link: Optional[str] = None,
) -> Notification:
    notif = Notification(user_id=user_id, title=title, message=message, type=type, link=link, is_read=False)
    db.add(notif)
    return notif


def missing_report_assignments(db: Session, week: date) -> List[ClientAssignment]:
    """Active assignments with no weekly report for the week starting ``week``."""
    reported = {
        (r.employee_id, r.client_id, r.service_id)
        for r in db.query(WeeklyReport).filter(
            WeeklyReport.week_start_date == week,
            WeeklyReport.deleted_at.is_(None),
        ).all()
    }
    reported_ids = {
        aid for (aid,) in db.query(WeeklyReport.assignment_id).filter(
            WeeklyReport.week_start_date == week,
            WeeklyReport.assignment_id.isnot(None),
        ).all()
    }
    assignments = db.query(ClientAssignment).filter(
        ClientAssignment.is_active.is_(True),
        ClientAssignment.deleted_at.is_(None),
    ).all()
    return [
        a for a in assignments
        if a.id not in reported_ids and (a.employee_id, a.client_id, a.service_id) not in reported
    ]


def queue_report_reminders(db: Session, week: date) -> Dict[str, int]:
    """Queue one reminder per employee listing every client still missing a report."""
    missing = missing_report_assignments(db, week)
    client_names = {c.id: c.name for c in db.query(Client).filter(Client.id.in_({a.client_id for a in missing})).all()} if missing else {}
    by_employee: Dict[uuid.UUID, List[str]] = {}
    for a in missing:
        by_employee.setdefault(a.employee_id, []).append(client_names.get(a.client_id, "Unknown Client"))
    for employee_id, names in by_employee.items():
        create_notification(
            db,
            employee_id,
            REMINDER_TITLE,
            f"You have pending reports for: {', '.join(names)}. Please submit them before the deadline.",
            type="warning",
        )
    return {"reminders_sent": len(by_employee), "missing_reports": len(missing)}
