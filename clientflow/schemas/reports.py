import uuid
from datetime import date, datetime
from typing import Optional
from pydantic import BaseModel, Field


class RejectRequest(BaseModel):
    reason: Optional[str] = None


class ReportReview(BaseModel):
    id: uuid.UUID
    status: str
    approval_status: Optional[str] = None
    approved_by: Optional[uuid.UUID] = None
    approved_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class StatusSummary(BaseModel):
    week_start: date
    total_assignments: int
    submitted: int
    approved: int
    rejected: int
    draft: int
    pending: int


class NotificationSend(BaseModel):
    user_id: Optional[uuid.UUID] = Field(default=None, alias="userId")
    title: Optional[str] = None
    message: Optional[str] = None
    type: str = "info"
    link: Optional[str] = None

    class Config:
        populate_by_name = True


class NotificationOut(BaseModel):
    id: uuid.UUID
    title: str
    message: str
    type: Optional[str] = None
    is_read: bool
    link: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
