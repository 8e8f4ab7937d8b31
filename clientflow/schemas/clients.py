import uuid
from datetime import date, datetime
from typing import Optional, List
from pydantic import BaseModel, Field, field_validator


class AssignmentInput(BaseModel):
    employee_id: uuid.UUID
    service_id: uuid.UUID
    is_account_manager: bool = False


class ClientBase(BaseModel):
    industry: Optional[str] = None
    status: Optional[str] = None
    priority: Optional[str] = None
    start_date: Optional[date] = None
    notes: Optional[str] = None

    contact_name: Optional[str] = None
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None
    website: Optional[str] = None

    health_status: Optional[str] = None
    report_due_day: Optional[int] = Field(default=None, ge=0, le=6)
    weekly_meeting_day: Optional[int] = Field(default=None, ge=0, le=6)
    meeting_time: Optional[str] = None

    @field_validator('industry','notes','contact_name','contact_email','contact_phone','website','meeting_time', mode='before')
    @classmethod
    def empty_to_none(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None

    @field_validator('status')
    @classmethod
    def check_status(cls, v):
        if v is not None and v not in ("active", "paused", "completed"):
            raise ValueError("status must be one of active, paused, completed")
        return v

    @field_validator('priority')
    @classmethod
    def check_priority(cls, v):
        if v is not None and v not in ("low", "medium", "high"):
            raise ValueError("priority must be one of low, medium, high")
        return v


class ClientCreate(ClientBase):
    name: str = Field(min_length=1)
    # Enabled services and the team working them, written together with the client
    service_ids: List[uuid.UUID] = []
    assignments: List[AssignmentInput] = []


class ClientUpdate(ClientBase):
    name: Optional[str] = None
    # None leaves the current set untouched; a list replaces it
    service_ids: Optional[List[uuid.UUID]] = None
    assignments: Optional[List[AssignmentInput]] = None


class ClientResponse(ClientBase):
    id: uuid.UUID
    name: str
    health_score: Optional[float] = None
    created_at: Optional[datetime] = None
    service_ids: List[uuid.UUID] = []
    assignments: List[AssignmentInput] = []


class AssignmentCreate(AssignmentInput):
    client_id: uuid.UUID


class AssignmentResponse(BaseModel):
    id: uuid.UUID
    client_id: uuid.UUID
    employee_id: uuid.UUID
    service_id: uuid.UUID
    is_account_manager: bool
    is_active: bool
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class CredentialCreate(BaseModel):
    client_id: uuid.UUID
    tool_name: str = Field(min_length=1)
    username: str = Field(min_length=1)
    password: str = Field(min_length=1)
    notes: Optional[str] = ""


class CredentialUpdate(BaseModel):
    tool_name: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    notes: Optional[str] = None

    @field_validator('tool_name','username','password', mode='before')
    @classmethod
    def empty_to_none(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None


class CredentialResponse(BaseModel):
    id: uuid.UUID
    client_id: uuid.UUID
    tool_name: str
    username: str
    notes: Optional[str] = None
    created_by: Optional[uuid.UUID] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
