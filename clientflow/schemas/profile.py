import uuid
from datetime import datetime
from typing import Optional, List
from pydantic import BaseModel, field_validator


class ProfileOut(BaseModel):
    id: uuid.UUID
    email: str
    full_name: str
    role: str
    status: str
    manager_id: Optional[uuid.UUID] = None
    max_capacity: Optional[int] = None
    skills: Optional[List[str]] = None
    phone: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class PortalUserOut(BaseModel):
    id: uuid.UUID
    client_id: uuid.UUID
    auth_user_id: Optional[uuid.UUID] = None
    email: str
    full_name: str
    is_active: bool
    last_login_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ProfileUpdate(BaseModel):
    full_name: Optional[str] = None
    phone: Optional[str] = None
    skills: Optional[List[str]] = None

    @field_validator("full_name", "phone", mode="before")
    @classmethod
    def empty_to_none(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None
