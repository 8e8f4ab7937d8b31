import uuid
from datetime import datetime
from pydantic import BaseModel, EmailStr, Field, field_validator
from typing import Optional


class SignUpRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8)
    data: Optional[dict] = None  # user metadata, e.g. {"full_name": "..."}


class PasswordGrant(BaseModel):
    email: EmailStr
    password: str


class RefreshGrant(BaseModel):
    refresh_token: str


class RecoverRequest(BaseModel):
    email: EmailStr


class PasswordResetRequest(BaseModel):
    token: str
    new_password: str = Field(min_length=8)


class UpdateUserRequest(BaseModel):
    password: Optional[str] = Field(default=None, min_length=8)
    data: Optional[dict] = None


class UserOut(BaseModel):
    id: uuid.UUID
    email: str
    user_metadata: dict = {}
    created_at: Optional[datetime] = None
    last_sign_in_at: Optional[datetime] = None

    @field_validator("user_metadata", mode="before")
    @classmethod
    def none_to_empty(cls, v):
        return v or {}

    class Config:
        from_attributes = True


class SessionResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserOut
