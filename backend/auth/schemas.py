"""Auth Pydantic schemas for request / response validation."""


import uuid
from datetime import date
from typing import Optional

from pydantic import BaseModel, EmailStr, Field


# ── Requests ────────────────────────────────────────────────────────

class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class RefreshRequest(BaseModel):
    refresh_token: str


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    token: str = Field(..., min_length=1)
    new_password: str


class CompleteInviteRequest(BaseModel):
    token: str = Field(..., min_length=1)
    password: str


# ── Embedded / Shared ──────────────────────────────────────────────

class UserInfo(BaseModel):
    id: uuid.UUID
    email: str
    role: str
    must_change_password: bool = False


class EmployeeBrief(BaseModel):
    id: uuid.UUID
    employee_id: str
    first_name: str
    last_name: str
    position: Optional[str] = None
    department: Optional[str] = None
    manager_id: Optional[uuid.UUID] = None
    joining_date: date


# ── Responses ───────────────────────────────────────────────────────

class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserInfo


class RefreshResponse(BaseModel):
    access_token: str
    expires_in: int


class MeResponse(BaseModel):
    id: uuid.UUID
    email: str
    role: str
    is_active: bool
    must_change_password: bool
    invite_status: str
    employee: Optional[EmployeeBrief] = None
    direct_reports_count: int = 0


class InviteValidationResponse(BaseModel):
    valid: bool
    email: Optional[str] = None
    first_name: Optional[str] = None
    reason: Optional[str] = None


class MessageResponse(BaseModel):
    message: str
