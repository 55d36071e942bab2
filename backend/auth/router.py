"""Auth router: login, token refresh, password management, invites, current user."""


from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.auth import service as auth_service
from backend.auth.dependencies import get_current_user
from backend.auth.models import User
from backend.auth.schemas import (
    ChangePasswordRequest,
    CompleteInviteRequest,
    EmployeeBrief,
    ForgotPasswordRequest,
    InviteValidationResponse,
    LoginRequest,
    MeResponse,
    MessageResponse,
    RefreshRequest,
    RefreshResponse,
    ResetPasswordRequest,
    TokenResponse,
)
from backend.common.audit import create_audit_entry
from backend.common.rate_limit import AUTH_RATE_LIMIT, limiter
from backend.core_hr.models import Employee
from backend.database import get_db

router = APIRouter(prefix="", tags=["auth"])

_RESET_MESSAGE = "If the email exists, a reset link has been sent."


def _client_meta(request: Request) -> dict:
    return {
        "ip_address": request.client.host if request.client else None,
        "user_agent": request.headers.get("user-agent"),
    }


# ── POST /login ─────────────────────────────────────────────────────

@router.post("/login", response_model=TokenResponse)
@limiter.limit(AUTH_RATE_LIMIT)
async def login(
    request: Request,
    body: LoginRequest,
    db: AsyncSession = Depends(get_db),
):
    user = await auth_service.authenticate(db, body.email, body.password)
    await create_audit_entry(
        db,
        action="login",
        entity_type="user",
        entity_id=user.id,
        actor_id=user.id,
        **_client_meta(request),
    )
    return auth_service.issue_tokens(user)


# ── POST /refresh ───────────────────────────────────────────────────

@router.post("/refresh", response_model=RefreshResponse)
async def refresh_token(
    body: RefreshRequest,
    db: AsyncSession = Depends(get_db),
):
    access_token, expires_in = await auth_service.refresh_access_token(db, body.refresh_token)
    return RefreshResponse(access_token=access_token, expires_in=expires_in)


# ── GET /me ─────────────────────────────────────────────────────────

@router.get("/me", response_model=MeResponse)
async def me(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    employee = user.employee
    brief = None
    direct_reports_count = 0
    if employee is not None:
        brief = EmployeeBrief(
            id=employee.id,
            employee_id=employee.employee_id,
            first_name=employee.first_name,
            last_name=employee.last_name,
            position=employee.position,
            department=employee.department.name if employee.department else None,
            manager_id=employee.manager_id,
            joining_date=employee.joining_date,
        )
        result = await db.execute(
            select(func.count()).select_from(Employee).where(
                Employee.manager_id == employee.id,
            ),
        )
        direct_reports_count = result.scalar() or 0

    return MeResponse(
        id=user.id,
        email=user.email,
        role=user.role.value,
        is_active=user.is_active,
        must_change_password=user.must_change_password,
        invite_status=user.invite_status.value,
        employee=brief,
        direct_reports_count=direct_reports_count,
    )


# ── POST /change-password ───────────────────────────────────────────

@router.post("/change-password", response_model=MessageResponse)
async def change_password(
    body: ChangePasswordRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await auth_service.change_password(db, user, body.current_password, body.new_password)
    return MessageResponse(message="Password changed successfully.")


# ── POST /forgot-password ───────────────────────────────────────────

@router.post("/forgot-password", response_model=MessageResponse)
@limiter.limit(AUTH_RATE_LIMIT)
async def forgot_password(
    request: Request,
    body: ForgotPasswordRequest,
    db: AsyncSession = Depends(get_db),
):
    await auth_service.request_password_reset(db, body.email)
    return MessageResponse(message=_RESET_MESSAGE)


# ── POST /reset-password ────────────────────────────────────────────

@router.post("/reset-password", response_model=MessageResponse)
async def reset_password(
    body: ResetPasswordRequest,
    db: AsyncSession = Depends(get_db),
):
    await auth_service.reset_password(db, body.token, body.new_password)
    return MessageResponse(message="Password reset successfully.")


# ── Invites ─────────────────────────────────────────────────────────

@router.get("/invite/validate", response_model=InviteValidationResponse)
async def validate_invite(
    token: str = Query(..., min_length=1),
    db: AsyncSession = Depends(get_db),
):
    return await auth_service.validate_invite(db, token)


@router.post("/complete-invite", response_model=TokenResponse)
@limiter.limit(AUTH_RATE_LIMIT)
async def complete_invite(
    request: Request,
    body: CompleteInviteRequest,
    db: AsyncSession = Depends(get_db),
):
    user = await auth_service.complete_invite(db, body.token, body.password)
    await create_audit_entry(
        db,
        action="activate",
        entity_type="user",
        entity_id=user.id,
        actor_id=user.id,
        **_client_meta(request),
    )
    return auth_service.issue_tokens(user)
