"""Auth dependencies: JWT validation, RBAC enforcement."""

from __future__ import annotations

import uuid
from typing import Callable

from fastapi import Depends, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from backend.auth.models import User
from backend.auth.service import decode_token
from backend.common.constants import UserRole
from backend.common.exceptions import ForbiddenException, UnauthorizedException
from backend.core_hr.models import Employee
from backend.database import get_db

# Role hierarchy: each role implicitly includes lower roles
_ROLE_HIERARCHY: dict[UserRole, set[UserRole]] = {
    UserRole.admin: {UserRole.admin, UserRole.manager, UserRole.employee},
    UserRole.manager: {UserRole.manager, UserRole.employee},
    UserRole.employee: {UserRole.employee},
}


def has_role(user: User, role: UserRole) -> bool:
    """True if *user* holds *role* directly or through the hierarchy."""
    return role in _ROLE_HIERARCHY.get(user.role, {user.role})


def _extract_bearer(request: Request) -> str:
    """Extract Bearer token from Authorization header."""
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise UnauthorizedException(detail="Missing or invalid Authorization header.")
    return auth_header[7:]


# ── Core dependency ─────────────────────────────────────────────────

async def get_current_user(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> User:
    """Validate the access JWT and return the active ``User`` it names."""
    payload = decode_token(_extract_bearer(request), "access")

    try:
        user_id = uuid.UUID(payload["sub"])
    except (KeyError, ValueError):
        raise UnauthorizedException(detail="Invalid token.")

    result = await db.execute(
        select(User)
        .where(User.id == user_id, User.is_active.is_(True))
        .options(selectinload(User.employee).selectinload(Employee.department)),
    )
    user = result.scalars().first()
    if user is None:
        raise UnauthorizedException(detail="User account is inactive or not found.")

    # The role is read from the database so promotions apply immediately
    request.state.user_role = user.role
    return user


async def get_current_employee(
    user: User = Depends(get_current_user),
) -> Employee:
    """Require the authenticated user to have an employee profile."""
    if user.employee is None:
        raise ForbiddenException(detail="No employee profile is linked to this account.")
    return user.employee


# ── Role-based dependency ───────────────────────────────────────────

def require_role(*allowed_roles: UserRole) -> Callable:
    """Return a FastAPI dependency that enforces role membership.

    Respects hierarchy, e.g. admin can access manager endpoints.
    """

    async def _check(user: User = Depends(get_current_user)) -> User:
        effective_roles = _ROLE_HIERARCHY.get(user.role, {user.role})
        if not effective_roles.intersection(allowed_roles):
            raise ForbiddenException(
                detail=f"Role '{user.role.value}' is not permitted. Required: {[r.value for r in allowed_roles]}.",
            )
        return user

    return _check
