"""Auth service: password hashing, JWT management, invites and password resets."""

from __future__ import annotations

import logging
import re
import secrets
import uuid
from datetime import timedelta
from typing import Any, Optional

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from backend.auth.models import PasswordResetToken, User
from backend.common.constants import PASSWORD_SPECIAL_CHARS, InviteStatus
from backend.common.dates import as_utc, utcnow
from backend.common.exceptions import (
    BadRequestException,
    UnauthorizedException,
    ValidationException,
)
from backend.config import settings
from backend.mail.service import MailService

logger = logging.getLogger(__name__)

_SECURE_PASSWORD_ALPHABET = (
    "ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnpqrstuvwxyz23456789@#$%"
)
_SPECIAL_RE = re.compile("[" + re.escape(PASSWORD_SPECIAL_CHARS) + "]")


# ── Passwords ───────────────────────────────────────────────────────

def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def password_strength_errors(password: str) -> list[str]:
    """Return human-readable problems with *password* (empty when strong enough)."""
    errors: list[str] = []
    if len(password) < 8:
        errors.append("Password must be at least 8 characters long.")
    if not (
        re.search(r"[A-Z]", password)
        and re.search(r"[a-z]", password)
        and re.search(r"\d", password)
        and _SPECIAL_RE.search(password)
    ):
        errors.append(
            "Password must contain uppercase, lowercase, number and special character."
        )
    return errors


def validate_password_strength(password: str, field: str = "password") -> None:
    errors = password_strength_errors(password)
    if errors:
        raise ValidationException(errors={field: errors})


def generate_secure_password(length: int = 12) -> str:
    return "".join(secrets.choice(_SECURE_PASSWORD_ALPHABET) for _ in range(length))


# ── JWT helpers ─────────────────────────────────────────────────────

def create_access_token(user: User) -> tuple[str, int]:
    """Return (encoded_jwt, expires_in_seconds)."""
    expires_in = settings.JWT_EXPIRY_HOURS * 3600
    payload = {
        "sub": str(user.id),
        "email": user.email,
        "role": user.role.value,
        "type": "access",
        "exp": utcnow() + timedelta(hours=settings.JWT_EXPIRY_HOURS),
    }
    token = jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)
    return token, expires_in


def create_refresh_token(user: User) -> str:
    payload = {
        "sub": str(user.id),
        "type": "refresh",
        "jti": uuid.uuid4().hex,
        "exp": utcnow() + timedelta(days=settings.REFRESH_TOKEN_EXPIRY_DAYS),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def create_invite_token(employee_id: uuid.UUID, email: str) -> str:
    payload = {
        "sub": str(employee_id),
        "email": email,
        "type": "invite",
        "exp": utcnow() + timedelta(hours=settings.INVITE_EXPIRY_HOURS),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str, expected_type: str) -> dict[str, Any]:
    """Decode and type-check a JWT. Raises ``UnauthorizedException``."""
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
        )
    except ExpiredSignatureError:
        raise UnauthorizedException(detail="Token has expired.")
    except JWTError:
        raise UnauthorizedException(detail="Invalid token.")

    if payload.get("type") != expected_type:
        raise UnauthorizedException(detail="Invalid token type.")
    return payload


def issue_tokens(user: User) -> dict[str, Any]:
    """Token pair + user summary returned by login and complete-invite."""
    access_token, expires_in = create_access_token(user)
    return {
        "access_token": access_token,
        "refresh_token": create_refresh_token(user),
        "token_type": "bearer",
        "expires_in": expires_in,
        "user": {
            "id": user.id,
            "email": user.email,
            "role": user.role.value,
            "must_change_password": user.must_change_password,
        },
    }


# ── User lookup ─────────────────────────────────────────────────────

async def get_user_by_email(db: AsyncSession, email: str) -> Optional[User]:
    result = await db.execute(
        select(User)
        .where(User.email == email.strip().lower())
        .options(selectinload(User.employee)),
    )
    return result.scalars().first()


# ── Login / refresh ─────────────────────────────────────────────────

async def authenticate(db: AsyncSession, email: str, password: str) -> User:
    """Verify credentials and stamp ``last_login_at``."""
    user = await get_user_by_email(db, email)
    if user is None or not verify_password(password, user.password_hash):
        raise UnauthorizedException(detail="Invalid credentials.")
    if not user.is_active:
        raise UnauthorizedException(detail="Account is deactivated.")

    user.last_login_at = utcnow()
    await db.flush()
    return user


async def refresh_access_token(db: AsyncSession, refresh_token_str: str) -> tuple[str, int]:
    """Validate a refresh token and issue a new access token."""
    try:
        payload = decode_token(refresh_token_str, "refresh")
    except UnauthorizedException:
        raise UnauthorizedException(detail="Invalid refresh token.")

    user = await db.get(User, uuid.UUID(payload["sub"]))
    if user is None or not user.is_active:
        raise UnauthorizedException(detail="Invalid refresh token.")
    return create_access_token(user)


# ── Password change / reset ─────────────────────────────────────────

async def change_password(
    db: AsyncSession,
    user: User,
    current_password: str,
    new_password: str,
) -> None:
    if not verify_password(current_password, user.password_hash):
        raise ValidationException(
            errors={"current_password": ["Current password is incorrect."]},
        )
    validate_password_strength(new_password, field="new_password")

    user.password_hash = hash_password(new_password)
    user.must_change_password = False
    await db.flush()


async def request_password_reset(db: AsyncSession, email: str) -> Optional[str]:
    """Create a reset token and mail it. Returns the token, or None for unknown emails."""
    user = await get_user_by_email(db, email)
    if user is None:
        logger.info("Password reset requested for unknown email")
        return None

    token = secrets.token_hex(32)
    db.add(
        PasswordResetToken(
            user_id=user.id,
            token=token,
            expires_at=utcnow() + timedelta(hours=settings.PASSWORD_RESET_EXPIRY_HOURS),
        )
    )
    await db.commit()

    await MailService.send_password_reset_email(user.email, token)
    return token


async def reset_password(db: AsyncSession, token: str, new_password: str) -> User:
    result = await db.execute(
        select(PasswordResetToken)
        .where(PasswordResetToken.token == token)
        .options(selectinload(PasswordResetToken.user)),
    )
    reset_token = result.scalars().first()
    if (
        reset_token is None
        or reset_token.is_used
        or as_utc(reset_token.expires_at) < utcnow()
    ):
        raise BadRequestException(detail="Invalid or expired reset token.")

    validate_password_strength(new_password, field="new_password")

    user = reset_token.user
    user.password_hash = hash_password(new_password)
    user.must_change_password = False
    reset_token.is_used = True
    await db.flush()
    return user


# ── Invites ─────────────────────────────────────────────────────────

async def _resolve_invite(db: AsyncSession, token: str) -> User:
    """Map an invite token to a user still waiting to set a password."""
    try:
        payload = decode_token(token, "invite")
    except UnauthorizedException as exc:
        if exc.detail == "Token has expired.":
            raise BadRequestException(detail="Invite token has expired.")
        raise BadRequestException(detail="Invalid invite token.")

    user = await get_user_by_email(db, payload.get("email", ""))
    if user is None or user.employee is None or str(user.employee.id) != payload["sub"]:
        raise BadRequestException(detail="Invalid invite token.")
    if user.password_hash or user.invite_status == InviteStatus.active:
        raise BadRequestException(detail="User account is already activated.")
    if user.invite_status == InviteStatus.invite_expired:
        raise BadRequestException(detail="Invite token has expired.")
    return user


async def validate_invite(db: AsyncSession, token: str) -> dict[str, Any]:
    """Report whether an invite token can still be used."""
    try:
        user = await _resolve_invite(db, token)
    except BadRequestException as exc:
        return {"valid": False, "email": None, "first_name": None, "reason": exc.detail}
    return {
        "valid": True,
        "email": user.email,
        "first_name": user.employee.first_name,
        "reason": None,
    }


async def complete_invite(db: AsyncSession, token: str, password: str) -> User:
    """Set the first password and activate the account."""
    user = await _resolve_invite(db, token)
    validate_password_strength(password)

    user.password_hash = hash_password(password)
    user.must_change_password = False
    user.is_active = True
    user.invite_status = InviteStatus.active
    user.last_login_at = utcnow()
    await db.flush()
    return user


def start_invite(user: User) -> None:
    """Put *user* (back) into the invited state with a fresh expiry window."""
    now = utcnow()
    user.password_hash = ""
    user.is_active = False
    user.invite_status = InviteStatus.invited
    user.invited_at = now
    user.invite_expires_at = now + timedelta(hours=settings.INVITE_EXPIRY_HOURS)


async def expire_stale_invites(db: AsyncSession) -> int:
    """Flag invited users whose window has passed. Returns the number updated."""
    result = await db.execute(
        update(User)
        .where(
            User.invite_status == InviteStatus.invited,
            User.invite_expires_at.is_not(None),
            User.invite_expires_at < utcnow(),
        )
        .values(invite_status=InviteStatus.invite_expired, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    expired = result.rowcount or 0
    if expired:
        logger.info("Expired %d stale invite(s)", expired)
    return expired
