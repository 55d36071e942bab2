"""Transactional mail over SMTP.

Every public method is best-effort: it returns ``True`` when the message was
handed to the SMTP server and ``False`` otherwise, and never raises. When
``SMTP_HOST`` is empty the message is logged and skipped, which is the
default for local development and tests.
"""

from __future__ import annotations

import asyncio
import logging
import smtplib
from datetime import date
from email.message import EmailMessage
from typing import Any, Optional

from backend.config import settings

logger = logging.getLogger(__name__)


def _build_message(to_addr: str, subject: str, html_body: str, text_body: str) -> EmailMessage:
    msg = EmailMessage()
    msg["From"] = settings.FROM_EMAIL
    msg["To"] = to_addr
    msg["Subject"] = subject
    msg.set_content(text_body)
    msg.add_alternative(html_body, subtype="html")
    return msg


def _deliver(msg: EmailMessage) -> None:
    """Blocking SMTP delivery; run in a worker thread."""
    with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=30) as smtp:
        if settings.SMTP_USE_TLS:
            smtp.starttls()
        if settings.SMTP_USERNAME:
            smtp.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD)
        smtp.send_message(msg)


async def send_email(to_addr: str, subject: str, html_body: str, text_body: str) -> bool:
    """Send one message. Returns False (and logs) on any failure."""
    if not settings.SMTP_HOST:
        logger.info("SMTP not configured; skipping mail to %s (%s)", to_addr, subject)
        return False

    msg = _build_message(to_addr, subject, html_body, text_body)
    try:
        await asyncio.to_thread(_deliver, msg)
    except (smtplib.SMTPException, OSError):
        logger.exception("Failed to send mail to %s with subject %r", to_addr, subject)
        return False

    logger.info("Sent mail to %s with subject %r", to_addr, subject)
    return True


def _leave_label(leave_type: Any) -> str:
    value = getattr(leave_type, "value", leave_type)
    return f"{str(value).capitalize()} Leave"


class MailService:
    """Templates for every message the application sends."""

    @staticmethod
    async def send_welcome_email(email: str, first_name: str, invite_token: str) -> bool:
        link = f"{settings.FRONTEND_URL}/complete-invite?token={invite_token}"
        subject = "Welcome to Leave Management System"
        html = (
            f"<h2>Welcome, {first_name}!</h2>"
            "<p>An account has been created for you in the Leave Management System.</p>"
            f'<p><a href="{link}">Set your password</a> to activate it.</p>'
            f"<p>This link expires in {settings.INVITE_EXPIRY_HOURS} hours.</p>"
        )
        text = (
            f"Welcome, {first_name}!\n\n"
            f"Set your password to activate your account: {link}\n"
            f"This link expires in {settings.INVITE_EXPIRY_HOURS} hours.\n"
        )
        return await send_email(email, subject, html, text)

    @staticmethod
    async def send_password_reset_email(email: str, token: str) -> bool:
        link = f"{settings.FRONTEND_URL}/reset-password?token={token}"
        subject = "Password Reset Request"
        html = (
            "<h2>Password Reset Request</h2>"
            "<p>We received a request to reset your password.</p>"
            f'<p><a href="{link}">Reset your password</a></p>'
            f"<p>This link expires in {settings.PASSWORD_RESET_EXPIRY_HOURS} hour(s). "
            "If you did not request a reset you can ignore this email.</p>"
        )
        text = f"Reset your password: {link}\n"
        return await send_email(email, subject, html, text)

    @staticmethod
    async def send_leave_request_notification(
        manager_email: str,
        employee_name: str,
        leave_type: Any,
        start_date: date,
        end_date: date,
        reason: Optional[str] = None,
    ) -> bool:
        label = _leave_label(leave_type)
        subject = f"New Leave Request from {employee_name}"
        html = (
            "<h2>New Leave Request</h2>"
            f"<p><strong>{employee_name}</strong> has requested {label}.</p>"
            f"<p>From {start_date.isoformat()} to {end_date.isoformat()}</p>"
            f"<p>Reason: {reason or '-'}</p>"
            f'<p><a href="{settings.FRONTEND_URL}/approvals">Review request</a></p>'
        )
        text = (
            f"{employee_name} has requested {label} from {start_date.isoformat()} "
            f"to {end_date.isoformat()}.\nReason: {reason or '-'}\n"
        )
        return await send_email(manager_email, subject, html, text)

    @staticmethod
    async def send_leave_status_notification(
        email: str,
        leave_type: Any,
        start_date: date,
        end_date: date,
        status: str,
        approver_name: Optional[str] = None,
        rejection_reason: Optional[str] = None,
    ) -> bool:
        label = _leave_label(leave_type)
        status_text = status.capitalize()
        subject = f"Leave Request {status_text}"
        lines = [
            f"Your {label} request from {start_date.isoformat()} to "
            f"{end_date.isoformat()} has been {status}.",
        ]
        if approver_name:
            lines.append(f"Reviewed by: {approver_name}")
        if rejection_reason:
            lines.append(f"Reason: {rejection_reason}")
        html = f"<h2>Leave Request {status_text}</h2>" + "".join(
            f"<p>{line}</p>" for line in lines
        )
        return await send_email(email, subject, html, "\n".join(lines) + "\n")

    @staticmethod
    async def send_bulk_import_report(email: str, result: dict[str, Any]) -> bool:
        subject = (
            f"Bulk Import Results - {result['successful']}/{result['total']} Successful"
        )
        rows = "".join(
            f"<li>Row {err['row']}: {err['error']}</li>" for err in result.get("errors", [])
        )
        html = (
            "<h2>Bulk Import Results</h2>"
            f"<p>Total: {result['total']}, successful: {result['successful']}, "
            f"failed: {result['failed']}</p>"
            + (f"<ul>{rows}</ul>" if rows else "")
        )
        text = (
            f"Total: {result['total']}, successful: {result['successful']}, "
            f"failed: {result['failed']}\n"
        ) + "".join(
            f"Row {err['row']}: {err['error']}\n" for err in result.get("errors", [])
        )
        return await send_email(email, subject, html, text)
