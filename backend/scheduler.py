"""In-process background jobs.

A single asyncio task started from the app lifespan wakes every
``SCHEDULER_INTERVAL_SECONDS`` and runs whichever jobs are due:

    invite_expiry   every tick
    auto_approve    once a day, after 01:00 UTC
    cleanup         on the 1st of the month, after 02:00 UTC
    year_end        on Dec 31, after 23:30 UTC

Deployments without the loop can call ``scripts/run_maintenance.py`` from cron.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, time
from typing import Any, Awaitable, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.auth.service import expire_stale_invites
from backend.common.dates import utcnow
from backend.config import settings
from backend.database import async_session_factory
from backend.leave.calculation import LeaveCalculationService
from backend.leave.cleanup import cleanup_cancelled_requests
from backend.leave.service import LeaveService

logger = logging.getLogger(__name__)

JOB_INVITE_EXPIRY = "invite_expiry"
JOB_AUTO_APPROVE = "auto_approve"
JOB_CLEANUP = "cleanup"
JOB_YEAR_END = "year_end"

AUTO_APPROVE_AT = time(1, 0)
CLEANUP_AT = time(2, 0)
YEAR_END_AT = time(23, 30)


@dataclass
class SchedulerState:
    """When each periodic job last completed."""

    last_auto_approve: Optional[str] = None   # ISO date
    last_cleanup: Optional[str] = None        # "YYYY-MM"
    last_year_end: Optional[int] = None


def due_jobs(now: datetime, state: SchedulerState) -> list[str]:
    """Jobs to run at *now* (UTC) given what already ran."""
    jobs = [JOB_INVITE_EXPIRY]
    today = now.date()
    if now.time() >= AUTO_APPROVE_AT and state.last_auto_approve != today.isoformat():
        jobs.append(JOB_AUTO_APPROVE)
    if (
        today.day == 1
        and now.time() >= CLEANUP_AT
        and state.last_cleanup != f"{today.year:04d}-{today.month:02d}"
    ):
        jobs.append(JOB_CLEANUP)
    if (
        today.month == 12
        and today.day == 31
        and now.time() >= YEAR_END_AT
        and state.last_year_end != today.year
    ):
        jobs.append(JOB_YEAR_END)
    return jobs


def mark_done(state: SchedulerState, job: str, now: datetime) -> None:
    today = now.date()
    if job == JOB_AUTO_APPROVE:
        state.last_auto_approve = today.isoformat()
    elif job == JOB_CLEANUP:
        state.last_cleanup = f"{today.year:04d}-{today.month:02d}"
    elif job == JOB_YEAR_END:
        state.last_year_end = today.year


# ── Jobs ────────────────────────────────────────────────────────────

async def _invite_expiry(db: AsyncSession, now: datetime) -> dict[str, Any]:
    expired = await expire_stale_invites(db)
    await db.commit()
    return {"expired": expired}


async def _auto_approve(db: AsyncSession, now: datetime) -> dict[str, Any]:
    return await LeaveService.auto_approve_pending_leaves(db, today=now.date())


async def _cleanup(db: AsyncSession, now: datetime) -> dict[str, Any]:
    result = await cleanup_cancelled_requests(db, today=now.date())
    await db.commit()
    return result


async def _year_end(db: AsyncSession, now: datetime) -> dict[str, Any]:
    result = await LeaveCalculationService.process_year_end_balances(db, now.year)
    await db.commit()
    return result


JOBS: dict[str, Callable[[AsyncSession, datetime], Awaitable[dict[str, Any]]]] = {
    JOB_INVITE_EXPIRY: _invite_expiry,
    JOB_AUTO_APPROVE: _auto_approve,
    JOB_CLEANUP: _cleanup,
    JOB_YEAR_END: _year_end,
}


async def run_job(
    name: str,
    *,
    now: Optional[datetime] = None,
    session_factory: async_sessionmaker = async_session_factory,
) -> Optional[dict[str, Any]]:
    """Run one job in its own session. Returns None when it failed."""
    job = JOBS[name]
    now = now or utcnow()
    async with session_factory() as db:
        try:
            result = await job(db, now)
        except Exception:
            logger.exception("Scheduled job %s failed", name)
            await db.rollback()
            return None
    logger.info("Scheduled job %s finished: %s", name, result)
    return result


async def run_due_jobs(
    state: SchedulerState,
    *,
    now: Optional[datetime] = None,
    session_factory: async_sessionmaker = async_session_factory,
) -> dict[str, Optional[dict[str, Any]]]:
    """One scheduler tick. A failed job is retried on the next tick."""
    now = now or utcnow()
    results = {}
    for name in due_jobs(now, state):
        results[name] = await run_job(name, now=now, session_factory=session_factory)
        if results[name] is not None:
            mark_done(state, name, now)
    return results


async def scheduler_loop(
    interval: Optional[int] = None,
    session_factory: async_sessionmaker = async_session_factory,
) -> None:
    interval = interval or settings.SCHEDULER_INTERVAL_SECONDS
    state = SchedulerState()
    logger.info("Scheduler started (interval=%ss)", interval)
    while True:
        await run_due_jobs(state, session_factory=session_factory)
        await asyncio.sleep(interval)


def start_scheduler() -> asyncio.Task:
    return asyncio.create_task(scheduler_loop(), name="leave-scheduler")
