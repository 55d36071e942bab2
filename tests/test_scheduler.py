"""Scheduler tests: which jobs are due, and how a tick records completion."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

from sqlalchemy.ext.asyncio import AsyncSession

from backend import scheduler
from backend.common.constants import InviteStatus, LeaveStatus
from backend.common.dates import utcnow
from backend.scheduler import (
    JOB_AUTO_APPROVE,
    JOB_CLEANUP,
    JOB_INVITE_EXPIRY,
    JOB_YEAR_END,
    SchedulerState,
    due_jobs,
    mark_done,
    run_due_jobs,
    run_job,
)
from tests.conftest import TestSessionFactory, load_user, make_employee, make_leave_request


def _at(y, m, d, hh=0, mm=0) -> datetime:
    return datetime(y, m, d, hh, mm, tzinfo=timezone.utc)


class TestDueJobs:

    def test_invite_expiry_every_tick(self):
        assert due_jobs(_at(2026, 3, 10, 0, 30), SchedulerState()) == [JOB_INVITE_EXPIRY]

    def test_auto_approve_once_a_day_after_one(self):
        state = SchedulerState()
        now = _at(2026, 3, 10, 1, 5)
        assert JOB_AUTO_APPROVE in due_jobs(now, state)

        mark_done(state, JOB_AUTO_APPROVE, now)
        assert JOB_AUTO_APPROVE not in due_jobs(now + timedelta(hours=5), state)
        assert JOB_AUTO_APPROVE in due_jobs(_at(2026, 3, 11, 1, 0), state)

    def test_cleanup_on_first_of_month(self):
        state = SchedulerState()
        assert JOB_CLEANUP not in due_jobs(_at(2026, 4, 1, 1, 59), state)
        assert JOB_CLEANUP in due_jobs(_at(2026, 4, 1, 2, 0), state)
        assert JOB_CLEANUP not in due_jobs(_at(2026, 4, 2, 2, 0), state)

        mark_done(state, JOB_CLEANUP, _at(2026, 4, 1, 2, 0))
        assert state.last_cleanup == "2026-04"
        assert JOB_CLEANUP not in due_jobs(_at(2026, 4, 1, 3, 0), state)

    def test_year_end_late_on_december_31(self):
        state = SchedulerState()
        assert JOB_YEAR_END not in due_jobs(_at(2026, 12, 31, 23, 0), state)
        assert JOB_YEAR_END in due_jobs(_at(2026, 12, 31, 23, 45), state)

        mark_done(state, JOB_YEAR_END, _at(2026, 12, 31, 23, 45))
        assert state.last_year_end == 2026
        assert JOB_YEAR_END not in due_jobs(_at(2026, 12, 31, 23, 59), state)


class TestRunJobs:

    async def test_invite_expiry_job(self, db: AsyncSession):
        emp = await make_employee(db, is_active=False)
        user = await load_user(db, emp.user_id)
        user.invite_expires_at = utcnow() - timedelta(minutes=5)
        await db.commit()

        result = await run_job(JOB_INVITE_EXPIRY, session_factory=TestSessionFactory)
        assert result == {"expired": 1}
        assert (await load_user(db, emp.user_id)).invite_status == InviteStatus.invite_expired

    async def test_cleanup_job_uses_tick_date(self, db: AsyncSession):
        emp = await make_employee(db)
        await make_leave_request(db, emp, start_date=date(2026, 1, 5), status=LeaveStatus.cancelled)

        result = await run_job(
            JOB_CLEANUP, now=_at(2026, 3, 1, 2, 0), session_factory=TestSessionFactory,
        )
        assert result == {"deleted": 1, "cutoff_date": "2026-02-01"}

    async def test_failed_job_returns_none(self):
        failing = AsyncMock(side_effect=RuntimeError("db down"))
        with patch.dict(scheduler.JOBS, {JOB_INVITE_EXPIRY: failing}):
            assert await run_job(JOB_INVITE_EXPIRY, session_factory=TestSessionFactory) is None
        failing.assert_awaited_once()

    async def test_tick_marks_only_successful_jobs(self):
        state = SchedulerState()
        now = _at(2026, 4, 1, 2, 30)
        ok = AsyncMock(return_value={"ok": True})
        failing = AsyncMock(side_effect=RuntimeError("boom"))

        with patch.dict(
            scheduler.JOBS,
            {JOB_INVITE_EXPIRY: ok, JOB_AUTO_APPROVE: ok, JOB_CLEANUP: failing},
        ):
            results = await run_due_jobs(state, now=now, session_factory=TestSessionFactory)

        assert results == {
            JOB_INVITE_EXPIRY: {"ok": True},
            JOB_AUTO_APPROVE: {"ok": True},
            JOB_CLEANUP: None,
        }
        assert state.last_auto_approve == "2026-04-01"
        assert state.last_cleanup is None
        # Retried on the next tick
        assert JOB_CLEANUP in due_jobs(now + timedelta(hours=1), state)
