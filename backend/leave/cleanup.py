"""Monthly purge of old cancelled leave requests."""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.common.constants import LeaveStatus
from backend.common.dates import add_months
from backend.leave.models import LeaveRequest

logger = logging.getLogger(__name__)


def cleanup_cutoff(today: Optional[date] = None) -> date:
    """Cancelled requests ending before this date are eligible."""
    return add_months(today or date.today(), -1)


async def cleanup_cancelled_requests(
    db: AsyncSession,
    *,
    today: Optional[date] = None,
) -> dict[str, Any]:
    cutoff = cleanup_cutoff(today)
    result = await db.execute(
        delete(LeaveRequest)
        .where(
            LeaveRequest.status == LeaveStatus.cancelled,
            LeaveRequest.end_date < cutoff,
        )
        .execution_options(synchronize_session=False)
    )
    deleted = result.rowcount or 0
    logger.info("Deleted %d cancelled leave request(s) ending before %s", deleted, cutoff)
    return {"deleted": deleted, "cutoff_date": cutoff.isoformat()}


async def cleanup_stats(db: AsyncSession, *, today: Optional[date] = None) -> dict[str, Any]:
    cutoff = cleanup_cutoff(today)
    total = (
        await db.execute(
            select(func.count(LeaveRequest.id)).where(LeaveRequest.status == LeaveStatus.cancelled)
        )
    ).scalar_one()
    eligible = (
        await db.execute(
            select(func.count(LeaveRequest.id)).where(
                LeaveRequest.status == LeaveStatus.cancelled,
                LeaveRequest.end_date < cutoff,
            )
        )
    ).scalar_one()
    return {
        "total_cancelled": total,
        "eligible_for_cleanup": eligible,
        "cutoff_date": cutoff.isoformat(),
    }
