#!/usr/bin/env python3
"""Run one maintenance job outside the API process.

Intended for cron when the in-process scheduler is disabled
(SCHEDULER_ENABLED=false):
    0 1 * * *   invite_expiry, auto_approve
    0 2 1 * *   cleanup
    0 3 1 1 *   year_end

Usage:
    python scripts/run_maintenance.py invite_expiry
    python scripts/run_maintenance.py auto_approve
    python scripts/run_maintenance.py cleanup
    python scripts/run_maintenance.py year_end

Exit codes:
    0 = job finished
    1 = job failed (see log)
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

# ── Path setup ────────────────────────────────────────────────────────
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from backend.common.log_config import setup_logging  # noqa: E402
from backend.database import engine  # noqa: E402
from backend.scheduler import JOBS, run_job  # noqa: E402

logger = logging.getLogger("run_maintenance")


async def _run(job: str) -> dict | None:
    try:
        return await run_job(job)
    finally:
        await engine.dispose()


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Leave Management maintenance jobs",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("job", choices=sorted(JOBS), help="Job to run")
    args = parser.parse_args()

    setup_logging()
    logger.info("Running %s", args.job)

    result = asyncio.run(_run(args.job))
    if result is None:
        logger.error("Job %s failed", args.job)
        sys.exit(1)

    print(json.dumps(result, indent=2, default=str))


if __name__ == "__main__":
    main()
