"""Background maintenance: overdue attempts, stale OTPs and leaderboard snapshots."""

import logging
from datetime import datetime
from typing import Optional

from apscheduler.events import EVENT_JOB_ERROR
from apscheduler.schedulers.background import BackgroundScheduler
from sqlmodel import Session

from examhub import database
from examhub.config import settings
from examhub.services import attempt_service, leaderboard_service, otp_service
from examhub.utils import utcnow

logger = logging.getLogger(__name__)

SWEEP_JOB_ID = "sweep_attempts"
SNAPSHOT_JOB_ID = "leaderboard_snapshots"


def run_maintenance(session: Session, refresh_snapshots: bool = False, now: Optional[datetime] = None) -> dict:
    now = now or utcnow()
    report = attempt_service.sweep_overdue_attempts(session, now=now)
    pruned = otp_service.prune_expired_challenges(session, now=now)
    snapshot_rows = None
    if refresh_snapshots:
        snapshot_rows = leaderboard_service.refresh_leaderboard_snapshots(session, now=now)
    return {
        "finalized": report.finalized,
        "abandoned": report.abandoned,
        "failed": report.failed,
        "pruned_challenges": pruned,
        "snapshot_rows": snapshot_rows,
    }


def sweep_job() -> dict:
    with Session(database.engine) as session:
        return run_maintenance(session)


def snapshot_job() -> int:
    with Session(database.engine) as session:
        return leaderboard_service.refresh_leaderboard_snapshots(session)


def log_job_error(event) -> None:
    logger.error("Maintenance job %s failed: %r\n%s", event.job_id, event.exception, event.traceback)


def build_scheduler() -> Optional[BackgroundScheduler]:
    """Interval jobs for the sweep and the snapshots; ``None`` when disabled."""
    if settings.MAINTENANCE_INTERVAL_SECONDS <= 0:
        return None
    scheduler = BackgroundScheduler(timezone="UTC")
    scheduler.add_job(
        sweep_job,
        "interval",
        seconds=settings.MAINTENANCE_INTERVAL_SECONDS,
        id=SWEEP_JOB_ID,
        max_instances=1,
        coalesce=True,
    )
    if settings.SNAPSHOT_INTERVAL_SECONDS > 0:
        scheduler.add_job(
            snapshot_job,
            "interval",
            seconds=settings.SNAPSHOT_INTERVAL_SECONDS,
            id=SNAPSHOT_JOB_ID,
            max_instances=1,
            coalesce=True,
        )
    # a failing run is logged; the job stays scheduled
    scheduler.add_listener(log_job_error, EVENT_JOB_ERROR)
    return scheduler
