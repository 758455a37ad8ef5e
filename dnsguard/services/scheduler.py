from __future__ import annotations

import logging

from apscheduler.schedulers.background import BackgroundScheduler  # type: ignore[import-untyped]
from apscheduler.triggers.cron import CronTrigger  # type: ignore[import-untyped]
from apscheduler.triggers.interval import IntervalTrigger  # type: ignore[import-untyped]

from dnsguard.db.session import SessionLocal
from dnsguard.services.retention import run_retention_job
from dnsguard.services.schedule_executor import run_schedule_sweep
from dnsguard.settings import get_settings

log = logging.getLogger(__name__)

_scheduler: BackgroundScheduler | None = None


def scheduled_changes_job() -> None:
    if SessionLocal is None:
        return
    db = SessionLocal()
    try:
        report = run_schedule_sweep(db)
        if report.processed:
            log.info(f"Scheduled changes job: {report.processed} changes executed")
    except Exception as e:
        log.error(f"Scheduled changes job failed: {e}")
        db.rollback()
    finally:
        db.close()


def retention_job() -> None:
    if SessionLocal is None:
        return
    db = SessionLocal()
    try:
        result = run_retention_job(db)
        log.info(f"Retention job completed: {result}")
    except Exception as e:
        log.error(f"Retention job failed: {e}")
        db.rollback()
    finally:
        db.close()


def start_scheduler() -> None:
    global _scheduler

    if _scheduler is not None:
        return

    settings = get_settings()
    if not settings.scheduler_enabled or SessionLocal is None:
        log.info("Background scheduler disabled")
        return

    _scheduler = BackgroundScheduler(timezone="UTC")

    # One sweep at a time per process; cross-process safety comes from compare-and-set
    _scheduler.add_job(
        scheduled_changes_job,
        IntervalTrigger(seconds=settings.schedule_sweep_interval_seconds),
        id="scheduled_changes",
        name="Execute due scheduled DNS changes",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )

    _scheduler.add_job(
        retention_job,
        CronTrigger(hour="3", minute="0"),
        id="retention",
        name="Purge expired snapshots and old audit events",
        replace_existing=True,
    )

    _scheduler.start()
    log.info("Background scheduler started")


def stop_scheduler() -> None:
    global _scheduler
    if _scheduler is not None:
        _scheduler.shutdown(wait=False)
        _scheduler = None
        log.info("Background scheduler stopped")
