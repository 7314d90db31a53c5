"""
Scheduler Service
Runs the daily anomaly batch with APScheduler
"""
import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from ledgersight.core.config import get_settings
from ledgersight.jobs.anomaly_detection import run_daily_anomaly_detection


logger = logging.getLogger("ledgersight.jobs.scheduler")

ANOMALY_JOB_ID = "daily_anomaly_detection"

scheduler: BackgroundScheduler | None = None


def start_scheduler() -> BackgroundScheduler | None:
    global scheduler

    if scheduler is not None:
        logger.warning("Scheduler is already running")
        return scheduler

    settings = get_settings()
    scheduler = BackgroundScheduler()
    scheduler.add_job(
        run_daily_anomaly_detection,
        trigger=CronTrigger(hour=settings.anomaly_job_hour, minute=settings.anomaly_job_minute),
        id=ANOMALY_JOB_ID,
        name="Daily anomaly detection",
        replace_existing=True,
    )
    scheduler.start()
    logger.info(
        "Scheduler started: anomaly detection at %02d:%02d",
        settings.anomaly_job_hour,
        settings.anomaly_job_minute,
    )
    return scheduler


def stop_scheduler() -> None:
    global scheduler

    if scheduler is not None:
        scheduler.shutdown()
        scheduler = None
        logger.info("Scheduler stopped")


def get_scheduler_status() -> dict:
    if scheduler is None:
        return {"running": False, "jobs": []}
    return {
        "running": scheduler.running,
        "jobs": [
            {
                "id": job.id,
                "name": job.name,
                "next_run": str(job.next_run_time) if job.next_run_time else None,
            }
            for job in scheduler.get_jobs()
        ],
    }
