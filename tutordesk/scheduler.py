import logging

from apscheduler.schedulers.background import BackgroundScheduler
from sqlalchemy.orm import Session

from tutordesk.config import settings
from tutordesk.db import SessionLocal
from tutordesk.metrics import run_timed_job
from tutordesk.services.conflict_audit_service import run_daily_conflict_audit
from tutordesk.utils.time_utils import parse_hhmm


scheduler = BackgroundScheduler(timezone=settings.app_timezone)
logger = logging.getLogger(__name__)


def _with_db(task):
    db: Session = SessionLocal()
    try:
        task(db)
    finally:
        db.close()


def _run_job(label: str, task) -> None:
    run_timed_job(label, lambda: _with_db(task))


def conflict_audit_job():
    _run_job('conflict_audit', lambda db: run_daily_conflict_audit(db, force=True))


def start_scheduler():
    if scheduler.running:
        return
    audit_minutes = parse_hhmm(settings.conflict_audit_time)
    scheduler.add_job(
        conflict_audit_job,
        'cron',
        hour=audit_minutes // 60,
        minute=audit_minutes % 60,
        id='conflict_audit',
        replace_existing=True,
    )
    scheduler.start()
    logger.info('scheduler_started jobs=%s', [job.id for job in scheduler.get_jobs()])


def stop_scheduler():
    if scheduler.running:
        scheduler.shutdown(wait=False)
