"""
Background scheduler service for the MotorLog notifier.

Runs the reminder engine periodically in-process. This is optional: the
same run can be triggered externally through the cron HTTP route.
"""

import logging

from apscheduler.schedulers.background import BackgroundScheduler
from config import Config
from database import SessionLocal
from exceptions import ConfigurationError, DatabaseError
from services.reminder_run import run_reminder_check
from sqlalchemy.exc import IntegrityError, OperationalError

logger = logging.getLogger(__name__)

# Module-level scheduler instance
scheduler = None

REMINDER_JOB_ID = "check_reminders"


def get_scheduler_db():
    """Get a database session for scheduler tasks."""
    return SessionLocal()


def check_reminders_job():
    """Run one reminder check over every vehicle."""
    db = get_scheduler_db()
    try:
        summary = run_reminder_check(db, trigger="scheduler")
        logger.info(f"Scheduled reminder check finished: {summary.message()}")
    except ConfigurationError as e:
        logger.error(f"Scheduled reminder check not run: {e}")
    except (IntegrityError, OperationalError) as e:
        error = DatabaseError(f"Failed to check reminders: {e}")
        logger.error(str(error), exc_info=True)
        db.rollback()
    except Exception as e:
        logger.exception(f"Unexpected error checking reminders: {e}")
        db.rollback()
    finally:
        SessionLocal.remove()


def init_scheduler(interval_minutes=None):
    """
    Initialize and start the background scheduler.

    Returns:
        The BackgroundScheduler instance
    """
    global scheduler
    minutes = interval_minutes or Config.REMINDER_CHECK_INTERVAL_MINUTES
    scheduler = BackgroundScheduler()
    # A run that overruns its interval must not overlap the next one
    scheduler.add_job(
        check_reminders_job,
        "interval",
        minutes=minutes,
        id=REMINDER_JOB_ID,
        max_instances=1,
        coalesce=True,
    )
    scheduler.start()
    logger.info(f"Background scheduler initialized (reminder check every {minutes} min)")
    return scheduler


def shutdown_scheduler():
    """Shutdown the background scheduler gracefully."""
    global scheduler
    if scheduler:
        scheduler.shutdown()
        scheduler = None
        logger.info("Background scheduler shut down")
