"""APScheduler-based session sweeper, queue drain and retention cleanup"""
import logging
from typing import Callable, Dict, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from sqlalchemy.orm import Session

from src.analytics_engine.config import Settings, get_settings
from src.analytics_engine.database import SessionLocal
from src.analytics_engine.services.data_deletion import DataDeletionService
from src.analytics_engine.services.notifications import ConversionNotifier
from src.analytics_engine.services.store import SqlAlchemyStore
from src.analytics_engine.services.task_queue import TaskQueue, TrackingWorker
from src.analytics_engine.services.tracking import TrackingService

logger = logging.getLogger(__name__)

SWEEP_BATCH_SIZE = 100

scheduler: Optional[BackgroundScheduler] = None


def run_session_sweep_tick(
    session_factory: Callable[[], Session] = SessionLocal,
    settings: Optional[Settings] = None,
    notifier: Optional[ConversionNotifier] = None,
    task_queue: Optional[TaskQueue] = None,
) -> Dict[str, int]:
    logger.info("Session sweep tick started")
    settings = settings or get_settings()
    notifier = notifier or ConversionNotifier()
    result = {"sessions_finalized": 0, "tasks_processed": 0}

    db = session_factory()
    try:
        store = SqlAlchemyStore(db, multi_tenant=settings.MULTI_TENANT_ENABLED)
        service = TrackingService(store, settings=settings, notifier=notifier)
        result["sessions_finalized"] = service.sweep_expired_sessions(limit=SWEEP_BATCH_SIZE)
        if result["sessions_finalized"]:
            logger.info(f"Finalized {result['sessions_finalized']} expired sessions")
    except Exception:
        logger.exception("Error in session sweep tick")
        db.rollback()
    finally:
        db.close()

    if task_queue is not None:
        worker = TrackingWorker(task_queue, session_factory, settings=settings, notifier=notifier)
        result["tasks_processed"] = worker.drain()

    logger.info("Session sweep tick completed")
    return result


def run_retention_cleanup_tick(
    session_factory: Callable[[], Session] = SessionLocal,
    settings: Optional[Settings] = None,
) -> Dict[str, int]:
    settings = settings or get_settings()
    logger.info(f"Retention cleanup started - keeping {settings.RETENTION_DAYS} days")

    db = session_factory()
    try:
        store = SqlAlchemyStore(db, multi_tenant=settings.MULTI_TENANT_ENABLED)
        return DataDeletionService(store).cleanup_old_data(settings.RETENTION_DAYS)
    except Exception:
        logger.exception("Error in retention cleanup")
        db.rollback()
        return {}
    finally:
        db.close()


def start_scheduler(
    settings: Optional[Settings] = None,
    notifier: Optional[ConversionNotifier] = None,
    task_queue: Optional[TaskQueue] = None,
) -> Optional[BackgroundScheduler]:
    global scheduler

    settings = settings or get_settings()
    if not settings.SESSION_SWEEP_ENABLED and not settings.RETENTION_DAYS:
        logger.info("Session sweep and retention cleanup disabled - scheduler not started")
        return None

    if scheduler is not None:
        return scheduler

    scheduler = BackgroundScheduler()
    if settings.SESSION_SWEEP_ENABLED:
        scheduler.add_job(
            run_session_sweep_tick,
            'interval',
            minutes=settings.SESSION_SWEEP_INTERVAL_MINUTES,
            id='session_sweeper',
            replace_existing=True,
            kwargs={"settings": settings, "notifier": notifier, "task_queue": task_queue},
        )
        logger.info(f"Sweeping sessions every {settings.SESSION_SWEEP_INTERVAL_MINUTES} minutes")
    if settings.RETENTION_DAYS:
        scheduler.add_job(
            run_retention_cleanup_tick,
            'interval',
            hours=settings.RETENTION_CLEANUP_INTERVAL_HOURS,
            id='retention_cleanup',
            replace_existing=True,
            kwargs={"settings": settings},
        )
        logger.info(f"Cleaning up data older than {settings.RETENTION_DAYS} days every {settings.RETENTION_CLEANUP_INTERVAL_HOURS} hours")
    scheduler.start()
    logger.info("Scheduler started")
    return scheduler


def shutdown_scheduler() -> None:
    global scheduler

    if scheduler is not None:
        scheduler.shutdown()
        scheduler = None
        logger.info("Scheduler stopped")
