"""Queue hand-off for tracking work and the worker that drains it"""
import logging
import queue
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Protocol, runtime_checkable

from sqlalchemy.orm import Session

from src.analytics_engine.config import Settings, get_settings
from src.analytics_engine.schemas.context import SiteContext
from src.analytics_engine.schemas.tracking import EventPayload, PageViewPayload
from src.analytics_engine.services.notifications import ConversionNotifier
from src.analytics_engine.services.store import SqlAlchemyStore

logger = logging.getLogger(__name__)

JOB_PAGEVIEW = "pageview"
JOB_EVENT = "event"


@dataclass
class Task:
    job: str
    payload: Dict[str, Any]
    attempts: int = 0
    last_error: Optional[str] = field(default=None, compare=False)


TaskHandler = Callable[[Task], None]


@runtime_checkable
class TaskQueue(Protocol):
    def enqueue(self, job: str, payload: Dict[str, Any], attempts: int = 0) -> None: ...
    def consume(self, handler: TaskHandler, max_items: Optional[int] = None) -> int: ...
    def size(self) -> int: ...


class InMemoryTaskQueue:
    """Process-local FIFO queue. Delivery is at-least-once per retry budget."""

    def __init__(self, max_attempts: int = 3):
        self._queue: "queue.Queue[Task]" = queue.Queue()
        self.max_attempts = max_attempts
        self.dead_letters: list[Task] = []

    def enqueue(self, job: str, payload: Dict[str, Any], attempts: int = 0) -> None:
        self._queue.put(Task(job=job, payload=payload, attempts=attempts))

    def size(self) -> int:
        return self._queue.qsize()

    def consume(self, handler: TaskHandler, max_items: Optional[int] = None) -> int:
        """Run the handler over queued tasks; returns how many succeeded.

        Only tasks present when the call starts are taken, so a re-enqueued
        failure waits for the next call.
        """
        budget = self._queue.qsize() if max_items is None else min(max_items, self._queue.qsize())
        succeeded = 0
        for _ in range(budget):
            try:
                task = self._queue.get_nowait()
            except queue.Empty:
                break

            try:
                handler(task)
                succeeded += 1
            except Exception as e:
                task.attempts += 1
                task.last_error = str(e)
                if task.attempts < self.max_attempts:
                    logger.warning(f"Task {task.job} failed (attempt {task.attempts}), re-queueing: {e}")
                    self._queue.put(task)
                else:
                    logger.error(f"Task {task.job} failed after {task.attempts} attempts, dropping: {e}")
                    self.dead_letters.append(task)
            finally:
                self._queue.task_done()
        return succeeded


class TrackingWorker:
    """Processes queued tracking jobs with the same code path as inline tracking."""

    def __init__(
        self,
        task_queue: TaskQueue,
        session_factory: Callable[[], Session],
        settings: Optional[Settings] = None,
        notifier: Optional[ConversionNotifier] = None,
    ):
        self.task_queue = task_queue
        self.session_factory = session_factory
        self.settings = settings or get_settings()
        self.notifier = notifier or ConversionNotifier()

    def handle(self, task: Task) -> None:
        # tracking imports this module at load time
        from src.analytics_engine.services.tracking import TrackingService

        site = SiteContext(**task.payload["site"])
        data = task.payload["data"]

        db = self.session_factory()
        try:
            store = SqlAlchemyStore(db, multi_tenant=self.settings.MULTI_TENANT_ENABLED)
            service = TrackingService(store, settings=self.settings, notifier=self.notifier)
            if task.job == JOB_PAGEVIEW:
                service.record_page_view(PageViewPayload.model_validate(data), site)
            elif task.job == JOB_EVENT:
                service.record_event(EventPayload.model_validate(data), site)
            else:
                logger.warning(f"Dropping task with unknown job type: {task.job}")
                return
            store.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def drain(self, max_items: Optional[int] = None) -> int:
        processed = self.task_queue.consume(self.handle, max_items)
        if processed:
            logger.info(f"Tracking worker processed {processed} queued tasks")
        return processed
