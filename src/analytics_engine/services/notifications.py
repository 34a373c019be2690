"""Goal-converted notifications for in-process subscribers"""
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GoalConverted:
    conversion_id: int
    goal_id: int
    goal_name: str
    site_id: Optional[int]
    session_id: Optional[str]
    visitor_id: Optional[str]
    value: Optional[float]
    occurred_at: datetime
    metadata: Dict[str, Any] = field(default_factory=dict)


GoalConvertedCallback = Callable[[GoalConverted], None]


class ConversionNotifier:
    """Fans a GoalConverted event out to registered callbacks.

    A failing subscriber is logged and skipped; it never affects the
    conversion that was already recorded.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._callbacks: List[GoalConvertedCallback] = []

    def subscribe(self, callback: GoalConvertedCallback) -> None:
        with self._lock:
            self._callbacks.append(callback)

    def clear(self) -> None:
        with self._lock:
            self._callbacks.clear()

    def publish(self, event: GoalConverted) -> int:
        """Deliver to every subscriber, returning how many accepted it."""
        with self._lock:
            callbacks = list(self._callbacks)

        delivered = 0
        for callback in callbacks:
            try:
                callback(event)
                delivered += 1
            except Exception:
                logger.exception(f"Goal converted callback failed for conversion {event.conversion_id}")
        return delivered
