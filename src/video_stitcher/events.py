"""Batch lifecycle events and the channel that delivers them.

Per batch the orchestrator publishes ``start``, then per job ``task-start``,
zero or more ``log`` lines and exactly one of ``progress``/``failed``, and
finally ``finish``. Events of concurrent jobs interleave; consumers key them
by ``index``.
"""

import logging
import threading
from typing import Any, Callable, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

_WIRE_NAMES = {
    "output_path": "outputPath",
    "elapsed_seconds": "elapsedSeconds",
}


class BaseEvent(BaseModel):
    """Common behaviour of all events."""

    def to_dict(self) -> Dict[str, Any]:
        """Wire shape: camelCase keys, unset optional fields omitted."""
        data = self.model_dump(exclude_none=True)
        return {_WIRE_NAMES.get(k, k): v for k, v in data.items()}


class StartEvent(BaseEvent):
    type: Literal["start"] = "start"
    total: int = Field(ge=0)
    concurrency: int = Field(ge=1)
    mode: Optional[str] = None


class TaskStartEvent(BaseEvent):
    type: Literal["task-start"] = "task-start"
    index: int


class LogEvent(BaseEvent):
    type: Literal["log"] = "log"
    index: int
    message: str


class ProgressEvent(BaseEvent):
    """A job finished and its output is committed."""

    type: Literal["progress"] = "progress"
    done: int
    failed: int
    total: int
    index: int
    output_path: Optional[str] = None
    elapsed_seconds: Optional[float] = None


class FailedEvent(BaseEvent):
    """A job failed; ``error`` is human readable."""

    type: Literal["failed"] = "failed"
    done: int
    failed: int
    total: int
    index: int
    error: str


class FinishEvent(BaseEvent):
    type: Literal["finish"] = "finish"
    done: int
    failed: int
    total: int
    elapsed_seconds: float


Event = Union[StartEvent, TaskStartEvent, LogEvent, ProgressEvent, FailedEvent, FinishEvent]
Subscriber = Callable[[Event], None]


class EventChannel:
    """Delivers events to subscribers one at a time, in publish order.

    A subscriber that raises is logged and skipped; it never affects the batch.
    """

    def __init__(self):
        self._subscribers: List[Subscriber] = []
        self._lock = threading.RLock()

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register ``callback``; returns a function that unregisters it."""
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, event: Event) -> None:
        with self._lock:
            for callback in list(self._subscribers):
                try:
                    callback(event)
                except Exception as e:
                    logger.warning("Event subscriber failed on %s: %s", event.type, e)


class EventRecorder:
    """Subscriber that keeps every event; handy for tests and summaries."""

    def __init__(self):
        self.events: List[Event] = []
        self._lock = threading.Lock()

    def __call__(self, event: Event) -> None:
        with self._lock:
            self.events.append(event)

    def of_type(self, event_type: str) -> List[Event]:
        with self._lock:
            return [e for e in self.events if e.type == event_type]

    def types(self) -> List[str]:
        with self._lock:
            return [e.type for e in self.events]
