"""Non-blocking generation events.

Events are queued by the generator thread and delivered to listeners by a
daemon dispatcher thread, so a slow listener never stalls generation.
"""

import queue
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional

import structlog

logger = structlog.get_logger()


class EventType(str, Enum):
    STARTED = "generation-started"
    PROGRESS = "progress-updated"
    COMPLETED = "generation-completed"
    FAILED = "generation-failed"


@dataclass(frozen=True)
class GenerationEvent:
    type: EventType
    state: str
    message: str = ""
    elapsed: float = 0.0
    error: Optional[BaseException] = None


Listener = Callable[[GenerationEvent], None]


class EventDispatcher:
    """Delivers events to listeners on a background thread."""

    def __init__(self) -> None:
        self._listeners: List[Listener] = []
        self._lock = threading.Lock()
        self._queue: "queue.Queue[Optional[GenerationEvent]]" = queue.Queue()
        self._closed = False
        self._thread = threading.Thread(target=self._worker, daemon=True, name="generation-events")
        self._thread.start()

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener. Returns a function that unregisters it."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    @property
    def closed(self) -> bool:
        return self._closed

    def emit(self, event: GenerationEvent) -> None:
        with self._lock:
            if self._closed:
                logger.debug("Event dropped after close", event=event.type.value)
                return
            self._queue.put(event)

    def _worker(self) -> None:
        while True:
            event = self._queue.get()
            try:
                if event is None:
                    break
                with self._lock:
                    listeners = list(self._listeners)
                for listener in listeners:
                    try:
                        listener(event)
                    except Exception as e:
                        # A faulty listener must not stop delivery to the others
                        logger.error("Event listener failed", event=event.type.value, error=str(e))
            finally:
                self._queue.task_done()

    def flush(self) -> None:
        """Block until every queued event has been delivered. Returns at once after close."""
        if self._closed:
            return
        self._queue.join()

    def close(self) -> None:
        """Deliver what is queued, then stop the worker. Later events are dropped."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._queue.put(None)
        if threading.current_thread() is not self._thread:
            self._thread.join(timeout=2)
