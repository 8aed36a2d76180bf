import logging
import queue
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Union

import redis

from ..registry import FunctionRegistry

logger = logging.getLogger(__name__)


@dataclass
class InvocationEvent:
    function_id: int
    duration_ms: float
    status: int
    result_size: int
    invoked_at: datetime
    trace_id: Optional[str] = None


@dataclass
class ErrorEvent:
    project_id: str
    function_name: str
    error_type: str
    trace_id: Optional[str] = None


MetricEvent = Union[InvocationEvent, ErrorEvent]


class ErrorSink:
    def increment(self, project_id: str, function_name: str, error_type: str) -> None:
        raise NotImplementedError


class LoggingErrorSink(ErrorSink):
    def increment(self, project_id: str, function_name: str, error_type: str) -> None:
        logger.info(
            "Metric: function_invocation_errors = 1",
            extra={"project_id": project_id, "function_name": function_name, "error_type": error_type},
        )


class RedisErrorSink(ErrorSink):
    """Error counters as Redis hashes: function_errors:<project>:<name> -> {error_type: count}."""

    def __init__(self, client: redis.Redis):
        self.r = client

    @classmethod
    def from_url(cls, url: str) -> "RedisErrorSink":
        return cls(redis.Redis.from_url(url))

    def increment(self, project_id: str, function_name: str, error_type: str) -> None:
        self.r.hincrby(f"function_errors:{project_id}:{function_name}", error_type, 1)


class MetricsWriter:
    """
    Writes invocation records and error counters off the request path.

    Producers call ``submit``, which never blocks: when the bounded queue is
    full the event is dropped and logged. A single daemon thread drains the
    queue into the registry and the error sink.
    """

    def __init__(self, registry: FunctionRegistry, error_sink: Optional[ErrorSink] = None, maxsize: int = 1000):
        self.registry = registry
        self.error_sink = error_sink or LoggingErrorSink()
        self.queue: "queue.Queue[MetricEvent]" = queue.Queue(maxsize=maxsize)
        self.dropped = 0
        self._dropped_lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._worker, name="metrics-writer", daemon=True)
        self._thread.start()
        logger.info("Metrics writer started")

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info(f"Metrics writer stopped ({self.dropped} event(s) dropped)")

    def submit(self, event: MetricEvent) -> bool:
        try:
            self.queue.put_nowait(event)
            return True
        except queue.Full:
            with self._dropped_lock:
                self.dropped += 1
            logger.warning(f"Metrics queue full, dropping {type(event).__name__}: {event}")
            return False

    def flush(self) -> None:
        """Block until every queued event has been handled."""
        self.queue.join()

    def _worker(self):
        while not (self._stop.is_set() and self.queue.empty()):
            try:
                event = self.queue.get(timeout=0.2)
            except queue.Empty:
                continue
            try:
                self.handle(event)
            except Exception as e:
                logger.error(f"Failed to write metric event {event}: {str(e)}")
            finally:
                self.queue.task_done()

    def handle(self, event: MetricEvent) -> None:
        if isinstance(event, InvocationEvent):
            self.registry.record_invocation(
                function_id=event.function_id,
                duration_ms=event.duration_ms,
                status=event.status,
                result_size=event.result_size,
                trace_id=event.trace_id,
                invoked_at=event.invoked_at,
            )
        elif isinstance(event, ErrorEvent):
            self.error_sink.increment(event.project_id, event.function_name, event.error_type)
