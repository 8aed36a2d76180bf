"""Tests for the background metrics writer and error sinks."""

import threading
from datetime import timedelta

from edgefn.metrics.writer import (
    ErrorEvent,
    ErrorSink,
    InvocationEvent,
    LoggingErrorSink,
    MetricsWriter,
    RedisErrorSink,
)
from edgefn.models.utils import utcnow


class RecordingSink(ErrorSink):
    def __init__(self):
        self.increments = []

    def increment(self, project_id, function_name, error_type):
        self.increments.append((project_id, function_name, error_type))


class FakeRedis:
    def __init__(self):
        self.hashes = {}

    def hincrby(self, name, key, amount=1):
        bucket = self.hashes.setdefault(name, {})
        bucket[key] = bucket.get(key, 0) + amount
        return bucket[key]


def _function(registry):
    return registry.create_function(
        project_id="p1", name="hello", region="default", runtime="node18",
        image="img:1", memory=256, timeout=30, concurrency=10, endpoint="http://fn",
    )


def _invocation(function_id, duration_ms=12.5):
    return InvocationEvent(
        function_id=function_id,
        duration_ms=duration_ms,
        status=200,
        result_size=3,
        invoked_at=utcnow(),
        trace_id="t-1",
    )


def test_events_are_written_in_background(registry):
    record = _function(registry)
    sink = RecordingSink()
    writer = MetricsWriter(registry, sink, maxsize=10)

    writer.start()
    try:
        assert writer.submit(_invocation(record.id))
        assert writer.submit(ErrorEvent(project_id="p1", function_name="hello", error_type="timeout"))
        writer.flush()
    finally:
        writer.stop()

    now = utcnow()
    rows = registry.list_invocations("p1", "hello", since=now - timedelta(minutes=1), until=now + timedelta(seconds=1))
    (invocation, _), = rows
    assert invocation.duration_ms == 12.5
    assert invocation.trace_id == "t-1"
    assert sink.increments == [("p1", "hello", "timeout")]


def test_full_queue_drops_instead_of_blocking(registry):
    writer = MetricsWriter(registry, RecordingSink(), maxsize=2)

    accepted = [writer.submit(_invocation(1)) for _ in range(5)]

    assert accepted == [True, True, False, False, False]
    assert writer.dropped == 3
    assert writer.queue.qsize() == 2


def test_failed_write_does_not_kill_the_worker(registry):
    record = _function(registry)
    sink = RecordingSink()
    writer = MetricsWriter(registry, sink, maxsize=10)

    writer.start()
    try:
        writer.submit(ErrorEvent(project_id="p1", function_name="hello", error_type="http_500"))

        class BrokenSink(ErrorSink):
            def increment(self, project_id, function_name, error_type):
                raise RuntimeError("sink down")

        writer.error_sink = BrokenSink()
        writer.submit(ErrorEvent(project_id="p1", function_name="hello", error_type="connection"))
        writer.submit(_invocation(record.id))
        writer.flush()
    finally:
        writer.stop()

    now = utcnow()
    assert len(registry.list_invocations("p1", "hello", since=now - timedelta(minutes=1), until=now + timedelta(seconds=1))) == 1


def test_stop_drains_remaining_events(registry):
    record = _function(registry)
    writer = MetricsWriter(registry, RecordingSink(), maxsize=10)

    for _ in range(3):
        writer.submit(_invocation(record.id))
    writer.start()
    writer.stop()

    now = utcnow()
    assert len(registry.list_invocations("p1", "hello", since=now - timedelta(minutes=1), until=now + timedelta(seconds=1))) == 3


def test_redis_sink_increments_hash():
    fake = FakeRedis()
    sink = RedisErrorSink(fake)

    sink.increment("p1", "hello", "timeout")
    sink.increment("p1", "hello", "timeout")
    sink.increment("p1", "hello", "http_500")

    assert fake.hashes == {"function_errors:p1:hello": {"timeout": 2, "http_500": 1}}


def test_logging_sink_logs(caplog):
    with caplog.at_level("INFO", logger="edgefn.metrics.writer"):
        LoggingErrorSink().increment("p1", "hello", "timeout")

    assert "function_invocation_errors" in caplog.text


def test_drop_count_is_exact_under_concurrent_submits(registry):
    writer = MetricsWriter(registry, RecordingSink(), maxsize=1)
    barrier = threading.Barrier(8)

    def flood():
        barrier.wait()
        for _ in range(250):
            writer.submit(_invocation(1))

    threads = [threading.Thread(target=flood) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert writer.dropped == 8 * 250 - 1
    assert writer.queue.qsize() == 1
