"""Tests for the invocation proxy."""

from datetime import timedelta

import pytest
import requests
from conftest import FakeResponse, FakeSession

from edgefn.core.exceptions import FunctionTimeoutError, NotFoundError, UpstreamError
from edgefn.execution.proxy import PARENT_SPAN_HEADER, SPAN_HEADER, TRACE_HEADER, InvocationProxy
from edgefn.metrics.writer import ErrorEvent, InvocationEvent, MetricsWriter
from edgefn.models.utils import utcnow
from edgefn.schemas.function import TraceContext


def _store(registry, endpoint="http://hello.fn", region="default", memory=512):
    return registry.create_function(
        project_id="p1", name="hello", region=region, runtime="node18",
        image="img:1", memory=memory, timeout=30, concurrency=10, endpoint=endpoint,
    )


def _queued(writer):
    return list(writer.queue.queue)


@pytest.fixture
def writer(registry):
    # Not started: submitted events stay on the queue for inspection
    return MetricsWriter(registry, maxsize=100)


def _proxy(registry, writer, outcome=None, clock=None):
    session = FakeSession(outcome)
    clock = clock or iter([10.0, 10.25]).__next__
    return InvocationProxy(registry, writer, session=session, clock=clock), session


def test_successful_invocation_is_billable(registry, writer):
    record = _store(registry)
    proxy, session = _proxy(registry, writer, FakeResponse(200, {"greeting": "hi"}))

    result = proxy.invoke("p1", "hello", {"who": "world"})

    assert result.result == {"greeting": "hi"}
    assert result.duration_ms == pytest.approx(250.0)
    assert result.billable.invocations == 1
    assert result.billable.compute_time_ms == pytest.approx(250.0)
    assert result.billable.memory_allocated_mb == 512

    (call,) = session.calls
    assert call["url"] == "http://hello.fn/invoke"
    assert call["json"] == {"who": "world"}
    assert call["timeout"] == 30

    (event,) = _queued(writer)
    assert isinstance(event, InvocationEvent)
    assert event.function_id == record.id
    assert event.status == 200
    assert event.result_size == len(b'{"greeting": "hi"}')
    assert event.trace_id == result.trace_id


def test_new_trace_is_started_without_context(registry, writer):
    _store(registry)
    proxy, session = _proxy(registry, writer)

    result = proxy.invoke("p1", "hello", {})

    headers = session.calls[0]["headers"]
    assert headers[TRACE_HEADER] == result.trace_id
    assert headers[SPAN_HEADER] == result.span_id
    assert PARENT_SPAN_HEADER not in headers
    assert len(result.trace_id) == 32
    assert len(result.span_id) == 16


def test_trace_context_is_propagated(registry, writer):
    _store(registry)
    proxy, session = _proxy(registry, writer)

    result = proxy.invoke("p1", "hello", {}, trace_ctx=TraceContext(trace_id="t-123", span_id="s-parent"))

    headers = session.calls[0]["headers"]
    assert result.trace_id == "t-123"
    assert headers[TRACE_HEADER] == "t-123"
    assert headers[PARENT_SPAN_HEADER] == "s-parent"
    assert headers[SPAN_HEADER] == result.span_id != "s-parent"


def test_non_json_body_is_returned_as_text(registry, writer):
    _store(registry)
    proxy, _ = _proxy(registry, writer, FakeResponse(200, content=b"plain text"))

    assert proxy.invoke("p1", "hello", {}).result == "plain text"


def test_pending_function_is_not_invoked(registry, writer):
    _store(registry, endpoint=None)
    proxy, session = _proxy(registry, writer)

    with pytest.raises(NotFoundError, match="not ready"):
        proxy.invoke("p1", "hello", {})

    assert session.calls == []
    assert _queued(writer) == []


def test_unknown_function_is_not_found(registry, writer):
    proxy, session = _proxy(registry, writer)

    with pytest.raises(NotFoundError):
        proxy.invoke("p1", "ghost", {})

    assert session.calls == []


def test_deleted_function_is_not_found(registry, writer):
    record = _store(registry)
    registry.mark_deleted(record.id)
    proxy, session = _proxy(registry, writer)

    with pytest.raises(NotFoundError):
        proxy.invoke("p1", "hello", {})

    assert session.calls == []


def test_timeout_is_not_retried(registry, writer):
    _store(registry)
    proxy, session = _proxy(registry, writer, requests.Timeout("read timed out"))

    with pytest.raises(FunctionTimeoutError) as excinfo:
        proxy.invoke("p1", "hello", {})

    assert excinfo.value.status_code == 504
    assert len(session.calls) == 1
    (event,) = _queued(writer)
    assert isinstance(event, ErrorEvent)
    assert event.error_type == "timeout"


def test_http_error_is_reported_as_upstream(registry, writer):
    _store(registry)
    proxy, session = _proxy(registry, writer, FakeResponse(500, {"error": "boom"}))

    with pytest.raises(UpstreamError) as excinfo:
        proxy.invoke("p1", "hello", {})

    assert excinfo.value.upstream_status == 500
    assert excinfo.value.error_type == "http_500"
    assert len(session.calls) == 1
    (event,) = _queued(writer)
    assert event.error_type == "http_500"


def test_connection_error_is_reported_as_upstream(registry, writer):
    _store(registry)
    proxy, _ = _proxy(registry, writer, requests.ConnectionError("refused"))

    with pytest.raises(UpstreamError) as excinfo:
        proxy.invoke("p1", "hello", {})

    assert excinfo.value.error_type == "connection"


def test_explicit_region_routes_to_that_record(registry, writer):
    _store(registry, endpoint="http://default.fn")
    _store(registry, endpoint="http://eu.fn", region="eu-west")
    proxy, session = _proxy(registry, writer)

    proxy.invoke("p1", "hello", {}, region="eu-west")

    assert session.calls[0]["url"] == "http://eu.fn/invoke"


def test_invocation_is_recorded_by_the_writer(registry, writer):
    record = _store(registry)
    proxy, _ = _proxy(registry, writer)

    writer.start()
    try:
        proxy.invoke("p1", "hello", {})
        writer.flush()
    finally:
        writer.stop()

    now = utcnow()
    rows = registry.list_invocations("p1", "hello", since=now - timedelta(minutes=5), until=now + timedelta(seconds=1))
    assert [(invocation.function_id, invocation.duration_ms) for invocation, _ in rows] == [(record.id, pytest.approx(250.0))]
