"""Tests for metric aggregation and cost estimation."""

from datetime import datetime, timedelta

import pytest

from edgefn.core.exceptions import NotFoundError, ValidationError
from edgefn.metrics.collector import MetricsCollector, parse_interval, percentile

NOW = datetime(2026, 3, 2, 12, 0, 30)
COST_PER_INVOCATION = 0.0000002
COST_PER_GB_SECOND = 0.0000166


@pytest.fixture
def collector(registry):
    return MetricsCollector(registry, COST_PER_INVOCATION, COST_PER_GB_SECOND, bucket_seconds=60)


def _function(registry, memory=1024, region="default", endpoint="http://fn"):
    return registry.create_function(
        project_id="p1", name="hello", region=region, runtime="node18",
        image="img:1", memory=memory, timeout=30, concurrency=10, endpoint=endpoint,
    )


def test_no_invocations_costs_nothing(registry, collector):
    _function(registry)

    metrics = collector.get_metrics("p1", "hello", "1h", now=NOW)

    assert metrics.series == []
    assert metrics.summary.total_invocations == 0
    assert metrics.summary.avg_duration == 0.0
    assert metrics.summary.peak_invocations_per_bucket == 0
    assert metrics.summary.estimated_cost == 0.0
    assert metrics.summary.estimated_cost_per_invocation == 0.0


def test_unknown_function_is_not_found(collector):
    with pytest.raises(NotFoundError):
        collector.get_metrics("p1", "ghost", "1h", now=NOW)


def test_cost_formula(registry, collector):
    record = _function(registry, memory=1024)
    registry.record_invocation(record.id, 1000.0, invoked_at=NOW - timedelta(minutes=2))
    registry.record_invocation(record.id, 1000.0, invoked_at=NOW - timedelta(minutes=1))

    summary = collector.get_metrics("p1", "hello", "1h", now=NOW).summary

    expected = 2 * COST_PER_INVOCATION + 2.0 * COST_PER_GB_SECOND
    assert summary.total_invocations == 2
    assert summary.total_compute_seconds == pytest.approx(2.0)
    assert summary.estimated_cost == pytest.approx(expected)
    assert summary.estimated_cost_per_invocation == pytest.approx(expected / 2)


def test_buckets_are_newest_first_and_skip_empty_minutes(registry, collector):
    record = _function(registry)
    for seconds, duration in [(5, 100.0), (40, 300.0), (185, 50.0)]:
        registry.record_invocation(record.id, duration, result_size=10, invoked_at=datetime(2026, 3, 2, 11, 50) + timedelta(seconds=seconds))

    metrics = collector.get_metrics("p1", "hello", "1h", now=NOW)

    assert [b.bucket_start for b in metrics.series] == [datetime(2026, 3, 2, 11, 53), datetime(2026, 3, 2, 11, 50)]
    newest, oldest = metrics.series
    assert newest.invocation_count == 1
    assert oldest.invocation_count == 2
    assert oldest.avg_duration == pytest.approx(200.0)
    assert oldest.max_duration == 300.0
    assert oldest.total_result_size == 20
    assert metrics.summary.peak_invocations_per_bucket == 2
    assert metrics.summary.avg_duration == pytest.approx(150.0)


def test_window_excludes_older_invocations(registry, collector):
    record = _function(registry)
    registry.record_invocation(record.id, 10.0, invoked_at=NOW - timedelta(minutes=20))
    registry.record_invocation(record.id, 20.0, invoked_at=NOW - timedelta(minutes=5))

    assert collector.get_metrics("p1", "hello", "15m", now=NOW).summary.total_invocations == 1
    assert collector.get_metrics("p1", "hello", "1h", now=NOW).summary.total_invocations == 2


def test_p95_interpolates(registry, collector):
    record = _function(registry)
    bucket = datetime(2026, 3, 2, 11, 59)
    for i in range(1, 21):
        registry.record_invocation(record.id, float(i * 10), invoked_at=bucket + timedelta(seconds=i))

    (series,) = collector.get_metrics("p1", "hello", "1h", now=NOW).series

    assert series.p95_duration == pytest.approx(190.5)


def test_history_of_deleted_functions_is_kept(registry, collector):
    old = _function(registry, memory=512)
    registry.record_invocation(old.id, 100.0, invoked_at=NOW - timedelta(minutes=10))
    registry.mark_deleted(old.id)
    new = _function(registry, memory=1024)
    registry.record_invocation(new.id, 100.0, invoked_at=NOW - timedelta(minutes=5))

    summary = collector.get_metrics("p1", "hello", "1h", now=NOW).summary

    assert summary.total_invocations == 2
    gb_seconds = 0.5 * 0.1 + 1.0 * 0.1
    assert summary.estimated_cost == pytest.approx(2 * COST_PER_INVOCATION + gb_seconds * COST_PER_GB_SECOND)


@pytest.mark.parametrize("text,expected", [
    ("90s", timedelta(seconds=90)),
    ("15m", timedelta(minutes=15)),
    ("1h", timedelta(hours=1)),
    ("7d", timedelta(days=7)),
])
def test_parse_interval(text, expected):
    assert parse_interval(text) == expected


@pytest.mark.parametrize("text", ["", "1w", "h", "-1h", "0m", "1 hour"])
def test_parse_interval_rejects_garbage(text):
    with pytest.raises(ValidationError):
        parse_interval(text)


def test_percentile_edges():
    assert percentile([], 0.95) == 0.0
    assert percentile([42.0], 0.95) == 42.0
    assert percentile([1.0, 2.0], 0.5) == pytest.approx(1.5)
