import logging
import math
import re
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence, Union

from ..core.exceptions import NotFoundError, ValidationError
from ..models.utils import utcnow
from ..registry import FunctionRegistry
from ..schemas.metrics import FunctionMetrics, MetricsBucket, MetricsSummary

logger = logging.getLogger(__name__)

_INTERVAL_RE = re.compile(r"^\s*(\d+)\s*([smhd])\s*$")
_UNITS = {"s": "seconds", "m": "minutes", "h": "hours", "d": "days"}
_EPOCH = datetime(1970, 1, 1)


def parse_interval(interval: Union[str, timedelta]) -> timedelta:
    """Parse '90s', '15m', '1h' or '7d' into a timedelta."""
    if isinstance(interval, timedelta):
        window = interval
    else:
        match = _INTERVAL_RE.match(interval or "")
        if not match:
            raise ValidationError(f"Invalid interval '{interval}', expected e.g. 15m, 1h or 7d")
        value, unit = match.groups()
        window = timedelta(**{_UNITS[unit]: int(value)})
    if window <= timedelta(0):
        raise ValidationError(f"Interval must be positive, got {interval}")
    return window


def percentile(sorted_values: Sequence[float], q: float) -> float:
    """Continuous percentile with linear interpolation between closest ranks."""
    if not sorted_values:
        return 0.0
    position = (len(sorted_values) - 1) * q
    lower = math.floor(position)
    upper = math.ceil(position)
    if lower == upper:
        return float(sorted_values[lower])
    fraction = position - lower
    return sorted_values[lower] + (sorted_values[upper] - sorted_values[lower]) * fraction


class MetricsCollector:
    """
    Aggregates invocation records into time buckets, latency percentiles and
    an estimated cost. Unit costs are configuration, supplied by the caller.
    """

    def __init__(
        self,
        registry: FunctionRegistry,
        cost_per_invocation: float,
        cost_per_gb_second: float,
        bucket_seconds: int = 60,
    ):
        if bucket_seconds <= 0:
            raise ValueError("bucket_seconds must be positive")
        self.registry = registry
        self.cost_per_invocation = cost_per_invocation
        self.cost_per_gb_second = cost_per_gb_second
        self.bucket_seconds = bucket_seconds

    def _bucket_start(self, timestamp: datetime) -> datetime:
        seconds = int((timestamp - _EPOCH).total_seconds())
        return _EPOCH + timedelta(seconds=seconds - seconds % self.bucket_seconds)

    def estimate_cost(self, invocations: int, gb_seconds: float) -> float:
        return invocations * self.cost_per_invocation + gb_seconds * self.cost_per_gb_second

    def get_metrics(
        self,
        project_id: str,
        name: str,
        interval: Union[str, timedelta] = "1h",
        now: Optional[datetime] = None,
    ) -> FunctionMetrics:
        window = parse_interval(interval)
        if not self.registry.has_history(project_id, name):
            raise NotFoundError(f"Function not found: {name}")

        until = now or utcnow()
        rows = self.registry.list_invocations(project_id, name, until - window, until)

        durations: Dict[datetime, List[float]] = defaultdict(list)
        result_bytes: Dict[datetime, int] = defaultdict(int)
        gb_seconds = 0.0
        total_compute_ms = 0.0

        for invocation, memory_mb in rows:
            bucket = self._bucket_start(invocation.invoked_at)
            durations[bucket].append(invocation.duration_ms)
            result_bytes[bucket] += invocation.result_size or 0
            total_compute_ms += invocation.duration_ms
            gb_seconds += (memory_mb / 1024) * (invocation.duration_ms / 1000)

        series = []
        # Newest bucket first
        for bucket in sorted(durations, reverse=True):
            values = sorted(durations[bucket])
            series.append(MetricsBucket(
                bucket_start=bucket,
                invocation_count=len(values),
                avg_duration=sum(values) / len(values),
                max_duration=values[-1],
                p95_duration=percentile(values, 0.95),
                total_result_size=result_bytes[bucket],
            ))

        total_invocations = len(rows)
        estimated_cost = self.estimate_cost(total_invocations, gb_seconds)

        summary = MetricsSummary(
            total_invocations=total_invocations,
            avg_duration=total_compute_ms / total_invocations if total_invocations else 0.0,
            peak_invocations_per_bucket=max((b.invocation_count for b in series), default=0),
            total_compute_seconds=total_compute_ms / 1000,
            estimated_cost=estimated_cost,
            estimated_cost_per_invocation=estimated_cost / total_invocations if total_invocations else 0.0,
        )

        logger.debug(f"Metrics for {project_id}/{name} over {interval}: {total_invocations} invocation(s)")
        return FunctionMetrics(
            function_name=name,
            interval=str(interval),
            bucket_seconds=self.bucket_seconds,
            series=series,
            summary=summary,
        )
