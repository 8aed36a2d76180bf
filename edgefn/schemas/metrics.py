from pydantic import BaseModel
from typing import List
from datetime import datetime


class MetricsBucket(BaseModel):
    bucket_start: datetime
    invocation_count: int
    avg_duration: float
    max_duration: float
    p95_duration: float
    total_result_size: int


class MetricsSummary(BaseModel):
    total_invocations: int
    avg_duration: float
    peak_invocations_per_bucket: int
    total_compute_seconds: float
    estimated_cost: float
    estimated_cost_per_invocation: float


class FunctionMetrics(BaseModel):
    function_name: str
    interval: str
    bucket_seconds: int
    series: List[MetricsBucket]
    summary: MetricsSummary
