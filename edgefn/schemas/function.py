from pydantic import BaseModel, Field
from typing import Optional, Dict, Any, List, Union
from datetime import datetime


class AutoscalingConfig(BaseModel):
    min_replicas: int = 0
    max_replicas: int = 1000
    target_concurrency: int = 100
    target_rps: int = 1000


class FunctionSpec(BaseModel):
    name: str
    runtime: str
    # Either a single handler source string or a mapping of file name to contents
    source: Union[str, Dict[str, str]] = ""
    memory: int = 256  # in MB
    timeout: int = 30  # in seconds
    concurrency: int = 100
    environment: Dict[str, Any] = Field(default_factory=dict)
    autoscaling: Optional[AutoscalingConfig] = None


class MultiRegionRequest(BaseModel):
    function: FunctionSpec
    regions: List[str]


class FunctionInDB(BaseModel):
    id: int
    project_id: str
    name: str
    region: str
    runtime: str
    image: str
    memory: int
    timeout: int
    concurrency: int
    environment: Optional[Dict[str, Any]] = None
    autoscaling_config: Optional[Dict[str, Any]] = None
    status: str
    endpoint: Optional[str] = None
    created_at: Optional[datetime] = None
    deployed_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class TraceContext(BaseModel):
    trace_id: Optional[str] = None
    span_id: Optional[str] = None


class FunctionInvocationRequest(BaseModel):
    payload: Any = Field(default_factory=dict)
    trace: Optional[TraceContext] = None
    region: Optional[str] = None


class Billable(BaseModel):
    invocations: int = 1
    compute_time_ms: float
    memory_allocated_mb: int


class InvocationResult(BaseModel):
    result: Any = None
    duration_ms: float
    trace_id: str
    span_id: str
    billable: Billable


class RegionOutcome(BaseModel):
    region: str
    status: str  # success | failed
    endpoint: Optional[str] = None
    function_status: Optional[str] = None
    error: Optional[str] = None


class MultiRegionResult(BaseModel):
    deployment_id: int
    function_name: str
    deployments: List[RegionOutcome]
    global_endpoint: str
