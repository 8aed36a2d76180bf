from typing import Any, Optional
import logging
import time
import uuid

import requests

from ..core.exceptions import FunctionTimeoutError, NotFoundError, UpstreamError
from ..metrics.writer import ErrorEvent, InvocationEvent, MetricsWriter
from ..models import FUNCTION_ACTIVE
from ..models.utils import utcnow
from ..registry import FunctionRegistry
from ..schemas.function import Billable, InvocationResult, TraceContext

logger = logging.getLogger(__name__)

TRACE_HEADER = "X-Trace-ID"
SPAN_HEADER = "X-Span-ID"
PARENT_SPAN_HEADER = "X-Parent-Span-ID"


def new_trace_id() -> str:
    return uuid.uuid4().hex


def new_span_id() -> str:
    return uuid.uuid4().hex[:16]


class InvocationProxy:
    """
    Forwards a synchronous call to a deployed function.

    The call is made once with the function's own timeout. Failures are
    reported to the caller as they are; retrying is left to the caller since
    the function may not be idempotent.
    """

    def __init__(
        self,
        registry: FunctionRegistry,
        writer: MetricsWriter,
        session: Optional[requests.Session] = None,
        clock=time.monotonic,
    ):
        self.registry = registry
        self.writer = writer
        self.session = session or requests.Session()
        self._clock = clock

    def invoke(
        self,
        project_id: str,
        name: str,
        payload: Any,
        trace_ctx: Optional[TraceContext] = None,
        region: Optional[str] = None,
    ) -> InvocationResult:
        # Endpoint is read from the registry on every call, never cached
        function = self.registry.find_routable(project_id, name, region)
        if function is None:
            raise NotFoundError(f"Function not found: {name}")
        if function.status != FUNCTION_ACTIVE or not function.endpoint:
            raise NotFoundError(f"Function {name} is not ready (status: {function.status})")

        trace_id = trace_ctx.trace_id if trace_ctx and trace_ctx.trace_id else new_trace_id()
        span_id = new_span_id()
        headers = {
            TRACE_HEADER: trace_id,
            SPAN_HEADER: span_id,
            "Content-Type": "application/json",
        }
        if trace_ctx and trace_ctx.span_id:
            headers[PARENT_SPAN_HEADER] = trace_ctx.span_id

        url = f"{function.endpoint.rstrip('/')}/invoke"
        invoked_at = utcnow()
        start = self._clock()
        try:
            response = self.session.post(url, json=payload, headers=headers, timeout=function.timeout)
            response.raise_for_status()
        except requests.Timeout as e:
            self._record_error(project_id, name, "timeout", trace_id)
            logger.warning(f"Invocation of {project_id}/{name} timed out after {function.timeout}s (trace {trace_id})")
            raise FunctionTimeoutError(name, function.timeout) from e
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            error_type = f"http_{status}" if status else "upstream"
            self._record_error(project_id, name, error_type, trace_id)
            logger.error(f"Function {project_id}/{name} returned {status} (trace {trace_id})")
            raise UpstreamError(
                f"Function {name} returned HTTP {status}", error_type=error_type, upstream_status=status
            ) from e
        except requests.ConnectionError as e:
            self._record_error(project_id, name, "connection", trace_id)
            logger.error(f"Could not reach {project_id}/{name} at {url}: {str(e)} (trace {trace_id})")
            raise UpstreamError(f"Function {name} is unreachable: {str(e)}", error_type="connection") from e
        except requests.RequestException as e:
            self._record_error(project_id, name, "upstream", trace_id)
            logger.error(f"Invocation of {project_id}/{name} failed: {str(e)} (trace {trace_id})")
            raise UpstreamError(f"Function {name} invocation failed: {str(e)}") from e

        duration_ms = (self._clock() - start) * 1000
        try:
            result = response.json()
        except ValueError:
            result = response.text

        self.writer.submit(InvocationEvent(
            function_id=function.id,
            duration_ms=duration_ms,
            status=response.status_code,
            result_size=len(response.content or b""),
            invoked_at=invoked_at,
            trace_id=trace_id,
        ))
        logger.info(f"Invoked {project_id}/{name} in {duration_ms:.1f}ms (trace {trace_id}, span {span_id})")

        return InvocationResult(
            result=result,
            duration_ms=duration_ms,
            trace_id=trace_id,
            span_id=span_id,
            billable=Billable(
                invocations=1,
                compute_time_ms=duration_ms,
                memory_allocated_mb=function.memory,
            ),
        )

    def _record_error(self, project_id: str, name: str, error_type: str, trace_id: str) -> None:
        self.writer.submit(ErrorEvent(
            project_id=project_id,
            function_name=name,
            error_type=error_type,
            trace_id=trace_id,
        ))
