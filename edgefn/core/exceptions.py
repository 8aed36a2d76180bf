"""Exception classes for the edge functions controller.

Every error raised by the deploy, invoke and metrics paths derives from
``EdgeFunctionError`` so the routers can translate it into an HTTP response
with a stable ``error_code``.
"""

from datetime import datetime, timezone
from typing import Dict, List


class EdgeFunctionError(Exception):
    """Base exception for all controller errors."""

    def __init__(self, detail: str, status_code: int = 500, error_code: str = "INTERNAL_ERROR"):
        self.detail = detail
        self.status_code = status_code
        self.error_code = error_code
        self.timestamp = datetime.now(timezone.utc).isoformat()
        super().__init__(detail)

    def to_dict(self):
        """Convert exception to dictionary for API response."""
        return {
            "error": self.error_code,
            "detail": self.detail,
            "status_code": self.status_code,
            "timestamp": self.timestamp,
        }


class ValidationError(EdgeFunctionError):
    """Raised when a function spec or scaling config is out of bounds."""

    def __init__(self, detail: str):
        super().__init__(detail=detail, status_code=422, error_code="VALIDATION_ERROR")


class ConflictError(EdgeFunctionError):
    """Raised when a live function with the same name already exists."""

    def __init__(self, project_id: str, name: str, region: str):
        super().__init__(
            detail=f"Function '{name}' already exists in project {project_id} (region {region})",
            status_code=409,
            error_code="FUNCTION_CONFLICT",
        )


class BuildError(EdgeFunctionError):
    """Raised when the image build collaborator fails."""

    def __init__(self, detail: str):
        super().__init__(detail=f"Image build failed: {detail}", status_code=502, error_code="BUILD_FAILED")


class NotFoundError(EdgeFunctionError):
    """Raised when a function is missing or has no ready endpoint."""

    def __init__(self, detail: str):
        super().__init__(detail=detail, status_code=404, error_code="FUNCTION_NOT_FOUND")


class FunctionTimeoutError(EdgeFunctionError):
    """Raised when a forwarded invocation exceeds the function timeout."""

    def __init__(self, name: str, timeout: int):
        self.timeout = timeout
        super().__init__(
            detail=f"Function '{name}' did not respond within {timeout}s",
            status_code=504,
            error_code="FUNCTION_TIMEOUT",
        )


class UpstreamError(EdgeFunctionError):
    """Raised when the function endpoint fails or is unreachable."""

    def __init__(self, detail: str, error_type: str = "upstream", upstream_status: int = None):
        self.error_type = error_type
        self.upstream_status = upstream_status
        super().__init__(detail=detail, status_code=502, error_code="UPSTREAM_ERROR")


class PartialUpdateError(EdgeFunctionError):
    """Raised when a change was applied to some regions and failed in others."""

    def __init__(self, detail: str, updated: List[str], failed: Dict[str, str]):
        self.updated = updated
        self.failed = failed
        super().__init__(detail=detail, status_code=502, error_code="PARTIAL_UPDATE")

    def to_dict(self):
        body = super().to_dict()
        body["updated_regions"] = self.updated
        body["failed_regions"] = self.failed
        return body
