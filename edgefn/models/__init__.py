from .function import FunctionRecord, FUNCTION_PENDING, FUNCTION_ACTIVE, FUNCTION_DELETED
from .invocation import InvocationRecord
from .deployment import MultiRegionDeployment

__all__ = [
    "FunctionRecord",
    "InvocationRecord",
    "MultiRegionDeployment",
    "FUNCTION_PENDING",
    "FUNCTION_ACTIVE",
    "FUNCTION_DELETED",
]
