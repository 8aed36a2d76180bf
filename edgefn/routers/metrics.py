from fastapi import APIRouter, Depends, HTTPException, Query
import logging

from ..core.exceptions import EdgeFunctionError
from ..schemas.metrics import FunctionMetrics
from ..services.controller import EdgeFunctionsController
from .deps import get_controller, http_error

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/metrics",
    tags=["metrics"]
)


@router.get("/projects/{project_id}/functions/{name}", response_model=FunctionMetrics)
def get_function_metrics(
    project_id: str,
    name: str,
    interval: str = Query("1h", description="Look-back window, e.g. 15m, 1h, 7d"),
    controller: EdgeFunctionsController = Depends(get_controller),
):
    """
    Get bucketed latency statistics and the estimated cost for a function
    """
    try:
        return controller.collector.get_metrics(project_id, name, interval)
    except EdgeFunctionError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Error getting function metrics: {e}")
        raise HTTPException(status_code=500, detail=f"Error getting function metrics: {str(e)}")
