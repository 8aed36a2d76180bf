from fastapi import APIRouter, Depends, Header, HTTPException, Query, status
from typing import List, Optional
import logging
import traceback

from ..core.exceptions import EdgeFunctionError, NotFoundError
from ..schemas.function import (
    AutoscalingConfig,
    FunctionInDB,
    FunctionInvocationRequest,
    FunctionSpec,
    InvocationResult,
    MultiRegionRequest,
    MultiRegionResult,
    TraceContext,
)
from ..services.controller import EdgeFunctionsController
from .deps import get_controller, http_error

# Configure logging
logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/projects/{project_id}/functions",
    tags=["functions"]
)

maintenance_router = APIRouter(
    prefix="/functions",
    tags=["maintenance"]
)


@router.post("/", response_model=FunctionInDB, status_code=status.HTTP_201_CREATED)
def deploy_function(
    project_id: str,
    spec: FunctionSpec,
    region: Optional[str] = Query(None, description="Target region, defaults to the configured default region"),
    controller: EdgeFunctionsController = Depends(get_controller),
):
    try:
        return controller.deployer.deploy(project_id, spec, region=region)
    except EdgeFunctionError as e:
        logger.warning(f"Deploy of {project_id}/{spec.name} rejected: {e.detail}")
        raise http_error(e)
    except Exception as e:
        logger.error(f"Error deploying function: {str(e)}")
        logger.error(traceback.format_exc())
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Error deploying function: {str(e)}"
        )


@router.post("/multi-region", response_model=MultiRegionResult, status_code=status.HTTP_201_CREATED)
def deploy_multi_region(
    project_id: str,
    request: MultiRegionRequest,
    controller: EdgeFunctionsController = Depends(get_controller),
):
    try:
        return controller.coordinator.deploy_all(project_id, request.function, request.regions)
    except EdgeFunctionError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Multi-region deployment error: {str(e)}")
        logger.error(traceback.format_exc())
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Multi-region deployment failed: {str(e)}"
        )


@router.get("/", response_model=List[FunctionInDB])
def list_functions(
    project_id: str,
    include_deleted: bool = False,
    controller: EdgeFunctionsController = Depends(get_controller),
):
    return controller.registry.list_functions(project_id, include_deleted=include_deleted)


@router.get("/{name}", response_model=FunctionInDB)
def get_function(
    project_id: str,
    name: str,
    region: Optional[str] = None,
    controller: EdgeFunctionsController = Depends(get_controller),
):
    function = controller.registry.find_routable(project_id, name, region)
    if function is None:
        logger.warning(f"Function not found: {project_id}/{name}")
        raise http_error(NotFoundError(f"Function not found: {name}"))
    return function


@router.post("/{name}/invoke", response_model=InvocationResult)
def invoke_function(
    project_id: str,
    name: str,
    request: FunctionInvocationRequest,
    x_trace_id: Optional[str] = Header(None),
    x_span_id: Optional[str] = Header(None),
    controller: EdgeFunctionsController = Depends(get_controller),
):
    trace = request.trace
    if trace is None and x_trace_id:
        trace = TraceContext(trace_id=x_trace_id, span_id=x_span_id)
    try:
        return controller.proxy.invoke(project_id, name, request.payload, trace_ctx=trace, region=request.region)
    except EdgeFunctionError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Error invoking function: {str(e)}")
        logger.error(traceback.format_exc())
        raise HTTPException(
            status_code=500,
            detail=f"Function invocation failed: {str(e)}"
        )


@router.put("/{name}/autoscaling", response_model=List[FunctionInDB])
def configure_autoscaling(
    project_id: str,
    name: str,
    config: AutoscalingConfig,
    region: Optional[str] = None,
    controller: EdgeFunctionsController = Depends(get_controller),
):
    try:
        return controller.deployer.configure_autoscaling(project_id, name, config, region=region)
    except EdgeFunctionError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Autoscaling configuration error: {str(e)}")
        logger.error(traceback.format_exc())
        raise HTTPException(
            status_code=500,
            detail=f"Autoscaling configuration failed: {str(e)}"
        )


@router.delete("/{name}", response_model=List[FunctionInDB])
def delete_function(
    project_id: str,
    name: str,
    region: Optional[str] = None,
    controller: EdgeFunctionsController = Depends(get_controller),
):
    try:
        return controller.deployer.delete(project_id, name, region=region)
    except EdgeFunctionError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Error deleting function: {str(e)}")
        logger.error(traceback.format_exc())
        raise HTTPException(
            status_code=500,
            detail=f"Error deleting function: {str(e)}"
        )


@maintenance_router.post("/reconcile")
def reconcile_pending(controller: EdgeFunctionsController = Depends(get_controller)):
    """
    Promote pending functions whose endpoint became ready after the deploy
    call stopped polling.
    """
    return {"promoted": controller.deployer.reconcile_pending()}
