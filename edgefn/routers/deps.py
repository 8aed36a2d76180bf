from fastapi import HTTPException, Request

from ..core.exceptions import EdgeFunctionError
from ..services.controller import EdgeFunctionsController


def get_controller(request: Request) -> EdgeFunctionsController:
    return request.app.state.controller


def http_error(error: EdgeFunctionError) -> HTTPException:
    return HTTPException(status_code=error.status_code, detail=error.to_dict())
