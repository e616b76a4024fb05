"""
Request dependencies and result-to-response mapping
"""

from typing import Optional

from fastapi import Header, Request
from fastapi.responses import JSONResponse

from ..operations import FinanceOperations, OperationResult


STATUS_BY_ERROR_TYPE = {
    "validation": 400,
    "business_rule": 400,
    "not_found": 404,
    "state_conflict": 409,
    "concurrency_conflict": 409,
    "internal": 500,
}


def get_operations(request: Request) -> FinanceOperations:
    return request.app.state.system.operations


def get_actor(x_user_id: Optional[str] = Header(default=None)) -> Optional[str]:
    """Acting user, taken from the X-User-Id header"""
    return x_user_id


def respond(result: OperationResult, success_status: int = 200) -> JSONResponse:
    if result.success:
        status_code = success_status
    else:
        status_code = STATUS_BY_ERROR_TYPE.get(result.error_type, 400)
    return JSONResponse(status_code=status_code, content=result.to_dict())
