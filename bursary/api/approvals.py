"""
Approval endpoints
"""

from typing import Optional
from fastapi import APIRouter, Depends

from .deps import get_operations, get_actor, respond
from .schemas import ReviewRequest
from ..operations import FinanceOperations


router = APIRouter()


@router.get("/queue")
async def get_approval_queue(status: str = "PENDING", ops: FinanceOperations = Depends(get_operations)):
    """Approval requests, newest first; status is PENDING or ALL"""
    return respond(ops.get_approval_queue(status))


@router.get("/stats")
async def get_approval_stats(ops: FinanceOperations = Depends(get_operations)):
    return respond(ops.get_approval_stats())


@router.post("/{request_id}/approve")
async def approve(
    request_id: str,
    request: ReviewRequest,
    ops: FinanceOperations = Depends(get_operations),
    actor: Optional[str] = Depends(get_actor)
):
    return respond(ops.approve(request_id, request.notes, actor))


@router.post("/{request_id}/reject")
async def reject(
    request_id: str,
    request: ReviewRequest,
    ops: FinanceOperations = Depends(get_operations),
    actor: Optional[str] = Depends(get_actor)
):
    """Reject a request; notes are required"""
    return respond(ops.reject(request_id, request.notes, actor))
