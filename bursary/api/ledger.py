"""
Ledger endpoints
"""

from typing import Optional
from fastapi import APIRouter, Depends

from .deps import get_operations, get_actor, respond
from .schemas import CreateEntryRequest, ReasonRequest
from ..operations import FinanceOperations


router = APIRouter()


@router.post("/entries")
async def record_entry(
    request: CreateEntryRequest,
    ops: FinanceOperations = Depends(get_operations),
    actor: Optional[str] = Depends(get_actor)
):
    """Create a journal entry and submit it for posting"""
    data = request.model_dump(exclude={"submit"})
    return respond(ops.record_entry(data, actor, submit=request.submit), success_status=201)


@router.get("/entries/{entry_id}")
async def get_entry(entry_id: str, ops: FinanceOperations = Depends(get_operations)):
    return respond(ops.get_entry(entry_id))


@router.post("/entries/{entry_id}/submit")
async def submit_entry(
    entry_id: str,
    ops: FinanceOperations = Depends(get_operations),
    actor: Optional[str] = Depends(get_actor)
):
    return respond(ops.submit_entry(entry_id, actor))


@router.post("/entries/{entry_id}/post")
async def post_entry(
    entry_id: str,
    ops: FinanceOperations = Depends(get_operations),
    actor: Optional[str] = Depends(get_actor)
):
    return respond(ops.post_entry(entry_id, actor))


@router.post("/entries/{entry_id}/void")
async def void_entry(
    entry_id: str,
    request: ReasonRequest,
    ops: FinanceOperations = Depends(get_operations),
    actor: Optional[str] = Depends(get_actor)
):
    """Void an entry immediately"""
    return respond(ops.void_entry(entry_id, request.reason, actor))


@router.post("/entries/{entry_id}/void-request")
async def request_void(
    entry_id: str,
    request: ReasonRequest,
    ops: FinanceOperations = Depends(get_operations),
    actor: Optional[str] = Depends(get_actor)
):
    """Void an entry, subject to void approval rules"""
    return respond(ops.request_void(entry_id, request.reason, actor))


@router.get("/accounts")
async def list_accounts(ops: FinanceOperations = Depends(get_operations)):
    return respond(ops.list_accounts())


@router.get("/accounts/{account_id}/balance")
async def get_account_balance(
    account_id: str,
    as_of: Optional[str] = None,
    ops: FinanceOperations = Depends(get_operations)
):
    return respond(ops.get_account_balance(account_id, as_of))


@router.get("/trial-balance")
async def get_trial_balance(as_of: Optional[str] = None, ops: FinanceOperations = Depends(get_operations)):
    return respond(ops.get_trial_balance(as_of))
