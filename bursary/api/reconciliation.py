"""
Bank reconciliation endpoints
"""

from typing import Optional
from fastapi import APIRouter, Depends

from .deps import get_operations, get_actor, respond
from .schemas import (
    CreateBankAccountRequest, CreateStatementRequest, StatementLineRequest, MatchRequest
)
from ..operations import FinanceOperations


router = APIRouter()


@router.get("/accounts")
async def get_bank_accounts(ops: FinanceOperations = Depends(get_operations)):
    return respond(ops.get_bank_accounts())


@router.post("/accounts")
async def create_bank_account(
    request: CreateBankAccountRequest,
    ops: FinanceOperations = Depends(get_operations),
    actor: Optional[str] = Depends(get_actor)
):
    return respond(ops.create_bank_account(request.model_dump(), actor), success_status=201)


@router.get("/statements")
async def get_statements(bank_account_id: Optional[str] = None, ops: FinanceOperations = Depends(get_operations)):
    return respond(ops.get_statements(bank_account_id))


@router.post("/statements")
async def create_statement(
    request: CreateStatementRequest,
    ops: FinanceOperations = Depends(get_operations),
    actor: Optional[str] = Depends(get_actor)
):
    return respond(ops.create_statement(request.model_dump(), actor), success_status=201)


@router.get("/statements/{statement_id}")
async def get_statement_with_lines(statement_id: str, ops: FinanceOperations = Depends(get_operations)):
    return respond(ops.get_statement_with_lines(statement_id))


@router.post("/statements/{statement_id}/lines")
async def add_statement_line(
    statement_id: str,
    request: StatementLineRequest,
    ops: FinanceOperations = Depends(get_operations),
    actor: Optional[str] = Depends(get_actor)
):
    return respond(ops.add_statement_line(statement_id, request.model_dump(), actor), success_status=201)


@router.post("/statements/{statement_id}/reconcile")
async def mark_statement_reconciled(
    statement_id: str,
    ops: FinanceOperations = Depends(get_operations),
    actor: Optional[str] = Depends(get_actor)
):
    return respond(ops.mark_statement_reconciled(statement_id, actor))


@router.post("/lines/{line_id}/match")
async def match_transaction(
    line_id: str,
    request: MatchRequest,
    ops: FinanceOperations = Depends(get_operations),
    actor: Optional[str] = Depends(get_actor)
):
    return respond(ops.match_transaction(line_id, request.transaction_id, actor))


@router.post("/lines/{line_id}/unmatch")
async def unmatch_transaction(
    line_id: str,
    ops: FinanceOperations = Depends(get_operations),
    actor: Optional[str] = Depends(get_actor)
):
    return respond(ops.unmatch_transaction(line_id, actor))


@router.get("/unmatched-transactions")
async def get_unmatched_ledger_transactions(
    start_date: str,
    end_date: str,
    bank_account_id: Optional[str] = None,
    ops: FinanceOperations = Depends(get_operations)
):
    return respond(ops.get_unmatched_ledger_transactions(start_date, end_date, bank_account_id))
