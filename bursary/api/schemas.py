"""
Pydantic schemas for API requests

Amounts are accepted as strings or numbers and validated by the finance
layer, so malformed values come back in the result envelope's error list.
"""

from typing import List, Optional, Union
from pydantic import BaseModel, Field

Amount = Union[str, int, float]


class EntryLineModel(BaseModel):
    account_id: Optional[str] = None
    account_code: Optional[str] = None
    debit_amount: Optional[Amount] = 0
    credit_amount: Optional[Amount] = 0
    description: str = ""


class CreateEntryRequest(BaseModel):
    entry_type: str
    description: str
    lines: List[EntryLineModel]
    entry_date: Optional[str] = Field(None, description="YYYY-MM-DD; defaults to today")
    reference: Optional[str] = None
    student_id: Optional[str] = None
    staff_id: Optional[str] = None
    term_id: Optional[str] = None
    payment_method: Optional[str] = None
    payment_reference: Optional[str] = None
    submit: bool = True


class ReasonRequest(BaseModel):
    reason: str = ""


class ReviewRequest(BaseModel):
    notes: Optional[str] = None


class CreateBankAccountRequest(BaseModel):
    account_name: str = ""
    account_number: str = ""
    bank_name: str = ""
    opening_balance: Optional[Amount] = 0
    branch: Optional[str] = None
    swift_code: Optional[str] = None
    currency: Optional[str] = None


class CreateStatementRequest(BaseModel):
    bank_account_id: str
    statement_date: str
    opening_balance: Amount
    closing_balance: Amount
    statement_reference: Optional[str] = None
    amends_statement_id: Optional[str] = None


class StatementLineRequest(BaseModel):
    transaction_date: str = ""
    description: str = ""
    debit_amount: Optional[Amount] = 0
    credit_amount: Optional[Amount] = 0
    reference: Optional[str] = None
    running_balance: Optional[Amount] = None


class MatchRequest(BaseModel):
    transaction_id: str
