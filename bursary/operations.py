"""
Finance Operations

The operation surface used by the UI layer and the HTTP API. Every call
returns an OperationResult; domain errors are converted to a typed failure
here and never cross this boundary as exceptions.
"""

from dataclasses import dataclass, field, fields, is_dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

from .currency import Money, Currency, parse_decimal
from .errors import FinanceError, ValidationError, NotFoundError
from .ledger import GeneralLedger, JournalEntryLine, EntryType, PaymentMethod
from .accounts import ChartOfAccounts
from .approval_workflow import ApprovalWorkflow
from .reconciliation import BankReconciliation
from .logging_config import get_logger, log_action

logger = get_logger("bursary.operations")


def serialize(value: Any) -> Any:
    """Convert result data (dataclasses, Money, enums, dates) to JSON-ready values"""
    if isinstance(value, Money):
        return {"amount": str(value.amount), "currency": value.currency.code}
    if isinstance(value, Currency):
        return value.code
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if is_dataclass(value) and not isinstance(value, type):
        result = {f.name: serialize(getattr(value, f.name)) for f in fields(value)}
        # Derived figures reviewers rely on
        for prop in ("amount", "is_effective", "is_balanced", "posted", "voided"):
            attr = getattr(type(value), prop, None)
            if isinstance(attr, property):
                result[prop] = serialize(getattr(value, prop))
        return result
    if isinstance(value, dict):
        return {k: serialize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [serialize(v) for v in value]
    return value


@dataclass
class OperationResult:
    """Outcome of a finance operation"""
    success: bool
    data: Any = None
    error: Optional[str] = None
    errors: List[str] = field(default_factory=list)
    error_type: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, data: Any = None) -> 'OperationResult':
        return cls(success=True, data=data)

    @classmethod
    def from_error(cls, exc: FinanceError) -> 'OperationResult':
        errors = list(exc.errors) if isinstance(exc, ValidationError) else []
        return cls(
            success=False,
            error=exc.message,
            errors=errors,
            error_type=exc.error_type,
            details=dict(exc.details)
        )

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"success": self.success}
        if self.success:
            result["data"] = serialize(self.data)
        else:
            result["error"] = self.error
            result["error_type"] = self.error_type
            if self.errors:
                result["errors"] = self.errors
            if self.details:
                result["details"] = serialize(self.details)
        return result


def _as_date(value: Union[str, date, None], label: str) -> Optional[date]:
    if value is None or value == "" or isinstance(value, date):
        return value or None
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        raise ValidationError([f"{label} must be in YYYY-MM-DD format"])


class FinanceOperations:
    """
    Boundary over the ledger, approval workflow and bank reconciliation
    """

    def __init__(
        self,
        chart: ChartOfAccounts,
        ledger: GeneralLedger,
        workflow: ApprovalWorkflow,
        reconciliation: BankReconciliation
    ):
        self.chart = chart
        self.ledger = ledger
        self.workflow = workflow
        self.reconciliation = reconciliation

    def _run(self, action: str, fn: Callable[[], Any], actor: Optional[str] = None) -> OperationResult:
        try:
            return OperationResult.ok(fn())
        except FinanceError as e:
            return OperationResult.from_error(e)
        except Exception:
            log_action(logger, "error", f"{action} failed unexpectedly", user_id=actor,
                       action=action, exc_info=True)
            return OperationResult(
                success=False,
                error=f"Failed to {action.replace('_', ' ')}",
                error_type="internal"
            )

    # Ledger

    def record_entry(self, data: Dict[str, Any], actor: Optional[str] = None,
                     submit: bool = True) -> OperationResult:
        """
        Create a journal entry from plain data and, by default, submit it

        ``data`` carries entry_type, description, optional entry_date,
        reference, student_id, staff_id, term_id, payment_method,
        payment_reference, and lines of account_id (or account_code),
        debit_amount, credit_amount, description.
        """
        def run():
            entry_type, lines, kwargs = self._parse_entry(data)
            # A rejected submission leaves no draft behind
            with self.ledger.storage.atomic():
                entry = self.ledger.create_journal_entry(entry_type, data.get("description"), lines,
                                                         created_by=actor, **kwargs)
                if not submit:
                    return {"entry": entry, "requests": [], "posted": False}
                submission = self.workflow.submit_entry(entry.id, actor)
            return {
                "entry": submission.entry,
                "requests": submission.requests,
                "posted": submission.posted
            }
        return self._run("record_entry", run, actor)

    def submit_entry(self, entry_id: str, actor: Optional[str] = None) -> OperationResult:
        return self._run("submit_entry", lambda: self.workflow.submit_entry(entry_id, actor), actor)

    def post_entry(self, entry_id: str, actor: Optional[str] = None) -> OperationResult:
        return self._run("post_entry", lambda: self.ledger.post_journal_entry(entry_id, actor), actor)

    def void_entry(self, entry_id: str, reason: str, actor: Optional[str] = None) -> OperationResult:
        return self._run("void_entry", lambda: self.ledger.void_journal_entry(entry_id, reason, actor), actor)

    def request_void(self, entry_id: str, reason: str, actor: Optional[str] = None) -> OperationResult:
        return self._run("request_void", lambda: self.workflow.request_void(entry_id, reason, actor), actor)

    def get_entry(self, entry_id: str) -> OperationResult:
        def run():
            entry = self.ledger.get_journal_entry(entry_id)
            if not entry:
                raise NotFoundError(f"Journal entry {entry_id} not found")
            return entry
        return self._run("get_entry", run)

    def get_account_balance(self, account_id: str, as_of: Union[str, date, None] = None) -> OperationResult:
        return self._run("get_account_balance", lambda: self.ledger.get_account_balance(
            account_id, _as_date(as_of, "As-of date")))

    def get_trial_balance(self, as_of: Union[str, date, None] = None) -> OperationResult:
        return self._run("get_trial_balance",
                         lambda: self.ledger.get_trial_balance(_as_date(as_of, "As-of date")))

    def list_accounts(self) -> OperationResult:
        return self._run("list_accounts", lambda: self.chart.list_accounts())

    # Approvals

    def get_approval_queue(self, status_filter: str = "PENDING") -> OperationResult:
        return self._run("get_approval_queue", lambda: self.workflow.get_approval_queue(status_filter))

    def approve(self, request_id: str, notes: Optional[str], reviewer_id: str) -> OperationResult:
        return self._run("approve", lambda: self.workflow.approve(request_id, reviewer_id, notes), reviewer_id)

    def reject(self, request_id: str, notes: str, reviewer_id: str) -> OperationResult:
        return self._run("reject", lambda: self.workflow.reject(request_id, reviewer_id, notes), reviewer_id)

    def get_approval_stats(self) -> OperationResult:
        return self._run("get_approval_stats", self.workflow.get_approval_stats)

    # Bank reconciliation

    def get_bank_accounts(self) -> OperationResult:
        return self._run("get_bank_accounts", self.reconciliation.get_bank_accounts)

    def create_bank_account(self, data: Dict[str, Any], actor: Optional[str] = None) -> OperationResult:
        return self._run("create_bank_account", lambda: self.reconciliation.create_bank_account(
            account_name=data.get("account_name"),
            account_number=data.get("account_number"),
            bank_name=data.get("bank_name"),
            opening_balance=data.get("opening_balance", 0),
            branch=data.get("branch"),
            swift_code=data.get("swift_code"),
            currency=data.get("currency"),
            created_by=actor
        ), actor)

    def get_statements(self, bank_account_id: Optional[str] = None) -> OperationResult:
        return self._run("get_statements", lambda: self.reconciliation.get_statements(bank_account_id))

    def get_statement_with_lines(self, statement_id: str) -> OperationResult:
        def run():
            result = self.reconciliation.get_statement_with_lines(statement_id)
            if result is None:
                raise NotFoundError("Bank statement not found")
            return result
        return self._run("get_statement_with_lines", run)

    def create_statement(self, data: Dict[str, Any], actor: Optional[str] = None) -> OperationResult:
        return self._run("create_statement", lambda: self.reconciliation.create_statement(
            bank_account_id=data.get("bank_account_id"),
            statement_date=data.get("statement_date"),
            opening_balance=data.get("opening_balance"),
            closing_balance=data.get("closing_balance"),
            statement_reference=data.get("statement_reference"),
            amends_statement_id=data.get("amends_statement_id"),
            created_by=actor
        ), actor)

    def add_statement_line(self, statement_id: str, line: Dict[str, Any],
                           actor: Optional[str] = None) -> OperationResult:
        return self._run("add_statement_line", lambda: self.reconciliation.add_statement_line(
            statement_id,
            transaction_date=line.get("transaction_date"),
            description=line.get("description"),
            debit_amount=line.get("debit_amount", 0),
            credit_amount=line.get("credit_amount", 0),
            reference=line.get("reference"),
            running_balance=line.get("running_balance"),
            created_by=actor
        ), actor)

    def match_transaction(self, line_id: str, transaction_id: str,
                          actor: Optional[str] = None) -> OperationResult:
        return self._run("match_transaction",
                         lambda: self.reconciliation.match_transaction(line_id, transaction_id, actor), actor)

    def unmatch_transaction(self, line_id: str, actor: Optional[str] = None) -> OperationResult:
        return self._run("unmatch_transaction",
                         lambda: self.reconciliation.unmatch_transaction(line_id, actor), actor)

    def get_unmatched_ledger_transactions(self, start_date: Union[str, date], end_date: Union[str, date],
                                          bank_account_id: Optional[str] = None) -> OperationResult:
        return self._run("get_unmatched_ledger_transactions",
                         lambda: self.reconciliation.get_unmatched_ledger_transactions(
                             start_date, end_date, bank_account_id))

    def mark_statement_reconciled(self, statement_id: str, actor: Optional[str] = None) -> OperationResult:
        return self._run("mark_statement_reconciled",
                         lambda: self.reconciliation.mark_statement_reconciled(statement_id, actor), actor)

    def _parse_entry(self, data: Dict[str, Any]):
        """Turn plain entry data into ledger arguments, collecting every problem"""
        errors: List[str] = []

        entry_type = None
        try:
            entry_type = EntryType(str(data.get("entry_type") or "").upper())
        except ValueError:
            errors.append(f"Invalid entry type: {data.get('entry_type')}")

        payment_method = None
        if data.get("payment_method"):
            try:
                payment_method = PaymentMethod(str(data["payment_method"]).upper())
            except ValueError:
                errors.append(f"Invalid payment method: {data['payment_method']}")

        entry_date = None
        try:
            entry_date = _as_date(data.get("entry_date"), "Entry date")
        except ValidationError as e:
            errors.extend(e.errors)

        lines: List[JournalEntryLine] = []
        for index, raw in enumerate(data.get("lines") or [], start=1):
            account_id = raw.get("account_id")
            if not account_id and raw.get("account_code"):
                account = self.chart.get_account_by_code(str(raw["account_code"]))
                if not account:
                    errors.append(f"Line {index}: account code {raw['account_code']} not found")
                    continue
                account_id = account.id
            if not account_id:
                errors.append(f"Line {index}: account is required")
                continue
            try:
                debit = parse_decimal(raw.get("debit_amount") or 0)
                credit = parse_decimal(raw.get("credit_amount") or 0)
                lines.append(JournalEntryLine(
                    account_id=account_id,
                    description=raw.get("description") or "",
                    debit_amount=Money(debit, self.ledger.currency),
                    credit_amount=Money(credit, self.ledger.currency)
                ))
            except ValueError as e:
                errors.append(f"Line {index}: {e}")

        if errors:
            raise ValidationError(errors)

        kwargs = {
            "entry_date": entry_date,
            "reference": data.get("reference"),
            "student_id": data.get("student_id"),
            "staff_id": data.get("staff_id"),
            "term_id": data.get("term_id"),
            "payment_method": payment_method,
            "payment_reference": data.get("payment_reference")
        }
        return entry_type, lines, kwargs
