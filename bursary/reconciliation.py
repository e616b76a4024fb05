"""
Bank Reconciliation

Bank accounts, imported bank statements and their lines, and the matcher
that ties each statement line to exactly one posted ledger entry within
amount and date tolerances. A statement is closed (RECONCILED) only once
every line is matched and its movements explain the declared closing
balance; reconciled statements are never reopened, corrections go into an
amendment statement.

One-to-one matching is enforced by a match claim keyed by the journal entry
id, created with ``insert_if_absent``, plus a compare-and-set on the line.
"""

from decimal import Decimal
from datetime import datetime, date, timezone
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Union
from enum import Enum
import re
import uuid

from .currency import Money, Currency, parse_decimal
from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .ledger import GeneralLedger, JournalEntry
from .errors import (
    ValidationError, NotFoundError, StateConflictError, BusinessRuleError,
    ConcurrencyConflictError
)
from .logging_config import get_logger, log_action

logger = get_logger("bursary.reconciliation")

ISO_DATE = re.compile(r'^\d{4}-\d{2}-\d{2}$')

DEFAULT_BANK_PAYMENT_METHODS = ("BANK_TRANSFER", "CHEQUE")


class StatementStatus(Enum):
    PENDING = "PENDING"
    PARTIAL = "PARTIAL"
    RECONCILED = "RECONCILED"


@dataclass
class BankAccount(StorageRecord):
    account_name: str
    account_number: str
    bank_name: str
    currency: Currency
    opening_balance: Money
    current_balance: Money  # cached; refreshed only when a statement is reconciled
    branch: Optional[str] = None
    swift_code: Optional[str] = None
    is_active: bool = True


@dataclass
class BankStatement(StorageRecord):
    bank_account_id: str
    statement_date: date
    opening_balance: Money
    closing_balance: Money
    status: StatementStatus = StatementStatus.PENDING
    statement_reference: Optional[str] = None
    amends_statement_id: Optional[str] = None
    reconciled_by: Optional[str] = None
    reconciled_at: Optional[datetime] = None


@dataclass
class BankStatementLine(StorageRecord):
    bank_statement_id: str
    transaction_date: date
    description: str
    debit_amount: Money
    credit_amount: Money
    reference: Optional[str] = None
    running_balance: Optional[Money] = None
    is_matched: bool = False
    matched_transaction_id: Optional[str] = None
    matched_by: Optional[str] = None
    matched_at: Optional[datetime] = None

    @property
    def net_amount(self) -> Money:
        """Credit minus debit; positive for money into the account"""
        return self.credit_amount - self.debit_amount


@dataclass
class MatchClaim(StorageRecord):
    """Keyed by journal entry id; at most one per entry"""
    line_id: str
    bank_statement_id: str
    claimed_by: Optional[str] = None


@dataclass
class StatementSummary:
    statement: BankStatement
    bank_account_name: str
    line_count: int
    matched_count: int


@dataclass
class StatementWithLines:
    statement: BankStatement
    bank_account_name: str
    lines: List[BankStatementLine] = field(default_factory=list)


def _parse_iso_date(value: Union[str, date, None]) -> Optional[date]:
    """A well-formed YYYY-MM-DD calendar date, or None"""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value or "").strip()
    if not ISO_DATE.match(text):
        return None
    try:
        return date.fromisoformat(text)
    except ValueError:
        return None


def _unique(errors: Iterable[str]) -> List[str]:
    return list(dict.fromkeys(errors))


class BankReconciliation:
    """
    Bank account, statement and matching operations
    """

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: AuditTrail,
        ledger: GeneralLedger,
        amount_tolerance_minor_units: int = 100,
        date_tolerance_days: int = 7,
        closing_balance_tolerance_minor_units: int = 1,
        bank_payment_methods: Iterable[str] = DEFAULT_BANK_PAYMENT_METHODS
    ):
        self.storage = storage
        self.audit_trail = audit_trail
        self.ledger = ledger
        self.currency = ledger.currency
        self.amount_tolerance_minor_units = amount_tolerance_minor_units
        self.date_tolerance_days = date_tolerance_days
        self.closing_balance_tolerance_minor_units = closing_balance_tolerance_minor_units
        self.bank_payment_methods = {m.upper() for m in bank_payment_methods}

        self.accounts_table = "bank_accounts"
        self.statements_table = "bank_statements"
        self.lines_table = "bank_statement_lines"
        self.claims_table = "bank_match_claims"

    # Bank accounts

    def create_bank_account(
        self,
        account_name: str,
        account_number: str,
        bank_name: str,
        opening_balance: Any = 0,
        branch: Optional[str] = None,
        swift_code: Optional[str] = None,
        currency: Optional[str] = None,
        created_by: Optional[str] = None
    ) -> BankAccount:
        """
        Register a bank account; current balance starts at the opening balance

        Raises:
            ValidationError: With every problem found in the input
        """
        errors: List[str] = []
        account_name = (account_name or "").strip()
        account_number = (account_number or "").strip()
        bank_name = (bank_name or "").strip()

        if not account_name:
            errors.append("Account name is required")
        if not account_number:
            errors.append("Account number is required")
        if not bank_name:
            errors.append("Bank name is required")

        code = (currency or self.currency.code).strip().upper()
        if code != self.currency.code:
            errors.append(f"Bank account currency must be {self.currency.code}")

        opening = self._amount(opening_balance, "Opening balance must be a valid number", errors)

        if errors:
            self._reject("create_bank_account", created_by, None, errors)

        now = datetime.now(timezone.utc)
        account = BankAccount(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            account_name=account_name,
            account_number=account_number,
            bank_name=bank_name,
            currency=self.currency,
            opening_balance=opening,
            current_balance=opening,
            branch=(branch or "").strip() or None,
            swift_code=(swift_code or "").strip() or None
        )

        with self.storage.atomic():
            self._save(self.accounts_table, account.id, self._bank_account_to_dict(account))
            self.audit_trail.record_change(
                created_by, AuditEventType.BANK_ACCOUNT_CREATED, "bank_account",
                account.id, None, self._bank_account_to_dict(account)
            )

        log_action(logger, "info", f"Bank account {account_name} created", user_id=created_by,
                   action="create_bank_account", resource=account.id,
                   extra={"bank_name": bank_name, "opening_balance": str(opening.amount)})
        return account

    def get_bank_accounts(self) -> List[BankAccount]:
        """Active bank accounts ordered by name"""
        accounts = [
            self._bank_account_from_dict(data)
            for data in self.storage.find(self.accounts_table, {"is_active": True})
        ]
        accounts.sort(key=lambda a: a.account_name)
        return accounts

    def get_bank_account(self, bank_account_id: str) -> Optional[BankAccount]:
        data = self.storage.load(self.accounts_table, bank_account_id)
        if data:
            return self._bank_account_from_dict(data)
        return None

    # Statements

    def create_statement(
        self,
        bank_account_id: str,
        statement_date: Union[str, date],
        opening_balance: Any,
        closing_balance: Any,
        statement_reference: Optional[str] = None,
        amends_statement_id: Optional[str] = None,
        created_by: Optional[str] = None
    ) -> BankStatement:
        """
        Create a PENDING statement for a bank account

        An amendment statement must reference a RECONCILED statement of the
        same bank account.

        Raises:
            ValidationError: With every problem found in the input
        """
        errors: List[str] = []

        account = self.get_bank_account(bank_account_id) if bank_account_id else None
        if not account:
            errors.append("Bank account not found")
        elif not account.is_active:
            errors.append("Bank account is inactive")

        parsed_date = _parse_iso_date(statement_date)
        if parsed_date is None:
            errors.append("Statement date must be in YYYY-MM-DD format")

        opening = self._amount(opening_balance, "Opening balance must be a valid number", errors)
        closing = self._amount(closing_balance, "Closing balance must be a valid number", errors)

        if amends_statement_id:
            amended = self._load_statement(amends_statement_id)
            if not amended:
                errors.append("Amended statement not found")
            else:
                if amended.status != StatementStatus.RECONCILED:
                    errors.append("Only reconciled statements can be amended")
                if amended.bank_account_id != bank_account_id:
                    errors.append("Amended statement belongs to a different bank account")

        if errors:
            self._reject("create_statement", created_by, bank_account_id, errors)

        now = datetime.now(timezone.utc)
        statement = BankStatement(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            bank_account_id=bank_account_id,
            statement_date=parsed_date,
            opening_balance=opening,
            closing_balance=closing,
            statement_reference=(statement_reference or "").strip() or None,
            amends_statement_id=amends_statement_id
        )

        with self.storage.atomic():
            self._save_statement(statement)
            self.audit_trail.record_change(
                created_by, AuditEventType.BANK_STATEMENT_CREATED, "bank_statement",
                statement.id, None, self._statement_to_dict(statement)
            )

        log_action(logger, "info", "Bank statement created", user_id=created_by,
                   action="create_statement", resource=statement.id,
                   extra={"bank_account_id": bank_account_id,
                          "statement_date": parsed_date.isoformat(),
                          "amends_statement_id": amends_statement_id})
        return statement

    def get_statements(self, bank_account_id: Optional[str] = None) -> List[StatementSummary]:
        """Statements with line and matched counts, newest statement date first"""
        if bank_account_id:
            rows = self.storage.find(self.statements_table, {"bank_account_id": bank_account_id})
        else:
            rows = self.storage.load_all(self.statements_table)

        names: Dict[str, str] = {}
        summaries: List[StatementSummary] = []
        for data in rows:
            statement = self._statement_from_dict(data)
            if statement.bank_account_id not in names:
                account = self.get_bank_account(statement.bank_account_id)
                names[statement.bank_account_id] = account.account_name if account else ""
            lines = self._lines_for(statement.id)
            summaries.append(StatementSummary(
                statement=statement,
                bank_account_name=names[statement.bank_account_id],
                line_count=len(lines),
                matched_count=sum(1 for line in lines if line.is_matched)
            ))

        summaries.sort(key=lambda s: (s.statement.statement_date, s.statement.created_at), reverse=True)
        return summaries

    def get_statement_with_lines(self, statement_id: str) -> Optional[StatementWithLines]:
        """Statement plus its lines ordered by transaction date, or None"""
        statement = self._load_statement(statement_id)
        if not statement:
            return None
        account = self.get_bank_account(statement.bank_account_id)
        return StatementWithLines(
            statement=statement,
            bank_account_name=account.account_name if account else "",
            lines=self._lines_for(statement.id)
        )

    def add_statement_line(
        self,
        statement_id: str,
        transaction_date: Union[str, date, None],
        description: Optional[str],
        debit_amount: Any = 0,
        credit_amount: Any = 0,
        reference: Optional[str] = None,
        running_balance: Any = None,
        created_by: Optional[str] = None
    ) -> BankStatementLine:
        """
        Import one statement line

        Raises:
            ValidationError: With every problem found in the input
        """
        errors: List[str] = []

        statement = self._load_statement(statement_id) if statement_id else None
        if not statement:
            errors.append("Bank statement not found")
        elif statement.status == StatementStatus.RECONCILED:
            errors.append("Cannot add lines to a reconciled statement")

        description = (description or "").strip()
        if not description:
            errors.append("Statement line description is required")

        line_date = _parse_iso_date(transaction_date)
        if line_date is None:
            errors.append("Statement line date must be in YYYY-MM-DD format")
        else:
            if line_date > date.today():
                errors.append("Statement line date cannot be in the future")
            if statement and line_date > statement.statement_date:
                errors.append("Statement line date cannot be after the statement date")

        debit = credit = None
        try:
            debit = Money(self._line_amount(debit_amount), self.currency)
            credit = Money(self._line_amount(credit_amount), self.currency)
        except ValueError:
            errors.append("Debit and credit amounts must be valid numbers")
        else:
            if debit.is_negative() or credit.is_negative():
                errors.append("Debit and credit amounts cannot be negative")
            if debit.is_positive() == credit.is_positive():
                errors.append("Exactly one of debit amount or credit amount must be greater than zero")

        balance = None
        if running_balance is not None and running_balance != "":
            try:
                balance = Money(parse_decimal(running_balance), self.currency)
            except ValueError:
                errors.append("Running balance must be a valid number when provided")

        if errors:
            self._reject("add_statement_line", created_by, statement_id, _unique(errors))

        now = datetime.now(timezone.utc)
        line = BankStatementLine(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            bank_statement_id=statement_id,
            transaction_date=line_date,
            description=description,
            debit_amount=debit,
            credit_amount=credit,
            reference=(reference or "").strip() or None,
            running_balance=balance
        )

        with self.storage.atomic():
            current = self._load_statement(statement_id)
            if current.status == StatementStatus.RECONCILED:
                raise StateConflictError("Statement already reconciled")
            self._save(self.lines_table, line.id, self._line_to_dict(line))
            self.audit_trail.record_change(
                created_by, AuditEventType.BANK_STATEMENT_LINE_ADDED, "bank_statement_line",
                line.id, None, self._line_to_dict(line)
            )

        logger.debug("Statement line %s added to statement %s", line.id, statement_id)
        return line

    # Matching

    def match_transaction(
        self,
        line_id: str,
        transaction_id: str,
        matched_by: Optional[str] = None
    ) -> BankStatementLine:
        """
        Match a statement line to a posted, unvoided ledger entry

        Raises:
            NotFoundError: If the line or the entry does not exist
            StateConflictError: If the line is already matched, the entry is
                voided, unposted, or matched to another line
            BusinessRuleError: On account scoping, amount or date tolerance violations
            ConcurrencyConflictError: If another process matched the line or
                the entry first; nothing is written
        """
        with self.storage.atomic():
            line = self._load_line(line_id)
            if not line:
                raise NotFoundError("Bank statement line not found")
            if line.is_matched or line.matched_transaction_id:
                raise StateConflictError("Bank statement line is already matched")

            entry = self.ledger.get_journal_entry(transaction_id)
            if not entry:
                raise NotFoundError("Ledger transaction not found or already voided")
            if entry.is_voided:
                raise StateConflictError("Ledger transaction not found or already voided")
            if not entry.is_posted:
                raise StateConflictError("Ledger transaction is not posted")

            claim = self.storage.load(self.claims_table, entry.id)
            if claim and claim['line_id'] != line.id:
                raise StateConflictError("Ledger transaction is already reconciled to another statement line")

            statement = self._load_statement(line.bank_statement_id)
            account = self.get_bank_account(statement.bank_account_id)
            if account and not self._in_scope(entry, account):
                self._refuse(line, entry, matched_by,
                             "Ledger transaction does not appear to belong to the selected bank account",
                             {"bank_account_id": account.id})

            self.check_tolerances(line, entry, matched_by)

            if claim is None:
                now = datetime.now(timezone.utc)
                claimed = self.storage.insert_if_absent(
                    self.claims_table,
                    entry.id,
                    self._claim_to_dict(MatchClaim(
                        id=entry.id,
                        created_at=now,
                        updated_at=now,
                        line_id=line.id,
                        bank_statement_id=line.bank_statement_id,
                        claimed_by=matched_by
                    ))
                )
                if not claimed:
                    raise ConcurrencyConflictError(
                        "Ledger transaction was matched by another process. Reload and retry."
                    )

            before = self._line_to_dict(line)
            now = datetime.now(timezone.utc)
            updated = self.storage.update_where(
                self.lines_table,
                line.id,
                {"is_matched": False, "matched_transaction_id": None},
                {
                    "is_matched": True,
                    "matched_transaction_id": entry.id,
                    "matched_by": matched_by,
                    "matched_at": now.isoformat(),
                    "updated_at": now.isoformat()
                }
            )
            if updated != 1:
                raise ConcurrencyConflictError("Statement line was updated by another process. Reload and retry.")

            line = self._load_line(line.id)
            self._refresh_status(statement.id)
            self.audit_trail.record_change(
                matched_by, AuditEventType.BANK_TRANSACTION_MATCHED, "bank_statement_line",
                line.id, before, self._line_to_dict(line)
            )

        log_action(logger, "info", f"Statement line matched to {entry.reference}", user_id=matched_by,
                   action="match_transaction", resource=line.id,
                   extra={"journal_entry_id": entry.id, "bank_statement_id": line.bank_statement_id})
        return line

    def check_tolerances(
        self,
        line: BankStatementLine,
        entry: JournalEntry,
        actor: Optional[str] = None
    ) -> None:
        """
        Raise BusinessRuleError if the line and entry disagree beyond tolerance

        Amounts compare |credit - debit| of the line with the entry's
        debit-side total; dates compare whole days in either direction.
        """
        statement_amount = abs(line.net_amount)
        variance = abs(statement_amount - abs(entry.amount)).to_minor_units()
        if variance > self.amount_tolerance_minor_units:
            self._refuse(line, entry, actor,
                         f"Amount mismatch exceeds tolerance ({self.amount_tolerance_minor_units} cents)",
                         {"statement_amount": str(statement_amount.amount),
                          "ledger_amount": str(entry.amount.amount),
                          "variance_minor_units": variance,
                          "tolerance_minor_units": self.amount_tolerance_minor_units})

        days_apart = abs((line.transaction_date - entry.entry_date).days)
        if days_apart > self.date_tolerance_days:
            self._refuse(line, entry, actor,
                         f"Date mismatch exceeds {self.date_tolerance_days}-day tolerance",
                         {"statement_date": line.transaction_date.isoformat(),
                          "ledger_date": entry.entry_date.isoformat(),
                          "days_apart": days_apart,
                          "tolerance_days": self.date_tolerance_days})

    def unmatch_transaction(self, line_id: str, actor: Optional[str] = None) -> BankStatementLine:
        """
        Clear a line's match and release the entry's claim

        Idempotent: unmatching an unmatched line succeeds without changes.

        Raises:
            NotFoundError: If the line does not exist
            StateConflictError: If the line's statement is already reconciled
        """
        with self.storage.atomic():
            line = self._load_line(line_id)
            if not line:
                raise NotFoundError("Bank statement line not found")
            if not line.is_matched and not line.matched_transaction_id:
                return line

            statement = self._load_statement(line.bank_statement_id)
            if statement.status == StatementStatus.RECONCILED:
                raise StateConflictError("Statement already reconciled")

            before = self._line_to_dict(line)
            claim = self.storage.load(self.claims_table, line.matched_transaction_id)
            if claim and claim['line_id'] == line.id:
                self.storage.delete(self.claims_table, line.matched_transaction_id)

            line.is_matched = False
            line.matched_transaction_id = None
            line.matched_by = None
            line.matched_at = None
            line.updated_at = datetime.now(timezone.utc)
            self._save(self.lines_table, line.id, self._line_to_dict(line))
            self._refresh_status(statement.id)

            self.audit_trail.record_change(
                actor, AuditEventType.BANK_TRANSACTION_UNMATCHED, "bank_statement_line",
                line.id, before, self._line_to_dict(line)
            )

        log_action(logger, "info", "Statement line unmatched", user_id=actor,
                   action="unmatch_transaction", resource=line.id,
                   extra={"journal_entry_id": before['matched_transaction_id']})
        return line

    def get_unmatched_ledger_transactions(
        self,
        start_date: Union[str, date],
        end_date: Union[str, date],
        bank_account_id: Optional[str] = None
    ) -> List[JournalEntry]:
        """
        Effective entries dated in the window that no statement line claims,
        newest first

        With a bank account, bank-mediated entries are kept only if they
        mention the account's number or name.
        """
        errors: List[str] = []
        start = _parse_iso_date(start_date)
        end = _parse_iso_date(end_date)
        if start is None:
            errors.append("Start date must be in YYYY-MM-DD format")
        if end is None:
            errors.append("End date must be in YYYY-MM-DD format")
        if start and end and start > end:
            errors.append("Start date cannot be after end date")
        if errors:
            raise ValidationError(errors)

        claimed = {data['id'] for data in self.storage.load_all(self.claims_table)}
        entries = [
            entry
            for entry in self.ledger.list_entries(start_date=start, end_date=end,
                                                  posted_only=True, include_voided=False)
            if entry.id not in claimed
        ]

        account = self.get_bank_account(bank_account_id) if bank_account_id else None
        if account:
            entries = [entry for entry in entries if self._in_scope(entry, account)]

        entries.sort(key=lambda e: (e.entry_date, e.created_at), reverse=True)
        return entries

    def mark_statement_reconciled(self, statement_id: str, actor: Optional[str] = None) -> BankStatement:
        """
        Close a fully matched statement whose movements explain its closing balance

        Copies the closing balance into the bank account's current balance.

        Raises:
            NotFoundError: If the statement does not exist
            StateConflictError: If the statement is already reconciled
            BusinessRuleError: If there are no lines, some are unmatched, or
                the closing balance is off by more than the tolerance
            ConcurrencyConflictError: If the statement changed concurrently
        """
        with self.storage.atomic():
            statement = self._load_statement(statement_id)
            if not statement:
                raise NotFoundError("Bank statement not found")
            if statement.status == StatementStatus.RECONCILED:
                raise StateConflictError("Statement already reconciled")

            lines = self._lines_for(statement.id)
            if not lines:
                raise BusinessRuleError("Statement has no lines to reconcile", {"statement_id": statement_id})

            matched = sum(1 for line in lines if line.is_matched)
            if matched != len(lines):
                raise BusinessRuleError("All statement lines must be matched before reconciliation", {
                    "total_lines": len(lines),
                    "matched_lines": matched
                })

            calculated = statement.opening_balance
            for line in lines:
                calculated = calculated + line.net_amount
            variance = statement.closing_balance - calculated
            if abs(variance).to_minor_units() > self.closing_balance_tolerance_minor_units:
                log_action(logger, "warning", "Statement closing balance mismatch", user_id=actor,
                           action="mark_statement_reconciled", resource=statement_id,
                           extra={"variance": str(variance.amount)})
                raise BusinessRuleError("Closing balance does not match statement movements", {
                    "calculated_closing_balance": str(calculated.amount),
                    "declared_closing_balance": str(statement.closing_balance.amount),
                    "variance": str(variance.amount)
                })

            before = self._statement_to_dict(statement)
            now = datetime.now(timezone.utc)
            updated = self.storage.update_where(
                self.statements_table,
                statement.id,
                {"status": statement.status.value},
                {
                    "status": StatementStatus.RECONCILED.value,
                    "reconciled_by": actor,
                    "reconciled_at": now.isoformat(),
                    "updated_at": now.isoformat()
                }
            )
            if updated != 1:
                raise ConcurrencyConflictError("Statement was updated by another process. Reload and retry.")

            account = self.get_bank_account(statement.bank_account_id)
            if account:
                account.current_balance = statement.closing_balance
                account.updated_at = now
                self._save(self.accounts_table, account.id, self._bank_account_to_dict(account))

            statement = self._load_statement(statement.id)
            self.audit_trail.record_change(
                actor, AuditEventType.BANK_STATEMENT_RECONCILED, "bank_statement",
                statement.id, before, self._statement_to_dict(statement)
            )

        log_action(logger, "info", "Bank statement reconciled", user_id=actor,
                   action="mark_statement_reconciled", resource=statement.id,
                   extra={"closing_balance": str(statement.closing_balance.amount),
                          "line_count": len(lines)})
        return statement

    # Internals

    def _in_scope(self, entry: JournalEntry, account: BankAccount) -> bool:
        """Bank-mediated entries must mention the account's number or name"""
        method = entry.payment_method.value if entry.payment_method else None
        if method not in self.bank_payment_methods:
            return True
        haystack = f"{entry.payment_reference or ''} {entry.description or ''}".lower()
        return account.account_number.lower() in haystack or account.account_name.lower() in haystack

    def _refresh_status(self, statement_id: str) -> None:
        """PENDING with no matched lines, PARTIAL with some; RECONCILED is left alone"""
        statement = self._load_statement(statement_id)
        if statement.status == StatementStatus.RECONCILED:
            return
        matched = any(line.is_matched for line in self._lines_for(statement_id))
        status = StatementStatus.PARTIAL if matched else StatementStatus.PENDING
        if status != statement.status:
            statement.status = status
            statement.updated_at = datetime.now(timezone.utc)
            self._save_statement(statement)

    def _refuse(
        self,
        line: BankStatementLine,
        entry: JournalEntry,
        actor: Optional[str],
        message: str,
        details: Dict[str, Any]
    ) -> None:
        log_action(logger, "warning", message, user_id=actor, action="match_transaction",
                   resource=line.id, extra={"journal_entry_id": entry.id, **details})
        raise BusinessRuleError(message, details)

    def _reject(self, action: str, actor: Optional[str], resource: Optional[str], errors: List[str]) -> None:
        log_action(logger, "warning", f"{action} rejected", user_id=actor, action=action,
                   resource=resource, extra={"errors": errors})
        raise ValidationError(errors)

    def _amount(self, value: Any, message: str, errors: List[str]) -> Optional[Money]:
        if value is None or value == "":
            return Money.zero(self.currency)
        try:
            return Money(parse_decimal(value), self.currency)
        except ValueError:
            errors.append(message)
            return None

    @staticmethod
    def _line_amount(value: Any) -> Decimal:
        if value is None or value == "":
            return Decimal('0')
        return parse_decimal(value)

    def _lines_for(self, statement_id: str) -> List[BankStatementLine]:
        lines = [
            self._line_from_dict(data)
            for data in self.storage.find(self.lines_table, {"bank_statement_id": statement_id})
        ]
        lines.sort(key=lambda line: (line.transaction_date, line.created_at))
        return lines

    def _load_line(self, line_id: str) -> Optional[BankStatementLine]:
        data = self.storage.load(self.lines_table, line_id)
        if data:
            return self._line_from_dict(data)
        return None

    def _load_statement(self, statement_id: str) -> Optional[BankStatement]:
        data = self.storage.load(self.statements_table, statement_id)
        if data:
            return self._statement_from_dict(data)
        return None

    def _save_statement(self, statement: BankStatement) -> None:
        self._save(self.statements_table, statement.id, self._statement_to_dict(statement))

    def _save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        self.storage.save(table, record_id, data)

    def _money(self, value: Optional[str]) -> Optional[Money]:
        if value is None:
            return None
        return Money(Decimal(value), self.currency)

    def _bank_account_to_dict(self, account: BankAccount) -> Dict:
        result = account.to_dict()
        result['currency'] = account.currency.code
        result['opening_balance'] = str(account.opening_balance.amount)
        result['current_balance'] = str(account.current_balance.amount)
        return result

    def _bank_account_from_dict(self, data: Dict) -> BankAccount:
        return BankAccount(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            account_name=data['account_name'],
            account_number=data['account_number'],
            bank_name=data['bank_name'],
            currency=Currency[data['currency']],
            opening_balance=self._money(data['opening_balance']),
            current_balance=self._money(data['current_balance']),
            branch=data.get('branch'),
            swift_code=data.get('swift_code'),
            is_active=data.get('is_active', True)
        )

    def _statement_to_dict(self, statement: BankStatement) -> Dict:
        result = statement.to_dict()
        result['opening_balance'] = str(statement.opening_balance.amount)
        result['closing_balance'] = str(statement.closing_balance.amount)
        return result

    def _statement_from_dict(self, data: Dict) -> BankStatement:
        return BankStatement(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            bank_account_id=data['bank_account_id'],
            statement_date=date.fromisoformat(data['statement_date']),
            opening_balance=self._money(data['opening_balance']),
            closing_balance=self._money(data['closing_balance']),
            status=StatementStatus(data['status']),
            statement_reference=data.get('statement_reference'),
            amends_statement_id=data.get('amends_statement_id'),
            reconciled_by=data.get('reconciled_by'),
            reconciled_at=datetime.fromisoformat(data['reconciled_at']) if data.get('reconciled_at') else None
        )

    def _line_to_dict(self, line: BankStatementLine) -> Dict:
        result = line.to_dict()
        result['debit_amount'] = str(line.debit_amount.amount)
        result['credit_amount'] = str(line.credit_amount.amount)
        result['running_balance'] = str(line.running_balance.amount) if line.running_balance else None
        return result

    def _line_from_dict(self, data: Dict) -> BankStatementLine:
        return BankStatementLine(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            bank_statement_id=data['bank_statement_id'],
            transaction_date=date.fromisoformat(data['transaction_date']),
            description=data['description'],
            debit_amount=self._money(data['debit_amount']),
            credit_amount=self._money(data['credit_amount']),
            reference=data.get('reference'),
            running_balance=self._money(data.get('running_balance')),
            is_matched=data.get('is_matched', False),
            matched_transaction_id=data.get('matched_transaction_id'),
            matched_by=data.get('matched_by'),
            matched_at=datetime.fromisoformat(data['matched_at']) if data.get('matched_at') else None
        )

    def _claim_to_dict(self, claim: MatchClaim) -> Dict:
        return claim.to_dict()
