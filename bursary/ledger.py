"""
Double-Entry Ledger Engine

Core bookkeeping engine for the school ledger. Journal entries are created
unposted, posted only when debits equal credits, and voided rather than
deleted. Balances are derived from effective (posted and not voided)
entries, never stored.
"""

from decimal import Decimal
from datetime import datetime, date, timezone
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set
from enum import Enum
import secrets
import time
import uuid

from .currency import Money, Currency
from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .accounts import ChartOfAccounts, Account, AccountType
from .errors import (
    ValidationError, NotFoundError, StateConflictError, BusinessRuleError
)
from .logging_config import get_logger, log_action

logger = get_logger("bursary.ledger")


class EntryType(Enum):
    """Kinds of financial action that produce a journal entry"""
    FEE_PAYMENT = "FEE_PAYMENT"
    EXPENSE = "EXPENSE"
    SALARY = "SALARY"
    REFUND = "REFUND"
    OPENING_BALANCE = "OPENING_BALANCE"
    ADJUSTMENT = "ADJUSTMENT"
    ASSET_PURCHASE = "ASSET_PURCHASE"
    ASSET_DISPOSAL = "ASSET_DISPOSAL"
    LOAN_DISBURSEMENT = "LOAN_DISBURSEMENT"
    LOAN_REPAYMENT = "LOAN_REPAYMENT"


class PaymentMethod(Enum):
    CASH = "CASH"
    BANK_TRANSFER = "BANK_TRANSFER"
    CHEQUE = "CHEQUE"
    MPESA = "MPESA"
    OTHER = "OTHER"


class ApprovalStatus(Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


@dataclass
class JournalEntryLine:
    """
    Individual line item in a journal entry
    Each line affects one account with either a debit or credit
    """
    account_id: str
    description: str
    debit_amount: Money
    credit_amount: Money

    def __post_init__(self):
        """Validate that exactly one of debit or credit is strictly positive"""
        if self.debit_amount.currency != self.credit_amount.currency:
            raise ValueError("Debit and credit amounts must use same currency")

        if self.debit_amount.is_negative() or self.credit_amount.is_negative():
            raise ValueError("Journal entry line amounts cannot be negative")

        debit_zero = self.debit_amount.is_zero()
        credit_zero = self.credit_amount.is_zero()

        if debit_zero and credit_zero:
            raise ValueError("Journal entry line must have either debit or credit amount")

        if not debit_zero and not credit_zero:
            raise ValueError("Journal entry line cannot have both debit and credit amounts")

    @classmethod
    def debit(cls, account_id: str, amount: Money, description: str = "") -> 'JournalEntryLine':
        return cls(account_id, description, amount, Money.zero(amount.currency))

    @classmethod
    def credit(cls, account_id: str, amount: Money, description: str = "") -> 'JournalEntryLine':
        return cls(account_id, description, Money.zero(amount.currency), amount)

    @property
    def currency(self) -> Currency:
        return self.debit_amount.currency

    @property
    def is_debit(self) -> bool:
        return not self.debit_amount.is_zero()


@dataclass
class JournalEntry(StorageRecord):
    """
    Journal entry and its owned lines

    Counted in balances only while effective: posted and not voided.
    """
    reference: str
    entry_date: date
    entry_type: EntryType
    description: str
    currency: Currency
    lines: List[JournalEntryLine] = field(default_factory=list)
    created_by: Optional[str] = None
    student_id: Optional[str] = None
    staff_id: Optional[str] = None
    term_id: Optional[str] = None
    payment_method: Optional[PaymentMethod] = None
    payment_reference: Optional[str] = None
    requires_approval: bool = False
    is_posted: bool = False
    posted_by: Optional[str] = None
    posted_at: Optional[datetime] = None
    is_voided: bool = False
    voided_reason: Optional[str] = None
    voided_by: Optional[str] = None
    voided_at: Optional[datetime] = None
    approval_status: ApprovalStatus = ApprovalStatus.PENDING
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None

    @property
    def total_debits(self) -> Money:
        total = Money.zero(self.currency)
        for line in self.lines:
            total = total + line.debit_amount
        return total

    @property
    def total_credits(self) -> Money:
        total = Money.zero(self.currency)
        for line in self.lines:
            total = total + line.credit_amount
        return total

    @property
    def amount(self) -> Money:
        """Debit-side total"""
        return self.total_debits

    @property
    def is_effective(self) -> bool:
        return self.is_posted and not self.is_voided

    def get_affected_accounts(self) -> Set[str]:
        return {line.account_id for line in self.lines}


@dataclass
class TrialBalanceRow:
    account_id: str
    code: str
    name: str
    account_type: AccountType
    debit_total: Money
    credit_total: Money
    balance: Money


@dataclass
class TrialBalance:
    as_of: Optional[date]
    rows: List[TrialBalanceRow]
    total_debits: Money
    total_credits: Money

    @property
    def is_balanced(self) -> bool:
        return self.total_debits == self.total_credits


def generate_reference(entry_type: EntryType) -> str:
    """PREFIX-<epoch ms>-<8 hex nonce>, e.g. FEE-1718000000000-1a2b3c4d"""
    prefix = entry_type.value[:3].upper()
    return f"{prefix}-{int(time.time() * 1000)}-{secrets.token_hex(4)}"


class GeneralLedger:
    """
    General ledger that manages journal entries and calculates account balances
    Balances are derived from journal entries, never stored separately
    """

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: AuditTrail,
        chart: ChartOfAccounts,
        currency: Currency = Currency.KES
    ):
        self.storage = storage
        self.audit_trail = audit_trail
        self.chart = chart
        self.currency = currency
        self.table_name = "journal_entries"
        self.references_table = "journal_entry_references"

    def create_journal_entry(
        self,
        entry_type: EntryType,
        description: str,
        lines: List[JournalEntryLine],
        entry_date: Optional[date] = None,
        reference: Optional[str] = None,
        created_by: Optional[str] = None,
        student_id: Optional[str] = None,
        staff_id: Optional[str] = None,
        term_id: Optional[str] = None,
        payment_method: Optional[PaymentMethod] = None,
        payment_reference: Optional[str] = None
    ) -> JournalEntry:
        """
        Store a new unposted journal entry with approval_status PENDING

        Balance is not checked here; it is checked when the entry is posted
        or submitted for approval.

        Raises:
            ValidationError: With every problem found (missing description,
                unknown or inactive accounts, foreign-currency lines,
                duplicate reference)
        """
        errors: List[str] = []
        description = (description or "").strip()
        if not description:
            errors.append("Description is required")
        if not lines:
            errors.append("Journal entry must have at least one line")

        for index, line in enumerate(lines, start=1):
            if line.currency != self.currency:
                errors.append(
                    f"Line {index}: currency {line.currency.code} does not match "
                    f"ledger currency {self.currency.code}"
                )
            errors.extend(f"Line {index}: {problem}" for problem in self._account_problems(line.account_id))

        reference = (reference or "").strip() or generate_reference(entry_type)

        with self.storage.atomic():
            if errors:
                self._reject("create_journal_entry", created_by, reference, errors)

            entry_id = str(uuid.uuid4())
            if not self.storage.insert_if_absent(self.references_table, reference,
                                                 {"reference": reference, "entry_id": entry_id}):
                self._reject("create_journal_entry", created_by, reference,
                             [f"Journal entry reference {reference} already exists"])

            now = datetime.now(timezone.utc)
            entry = JournalEntry(
                id=entry_id,
                created_at=now,
                updated_at=now,
                reference=reference,
                entry_date=entry_date or date.today(),
                entry_type=entry_type,
                description=description,
                currency=self.currency,
                lines=list(lines),
                created_by=created_by,
                student_id=student_id,
                staff_id=staff_id,
                term_id=term_id,
                payment_method=payment_method,
                payment_reference=payment_reference
            )
            self._save_entry(entry)

            self.audit_trail.record_change(
                created_by, AuditEventType.JOURNAL_ENTRY_CREATED, "journal_entry",
                entry.id, None, self._entry_to_dict(entry)
            )

        log_action(logger, "info", f"Journal entry {reference} created",
                   user_id=created_by, action="create_journal_entry", resource=entry.id,
                   extra={"entry_type": entry_type.value, "amount": str(entry.amount.amount),
                          "line_count": len(entry.lines)})
        return entry

    def validate_for_posting(self, entry: JournalEntry) -> List[str]:
        """Every reason the entry cannot be posted; empty when it can"""
        errors: List[str] = []

        if len(entry.lines) < 2:
            errors.append("Journal entry must have at least two lines")

        debits = entry.total_debits
        credits = entry.total_credits
        if debits != credits:
            errors.append(
                f"Debits ({debits.to_string()}) must equal credits ({credits.to_string()}). "
                f"Difference: {abs(debits - credits).to_string()}"
            )

        for index, line in enumerate(entry.lines, start=1):
            if line.currency != self.currency:
                errors.append(f"Line {index}: currency {line.currency.code} does not match "
                              f"ledger currency {self.currency.code}")
            errors.extend(f"Line {index}: {problem}" for problem in self._account_problems(line.account_id))

        return errors

    def ensure_postable(self, entry: JournalEntry) -> None:
        """
        Raise if the entry cannot be posted

        Raises:
            BusinessRuleError: If debits and credits differ (details carry the totals)
            ValidationError: For every other problem
        """
        errors = self.validate_for_posting(entry)
        if not errors:
            return

        debits = entry.total_debits
        credits = entry.total_credits
        if debits != credits:
            log_action(logger, "warning", f"Journal entry {entry.reference} is unbalanced",
                       action="post_journal_entry", resource=entry.id,
                       extra={"errors": errors})
            raise BusinessRuleError("; ".join(errors), {
                "total_debits": str(debits.amount),
                "total_credits": str(credits.amount),
                "difference": str(abs(debits - credits).amount),
                "errors": errors
            })
        self._reject("post_journal_entry", None, entry.id, errors)

    def post_journal_entry(self, entry_id: str, posted_by: Optional[str] = None) -> JournalEntry:
        """
        Post a journal entry

        Raises:
            NotFoundError: If the entry does not exist
            StateConflictError: If already posted, voided, or awaiting approval
            BusinessRuleError: If debits and credits differ
            ValidationError: For structural problems (lines, accounts)
        """
        with self.storage.atomic():
            entry = self._require_entry(entry_id)

            if entry.is_voided:
                raise StateConflictError(f"Journal entry {entry.reference} is voided")
            if entry.is_posted:
                raise StateConflictError(f"Journal entry {entry.reference} is already posted")
            if entry.requires_approval and entry.approval_status != ApprovalStatus.APPROVED:
                raise StateConflictError(
                    f"Journal entry {entry.reference} requires approval before posting"
                )

            self.ensure_postable(entry)

            before = self._entry_to_dict(entry)
            now = datetime.now(timezone.utc)
            entry.is_posted = True
            entry.posted_by = posted_by
            entry.posted_at = now
            entry.updated_at = now
            self._save_entry(entry)

            self.audit_trail.record_change(
                posted_by, AuditEventType.JOURNAL_ENTRY_POSTED, "journal_entry",
                entry.id, before, self._entry_to_dict(entry)
            )

        log_action(logger, "info", f"Journal entry {entry.reference} posted",
                   user_id=posted_by, action="post_journal_entry", resource=entry.id,
                   extra={"amount": str(entry.amount.amount)})
        return entry

    def void_journal_entry(self, entry_id: str, reason: str, voided_by: Optional[str] = None) -> JournalEntry:
        """
        Void a journal entry; irreversible, the lines are kept

        Raises:
            ValidationError: If no reason is given
            NotFoundError: If the entry does not exist
            StateConflictError: If the entry is already voided
        """
        reason = (reason or "").strip()
        if not reason:
            self._reject("void_journal_entry", voided_by, entry_id, ["Void reason is required"])

        with self.storage.atomic():
            entry = self._require_entry(entry_id)
            if entry.is_voided:
                raise StateConflictError(f"Journal entry {entry.reference} is already voided")

            before = self._entry_to_dict(entry)
            now = datetime.now(timezone.utc)
            entry.is_voided = True
            entry.voided_reason = reason
            entry.voided_by = voided_by
            entry.voided_at = now
            entry.updated_at = now
            self._save_entry(entry)

            self.audit_trail.record_change(
                voided_by, AuditEventType.JOURNAL_ENTRY_VOIDED, "journal_entry",
                entry.id, before, self._entry_to_dict(entry)
            )

        log_action(logger, "info", f"Journal entry {entry.reference} voided",
                   user_id=voided_by, action="void_journal_entry", resource=entry.id,
                   extra={"reason": reason})
        return entry

    def set_approval_status(
        self,
        entry_id: str,
        status: ApprovalStatus,
        actor: Optional[str] = None,
        requires_approval: Optional[bool] = None
    ) -> JournalEntry:
        """Record an approval decision (or the need for one) on the entry"""
        with self.storage.atomic():
            entry = self._require_entry(entry_id)
            before = self._entry_to_dict(entry)

            now = datetime.now(timezone.utc)
            entry.approval_status = status
            if requires_approval is not None:
                entry.requires_approval = requires_approval
            if status == ApprovalStatus.APPROVED:
                entry.approved_by = actor
                entry.approved_at = now
            entry.updated_at = now
            self._save_entry(entry)

            event = {
                ApprovalStatus.APPROVED: AuditEventType.APPROVAL_GRANTED,
                ApprovalStatus.REJECTED: AuditEventType.APPROVAL_REJECTED,
                ApprovalStatus.PENDING: AuditEventType.APPROVAL_REQUESTED,
            }[status]
            self.audit_trail.record_change(
                actor, event, "journal_entry", entry.id, before, self._entry_to_dict(entry)
            )
        return entry

    def get_account_balance(self, account_id: str, as_of: Optional[date] = None) -> Money:
        """
        Signed balance of an account over effective entries dated on or before ``as_of``

        DEBIT-normal accounts report debit minus credit, CREDIT-normal
        accounts credit minus debit.
        """
        account = self.chart.get_account(account_id)
        if not account:
            raise NotFoundError(f"Account {account_id} not found")

        debits, credits = self._account_totals(self._effective_entries(as_of)).get(
            account_id, (Money.zero(self.currency), Money.zero(self.currency))
        )
        return self._signed(account, debits, credits)

    def get_trial_balance(self, as_of: Optional[date] = None) -> TrialBalance:
        """Per-account debit and credit totals with grand totals"""
        totals = self._account_totals(self._effective_entries(as_of))
        zero = Money.zero(self.currency)

        rows: List[TrialBalanceRow] = []
        total_debits = zero
        total_credits = zero
        for account in self.chart.list_accounts(active_only=False):
            debits, credits = totals.get(account.id, (zero, zero))
            if debits.is_zero() and credits.is_zero():
                continue
            rows.append(TrialBalanceRow(
                account_id=account.id,
                code=account.code,
                name=account.name,
                account_type=account.account_type,
                debit_total=debits,
                credit_total=credits,
                balance=self._signed(account, debits, credits)
            ))
            total_debits = total_debits + debits
            total_credits = total_credits + credits

        return TrialBalance(as_of=as_of, rows=rows, total_debits=total_debits, total_credits=total_credits)

    def get_journal_entry(self, entry_id: str) -> Optional[JournalEntry]:
        """Get a journal entry by ID"""
        return self._load_entry(entry_id)

    def get_entry_by_reference(self, reference: str) -> Optional[JournalEntry]:
        entries = self.storage.find(self.table_name, {"reference": reference})
        if entries:
            return self._entry_from_dict(entries[0])
        return None

    def list_entries(
        self,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        posted_only: bool = False,
        include_voided: bool = True
    ) -> List[JournalEntry]:
        """Entries in the date window, oldest first"""
        entries = [self._entry_from_dict(data) for data in self.storage.load_all(self.table_name)]
        if start_date:
            entries = [e for e in entries if e.entry_date >= start_date]
        if end_date:
            entries = [e for e in entries if e.entry_date <= end_date]
        if posted_only:
            entries = [e for e in entries if e.is_posted]
        if not include_voided:
            entries = [e for e in entries if not e.is_voided]
        entries.sort(key=lambda e: (e.entry_date, e.created_at))
        return entries

    def _effective_entries(self, as_of: Optional[date]) -> List[JournalEntry]:
        return self.list_entries(end_date=as_of, posted_only=True, include_voided=False)

    def _account_totals(self, entries: List[JournalEntry]) -> Dict[str, tuple]:
        totals: Dict[str, tuple] = {}
        zero = Money.zero(self.currency)
        for entry in entries:
            for line in entry.lines:
                debits, credits = totals.get(line.account_id, (zero, zero))
                totals[line.account_id] = (debits + line.debit_amount, credits + line.credit_amount)
        return totals

    @staticmethod
    def _signed(account: Account, debits: Money, credits: Money) -> Money:
        if account.is_debit_normal:
            return debits - credits
        return credits - debits

    def _account_problems(self, account_id: str) -> List[str]:
        account = self.chart.get_account(account_id)
        if not account:
            return [f"Account {account_id} not found"]
        if not account.is_active:
            return [f"Account {account.code} is inactive"]
        return []

    def _reject(self, action: str, actor: Optional[str], resource: Optional[str], errors: List[str]) -> None:
        log_action(logger, "warning", f"{action} rejected", user_id=actor,
                   action=action, resource=resource, extra={"errors": errors})
        raise ValidationError(errors)

    def _require_entry(self, entry_id: str) -> JournalEntry:
        entry = self._load_entry(entry_id)
        if not entry:
            raise NotFoundError(f"Journal entry {entry_id} not found")
        return entry

    def _save_entry(self, entry: JournalEntry) -> None:
        """Save journal entry to storage"""
        self.storage.save(self.table_name, entry.id, self._entry_to_dict(entry))

    def _load_entry(self, entry_id: str) -> Optional[JournalEntry]:
        """Load journal entry from storage"""
        entry_dict = self.storage.load(self.table_name, entry_id)
        if entry_dict:
            return self._entry_from_dict(entry_dict)
        return None

    def _entry_to_dict(self, entry: JournalEntry) -> Dict:
        """Convert JournalEntry to dictionary for storage"""
        result = entry.to_dict()
        result['entry_type'] = entry.entry_type.value
        result['currency'] = entry.currency.code
        result['approval_status'] = entry.approval_status.value
        result['payment_method'] = entry.payment_method.value if entry.payment_method else None
        result['lines'] = [
            {
                'account_id': line.account_id,
                'description': line.description,
                'debit_amount': str(line.debit_amount.amount),
                'credit_amount': str(line.credit_amount.amount),
                'currency': line.currency.code
            }
            for line in entry.lines
        ]
        return result

    def _entry_from_dict(self, data: Dict) -> JournalEntry:
        """Convert dictionary to JournalEntry"""
        lines = []
        for line_data in data['lines']:
            currency = Currency[line_data['currency']]
            lines.append(JournalEntryLine(
                account_id=line_data['account_id'],
                description=line_data['description'],
                debit_amount=Money(Decimal(line_data['debit_amount']), currency),
                credit_amount=Money(Decimal(line_data['credit_amount']), currency)
            ))

        def _timestamp(key: str) -> Optional[datetime]:
            return datetime.fromisoformat(data[key]) if data.get(key) else None

        return JournalEntry(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            reference=data['reference'],
            entry_date=date.fromisoformat(data['entry_date']),
            entry_type=EntryType(data['entry_type']),
            description=data['description'],
            currency=Currency[data['currency']],
            lines=lines,
            created_by=data.get('created_by'),
            student_id=data.get('student_id'),
            staff_id=data.get('staff_id'),
            term_id=data.get('term_id'),
            payment_method=PaymentMethod(data['payment_method']) if data.get('payment_method') else None,
            payment_reference=data.get('payment_reference'),
            requires_approval=data.get('requires_approval', False),
            is_posted=data.get('is_posted', False),
            posted_by=data.get('posted_by'),
            posted_at=_timestamp('posted_at'),
            is_voided=data.get('is_voided', False),
            voided_reason=data.get('voided_reason'),
            voided_by=data.get('voided_by'),
            voided_at=_timestamp('voided_at'),
            approval_status=ApprovalStatus(data.get('approval_status', 'PENDING')),
            approved_by=data.get('approved_by'),
            approved_at=_timestamp('approved_at')
        )
