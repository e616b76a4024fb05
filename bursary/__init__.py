"""
Bursary - school finance ledger core

Double-entry ledger, approval rules and workflow, and bank reconciliation.
"""

__version__ = "1.0.0"

from .currency import Money, Currency
from .errors import (
    FinanceError, ValidationError, NotFoundError, StateConflictError,
    BusinessRuleError, ConcurrencyConflictError
)
from .storage import InMemoryStorage, SQLiteStorage, create_storage
from .audit import AuditTrail, AuditEventType
from .accounts import ChartOfAccounts, Account, AccountType, NormalBalance
from .ledger import (
    GeneralLedger, JournalEntry, JournalEntryLine, EntryType, PaymentMethod, ApprovalStatus
)
from .approval_rules import ApprovalRuleEngine, ApprovalRule
from .approval_workflow import ApprovalWorkflow, ApprovalRequest, ApprovalAction
from .reconciliation import BankReconciliation, StatementStatus
from .operations import FinanceOperations, OperationResult
from .config import BursaryConfig, load_config
from .system import BursarySystem

__all__ = [
    "Money", "Currency",
    "FinanceError", "ValidationError", "NotFoundError", "StateConflictError",
    "BusinessRuleError", "ConcurrencyConflictError",
    "InMemoryStorage", "SQLiteStorage", "create_storage",
    "AuditTrail", "AuditEventType",
    "ChartOfAccounts", "Account", "AccountType", "NormalBalance",
    "GeneralLedger", "JournalEntry", "JournalEntryLine", "EntryType", "PaymentMethod", "ApprovalStatus",
    "ApprovalRuleEngine", "ApprovalRule",
    "ApprovalWorkflow", "ApprovalRequest", "ApprovalAction",
    "BankReconciliation", "StatementStatus",
    "FinanceOperations", "OperationResult",
    "BursaryConfig", "load_config",
    "BursarySystem",
]
