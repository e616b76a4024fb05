"""
Chart of Accounts

GL accounts the school ledger posts against. Each account has a type and a
normal balance side; balances are never stored here, they are derived from
posted journal entries by the ledger.
"""

from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional, Union
from enum import Enum
import uuid

from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .errors import ValidationError, NotFoundError, BusinessRuleError
from .logging_config import get_logger, log_action

logger = get_logger("bursary.accounts")


class AccountType(Enum):
    """Standard accounting account types"""
    ASSET = "ASSET"           # Debit normal balance
    LIABILITY = "LIABILITY"   # Credit normal balance
    EQUITY = "EQUITY"         # Credit normal balance
    REVENUE = "REVENUE"       # Credit normal balance
    EXPENSE = "EXPENSE"       # Debit normal balance


class NormalBalance(Enum):
    DEBIT = "DEBIT"
    CREDIT = "CREDIT"


def default_normal_balance(account_type: AccountType) -> NormalBalance:
    """Assets and expenses are debit-normal, everything else credit-normal"""
    if account_type in (AccountType.ASSET, AccountType.EXPENSE):
        return NormalBalance.DEBIT
    return NormalBalance.CREDIT


@dataclass
class Account(StorageRecord):
    """
    General ledger account

    Contra accounts (e.g. accumulated depreciation) keep their type but
    override the normal balance side.
    """
    code: str
    name: str
    account_type: AccountType
    normal_balance: NormalBalance
    parent_id: Optional[str] = None
    description: Optional[str] = None
    is_system_account: bool = False
    is_active: bool = True

    @property
    def is_debit_normal(self) -> bool:
        return self.normal_balance == NormalBalance.DEBIT


class ChartOfAccounts:
    """
    Manages GL account lifecycle
    """

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail):
        self.storage = storage
        self.audit_trail = audit_trail
        self.accounts_table = "gl_accounts"
        self.entries_table = "journal_entries"

    def create_account(
        self,
        code: str,
        name: str,
        account_type: Union[AccountType, str],
        normal_balance: Optional[Union[NormalBalance, str]] = None,
        parent_id: Optional[str] = None,
        description: Optional[str] = None,
        is_system_account: bool = False,
        created_by: Optional[str] = None
    ) -> Account:
        """
        Create a GL account

        Args:
            code: Unique account code, e.g. "1010"
            name: Display name
            account_type: ASSET, LIABILITY, EQUITY, REVENUE or EXPENSE
            normal_balance: Override for contra accounts; defaults from the type
            parent_id: Optional parent account for grouping
            description: Free text
            is_system_account: System accounts cannot be deleted
            created_by: Actor recorded in the audit trail

        Returns:
            Created Account

        Raises:
            ValidationError: With every problem found in the input
        """
        errors: List[str] = []
        code = (code or "").strip()
        name = (name or "").strip()

        if not code:
            errors.append("Account code is required")
        if not name:
            errors.append("Account name is required")

        resolved_type: Optional[AccountType] = None
        try:
            resolved_type = AccountType(account_type.upper() if isinstance(account_type, str) else account_type)
        except ValueError:
            errors.append(f"Invalid account type: {account_type}")

        resolved_normal: Optional[NormalBalance] = None
        if normal_balance is not None:
            try:
                resolved_normal = NormalBalance(
                    normal_balance.upper() if isinstance(normal_balance, str) else normal_balance
                )
            except ValueError:
                errors.append(f"Invalid normal balance: {normal_balance}")
        elif resolved_type is not None:
            resolved_normal = default_normal_balance(resolved_type)

        with self.storage.atomic():
            if code and self.get_account_by_code(code):
                errors.append(f"Account code {code} already exists")
            if parent_id and not self.storage.exists(self.accounts_table, parent_id):
                errors.append(f"Parent account {parent_id} not found")

            if errors:
                log_action(logger, "warning", "Account creation rejected",
                           user_id=created_by, action="create_account",
                           resource=code or None, extra={"errors": errors})
                raise ValidationError(errors)

            now = datetime.now(timezone.utc)
            account = Account(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                code=code,
                name=name,
                account_type=resolved_type,
                normal_balance=resolved_normal,
                parent_id=parent_id,
                description=description,
                is_system_account=is_system_account
            )
            self._save_account(account)

            self.audit_trail.record_change(
                created_by,
                AuditEventType.ACCOUNT_CREATED,
                "gl_account",
                account.id,
                None,
                self._account_to_dict(account)
            )

        log_action(logger, "info", f"Account {code} created",
                   user_id=created_by, action="create_account", resource=account.id,
                   extra={"code": code, "account_type": resolved_type.value})
        return account

    def get_account(self, account_id: str) -> Optional[Account]:
        """Get account by ID"""
        account_dict = self.storage.load(self.accounts_table, account_id)
        if account_dict:
            return self._account_from_dict(account_dict)
        return None

    def get_account_by_code(self, code: str) -> Optional[Account]:
        """Get account by its code"""
        accounts = self.storage.find(self.accounts_table, {"code": code})
        if accounts:
            return self._account_from_dict(accounts[0])
        return None

    def list_accounts(
        self,
        account_type: Optional[AccountType] = None,
        active_only: bool = True
    ) -> List[Account]:
        """Accounts ordered by code"""
        accounts = [self._account_from_dict(data) for data in self.storage.load_all(self.accounts_table)]
        if account_type:
            accounts = [a for a in accounts if a.account_type == account_type]
        if active_only:
            accounts = [a for a in accounts if a.is_active]
        accounts.sort(key=lambda a: a.code)
        return accounts

    def deactivate_account(self, account_id: str, actor: Optional[str] = None) -> Account:
        """
        Deactivate an account so no new lines can be posted to it

        Existing entries keep counting towards its balance.
        """
        with self.storage.atomic():
            account = self.get_account(account_id)
            if not account:
                raise NotFoundError(f"Account {account_id} not found")
            if not account.is_active:
                return account

            before = self._account_to_dict(account)
            account.is_active = False
            account.updated_at = datetime.now(timezone.utc)
            self._save_account(account)

            self.audit_trail.record_change(
                actor, AuditEventType.ACCOUNT_DEACTIVATED, "gl_account",
                account.id, before, self._account_to_dict(account)
            )

        log_action(logger, "info", f"Account {account.code} deactivated",
                   user_id=actor, action="deactivate_account", resource=account.id)
        return account

    def delete_account(self, account_id: str, actor: Optional[str] = None) -> None:
        """
        Delete an account that nothing references

        Raises:
            NotFoundError: If the account does not exist
            BusinessRuleError: For system accounts, accounts with child
                accounts, and accounts referenced by any journal line
        """
        with self.storage.atomic():
            account = self.get_account(account_id)
            if not account:
                raise NotFoundError(f"Account {account_id} not found")

            if account.is_system_account:
                raise BusinessRuleError("System accounts cannot be deleted",
                                        {"account_id": account_id, "code": account.code})

            if self.storage.find(self.accounts_table, {"parent_id": account_id}):
                raise BusinessRuleError("Account has child accounts",
                                        {"account_id": account_id, "code": account.code})

            if self.is_referenced(account_id):
                raise BusinessRuleError("Account is referenced by journal entries",
                                        {"account_id": account_id, "code": account.code})

            before = self._account_to_dict(account)
            self.storage.delete(self.accounts_table, account_id)
            self.audit_trail.record_change(
                actor, AuditEventType.ACCOUNT_DELETED, "gl_account", account_id, before, None
            )

        log_action(logger, "info", f"Account {account.code} deleted",
                   user_id=actor, action="delete_account", resource=account_id)

    def is_referenced(self, account_id: str) -> bool:
        """Whether any journal line, posted or not, uses this account"""
        for entry in self.storage.load_all(self.entries_table):
            if any(line['account_id'] == account_id for line in entry.get('lines', [])):
                return True
        return False

    def _save_account(self, account: Account) -> None:
        """Save account to storage"""
        self.storage.save(self.accounts_table, account.id, self._account_to_dict(account))

    def _account_to_dict(self, account: Account) -> Dict:
        """Convert Account to dictionary for storage"""
        result = account.to_dict()
        result['account_type'] = account.account_type.value
        result['normal_balance'] = account.normal_balance.value
        return result

    def _account_from_dict(self, data: Dict) -> Account:
        """Convert dictionary to Account"""
        return Account(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            code=data['code'],
            name=data['name'],
            account_type=AccountType(data['account_type']),
            normal_balance=NormalBalance(data['normal_balance']),
            parent_id=data.get('parent_id'),
            description=data.get('description'),
            is_system_account=data.get('is_system_account', False),
            is_active=data.get('is_active', True)
        )
