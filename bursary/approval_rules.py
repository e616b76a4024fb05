"""
Approval Rule Engine

Rules decide whether a journal entry (or a request to void one) needs a
human approver before it takes effect. A rule matches when it is active and
every threshold it sets holds; unset thresholds are unconstrained.
"""

from decimal import Decimal
from datetime import datetime, date, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional, Any, Union
import uuid

from .currency import parse_decimal
from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .ledger import JournalEntry, EntryType
from .errors import ValidationError, NotFoundError
from .logging_config import get_logger, log_action

logger = get_logger("bursary.approval_rules")

# Rules with this transaction type gate voids instead of postings
VOID_TRANSACTION_TYPE = "VOID"

TRANSACTION_TYPES = [t.value for t in EntryType] + [VOID_TRANSACTION_TYPE]


@dataclass
class ApprovalRule(StorageRecord):
    """Threshold rule; amounts are in major units of the ledger currency"""
    name: str
    transaction_type: str
    required_approver_role: str
    min_amount: Optional[Decimal] = None
    max_amount: Optional[Decimal] = None
    min_age_days: Optional[int] = None
    description: Optional[str] = None
    is_active: bool = True

    def matches(self, transaction_type: str, amount: Decimal, age_days: int) -> bool:
        if not self.is_active:
            return False
        if self.transaction_type != transaction_type:
            return False
        if self.min_amount is not None and amount < self.min_amount:
            return False
        if self.max_amount is not None and amount > self.max_amount:
            return False
        if self.min_age_days is not None and age_days < self.min_age_days:
            return False
        return True


class ApprovalRuleEngine:
    """Stores approval rules and evaluates them against journal entries"""

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail):
        self.storage = storage
        self.audit_trail = audit_trail
        self.table_name = "approval_rules"

    def create_rule(
        self,
        name: str,
        transaction_type: Union[EntryType, str],
        required_approver_role: str,
        min_amount: Optional[Any] = None,
        max_amount: Optional[Any] = None,
        min_age_days: Optional[int] = None,
        description: Optional[str] = None,
        created_by: Optional[str] = None
    ) -> ApprovalRule:
        """
        Create an approval rule

        Raises:
            ValidationError: With every problem found in the input
        """
        errors: List[str] = []
        name = (name or "").strip()
        role = (required_approver_role or "").strip()
        if isinstance(transaction_type, EntryType):
            transaction_type = transaction_type.value
        transaction_type = (transaction_type or "").strip().upper()

        if not name:
            errors.append("Rule name is required")
        if transaction_type not in TRANSACTION_TYPES:
            errors.append(f"Invalid transaction type: {transaction_type or '(empty)'}")
        if not role:
            errors.append("Required approver role is required")

        minimum = self._threshold(min_amount, "Minimum amount", errors)
        maximum = self._threshold(max_amount, "Maximum amount", errors)
        if minimum is not None and maximum is not None and minimum > maximum:
            errors.append("Minimum amount cannot exceed maximum amount")
        if min_age_days is not None and (isinstance(min_age_days, bool) or not isinstance(min_age_days, int)
                                         or min_age_days < 0):
            errors.append("Minimum age in days must be a non-negative whole number")

        with self.storage.atomic():
            if name and self.get_rule_by_name(name):
                errors.append(f"Approval rule '{name}' already exists")

            if errors:
                log_action(logger, "warning", "Approval rule rejected", user_id=created_by,
                           action="create_rule", resource=name or None, extra={"errors": errors})
                raise ValidationError(errors)

            now = datetime.now(timezone.utc)
            rule = ApprovalRule(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                name=name,
                transaction_type=transaction_type,
                required_approver_role=role,
                min_amount=minimum,
                max_amount=maximum,
                min_age_days=min_age_days,
                description=description
            )
            self._save_rule(rule)
            self.audit_trail.record_change(
                created_by, AuditEventType.APPROVAL_RULE_CREATED, "approval_rule",
                rule.id, None, self._rule_to_dict(rule)
            )

        log_action(logger, "info", f"Approval rule '{name}' created", user_id=created_by,
                   action="create_rule", resource=rule.id,
                   extra={"transaction_type": transaction_type, "role": role})
        return rule

    def get_rule(self, rule_id: str) -> Optional[ApprovalRule]:
        data = self.storage.load(self.table_name, rule_id)
        if data:
            return self._rule_from_dict(data)
        return None

    def get_rule_by_name(self, name: str) -> Optional[ApprovalRule]:
        rules = self.storage.find(self.table_name, {"name": name})
        if rules:
            return self._rule_from_dict(rules[0])
        return None

    def list_rules(self, active_only: bool = False) -> List[ApprovalRule]:
        """Rules in creation order"""
        rules = [self._rule_from_dict(data) for data in self.storage.load_all(self.table_name)]
        if active_only:
            rules = [r for r in rules if r.is_active]
        rules.sort(key=lambda r: r.created_at)
        return rules

    def activate_rule(self, rule_id: str, actor: Optional[str] = None) -> ApprovalRule:
        return self._set_active(rule_id, True, actor)

    def deactivate_rule(self, rule_id: str, actor: Optional[str] = None) -> ApprovalRule:
        return self._set_active(rule_id, False, actor)

    def match_rules(
        self,
        entry: JournalEntry,
        transaction_type: Optional[str] = None,
        as_of: Optional[date] = None
    ) -> List[ApprovalRule]:
        """
        Every active rule whose thresholds the entry meets

        Args:
            entry: Entry being submitted (or voided)
            transaction_type: Type to match rules against; defaults to the
                entry type. Pass "VOID" to evaluate void rules.
            as_of: Date the entry's age is measured at; defaults to today

        Returns:
            Matching rules in creation order, without deduplication or ranking
        """
        transaction_type = transaction_type or entry.entry_type.value
        age_days = ((as_of or date.today()) - entry.entry_date).days
        amount = entry.amount.amount

        matched = [
            rule for rule in self.list_rules(active_only=True)
            if rule.matches(transaction_type, amount, age_days)
        ]
        if matched:
            logger.debug(
                "Entry %s matched %d approval rule(s) for %s",
                entry.reference, len(matched), transaction_type
            )
        return matched

    def _set_active(self, rule_id: str, active: bool, actor: Optional[str]) -> ApprovalRule:
        with self.storage.atomic():
            rule = self.get_rule(rule_id)
            if not rule:
                raise NotFoundError(f"Approval rule {rule_id} not found")
            if rule.is_active == active:
                return rule

            before = self._rule_to_dict(rule)
            rule.is_active = active
            rule.updated_at = datetime.now(timezone.utc)
            self._save_rule(rule)
            self.audit_trail.record_change(
                actor, AuditEventType.APPROVAL_RULE_UPDATED, "approval_rule",
                rule.id, before, self._rule_to_dict(rule)
            )

        log_action(logger, "info", f"Approval rule '{rule.name}' {'activated' if active else 'deactivated'}",
                   user_id=actor, action="update_rule", resource=rule.id)
        return rule

    @staticmethod
    def _threshold(value: Any, label: str, errors: List[str]) -> Optional[Decimal]:
        if value is None or value == "":
            return None
        try:
            amount = parse_decimal(value)
        except ValueError:
            errors.append(f"{label} must be a valid number")
            return None
        if amount < 0:
            errors.append(f"{label} cannot be negative")
            return None
        return amount

    def _save_rule(self, rule: ApprovalRule) -> None:
        self.storage.save(self.table_name, rule.id, self._rule_to_dict(rule))

    def _rule_to_dict(self, rule: ApprovalRule) -> Dict:
        return rule.to_dict()

    def _rule_from_dict(self, data: Dict) -> ApprovalRule:
        return ApprovalRule(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            name=data['name'],
            transaction_type=data['transaction_type'],
            required_approver_role=data['required_approver_role'],
            min_amount=Decimal(data['min_amount']) if data.get('min_amount') is not None else None,
            max_amount=Decimal(data['max_amount']) if data.get('max_amount') is not None else None,
            min_age_days=data.get('min_age_days'),
            description=data.get('description'),
            is_active=data.get('is_active', True)
        )
