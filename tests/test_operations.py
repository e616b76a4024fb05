"""
Test suite for the operation boundary and the system composition root

Tests result envelopes, error typing, seeding and configuration reload.
"""

import pytest
from decimal import Decimal
from pydantic import ValidationError as ConfigValidationError

from bursary.currency import Money, Currency
from bursary.config import load_config
from bursary.system import BursarySystem
from bursary.seed import seed_all, STANDARD_CHART, DEFAULT_APPROVAL_RULES
from bursary.audit import AuditEventType
from bursary.approval_workflow import ApprovalPolicy
from bursary.operations import OperationResult, serialize
from bursary.errors import BusinessRuleError, NotFoundError, ValidationError


def fee_payment(amount, debit_code="1010", **extra):
    data = {
        "entry_type": "FEE_PAYMENT",
        "description": "Term 1 fees",
        "lines": [
            {"account_code": debit_code, "debit_amount": str(amount)},
            {"account_code": "4010", "credit_amount": str(amount)}
        ]
    }
    data.update(extra)
    return data


class TestOperationResult:
    """Test the result envelope"""

    def test_success_envelope(self):
        result = OperationResult.ok({"balance": Money(Decimal('12.5'), Currency.KES)})

        assert result.to_dict() == {
            "success": True,
            "data": {"balance": {"amount": "12.50", "currency": "KES"}}
        }

    def test_failure_envelope(self):
        result = OperationResult.from_error(ValidationError(["Account code is required"]))

        assert result.to_dict() == {
            "success": False,
            "error": "Account code is required",
            "error_type": "validation",
            "errors": ["Account code is required"]
        }

    def test_failure_carries_details(self):
        result = OperationResult.from_error(BusinessRuleError("Unbalanced", {"difference": "5.00"}))

        assert result.error_type == "business_rule"
        assert result.errors == []
        assert result.to_dict()["details"] == {"difference": "5.00"}

    def test_not_found_envelope(self):
        result = OperationResult.from_error(NotFoundError("Bank statement not found"))
        assert result.error_type == "not_found"
        assert "details" not in result.to_dict()

    def test_serialize_enums_and_dates(self):
        from datetime import date
        assert serialize({"currency": Currency.KES, "on": date(2024, 3, 1), "n": Decimal('1.5')}) == {
            "currency": "KES", "on": "2024-03-01", "n": "1.5"
        }


class TestFinanceOperations:
    """Test operations over a seeded in-memory system"""

    def setup_method(self):
        """Set up test fixtures"""
        self.system = BursarySystem(load_config(database_url="memory://"))
        self.ops = self.system.operations

    def test_record_entry_posts_without_rules(self):
        result = self.ops.record_entry(fee_payment(5000), actor="clerk")

        assert result.success
        assert result.data["posted"] is True
        assert result.data["requests"] == []
        entry = result.data["entry"]
        assert entry.is_posted
        assert entry.created_by == "clerk"

        cash = self.system.chart.get_account_by_code("1010")
        balance = self.ops.get_account_balance(cash.id)
        assert balance.data == Money(Decimal('5000'), Currency.KES)

    def test_record_entry_as_draft(self):
        result = self.ops.record_entry(fee_payment(100), submit=False)

        assert result.success
        assert result.data["posted"] is False
        assert not self.ops.get_entry(result.data["entry"].id).data.is_posted

    def test_large_payment_waits_for_approval(self):
        result = self.ops.record_entry(fee_payment(150000), actor="clerk")
        assert result.data["posted"] is False
        request = result.data["requests"][0]

        queue = self.ops.get_approval_queue()
        assert [item.request_id for item in queue.data] == [request.id]

        approved = self.ops.approve(request.id, "Verified", "manager")
        assert approved.success
        assert self.ops.get_entry(result.data["entry"].id).data.is_posted

        again = self.ops.approve(request.id, None, "manager")
        assert again.error_type == "state_conflict"

        stats = self.ops.get_approval_stats().data
        assert (stats.total, stats.approved) == (1, 1)

    def test_reject_requires_notes(self):
        result = self.ops.record_entry(fee_payment(150000))
        request = result.data["requests"][0]

        rejected = self.ops.reject(request.id, "", "manager")
        assert not rejected.success
        assert rejected.error_type == "validation"
        assert rejected.errors == ["Review notes are required for rejection"]

        rejected = self.ops.reject(request.id, "Duplicate receipt", "manager")
        assert rejected.success
        assert self.ops.get_entry(result.data["entry"].id).data.is_voided

    def test_parse_errors_are_collected(self):
        data = fee_payment(100, debit_code="9999", entry_type="BOGUS", payment_method="CARRIER_PIGEON",
                           entry_date="01/03/2024")
        result = self.ops.record_entry(data)

        assert result.error_type == "validation"
        assert "Invalid entry type: BOGUS" in result.errors
        assert "Invalid payment method: CARRIER_PIGEON" in result.errors
        assert "Entry date must be in YYYY-MM-DD format" in result.errors
        assert "Line 1: account code 9999 not found" in result.errors

    def test_ledger_validation_surfaces_as_errors(self):
        result = self.ops.record_entry(fee_payment(100, description=""))
        assert result.error_type == "validation"
        assert result.errors == ["Description is required"]

    def test_unbalanced_entry_leaves_no_draft(self):
        data = fee_payment(500)
        data["lines"][1]["credit_amount"] = "450"

        result = self.ops.record_entry(data)

        assert result.error_type == "business_rule"
        assert result.details["total_debits"] == "500.00"
        assert result.details["difference"] == "50.00"
        assert self.system.ledger.list_entries() == []

    def test_missing_entry(self):
        result = self.ops.get_entry("missing")
        assert result.to_dict()["error_type"] == "not_found"

    def test_bad_as_of_date(self):
        result = self.ops.get_trial_balance("yesterday")
        assert result.errors == ["As-of date must be in YYYY-MM-DD format"]

    def test_unexpected_error_is_internal(self, monkeypatch):
        def broken(as_of=None):
            raise RuntimeError("disk on fire")
        monkeypatch.setattr(self.system.ledger, "get_trial_balance", broken)

        result = self.ops.get_trial_balance()

        assert result.to_dict() == {
            "success": False,
            "error": "Failed to get trial balance",
            "error_type": "internal"
        }

    def test_void_entry(self):
        entry = self.ops.record_entry(fee_payment(100)).data["entry"]

        assert self.ops.void_entry(entry.id, "", "bursar").errors == ["Void reason is required"]
        assert self.ops.void_entry(entry.id, "Duplicate", "bursar").data.is_voided
        assert self.ops.void_entry(entry.id, "Again", "bursar").error_type == "state_conflict"

    def test_missing_statement(self):
        result = self.ops.get_statement_with_lines("missing")
        assert result.error_type == "not_found"
        assert result.error == "Bank statement not found"

    def test_bank_reconciliation_flow(self):
        account = self.ops.create_bank_account({
            "account_name": "School Fees Account",
            "account_number": "0123456789",
            "bank_name": "KCB",
            "opening_balance": "1000"
        }, actor="bursar").data
        statement = self.ops.create_statement({
            "bank_account_id": account.id,
            "statement_date": "2024-03-31",
            "opening_balance": "1000",
            "closing_balance": "1500"
        }, actor="bursar").data
        line = self.ops.add_statement_line(statement.id, {
            "transaction_date": "2024-03-10",
            "description": "Deposit",
            "credit_amount": "500"
        }, actor="bursar").data
        entry = self.ops.record_entry(fee_payment(500, debit_code="1020", entry_date="2024-03-09")).data["entry"]

        unmatched = self.ops.get_unmatched_ledger_transactions("2024-03-01", "2024-03-31", account.id)
        assert [e.id for e in unmatched.data] == [entry.id]

        assert self.ops.match_transaction(line.id, entry.id, "bursar").success
        reconciled = self.ops.mark_statement_reconciled(statement.id, "bursar")

        assert reconciled.to_dict()["data"]["status"] == "RECONCILED"
        summaries = self.ops.get_statements(account.id).data
        assert (summaries[0].line_count, summaries[0].matched_count) == (1, 1)
        assert self.ops.get_bank_accounts().data[0].current_balance == Money(Decimal('1500'), Currency.KES)

    def test_bank_account_validation(self):
        result = self.ops.create_bank_account({"account_name": "Fees"})
        assert result.error_type == "validation"
        assert "Account number is required" in result.errors

    def test_malformed_amounts_are_validation_errors(self):
        """Oversized or trailing-text amounts never surface as internal errors"""
        huge = "9" * 30
        result = self.ops.record_entry(fee_payment(huge))
        assert result.error_type == "validation"
        assert result.errors == [
            f"Line 1: Amount {huge} is too large to represent",
            f"Line 2: Amount {huge} is too large to represent"
        ]

        result = self.ops.record_entry(fee_payment("12abc"))
        assert result.error_type == "validation"
        assert result.errors == [
            "Line 1: Cannot convert '12abc' to Decimal",
            "Line 2: Cannot convert '12abc' to Decimal"
        ]

        account = self.ops.create_bank_account({
            "account_name": "School Fees Account",
            "account_number": "0123456789",
            "bank_name": "KCB"
        }, actor="bursar").data
        statement = self.ops.create_statement({
            "bank_account_id": account.id,
            "statement_date": "2024-03-31",
            "opening_balance": "0",
            "closing_balance": "0"
        }, actor="bursar").data
        result = self.ops.add_statement_line(statement.id, {
            "transaction_date": "2024-03-10",
            "description": "Deposit",
            "credit_amount": huge,
            "running_balance": "12abc"
        }, actor="bursar")
        assert result.error_type == "validation"
        assert result.errors == [
            "Debit and credit amounts must be valid numbers",
            "Running balance must be a valid number when provided"
        ]


class TestBursarySystem:
    """Test the composition root"""

    def test_seeds_on_startup(self):
        system = BursarySystem(load_config(database_url="memory://"))

        assert system.chart.get_account_by_code("1010").name == "Cash on Hand"
        assert system.chart.get_account_by_code("1010").is_system_account
        assert len(system.chart.list_accounts()) == len(STANDARD_CHART)
        assert len(system.rule_engine.list_rules()) == len(DEFAULT_APPROVAL_RULES)

    def test_seeding_is_idempotent(self):
        system = BursarySystem(load_config(database_url="memory://"))
        assert seed_all(system.chart, system.rule_engine) == {"accounts": 0, "approval_rules": 0}

    def test_seeding_can_be_disabled(self):
        system = BursarySystem(load_config(database_url="memory://", seed_on_startup=False))
        assert system.chart.list_accounts() == []

    def test_config_drives_components(self):
        system = BursarySystem(load_config(
            database_url="memory://", approval_policy="ALL", date_tolerance_days=3
        ))
        assert system.workflow.approval_policy == ApprovalPolicy.ALL
        assert system.reconciliation.date_tolerance_days == 3
        assert system.ledger.currency == Currency.KES

    def test_invalid_config_rejected(self):
        with pytest.raises(ConfigValidationError):
            load_config(approval_policy="sometimes")
        with pytest.raises(ConfigValidationError):
            load_config(amount_tolerance_minor_units=-1)
        with pytest.raises(ConfigValidationError):
            load_config(ledger_currency="XYZ")

    def test_reload_config(self):
        system = BursarySystem(load_config(database_url="memory://"))
        old_operations = system.operations

        system.reload_config(load_config(database_url="memory://", amount_tolerance_minor_units=0))

        assert system.reconciliation.amount_tolerance_minor_units == 0
        assert system.operations is not old_operations
        # Data survives the rebuild
        assert system.chart.get_account_by_code("4010") is not None

        events = system.audit_trail.get_events_for_entity("system", "config")
        assert events[-1].event_type == AuditEventType.CONFIG_RELOADED
        assert events[-1].metadata["before"]["amount_tolerance_minor_units"] == 100
        assert events[-1].metadata["after"]["amount_tolerance_minor_units"] == 0
        assert system.audit_trail.verify_integrity()["valid"]
