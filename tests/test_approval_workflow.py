"""
Test suite for the approval workflow

Tests submission, approval, rejection, void requests and the review queue
against the standard school chart and default approval rules.
"""

import pytest
from decimal import Decimal
from datetime import date, timedelta

from bursary.currency import Money, Currency
from bursary.storage import InMemoryStorage
from bursary.audit import AuditTrail, AuditEventType
from bursary.accounts import ChartOfAccounts
from bursary.ledger import GeneralLedger, JournalEntryLine, EntryType, ApprovalStatus
from bursary.approval_rules import ApprovalRuleEngine
from bursary.approval_workflow import ApprovalWorkflow, ApprovalAction
from bursary.seed import seed_all
from bursary.errors import (
    ValidationError, NotFoundError, StateConflictError, ConcurrencyConflictError
)


def kes(amount) -> Money:
    return Money(Decimal(str(amount)), Currency.KES)


class WorkflowFixture:
    """Seeded ledger, rules and workflow on in-memory storage"""

    approval_policy = "first"

    def setup_method(self):
        """Set up test fixtures"""
        self.storage = InMemoryStorage()
        self.audit_trail = AuditTrail(self.storage)
        self.chart = ChartOfAccounts(self.storage, self.audit_trail)
        self.ledger = GeneralLedger(self.storage, self.audit_trail, self.chart, Currency.KES)
        self.engine = ApprovalRuleEngine(self.storage, self.audit_trail)
        self.workflow = ApprovalWorkflow(self.storage, self.audit_trail, self.ledger, self.engine,
                                         approval_policy=self.approval_policy)
        seed_all(self.chart, self.engine)

        self.cash = self.chart.get_account_by_code("1010")
        self.tuition = self.chart.get_account_by_code("4010")

    def _entry(self, amount, entry_type=EntryType.FEE_PAYMENT, entry_date=None):
        if entry_type == EntryType.REFUND:
            lines = [JournalEntryLine.debit(self.tuition.id, kes(amount)),
                     JournalEntryLine.credit(self.cash.id, kes(amount))]
        else:
            lines = [JournalEntryLine.debit(self.cash.id, kes(amount)),
                     JournalEntryLine.credit(self.tuition.id, kes(amount))]
        return self.ledger.create_journal_entry(entry_type, f"{entry_type.value} entry", lines,
                                                entry_date=entry_date, created_by="clerk")

    def _posted(self, amount, entry_date=None):
        entry = self._entry(amount, entry_date=entry_date)
        return self.workflow.submit_entry(entry.id, "clerk").entry


class TestSubmission(WorkflowFixture):
    """Test submit_entry"""

    def test_entry_without_matching_rule_posts_at_once(self):
        entry = self._entry(5000)
        result = self.workflow.submit_entry(entry.id, "clerk")

        assert result.posted
        assert result.requests == []
        assert result.entry.approval_status == ApprovalStatus.APPROVED
        assert not result.entry.requires_approval
        assert self.ledger.get_account_balance(self.cash.id) == kes(5000)

    def test_scenario_refund_requires_approval(self):
        """A refund always waits under All Refunds; approving posts it"""
        entry = self._entry(2000, EntryType.REFUND)
        result = self.workflow.submit_entry(entry.id, "clerk")

        assert not result.posted
        assert len(result.requests) == 1
        request = result.requests[0]
        assert request.status == ApprovalStatus.PENDING
        assert request.action == ApprovalAction.POST
        assert self.engine.get_rule(request.rule_id).name == "All Refunds"

        stored = self.ledger.get_journal_entry(entry.id)
        assert stored.requires_approval
        assert stored.approval_status == ApprovalStatus.PENDING
        assert not stored.is_posted

        approved = self.workflow.approve(request.id, "manager", "Checked receipt")

        assert approved.status == ApprovalStatus.APPROVED
        assert approved.reviewed_by == "manager"
        assert approved.review_notes == "Checked receipt"
        posted = self.ledger.get_journal_entry(entry.id)
        assert posted.is_posted
        assert posted.approval_status == ApprovalStatus.APPROVED
        assert posted.approved_by == "manager"

    def test_scenario_large_payment_rejected(self):
        """Rejecting a large fee payment voids it"""
        entry = self._entry(150000)
        result = self.workflow.submit_entry(entry.id, "clerk")
        assert self.engine.get_rule(result.requests[0].rule_id).name == "Large Payment"

        rejected = self.workflow.reject(result.requests[0].id, "manager", "duplicate entry")

        assert rejected.status == ApprovalStatus.REJECTED
        stored = self.ledger.get_journal_entry(entry.id)
        assert stored.is_voided
        assert not stored.is_posted
        assert stored.voided_reason == "Rejected: duplicate entry"
        assert stored.approval_status == ApprovalStatus.REJECTED

    def test_unbalanced_entry_cannot_be_submitted(self):
        entry = self.ledger.create_journal_entry(EntryType.REFUND, "Unbalanced", [
            JournalEntryLine.debit(self.tuition.id, kes(100)),
            JournalEntryLine.credit(self.cash.id, kes(50))
        ])
        with pytest.raises(ValueError, match="must equal credits"):
            self.workflow.submit_entry(entry.id)
        assert self.workflow.get_requests_for_entry(entry.id) == []

    def test_double_submission_rejected(self):
        entry = self._entry(100, EntryType.REFUND)
        self.workflow.submit_entry(entry.id)
        with pytest.raises(StateConflictError, match="already awaiting approval"):
            self.workflow.submit_entry(entry.id)

    def test_posted_or_voided_entry_cannot_be_submitted(self):
        posted = self._posted(100)
        with pytest.raises(StateConflictError, match="already posted"):
            self.workflow.submit_entry(posted.id)

        voided = self._entry(100)
        self.ledger.void_journal_entry(voided.id, "Mistake")
        with pytest.raises(StateConflictError, match="voided"):
            self.workflow.submit_entry(voided.id)

        with pytest.raises(NotFoundError):
            self.workflow.submit_entry("missing")


class TestReview(WorkflowFixture):
    """Test approve and reject"""

    def _pending_refund(self, amount=100):
        entry = self._entry(amount, EntryType.REFUND)
        return entry, self.workflow.submit_entry(entry.id, "clerk").requests[0]

    def test_request_decided_only_once(self):
        _, request = self._pending_refund()
        self.workflow.approve(request.id, "manager")

        with pytest.raises(StateConflictError, match="already been approved"):
            self.workflow.approve(request.id, "manager")
        with pytest.raises(StateConflictError, match="already been approved"):
            self.workflow.reject(request.id, "manager", "Too late")

    def test_reject_requires_notes(self):
        _, request = self._pending_refund()
        with pytest.raises(ValidationError, match="Review notes are required for rejection"):
            self.workflow.reject(request.id, "manager", "   ")
        assert self.workflow.get_request(request.id).status == ApprovalStatus.PENDING

    def test_review_requires_reviewer(self):
        """An anonymous decision is refused and the entry stays unposted"""
        entry, request = self._pending_refund()

        with pytest.raises(ValidationError) as exc_info:
            self.workflow.approve(request.id, None, "Looks fine")
        assert exc_info.value.errors == ["Reviewer is required"]

        with pytest.raises(ValidationError) as exc_info:
            self.workflow.reject(request.id, "  ", "")
        assert exc_info.value.errors == [
            "Reviewer is required", "Review notes are required for rejection"
        ]

        assert self.workflow.get_request(request.id).status == ApprovalStatus.PENDING
        assert not self.ledger.get_journal_entry(entry.id).is_posted

    def test_missing_request(self):
        with pytest.raises(NotFoundError):
            self.workflow.approve("missing", "manager")

    def test_failed_posting_rolls_back_the_decision(self):
        """If posting fails the approval is not recorded either"""
        entry, request = self._pending_refund()
        self.chart.deactivate_account(self.cash.id)

        with pytest.raises(ValidationError, match="inactive"):
            self.workflow.approve(request.id, "manager")

        assert self.workflow.get_request(request.id).status == ApprovalStatus.PENDING
        stored = self.ledger.get_journal_entry(entry.id)
        assert not stored.is_posted
        assert stored.approval_status == ApprovalStatus.PENDING

    def test_lost_compare_and_set_is_a_concurrency_conflict(self, monkeypatch):
        entry, request = self._pending_refund()
        monkeypatch.setattr(self.storage, "update_where", lambda *args, **kwargs: 0)

        with pytest.raises(ConcurrencyConflictError):
            self.workflow.approve(request.id, "manager")

        monkeypatch.undo()
        assert self.workflow.get_request(request.id).status == ApprovalStatus.PENDING
        assert not self.ledger.get_journal_entry(entry.id).is_posted

    def test_decisions_are_audited(self):
        _, request = self._pending_refund()
        self.workflow.approve(request.id, "manager", "ok")

        events = self.audit_trail.get_events_for_entity("approval_request", request.id)
        assert [e.event_type for e in events] == [
            AuditEventType.APPROVAL_REQUESTED, AuditEventType.APPROVAL_GRANTED
        ]
        assert events[1].metadata["before"]["status"] == "PENDING"
        assert events[1].metadata["after"]["status"] == "APPROVED"
        assert events[1].user_id == "manager"


class TestApprovalPolicies(WorkflowFixture):
    """Test the first and all policies with two matching rules"""

    def _two_request_refund(self):
        self.engine.create_rule("Refund Countersign", EntryType.REFUND, "PRINCIPAL")
        entry = self._entry(100, EntryType.REFUND)
        requests = self.workflow.submit_entry(entry.id).requests
        assert len(requests) == 2
        return entry, requests

    def test_first_approval_posts(self):
        entry, requests = self._two_request_refund()
        self.workflow.approve(requests[0].id, "manager")
        assert self.ledger.get_journal_entry(entry.id).is_posted

        # The remaining request is still decided, without re-posting
        self.workflow.approve(requests[1].id, "principal")
        assert self.workflow.get_request(requests[1].id).status == ApprovalStatus.APPROVED

    def test_reject_after_posting_only_records_decision(self):
        entry, requests = self._two_request_refund()
        self.workflow.approve(requests[0].id, "manager")
        self.workflow.reject(requests[1].id, "principal", "Should have waited")

        stored = self.ledger.get_journal_entry(entry.id)
        assert stored.is_posted
        assert not stored.is_voided


class TestAllApprovalsPolicy(WorkflowFixture):

    approval_policy = "all"

    def test_every_request_must_approve(self):
        self.engine.create_rule("Refund Countersign", EntryType.REFUND, "PRINCIPAL")
        entry = self._entry(100, EntryType.REFUND)
        requests = self.workflow.submit_entry(entry.id).requests

        self.workflow.approve(requests[0].id, "manager")
        assert not self.ledger.get_journal_entry(entry.id).is_posted

        self.workflow.approve(requests[1].id, "principal")
        assert self.ledger.get_journal_entry(entry.id).is_posted

    def test_rejection_voids_under_all_policy(self):
        self.engine.create_rule("Refund Countersign", EntryType.REFUND, "PRINCIPAL")
        entry = self._entry(100, EntryType.REFUND)
        requests = self.workflow.submit_entry(entry.id).requests

        self.workflow.approve(requests[0].id, "manager")
        self.workflow.reject(requests[1].id, "principal", "Not authorised")
        assert self.ledger.get_journal_entry(entry.id).is_voided


class TestVoidRequests(WorkflowFixture):
    """Test request_void against the void rules"""

    def test_small_recent_entry_voids_at_once(self):
        entry = self._posted(1000)
        result = self.workflow.request_void(entry.id, "Wrong student", "clerk")

        assert result.voided
        assert result.requests == []
        assert self.ledger.get_account_balance(self.cash.id) == kes(0)

    def test_high_value_void_needs_approval(self):
        entry = self._posted(60000)
        result = self.workflow.request_void(entry.id, "Bounced cheque", "clerk")

        assert not result.voided
        assert len(result.requests) == 1
        request = result.requests[0]
        assert request.action == ApprovalAction.VOID
        assert request.void_reason == "Bounced cheque"
        assert self.engine.get_rule(request.rule_id).name == "High Value Void"

        with pytest.raises(StateConflictError, match="already pending"):
            self.workflow.request_void(entry.id, "Again", "clerk")

        self.workflow.approve(request.id, "manager")
        stored = self.ledger.get_journal_entry(entry.id)
        assert stored.is_voided
        assert stored.voided_reason == "Bounced cheque"
        assert stored.voided_by == "manager"

    def test_aged_entry_void_needs_approval(self):
        """An entry a week old is past the void age threshold"""
        entry = self._posted(100, entry_date=date.today() - timedelta(days=7))
        result = self.workflow.request_void(entry.id, "Late correction")

        assert [self.engine.get_rule(r.rule_id).name for r in result.requests] == ["Aged Transaction Void"]

    def test_rejected_void_leaves_entry_posted(self):
        entry = self._posted(60000)
        request = self.workflow.request_void(entry.id, "Bounced cheque").requests[0]
        self.workflow.reject(request.id, "manager", "Cheque cleared")

        stored = self.ledger.get_journal_entry(entry.id)
        assert stored.is_posted
        assert not stored.is_voided

    def test_void_requires_reason(self):
        entry = self._posted(100)
        with pytest.raises(ValidationError, match="Void reason is required"):
            self.workflow.request_void(entry.id, "")


class TestApprovalQueue(WorkflowFixture):
    """Test the review queue and statistics"""

    def test_queue_and_stats(self):
        first = self._entry(100, EntryType.REFUND)
        second = self._entry(200000)
        third = self._entry(300, EntryType.REFUND)
        requests = [self.workflow.submit_entry(e.id, "clerk").requests[0] for e in (first, second, third)]

        self.workflow.approve(requests[0].id, "manager")

        pending = self.workflow.get_approval_queue()
        assert [item.request_id for item in pending] == [requests[2].id, requests[1].id]
        assert pending[1].rule_name == "Large Payment"
        assert pending[1].required_role == "FINANCE_MANAGER"
        assert pending[1].amount == kes(200000)
        assert pending[1].entry_reference == second.reference

        everything = self.workflow.get_approval_queue("all")
        assert len(everything) == 3
        assert everything[-1].status == ApprovalStatus.APPROVED

        assert len(self.workflow.get_pending_for_role("FINANCE_MANAGER")) == 2
        assert self.workflow.get_pending_for_role("PRINCIPAL") == []

        stats = self.workflow.get_approval_stats()
        assert (stats.total, stats.pending, stats.approved, stats.rejected) == (3, 2, 1, 0)

    def test_invalid_queue_filter(self):
        with pytest.raises(ValidationError, match="Invalid approval queue filter"):
            self.workflow.get_approval_queue("DONE")
