"""
Approval Workflow

Gates journal entry posting (and voiding) behind approval requests created
by the rule engine. A request moves PENDING -> APPROVED or PENDING ->
REJECTED exactly once; every decision and its effect on the journal entry
commit together in one storage transaction.
"""

from datetime import datetime, date, timezone
from dataclasses import dataclass, field
from typing import Dict, List, Optional
from enum import Enum
import uuid

from .currency import Money
from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .ledger import GeneralLedger, JournalEntry, ApprovalStatus
from .approval_rules import ApprovalRuleEngine, ApprovalRule, VOID_TRANSACTION_TYPE
from .errors import (
    ValidationError, NotFoundError, StateConflictError, ConcurrencyConflictError
)
from .logging_config import get_logger, log_action

logger = get_logger("bursary.approval_workflow")


class ApprovalAction(Enum):
    """What approving the request does to the entry"""
    POST = "POST"
    VOID = "VOID"


class ApprovalPolicy(Enum):
    FIRST = "first"  # first approval posts the entry
    ALL = "all"      # every POST request on the entry must be approved


@dataclass
class ApprovalRequest(StorageRecord):
    journal_entry_id: str
    rule_id: str
    action: ApprovalAction
    status: ApprovalStatus
    requested_by: Optional[str]
    requested_at: datetime
    void_reason: Optional[str] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    review_notes: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status != ApprovalStatus.PENDING


@dataclass
class ApprovalQueueItem:
    """Approval request joined with its entry and rule for reviewers"""
    request_id: str
    journal_entry_id: str
    action: ApprovalAction
    status: ApprovalStatus
    entry_reference: str
    entry_type: str
    entry_description: str
    amount: Money
    rule_name: str
    required_role: str
    requested_by: Optional[str]
    requested_at: datetime
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    review_notes: Optional[str] = None


@dataclass
class ApprovalStats:
    total: int = 0
    pending: int = 0
    approved: int = 0
    rejected: int = 0


@dataclass
class SubmissionResult:
    entry: JournalEntry
    requests: List[ApprovalRequest] = field(default_factory=list)

    @property
    def posted(self) -> bool:
        return self.entry.is_posted


@dataclass
class VoidRequestResult:
    entry: JournalEntry
    requests: List[ApprovalRequest] = field(default_factory=list)

    @property
    def voided(self) -> bool:
        return self.entry.is_voided


class ApprovalWorkflow:
    """
    Approval request state machine over journal entries
    """

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: AuditTrail,
        ledger: GeneralLedger,
        rule_engine: ApprovalRuleEngine,
        approval_policy: str = "first"
    ):
        self.storage = storage
        self.audit_trail = audit_trail
        self.ledger = ledger
        self.rule_engine = rule_engine
        self.approval_policy = ApprovalPolicy(approval_policy)
        self.table_name = "approval_requests"

    def submit_entry(
        self,
        entry_id: str,
        requested_by: Optional[str] = None,
        as_of: Optional[date] = None
    ) -> SubmissionResult:
        """
        Submit an unposted entry for posting

        Creates one PENDING request per matching rule, or posts the entry at
        once when no rule fires.

        Raises:
            NotFoundError: If the entry does not exist
            StateConflictError: If the entry is posted, voided or already awaiting approval
            BusinessRuleError / ValidationError: If the entry cannot be posted
        """
        with self.storage.atomic():
            entry = self._require_entry(entry_id)
            if entry.is_voided:
                raise StateConflictError(f"Journal entry {entry.reference} is voided")
            if entry.is_posted:
                raise StateConflictError(f"Journal entry {entry.reference} is already posted")
            if self._pending_requests(entry.id, ApprovalAction.POST):
                raise StateConflictError(f"Journal entry {entry.reference} is already awaiting approval")

            self.ledger.ensure_postable(entry)

            rules = self.rule_engine.match_rules(entry, as_of=as_of)
            if not rules:
                self.ledger.set_approval_status(entry.id, ApprovalStatus.APPROVED, requested_by,
                                                requires_approval=False)
                entry = self.ledger.post_journal_entry(entry.id, requested_by)
                return SubmissionResult(entry=entry)

            requests = [
                self._create_request(entry, rule, ApprovalAction.POST, requested_by)
                for rule in rules
            ]
            entry = self.ledger.set_approval_status(entry.id, ApprovalStatus.PENDING, requested_by,
                                                    requires_approval=True)

        log_action(logger, "info", f"Journal entry {entry.reference} awaiting approval",
                   user_id=requested_by, action="submit_entry", resource=entry.id,
                   extra={"rules": [r.name for r in rules]})
        return SubmissionResult(entry=entry, requests=requests)

    def request_void(
        self,
        entry_id: str,
        reason: str,
        requested_by: Optional[str] = None,
        as_of: Optional[date] = None
    ) -> VoidRequestResult:
        """
        Void an entry, or open VOID requests when a void rule fires

        Raises:
            ValidationError: If no reason is given
            NotFoundError: If the entry does not exist
            StateConflictError: If the entry is voided or a void is already pending
        """
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError(["Void reason is required"])

        with self.storage.atomic():
            entry = self._require_entry(entry_id)
            if entry.is_voided:
                raise StateConflictError(f"Journal entry {entry.reference} is already voided")
            if self._pending_requests(entry.id, ApprovalAction.VOID):
                raise StateConflictError(f"A void request for {entry.reference} is already pending")

            rules = self.rule_engine.match_rules(entry, transaction_type=VOID_TRANSACTION_TYPE, as_of=as_of)
            if not rules:
                entry = self.ledger.void_journal_entry(entry.id, reason, requested_by)
                return VoidRequestResult(entry=entry)

            requests = [
                self._create_request(entry, rule, ApprovalAction.VOID, requested_by, void_reason=reason)
                for rule in rules
            ]

        log_action(logger, "info", f"Void of {entry.reference} awaiting approval",
                   user_id=requested_by, action="request_void", resource=entry.id,
                   extra={"rules": [r.name for r in rules], "reason": reason})
        return VoidRequestResult(entry=entry, requests=requests)

    def approve(self, request_id: str, reviewer: str, notes: Optional[str] = None) -> ApprovalRequest:
        """
        Approve a PENDING request and apply its effect on the entry

        A POST approval posts the entry (under the "all" policy only once
        every POST request on it is approved). A VOID approval voids it.
        If the effect has already happened the decision is only recorded.

        Raises:
            NotFoundError: If the request does not exist
            StateConflictError: If the request was already reviewed
            ValidationError: If no reviewer is given
            ConcurrencyConflictError: If another reviewer decided it concurrently
        """
        reviewer = (reviewer or "").strip()
        if not reviewer:
            raise ValidationError(["Reviewer is required"])

        with self.storage.atomic():
            request = self._decide(request_id, ApprovalStatus.APPROVED, reviewer, notes)
            entry = self._require_entry(request.journal_entry_id)

            if request.action == ApprovalAction.VOID:
                if not entry.is_voided:
                    self.ledger.void_journal_entry(entry.id, request.void_reason, reviewer)
            elif not entry.is_posted:
                if entry.is_voided:
                    raise StateConflictError(f"Journal entry {entry.reference} is voided")
                if self._ready_to_post(entry.id):
                    self.ledger.set_approval_status(entry.id, ApprovalStatus.APPROVED, reviewer)
                    self.ledger.post_journal_entry(entry.id, reviewer)

        log_action(logger, "info", f"Approval request {request.id} approved",
                   user_id=reviewer, action="approve", resource=request.id,
                   extra={"journal_entry_id": request.journal_entry_id,
                          "request_action": request.action.value})
        return request

    def reject(self, request_id: str, reviewer: str, notes: str) -> ApprovalRequest:
        """
        Reject a PENDING request

        Rejecting a POST request voids the entry with reason
        "Rejected: <notes>"; rejecting a VOID request leaves the entry as is.

        Raises:
            ValidationError: If no reviewer or no review notes are given
            NotFoundError: If the request does not exist
            StateConflictError: If the request was already reviewed
            ConcurrencyConflictError: If another reviewer decided it concurrently
        """
        errors: List[str] = []
        reviewer = (reviewer or "").strip()
        if not reviewer:
            errors.append("Reviewer is required")
        notes = (notes or "").strip()
        if not notes:
            errors.append("Review notes are required for rejection")
        if errors:
            raise ValidationError(errors)

        with self.storage.atomic():
            request = self._decide(request_id, ApprovalStatus.REJECTED, reviewer, notes)

            if request.action == ApprovalAction.POST:
                entry = self._require_entry(request.journal_entry_id)
                if not entry.is_posted and not entry.is_voided:
                    self.ledger.set_approval_status(entry.id, ApprovalStatus.REJECTED, reviewer)
                    self.ledger.void_journal_entry(entry.id, f"Rejected: {notes}", reviewer)

        log_action(logger, "info", f"Approval request {request.id} rejected",
                   user_id=reviewer, action="reject", resource=request.id,
                   extra={"journal_entry_id": request.journal_entry_id, "notes": notes})
        return request

    def get_request(self, request_id: str) -> Optional[ApprovalRequest]:
        data = self.storage.load(self.table_name, request_id)
        if data:
            return self._request_from_dict(data)
        return None

    def get_requests_for_entry(self, entry_id: str) -> List[ApprovalRequest]:
        requests = [
            self._request_from_dict(data)
            for data in self.storage.find(self.table_name, {"journal_entry_id": entry_id})
        ]
        requests.sort(key=lambda r: r.requested_at)
        return requests

    def get_approval_queue(self, status_filter: str = "PENDING") -> List[ApprovalQueueItem]:
        """
        Requests joined with entry and rule details, newest first

        Args:
            status_filter: "PENDING" or "ALL"
        """
        status_filter = (status_filter or "PENDING").upper()
        if status_filter not in ("PENDING", "ALL"):
            raise ValidationError([f"Invalid approval queue filter: {status_filter}"])

        if status_filter == "PENDING":
            rows = self.storage.find(self.table_name, {"status": ApprovalStatus.PENDING.value})
        else:
            rows = self.storage.load_all(self.table_name)

        rules: Dict[str, Optional[ApprovalRule]] = {}
        items: List[ApprovalQueueItem] = []
        for data in rows:
            request = self._request_from_dict(data)
            entry = self.ledger.get_journal_entry(request.journal_entry_id)
            if entry is None:
                continue
            if request.rule_id not in rules:
                rules[request.rule_id] = self.rule_engine.get_rule(request.rule_id)
            rule = rules[request.rule_id]
            items.append(ApprovalQueueItem(
                request_id=request.id,
                journal_entry_id=entry.id,
                action=request.action,
                status=request.status,
                entry_reference=entry.reference,
                entry_type=entry.entry_type.value,
                entry_description=entry.description,
                amount=entry.amount,
                rule_name=rule.name if rule else "",
                required_role=rule.required_approver_role if rule else "",
                requested_by=request.requested_by,
                requested_at=request.requested_at,
                reviewed_by=request.reviewed_by,
                reviewed_at=request.reviewed_at,
                review_notes=request.review_notes
            ))

        items.sort(key=lambda i: i.requested_at, reverse=True)
        return items

    def get_pending_for_role(self, role: str) -> List[ApprovalQueueItem]:
        return [item for item in self.get_approval_queue("PENDING") if item.required_role == role]

    def get_approval_stats(self) -> ApprovalStats:
        stats = ApprovalStats()
        for data in self.storage.load_all(self.table_name):
            stats.total += 1
            status = ApprovalStatus(data['status'])
            if status == ApprovalStatus.PENDING:
                stats.pending += 1
            elif status == ApprovalStatus.APPROVED:
                stats.approved += 1
            else:
                stats.rejected += 1
        return stats

    def _decide(
        self,
        request_id: str,
        status: ApprovalStatus,
        reviewer: str,
        notes: Optional[str]
    ) -> ApprovalRequest:
        """Move a request out of PENDING with a compare-and-set on its status"""
        request = self.get_request(request_id)
        if not request:
            raise NotFoundError(f"Approval request {request_id} not found")
        if request.is_terminal:
            log_action(logger, "warning", f"Approval request {request_id} already reviewed",
                       user_id=reviewer, action="review", resource=request_id,
                       extra={"status": request.status.value})
            raise StateConflictError(
                f"Approval request has already been {request.status.value.lower()}"
            )

        before = self._request_to_dict(request)
        now = datetime.now(timezone.utc)
        changes = {
            "status": status.value,
            "reviewed_by": reviewer,
            "reviewed_at": now.isoformat(),
            "review_notes": notes,
            "updated_at": now.isoformat()
        }
        updated = self.storage.update_where(
            self.table_name, request_id, {"status": ApprovalStatus.PENDING.value}, changes
        )
        if updated != 1:
            raise ConcurrencyConflictError(
                f"Approval request {request_id} was reviewed by another process. Reload and retry."
            )

        request = self.get_request(request_id)
        self.audit_trail.record_change(
            reviewer,
            AuditEventType.APPROVAL_GRANTED if status == ApprovalStatus.APPROVED
            else AuditEventType.APPROVAL_REJECTED,
            "approval_request",
            request.id,
            before,
            self._request_to_dict(request)
        )
        return request

    def _ready_to_post(self, entry_id: str) -> bool:
        if self.approval_policy == ApprovalPolicy.FIRST:
            return True
        return all(
            r.status == ApprovalStatus.APPROVED
            for r in self.get_requests_for_entry(entry_id)
            if r.action == ApprovalAction.POST
        )

    def _pending_requests(self, entry_id: str, action: ApprovalAction) -> List[ApprovalRequest]:
        return [
            r for r in self.get_requests_for_entry(entry_id)
            if r.action == action and r.status == ApprovalStatus.PENDING
        ]

    def _create_request(
        self,
        entry: JournalEntry,
        rule: ApprovalRule,
        action: ApprovalAction,
        requested_by: Optional[str],
        void_reason: Optional[str] = None
    ) -> ApprovalRequest:
        now = datetime.now(timezone.utc)
        request = ApprovalRequest(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            journal_entry_id=entry.id,
            rule_id=rule.id,
            action=action,
            status=ApprovalStatus.PENDING,
            requested_by=requested_by,
            requested_at=now,
            void_reason=void_reason
        )
        self.storage.save(self.table_name, request.id, self._request_to_dict(request))
        self.audit_trail.record_change(
            requested_by, AuditEventType.APPROVAL_REQUESTED, "approval_request",
            request.id, None, self._request_to_dict(request)
        )
        return request

    def _require_entry(self, entry_id: str) -> JournalEntry:
        entry = self.ledger.get_journal_entry(entry_id)
        if not entry:
            raise NotFoundError(f"Journal entry {entry_id} not found")
        return entry

    def _request_to_dict(self, request: ApprovalRequest) -> Dict:
        return request.to_dict()

    def _request_from_dict(self, data: Dict) -> ApprovalRequest:
        return ApprovalRequest(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            journal_entry_id=data['journal_entry_id'],
            rule_id=data['rule_id'],
            action=ApprovalAction(data['action']),
            status=ApprovalStatus(data['status']),
            requested_by=data.get('requested_by'),
            requested_at=datetime.fromisoformat(data['requested_at']),
            void_reason=data.get('void_reason'),
            reviewed_by=data.get('reviewed_by'),
            reviewed_at=datetime.fromisoformat(data['reviewed_at']) if data.get('reviewed_at') else None,
            review_notes=data.get('review_notes')
        )
