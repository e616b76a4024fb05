"""
Integration tests for the Bursary API
Tests end-to-end flows and error status mapping using FastAPI TestClient
"""

import pytest
from fastapi.testclient import TestClient

from bursary.api import create_app
from bursary.config import load_config
from bursary.system import BursarySystem


@pytest.fixture
def client():
    """Test client over a seeded in-memory system"""
    system = BursarySystem(load_config(database_url="memory://"))
    return TestClient(create_app(system), headers={"X-User-Id": "bursar"})


def fee_payment(amount, debit_code="1010", **extra):
    body = {
        "entry_type": "FEE_PAYMENT",
        "description": "Term 1 fees",
        "lines": [
            {"account_code": debit_code, "debit_amount": amount},
            {"account_code": "4010", "credit_amount": amount}
        ]
    }
    body.update(extra)
    return body


class TestHealthEndpoints:
    """Test basic health and root endpoints"""

    def test_health(self, client):
        r = client.get("/health")
        assert r.status_code == 200
        assert r.json()["status"] == "healthy"

    def test_root(self, client):
        r = client.get("/")
        assert r.status_code == 200
        data = r.json()
        assert data["name"] == "Bursary API"
        assert data["endpoints"]["bank"] == "/bank"


class TestLedgerEndpoints:
    """Test entry recording, balances and error mapping"""

    def test_record_entry(self, client):
        r = client.post("/ledger/entries", json=fee_payment("5000.00"))
        assert r.status_code == 201
        data = r.json()["data"]
        assert data["posted"] is True
        assert data["entry"]["is_posted"] is True
        assert data["entry"]["created_by"] == "bursar"
        assert data["entry"]["amount"] == {"amount": "5000.00", "currency": "KES"}

        entry_id = data["entry"]["id"]
        r = client.get(f"/ledger/entries/{entry_id}")
        assert r.status_code == 200
        assert r.json()["data"]["reference"] == data["entry"]["reference"]

    def test_validation_is_400(self, client):
        r = client.post("/ledger/entries", json=fee_payment(100, debit_code="9999"))
        assert r.status_code == 400
        body = r.json()
        assert body["success"] is False
        assert body["error_type"] == "validation"
        assert "Line 1: account code 9999 not found" in body["errors"]

    def test_unbalanced_is_400_with_details(self, client):
        body = fee_payment(500)
        body["lines"][1]["credit_amount"] = 400
        r = client.post("/ledger/entries", json=body)
        assert r.status_code == 400
        assert r.json()["error_type"] == "business_rule"
        assert r.json()["details"]["difference"] == "100.00"

    def test_missing_entry_is_404(self, client):
        r = client.get("/ledger/entries/missing")
        assert r.status_code == 404
        assert r.json()["error_type"] == "not_found"

    def test_double_post_is_409(self, client):
        entry_id = client.post("/ledger/entries", json=fee_payment(100)).json()["data"]["entry"]["id"]
        r = client.post(f"/ledger/entries/{entry_id}/post")
        assert r.status_code == 409
        assert r.json()["error_type"] == "state_conflict"

    def test_draft_then_post(self, client):
        body = fee_payment(100, submit=False)
        entry_id = client.post("/ledger/entries", json=body).json()["data"]["entry"]["id"]

        r = client.post(f"/ledger/entries/{entry_id}/submit")
        assert r.status_code == 200
        assert r.json()["data"]["posted"] is True

    def test_void_entry(self, client):
        entry_id = client.post("/ledger/entries", json=fee_payment(100)).json()["data"]["entry"]["id"]

        r = client.post(f"/ledger/entries/{entry_id}/void", json={})
        assert r.status_code == 400
        assert r.json()["errors"] == ["Void reason is required"]

        r = client.post(f"/ledger/entries/{entry_id}/void-request", json={"reason": "Wrong student"})
        assert r.status_code == 200
        assert r.json()["data"]["voided"] is True

    def test_balances_and_trial_balance(self, client):
        client.post("/ledger/entries", json=fee_payment(2500))
        accounts = client.get("/ledger/accounts").json()["data"]
        cash = next(a for a in accounts if a["code"] == "1010")

        r = client.get(f"/ledger/accounts/{cash['id']}/balance")
        assert r.json()["data"] == {"amount": "2500.00", "currency": "KES"}

        r = client.get("/ledger/trial-balance")
        data = r.json()["data"]
        assert data["is_balanced"] is True
        assert data["total_debits"]["amount"] == "2500.00"

        r = client.get("/ledger/trial-balance", params={"as_of": "soon"})
        assert r.status_code == 400


class TestApprovalEndpoints:
    """Test the approval queue over HTTP"""

    def test_approve_large_payment(self, client):
        data = client.post("/ledger/entries", json=fee_payment(150000)).json()["data"]
        assert data["posted"] is False

        queue = client.get("/approvals/queue").json()["data"]
        assert len(queue) == 1
        assert queue[0]["rule_name"] == "Large Payment"
        request_id = queue[0]["request_id"]

        r = client.post(f"/approvals/{request_id}/approve", json={"notes": "Checked"},
                        headers={"X-User-Id": "manager"})
        assert r.status_code == 200
        assert r.json()["data"]["status"] == "APPROVED"
        assert r.json()["data"]["reviewed_by"] == "manager"

        r = client.post(f"/approvals/{request_id}/approve", json={})
        assert r.status_code == 409

        stats = client.get("/approvals/stats").json()["data"]
        assert stats == {"total": 1, "pending": 0, "approved": 1, "rejected": 0}

    def test_reject_without_notes_is_400(self, client):
        client.post("/ledger/entries", json=fee_payment(150000))
        request_id = client.get("/approvals/queue").json()["data"][0]["request_id"]

        r = client.post(f"/approvals/{request_id}/reject", json={})
        assert r.status_code == 400

        r = client.post(f"/approvals/{request_id}/reject", json={"notes": "Not ours"})
        assert r.status_code == 200
        assert r.json()["data"]["status"] == "REJECTED"

    def test_review_without_user_is_400(self, client):
        client.post("/ledger/entries", json=fee_payment(150000))
        request_id = client.get("/approvals/queue").json()["data"][0]["request_id"]
        anonymous = TestClient(client.app)

        r = anonymous.post(f"/approvals/{request_id}/approve", json={"notes": "Checked"})
        assert r.status_code == 400
        assert r.json()["errors"] == ["Reviewer is required"]

        r = anonymous.post(f"/approvals/{request_id}/reject", json={"notes": "Not ours"})
        assert r.status_code == 400
        assert r.json()["errors"] == ["Reviewer is required"]

        queue = client.get("/approvals/queue").json()["data"]
        assert [item["request_id"] for item in queue] == [request_id]

    def test_invalid_queue_filter(self, client):
        r = client.get("/approvals/queue", params={"status": "SOMETIME"})
        assert r.status_code == 400

    def test_unknown_request_is_404(self, client):
        r = client.post("/approvals/missing/approve", json={})
        assert r.status_code == 404


class TestBankEndpoints:
    """Test the reconciliation flow over HTTP"""

    def _statement(self, client, closing="1500"):
        account = client.post("/bank/accounts", json={
            "account_name": "School Fees Account",
            "account_number": "0123456789",
            "bank_name": "KCB",
            "opening_balance": "1000"
        })
        assert account.status_code == 201
        account_id = account.json()["data"]["id"]

        statement = client.post("/bank/statements", json={
            "bank_account_id": account_id,
            "statement_date": "2024-03-31",
            "opening_balance": "1000",
            "closing_balance": closing
        })
        assert statement.status_code == 201
        return account_id, statement.json()["data"]["id"]

    def test_reconcile_statement(self, client):
        account_id, statement_id = self._statement(client)
        line = client.post(f"/bank/statements/{statement_id}/lines", json={
            "transaction_date": "2024-03-10", "description": "Deposit", "credit_amount": "500"
        })
        assert line.status_code == 201
        line_id = line.json()["data"]["id"]

        entry = client.post("/ledger/entries", json=fee_payment(500, debit_code="1020", entry_date="2024-03-10"))
        entry_id = entry.json()["data"]["entry"]["id"]

        unmatched = client.get("/bank/unmatched-transactions", params={
            "start_date": "2024-03-01", "end_date": "2024-03-31", "bank_account_id": account_id
        }).json()["data"]
        assert [e["id"] for e in unmatched] == [entry_id]

        r = client.post(f"/bank/lines/{line_id}/match", json={"transaction_id": entry_id})
        assert r.status_code == 200
        assert r.json()["data"]["is_matched"] is True

        r = client.post(f"/bank/statements/{statement_id}/reconcile")
        assert r.status_code == 200
        assert r.json()["data"]["status"] == "RECONCILED"

        accounts = client.get("/bank/accounts").json()["data"]
        assert accounts[0]["current_balance"]["amount"] == "1500.00"

        r = client.post(f"/bank/lines/{line_id}/unmatch")
        assert r.status_code == 409

    def test_closing_balance_mismatch(self, client):
        _, statement_id = self._statement(client, closing="1600")
        line_id = client.post(f"/bank/statements/{statement_id}/lines", json={
            "transaction_date": "2024-03-10", "description": "Deposit", "credit_amount": 500
        }).json()["data"]["id"]
        entry_id = client.post("/ledger/entries", json=fee_payment(500, entry_date="2024-03-10")
                               ).json()["data"]["entry"]["id"]
        client.post(f"/bank/lines/{line_id}/match", json={"transaction_id": entry_id})

        r = client.post(f"/bank/statements/{statement_id}/reconcile")
        assert r.status_code == 400
        assert r.json()["details"]["variance"] == "100.00"

    def test_statement_detail(self, client):
        account_id, statement_id = self._statement(client)
        client.post(f"/bank/statements/{statement_id}/lines", json={
            "transaction_date": "2024-03-10", "description": "Deposit", "credit_amount": "500"
        })

        detail = client.get(f"/bank/statements/{statement_id}").json()["data"]
        assert detail["bank_account_name"] == "School Fees Account"
        assert len(detail["lines"]) == 1

        summaries = client.get("/bank/statements", params={"bank_account_id": account_id}).json()["data"]
        assert summaries[0]["line_count"] == 1
        assert summaries[0]["matched_count"] == 0

        assert client.get("/bank/statements/missing").status_code == 404

    def test_bad_line_is_400(self, client):
        _, statement_id = self._statement(client)
        r = client.post(f"/bank/statements/{statement_id}/lines", json={
            "transaction_date": "2024-03-10", "description": "Deposit"
        })
        assert r.status_code == 400
        assert r.json()["errors"] == [
            "Exactly one of debit amount or credit amount must be greater than zero"
        ]

    def test_match_unknown_line_is_404(self, client):
        r = client.post("/bank/lines/missing/match", json={"transaction_id": "missing"})
        assert r.status_code == 404
