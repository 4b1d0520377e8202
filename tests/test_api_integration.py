"""
Integration tests for the Debt Ledger API
Tests end-to-end workflows using FastAPI TestClient
"""

import pytest
from decimal import Decimal
from datetime import date
from fastapi.testclient import TestClient

from debt_ledger.api import app, LedgerSystem, get_ledger_system
from debt_ledger.storage import InMemoryStorage
from debt_ledger.clock import FixedClock


WS = "/workspaces/ws-1"


@pytest.fixture
def system():
    """Fresh in-memory ledger frozen at 2024-03-01"""
    return LedgerSystem(InMemoryStorage(), FixedClock(date(2024, 3, 1)))


@pytest.fixture
def client(system):
    """Test client bound to the test ledger system"""
    app.dependency_overrides[get_ledger_system] = lambda: system
    yield TestClient(app)
    app.dependency_overrides.clear()


def money(amount, currency="THB"):
    return {"amount": amount, "currency": currency}


def create_policy(client, workspace=WS, **overrides):
    body = {"name": "Daily 0.1%", "mode": "DAILY", "daily_rate": "0.001"}
    body.update(overrides)
    r = client.post(f"{workspace}/interest-policies", json=body)
    assert r.status_code == 201
    return r.json()


def create_loan(client, policy_id=None, principal="10000", **overrides):
    body = {
        "borrower_id": "borrower-1",
        "principal": money(principal),
        "start_date": "2024-02-01",
        "due_date": "2024-06-01",
        "interest_policy_id": policy_id,
    }
    body.update(overrides)
    r = client.post(f"{WS}/loans", json=body)
    assert r.status_code == 201
    return r.json()


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
        assert data["name"] == "Debt Ledger API"
        assert "loans" in data["endpoints"]


class TestInterestPolicyEndpoints:

    def test_create_policy_with_legality_advisory(self, client):
        policy = create_policy(client, name="Monthly 5%", mode="MONTHLY", daily_rate=None, monthly_rate="0.05")
        assert policy["mode"] == "MONTHLY"
        assert policy["legality"]["is_legal"] is False

    def test_check_legality(self, client):
        r = client.post(f"{WS}/interest-policies/check-legality", json={"rate": "0.01", "mode": "MONTHLY"})
        assert r.status_code == 200
        assert r.json()["is_legal"] is True

    def test_invalid_policy_is_bad_request(self, client):
        r = client.post(f"{WS}/interest-policies", json={"name": "Broken", "mode": "WEEKLY", "daily_rate": "0.1"})
        assert r.status_code == 400

    def test_policy_of_other_workspace_is_not_found(self, client):
        policy = create_policy(client)
        r = client.get(f"/workspaces/ws-2/interest-policies/{policy['id']}")
        assert r.status_code == 404

    def test_policy_in_use_cannot_be_deleted(self, client):
        policy = create_policy(client)
        create_loan(client, policy["id"])
        r = client.delete(f"{WS}/interest-policies/{policy['id']}")
        assert r.status_code == 400


class TestLoanPaymentFlow:
    """Loan origination, accrual, payment and reversal through the API"""

    def test_full_flow(self, client):
        policy = create_policy(client)
        loan = create_loan(client, policy["id"])
        assert loan["status"] == "OPEN"
        assert loan["principal"] == money("10000.00")

        r = client.post(f"{WS}/loans/{loan['id']}/refresh-interest")
        assert r.status_code == 200
        assert r.json()["accrued_interest"] == money("290.00")

        r = client.post(f"{WS}/payments/auto", json={"amount": money("5000"), "payment_date": "2024-03-01"})
        assert r.status_code == 201
        payment = r.json()
        assert payment["allocations"][0]["interest_paid"] == money("290.00")
        assert payment["allocations"][0]["principal_paid"] == money("4710.00")

        r = client.get(f"{WS}/loans/{loan['id']}/summary")
        assert r.json()["remaining_principal"] == "5290.00"

        r = client.delete(f"{WS}/payments/{payment['id']}")
        assert r.status_code == 200
        restored = client.get(f"{WS}/loans/{loan['id']}").json()
        assert restored["remaining_principal"] == money("10000.00")
        assert restored["accrued_interest"] == money("290.00")

        assert client.get("/audit/verify").json()["valid"] is True

    def test_manual_payment_over_amount_rejected(self, client):
        loan = create_loan(client)
        r = client.post(f"{WS}/payments", json={
            "amount": money("100"),
            "payment_date": "2024-03-01",
            "allocations": [{"loan_id": loan["id"], "principal_paid": "150"}]
        })
        assert r.status_code == 400
        assert client.get(f"{WS}/payments").json()["payments"] == []

    def test_manual_payment_to_other_workspace_loan(self, client):
        loan = create_loan(client)
        r = client.post("/workspaces/ws-2/payments", json={
            "amount": money("100"),
            "payment_date": "2024-03-01",
            "allocations": [{"loan_id": loan["id"], "principal_paid": "100"}]
        })
        assert r.status_code == 404

    def test_loan_interest_breakdown(self, client):
        policy = create_policy(client)
        loan = create_loan(client, policy["id"])
        r = client.get(f"{WS}/loans/{loan['id']}/interest", params={"to_date": "2024-03-01"})
        assert r.status_code == 200
        assert Decimal(r.json()["total_interest"]) == Decimal("290")
        assert r.json()["breakdown"]

    def test_list_filter_and_overdue(self, client, system):
        create_loan(client, due_date="2024-03-10")
        system.clock.advance(15)
        r = client.post(f"{WS}/loans/mark-overdue")
        assert r.json()["marked"] == 1
        r = client.get(f"{WS}/loans", params={"status": "OVERDUE"})
        assert len(r.json()["loans"]) == 1

    def test_extend_due_date(self, client):
        loan = create_loan(client)
        r = client.post(f"{WS}/loans/{loan['id']}/extend", json={"new_due_date": "2024-12-01"})
        assert r.status_code == 200
        assert r.json()["due_date"] == "2024-12-01"

        r = client.post(f"{WS}/loans/{loan['id']}/extend", json={"new_due_date": "2024-01-01"})
        assert r.status_code == 400

    def test_missing_loan(self, client):
        assert client.get(f"{WS}/loans/missing").status_code == 404

    def test_audit_entity_events(self, client):
        loan = create_loan(client)
        events = client.get(f"/audit/loan/{loan['id']}").json()["events"]
        assert [e["event_type"] for e in events] == ["loan_created"]


class TestCreditCardEndpoints:

    def test_card_statement_flow(self, client):
        r = client.post(f"{WS}/credit-cards", json={
            "name": "Everyday", "credit_limit": money("50000"), "statement_cut_day": 25,
            "payment_due_days": 20, "interest_rate": "0.02"
        })
        assert r.status_code == 201
        card = r.json()

        r = client.post(f"{WS}/credit-cards/{card['id']}/transactions", json={"amount": money("10000")})
        assert r.json()["available_credit"] == money("40000.00")

        r = client.post(f"{WS}/credit-cards/{card['id']}/statements", json={"statement_date": "2024-01-25"})
        assert r.status_code == 201
        statement = r.json()
        assert statement["minimum_payment"] == money("500.00")

        r = client.post(f"{WS}/credit-cards/{card['id']}/statements", json={"statement_date": "2024-01-25"})
        assert r.status_code == 400

        r = client.post(f"{WS}/credit-cards/{card['id']}/statements/{statement['id']}/payments",
                        json={"amount": money("10000")})
        assert r.status_code == 201

        summary = client.get(f"{WS}/credit-cards/{card['id']}").json()
        assert summary["unpaid_statements"] == []
        assert summary["available_credit"] == money("50000.00")

    def test_over_limit_charge(self, client):
        card = client.post(f"{WS}/credit-cards", json={
            "name": "Small", "credit_limit": money("100"), "statement_cut_day": 1,
            "payment_due_days": 10, "interest_rate": "0.02"
        }).json()
        r = client.post(f"{WS}/credit-cards/{card['id']}/transactions", json={"amount": money("101")})
        assert r.status_code == 400


class TestInstallmentEndpoints:

    def test_plan_flow(self, client):
        r = client.post(f"{WS}/installment-plans", json={
            "contact_id": "contact-1", "item_name": "Phone", "total_amount": money("12000"),
            "down_payment": money("2000"), "number_of_terms": 5, "interest_rate": "12",
            "start_date": "2024-01-15"
        })
        assert r.status_code == 201
        summary = r.json()
        assert summary["plan"]["term_amount"] == money("2100.00")
        first = summary["installments"][0]

        r = client.post(f"{WS}/installment-plans/installments/{first['id']}/pay", json={"amount": money("2100")})
        assert r.status_code == 200
        assert r.json()["status"] == "PAID"

        r = client.post(f"{WS}/installment-plans/installments/{first['id']}/pay", json={"amount": money("1")})
        assert r.status_code == 400

        r = client.get(f"/workspaces/ws-2/installment-plans/{summary['plan']['id']}")
        assert r.status_code == 404


class TestCreditApplicationCollectionEndpoints:

    def test_credit_line(self, client):
        r = client.post(f"{WS}/credits", json={"contact_id": "contact-1", "credit_limit": money("10000")})
        assert r.status_code == 201
        credit = r.json()

        r = client.post(f"{WS}/credits/{credit['id']}/apply", json={"amount": money("20000")})
        assert r.status_code == 400

        r = client.post(f"{WS}/credits/{credit['id']}/apply", json={"amount": money("4000")})
        assert r.json()["available_credit"] == money("6000.00")

        stats = client.get(f"{WS}/credits/stats").json()
        assert stats["total_used_credit"] == money("4000.00")

    def test_application_disbursement(self, client):
        r = client.post(f"{WS}/applications", json={"contact_id": "contact-1", "requested_amount": money("5000")})
        application = r.json()

        r = client.post(f"{WS}/applications/{application['id']}/disburse", json={
            "reviewed_by": "manager", "approved_amount": money("5000"), "start_date": "2024-03-01"
        })
        assert r.status_code == 201
        assert r.json()["application_id"] == application["id"]

        r = client.put(f"{WS}/applications/{application['id']}/status",
                       json={"status": "APPROVED", "reviewed_by": "manager"})
        assert r.status_code == 400

    def test_collections(self, client):
        create_loan(client, due_date="2024-02-10")
        r = client.post(f"{WS}/collections/auto-create")
        assert r.json()["created"] == 1
        case = r.json()["cases"][0]

        r = client.post(f"{WS}/collections/{case['id']}/activities",
                        json={"activity_type": "CALL", "description": "No answer"})
        assert r.status_code == 201

        detail = client.get(f"{WS}/collections/{case['id']}").json()
        assert len(detail["activities"]) == 1

        r = client.put(f"{WS}/collections/{case['id']}/status", json={"status": "RESOLVED"})
        assert r.json()["status"] == "RESOLVED"
        assert client.get(f"{WS}/collections").json()["cases"] == []
