"""Integration tests for API endpoints"""

import pytest
from decimal import Decimal
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session
from conftest import VALID_CODE, make_transaction
from payout_gateway.domain.models import PaymentMethod
from payout_gateway.infrastructure.database.repositories import BankAccountRepository, TransactionRepository


@pytest.fixture
def merchant(db: Session) -> str:
    """Merchant with one R$ 1,000.00 pix sale and an approved bank account; returns the account id"""
    TransactionRepository(db).add(make_transaction("t1", gross_amount=100000))
    account = BankAccountRepository(db).add("merchant-1", status="approved", bank_name="Banco Teste")
    db.commit()
    return account.id


def test_health_endpoint(client: TestClient):
    """Test health check endpoint"""
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_metrics_endpoint(client: TestClient):
    """Test Prometheus metrics endpoint"""
    response = client.get("/metrics")
    assert response.status_code == 200
    assert "payout_withdrawal_requests_total" in response.text


def test_request_id_is_propagated(client: TestClient):
    response = client.get("/health", headers={"X-Request-ID": "req-123"})
    assert response.headers["X-Request-ID"] == "req-123"


def test_sale_fee_quote(client: TestClient):
    response = client.post(
        "/v1/fees/sale",
        json={"gross_amount_cents": 10000, "payment_method": "pix"},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["platform_fee_cents"] == 648
    assert data["acquirer_fee_cents"] == 0
    assert data["net_amount_cents"] == 9352
    assert data["fee_description"] == "4.99% + R$ 1.49"
    assert data["steps"][0] == "[SALE] 1. Gross: R$ 100.00"


def test_card_sale_fee_quote_with_affiliate(client: TestClient):
    response = client.post(
        "/v1/fees/sale",
        json={
            "gross_amount_cents": 10000,
            "payment_method": "credit_card",
            "settlement_term_days": 30,
            "affiliate_commission_percent": "10",
        },
    )

    assert response.status_code == 200
    data = response.json()
    assert data["affiliate_commission_cents"] == 1000
    assert data["acquirer_fee_cents"] == 60
    assert data["net_amount_cents"] == 8292
    assert data["amount_in_retention_cents"] == 829


def test_sale_fee_unknown_term_is_422(client: TestClient):
    response = client.post(
        "/v1/fees/sale",
        json={"gross_amount_cents": 10000, "payment_method": "credit_card", "settlement_term_days": 45},
    )
    assert response.status_code == 422
    assert "No fee configuration" in response.json()["detail"]


def test_sale_fee_rejects_unknown_method(client: TestClient):
    response = client.post("/v1/fees/sale", json={"gross_amount_cents": 10000, "payment_method": "cash"})
    assert response.status_code == 422


def test_withdrawal_fee_quote(client: TestClient):
    response = client.post("/v1/fees/withdrawal", json={"amount_cents": 5000})

    assert response.status_code == 200
    data = response.json()
    assert data["fee_cents"] == 490
    assert data["net_amount_cents"] == 4510
    assert data["fee_description"] == "R$ 4.90"


def test_withdrawal_fee_exceeding_amount_is_422(client: TestClient):
    response = client.post("/v1/fees/withdrawal", json={"amount_cents": 490})
    assert response.status_code == 422


def test_subscription_fee_quote(client: TestClient):
    response = client.post(
        "/v1/fees/subscription",
        json={"amount_cents": 4990, "payment_method": "pix", "billing_cycle": "monthly"},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["operation_type"] == "subscription"
    assert data["billing_cycle"] == "monthly"
    assert data["platform_fee_cents"] == 249


def test_balance(client: TestClient, merchant: str):
    response = client.get("/v1/balance", params={"user_id": "merchant-1"})

    assert response.status_code == 200
    data = response.json()
    assert data["available_cents"] == 94861
    assert data["total_fees_cents"] == 5139
    assert data["can_withdraw"] is True


def test_withdrawal_request_and_confirm(client: TestClient, merchant: str):
    response = client.post(
        "/v1/withdrawals",
        json={"user_id": "merchant-1", "amount_cents": 5000, "bank_account_id": merchant},
    )
    assert response.status_code == 202
    challenge = response.json()
    assert challenge["fee_cents"] == 490
    assert challenge["net_amount_cents"] == 4510

    response = client.post("/v1/withdrawals/confirm", json={"user_id": "merchant-1", "otp_code": VALID_CODE})
    assert response.status_code == 201
    withdrawal = response.json()
    assert withdrawal["status"] == "pending"
    assert withdrawal["amount_cents"] == 5000

    balance = client.get("/v1/balance", params={"user_id": "merchant-1"}).json()
    assert balance["available_cents"] == 94861 - 5000
    assert balance["pending_withdrawals_cents"] == 5000


def test_second_withdrawal_hits_cooldown(client: TestClient, merchant: str):
    body = {"user_id": "merchant-1", "amount_cents": 5000, "bank_account_id": merchant}
    client.post("/v1/withdrawals", json=body)
    client.post("/v1/withdrawals/confirm", json={"user_id": "merchant-1", "otp_code": VALID_CODE})

    response = client.post("/v1/withdrawals", json=body)

    assert response.status_code == 429
    detail = response.json()["detail"]
    assert detail["code"] == "cooldown_active"
    assert detail["retry_after_minutes"] == 15
    assert response.headers["Retry-After"] == "900"


def test_wrong_passcode_is_422(client: TestClient, merchant: str):
    client.post(
        "/v1/withdrawals",
        json={"user_id": "merchant-1", "amount_cents": 5000, "bank_account_id": merchant},
    )

    response = client.post("/v1/withdrawals/confirm", json={"user_id": "merchant-1", "otp_code": "000000"})

    assert response.status_code == 422
    assert response.json()["detail"]["code"] == "otp_mismatch"


def test_insufficient_balance_is_422(client: TestClient, merchant: str):
    response = client.post(
        "/v1/withdrawals",
        json={"user_id": "merchant-1", "amount_cents": 100000, "bank_account_id": merchant},
    )

    assert response.status_code == 422
    detail = response.json()["detail"]
    assert detail["code"] == "insufficient_balance"
    assert detail["shortfall_cents"] == 5139


def test_otp_outage_is_503(client: TestClient, merchant: str, otp_channel):
    otp_channel.fail_send = True

    response = client.post(
        "/v1/withdrawals",
        json={"user_id": "merchant-1", "amount_cents": 5000, "bank_account_id": merchant},
    )

    assert response.status_code == 503


def test_audit_detects_and_corrects_divergence(client: TestClient, db: Session):
    TransactionRepository(db).add(
        make_transaction(
            "t-drift",
            payment_method=PaymentMethod.CREDIT_CARD,
            settlement_term_days=30,
            affiliate_commission_percent=Decimal("9"),
            commission_amount=1000,
        )
    )
    db.commit()

    report = client.get("/v1/audit", params={"user_id": "merchant-1"}).json()
    assert report["summary"]["divergent"] == 1
    assert report["results"][0]["divergences"] == ["commission_amount: stored=1000, computed=900"]

    response = client.post("/v1/audit/transactions/t-drift/correct")
    assert response.status_code == 200
    assert response.json()["success"] is True

    report = client.get("/v1/audit", params={"user_id": "merchant-1"}).json()
    assert report["results"][0]["status"] == "corrected"
    assert report["summary"]["corrected"] == 1


def test_correct_all(client: TestClient, db: Session):
    repo = TransactionRepository(db)
    repo.add(make_transaction("t1", platform_fee=1))
    repo.add(make_transaction("t2", platform_fee=2))
    repo.add(make_transaction("t3"))
    db.commit()

    response = client.post("/v1/audit/correct-all", json={"user_id": "merchant-1"})

    assert response.status_code == 200
    assert response.json() == {"user_id": "merchant-1", "corrected": 2, "errors": 0}


def test_correct_missing_transaction_reports_failure(client: TestClient):
    response = client.post("/v1/audit/transactions/nope/correct")
    assert response.status_code == 200
    assert response.json()["success"] is False
