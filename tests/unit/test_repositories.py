"""Repository tests against the SQLite test database"""

import pytest
from datetime import timedelta
from decimal import Decimal
from sqlalchemy.orm import Session
from conftest import NOW, make_transaction
from payout_gateway.domain.exceptions import StoreError
from payout_gateway.domain.fee_config import FeeSchedule
from payout_gateway.domain.models import (
    OperationType,
    PaymentMethod,
    TransactionStatus,
    Withdrawal,
    WithdrawalChallenge,
    WithdrawalState,
    WithdrawalStatus,
)
from payout_gateway.infrastructure.database.repositories import (
    BankAccountRepository,
    ChallengeRepository,
    SettingsRepository,
    SqlUnitOfWork,
    TransactionRepository,
    WithdrawalRepository,
)
from payout_gateway.utils.date_utils import ensure_aware


def _withdrawal(wid: str, status: WithdrawalStatus, created_at, key=None) -> Withdrawal:
    return Withdrawal(
        id=wid,
        user_id="merchant-1",
        requested_amount=5000,
        fee=490,
        net_amount=4510,
        bank_account_id="bank-1",
        status=status,
        created_at=created_at,
        idempotency_key=key,
    )


def test_transactions_round_trip_and_filter(db: Session, calculator):
    repo = TransactionRepository(db)
    repo.add(
        make_transaction(
            "t1",
            payment_method=PaymentMethod.CREDIT_CARD,
            settlement_term_days=30,
            affiliate_commission_percent=Decimal("9.5"),
        )
    )
    repo.add(make_transaction("t2", status=TransactionStatus.REFUNDED))
    db.commit()

    rows = repo.list_by_user("merchant-1", [TransactionStatus.APPROVED, TransactionStatus.RETAINED])

    assert [t.id for t in rows] == ["t1"]
    assert rows[0].affiliate_commission_percent == Decimal("9.5")
    assert rows[0].payment_method == PaymentMethod.CREDIT_CARD


def test_update_fees_inside_unit_of_work(db: Session, calculator):
    repo = TransactionRepository(db)
    repo.add(make_transaction("t1", commission_amount=1))
    db.commit()
    breakdown = calculator.compute_sale_fee(10000, PaymentMethod.PIX)

    with SqlUnitOfWork(db).atomic("merchant-1"):
        repo.update_fees("t1", breakdown, NOW)

    stored = repo.get("t1")
    assert stored.commission_amount == 0
    assert ensure_aware(stored.corrected_at) == NOW


def test_unit_of_work_rolls_back_on_error(db: Session):
    withdrawals = WithdrawalRepository(db)

    with pytest.raises(RuntimeError):
        with SqlUnitOfWork(db).atomic("merchant-1"):
            withdrawals.insert(_withdrawal("w1", WithdrawalStatus.PENDING, NOW))
            raise RuntimeError("boom")

    assert withdrawals.list_by_user("merchant-1") == []


def test_duplicate_idempotency_key_is_a_store_error(db: Session):
    withdrawals = WithdrawalRepository(db)
    with SqlUnitOfWork(db).atomic("merchant-1"):
        withdrawals.insert(_withdrawal("w1", WithdrawalStatus.PENDING, NOW, key="merchant-1:chal-1"))

    with pytest.raises(StoreError):
        with SqlUnitOfWork(db).atomic("merchant-1"):
            withdrawals.insert(_withdrawal("w2", WithdrawalStatus.PENDING, NOW, key="merchant-1:chal-1"))

    assert withdrawals.get_by_idempotency_key("merchant-1:chal-1").id == "w1"


def test_latest_active_skips_rejected(db: Session):
    withdrawals = WithdrawalRepository(db)
    with SqlUnitOfWork(db).atomic("merchant-1"):
        withdrawals.insert(_withdrawal("w1", WithdrawalStatus.COMPLETED, NOW - timedelta(hours=1)))
        withdrawals.insert(_withdrawal("w2", WithdrawalStatus.REJECTED, NOW))

    assert withdrawals.latest_active("merchant-1").id == "w1"


def test_bank_account_lookup_is_scoped_to_owner(db: Session):
    accounts = BankAccountRepository(db)
    account = accounts.add("merchant-1", status="approved", bank_name="Banco Teste")
    db.commit()

    assert accounts.get_for_user(account.id, "merchant-1").bank_name == "Banco Teste"
    assert accounts.get_for_user(account.id, "someone-else") is None


def test_challenge_lifecycle(db: Session):
    challenges = ChallengeRepository(db)
    challenge = WithdrawalChallenge(
        id="c1",
        user_id="merchant-1",
        challenge_id="chal-1",
        amount=5000,
        bank_account_id="bank-1",
        state=WithdrawalState.OTP_REQUESTED,
        expires_at=NOW + timedelta(minutes=5),
        created_at=NOW,
    )
    with SqlUnitOfWork(db).atomic("merchant-1"):
        challenges.save(challenge)

    opened = challenges.get_open("merchant-1")
    assert opened.challenge_id == "chal-1"
    assert ensure_aware(opened.expires_at) == NOW + timedelta(minutes=5)

    with SqlUnitOfWork(db).atomic("merchant-1"):
        challenges.set_state("c1", WithdrawalState.OTP_REQUESTED, 2)
    assert challenges.get_open("merchant-1").attempts == 2

    with SqlUnitOfWork(db).atomic("merchant-1"):
        assert challenges.expire_open("merchant-1") == 1
    assert challenges.get_open("merchant-1") is None


def test_settings_feed_fee_schedule(db: Session):
    settings_repo = SettingsRepository(db)
    settings_repo.set("pix_instant_percent", "3.99")
    settings_repo.set("pix_instant_percent", "2.99")
    db.commit()

    schedule = FeeSchedule.from_settings(settings_repo.load())

    assert schedule.resolve(OperationType.SALE, PaymentMethod.PIX).percent_fee == Decimal("2.99")
