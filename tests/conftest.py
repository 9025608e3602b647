"""Pytest fixtures for testing"""

import pytest
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Dict, Generator, List, Optional
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session

from payout_gateway.api.dependencies import get_fee_provider, get_otp_channel
from payout_gateway.api.main import create_app
from payout_gateway.domain.audit import ReconciliationAuditor
from payout_gateway.domain.exceptions import OtpChannelError, StoreError
from payout_gateway.domain.fee_config import DEFAULT_FEE_CONFIG, StaticFeeConfigProvider
from payout_gateway.domain.fees import FeeCalculator
from payout_gateway.domain.locks import UserLocks
from payout_gateway.domain.models import (
    BankAccount,
    PaymentMethod,
    Transaction,
    TransactionStatus,
    Withdrawal,
    WithdrawalChallenge,
    WithdrawalState,
    WithdrawalStatus,
)
from payout_gateway.domain.withdrawals import WithdrawalOrchestrator, WithdrawalPolicy
from payout_gateway.infrastructure.database.models import Base
from payout_gateway.infrastructure.database.session import get_db

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)
VALID_CODE = "123456"

# Test database
TEST_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class FakeClock:
    """Mutable clock injected into the domain services"""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, minutes: float) -> None:
        self.now = self.now + timedelta(minutes=minutes)


class FakeTransactionStore:
    def __init__(self):
        self.rows: Dict[str, Transaction] = {}
        self.failing_ids: set = set()
        self.failing_reads: set = set()

    def add(self, txn: Transaction) -> Transaction:
        self.rows[txn.id] = txn
        return txn

    def list_by_user(self, user_id, statuses) -> List[Transaction]:
        return [t for t in self.rows.values() if t.user_id == user_id and t.status in statuses]

    def get(self, transaction_id) -> Optional[Transaction]:
        if transaction_id in self.failing_reads:
            raise StoreError("get transaction failed")
        return self.rows.get(transaction_id)

    def update_fees(self, transaction_id, breakdown, corrected_at) -> None:
        if transaction_id in self.failing_ids:
            raise StoreError("write failed")
        self.rows[transaction_id] = replace(
            self.rows[transaction_id],
            platform_fee=breakdown.platform_fee,
            acquirer_fee=breakdown.acquirer_fee,
            commission_amount=breakdown.affiliate_commission,
            net_amount=breakdown.net_amount,
            corrected_at=corrected_at,
        )

    def snapshot(self):
        return dict(self.rows)

    def restore(self, state) -> None:
        self.rows = state


class FakeWithdrawalStore:
    def __init__(self):
        self.rows: List[Withdrawal] = []
        self.fail_insert = False

    def add(self, withdrawal: Withdrawal) -> Withdrawal:
        self.rows.append(withdrawal)
        return withdrawal

    def list_by_user(self, user_id) -> List[Withdrawal]:
        return [w for w in self.rows if w.user_id == user_id]

    def latest_active(self, user_id) -> Optional[Withdrawal]:
        active = [w for w in self.list_by_user(user_id) if w.status != WithdrawalStatus.REJECTED]
        return max(active, key=lambda w: w.created_at, default=None)

    def get_by_idempotency_key(self, key) -> Optional[Withdrawal]:
        return next((w for w in self.rows if w.idempotency_key == key), None)

    def insert(self, withdrawal: Withdrawal) -> Withdrawal:
        if self.fail_insert:
            raise StoreError("insert failed")
        self.rows.append(withdrawal)
        return withdrawal

    def snapshot(self):
        return list(self.rows)

    def restore(self, state) -> None:
        self.rows = state


class FakeBankAccountStore:
    def __init__(self):
        self.accounts: Dict[str, BankAccount] = {}

    def add(self, account: BankAccount) -> BankAccount:
        self.accounts[account.id] = account
        return account

    def get_for_user(self, bank_account_id, user_id) -> Optional[BankAccount]:
        account = self.accounts.get(bank_account_id)
        if account is None or account.user_id != user_id:
            return None
        return account

    def snapshot(self):
        return dict(self.accounts)

    def restore(self, state) -> None:
        self.accounts = state


class FakeChallengeStore:
    def __init__(self):
        self.rows: Dict[str, WithdrawalChallenge] = {}

    def save(self, challenge: WithdrawalChallenge) -> None:
        self.rows[challenge.id] = challenge

    def get_open(self, user_id) -> Optional[WithdrawalChallenge]:
        open_rows = [
            c for c in self.rows.values() if c.user_id == user_id and c.state == WithdrawalState.OTP_REQUESTED
        ]
        return max(open_rows, key=lambda c: c.created_at, default=None)

    def expire_open(self, user_id) -> int:
        expired = 0
        for key, c in list(self.rows.items()):
            if c.user_id == user_id and c.state == WithdrawalState.OTP_REQUESTED:
                self.rows[key] = replace(c, state=WithdrawalState.EXPIRED)
                expired += 1
        return expired

    def set_state(self, challenge_id, state, attempts) -> None:
        self.rows[challenge_id] = replace(self.rows[challenge_id], state=state, attempts=attempts)

    def snapshot(self):
        return dict(self.rows)

    def restore(self, state) -> None:
        self.rows = state


class FakeUnitOfWork:
    """Snapshots every store on entry and restores them if the block raises"""

    def __init__(self, *stores):
        self.stores = stores
        self.commits = 0
        self.rollbacks = 0

    @contextmanager
    def atomic(self, user_id):
        snapshots = [store.snapshot() for store in self.stores]
        try:
            yield
        except Exception:
            for store, state in zip(self.stores, snapshots):
                store.restore(state)
            self.rollbacks += 1
            raise
        self.commits += 1


class FakeOtpChannel:
    """Accepts VALID_CODE for every challenge it issued"""

    def __init__(self, valid_code: str = VALID_CODE):
        self.valid_code = valid_code
        self.sent: List[tuple] = []
        self.fail_send = False

    def send(self, destination, purpose) -> str:
        if self.fail_send:
            raise OtpChannelError("OTP service timeout after 5.0s")
        self.sent.append((destination, purpose))
        return f"chal-{len(self.sent)}"

    def verify(self, challenge_id, code) -> bool:
        return code == self.valid_code


def make_transaction(
    txn_id: str = "txn-1",
    user_id: str = "merchant-1",
    gross_amount: int = 10000,
    payment_method: PaymentMethod = PaymentMethod.PIX,
    settlement_term_days: Optional[int] = None,
    affiliate_commission_percent: Optional[Decimal] = None,
    status: TransactionStatus = TransactionStatus.APPROVED,
    calculator: Optional[FeeCalculator] = None,
    created_at: datetime = NOW - timedelta(days=40),
    **overrides,
) -> Transaction:
    """Transaction whose fee fields match the calculator unless overridden"""
    calculator = calculator or FeeCalculator(StaticFeeConfigProvider())
    breakdown = calculator.compute_sale_fee(
        gross_amount, payment_method, settlement_term_days, affiliate_commission_percent
    )
    fields = dict(
        id=txn_id,
        user_id=user_id,
        gross_amount=gross_amount,
        payment_method=payment_method,
        settlement_term_days=settlement_term_days,
        affiliate_commission_percent=affiliate_commission_percent,
        status=status,
        platform_fee=breakdown.platform_fee,
        acquirer_fee=breakdown.acquirer_fee,
        commission_amount=breakdown.affiliate_commission,
        net_amount=breakdown.net_amount,
        created_at=created_at,
    )
    fields.update(overrides)
    return Transaction(**fields)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def calculator() -> FeeCalculator:
    return FeeCalculator(StaticFeeConfigProvider(DEFAULT_FEE_CONFIG))


@pytest.fixture
def transaction_store() -> FakeTransactionStore:
    return FakeTransactionStore()


@pytest.fixture
def withdrawal_store() -> FakeWithdrawalStore:
    return FakeWithdrawalStore()


@pytest.fixture
def bank_account_store() -> FakeBankAccountStore:
    store = FakeBankAccountStore()
    store.add(BankAccount(id="bank-1", user_id="merchant-1", status="approved", bank_name="Banco Teste"))
    return store


@pytest.fixture
def challenge_store() -> FakeChallengeStore:
    return FakeChallengeStore()


@pytest.fixture
def otp_channel() -> FakeOtpChannel:
    return FakeOtpChannel()


@pytest.fixture
def unit_of_work(transaction_store, withdrawal_store, bank_account_store, challenge_store) -> FakeUnitOfWork:
    return FakeUnitOfWork(transaction_store, withdrawal_store, bank_account_store, challenge_store)


@pytest.fixture
def auditor(calculator, transaction_store, unit_of_work, clock) -> ReconciliationAuditor:
    return ReconciliationAuditor(calculator, transaction_store, unit_of_work, UserLocks(), clock=clock)


@pytest.fixture
def orchestrator(
    calculator,
    transaction_store,
    withdrawal_store,
    bank_account_store,
    challenge_store,
    otp_channel,
    unit_of_work,
    clock,
) -> WithdrawalOrchestrator:
    return WithdrawalOrchestrator(
        calculator=calculator,
        transactions=transaction_store,
        withdrawals=withdrawal_store,
        bank_accounts=bank_account_store,
        challenges=challenge_store,
        otp_channel=otp_channel,
        unit_of_work=unit_of_work,
        locks=UserLocks(),
        policy=WithdrawalPolicy(),
        clock=clock,
    )


@pytest.fixture
def db() -> Generator[Session, None, None]:
    """Create test database and session"""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client(db: Session, otp_channel: FakeOtpChannel) -> TestClient:
    """Create FastAPI test client with test database, default fees and a fake OTP service"""
    app = create_app()

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_fee_provider] = lambda: StaticFeeConfigProvider(DEFAULT_FEE_CONFIG)
    app.dependency_overrides[get_otp_channel] = lambda: otp_channel
    return TestClient(app)
