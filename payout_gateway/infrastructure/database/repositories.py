"""Data access layer for sales, withdrawals, bank accounts and fee settings"""

import logging
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterator, List, Optional, Sequence

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from payout_gateway.domain.exceptions import StoreError
from payout_gateway.domain.models import (
    BankAccount,
    FeeBreakdown,
    PaymentMethod,
    Transaction,
    TransactionStatus,
    Withdrawal,
    WithdrawalChallenge,
    WithdrawalState,
    WithdrawalStatus,
)
from payout_gateway.infrastructure.database.models import (
    BankAccountRecord,
    SaleRecord,
    SystemSetting,
    WithdrawalChallengeRecord,
    WithdrawalRecord,
)

logger = logging.getLogger(__name__)


@contextmanager
def _store_errors(operation: str) -> Iterator[None]:
    """Map driver/ORM failures to StoreError"""
    try:
        yield
    except SQLAlchemyError as e:
        logger.error("Store operation failed", extra={"operation": operation, "error": str(e)})
        raise StoreError(f"{operation} failed: {e.__class__.__name__}") from e


def _to_transaction(record: SaleRecord) -> Transaction:
    percent = record.affiliate_commission_percent
    return Transaction(
        id=record.id,
        user_id=record.user_id,
        gross_amount=record.gross_amount_cents,
        payment_method=PaymentMethod(record.payment_method),
        settlement_term_days=record.settlement_term_days,
        affiliate_commission_percent=Decimal(str(percent)) if percent is not None else None,
        status=TransactionStatus(record.status),
        platform_fee=record.platform_fee_cents,
        acquirer_fee=record.acquirer_fee_cents,
        commission_amount=record.commission_amount_cents,
        net_amount=record.net_amount_cents,
        created_at=record.created_at,
        corrected_at=record.corrected_at,
    )


def _to_withdrawal(record: WithdrawalRecord) -> Withdrawal:
    return Withdrawal(
        id=record.id,
        user_id=record.user_id,
        requested_amount=record.amount_cents,
        fee=record.fee_cents,
        net_amount=record.net_amount_cents,
        bank_account_id=record.bank_account_id,
        status=WithdrawalStatus(record.status),
        created_at=record.created_at,
        idempotency_key=record.idempotency_key,
    )


def _to_challenge(record: WithdrawalChallengeRecord) -> WithdrawalChallenge:
    return WithdrawalChallenge(
        id=record.id,
        user_id=record.user_id,
        challenge_id=record.challenge_id,
        amount=record.amount_cents,
        bank_account_id=record.bank_account_id,
        state=WithdrawalState(record.state),
        expires_at=record.expires_at,
        created_at=record.created_at,
        attempts=record.attempts,
    )


class TransactionRepository:
    """Repository for sales and their persisted fee fields"""

    def __init__(self, db: Session):
        self.db = db

    def add(self, transaction: Transaction) -> Transaction:
        """Persist a sale as checkout would record it"""
        with _store_errors("add transaction"):
            record = SaleRecord(
                id=transaction.id,
                user_id=transaction.user_id,
                gross_amount_cents=transaction.gross_amount,
                payment_method=transaction.payment_method.value,
                settlement_term_days=transaction.settlement_term_days,
                affiliate_commission_percent=transaction.affiliate_commission_percent,
                status=transaction.status.value,
                platform_fee_cents=transaction.platform_fee,
                acquirer_fee_cents=transaction.acquirer_fee,
                commission_amount_cents=transaction.commission_amount,
                net_amount_cents=transaction.net_amount,
                created_at=transaction.created_at,
                corrected_at=transaction.corrected_at,
            )
            self.db.add(record)
            self.db.flush()
            return _to_transaction(record)

    def list_by_user(self, user_id: str, statuses: Sequence[TransactionStatus]) -> List[Transaction]:
        """Sales of the user in the given statuses, oldest first"""
        with _store_errors("list transactions"):
            records = (
                self.db.query(SaleRecord)
                .filter(SaleRecord.user_id == user_id)
                .filter(SaleRecord.status.in_([s.value for s in statuses]))
                .order_by(SaleRecord.created_at.asc())
                .all()
            )
            return [_to_transaction(r) for r in records]

    def get(self, transaction_id: str) -> Optional[Transaction]:
        with _store_errors("get transaction"):
            record = self.db.query(SaleRecord).filter(SaleRecord.id == transaction_id).first()
            return _to_transaction(record) if record else None

    def update_fees(self, transaction_id: str, breakdown: FeeBreakdown, corrected_at: datetime) -> None:
        """Overwrite the fee fields with recomputed values"""
        with _store_errors("update transaction fees"):
            record = self.db.query(SaleRecord).filter(SaleRecord.id == transaction_id).first()
            if record is None:
                raise StoreError(f"Transaction {transaction_id} not found")
            record.platform_fee_cents = breakdown.platform_fee
            record.acquirer_fee_cents = breakdown.acquirer_fee
            record.commission_amount_cents = breakdown.affiliate_commission
            record.net_amount_cents = breakdown.net_amount
            record.corrected_at = corrected_at
            self.db.flush()


class WithdrawalRepository:
    """Repository for committed withdrawals"""

    def __init__(self, db: Session):
        self.db = db

    def list_by_user(self, user_id: str) -> List[Withdrawal]:
        with _store_errors("list withdrawals"):
            records = (
                self.db.query(WithdrawalRecord)
                .filter(WithdrawalRecord.user_id == user_id)
                .order_by(WithdrawalRecord.created_at.desc())
                .all()
            )
            return [_to_withdrawal(r) for r in records]

    def latest_active(self, user_id: str) -> Optional[Withdrawal]:
        """Most recent withdrawal that was not rejected"""
        with _store_errors("latest withdrawal"):
            record = (
                self.db.query(WithdrawalRecord)
                .filter(WithdrawalRecord.user_id == user_id)
                .filter(WithdrawalRecord.status != WithdrawalStatus.REJECTED.value)
                .order_by(WithdrawalRecord.created_at.desc())
                .first()
            )
            return _to_withdrawal(record) if record else None

    def get_by_idempotency_key(self, key: str) -> Optional[Withdrawal]:
        with _store_errors("withdrawal by idempotency key"):
            record = self.db.query(WithdrawalRecord).filter(WithdrawalRecord.idempotency_key == key).first()
            return _to_withdrawal(record) if record else None

    def insert(self, withdrawal: Withdrawal) -> Withdrawal:
        with _store_errors("insert withdrawal"):
            record = WithdrawalRecord(
                id=withdrawal.id,
                user_id=withdrawal.user_id,
                bank_account_id=withdrawal.bank_account_id,
                amount_cents=withdrawal.requested_amount,
                fee_cents=withdrawal.fee,
                net_amount_cents=withdrawal.net_amount,
                status=withdrawal.status.value,
                idempotency_key=withdrawal.idempotency_key,
                created_at=withdrawal.created_at,
            )
            self.db.add(record)
            self.db.flush()  # Surface unique-key violations inside the transaction
            return _to_withdrawal(record)


class BankAccountRepository:
    """Repository for payout bank accounts"""

    def __init__(self, db: Session):
        self.db = db

    def add(self, user_id: str, status: str = "approved", bank_name: str = "") -> BankAccount:
        with _store_errors("add bank account"):
            record = BankAccountRecord(user_id=user_id, status=status, bank_name=bank_name)
            self.db.add(record)
            self.db.flush()
            return BankAccount(id=record.id, user_id=record.user_id, status=record.status, bank_name=record.bank_name)

    def get_for_user(self, bank_account_id: str, user_id: str) -> Optional[BankAccount]:
        """Fetch an account only if it belongs to the user"""
        with _store_errors("get bank account"):
            record = (
                self.db.query(BankAccountRecord)
                .filter(BankAccountRecord.id == bank_account_id)
                .filter(BankAccountRecord.user_id == user_id)
                .first()
            )
            if record is None:
                return None
            return BankAccount(id=record.id, user_id=record.user_id, status=record.status, bank_name=record.bank_name)


class ChallengeRepository:
    """Repository for open withdrawal passcode challenges"""

    def __init__(self, db: Session):
        self.db = db

    def save(self, challenge: WithdrawalChallenge) -> None:
        with _store_errors("save challenge"):
            self.db.add(
                WithdrawalChallengeRecord(
                    id=challenge.id,
                    user_id=challenge.user_id,
                    challenge_id=challenge.challenge_id,
                    amount_cents=challenge.amount,
                    bank_account_id=challenge.bank_account_id,
                    state=challenge.state.value,
                    attempts=challenge.attempts,
                    expires_at=challenge.expires_at,
                    created_at=challenge.created_at,
                )
            )
            self.db.flush()

    def get_open(self, user_id: str) -> Optional[WithdrawalChallenge]:
        with _store_errors("get open challenge"):
            record = (
                self.db.query(WithdrawalChallengeRecord)
                .filter(WithdrawalChallengeRecord.user_id == user_id)
                .filter(WithdrawalChallengeRecord.state == WithdrawalState.OTP_REQUESTED.value)
                .order_by(WithdrawalChallengeRecord.created_at.desc())
                .first()
            )
            return _to_challenge(record) if record else None

    def expire_open(self, user_id: str) -> int:
        with _store_errors("expire open challenges"):
            return (
                self.db.query(WithdrawalChallengeRecord)
                .filter(WithdrawalChallengeRecord.user_id == user_id)
                .filter(WithdrawalChallengeRecord.state == WithdrawalState.OTP_REQUESTED.value)
                .update({"state": WithdrawalState.EXPIRED.value}, synchronize_session=False)
            )

    def set_state(self, challenge_id: str, state: WithdrawalState, attempts: int) -> None:
        with _store_errors("update challenge"):
            record = self.db.query(WithdrawalChallengeRecord).filter(WithdrawalChallengeRecord.id == challenge_id).first()
            if record is None:
                raise StoreError(f"Withdrawal challenge {challenge_id} not found")
            record.state = state.value
            record.attempts = attempts
            self.db.flush()


class SettingsRepository:
    """Key/value system settings, the live source of fee rates"""

    def __init__(self, db: Session):
        self.db = db

    def load(self) -> Dict[str, str]:
        with _store_errors("load settings"):
            return {row.key: row.value for row in self.db.query(SystemSetting).all()}

    def set(self, key: str, value: str) -> None:
        with _store_errors("save setting"):
            row = self.db.query(SystemSetting).filter(SystemSetting.key == key).first()
            if row is None:
                self.db.add(SystemSetting(key=key, value=value))
            else:
                row.value = value
            self.db.flush()


class SqlUnitOfWork:
    """
    One database transaction per atomic block.

    On PostgreSQL the block also takes a transaction-scoped advisory lock on
    the user id, so concurrent confirmations for one user serialise across
    processes. The lock is released by the commit or rollback.
    """

    def __init__(self, db: Session):
        self.db = db

    @contextmanager
    def atomic(self, user_id: str) -> Iterator[None]:
        try:
            if self.db.get_bind().dialect.name == "postgresql":
                self.db.execute(
                    text("SELECT pg_advisory_xact_lock(hashtext(:key))"),
                    {"key": f"payout:{user_id}"},
                )
            yield
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Store transaction rolled back", extra={"user_id": user_id, "error": str(e)})
            raise StoreError(f"Store transaction failed: {e.__class__.__name__}") from e
        except Exception:
            self.db.rollback()
            raise
