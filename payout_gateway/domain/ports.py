"""Contracts the domain services expect from stores and external channels"""

from datetime import datetime
from typing import ContextManager, List, Optional, Protocol, Sequence

from payout_gateway.domain.models import (
    BankAccount,
    FeeBreakdown,
    Transaction,
    TransactionStatus,
    Withdrawal,
    WithdrawalChallenge,
    WithdrawalState,
)


class TransactionStore(Protocol):
    def list_by_user(self, user_id: str, statuses: Sequence[TransactionStatus]) -> List[Transaction]:
        ...

    def get(self, transaction_id: str) -> Optional[Transaction]:
        ...

    def update_fees(self, transaction_id: str, breakdown: FeeBreakdown, corrected_at: datetime) -> None:
        ...


class WithdrawalStore(Protocol):
    def list_by_user(self, user_id: str) -> List[Withdrawal]:
        ...

    def latest_active(self, user_id: str) -> Optional[Withdrawal]:
        """Most recent withdrawal that was not rejected"""
        ...

    def get_by_idempotency_key(self, key: str) -> Optional[Withdrawal]:
        ...

    def insert(self, withdrawal: Withdrawal) -> Withdrawal:
        ...


class BankAccountStore(Protocol):
    def get_for_user(self, bank_account_id: str, user_id: str) -> Optional[BankAccount]:
        ...


class ChallengeStore(Protocol):
    def save(self, challenge: WithdrawalChallenge) -> None:
        ...

    def get_open(self, user_id: str) -> Optional[WithdrawalChallenge]:
        """Most recent challenge in OTP_REQUESTED state"""
        ...

    def expire_open(self, user_id: str) -> int:
        """Move every OTP_REQUESTED challenge of the user to EXPIRED"""
        ...

    def set_state(self, challenge_id: str, state: WithdrawalState, attempts: int) -> None:
        ...


class OtpChannel(Protocol):
    def send(self, destination: str, purpose: str) -> str:
        """Deliver a passcode and return the challenge id"""
        ...

    def verify(self, challenge_id: str, code: str) -> bool:
        ...


class UnitOfWork(Protocol):
    def atomic(self, user_id: str) -> ContextManager[None]:
        """
        One store transaction serialised per user.

        Commits when the block exits normally, rolls back on any exception.
        """
        ...
