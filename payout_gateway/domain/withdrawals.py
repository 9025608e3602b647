"""Withdrawal orchestrator - two-step request/confirm flow with balance re-check"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable

from payout_gateway.domain.balance import compute_balance
from payout_gateway.domain.exceptions import (
    InvalidStateTransition,
    NegativeNetAmountError,
    ValidationError,
)
from payout_gateway.domain.fees import FeeCalculator
from payout_gateway.domain.locks import UserLocks
from payout_gateway.domain.models import (
    FEE_BEARING_STATUSES,
    BalanceSnapshot,
    OtpChallenge,
    Withdrawal,
    WithdrawalChallenge,
    WithdrawalFee,
    WithdrawalState,
    WithdrawalStatus,
)
from payout_gateway.domain.money import format_money
from payout_gateway.domain.ports import (
    BankAccountStore,
    ChallengeStore,
    OtpChannel,
    TransactionStore,
    UnitOfWork,
    WithdrawalStore,
)
from payout_gateway.utils.date_utils import ensure_aware, remaining_cooldown_minutes

logger = logging.getLogger(__name__)

OTP_PURPOSE = "withdrawal"

# Legal transitions of a withdrawal request; anything else is rejected
_TRANSITIONS = {
    (WithdrawalState.FORM, WithdrawalState.OTP_REQUESTED),
    (WithdrawalState.FORM, WithdrawalState.REJECTED),
    (WithdrawalState.OTP_REQUESTED, WithdrawalState.COMMITTED),
    (WithdrawalState.OTP_REQUESTED, WithdrawalState.REJECTED),
    (WithdrawalState.OTP_REQUESTED, WithdrawalState.EXPIRED),
    # a wrong code keeps the challenge open while attempts remain
    (WithdrawalState.OTP_REQUESTED, WithdrawalState.OTP_REQUESTED),
}


def transition(current: WithdrawalState, target: WithdrawalState) -> WithdrawalState:
    """Validate a state change and return the new state"""
    if (current, target) not in _TRANSITIONS:
        raise InvalidStateTransition(f"Illegal transition: {current.value} -> {target.value}")
    return target


@dataclass(frozen=True)
class WithdrawalPolicy:
    """Limits applied to every withdrawal request (amounts in cents)"""

    min_withdrawal: int = 5_000
    max_withdrawal: int = 5_000_000
    cooldown_minutes: int = 15
    otp_ttl_minutes: int = 5
    otp_max_attempts: int = 5
    auto_approve: bool = False
    lock_timeout_seconds: float = 10.0

    @classmethod
    def from_settings(cls, settings) -> "WithdrawalPolicy":
        return cls(
            min_withdrawal=settings.min_withdrawal_cents,
            max_withdrawal=settings.max_withdrawal_cents,
            cooldown_minutes=settings.withdrawal_cooldown_minutes,
            otp_ttl_minutes=settings.otp_ttl_minutes,
            otp_max_attempts=settings.otp_max_attempts,
            auto_approve=settings.auto_approve_withdrawals,
            lock_timeout_seconds=settings.store_timeout_ms / 1000,
        )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class WithdrawalOrchestrator:
    """
    Drives FORM -> OTP_REQUESTED -> COMMITTED (or REJECTED / EXPIRED).

    The balance is read twice: once when the passcode is requested (fast
    fail for the user) and again after the passcode is verified, inside the
    same store transaction that inserts the withdrawal. Only the second read
    is trusted.
    """

    def __init__(
        self,
        calculator: FeeCalculator,
        transactions: TransactionStore,
        withdrawals: WithdrawalStore,
        bank_accounts: BankAccountStore,
        challenges: ChallengeStore,
        otp_channel: OtpChannel,
        unit_of_work: UnitOfWork,
        locks: UserLocks,
        policy: WithdrawalPolicy = WithdrawalPolicy(),
        clock: Callable[[], datetime] = _utcnow,
        id_factory: Callable[[], str] = _new_id,
    ):
        self._calculator = calculator
        self._transactions = transactions
        self._withdrawals = withdrawals
        self._bank_accounts = bank_accounts
        self._challenges = challenges
        self._otp = otp_channel
        self._uow = unit_of_work
        self._locks = locks
        self._policy = policy
        self._clock = clock
        self._new_id = id_factory

    def get_balance(self, user_id: str) -> BalanceSnapshot:
        """Current withdrawable balance, recomputed from the store"""
        transactions = self._transactions.list_by_user(user_id, FEE_BEARING_STATUSES)
        withdrawals = self._withdrawals.list_by_user(user_id)
        return compute_balance(transactions, withdrawals, self._policy.min_withdrawal)

    def request_withdrawal(self, user_id: str, amount: int, bank_account_id: str) -> OtpChallenge:
        """
        Validate a withdrawal and send a passcode.

        Checks run cheapest first: amount bounds and fee, cooldown, bank
        account ownership/approval, available balance.

        Raises:
            ValidationError: any check failed (the request ends REJECTED)
            OtpChannelError: the passcode could not be sent
            StoreError: a store read or write failed
        """
        try:
            fee = self._check_amount(amount)
            self._check_cooldown(user_id)
            self._check_bank_account(user_id, bank_account_id)
            self._check_balance(user_id, amount)
        except ValidationError as e:
            state = transition(WithdrawalState.FORM, WithdrawalState.REJECTED)
            logger.info(
                "Withdrawal request rejected",
                extra={
                    "user_id": user_id,
                    "step": "request",
                    "state": state.value,
                    "reason": e.code,
                    "amount": amount,
                },
            )
            raise

        challenge_id = self._otp.send(user_id, OTP_PURPOSE)
        now = self._clock()
        challenge = WithdrawalChallenge(
            id=self._new_id(),
            user_id=user_id,
            challenge_id=challenge_id,
            amount=amount,
            bank_account_id=bank_account_id,
            state=transition(WithdrawalState.FORM, WithdrawalState.OTP_REQUESTED),
            expires_at=now + timedelta(minutes=self._policy.otp_ttl_minutes),
            created_at=now,
        )
        with self._uow.atomic(user_id):
            # a newer request supersedes any passcode still open
            self._challenges.expire_open(user_id)
            self._challenges.save(challenge)

        logger.info(
            "Withdrawal passcode requested",
            extra={"user_id": user_id, "step": "otp_requested", "amount": amount, "fee": fee.fee},
        )
        return OtpChallenge(
            challenge_id=challenge_id,
            expires_at=challenge.expires_at,
            amount=amount,
            fee=fee.fee,
            net_amount=fee.net_amount,
        )

    def confirm_withdrawal(self, user_id: str, otp_code: str) -> Withdrawal:
        """
        Verify the passcode and commit the withdrawal.

        All-or-nothing: either a withdrawal row is inserted and the challenge
        becomes COMMITTED, or nothing is written apart from the challenge's
        attempt counter / rejection.
        """
        challenge = self._challenges.get_open(user_id)
        if challenge is None:
            raise ValidationError(
                "No pending withdrawal request. Start a new withdrawal.", code="no_pending_request"
            )

        if ensure_aware(challenge.expires_at) <= self._clock():
            self._finish(challenge, WithdrawalState.EXPIRED, challenge.attempts)
            raise ValidationError("Passcode expired. Start a new withdrawal.", code="otp_expired")

        if not self._otp.verify(challenge.challenge_id, otp_code):
            self._reject_code(challenge)

        with self._locks.hold(user_id, timeout=self._policy.lock_timeout_seconds) as acquired:
            if not acquired:
                raise ValidationError(
                    "Another withdrawal confirmation is in progress. Try again shortly.",
                    code="confirmation_in_progress",
                )
            try:
                withdrawal = self._commit(challenge)
            except ValidationError as e:
                self._finish(challenge, WithdrawalState.REJECTED, challenge.attempts)
                logger.info(
                    "Withdrawal confirmation rejected",
                    extra={"user_id": user_id, "step": "confirm", "reason": e.code},
                )
                raise

        logger.info(
            "Withdrawal committed",
            extra={
                "user_id": user_id,
                "step": "committed",
                "withdrawal_id": withdrawal.id,
                "amount": withdrawal.requested_amount,
                "fee": withdrawal.fee,
                "net_amount": withdrawal.net_amount,
            },
        )
        return withdrawal

    def _commit(self, challenge: WithdrawalChallenge) -> Withdrawal:
        user_id = challenge.user_id
        key = f"{user_id}:{challenge.challenge_id}"
        with self._uow.atomic(user_id):
            existing = self._withdrawals.get_by_idempotency_key(key)
            if existing is not None:
                return existing

            # authoritative checks, after passcode verification and before the insert
            self._check_cooldown(user_id)
            self._check_bank_account(user_id, challenge.bank_account_id)
            self._check_balance(user_id, challenge.amount)
            fee = self._withdrawal_fee(challenge.amount)

            withdrawal = Withdrawal(
                id=self._new_id(),
                user_id=user_id,
                requested_amount=challenge.amount,
                fee=fee.fee,
                net_amount=fee.net_amount,
                bank_account_id=challenge.bank_account_id,
                status=WithdrawalStatus.APPROVED if self._policy.auto_approve else WithdrawalStatus.PENDING,
                created_at=self._clock(),
                idempotency_key=key,
            )
            withdrawal = self._withdrawals.insert(withdrawal)
            self._challenges.set_state(
                challenge.id,
                transition(challenge.state, WithdrawalState.COMMITTED),
                challenge.attempts,
            )
        return withdrawal

    def _reject_code(self, challenge: WithdrawalChallenge) -> None:
        attempts = challenge.attempts + 1
        remaining = self._policy.otp_max_attempts - attempts
        if remaining <= 0:
            self._finish(challenge, WithdrawalState.REJECTED, attempts)
            raise ValidationError(
                "Too many invalid passcode attempts. Start a new withdrawal.", code="otp_attempts_exceeded"
            )
        self._finish(challenge, WithdrawalState.OTP_REQUESTED, attempts)
        raise ValidationError(f"Invalid passcode. {remaining} attempt(s) left.", code="otp_mismatch")

    def _finish(self, challenge: WithdrawalChallenge, state: WithdrawalState, attempts: int) -> None:
        with self._uow.atomic(challenge.user_id):
            self._challenges.set_state(challenge.id, transition(challenge.state, state), attempts)

    def _check_amount(self, amount: int) -> WithdrawalFee:
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise ValidationError("Withdrawal amount must be greater than zero.", code="invalid_amount")
        if amount < self._policy.min_withdrawal:
            raise ValidationError(
                f"Amount below the minimum withdrawal of {format_money(self._policy.min_withdrawal)}.",
                code="below_minimum",
            )
        if amount > self._policy.max_withdrawal:
            raise ValidationError(
                f"Amount above the maximum withdrawal of {format_money(self._policy.max_withdrawal)}.",
                code="above_maximum",
            )
        return self._withdrawal_fee(amount)

    def _withdrawal_fee(self, amount: int) -> WithdrawalFee:
        try:
            return self._calculator.compute_withdrawal_fee(amount)
        except NegativeNetAmountError as e:
            raise ValidationError(str(e), code="fee_exceeds_amount") from e

    def _check_cooldown(self, user_id: str) -> None:
        last = self._withdrawals.latest_active(user_id)
        if last is None:
            return
        remaining = remaining_cooldown_minutes(last.created_at, self._clock(), self._policy.cooldown_minutes)
        if remaining > 0:
            raise ValidationError(
                f"Please wait {remaining} more minute(s) before requesting a new withdrawal. "
                f"Limit: 1 withdrawal every {self._policy.cooldown_minutes} minutes.",
                code="cooldown_active",
                retry_after_minutes=remaining,
            )

    def _check_bank_account(self, user_id: str, bank_account_id: str) -> None:
        account = self._bank_accounts.get_for_user(bank_account_id, user_id)
        if account is None:
            logger.warning(
                "Bank account not found for user",
                extra={"user_id": user_id, "bank_account_id": bank_account_id},
            )
            raise ValidationError("Bank account not found for this user.", code="bank_account_not_found")
        if account.status != "approved":
            raise ValidationError("Bank account has not been approved yet.", code="bank_account_not_approved")

    def _check_balance(self, user_id: str, amount: int) -> BalanceSnapshot:
        balance = self.get_balance(user_id)
        if amount > balance.available:
            shortfall = amount - balance.available
            raise ValidationError(
                f"Insufficient balance: available {format_money(balance.available)}, "
                f"requested {format_money(amount)}, short by {format_money(shortfall)}.",
                code="insufficient_balance",
                shortfall=shortfall,
            )
        return balance
