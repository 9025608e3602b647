"""Domain models - pure Python dataclasses representing business entities"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional, Tuple

from payout_gateway.domain.exceptions import AuditDivergenceError


class OperationType(str, Enum):
    """Each operation type has its own fee rules; rows never cross types"""

    SALE = "sale"
    WITHDRAWAL = "withdrawal"
    SUBSCRIPTION = "subscription"


class PaymentMethod(str, Enum):
    PIX = "pix"
    CREDIT_CARD = "credit_card"
    BOLETO = "boleto"
    DEBIT_CARD = "debit_card"
    BALANCE = "balance"  # paid with platform balance

    @property
    def is_card(self) -> bool:
        return self in (PaymentMethod.CREDIT_CARD, PaymentMethod.DEBIT_CARD)


class TransactionStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    RETAINED = "retained"
    CANCELLED = "cancelled"
    REFUSED = "refused"
    REFUNDED = "refunded"


# Only these statuses carry fees and contribute net amount to the balance
FEE_BEARING_STATUSES = (TransactionStatus.APPROVED, TransactionStatus.RETAINED)


class WithdrawalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    COMPLETED = "completed"
    REJECTED = "rejected"

    def can_transition_to(self, target: "WithdrawalStatus") -> bool:
        """Downstream payout processing transitions"""
        return (self, target) in _WITHDRAWAL_TRANSITIONS


_WITHDRAWAL_TRANSITIONS = {
    (WithdrawalStatus.PENDING, WithdrawalStatus.APPROVED),
    (WithdrawalStatus.PENDING, WithdrawalStatus.REJECTED),
    (WithdrawalStatus.APPROVED, WithdrawalStatus.COMPLETED),
    (WithdrawalStatus.APPROVED, WithdrawalStatus.REJECTED),
}


class WithdrawalState(str, Enum):
    """Two-step withdrawal request flow"""

    FORM = "form"
    OTP_REQUESTED = "otp_requested"
    COMMITTED = "committed"
    REJECTED = "rejected"
    EXPIRED = "expired"  # abandoned or superseded by a newer request

    @property
    def is_terminal(self) -> bool:
        return self in (WithdrawalState.COMMITTED, WithdrawalState.REJECTED, WithdrawalState.EXPIRED)


class AuditStatus(str, Enum):
    CORRECT = "correct"
    CORRECTED = "corrected"
    DIVERGENT = "divergent"


@dataclass(frozen=True)
class FeeConfig:
    """
    One row of the fee table.

    payment_method is None for withdrawal rows; settlement_term_days None
    means the row applies to any settlement term.
    """

    operation_type: OperationType
    payment_method: Optional[PaymentMethod]
    settlement_term_days: Optional[int]
    percent_fee: Decimal
    fixed_fee: int
    acquirer_fee_per_transaction: int = 0
    security_reserve_percent: Decimal = Decimal("0")

    @property
    def key(self) -> Tuple[OperationType, Optional[PaymentMethod], Optional[int]]:
        return (self.operation_type, self.payment_method, self.settlement_term_days)


@dataclass(frozen=True)
class FeeBreakdown:
    """Calculator output for sales and subscription charges"""

    operation_type: OperationType
    payment_method: PaymentMethod
    settlement_term_days: Optional[int]
    gross_amount: int
    platform_fee: int
    platform_fee_percent: Decimal
    platform_fixed_fee: int
    acquirer_fee: int
    affiliate_commission: int
    affiliate_commission_percent: Decimal
    net_amount: int
    amount_in_retention: int
    security_reserve_percent: Decimal
    billing_cycle: Optional[str] = None
    formula: str = ""
    steps: Tuple[str, ...] = ()

    @property
    def total_fees(self) -> int:
        return self.platform_fee + self.acquirer_fee + self.affiliate_commission

    def audit_log(self) -> str:
        """Render the calculation trail for audit records"""
        lines = [
            f"=== FEE AUDIT - {self.operation_type.value.upper()} ===",
            f"Formula: {self.formula}",
            "Steps:",
            *self.steps,
        ]
        return "\n".join(lines)


@dataclass(frozen=True)
class WithdrawalFee:
    """Calculator output for a withdrawal; the balance is debited requested_amount"""

    requested_amount: int
    fee: int
    fee_percent: Decimal
    fixed_fee: int
    net_amount: int
    steps: Tuple[str, ...] = ()


@dataclass
class Transaction:
    """Sale recorded by the checkout process, with persisted fee fields"""

    id: str
    user_id: str
    gross_amount: int
    payment_method: PaymentMethod
    settlement_term_days: Optional[int]
    affiliate_commission_percent: Optional[Decimal]
    status: TransactionStatus
    platform_fee: int
    acquirer_fee: int
    commission_amount: int
    net_amount: int
    created_at: datetime
    corrected_at: Optional[datetime] = None


@dataclass
class Withdrawal:
    """Payout request committed after passcode confirmation"""

    id: str
    user_id: str
    requested_amount: int
    fee: int
    net_amount: int
    bank_account_id: str
    status: WithdrawalStatus
    created_at: datetime
    idempotency_key: Optional[str] = None


@dataclass
class BankAccount:
    id: str
    user_id: str
    status: str  # "approved" is the only status eligible for payouts
    bank_name: str = ""


@dataclass
class WithdrawalChallenge:
    """Persisted state between requesting and confirming a withdrawal"""

    id: str
    user_id: str
    challenge_id: str
    amount: int
    bank_account_id: str
    state: WithdrawalState
    expires_at: datetime
    created_at: datetime
    attempts: int = 0


@dataclass(frozen=True)
class OtpChallenge:
    """Returned to the caller when a passcode has been sent"""

    challenge_id: str
    expires_at: datetime
    amount: int
    fee: int
    net_amount: int


@dataclass
class AuditResult:
    """Reconciliation outcome for one transaction"""

    transaction_id: str
    status: AuditStatus
    breakdown: Optional[FeeBreakdown]
    divergences: List[str] = field(default_factory=list)
    stored_net_amount: int = 0
    error: Optional[str] = None


@dataclass
class AuditSummary:
    """Account-level totals across all audited transactions"""

    total_transactions: int = 0
    correct: int = 0
    corrected: int = 0
    divergent: int = 0
    errors: int = 0
    total_gross: int = 0
    total_platform_fees: int = 0
    total_acquirer_fees: int = 0
    total_affiliate_commissions: int = 0
    total_net: int = 0
    total_divergence: int = 0


@dataclass
class AuditReport:
    user_id: str
    audited_at: datetime
    results: List[AuditResult]
    summary: AuditSummary

    def raise_for_divergence(self) -> None:
        """Raise AuditDivergenceError for the first divergent transaction, if any"""
        for result in self.results:
            if result.status == AuditStatus.DIVERGENT:
                raise AuditDivergenceError(result.transaction_id, result.divergences)


@dataclass(frozen=True)
class CorrectionReport:
    corrected: int
    errors: int


@dataclass(frozen=True)
class BalanceSnapshot:
    """Withdrawable balance derived from net amounts and prior withdrawals"""

    available: int
    in_retention: int
    total_net: int
    total_withdrawn: int
    pending_withdrawals: int
    total_fees: int
    can_withdraw: bool
