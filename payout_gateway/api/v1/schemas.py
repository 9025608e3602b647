"""Pydantic schemas for API request/response validation"""

from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional

from payout_gateway.domain.models import PaymentMethod


class SaleFeeRequest(BaseModel):
    """Request body for POST /v1/fees/sale"""

    gross_amount_cents: int = Field(..., gt=0, description="Amount paid by the buyer in cents")
    payment_method: PaymentMethod
    settlement_term_days: Optional[int] = Field(None, gt=0, description="Card settlement term")
    affiliate_commission_percent: Optional[Decimal] = Field(None, ge=0, le=100)


class SubscriptionFeeRequest(BaseModel):
    """Request body for POST /v1/fees/subscription"""

    amount_cents: int = Field(..., gt=0, description="Plan amount charged per cycle in cents")
    payment_method: PaymentMethod
    billing_cycle: Literal["monthly", "yearly"] = "monthly"


class WithdrawalFeeRequest(BaseModel):
    """Request body for POST /v1/fees/withdrawal"""

    amount_cents: int = Field(..., gt=0, description="Requested withdrawal amount in cents")


class FeeBreakdownResponse(BaseModel):
    """Full fee breakdown for a sale or subscription charge"""

    operation_type: str
    payment_method: str
    settlement_term_days: Optional[int] = None
    billing_cycle: Optional[str] = None
    gross_amount_cents: int
    platform_fee_cents: int
    platform_fee_percent: Decimal
    platform_fixed_fee_cents: int
    fee_description: str
    acquirer_fee_cents: int
    affiliate_commission_cents: int
    affiliate_commission_percent: Decimal
    net_amount_cents: int
    amount_in_retention_cents: int
    security_reserve_percent: Decimal
    formula: str
    steps: List[str]


class WithdrawalFeeResponse(BaseModel):
    """Response for POST /v1/fees/withdrawal"""

    requested_amount_cents: int
    fee_cents: int
    fee_description: str
    net_amount_cents: int
    steps: List[str]


class BalanceResponse(BaseModel):
    """Response for GET /v1/balance"""

    user_id: str
    available_cents: int
    in_retention_cents: int
    total_net_cents: int
    total_withdrawn_cents: int
    pending_withdrawals_cents: int
    total_fees_cents: int
    can_withdraw: bool


class WithdrawalRequest(BaseModel):
    """Request body for POST /v1/withdrawals"""

    user_id: str = Field(..., min_length=1, description="User identifier")
    amount_cents: int = Field(..., gt=0, description="Amount to debit from the balance in cents")
    bank_account_id: str = Field(..., min_length=1)


class OtpChallengeResponse(BaseModel):
    """Response for POST /v1/withdrawals - a passcode was sent"""

    challenge_id: str
    expires_at: datetime
    amount_cents: int
    fee_cents: int
    net_amount_cents: int


class ConfirmWithdrawalRequest(BaseModel):
    """Request body for POST /v1/withdrawals/confirm"""

    user_id: str = Field(..., min_length=1)
    otp_code: str = Field(..., pattern=r"^\d{6}$", description="6-digit passcode")


class WithdrawalResponse(BaseModel):
    """Committed withdrawal"""

    withdrawal_id: str
    status: str
    amount_cents: int
    fee_cents: int
    net_amount_cents: int
    bank_account_id: str
    created_at: datetime


class AuditResultSchema(BaseModel):
    """Reconciliation outcome for one transaction"""

    transaction_id: str
    status: str
    stored_net_amount_cents: int
    computed_net_amount_cents: Optional[int] = None
    divergences: List[str]
    error: Optional[str] = None


class AuditSummarySchema(BaseModel):
    total_transactions: int
    correct: int
    corrected: int
    divergent: int
    errors: int
    total_gross_cents: int
    total_platform_fees_cents: int
    total_acquirer_fees_cents: int
    total_affiliate_commissions_cents: int
    total_net_cents: int
    total_divergence_cents: int


class AuditResponse(BaseModel):
    """Response for GET /v1/audit"""

    user_id: str
    audited_at: datetime
    summary: AuditSummarySchema
    results: List[AuditResultSchema]


class CorrectionResponse(BaseModel):
    """Response for POST /v1/audit/transactions/{transaction_id}/correct"""

    transaction_id: str
    success: bool


class CorrectAllRequest(BaseModel):
    """Request body for POST /v1/audit/correct-all"""

    user_id: str = Field(..., min_length=1)


class CorrectAllResponse(BaseModel):
    user_id: str
    corrected: int
    errors: int
