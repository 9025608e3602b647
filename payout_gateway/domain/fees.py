"""Fee calculator - turns a gross amount into a full fee breakdown"""

import logging
from decimal import Decimal
from typing import List, Optional, Protocol

from payout_gateway.domain.exceptions import InvalidAmountError, NegativeNetAmountError
from payout_gateway.domain.fee_config import FeeSchedule
from payout_gateway.domain.models import (
    FeeBreakdown,
    FeeConfig,
    OperationType,
    PaymentMethod,
    WithdrawalFee,
)
from payout_gateway.domain.money import (
    apply_percent,
    ensure_cents,
    format_money,
    validate_percent,
)

logger = logging.getLogger(__name__)

SALE_FORMULA = "net = gross - platform_fee - acquirer_fee - affiliate_commission"
SUBSCRIPTION_FORMULA = "net = plan_amount - platform_fee - acquirer_fee"
WITHDRAWAL_FORMULA = "net = requested - withdrawal_percent_fee - withdrawal_fixed_fee"

BILLING_CYCLES = ("monthly", "yearly")


class FeeConfigProvider(Protocol):
    def get_schedule(self) -> FeeSchedule:
        ...


class FeeCalculator:
    """
    Pure fee math over an injected configuration provider.

    Rules:
    - each operation type resolves its own FeeConfig row; a sale rate is
      never used for a withdrawal or subscription and vice versa
    - every fee is applied exactly once
    - a negative net is an error, never clamped
    """

    def __init__(self, provider: FeeConfigProvider):
        self._provider = provider

    def compute_sale_fee(
        self,
        gross_amount: int,
        payment_method: PaymentMethod,
        settlement_term_days: Optional[int] = None,
        affiliate_commission_percent: Optional[Decimal] = None,
    ) -> FeeBreakdown:
        """
        Fee breakdown for a sale.

        Order of calculation:
        1. gross amount paid by the buyer
        2. platform fee = percent of gross + fixed fee (per method and term)
        3. acquirer fee, flat per transaction (card methods)
        4. affiliate commission = percent of gross, when an affiliate is attached
        5. net = gross - platform - acquirer - commission
        6. amount in retention = security reserve percent of net (reported only)

        Raises:
            InvalidAmountError: gross is not a positive integer
            ConfigurationError: no row resolves or a percentage is out of range
            NegativeNetAmountError: fees and commission exceed gross
        """
        self._check_positive(gross_amount, "gross_amount")
        config = self._provider.get_schedule().resolve(OperationType.SALE, payment_method, settlement_term_days)
        return self._breakdown(
            OperationType.SALE,
            config,
            gross_amount,
            payment_method,
            settlement_term_days,
            affiliate_commission_percent,
            billing_cycle=None,
            formula=SALE_FORMULA,
        )

    def compute_subscription_fee(
        self,
        gross_amount: int,
        payment_method: PaymentMethod,
        billing_cycle: str = "monthly",
    ) -> FeeBreakdown:
        """Fee breakdown for one recurring subscription charge (recomputed every cycle)"""
        self._check_positive(gross_amount, "gross_amount")
        if billing_cycle not in BILLING_CYCLES:
            raise InvalidAmountError(f"Unknown billing cycle: {billing_cycle}")
        config = self._provider.get_schedule().resolve(OperationType.SUBSCRIPTION, payment_method)
        return self._breakdown(
            OperationType.SUBSCRIPTION,
            config,
            gross_amount,
            payment_method,
            None,
            None,
            billing_cycle=billing_cycle,
            formula=SUBSCRIPTION_FORMULA,
        )

    def compute_withdrawal_fee(self, requested_amount: int) -> WithdrawalFee:
        """
        Withdrawal fee, debited from the requested amount.

        The user's balance is debited by requested_amount; net_amount is what
        reaches the bank account. A fee equal to or above the requested amount
        is rejected.
        """
        self._check_positive(requested_amount, "requested_amount")
        config = self._provider.get_schedule().resolve(OperationType.WITHDRAWAL)

        percent_part = apply_percent(requested_amount, config.percent_fee)
        fee = percent_part + config.fixed_fee
        net_amount = requested_amount - fee

        steps = (
            f"[WITHDRAWAL] 1. Requested: {format_money(requested_amount)}",
            f"[WITHDRAWAL] 2. Percent fee {config.percent_fee}%: {format_money(percent_part)}",
            f"[WITHDRAWAL] 3. Fixed fee: {format_money(config.fixed_fee)}",
            f"[WITHDRAWAL] 4. Net received: {format_money(requested_amount)} - {format_money(fee)}"
            f" = {format_money(net_amount)}",
        )

        if net_amount <= 0:
            raise NegativeNetAmountError(
                f"Withdrawal fee ({format_money(fee)}) is greater than or equal to "
                f"the requested amount ({format_money(requested_amount)})",
                gross_amount=requested_amount,
                net_amount=net_amount,
            )

        return WithdrawalFee(
            requested_amount=requested_amount,
            fee=fee,
            fee_percent=config.percent_fee,
            fixed_fee=config.fixed_fee,
            net_amount=net_amount,
            steps=steps,
        )

    def _breakdown(
        self,
        operation_type: OperationType,
        config: FeeConfig,
        gross_amount: int,
        payment_method: PaymentMethod,
        settlement_term_days: Optional[int],
        affiliate_commission_percent: Optional[Decimal],
        billing_cycle: Optional[str],
        formula: str,
    ) -> FeeBreakdown:
        label = operation_type.value.upper()
        steps: List[str] = [f"[{label}] 1. Gross: {format_money(gross_amount)}"]

        percent_part = apply_percent(gross_amount, config.percent_fee)
        platform_fee = percent_part + config.fixed_fee
        steps.append(
            f"[{label}] 2. Platform fee ({payment_method.value}): {config.percent_fee}% = "
            f"{format_money(percent_part)} + {format_money(config.fixed_fee)} fixed = {format_money(platform_fee)}"
        )

        acquirer_fee = config.acquirer_fee_per_transaction
        steps.append(f"[{label}] 3. Acquirer fee: {format_money(acquirer_fee)}")

        commission_percent = Decimal("0")
        commission = 0
        if affiliate_commission_percent:
            commission_percent = validate_percent(affiliate_commission_percent, "affiliate_commission_percent")
            commission = apply_percent(gross_amount, commission_percent)
            steps.append(f"[{label}] 4. Affiliate commission: {commission_percent}% = {format_money(commission)}")
        else:
            steps.append(f"[{label}] 4. Affiliate commission: {format_money(0)} (no affiliate)")

        net_amount = gross_amount - platform_fee - acquirer_fee - commission
        steps.append(
            f"[{label}] 5. Net: {format_money(gross_amount)} - {format_money(platform_fee + acquirer_fee + commission)}"
            f" = {format_money(net_amount)}"
        )

        if net_amount < 0:
            raise NegativeNetAmountError(
                f"Net amount would be {format_money(net_amount)}: fees and commission "
                f"({format_money(platform_fee + acquirer_fee + commission)}) exceed gross "
                f"({format_money(gross_amount)})",
                gross_amount=gross_amount,
                net_amount=net_amount,
            )

        retention = apply_percent(net_amount, config.security_reserve_percent)
        if retention:
            steps.append(
                f"[{label}] 6. Security reserve {config.security_reserve_percent}%: {format_money(retention)}"
                f" held until day {settlement_term_days}"
            )

        breakdown = FeeBreakdown(
            operation_type=operation_type,
            payment_method=payment_method,
            settlement_term_days=settlement_term_days,
            gross_amount=gross_amount,
            platform_fee=platform_fee,
            platform_fee_percent=config.percent_fee,
            platform_fixed_fee=config.fixed_fee,
            acquirer_fee=acquirer_fee,
            affiliate_commission=commission,
            affiliate_commission_percent=commission_percent,
            net_amount=net_amount,
            amount_in_retention=retention,
            security_reserve_percent=config.security_reserve_percent,
            billing_cycle=billing_cycle,
            formula=formula,
            steps=tuple(steps),
        )
        logger.debug(breakdown.audit_log())
        return breakdown

    @staticmethod
    def _check_positive(amount: int, name: str) -> None:
        ensure_cents(amount, name)
        if amount <= 0:
            raise InvalidAmountError(f"{name} must be greater than zero")


def describe_fee(percent_fee: Decimal, fixed_fee: int) -> str:
    """Human readable rate, e.g. '4.99% + R$ 1.49', 'R$ 4.90' or 'Exempt'"""
    if percent_fee > 0 and fixed_fee > 0:
        return f"{percent_fee}% + {format_money(fixed_fee)}"
    if percent_fee > 0:
        return f"{percent_fee}%"
    if fixed_fee > 0:
        return format_money(fixed_fee)
    return "Exempt"
