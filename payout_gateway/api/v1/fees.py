"""POST /v1/fees/* - fee quotes for sales, subscriptions and withdrawals"""

import logging
from fastapi import APIRouter, Depends, HTTPException, Request

from payout_gateway.api.dependencies import get_fee_calculator, get_request_id
from payout_gateway.api.v1.errors import to_http_exception
from payout_gateway.api.v1.schemas import (
    FeeBreakdownResponse,
    SaleFeeRequest,
    SubscriptionFeeRequest,
    WithdrawalFeeRequest,
    WithdrawalFeeResponse,
)
from payout_gateway.domain.exceptions import DomainException
from payout_gateway.domain.fees import FeeCalculator, describe_fee
from payout_gateway.domain.models import FeeBreakdown
from payout_gateway.infrastructure.observability.metrics import record_fee_error

router = APIRouter()


def _breakdown_response(breakdown: FeeBreakdown) -> FeeBreakdownResponse:
    return FeeBreakdownResponse(
        operation_type=breakdown.operation_type.value,
        payment_method=breakdown.payment_method.value,
        settlement_term_days=breakdown.settlement_term_days,
        billing_cycle=breakdown.billing_cycle,
        gross_amount_cents=breakdown.gross_amount,
        platform_fee_cents=breakdown.platform_fee,
        platform_fee_percent=breakdown.platform_fee_percent,
        platform_fixed_fee_cents=breakdown.platform_fixed_fee,
        fee_description=describe_fee(breakdown.platform_fee_percent, breakdown.platform_fixed_fee),
        acquirer_fee_cents=breakdown.acquirer_fee,
        affiliate_commission_cents=breakdown.affiliate_commission,
        affiliate_commission_percent=breakdown.affiliate_commission_percent,
        net_amount_cents=breakdown.net_amount,
        amount_in_retention_cents=breakdown.amount_in_retention,
        security_reserve_percent=breakdown.security_reserve_percent,
        formula=breakdown.formula,
        steps=list(breakdown.steps),
    )


def _quote_failed(operation: str, request: Request, e: DomainException) -> HTTPException:
    record_fee_error(operation, e)
    logging.warning(
        f"Fee quote failed: {e}",
        extra={"request_id": get_request_id(request), "operation": operation},
    )
    return to_http_exception(e)


@router.post("/fees/sale", response_model=FeeBreakdownResponse)
def quote_sale_fee(
    request_body: SaleFeeRequest,
    request: Request,
    calculator: FeeCalculator = Depends(get_fee_calculator),
):
    """Fee breakdown for a sale: platform fee, acquirer fee, commission, net and retention"""
    try:
        breakdown = calculator.compute_sale_fee(
            request_body.gross_amount_cents,
            request_body.payment_method,
            request_body.settlement_term_days,
            request_body.affiliate_commission_percent,
        )
    except DomainException as e:
        raise _quote_failed("sale", request, e)
    return _breakdown_response(breakdown)


@router.post("/fees/subscription", response_model=FeeBreakdownResponse)
def quote_subscription_fee(
    request_body: SubscriptionFeeRequest,
    request: Request,
    calculator: FeeCalculator = Depends(get_fee_calculator),
):
    """Fee breakdown for one recurring subscription charge"""
    try:
        breakdown = calculator.compute_subscription_fee(
            request_body.amount_cents,
            request_body.payment_method,
            request_body.billing_cycle,
        )
    except DomainException as e:
        raise _quote_failed("subscription", request, e)
    return _breakdown_response(breakdown)


@router.post("/fees/withdrawal", response_model=WithdrawalFeeResponse)
def quote_withdrawal_fee(
    request_body: WithdrawalFeeRequest,
    request: Request,
    calculator: FeeCalculator = Depends(get_fee_calculator),
):
    """Fee and net amount for a withdrawal of the requested amount"""
    try:
        fee = calculator.compute_withdrawal_fee(request_body.amount_cents)
    except DomainException as e:
        raise _quote_failed("withdrawal", request, e)
    return WithdrawalFeeResponse(
        requested_amount_cents=fee.requested_amount,
        fee_cents=fee.fee,
        fee_description=describe_fee(fee.fee_percent, fee.fixed_fee),
        net_amount_cents=fee.net_amount,
        steps=list(fee.steps),
    )
