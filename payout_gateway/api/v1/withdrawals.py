"""Balance and two-step withdrawal endpoints"""

import time
import logging
from fastapi import APIRouter, Depends, HTTPException, Query, Request

from payout_gateway.api.dependencies import get_orchestrator, get_request_id
from payout_gateway.api.v1.errors import to_http_exception
from payout_gateway.api.v1.schemas import (
    BalanceResponse,
    ConfirmWithdrawalRequest,
    OtpChallengeResponse,
    WithdrawalRequest,
    WithdrawalResponse,
)
from payout_gateway.domain.exceptions import (
    DomainException,
    OtpChannelError,
    StoreError,
    ValidationError,
)
from payout_gateway.domain.withdrawals import WithdrawalOrchestrator
from payout_gateway.infrastructure.observability.logging import log_withdrawal
from payout_gateway.infrastructure.observability.metrics import (
    record_withdrawal_committed,
    record_withdrawal_request,
)

router = APIRouter()


def _failed(step: str, request_id: str, user_id: str, e: DomainException) -> HTTPException:
    if isinstance(e, ValidationError):
        record_withdrawal_request(step, e.code)
        log_withdrawal(request_id, user_id, step, e.code)
    elif isinstance(e, (StoreError, OtpChannelError)):
        record_withdrawal_request(step, "unavailable")
        logging.error(f"Withdrawal {step} failed: {e}", extra={"request_id": request_id, "user_id": user_id})
    else:
        record_withdrawal_request(step, "error")
        logging.error(f"Withdrawal {step} failed: {e}", extra={"request_id": request_id, "user_id": user_id})
    return to_http_exception(e)


@router.get("/balance", response_model=BalanceResponse)
def get_balance(
    request: Request,
    user_id: str = Query(..., min_length=1, description="User identifier"),
    orchestrator: WithdrawalOrchestrator = Depends(get_orchestrator),
):
    """Withdrawable balance recomputed from approved sales and prior withdrawals"""
    try:
        balance = orchestrator.get_balance(user_id)
    except StoreError as e:
        logging.error(f"Balance read failed: {e}", extra={"request_id": get_request_id(request)})
        raise to_http_exception(e)

    return BalanceResponse(
        user_id=user_id,
        available_cents=balance.available,
        in_retention_cents=balance.in_retention,
        total_net_cents=balance.total_net,
        total_withdrawn_cents=balance.total_withdrawn,
        pending_withdrawals_cents=balance.pending_withdrawals,
        total_fees_cents=balance.total_fees,
        can_withdraw=balance.can_withdraw,
    )


@router.post("/withdrawals", response_model=OtpChallengeResponse, status_code=202)
def request_withdrawal(
    request_body: WithdrawalRequest,
    request: Request,
    orchestrator: WithdrawalOrchestrator = Depends(get_orchestrator),
):
    """
    Start a withdrawal: validate it and send a passcode to the user.

    Nothing is debited until POST /v1/withdrawals/confirm succeeds.
    """
    start_time = time.time()
    request_id = get_request_id(request)

    try:
        challenge = orchestrator.request_withdrawal(
            request_body.user_id,
            request_body.amount_cents,
            request_body.bank_account_id,
        )
    except DomainException as e:
        raise _failed("request", request_id, request_body.user_id, e)

    duration_ms = (time.time() - start_time) * 1000
    record_withdrawal_request("request", "accepted")
    log_withdrawal(request_id, request_body.user_id, "request", "otp_sent", challenge.amount, duration_ms)

    return OtpChallengeResponse(
        challenge_id=challenge.challenge_id,
        expires_at=challenge.expires_at,
        amount_cents=challenge.amount,
        fee_cents=challenge.fee,
        net_amount_cents=challenge.net_amount,
    )


@router.post("/withdrawals/confirm", response_model=WithdrawalResponse, status_code=201)
def confirm_withdrawal(
    request_body: ConfirmWithdrawalRequest,
    request: Request,
    orchestrator: WithdrawalOrchestrator = Depends(get_orchestrator),
):
    """
    Verify the passcode and commit the withdrawal.

    Flow:
    1. Load the open challenge and verify the passcode
    2. Re-check cooldown, bank account and balance inside one store transaction
    3. Insert the withdrawal and mark the challenge committed
    """
    start_time = time.time()
    request_id = get_request_id(request)

    try:
        withdrawal = orchestrator.confirm_withdrawal(request_body.user_id, request_body.otp_code)
    except DomainException as e:
        raise _failed("confirm", request_id, request_body.user_id, e)

    duration_ms = (time.time() - start_time) * 1000
    record_withdrawal_request("confirm", "accepted")
    record_withdrawal_committed(withdrawal.requested_amount)
    log_withdrawal(request_id, request_body.user_id, "confirm", "committed", withdrawal.requested_amount, duration_ms)

    return WithdrawalResponse(
        withdrawal_id=withdrawal.id,
        status=withdrawal.status.value,
        amount_cents=withdrawal.requested_amount,
        fee_cents=withdrawal.fee,
        net_amount_cents=withdrawal.net_amount,
        bank_account_id=withdrawal.bank_account_id,
        created_at=withdrawal.created_at,
    )
