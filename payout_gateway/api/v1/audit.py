"""Reconciliation audit endpoints"""

import time
import logging
from fastapi import APIRouter, Depends, Query, Request

from payout_gateway.api.dependencies import get_auditor, get_request_id
from payout_gateway.api.v1.errors import to_http_exception
from payout_gateway.api.v1.schemas import (
    AuditResponse,
    AuditResultSchema,
    AuditSummarySchema,
    CorrectAllRequest,
    CorrectAllResponse,
    CorrectionResponse,
)
from payout_gateway.domain.audit import ReconciliationAuditor
from payout_gateway.domain.exceptions import AuditInProgressError, StoreError
from payout_gateway.domain.models import AuditReport, CorrectionReport
from payout_gateway.infrastructure.observability.logging import log_audit
from payout_gateway.infrastructure.observability.metrics import record_audit, record_corrections

router = APIRouter()


def _audit_response(report: AuditReport) -> AuditResponse:
    summary = report.summary
    return AuditResponse(
        user_id=report.user_id,
        audited_at=report.audited_at,
        summary=AuditSummarySchema(
            total_transactions=summary.total_transactions,
            correct=summary.correct,
            corrected=summary.corrected,
            divergent=summary.divergent,
            errors=summary.errors,
            total_gross_cents=summary.total_gross,
            total_platform_fees_cents=summary.total_platform_fees,
            total_acquirer_fees_cents=summary.total_acquirer_fees,
            total_affiliate_commissions_cents=summary.total_affiliate_commissions,
            total_net_cents=summary.total_net,
            total_divergence_cents=summary.total_divergence,
        ),
        results=[
            AuditResultSchema(
                transaction_id=r.transaction_id,
                status=r.status.value,
                stored_net_amount_cents=r.stored_net_amount,
                computed_net_amount_cents=r.breakdown.net_amount if r.breakdown else None,
                divergences=r.divergences,
                error=r.error,
            )
            for r in report.results
        ],
    )


@router.get("/audit", response_model=AuditResponse)
def audit_user(
    request: Request,
    user_id: str = Query(..., min_length=1, description="User identifier"),
    auditor: ReconciliationAuditor = Depends(get_auditor),
):
    """Recompute every approved/retained sale of the user and compare with stored fees"""
    start_time = time.time()
    request_id = get_request_id(request)

    try:
        report = auditor.audit_user_transactions(user_id)
    except StoreError as e:
        logging.error(f"Audit failed: {e}", extra={"request_id": request_id, "user_id": user_id})
        raise to_http_exception(e)

    duration_ms = (time.time() - start_time) * 1000
    record_audit(report)
    log_audit(request_id, report, duration_ms)
    return _audit_response(report)


@router.post("/audit/transactions/{transaction_id}/correct", response_model=CorrectionResponse)
def correct_transaction(
    transaction_id: str,
    request: Request,
    auditor: ReconciliationAuditor = Depends(get_auditor),
):
    """Overwrite one transaction's fee fields with recomputed values"""
    success = auditor.apply_correction(transaction_id)
    record_corrections(CorrectionReport(corrected=int(success), errors=int(not success)))
    logging.info(
        "Correction requested",
        extra={"request_id": get_request_id(request), "transaction_id": transaction_id, "success": success},
    )
    return CorrectionResponse(transaction_id=transaction_id, success=success)


@router.post("/audit/correct-all", response_model=CorrectAllResponse)
def correct_all(
    request_body: CorrectAllRequest,
    request: Request,
    auditor: ReconciliationAuditor = Depends(get_auditor),
):
    """Correct every divergent transaction of the user; failures are counted, not raised"""
    request_id = get_request_id(request)
    try:
        report = auditor.correct_all_divergent(request_body.user_id)
    except (AuditInProgressError, StoreError) as e:
        logging.warning(f"Correct-all refused: {e}", extra={"request_id": request_id})
        raise to_http_exception(e)

    record_corrections(report)
    logging.info(
        "Correct-all completed",
        extra={
            "request_id": request_id,
            "user_id": request_body.user_id,
            "corrected": report.corrected,
            "errors": report.errors,
        },
    )
    return CorrectAllResponse(user_id=request_body.user_id, corrected=report.corrected, errors=report.errors)
