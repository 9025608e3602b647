"""Reconciliation auditor - recomputes historical fees and repairs divergences"""

import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional, Tuple

from payout_gateway.domain.exceptions import (
    AuditInProgressError,
    ConfigurationError,
    InvalidAmountError,
    NegativeNetAmountError,
    StoreError,
)
from payout_gateway.domain.fees import FeeCalculator
from payout_gateway.domain.locks import UserLocks
from payout_gateway.domain.models import (
    FEE_BEARING_STATUSES,
    AuditReport,
    AuditResult,
    AuditStatus,
    AuditSummary,
    CorrectionReport,
    FeeBreakdown,
    Transaction,
)
from payout_gateway.domain.ports import TransactionStore, UnitOfWork

logger = logging.getLogger(__name__)

_CALCULATION_ERRORS = (ConfigurationError, NegativeNetAmountError, InvalidAmountError)

# (persisted field on Transaction, field on FeeBreakdown)
_COMPARED_FIELDS = (
    ("platform_fee", "platform_fee"),
    ("acquirer_fee", "acquirer_fee"),
    ("commission_amount", "affiliate_commission"),
    ("net_amount", "net_amount"),
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def find_divergences(txn: Transaction, breakdown: FeeBreakdown) -> List[str]:
    """Exact comparison of persisted fee fields against a recomputed breakdown"""
    divergences = []
    for stored_field, computed_field in _COMPARED_FIELDS:
        stored = getattr(txn, stored_field)
        computed = getattr(breakdown, computed_field)
        if stored != computed:
            divergences.append(f"{stored_field}: stored={stored}, computed={computed}")
    return divergences


class ReconciliationAuditor:
    """
    Re-derives each transaction's fees from its recorded inputs.

    The recorded gross amount, payment method, settlement term and affiliate
    percentage are used as-is; nothing is re-derived from current defaults.
    """

    def __init__(
        self,
        calculator: FeeCalculator,
        transactions: TransactionStore,
        unit_of_work: UnitOfWork,
        locks: UserLocks,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._calculator = calculator
        self._transactions = transactions
        self._uow = unit_of_work
        self._locks = locks
        self._clock = clock

    def audit_user_transactions(self, user_id: str) -> AuditReport:
        """Audit every approved/retained transaction of the user"""
        transactions = self._transactions.list_by_user(user_id, FEE_BEARING_STATUSES)
        results = [self.audit_transaction(txn) for txn in transactions]
        summary = summarize(transactions, results)

        logger.info(
            "Audit completed",
            extra={
                "user_id": user_id,
                "step": "audit_complete",
                "total_transactions": summary.total_transactions,
                "divergent": summary.divergent,
                "errors": summary.errors,
            },
        )
        return AuditReport(user_id=user_id, audited_at=self._clock(), results=results, summary=summary)

    def audit_transaction(self, txn: Transaction) -> AuditResult:
        """Classify one transaction as correct, corrected or divergent"""
        breakdown, error = self._recompute(txn)
        if breakdown is None:
            return AuditResult(
                transaction_id=txn.id,
                status=AuditStatus.DIVERGENT,
                breakdown=None,
                divergences=[f"fee calculation failed: {error}"],
                stored_net_amount=txn.net_amount,
                error=error,
            )

        divergences = find_divergences(txn, breakdown)
        if divergences:
            status = AuditStatus.DIVERGENT
            logger.warning(
                "Fee divergence found",
                extra={"transaction_id": txn.id, "divergences": divergences},
            )
        elif txn.corrected_at is not None:
            status = AuditStatus.CORRECTED
        else:
            status = AuditStatus.CORRECT

        return AuditResult(
            transaction_id=txn.id,
            status=status,
            breakdown=breakdown,
            divergences=divergences,
            stored_net_amount=txn.net_amount,
        )

    def apply_correction(self, transaction_id: str) -> bool:
        """
        Overwrite the transaction's fee fields with the recomputed breakdown.

        Idempotent: an already-matching transaction is left untouched.
        Returns False when the transaction is missing, is not approved or
        retained, cannot be recomputed, or a store read or write fails.
        """
        try:
            txn = self._transactions.get(transaction_id)
            if txn is None:
                logger.warning("Correction skipped: transaction not found", extra={"transaction_id": transaction_id})
                return False
            if txn.status not in FEE_BEARING_STATUSES:
                # only approved/retained sales carry fees
                logger.warning(
                    "Correction skipped: transaction does not bear fees",
                    extra={"transaction_id": txn.id, "status": txn.status.value},
                )
                return False
            breakdown, _ = self._recompute(txn)
        except StoreError as e:
            logger.error(f"Correction failed: {e}", extra={"transaction_id": transaction_id})
            return False

        if breakdown is None:
            return False

        if not find_divergences(txn, breakdown):
            return True

        try:
            with self._uow.atomic(txn.user_id):
                self._transactions.update_fees(txn.id, breakdown, self._clock())
        except StoreError as e:
            logger.error(f"Correction failed: {e}", extra={"transaction_id": txn.id})
            return False

        logger.info(
            "Transaction corrected",
            extra={
                "transaction_id": txn.id,
                "platform_fee": breakdown.platform_fee,
                "acquirer_fee": breakdown.acquirer_fee,
                "commission_amount": breakdown.affiliate_commission,
                "net_amount": breakdown.net_amount,
            },
        )
        return True

    def correct_all_divergent(self, user_id: str) -> CorrectionReport:
        """
        Correct every divergent transaction of the user.

        One failure does not abort the batch. Raises AuditInProgressError if
        another correction pass for the same user is running.
        """
        with self._locks.hold(user_id, timeout=0) as acquired:
            if not acquired:
                raise AuditInProgressError(f"A correction pass is already running for user {user_id}")

            report = self.audit_user_transactions(user_id)
            corrected = 0
            errors = 0
            for result in report.results:
                if result.status != AuditStatus.DIVERGENT:
                    continue
                if self.apply_correction(result.transaction_id):
                    corrected += 1
                else:
                    errors += 1

        logger.info(
            "Correction pass finished",
            extra={"user_id": user_id, "step": "correct_all", "corrected": corrected, "errors": errors},
        )
        return CorrectionReport(corrected=corrected, errors=errors)

    def _recompute(self, txn: Transaction) -> Tuple[Optional[FeeBreakdown], Optional[str]]:
        """Breakdown from the recorded inputs, or the calculation error message"""
        try:
            breakdown = self._calculator.compute_sale_fee(
                txn.gross_amount,
                txn.payment_method,
                txn.settlement_term_days,
                txn.affiliate_commission_percent,
            )
        except _CALCULATION_ERRORS as e:
            logger.error(f"Fee recomputation failed: {e}", extra={"transaction_id": txn.id})
            return None, f"{type(e).__name__}: {e}"
        return breakdown, None


def summarize(transactions: List[Transaction], results: List[AuditResult]) -> AuditSummary:
    """Account-level totals, independent of per-transaction classification"""
    summary = AuditSummary(total_transactions=len(results))
    for txn, result in zip(transactions, results):
        summary.total_gross += txn.gross_amount
        if result.status == AuditStatus.CORRECT:
            summary.correct += 1
        elif result.status == AuditStatus.CORRECTED:
            summary.corrected += 1
        else:
            summary.divergent += 1

        breakdown = result.breakdown
        if breakdown is None:
            summary.errors += 1
            continue
        summary.total_platform_fees += breakdown.platform_fee
        summary.total_acquirer_fees += breakdown.acquirer_fee
        summary.total_affiliate_commissions += breakdown.affiliate_commission
        summary.total_net += breakdown.net_amount
        summary.total_divergence += abs(txn.net_amount - breakdown.net_amount)
    return summary
