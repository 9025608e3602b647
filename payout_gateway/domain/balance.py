"""Available balance calculation for withdrawals"""

from typing import Iterable

from payout_gateway.domain.models import (
    FEE_BEARING_STATUSES,
    BalanceSnapshot,
    Transaction,
    TransactionStatus,
    Withdrawal,
    WithdrawalStatus,
)


def compute_balance(
    transactions: Iterable[Transaction],
    withdrawals: Iterable[Withdrawal],
    min_withdrawal: int = 0,
) -> BalanceSnapshot:
    """
    Derive the withdrawable balance from sale net amounts and prior withdrawals.

    available = sum(net of approved/retained sales)
                - sum(approved/completed withdrawals)
                - sum(pending withdrawals)
    floored at zero.

    Sale net amounts already have the sale fees removed; withdrawal fees are
    never subtracted here, a withdrawal debits its full requested amount.
    """
    total_net = 0
    in_retention = 0
    total_fees = 0
    for txn in transactions:
        if txn.status not in FEE_BEARING_STATUSES:
            continue
        total_net += txn.net_amount
        total_fees += txn.platform_fee + txn.acquirer_fee + txn.commission_amount
        if txn.status == TransactionStatus.RETAINED:
            in_retention += txn.net_amount

    total_withdrawn = 0
    pending = 0
    for w in withdrawals:
        if w.status in (WithdrawalStatus.APPROVED, WithdrawalStatus.COMPLETED):
            total_withdrawn += w.requested_amount
        elif w.status == WithdrawalStatus.PENDING:
            pending += w.requested_amount

    available = max(0, total_net - total_withdrawn - pending)

    return BalanceSnapshot(
        available=available,
        in_retention=in_retention,
        total_net=total_net,
        total_withdrawn=total_withdrawn,
        pending_withdrawals=pending,
        total_fees=total_fees,
        can_withdraw=available > 0 and available >= min_withdrawal,
    )
