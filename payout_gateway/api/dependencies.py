"""Dependency injection for FastAPI endpoints"""

from typing import Dict

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from payout_gateway.config import settings
from payout_gateway.domain.audit import ReconciliationAuditor
from payout_gateway.domain.fee_config import SettingsFeeConfigProvider
from payout_gateway.domain.fees import FeeCalculator, FeeConfigProvider
from payout_gateway.domain.locks import UserLocks
from payout_gateway.domain.ports import OtpChannel
from payout_gateway.domain.withdrawals import WithdrawalOrchestrator, WithdrawalPolicy
from payout_gateway.infrastructure.clients.otp import OtpClient
from payout_gateway.infrastructure.database.repositories import (
    BankAccountRepository,
    ChallengeRepository,
    SettingsRepository,
    SqlUnitOfWork,
    TransactionRepository,
    WithdrawalRepository,
)
from payout_gateway.infrastructure.database.session import SessionLocal, get_db


def _load_fee_settings() -> Dict[str, str]:
    """Read the live settings table in its own short session"""
    db = SessionLocal()
    try:
        return SettingsRepository(db).load()
    finally:
        db.close()


# Process-wide: the fee cache and the per-user lock registries outlive requests
_fee_provider = SettingsFeeConfigProvider(_load_fee_settings, ttl_seconds=settings.fee_config_ttl_seconds)
_audit_locks = UserLocks()
_withdrawal_locks = UserLocks()


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_fee_provider() -> FeeConfigProvider:
    """Provide the cached settings-backed fee configuration"""
    return _fee_provider


def get_fee_calculator(provider: FeeConfigProvider = Depends(get_fee_provider)) -> FeeCalculator:
    return FeeCalculator(provider)


def get_otp_channel() -> OtpChannel:
    """Provide OTP service client instance"""
    return OtpClient()


def get_auditor(
    db: Session = Depends(get_db),
    calculator: FeeCalculator = Depends(get_fee_calculator),
) -> ReconciliationAuditor:
    return ReconciliationAuditor(
        calculator=calculator,
        transactions=TransactionRepository(db),
        unit_of_work=SqlUnitOfWork(db),
        locks=_audit_locks,
    )


def get_orchestrator(
    db: Session = Depends(get_db),
    calculator: FeeCalculator = Depends(get_fee_calculator),
    otp_channel: OtpChannel = Depends(get_otp_channel),
) -> WithdrawalOrchestrator:
    return WithdrawalOrchestrator(
        calculator=calculator,
        transactions=TransactionRepository(db),
        withdrawals=WithdrawalRepository(db),
        bank_accounts=BankAccountRepository(db),
        challenges=ChallengeRepository(db),
        otp_channel=otp_channel,
        unit_of_work=SqlUnitOfWork(db),
        locks=_withdrawal_locks,
        policy=WithdrawalPolicy.from_settings(settings),
    )
