"""SQLAlchemy ORM models for sales, withdrawals and their supporting tables"""

import uuid
from sqlalchemy import BigInteger, Column, DateTime, Integer, Numeric, String, Text
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

Base = declarative_base()


def _uuid() -> str:
    return str(uuid.uuid4())


class SaleRecord(Base):
    """Sale written by checkout; fee columns may be rewritten by the auditor"""

    __tablename__ = "sales"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(Text, nullable=False, index=True)
    gross_amount_cents = Column(BigInteger, nullable=False)
    payment_method = Column(Text, nullable=False)
    settlement_term_days = Column(Integer, nullable=True)
    affiliate_commission_percent = Column(Numeric(5, 2), nullable=True)
    status = Column(Text, nullable=False, index=True)
    platform_fee_cents = Column(BigInteger, nullable=False, default=0)
    acquirer_fee_cents = Column(BigInteger, nullable=False, default=0)
    commission_amount_cents = Column(BigInteger, nullable=False, default=0)
    net_amount_cents = Column(BigInteger, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    corrected_at = Column(DateTime(timezone=True), nullable=True)


class WithdrawalRecord(Base):
    """Committed withdrawal; the balance is debited amount_cents"""

    __tablename__ = "withdrawals"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(Text, nullable=False, index=True)
    bank_account_id = Column(String(36), nullable=False)
    amount_cents = Column(BigInteger, nullable=False)
    fee_cents = Column(BigInteger, nullable=False)
    net_amount_cents = Column(BigInteger, nullable=False)
    status = Column(Text, nullable=False, default="pending")
    idempotency_key = Column(Text, nullable=True, unique=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class BankAccountRecord(Base):
    """Payout destination, approved through KYC review"""

    __tablename__ = "bank_accounts"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(Text, nullable=False, index=True)
    status = Column(Text, nullable=False, default="pending")
    bank_name = Column(Text, nullable=False, default="")


class WithdrawalChallengeRecord(Base):
    """Open passcode challenge between request and confirmation"""

    __tablename__ = "withdrawal_challenges"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(Text, nullable=False, index=True)
    challenge_id = Column(Text, nullable=False)
    amount_cents = Column(BigInteger, nullable=False)
    bank_account_id = Column(String(36), nullable=False)
    state = Column(Text, nullable=False)
    attempts = Column(Integer, nullable=False, default=0)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class SystemSetting(Base):
    """Key/value settings table holding live fee rates"""

    __tablename__ = "system_settings"

    key = Column(Text, primary_key=True)
    value = Column(Text, nullable=False)
