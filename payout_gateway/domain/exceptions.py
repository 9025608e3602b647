"""Domain-specific exceptions"""

from typing import List


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class ConfigurationError(DomainException):
    """No fee configuration resolves for a lookup, or a percentage is out of range"""

    pass


class InvalidAmountError(DomainException):
    """Monetary input is not a positive integer amount of cents"""

    pass


class NegativeNetAmountError(DomainException):
    """Fees and commission would drive the net amount below zero"""

    def __init__(self, message: str, gross_amount: int, net_amount: int):
        super().__init__(message)
        self.gross_amount = gross_amount
        self.net_amount = net_amount


class ValidationError(DomainException):
    """
    User-recoverable withdrawal validation failure.

    `code` is machine readable (e.g. "cooldown_active", "insufficient_balance");
    the message is the actionable text shown to the user.
    """

    def __init__(
        self,
        message: str,
        code: str,
        retry_after_minutes: int | None = None,
        shortfall: int | None = None,
    ):
        super().__init__(message)
        self.code = code
        self.retry_after_minutes = retry_after_minutes
        self.shortfall = shortfall


class AuditDivergenceError(DomainException):
    """Persisted fee fields disagree with the recomputed breakdown"""

    def __init__(self, transaction_id: str, divergences: List[str]):
        super().__init__(f"Transaction {transaction_id} diverges: {'; '.join(divergences)}")
        self.transaction_id = transaction_id
        self.divergences = divergences


class AuditInProgressError(DomainException):
    """A correction pass is already running for this user"""

    pass


class StoreError(DomainException):
    """Persistent store failed, timed out or reported a conflict"""

    pass


class OtpChannelError(DomainException):
    """One-time-passcode service returned an error or is unavailable"""

    pass


class InvalidStateTransition(DomainException):
    """Withdrawal request state machine rejected a transition"""

    pass
