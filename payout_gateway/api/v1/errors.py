"""Translate domain exceptions into HTTP errors"""

from fastapi import HTTPException

from payout_gateway.domain.exceptions import (
    AuditInProgressError,
    ConfigurationError,
    InvalidAmountError,
    NegativeNetAmountError,
    OtpChannelError,
    StoreError,
    ValidationError,
)


def to_http_exception(exc: Exception) -> HTTPException:
    """Map a domain exception to the status code clients act on"""
    if isinstance(exc, ValidationError):
        detail = {"code": exc.code, "message": str(exc)}
        headers = None
        if exc.retry_after_minutes is not None:
            detail["retry_after_minutes"] = exc.retry_after_minutes
            headers = {"Retry-After": str(exc.retry_after_minutes * 60)}
        if exc.shortfall is not None:
            detail["shortfall_cents"] = exc.shortfall
        status = 429 if exc.code == "cooldown_active" else 422
        return HTTPException(status_code=status, detail=detail, headers=headers)
    if isinstance(exc, (ConfigurationError, NegativeNetAmountError, InvalidAmountError)):
        return HTTPException(status_code=422, detail=str(exc))
    if isinstance(exc, AuditInProgressError):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, StoreError):
        return HTTPException(status_code=503, detail="Store unavailable")
    if isinstance(exc, OtpChannelError):
        return HTTPException(status_code=503, detail="OTP service unavailable")
    return HTTPException(status_code=500, detail="Internal server error")
