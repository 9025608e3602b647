"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict
from pythonjsonlogger import jsonlogger

from payout_gateway.config import settings
from payout_gateway.domain.models import AuditReport


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with timestamp and service metadata"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = settings.service_name


def setup_logging(level: str = "INFO") -> None:
    """Configure structured JSON logging"""
    logger = logging.getLogger()
    logger.setLevel(level)

    # Remove existing handlers
    logger.handlers.clear()

    # JSON handler for stdout
    handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s"
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def log_withdrawal(
    request_id: str,
    user_id: str,
    step: str,
    outcome: str,
    amount_cents: int | None = None,
    duration_ms: float | None = None,
) -> None:
    """Log structured withdrawal outcome for analysis"""
    logging.info(
        "Withdrawal step completed",
        extra={
            "request_id": request_id,
            "user_id": user_id,
            "step": step,
            "outcome": outcome,
            "amount_cents": amount_cents,
            "duration_ms": duration_ms,
        },
    )


def log_audit(request_id: str, report: AuditReport, duration_ms: float) -> None:
    """Log account-level reconciliation totals"""
    summary = report.summary
    logging.info(
        "Audit completed",
        extra={
            "request_id": request_id,
            "user_id": report.user_id,
            "step": "audit_complete",
            "total_transactions": summary.total_transactions,
            "correct": summary.correct,
            "corrected": summary.corrected,
            "divergent": summary.divergent,
            "total_divergence_cents": summary.total_divergence,
            "duration_ms": duration_ms,
        },
    )
