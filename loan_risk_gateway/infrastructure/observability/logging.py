"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict
from pythonjsonlogger import jsonlogger

from loan_risk_gateway.config import settings
from loan_risk_gateway.domain.models import HealthReport, LoanState, RateQuote


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

    handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s"
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def log_quote(request_id: str, quote: RateQuote, duration_ms: float) -> None:
    """Log a rate quote with its breakdown for later reconciliation"""
    breakdown = quote.breakdown
    logging.info(
        "Quote issued",
        extra={
            "request_id": request_id,
            "step": "quote_complete",
            "rate_bps": quote.rate_bps,
            "risk_level": quote.risk_level,
            "raw_rate": str(quote.raw_rate),
            "credit_risk": str(breakdown.credit_risk),
            "term_risk": str(breakdown.term_risk),
            "collateral_discount": str(breakdown.collateral_discount),
            "soft_cap": str(quote.soft_cap) if quote.soft_cap is not None else None,
            "duration_ms": duration_ms,
        },
    )


def log_loan_event(request_id: str, event: str, state: LoanState) -> None:
    """Log a stored loan lifecycle change"""
    logging.info(
        "Loan updated",
        extra={
            "request_id": request_id,
            "step": event,
            "loan_id": state.record.loan_id,
            "status": state.account.status.value,
            "principal_remaining": str(state.account.principal_remaining),
            "interest_accrued": str(state.account.interest_accrued),
            "deposit_count": len(state.position.deposits),
        },
    )


def log_health(request_id: str, loan_id: str, report: HealthReport) -> None:
    level = logging.WARNING if report.partial else logging.INFO
    logging.log(
        level,
        "Collateral health evaluated",
        extra={
            "request_id": request_id,
            "loan_id": loan_id,
            "health_factor": str(report.health_factor),
            "status": report.status.value,
            "partial": report.partial,
            "missing_assets": list(report.missing_assets),
        },
    )
