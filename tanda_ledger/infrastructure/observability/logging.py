"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from pythonjsonlogger import jsonlogger

from tanda_ledger.config import settings


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


def log_payment_action(
    request_id: str,
    pool_id: str,
    member_id: str,
    action: str,
    status: Optional[str],
    outcome: str,
) -> None:
    """Log a round-payment action and how it ended (ok, rejected, not_found, ...)"""
    logging.info(
        "Payment action",
        extra={
            "request_id": request_id,
            "pool_id": pool_id,
            "member_id": member_id,
            "step": "payment_action",
            "action": action,
            "payment_status": status,
            "outcome": outcome,
        },
    )


def log_payout_decision(
    request_id: str,
    pool_id: str,
    round_number: int,
    allowed: bool,
    early: bool,
    missing_count: int,
) -> None:
    """Log payout eligibility checks so blocked releases can be traced"""
    logging.info(
        "Payout evaluated",
        extra={
            "request_id": request_id,
            "pool_id": pool_id,
            "round": round_number,
            "step": "payout_evaluated",
            "eligibility": "allowed" if allowed else "blocked",
            "early": early,
            "missing_count": missing_count,
        },
    )


def log_round_advanced(request_id: str, pool_id: str, round_number: int, completed: bool, duration_ms: float) -> None:
    logging.info(
        "Round advanced",
        extra={
            "request_id": request_id,
            "pool_id": pool_id,
            "step": "round_advanced",
            "round": round_number,
            "pool_completed": completed,
            "duration_ms": duration_ms,
        },
    )
