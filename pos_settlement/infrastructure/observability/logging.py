"""Structured JSON logging for production observability"""

import logging
import sys
from typing import Any, Dict
from pythonjsonlogger import jsonlogger

from pos_settlement.config import settings
from pos_settlement.utils.date_utils import utcnow


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with timestamp and service metadata"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = utcnow().isoformat()
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


def log_settlement(
    transaction_id: int | None,
    payment_method: str,
    settled: bool,
    final_total: float,
    duration_ms: float,
    warnings: int = 0,
    request_id: str | None = None,
) -> None:
    """Log structured settlement outcome for analysis"""
    logging.info(
        "Settlement completed",
        extra={
            "request_id": request_id,
            "transaction_id": transaction_id,
            "step": "settlement_complete",
            "payment_method": payment_method,
            "outcome": "settled" if settled else "failed",
            "final_total": final_total,
            "duration_ms": duration_ms,
            "warnings": warnings,
        },
    )
