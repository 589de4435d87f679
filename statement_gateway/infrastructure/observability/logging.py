"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from pythonjsonlogger import jsonlogger

from statement_gateway.config import settings


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with timestamp and service metadata"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = settings.service_name


# Libraries that log every multipart chunk or SQL statement at DEBUG
NOISY_LOGGERS = ("multipart", "python_multipart", "sqlalchemy.engine")


def setup_logging(level: str = "INFO") -> None:
    """Send every record to stdout as one JSON object"""
    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(CustomJsonFormatter("%(timestamp)s %(level)s %(name)s %(message)s"))
    root.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def log_import_preview(request_id: str, detected_format: str, line_count: int, warning_count: int) -> None:
    logging.info(
        "Statement parsed",
        extra={
            "request_id": request_id,
            "step": "parse_preview",
            "detected_format": detected_format,
            "line_count": line_count,
            "warning_count": warning_count,
        },
    )


def log_expand(
    bill_payment_id: int,
    billing_cycle: str,
    created_count: int,
    delta_cents: int,
    request_id: Optional[str] = None,
) -> None:
    """Log structured expand outcome for audit"""
    logging.info(
        "Bill payment expanded",
        extra={
            "request_id": request_id,
            "step": "expand",
            "bill_payment_id": bill_payment_id,
            "billing_cycle": billing_cycle,
            "created_count": created_count,
            "delta_cents": delta_cents,
        },
    )


def log_collapse(bill_payment_id: int, restored_amount_cents: int, deleted_count: int, request_id: Optional[str] = None) -> None:
    logging.info(
        "Bill payment collapsed",
        extra={
            "request_id": request_id,
            "step": "collapse",
            "bill_payment_id": bill_payment_id,
            "restored_amount_cents": restored_amount_cents,
            "deleted_count": deleted_count,
        },
    )


def log_unmatched_import(billing_cycle: str, created_count: int, unmatched_cents: int, request_id: Optional[str] = None) -> None:
    logging.info(
        "Statement imported without bill payment",
        extra={
            "request_id": request_id,
            "step": "confirm_unmatched",
            "billing_cycle": billing_cycle,
            "created_count": created_count,
            "unmatched_cents": unmatched_cents,
        },
    )
