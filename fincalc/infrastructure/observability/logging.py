"""Structured JSON logging"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pythonjsonlogger import jsonlogger

from fincalc.config import settings


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter adding timestamp, level and service name to every record"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = settings.service_name


def setup_logging(level: str = "INFO") -> None:
    """Configure structured JSON logging on the root logger"""
    logger = logging.getLogger()
    logger.setLevel(level)
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(CustomJsonFormatter("%(timestamp)s %(level)s %(name)s %(message)s"))
    logger.addHandler(handler)


def log_fallback(
    data_type: str,
    success: bool,
    strategy: Optional[str],
    duration_ms: float,
    error: Optional[str] = None,
) -> None:
    """Log the outcome of one fallback chain execution"""
    logging.getLogger("fincalc.fallback").info(
        "Fallback completed",
        extra={
            "step": "fallback_complete",
            "data_type": data_type,
            "outcome": "success" if success else "failure",
            "strategy": strategy,
            "duration_ms": duration_ms,
            "error": error,
        },
    )


def log_recommendations(
    user_id: str,
    calculation_type: str,
    count: int,
    top_score: Optional[float],
    personalized: bool,
    duration_ms: float,
) -> None:
    """Log a served recommendation list for later analysis"""
    logging.getLogger("fincalc.recommendations").info(
        "Recommendations served",
        extra={
            "step": "recommendations_served",
            "user_id": user_id,
            "calculation_type": calculation_type,
            "count": count,
            "top_score": top_score,
            "personalized": personalized,
            "duration_ms": duration_ms,
        },
    )
