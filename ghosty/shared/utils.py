"""
Utility functions and helpers for Ghosty Trader.
"""

import json
import logging
import math
import os
import time
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

import structlog

from .constants import JSON_ENCODING, LOG_SAMPLE_CHARS, LOG_TIME_FORMAT

# Configure structured logging
logger = structlog.get_logger(__name__)


def setup_logging(log_level: str = "INFO", log_dir: str = "logs") -> None:
    """Set up structured logging for the system."""
    os.makedirs(log_dir, exist_ok=True)

    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, log_level.upper(), logging.INFO),
        handlers=[
            logging.StreamHandler(),
            logging.FileHandler(os.path.join(log_dir, "ghosty.log"), encoding=JSON_ENCODING),
        ],
        force=True,
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer()
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def parse_json_message(message: Any) -> Optional[Dict[str, Any]]:
    """Parse a JSON frame into a dict, or None when it is not a JSON object."""
    try:
        if isinstance(message, (bytes, bytearray)):
            message = message.decode(JSON_ENCODING)
        data = json.loads(message)
    except (json.JSONDecodeError, UnicodeDecodeError, TypeError) as e:
        logger.warning(
            "Dropped unparseable frame",
            error=str(e),
            sample=str(message)[:LOG_SAMPLE_CHARS]
        )
        return None

    if not isinstance(data, dict):
        logger.warning("Dropped non-object frame", sample=str(message)[:LOG_SAMPLE_CHARS])
        return None
    return data


def serialize_to_json(data: Dict[str, Any]) -> Optional[str]:
    """Serialize data to JSON string, or None when it cannot be encoded."""
    try:
        return json.dumps(data, ensure_ascii=False)
    except (TypeError, ValueError) as e:
        logger.error("Failed to serialize to JSON", error=str(e))
        return None


def last_digit(quote: Any) -> Optional[int]:
    """Final decimal digit of a quote's string form, or None if it has none."""
    if quote is None:
        return None
    text = str(quote)
    if not text or not text[-1].isdigit():
        return None
    return int(text[-1])


def digits_from_history(history: Iterable[Any]) -> List[int]:
    """Last digits of every quote in the history, skipping quotes without one."""
    digits = []
    for quote in history:
        digit = last_digit(quote)
        if digit is not None:
            digits.append(digit)
    return digits


def safe_float(value: Any, default: float = 0.0) -> float:
    """Convert to a finite float, falling back to default."""
    try:
        result = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(result) or math.isinf(result):
        return default
    return result


def now_ms() -> float:
    """Monotonic clock in milliseconds."""
    return time.monotonic() * 1000.0


def format_log_line(message: str, when: Optional[datetime] = None) -> str:
    """Human-readable log line prefixed with the wall-clock time."""
    when = when or datetime.now()
    return f"[{when.strftime(LOG_TIME_FORMAT)}] {message}"


def ensure_directory_exists(path: str) -> None:
    """Ensure directory exists, create if it doesn't."""
    os.makedirs(path, exist_ok=True)
