"""
Logging utilities for the InAppPay SDK with payment data masking.

Card numbers, CVVs, expiry dates and credentials are scrubbed before anything
reaches a handler, so HTTP bodies can be logged the way a mobile logging
interceptor would without leaking cardholder data.

Usage:
    from inapppay.logging import get_logger, log_request, log_response

    logger = get_logger(__name__)
    logger.info("Submitting purchase", transaction_id="txn_...", amount="4.99")

    log_request(logger, "POST", url, headers, body)
    log_response(logger, 200, response_body, duration_ms)
"""
from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Sequence, Union

from .constants import LoggingConfig

# Keys that look sensitive by substring but are safe and useful to log.
_ALWAYS_VISIBLE = frozenset({"idempotency_key", "idempotencykey", "transaction_id", "item_id"})

_PAN_PATTERN = re.compile(r"\b(?:\d[ -]?){12,19}\b")


# =============================================================================
# Sensitive Data Masking
# =============================================================================

def mask_value(value: str, show_chars: int = 4) -> str:
    """Mask a sensitive value, showing only its first and last characters."""
    if not value or len(value) <= show_chars * 2:
        return LoggingConfig.MASK_PATTERN

    return f"{value[:show_chars]}...{value[-show_chars:]}"


def mask_card_number(number: str) -> str:
    """Mask a card number down to its last four digits.

    >>> mask_card_number("4111 1111 1111 1111")
    '************1111'
    """
    digits = re.sub(r"\D", "", number or "")
    if len(digits) < 4:
        return LoggingConfig.MASK_PATTERN
    return "*" * (len(digits) - 4) + digits[-4:]


def is_sensitive_key(key: str) -> bool:
    """Check if a key name indicates sensitive data."""
    key_lower = key.lower().replace("-", "_")
    if key_lower in _ALWAYS_VISIBLE:
        return False
    return key_lower in LoggingConfig.SENSITIVE_FIELDS or any(
        sensitive in key_lower
        for sensitive in ("secret", "password", "token", "api_key", "credential", "auth", "cvv")
    )


def mask_sensitive_data(
    data: Any,
    additional_fields: Optional[Sequence[str]] = None,
    mask_pattern: str = LoggingConfig.MASK_PATTERN,
    _depth: int = 0,
    _max_depth: int = 10,
) -> Any:
    """Recursively mask sensitive data in a data structure.

    Args:
        data: The data structure to mask (dict, list, or scalar)
        additional_fields: Additional field names to mask
        mask_pattern: Pattern to replace sensitive values with

    Returns:
        Copy of data with sensitive values masked
    """
    if _depth > _max_depth:
        return data

    if isinstance(data, dict):
        result = {}
        for key, value in data.items():
            if is_sensitive_key(str(key)):
                result[key] = mask_pattern
            elif additional_fields and key in additional_fields:
                result[key] = mask_pattern
            else:
                result[key] = mask_sensitive_data(
                    value,
                    additional_fields,
                    mask_pattern,
                    _depth + 1,
                    _max_depth,
                )
        return result

    elif isinstance(data, (list, tuple)):
        return type(data)(
            mask_sensitive_data(item, additional_fields, mask_pattern, _depth + 1, _max_depth)
            for item in data
        )

    elif isinstance(data, str):
        return _mask_inline_patterns(data)

    return data


def _mask_inline_patterns(text: str) -> str:
    """Mask card numbers and credentials embedded in free text."""
    if len(text) > LoggingConfig.MAX_LOG_MESSAGE_LENGTH:
        text = text[: LoggingConfig.MAX_LOG_MESSAGE_LENGTH] + "...[truncated]"

    text = _PAN_PATTERN.sub(lambda m: mask_card_number(m.group(0)), text)

    patterns = [
        (r"(Bearer\s+)[a-zA-Z0-9._-]+", r"\1***"),
        (r"(Basic\s+)[a-zA-Z0-9+/=]+", r"\1***"),
        (r"(https?://)[^:/\s]+:[^@/\s]+@", r"\1***:***@"),
    ]
    for pattern, replacement in patterns:
        text = re.sub(pattern, replacement, text, flags=re.IGNORECASE)

    return text


def mask_headers(headers: Dict[str, str]) -> Dict[str, str]:
    """Mask sensitive HTTP headers."""
    sensitive_headers = {
        "authorization",
        "x-api-key",
        "cookie",
        "set-cookie",
    }

    return {
        key: LoggingConfig.MASK_PATTERN if key.lower() in sensitive_headers else value
        for key, value in headers.items()
    }


def _truncate_body(body: Any) -> str:
    if isinstance(body, (bytes, bytearray)):
        try:
            body = json.loads(body)
        except ValueError:
            body = body.decode("utf-8", errors="replace")
    body_str = json.dumps(mask_sensitive_data(body), default=str)
    if len(body_str) > LoggingConfig.MAX_BODY_LOG_LENGTH:
        body_str = body_str[: LoggingConfig.MAX_BODY_LOG_LENGTH] + "..."
    return body_str


# =============================================================================
# Structured Logging
# =============================================================================

class StructuredLogger:
    """Logger wrapper that masks structured fields and carries bound ones.

    Bound fields live on the logger instance, not on a shared stack, so
    concurrent transactions never see each other's fields.

    Usage:
        logger = get_logger(__name__)
        log = logger.bind(transaction_id="txn_...")
        log.info("Attempt finished", outcome="success")
    """

    def __init__(self, name: str, bound: Optional[Dict[str, Any]] = None) -> None:
        self._logger = logging.getLogger(name)
        self._bound: Dict[str, Any] = dict(bound or {})

    @property
    def name(self) -> str:
        return self._logger.name

    @property
    def bound(self) -> Dict[str, Any]:
        return dict(self._bound)

    def bind(self, **fields: Any) -> "StructuredLogger":
        """Return a child logger that adds ``fields`` to every record."""
        return StructuredLogger(self.name, {**self._bound, **fields})

    def _log(self, level: int, message: str, fields: Dict[str, Any], exc_info: bool = False) -> None:
        if not self._logger.isEnabledFor(level):
            return
        data = mask_sensitive_data({**self._bound, **fields})
        self._logger.log(level, message, exc_info=exc_info, extra={"data": data})

    def debug(self, message: str, **kwargs: Any) -> None:
        self._log(logging.DEBUG, message, kwargs)

    def info(self, message: str, **kwargs: Any) -> None:
        self._log(logging.INFO, message, kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        self._log(logging.WARNING, message, kwargs)

    def error(self, message: str, **kwargs: Any) -> None:
        self._log(logging.ERROR, message, kwargs)

    def exception(self, message: str, **kwargs: Any) -> None:
        """Log at ERROR with the current exception's traceback."""
        self._log(logging.ERROR, message, kwargs, exc_info=True)


def get_logger(name: str) -> StructuredLogger:
    """Get a structured logger for the given name."""
    return StructuredLogger(name)


# =============================================================================
# Request/Response Logging
# =============================================================================

def log_request(
    logger: Union[logging.Logger, StructuredLogger],
    method: str,
    url: str,
    headers: Optional[Dict[str, str]] = None,
    body: Optional[Any] = None,
    transaction_id: Optional[str] = None,
) -> None:
    """Log an outgoing HTTP request with headers and body masked."""
    log_data: Dict[str, Any] = {
        "direction": "request",
        "method": method,
        "url": _mask_inline_patterns(url),
    }
    if transaction_id:
        log_data["transaction_id"] = transaction_id
    if headers:
        log_data["headers"] = mask_headers(headers)
    if body is not None:
        log_data["body"] = _truncate_body(body)

    if isinstance(logger, StructuredLogger):
        logger.debug(f"HTTP {method} {url}", **log_data)
    else:
        logger.debug(f"HTTP {method} {url}", extra={"data": log_data})


def log_response(
    logger: Union[logging.Logger, StructuredLogger],
    status_code: int,
    body: Optional[Any] = None,
    duration_ms: Optional[float] = None,
    transaction_id: Optional[str] = None,
    error: Optional[str] = None,
) -> None:
    """Log an HTTP response. 4xx/5xx responses are logged at WARNING."""
    log_data: Dict[str, Any] = {
        "direction": "response",
        "status_code": status_code,
    }
    if transaction_id:
        log_data["transaction_id"] = transaction_id
    if duration_ms is not None:
        log_data["duration_ms"] = duration_ms
    if error:
        log_data["error"] = error
    if body is not None:
        log_data["body"] = _truncate_body(body)

    message = f"HTTP {status_code}"
    if duration_ms is not None:
        message += f" ({duration_ms:.0f}ms)"

    level = logging.DEBUG if status_code < 400 else logging.WARNING
    if isinstance(logger, StructuredLogger):
        if level == logging.WARNING:
            logger.warning(message, **log_data)
        else:
            logger.debug(message, **log_data)
    else:
        logger.log(level, message, extra={"data": log_data})


# =============================================================================
# JSON Formatter for Production
# =============================================================================

class JsonFormatter(logging.Formatter):
    """JSON log formatter for log aggregators."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        if hasattr(record, "data") and record.data:
            log_data["data"] = record.data
        return json.dumps(log_data, default=str)


def configure_logging(
    level: Union[int, str] = logging.INFO,
    json_format: bool = False,
    log_file: Optional[str] = None,
) -> None:
    """Configure logging for a host process or the CLI.

    Library code never calls this; it only logs through ``get_logger``.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())

    handlers: list[logging.Handler] = []

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    if json_format:
        console_handler.setFormatter(JsonFormatter())
    else:
        console_handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )
    handlers.append(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(level)
        file_handler.setFormatter(JsonFormatter())
        handlers.append(file_handler)

    logging.basicConfig(level=level, handlers=handlers, force=True)


__all__ = [
    "mask_value",
    "mask_card_number",
    "mask_headers",
    "mask_sensitive_data",
    "is_sensitive_key",
    "StructuredLogger",
    "get_logger",
    "log_request",
    "log_response",
    "JsonFormatter",
    "configure_logging",
]
