"""Centralized logging configuration for the MediChain services."""
import logging
import sys
from typing import Any, Optional

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_LEVEL = logging.INFO
TOKEN_HINT_LENGTH = 8


def setup_logging(service_name: str, level: Optional[str] = None) -> logging.Logger:
    """
    Set up structured logging for a service.

    Args:
        service_name: Name of the service (e.g., 'qr_access')
        level: Optional level name overriding the default INFO

    Returns:
        Configured logger instance
    """
    log_level = logging.getLevelName(level.upper()) if level else LOG_LEVEL
    if not isinstance(log_level, int):
        log_level = LOG_LEVEL

    logger = logging.getLogger(service_name)
    logger.setLevel(log_level)

    # Remove existing handlers to avoid duplicates
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(handler)

    return logger


def token_hint(token: str) -> str:
    """Shortened form of an already-sanitized token, safe for log lines."""
    if not token:
        return "<empty>"
    return f"{token[:TOKEN_HINT_LENGTH]}..."


def log_request(logger: logging.Logger, endpoint: str, **kwargs: Any) -> None:
    """Log incoming request details."""
    extra_info = " ".join(f"{k}={v}" for k, v in kwargs.items())
    logger.info(f"Request received: endpoint={endpoint} {extra_info}".strip())


def log_response(logger: logging.Logger, endpoint: str, ok: bool, duration_ms: float, **kwargs: Any) -> None:
    """Log response details."""
    status = "success" if ok else "failure"
    extra_info = " ".join(f"{k}={v}" for k, v in kwargs.items())
    logger.info(f"Response sent: endpoint={endpoint} status={status} duration_ms={duration_ms:.2f} {extra_info}".strip())


def log_error(logger: logging.Logger, endpoint: str, error: Exception, **kwargs: Any) -> None:
    """Log error details."""
    extra_info = " ".join(f"{k}={v}" for k, v in kwargs.items())
    logger.error(f"Error occurred: endpoint={endpoint} error={type(error).__name__} message={str(error)} {extra_info}".strip())
