"""
Logging configuration for the community billing service.

Provides structured logging without exposing secrets or full provider IDs.
"""
import logging
import sys
from pathlib import Path
from logging.handlers import RotatingFileHandler
from typing import Any, Optional

from app.core.config import LOG_DIR

SENSITIVE_KEYS = [
    "password", "token", "secret", "key", "api_key",
    "stripe_secret_key", "stripe_webhook_secret", "database_url",
]

# Context keys that hold identifiers and are truncated before logging
ID_KEYS = ("user_id", "customer_id", "subscription_id", "invoice_id", "offer_id", "session_id", "member_id")


def setup_logging(log_level: str = "INFO", log_dir: Optional[str] = None):
    """
    Configure application logging.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_dir: Directory for the rotating log file (defaults to LOG_DIR)
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    # Create logs directory if it doesn't exist
    log_path = Path(log_dir or LOG_DIR)
    log_path.mkdir(exist_ok=True)

    # Configure root logger
    logger = logging.getLogger()
    logger.setLevel(level)

    # Remove existing handlers
    logger.handlers.clear()

    # Console handler with simple format
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )
    console_handler.setFormatter(console_formatter)

    # File handler with detailed format
    file_handler = RotatingFileHandler(
        log_path / "community_billing.log",
        maxBytes=10 * 1024 * 1024,  # 10MB
        backupCount=5
    )
    file_handler.setLevel(level)
    file_formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )
    file_handler.setFormatter(file_formatter)

    logger.addHandler(console_handler)
    logger.addHandler(file_handler)

    # Set levels for third-party libraries
    logging.getLogger("uvicorn").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("stripe").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def sanitize_log_data(data: dict) -> dict:
    """
    Sanitize log data to remove sensitive information.

    Args:
        data: Dictionary to sanitize

    Returns:
        Sanitized dictionary without secrets
    """
    sanitized = data.copy()

    for key in sanitized:
        if any(sensitive in key.lower() for sensitive in SENSITIVE_KEYS):
            sanitized[key] = "***REDACTED***"

    return sanitized


def mask_id(value: Any, keep: int = 8) -> str:
    """Truncate an identifier to its first `keep` characters."""
    if value is None:
        return "none"
    text = str(value)
    if len(text) <= keep:
        return text
    return f"{text[:keep]}..."


def log_operation(logger: logging.Logger, operation: str, success: bool, **context: Any) -> None:
    """
    Emit a structured operation record: `operation=<name> success=<bool> key=value ...`.

    Identifier keys are masked and secret-looking keys are redacted.
    Failures are logged at ERROR, successes at INFO.
    """
    safe = sanitize_log_data(context)
    for key in safe:
        if key in ID_KEYS:
            safe[key] = mask_id(safe[key])
    details = " ".join(f"{key}={value}" for key, value in safe.items())
    message = f"operation={operation} success={str(success).lower()}"
    if details:
        message = f"{message} {details}"
    if success:
        logger.info(message)
    else:
        logger.error(message)
