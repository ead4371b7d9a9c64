"""
Shared logging utilities.
"""

import logging
import re
import sys
from pathlib import Path

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

SECRET_PATTERNS = [
    # Authorization header values
    (re.compile(r"(?i)\bbearer\s+[A-Za-z0-9._~+/=-]+"), "Bearer [REDACTED]"),
    # token=..., api_token: ..., "ynab_token": "..."
    (
        re.compile(r"(?i)\b((?:api_|ynab_)?token)(\"?\s*[:=]\s*\"?)[^\s\"&,}]+"),
        r"\1\2[REDACTED]",
    ),
    # Environment-style per-user secrets
    (re.compile(r"\b(YNAB_TOKEN_USER_[A-Za-z0-9_-]+=)\S+"), r"\1[REDACTED]"),
]


def scrub_secrets(text: str) -> str:
    """Remove bearer tokens and YNAB credentials from text.

    Args:
        text: Input text that may contain credentials

    Returns:
        Text with credentials replaced by placeholders
    """
    if not text:
        return text

    filtered = text
    for pattern, replacement in SECRET_PATTERNS:
        filtered = pattern.sub(replacement, filtered)
    return filtered


class SecretScrubbingFilter(logging.Filter):
    """Applies :func:`scrub_secrets` to every record's rendered message."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        scrubbed = scrub_secrets(message)
        if scrubbed != message:
            record.msg = scrubbed
            record.args = None
        return True


def setup_logging(level: str = "INFO", log_file: str | None = None) -> None:
    """
    Configure root logger.

    Args:
        level: Log level ('DEBUG', 'INFO', 'WARNING', 'ERROR')
        log_file: Optional log file path
    """
    log_level = getattr(logging, level.upper(), logging.INFO)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Avoid stacking handlers when the app factory runs more than once
    if not any(getattr(h, "_wallet_handler", False) for h in root_logger.handlers):
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(log_level)
        console_handler.setFormatter(formatter)
        console_handler.addFilter(SecretScrubbingFilter())
        console_handler._wallet_handler = True
        root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_path)
        file_handler.setLevel(log_level)
        file_handler.setFormatter(formatter)
        file_handler.addFilter(SecretScrubbingFilter())
        root_logger.addHandler(file_handler)

    # httpx logs full request URLs at INFO
    logging.getLogger("httpx").setLevel(max(log_level, logging.WARNING))
