# src/common/logging_utils.py

"""
Secret-safe logging utilities for the tracking-request workflow.

This module ensures:
- No secret values, signer keys, access tokens or decrypted content are logged.
- Logs are structured as key=value pairs.
- Only metadata (request_id, artifact_id, tx hashes, timing) is logged.
- Logging level and strict mode are applied from an explicit Config via
  `configure_logging`.

We use a very lightweight wrapper on top of Python's standard logging module.
"""

from __future__ import annotations

import logging
import sys
from typing import Optional, Dict, Any

from common.config import Config


# -------------------------------------------------------------------------
# Logger Initialization
# -------------------------------------------------------------------------

def _initialize_logger() -> logging.Logger:
    """
    Initializes a logger with stdout handler.
    Logs are formatted as: timestamp level message key=value key=value ...
    """
    logger = logging.getLogger("tadi")
    logger.setLevel(logging.INFO)

    handler = logging.StreamHandler(sys.stdout)

    formatter = logging.Formatter(
        fmt="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    handler.setFormatter(formatter)

    # Avoid multiple handlers if this is re-imported
    if not logger.handlers:
        logger.addHandler(handler)

    logger.propagate = False
    return logger


_logger = _initialize_logger()
_strict_mode = False


def configure_logging(config: Config) -> None:
    """Apply LOG_LEVEL and STRICT_NO_LOGGING_MODE from the invocation config."""
    global _strict_mode

    level = logging.getLevelName(config.LOG_LEVEL.upper())
    _logger.setLevel(level if isinstance(level, int) else logging.INFO)
    _strict_mode = config.STRICT_NO_LOGGING_MODE


# -------------------------------------------------------------------------
# Sanitization
# -------------------------------------------------------------------------

# Keys that should never be logged
SENSITIVE_KEYS = {
    "secrets",
    "secret",
    "api_key",
    "tracking_api_key",
    "private_key",
    "signer_key",
    "signer_private_key",
    "token",
    "store_token",
    "signature",
    "plaintext",
    "decrypted",
    "content",
}


def _sanitize_extra(extra: Optional[Dict[str, Any]]) -> Dict[str, str]:
    """
    Sanitize extra metadata fields before logging.

    Rules:
    - Drop known sensitive keys (SENSITIVE_KEYS) always.
    - In strict mode, drop very long string values.
    - Always coerce values to strings.
    """
    if not extra:
        return {}

    cleaned: Dict[str, str] = {}

    for key, value in extra.items():
        k = str(key)

        if k.lower() in SENSITIVE_KEYS:
            continue

        if _strict_mode and isinstance(value, str) and len(value) > 256:
            continue

        cleaned[k] = str(value)

    return cleaned


def _level_to_int(level: str) -> int:
    lvl = level.lower()
    if lvl == "info":
        return logging.INFO
    if lvl == "warning":
        return logging.WARNING
    if lvl == "error":
        return logging.ERROR
    if lvl == "debug":
        return logging.DEBUG
    return logging.INFO


# -------------------------------------------------------------------------
# Sanitized logging function
# -------------------------------------------------------------------------

def log_event(
    message: str,
    *,
    request_id: Optional[str] = None,
    artifact_id: Optional[str] = None,
    error: Optional[str] = None,
    extra: Optional[Dict[str, Any]] = None,
    level: str = "info",
):
    """
    Logs a sanitized, structured message with no secret material.

    Examples:
        log_event(
            "artifact_created",
            artifact_id="aa5a315d61ae9438b18d",
            extra={"url": "https://gist.github.com/aa5a315d61ae9438b18d"},
        )

        log_event(
            "request_fulfilled",
            request_id="0x3f9c...",
            extra={"elapsed_ms": 2150},
        )
    """

    fields = []

    if request_id:
        fields.append(f"request_id={request_id}")

    if artifact_id:
        fields.append(f"artifact_id={artifact_id}")

    if error:
        fields.append(f"error={error}")

    safe_extra = _sanitize_extra(extra)
    for k, v in safe_extra.items():
        fields.append(f"{k}={v}")

    if _strict_mode:
        fields.append("strict_no_logging=True")

    full_message = f"{message} " + " ".join(fields)

    _logger.log(_level_to_int(level), full_message.rstrip())
