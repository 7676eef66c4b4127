# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

import json
import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Any, Dict, Optional

from .utils.credential_formatter import mask_credential

lib_logger = logging.getLogger("antigravity_router")

FAILURE_LOGGER_NAME = "antigravity_router.failures"
FAILURE_LOG_FILE = "failures.log"


class JsonFormatter(logging.Formatter):
    """One JSON object per record; dict messages are merged in."""

    def format(self, record):
        log_record: Dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
        }
        if isinstance(record.msg, dict):
            log_record.update(record.msg)
        else:
            log_record["message"] = record.getMessage()
        return json.dumps(log_record, default=str)


_failure_logger: Optional[logging.Logger] = None


def configure_failure_logger(log_dir: str = "logs") -> logging.Logger:
    """
    Sets up the dedicated JSON logger for failed upstream calls.

    Safe to call more than once; the file handler is only added the first
    time for a given directory.
    """
    global _failure_logger
    os.makedirs(log_dir, exist_ok=True)

    logger = logging.getLogger(FAILURE_LOGGER_NAME)
    logger.setLevel(logging.INFO)
    # Failure records go to the file only
    logger.propagate = False

    path = os.path.abspath(os.path.join(log_dir, FAILURE_LOG_FILE))
    already = any(
        isinstance(h, RotatingFileHandler) and h.baseFilename == path
        for h in logger.handlers
    )
    if not already:
        handler = RotatingFileHandler(
            path,
            maxBytes=5 * 1024 * 1024,  # 5 MB
            backupCount=2,
        )
        handler.setFormatter(JsonFormatter())
        logger.addHandler(handler)

    _failure_logger = logger
    return logger


def reset_failure_logger() -> None:
    """Detach and close file handlers; records fall back to the library logger."""
    global _failure_logger
    logger = logging.getLogger(FAILURE_LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    _failure_logger = None


def log_failure(
    account: str,
    model: str,
    attempt: int,
    error: Exception,
    request_data: Optional[Dict[str, Any]] = None,
) -> None:
    """Logs a structured record for a failed upstream call."""
    log_data = {
        "account": mask_credential(account),
        "model": model,
        "attempt_number": attempt,
        "error_type": type(error).__name__,
        "error_message": str(error),
        "status_code": getattr(error, "status_code", None),
        "raw_response": getattr(error, "error_text", None) or None,
        "request_data": request_data or {},
    }
    if _failure_logger is not None:
        _failure_logger.error(log_data)
    else:
        lib_logger.debug(f"Upstream failure: {json.dumps(log_data, default=str)}")
