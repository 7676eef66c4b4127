# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

import json
import math
import re
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Mapping, Optional

from .core.errors import (
    AccountInvalidError,
    AntigravityError,
    RateLimitedError,
    UpstreamError,
)
from .utils import time_utils

RATE_LIMIT_MARKERS = ("resource_exhausted", "quota_exhausted", "rate limit")
INVALID_CREDENTIAL_MARKERS = ("invalid_grant", "unauthenticated", "invalid authentication")

_QUOTA_DELAY_RE = re.compile(r'quotaResetDelay[:\s"]+(\d+(?:\.\d+)?)(ms|s)', re.IGNORECASE)
_QUOTA_TIMESTAMP_RE = re.compile(
    r'quotaResetTimeStamp[:\s"]+(\d{4}-\d{2}-\d{2}T[\d:.]+Z?)', re.IGNORECASE
)

MAX_ERROR_SNIPPET = 300


def format_error_snippet(text: str, max_len: int = MAX_ERROR_SNIPPET) -> str:
    """Collapse whitespace and truncate an error body for logs."""
    if not text:
        return ""
    trimmed = " ".join(text.split())
    if len(trimmed) <= max_len:
        return trimmed
    return trimmed[:max_len] + "..."


def _header(headers: Optional[Mapping[str, str]], name: str) -> Optional[str]:
    if not headers:
        return None
    value = headers.get(name)
    if value is None:
        value = headers.get(name.lower())
    if value is None:
        # Plain dicts are case-sensitive
        for key, val in headers.items():
            if key.lower() == name.lower():
                return val
    return value


def _parse_iso(value: str) -> Optional[datetime]:
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_retry_after_ms(
    headers: Optional[Mapping[str, str]], text: str = ""
) -> Optional[float]:
    """
    Extract the upstream retry hint in milliseconds.

    Checked in order: ``Retry-After`` (seconds or HTTP date),
    ``x-ratelimit-reset-after`` (seconds), ``x-ratelimit-reset`` (epoch
    seconds), ``quotaResetDelay`` and ``quotaResetTimeStamp`` in the body.

    Returns:
        Delay in ms (never negative), or None if no hint was found.
    """
    now = time_utils.now_ms()

    retry_after = _header(headers, "retry-after")
    if retry_after:
        retry_after = retry_after.strip()
        if retry_after.isdigit():
            return int(retry_after) * 1000
        try:
            when = parsedate_to_datetime(retry_after)
        except (TypeError, ValueError):
            when = None
        if when is not None:
            return max(0.0, when.timestamp() * 1000 - now)

    reset_after = _header(headers, "x-ratelimit-reset-after")
    if reset_after:
        try:
            seconds = int(float(reset_after))
        except ValueError:
            seconds = 0
        if seconds > 0:
            return seconds * 1000

    reset_at = _header(headers, "x-ratelimit-reset")
    if reset_at:
        try:
            seconds = int(float(reset_at))
        except ValueError:
            seconds = 0
        if seconds > 0:
            return max(0.0, seconds * 1000 - now)

    text = text or ""
    match = _QUOTA_DELAY_RE.search(text)
    if match:
        value = float(match.group(1))
        unit = match.group(2).lower()
        return float(math.ceil(value * 1000 if unit == "s" else value))

    match = _QUOTA_TIMESTAMP_RE.search(text)
    if match:
        when = _parse_iso(match.group(1))
        if when is not None:
            return max(0.0, when.timestamp() * 1000 - now)

    return None


def _error_message(text: str) -> str:
    """Pull ``error.message`` out of a Google-style JSON error body."""
    try:
        body = json.loads(text)
    except (TypeError, ValueError):
        return format_error_snippet(text)
    if isinstance(body, list) and body:
        body = body[0]
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
    return format_error_snippet(text)


def is_rate_limit_response(status_code: Optional[int], text: str = "") -> bool:
    if status_code == 429:
        return True
    lower = (text or "").lower()
    return any(marker in lower for marker in RATE_LIMIT_MARKERS)


def classify_response(
    status_code: int,
    text: str = "",
    headers: Optional[Mapping[str, str]] = None,
    email: str = "",
) -> Optional[AntigravityError]:
    """
    Map an upstream response to an error, or None on success.

    Rate-limit detection also looks at the body because the upstream
    sometimes reports quota exhaustion with other status codes.
    """
    if 200 <= status_code < 300:
        return None

    message = _error_message(text)
    if is_rate_limit_response(status_code, text):
        return RateLimitedError(
            f"Rate limited ({status_code}): {message}",
            status_code=status_code,
            reset_ms=parse_retry_after_ms(headers, text),
            error_text=format_error_snippet(text),
        )

    lower = (text or "").lower()
    if any(marker in lower for marker in INVALID_CREDENTIAL_MARKERS):
        return AccountInvalidError(email or "<unknown>", message)

    return UpstreamError(
        f"Upstream error ({status_code}): {message}",
        status_code=status_code,
        error_text=format_error_snippet(text),
    )


def is_rate_limit_error(e: Exception) -> bool:
    """Checks if the exception is a rate limit error."""
    return isinstance(e, RateLimitedError)


def is_server_error(e: Exception) -> bool:
    """Checks if the exception is a temporary server-side or network error."""
    return isinstance(e, UpstreamError) and e.is_server_error


def is_auth_error(e: Exception) -> bool:
    """401/403 responses; usually an expired access token."""
    return isinstance(e, UpstreamError) and e.status_code in (401, 403)


def is_unrecoverable_error(e: Exception) -> bool:
    """
    Checks if the exception is a non-retriable client-side error.
    These are errors that will not resolve on their own.
    """
    if isinstance(e, AccountInvalidError):
        return True
    return (
        isinstance(e, UpstreamError)
        and not e.is_server_error
        and not is_auth_error(e)
    )
