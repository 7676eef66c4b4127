# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Exception hierarchy for the router.

Every failure the orchestrator can observe maps to one of these types.
"""

from typing import Optional


class AntigravityError(Exception):
    """Base class for all router errors."""


class RateLimitedError(AntigravityError):
    """
    Upstream refused the call because of a rate limit or exhausted quota.

    Attributes:
        status_code: HTTP status (429 for a plain rate limit, may differ when
            detected from the error text)
        reset_ms: Upstream retry hint in milliseconds, or None
        error_text: Raw error body, truncated for logs
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = 429,
        reset_ms: Optional[float] = None,
        error_text: str = "",
    ):
        super().__init__(message)
        self.status_code = status_code
        self.reset_ms = reset_ms
        self.error_text = error_text


class EmptyResponseError(AntigravityError):
    """The upstream produced no content parts at all."""


class AccountInvalidError(AntigravityError):
    """The account's credential was rejected and needs re-authentication."""

    def __init__(self, email: str, reason: str = "Unknown error"):
        super().__init__(f"Account {email} is invalid: {reason}")
        self.email = email
        self.reason = reason


class MalformedChunkError(AntigravityError):
    """A streaming line could not be decoded. Never fatal to the stream."""

    def __init__(self, message: str, raw: str = ""):
        super().__init__(message)
        self.raw = raw


class NoCapacityError(AntigravityError):
    """
    No account can serve the model right now.

    ``wait_ms`` is the computed hint for when capacity may return
    (0 when no meaningful hint exists).
    """

    def __init__(self, model: str, wait_ms: float = 0, reason: str = ""):
        message = f"No account available for model {model}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.model = model
        self.wait_ms = wait_ms
        self.reason = reason


class UpstreamError(AntigravityError):
    """Any other non-success response from the upstream."""

    def __init__(self, message: str, status_code: Optional[int] = None, error_text: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.error_text = error_text

    @property
    def is_server_error(self) -> bool:
        return self.status_code is None or self.status_code >= 500


class ModelNotFoundError(AntigravityError):
    """The requested model id is not in the upstream catalog."""

    def __init__(self, model: str):
        super().__init__(f"Model {model} is not available")
        self.model = model
