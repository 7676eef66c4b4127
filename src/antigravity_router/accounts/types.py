# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Type definitions for the accounts package.

Static account identity (``Account``) is kept apart from the mutable state
the router attaches to it (``AccountState``), which lives in the
``RateLimitStore`` keyed by e-mail.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


# =============================================================================
# ENUMS
# =============================================================================


class FallbackLevel(str, Enum):
    """How far the hybrid strategy had to relax its filters."""

    NORMAL = "normal"
    QUOTA = "quota"  # quota filter dropped
    EMERGENCY = "emergency"  # quota + health filters dropped
    LAST_RESORT = "lastResort"  # only basic usability kept


class CooldownReason(str, Enum):
    """Why an account was put on a short cooldown."""

    RATE_LIMIT = "rate_limit"
    AUTH_FAILURE = "auth_failure"
    CONSECUTIVE_FAILURES = "consecutive_failures"
    SERVER_ERROR = "server_error"


# =============================================================================
# ACCOUNT IDENTITY
# =============================================================================


@dataclass
class Account:
    """
    One credential in the pool.

    Only configuration lives here; everything the router mutates per request
    is in ``AccountState``.
    """

    email: str
    refresh_token: Optional[str] = None
    project_id: Optional[str] = None
    enabled: bool = True
    quota_threshold: Optional[float] = None  # per-account default
    model_quota_thresholds: Dict[str, float] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Account":
        """Create from a plain dictionary (config file or env)."""
        if not data.get("email"):
            raise ValueError("Account entry requires an 'email'")
        return cls(
            email=data["email"],
            refresh_token=data.get("refresh_token") or data.get("refreshToken"),
            project_id=data.get("project_id") or data.get("projectId"),
            enabled=data.get("enabled", True) is not False,
            quota_threshold=data.get("quota_threshold", data.get("quotaThreshold")),
            model_quota_thresholds=dict(
                data.get("model_quota_thresholds")
                or data.get("modelQuotaThresholds")
                or {}
            ),
        )

    def threshold_for(self, model: Optional[str]) -> Optional[float]:
        """Per-model override first, then the per-account default."""
        if model and model in self.model_quota_thresholds:
            return self.model_quota_thresholds[model]
        return self.quota_threshold


# =============================================================================
# MUTABLE STATE
# =============================================================================


@dataclass
class RateLimitEntry:
    """
    Rate limit for one account + model.

    Entries are expired lazily: an entry with ``is_rate_limited`` set but a
    ``reset_time`` in the past counts as not limited for every reader.
    """

    is_rate_limited: bool = False
    reset_time: Optional[float] = None  # epoch ms
    actual_reset_ms: Optional[float] = None  # duration the upstream reported

    def is_active(self, now: float) -> bool:
        return bool(
            self.is_rate_limited
            and self.reset_time is not None
            and self.reset_time > now
        )


@dataclass
class AccountState:
    """Per-account mutable record, owned by RateLimitStore."""

    email: str
    last_used: float = 0.0  # epoch ms
    is_invalid: bool = False
    invalid_reason: Optional[str] = None
    invalid_at: Optional[float] = None
    consecutive_failures: int = 0
    model_rate_limits: Dict[str, RateLimitEntry] = field(default_factory=dict)
    cooling_down_until: Optional[float] = None  # epoch ms
    cooldown_reason: Optional[CooldownReason] = None


@dataclass
class QuotaSnapshot:
    """
    Upstream-reported quota for one account + model.

    Supplied from the model catalog; the router only reads it.
    """

    remaining_fraction: Optional[float] = None
    reset_time: Optional[str] = None
    fetched_at: Optional[float] = None  # epoch ms

    @classmethod
    def from_quota_info(
        cls, info: Dict[str, Any], fetched_at: Optional[float] = None
    ) -> "QuotaSnapshot":
        return cls(
            remaining_fraction=info.get("remainingFraction", info.get("remaining_fraction")),
            reset_time=info.get("resetTime", info.get("reset_time")),
            fetched_at=fetched_at,
        )


# =============================================================================
# SELECTION
# =============================================================================


@dataclass
class SelectionResult:
    """
    Outcome of one selection.

    ``account`` is None when nothing is selectable; ``wait_ms`` is then the
    diagnosed wait hint. With an account, ``wait_ms`` is the throttle delay
    the caller should honour before issuing the call.
    """

    account: Optional[Account]
    index: int = 0
    wait_ms: float = 0
    fallback_level: FallbackLevel = FallbackLevel.NORMAL
    reason: Optional[str] = None


@dataclass
class RateLimitInfo:
    """Snapshot returned by RateLimitStore.get_rate_limit_info."""

    is_rate_limited: bool
    actual_reset_ms: Optional[float]
    wait_ms: float
