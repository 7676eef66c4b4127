# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Default configurations for the accounts package.

This module contains the configuration dataclasses for the trackers, the
hybrid selection strategy and the request orchestrator, plus loading of
overrides from the environment.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

from ..core.constants import (
    DEFAULT_BASE_DELAY_MS,
    DEFAULT_BUCKET_INITIAL_TOKENS,
    DEFAULT_BUCKET_MAX_TOKENS,
    DEFAULT_BUCKET_TOKENS_PER_MINUTE,
    DEFAULT_COOLDOWN_MS,
    DEFAULT_HEALTH_FAILURE_PENALTY,
    DEFAULT_HEALTH_INITIAL,
    DEFAULT_HEALTH_MAX_SCORE,
    DEFAULT_HEALTH_MIN_SCORE,
    DEFAULT_HEALTH_MIN_USABLE,
    DEFAULT_HEALTH_RATE_LIMIT_PENALTY,
    DEFAULT_HEALTH_RECOVERY_PER_HOUR,
    DEFAULT_HEALTH_SUCCESS_REWARD,
    DEFAULT_MAX_DELAY_MS,
    DEFAULT_MAX_EMPTY_RESPONSE_RETRIES,
    DEFAULT_MAX_RETRIES,
    DEFAULT_MAX_WAIT_MS,
    DEFAULT_QUOTA_CRITICAL_THRESHOLD,
    DEFAULT_QUOTA_LOW_THRESHOLD,
    DEFAULT_QUOTA_STALE_MS,
    DEFAULT_QUOTA_UNKNOWN_SCORE,
    DEFAULT_WEIGHT_HEALTH,
    DEFAULT_WEIGHT_LRU,
    DEFAULT_WEIGHT_QUOTA,
    DEFAULT_WEIGHT_TOKENS,
    ENV_PREFIX,
    MODEL_VALIDATION_CACHE_TTL_MS,
    PROJECT_CACHE_TTL_MS,
)

lib_logger = logging.getLogger("antigravity_router")


# =============================================================================
# TRACKER CONFIGURATION
# =============================================================================


@dataclass
class HealthScoreConfig:
    """Health score bounds and per-event adjustments."""

    initial: float = DEFAULT_HEALTH_INITIAL
    success_reward: float = DEFAULT_HEALTH_SUCCESS_REWARD
    rate_limit_penalty: float = DEFAULT_HEALTH_RATE_LIMIT_PENALTY
    failure_penalty: float = DEFAULT_HEALTH_FAILURE_PENALTY
    recovery_per_hour: float = DEFAULT_HEALTH_RECOVERY_PER_HOUR
    min_usable: float = DEFAULT_HEALTH_MIN_USABLE
    max_score: float = DEFAULT_HEALTH_MAX_SCORE
    min_score: float = DEFAULT_HEALTH_MIN_SCORE


@dataclass
class TokenBucketConfig:
    """Client-side token bucket per account."""

    max_tokens: float = DEFAULT_BUCKET_MAX_TOKENS
    tokens_per_minute: float = DEFAULT_BUCKET_TOKENS_PER_MINUTE
    initial_tokens: float = DEFAULT_BUCKET_INITIAL_TOKENS


@dataclass
class QuotaConfig:
    """How upstream quota fractions are interpreted."""

    low_threshold: float = DEFAULT_QUOTA_LOW_THRESHOLD
    critical_threshold: float = DEFAULT_QUOTA_CRITICAL_THRESHOLD
    stale_ms: float = DEFAULT_QUOTA_STALE_MS
    unknown_score: float = DEFAULT_QUOTA_UNKNOWN_SCORE


@dataclass
class ScoringWeights:
    """Weights of each component in the selection score."""

    health: float = DEFAULT_WEIGHT_HEALTH
    tokens: float = DEFAULT_WEIGHT_TOKENS
    quota: float = DEFAULT_WEIGHT_QUOTA
    lru: float = DEFAULT_WEIGHT_LRU


@dataclass
class StrategyConfig:
    """
    Full configuration of the hybrid selection strategy.

    ``global_quota_threshold`` sits between the per-account thresholds and
    the built-in critical threshold in the precedence chain.
    """

    health: HealthScoreConfig = field(default_factory=HealthScoreConfig)
    token_bucket: TokenBucketConfig = field(default_factory=TokenBucketConfig)
    quota: QuotaConfig = field(default_factory=QuotaConfig)
    weights: ScoringWeights = field(default_factory=ScoringWeights)
    global_quota_threshold: Optional[float] = None


# =============================================================================
# ORCHESTRATOR CONFIGURATION
# =============================================================================


@dataclass
class RetryConfig:
    """Retry and backoff limits for one request."""

    max_retries: int = DEFAULT_MAX_RETRIES
    base_delay_ms: float = DEFAULT_BASE_DELAY_MS
    max_delay_ms: float = DEFAULT_MAX_DELAY_MS
    max_wait_ms: float = DEFAULT_MAX_WAIT_MS
    max_empty_response_retries: int = DEFAULT_MAX_EMPTY_RESPONSE_RETRIES
    max_account_attempts: Optional[int] = None  # None = pool size

    def backoff_ms(self, attempt: int, hint_ms: Optional[float] = None) -> float:
        """
        Delay before retry number ``attempt`` (0-based).

        An upstream hint always wins over the exponential schedule.
        """
        if hint_ms is not None:
            return hint_ms
        return min(self.base_delay_ms * (2**attempt), self.max_delay_ms)


@dataclass
class RouterConfig:
    """Top-level configuration for AntigravityClient."""

    strategy: StrategyConfig = field(default_factory=StrategyConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    endpoint_preference: str = "auto"  # "prod", "daily" or "auto"
    default_cooldown_ms: float = DEFAULT_COOLDOWN_MS
    model_cache_ttl_ms: float = MODEL_VALIDATION_CACHE_TTL_MS
    project_cache_ttl_ms: float = PROJECT_CACHE_TTL_MS
    failure_log_dir: Optional[str] = None
    inject_identity_preamble: bool = True
    project_id_override: Optional[str] = None

    @classmethod
    def from_env(
        cls, prefix: str = ENV_PREFIX, env_file: Optional[str] = None
    ) -> "RouterConfig":
        """
        Build a configuration from environment variables.

        Loads ``env_file`` (or the nearest ``.env``) first; variables already
        set in the process win. Malformed numeric values are ignored with a
        warning and the default is kept.
        """
        load_dotenv(env_file)
        config = cls()

        endpoint = os.getenv(f"{prefix}ENDPOINT")
        if endpoint:
            config.endpoint_preference = endpoint.strip().lower()

        config.retry.max_retries = _env_int(
            f"{prefix}MAX_RETRIES", config.retry.max_retries
        )
        config.retry.max_wait_ms = _env_float(
            f"{prefix}MAX_WAIT_MS", config.retry.max_wait_ms
        )
        config.retry.max_empty_response_retries = _env_int(
            f"{prefix}MAX_EMPTY_RESPONSE_RETRIES",
            config.retry.max_empty_response_retries,
        )
        config.default_cooldown_ms = _env_float(
            f"{prefix}DEFAULT_COOLDOWN_MS", config.default_cooldown_ms
        )

        threshold = os.getenv(f"{prefix}QUOTA_THRESHOLD")
        if threshold:
            try:
                config.strategy.global_quota_threshold = float(threshold)
            except ValueError:
                lib_logger.warning(
                    f"Ignoring invalid {prefix}QUOTA_THRESHOLD value: {threshold!r}"
                )

        config.failure_log_dir = os.getenv(f"{prefix}FAILURE_LOG_DIR") or None
        config.project_id_override = os.getenv(f"{prefix}PROJECT_ID") or None
        config.inject_identity_preamble = _env_bool(
            f"{prefix}INJECT_IDENTITY_PREAMBLE", config.inject_identity_preamble
        )
        return config


# =============================================================================
# ENVIRONMENT HELPERS
# =============================================================================


def _env_bool(key: str, default: bool) -> bool:
    """Get boolean from environment variable."""
    val = os.getenv(key)
    if val is None or val == "":
        return default
    return val.strip().lower() in ("true", "1", "yes", "on")


def _env_int(key: str, default: int) -> int:
    """Get integer from environment variable."""
    val = os.getenv(key)
    if val:
        try:
            return int(val)
        except ValueError:
            lib_logger.warning(f"Ignoring invalid {key} value: {val!r}")
    return default


def _env_float(key: str, default: float) -> float:
    """Get float from environment variable."""
    val = os.getenv(key)
    if val:
        try:
            return float(val)
        except ValueError:
            lib_logger.warning(f"Ignoring invalid {key} value: {val!r}")
    return default
