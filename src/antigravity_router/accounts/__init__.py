# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Account pool management: state, trackers, selection and the manager façade.
"""

from .config import (
    HealthScoreConfig,
    QuotaConfig,
    RetryConfig,
    RouterConfig,
    ScoringWeights,
    StrategyConfig,
    TokenBucketConfig,
)
from .manager import AccountManager, SingleAccountManager
from .rate_limits import RateLimitStore
from .selection import BaseStrategy, HybridStrategy
from .tracking import HealthTracker, QuotaTracker, TokenBucketTracker
from .types import (
    Account,
    AccountState,
    CooldownReason,
    FallbackLevel,
    QuotaSnapshot,
    RateLimitEntry,
    RateLimitInfo,
    SelectionResult,
)

__all__ = [
    "Account",
    "AccountManager",
    "AccountState",
    "BaseStrategy",
    "CooldownReason",
    "FallbackLevel",
    "HealthScoreConfig",
    "HealthTracker",
    "HybridStrategy",
    "QuotaConfig",
    "QuotaSnapshot",
    "QuotaTracker",
    "RateLimitEntry",
    "RateLimitInfo",
    "RateLimitStore",
    "RetryConfig",
    "RouterConfig",
    "ScoringWeights",
    "SelectionResult",
    "SingleAccountManager",
    "StrategyConfig",
    "TokenBucketConfig",
    "TokenBucketTracker",
]
