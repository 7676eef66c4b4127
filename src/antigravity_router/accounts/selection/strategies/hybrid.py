# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Hybrid selection strategy.

Scores every eligible account on health, token bucket fill, quota and
idle time:

    score = health * Wh + (tokens / max_tokens * 100) * Wt
            + quota_score * Wq + idle_seconds * Wl

Eligibility is a ladder of filter sets tried in order (normal, quota,
emergency, last resort); the first level with any candidate wins.
"""

import logging
from typing import Callable, List, Optional, Sequence, Tuple

from ....core.constants import (
    EMERGENCY_THROTTLE_MS,
    LAST_RESORT_THROTTLE_MS,
    LRU_CAP_MS,
)
from ....utils import time_utils
from ....utils.credential_formatter import mask_credential
from ...config import StrategyConfig
from ...rate_limits import RateLimitStore
from ...tracking import HealthTracker, QuotaTracker, TokenBucketTracker
from ...types import Account, FallbackLevel, SelectionResult
from .base import BaseStrategy

lib_logger = logging.getLogger("antigravity_router")

AccountFilter = Callable[[Account, Optional[str]], bool]


class HybridStrategy(BaseStrategy):
    """
    Health, token bucket, quota and LRU combined into one score.

    The three trackers are owned by the strategy and exposed read-only for
    tests and diagnostics.
    """

    def __init__(
        self,
        config: Optional[StrategyConfig] = None,
        rate_limits: Optional[RateLimitStore] = None,
    ):
        super().__init__(rate_limits)
        self.config = config or StrategyConfig()
        self.health = HealthTracker(self.config.health)
        self.token_bucket = TokenBucketTracker(self.config.token_bucket)
        self.quota = QuotaTracker(self.config.quota)
        self.weights = self.config.weights

        # Filter ladder, strictest first
        self._levels: List[Tuple[FallbackLevel, Tuple[AccountFilter, ...]]] = [
            (
                FallbackLevel.NORMAL,
                (
                    self.is_account_usable,
                    self._is_healthy,
                    self._has_tokens,
                    self._quota_ok,
                ),
            ),
            (
                FallbackLevel.QUOTA,
                (self.is_account_usable, self._is_healthy, self._has_tokens),
            ),
            (FallbackLevel.EMERGENCY, (self.is_account_usable, self._has_tokens)),
            (FallbackLevel.LAST_RESORT, (self.is_account_usable,)),
        ]

    @property
    def name(self) -> str:
        return "hybrid"

    # =========================================================================
    # FILTERS
    # =========================================================================

    def _is_healthy(self, account: Account, model: Optional[str]) -> bool:
        return self.health.is_usable(account.email)

    def _has_tokens(self, account: Account, model: Optional[str]) -> bool:
        return self.token_bucket.has_tokens(account.email)

    def effective_quota_threshold(
        self, account: Account, model: Optional[str]
    ) -> Optional[float]:
        """
        Per-model, then per-account, then global threshold.

        None means the tracker's built-in critical threshold applies.
        """
        threshold = account.threshold_for(model)
        if threshold is not None:
            return threshold
        return self.config.global_quota_threshold

    def _quota_ok(self, account: Account, model: Optional[str]) -> bool:
        threshold = self.effective_quota_threshold(account, model)
        if self.quota.is_quota_critical(account, model, threshold):
            lib_logger.debug(
                f"Excluding {mask_credential(account.email)}: quota critically low "
                f"for {model} (threshold: {threshold if threshold is not None else 'default'})"
            )
            return False
        return True

    def _candidates(
        self, accounts: Sequence[Account], model: Optional[str]
    ) -> Tuple[List[Tuple[int, Account]], FallbackLevel]:
        for level, filters in self._levels:
            candidates = [
                (index, account)
                for index, account in enumerate(accounts)
                if all(check(account, model) for check in filters)
            ]
            if candidates:
                if level == FallbackLevel.QUOTA:
                    lib_logger.warning(
                        "All accounts have critical quota, using fallback"
                    )
                elif level == FallbackLevel.EMERGENCY:
                    lib_logger.warning(
                        "EMERGENCY: All accounts unhealthy, using least bad account"
                    )
                elif level == FallbackLevel.LAST_RESORT:
                    lib_logger.warning(
                        "LAST RESORT: All accounts exhausted, using any usable account"
                    )
                return candidates, level
        return [], FallbackLevel.NORMAL

    # =========================================================================
    # SCORING
    # =========================================================================

    def score(self, account: Account, model: Optional[str]) -> float:
        email = account.email
        health = self.health.get_score(email) * self.weights.health

        max_tokens = self.token_bucket.get_max_tokens()
        token_ratio = self.token_bucket.get_tokens(email) / max_tokens if max_tokens else 0
        tokens = token_ratio * 100 * self.weights.tokens

        quota = self.quota.get_score(account, model) * self.weights.quota

        idle_ms = min(
            time_utils.now_ms() - self.rate_limits.last_used(email), LRU_CAP_MS
        )
        lru = (max(0.0, idle_ms) / 1000) * self.weights.lru

        return health + tokens + quota + lru

    # =========================================================================
    # SELECTION
    # =========================================================================

    def select_account(
        self, accounts: Sequence[Account], model: Optional[str]
    ) -> SelectionResult:
        """
        Pick the highest-scoring eligible account.

        Ties keep list order. The winner is stamped as used and, unless the
        token filter was bypassed (last resort), consumes one token.
        """
        if not accounts:
            return SelectionResult(account=None, index=0, wait_ms=0, reason="no accounts")

        candidates, level = self._candidates(accounts, model)
        if not candidates:
            reason, wait_ms = self.diagnose_no_candidates(accounts, model)
            lib_logger.warning(f"No candidates available: {reason}")
            return SelectionResult(
                account=None, index=0, wait_ms=wait_ms, reason=reason
            )

        best_index, best = candidates[0]
        best_score = self.score(best, model)
        for index, account in candidates[1:]:
            candidate_score = self.score(account, model)
            if candidate_score > best_score:
                best_index, best, best_score = index, account, candidate_score

        self.rate_limits.touch(best.email)
        if level != FallbackLevel.LAST_RESORT:
            self.token_bucket.consume(best.email)

        wait_ms = 0
        if level == FallbackLevel.LAST_RESORT:
            wait_ms = LAST_RESORT_THROTTLE_MS
        elif level == FallbackLevel.EMERGENCY:
            wait_ms = EMERGENCY_THROTTLE_MS

        fallback_info = f", fallback: {level.value}" if level != FallbackLevel.NORMAL else ""
        if self.quota.is_quota_low(best, model):
            fallback_info += ", quota low"
        lib_logger.info(
            f"Using account: {mask_credential(best.email)} "
            f"({best_index + 1}/{len(accounts)}, score: {best_score:.1f}{fallback_info})"
        )
        return SelectionResult(
            account=best, index=best_index, wait_ms=wait_ms, fallback_level=level
        )

    def diagnose_no_candidates(
        self, accounts: Sequence[Account], model: Optional[str]
    ) -> Tuple[str, float]:
        """
        Classify each account by the first filter it fails.

        Returns:
            (reason, wait_ms). ``wait_ms`` is the time until the next token
            when token starvation is the only blocker, otherwise 0.
        """
        unusable = unhealthy = critical = 0
        starved: List[str] = []
        for account in accounts:
            if not self.is_account_usable(account, model):
                unusable += 1
            elif not self._is_healthy(account, model):
                unhealthy += 1
            elif not self._has_tokens(account, model):
                starved.append(account.email)
            elif not self._quota_ok(account, model):
                critical += 1

        if starved and not unusable and not unhealthy:
            wait_ms = self.token_bucket.get_min_time_until_token(starved)
            return (
                f"all {len(starved)} account(s) exhausted token bucket, waiting for refill",
                wait_ms,
            )

        parts = []
        if unusable:
            parts.append(f"{unusable} unusable/disabled")
        if unhealthy:
            parts.append(f"{unhealthy} unhealthy")
        if starved:
            parts.append(f"{len(starved)} no tokens")
        if critical:
            parts.append(f"{critical} critical quota")
        return (", ".join(parts) if parts else "unknown"), 0

    # =========================================================================
    # NOTIFICATIONS
    # =========================================================================

    def on_success(self, account: Account, model: Optional[str]) -> None:
        if account is not None:
            self.health.record_success(account.email)

    def on_rate_limit(self, account: Account, model: Optional[str]) -> None:
        if account is not None:
            self.health.record_rate_limit(account.email)

    def on_failure(self, account: Account, model: Optional[str]) -> None:
        """Penalize health and refund the token spent on the failed call."""
        if account is not None:
            self.health.record_failure(account.email)
            self.token_bucket.refund(account.email)

    def on_abandoned(self, account: Account, model: Optional[str]) -> None:
        """Refund the token of a request that never reached the upstream."""
        if account is not None:
            self.token_bucket.refund(account.email)
