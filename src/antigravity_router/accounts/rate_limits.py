# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Per-account, per-model rate-limit and cooldown bookkeeping.

All mutable account state lives here, keyed by e-mail. Each key has its own
``threading.Lock``; locks are only held for in-memory updates and never
across I/O. Rate-limit entries expire lazily: every reader treats an entry
whose reset time has passed as not limited, and only
``clear_expired_limits`` rewrites expired entries.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional, Sequence

from ..core.constants import DEFAULT_COOLDOWN_MS
from ..utils import time_utils
from ..utils.credential_formatter import mask_credential
from ..utils.time_utils import format_duration
from .types import (
    Account,
    AccountState,
    CooldownReason,
    RateLimitEntry,
    RateLimitInfo,
)

lib_logger = logging.getLogger("antigravity_router")


class RateLimitStore:
    """
    Explicit per-account state store.

    Aggregate queries take the account list because usability also depends
    on the static ``enabled`` flag; per-account mutations take the e-mail.
    """

    def __init__(self, default_cooldown_ms: float = DEFAULT_COOLDOWN_MS):
        self.default_cooldown_ms = default_cooldown_ms
        self._states: Dict[str, AccountState] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    # =========================================================================
    # STATE ACCESS
    # =========================================================================

    def state(self, email: str) -> AccountState:
        """Get (creating on first use) the state record for an account."""
        with self._registry_lock:
            state = self._states.get(email)
            if state is None:
                state = AccountState(email=email)
                self._states[email] = state
                self._locks[email] = threading.Lock()
            return state

    @contextmanager
    def _locked(self, email: str) -> Iterator[AccountState]:
        state = self.state(email)
        with self._locks[email]:
            yield state

    def touch(self, email: str, when: Optional[float] = None) -> None:
        """Stamp the account's last-used time."""
        with self._locked(email) as state:
            state.last_used = time_utils.now_ms() if when is None else when

    def last_used(self, email: str) -> float:
        return self.state(email).last_used

    # =========================================================================
    # QUERIES
    # =========================================================================

    def is_rate_limited(self, email: str, model: Optional[str]) -> bool:
        """True if the account holds a still-active limit for ``model``."""
        if not model:
            return False
        with self._locked(email) as state:
            entry = state.model_rate_limits.get(model)
            return entry is not None and entry.is_active(time_utils.now_ms())

    def is_invalid(self, email: str) -> bool:
        return self.state(email).is_invalid

    def _is_unavailable(self, account: Account, model: str) -> bool:
        if self.is_invalid(account.email) or not account.enabled:
            return True
        return self.is_rate_limited(account.email, model)

    def is_all_rate_limited(
        self, accounts: Sequence[Account], model: Optional[str]
    ) -> bool:
        """
        True if no account can serve ``model``.

        An empty pool has no capacity; an unknown model is assumed available.
        """
        if not accounts:
            return True
        if not model:
            return False
        return all(self._is_unavailable(account, model) for account in accounts)

    def get_available_accounts(
        self, accounts: Sequence[Account], model: Optional[str] = None
    ) -> List[Account]:
        """Accounts that are valid, enabled and not limited for ``model``."""
        available = []
        for account in accounts:
            if self.is_invalid(account.email) or not account.enabled:
                continue
            if model and self.is_rate_limited(account.email, model):
                continue
            available.append(account)
        return available

    def get_invalid_accounts(self, accounts: Sequence[Account]) -> List[Account]:
        return [a for a in accounts if self.is_invalid(a.email)]

    def get_min_wait_time_ms(
        self, accounts: Sequence[Account], model: Optional[str]
    ) -> float:
        """
        Shortest wait until any account frees up for ``model``.

        Returns 0 while some account is still available, and the default
        cooldown when every account is blocked but none has a usable reset
        time (e.g. all invalid).
        """
        if not self.is_all_rate_limited(accounts, model):
            return 0

        now = time_utils.now_ms()
        min_wait: Optional[float] = None
        soonest: Optional[str] = None
        for account in accounts:
            with self._locked(account.email) as state:
                entry = state.model_rate_limits.get(model) if model else None
                if not entry or not entry.is_rate_limited or not entry.reset_time:
                    continue
                wait = entry.reset_time - now
            if wait > 0 and (min_wait is None or wait < min_wait):
                min_wait = wait
                soonest = account.email

        if soonest is not None:
            lib_logger.info(
                f"Shortest wait: {format_duration(min_wait)} "
                f"(account: {mask_credential(soonest)})"
            )
            return min_wait
        return self.default_cooldown_ms

    def get_rate_limit_info(self, email: str, model: str) -> RateLimitInfo:
        """Reset info for one account + model, as reported by the upstream."""
        with self._locked(email) as state:
            entry = state.model_rate_limits.get(model)
            if entry is None:
                return RateLimitInfo(
                    is_rate_limited=False, actual_reset_ms=None, wait_ms=0
                )
            wait_ms = (
                max(0.0, entry.reset_time - time_utils.now_ms())
                if entry.reset_time
                else 0
            )
            return RateLimitInfo(
                is_rate_limited=entry.is_rate_limited and wait_ms > 0,
                actual_reset_ms=entry.actual_reset_ms or None,
                wait_ms=wait_ms,
            )

    # =========================================================================
    # TRANSITIONS
    # =========================================================================

    def mark_rate_limited(
        self, email: str, model: str, reset_ms: Optional[float] = None
    ) -> None:
        """
        Mark ``email`` as limited for ``model``.

        A missing or non-positive ``reset_ms`` falls back to the default
        cooldown. Increments the consecutive-failure counter.
        """
        actual_reset_ms = (
            reset_ms if reset_ms is not None and reset_ms > 0 else self.default_cooldown_ms
        )
        with self._locked(email) as state:
            state.model_rate_limits[model] = RateLimitEntry(
                is_rate_limited=True,
                reset_time=time_utils.now_ms() + actual_reset_ms,
                actual_reset_ms=actual_reset_ms,
            )
            state.consecutive_failures += 1

        if actual_reset_ms > self.default_cooldown_ms:
            lib_logger.warning(
                f"Quota exhausted: {mask_credential(email)} (model: {model}). "
                f"Resets in {format_duration(actual_reset_ms)}"
            )
        else:
            lib_logger.warning(
                f"Rate limited: {mask_credential(email)} (model: {model}). "
                f"Available in {format_duration(actual_reset_ms)}"
            )

    def clear_expired_limits(self, accounts: Sequence[Account]) -> int:
        """
        Clear every entry whose reset time has passed.

        Returns:
            Number of entries cleared. A second call right after returns 0.
        """
        now = time_utils.now_ms()
        cleared = 0
        for account in accounts:
            with self._locked(account.email) as state:
                for model, entry in state.model_rate_limits.items():
                    if (
                        entry.is_rate_limited
                        and entry.reset_time is not None
                        and entry.reset_time <= now
                    ):
                        entry.is_rate_limited = False
                        entry.reset_time = None
                        cleared += 1
                        lib_logger.info(
                            f"Rate limit expired for: {mask_credential(account.email)} "
                            f"(model: {model})"
                        )
        return cleared

    def reset_all_rate_limits(self, accounts: Sequence[Account]) -> None:
        """Drop every rate limit so the next attempt re-checks the upstream."""
        for account in accounts:
            with self._locked(account.email) as state:
                for model in list(state.model_rate_limits):
                    state.model_rate_limits[model] = RateLimitEntry()
        lib_logger.warning("Reset all rate limits for optimistic retry")

    def mark_invalid(self, email: str, reason: str = "Unknown error") -> None:
        """Exclude an account until it is re-authenticated."""
        with self._locked(email) as state:
            state.is_invalid = True
            state.invalid_reason = reason
            state.invalid_at = time_utils.now_ms()
        lib_logger.error(f"Account INVALID: {mask_credential(email)}")
        lib_logger.error(f"  Reason: {reason}")

    def clear_invalid(self, email: str) -> None:
        """Re-admit an account after external re-authentication."""
        with self._locked(email) as state:
            state.is_invalid = False
            state.invalid_reason = None
            state.invalid_at = None

    # =========================================================================
    # CONSECUTIVE FAILURES
    # =========================================================================

    def get_consecutive_failures(self, email: str) -> int:
        return self.state(email).consecutive_failures

    def reset_consecutive_failures(self, email: str) -> None:
        with self._locked(email) as state:
            state.consecutive_failures = 0

    def increment_consecutive_failures(self, email: str) -> int:
        """Count a failure without marking the account as limited."""
        with self._locked(email) as state:
            state.consecutive_failures += 1
            return state.consecutive_failures

    # =========================================================================
    # COOLDOWNS
    # =========================================================================

    def mark_cooling_down(
        self,
        email: str,
        cooldown_ms: float,
        reason: CooldownReason = CooldownReason.RATE_LIMIT,
    ) -> None:
        """
        Put an account on a short, model-independent cooldown.

        Separate from rate limits; used for quick backoff after failures.
        """
        with self._locked(email) as state:
            state.cooling_down_until = time_utils.now_ms() + cooldown_ms
            state.cooldown_reason = reason
        lib_logger.debug(
            f"Account {mask_credential(email)} cooling down for "
            f"{format_duration(cooldown_ms)} (reason: {reason.value})"
        )

    def is_cooling_down(self, email: str) -> bool:
        """Check the cooldown, clearing it if it has expired."""
        with self._locked(email) as state:
            if state.cooling_down_until is None:
                return False
            if time_utils.now_ms() >= state.cooling_down_until:
                state.cooling_down_until = None
                state.cooldown_reason = None
                return False
            return True

    def clear_cooldown(self, email: str) -> None:
        with self._locked(email) as state:
            state.cooling_down_until = None
            state.cooldown_reason = None

    def get_cooldown_remaining(self, email: str) -> float:
        """Milliseconds left on the cooldown, 0 if none."""
        until = self.state(email).cooling_down_until
        if until is None:
            return 0
        return max(0.0, until - time_utils.now_ms())
