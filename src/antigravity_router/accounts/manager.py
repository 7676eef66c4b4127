# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Account manager.

Owns the account list and exposes the selection / notification contract the
orchestrator uses, on top of the RateLimitStore and a selection strategy.
Token and project resolution are delegated to external callables and cached
per account until explicitly cleared.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Mapping, Optional, Sequence

from ..core.constants import DEFAULT_COOLDOWN_MS
from ..utils.credential_formatter import mask_credential
from .config import StrategyConfig
from .rate_limits import RateLimitStore
from .selection import BaseStrategy, HybridStrategy
from .types import Account, CooldownReason, QuotaSnapshot, RateLimitInfo, SelectionResult

lib_logger = logging.getLogger("antigravity_router")

TokenResolver = Callable[[Account], Awaitable[str]]
ProjectResolverFn = Callable[[Account, str], Awaitable[str]]


class AccountManager:
    """
    Façade over the account pool.

    Args:
        accounts: Accounts in priority order (index order breaks score ties)
        token_resolver: ``async (account) -> access token``
        project_resolver: ``async (account, token) -> project id``; when
            omitted the account's configured ``project_id`` is used
        strategy: Selection strategy; defaults to a HybridStrategy sharing
            this manager's RateLimitStore
        strategy_config: Used only when ``strategy`` is not given
        default_cooldown_ms: Cooldown used when no reset hint is known
    """

    def __init__(
        self,
        accounts: Sequence[Account],
        token_resolver: Optional[TokenResolver] = None,
        project_resolver: Optional[ProjectResolverFn] = None,
        strategy: Optional[BaseStrategy] = None,
        strategy_config: Optional[StrategyConfig] = None,
        default_cooldown_ms: float = DEFAULT_COOLDOWN_MS,
    ):
        emails = [a.email for a in accounts]
        if len(set(emails)) != len(emails):
            raise ValueError("Duplicate account e-mails in pool")

        self._accounts: List[Account] = list(accounts)
        self._token_resolver = token_resolver
        self._project_resolver = project_resolver

        if strategy is None:
            self.rate_limits = RateLimitStore(default_cooldown_ms)
            strategy = HybridStrategy(strategy_config, self.rate_limits)
        else:
            self.rate_limits = strategy.rate_limits
        self.strategy = strategy

        self._token_cache: Dict[str, str] = {}
        self._project_cache: Dict[str, str] = {}
        self._resolve_locks: Dict[str, asyncio.Lock] = {}

    # =========================================================================
    # POOL
    # =========================================================================

    @property
    def accounts(self) -> List[Account]:
        return list(self._accounts)

    def get_account_count(self) -> int:
        return len(self._accounts)

    def get_account(self, email: str) -> Optional[Account]:
        for account in self._accounts:
            if account.email == email:
                return account
        return None

    # =========================================================================
    # SELECTION
    # =========================================================================

    def select_account(self, model: Optional[str]) -> SelectionResult:
        """Clear expired limits, then ask the strategy. Never blocks."""
        self.rate_limits.clear_expired_limits(self._accounts)
        return self.strategy.select_account(self._accounts, model)

    def is_all_rate_limited(self, model: Optional[str]) -> bool:
        return self.rate_limits.is_all_rate_limited(self._accounts, model)

    def get_available_accounts(self, model: Optional[str] = None) -> List[Account]:
        return self.rate_limits.get_available_accounts(self._accounts, model)

    def get_invalid_accounts(self) -> List[Account]:
        return self.rate_limits.get_invalid_accounts(self._accounts)

    def get_min_wait_time_ms(self, model: Optional[str]) -> float:
        return self.rate_limits.get_min_wait_time_ms(self._accounts, model)

    def get_rate_limit_info(self, email: str, model: str) -> RateLimitInfo:
        return self.rate_limits.get_rate_limit_info(email, model)

    def reset_all_rate_limits(self) -> None:
        self.rate_limits.reset_all_rate_limits(self._accounts)

    # =========================================================================
    # CREDENTIALS
    # =========================================================================

    def _lock_for(self, email: str) -> asyncio.Lock:
        lock = self._resolve_locks.get(email)
        if lock is None:
            lock = asyncio.Lock()
            self._resolve_locks[email] = lock
        return lock

    async def get_token_for_account(self, account: Account) -> str:
        """Resolve (once) and cache the account's bearer token."""
        cached = self._token_cache.get(account.email)
        if cached:
            return cached
        if self._token_resolver is None:
            raise RuntimeError("No token resolver configured")
        async with self._lock_for(account.email):
            cached = self._token_cache.get(account.email)
            if cached:
                return cached
            token = await self._token_resolver(account)
            self._token_cache[account.email] = token
            return token

    async def get_project_for_account(self, account: Account, token: str) -> str:
        """Resolve (once) and cache the account's project id."""
        cached = self._project_cache.get(account.email)
        if cached:
            return cached
        if self._project_resolver is None:
            if account.project_id:
                return account.project_id
            raise RuntimeError(
                f"No project resolver configured for {mask_credential(account.email)}"
            )
        project_id = await self._project_resolver(account, token)
        self._project_cache[account.email] = project_id
        return project_id

    def clear_token_cache(self, email: Optional[str] = None) -> None:
        if email is None:
            self._token_cache.clear()
        else:
            self._token_cache.pop(email, None)

    def clear_project_cache(self, email: Optional[str] = None) -> None:
        if email is None:
            self._project_cache.clear()
        else:
            self._project_cache.pop(email, None)

    # =========================================================================
    # STATE MUTATION
    # =========================================================================

    def mark_invalid(self, email: str, reason: str = "Unknown error") -> None:
        self.rate_limits.mark_invalid(email, reason)
        self.clear_token_cache(email)

    def mark_rate_limited(
        self, email: str, model: str, reset_ms: Optional[float] = None
    ) -> None:
        self.rate_limits.mark_rate_limited(email, model, reset_ms)

    def mark_cooling_down(
        self,
        email: str,
        cooldown_ms: float,
        reason: CooldownReason = CooldownReason.RATE_LIMIT,
    ) -> None:
        self.rate_limits.mark_cooling_down(email, cooldown_ms, reason)

    def get_consecutive_failures(self, email: str) -> int:
        return self.rate_limits.get_consecutive_failures(email)

    def increment_consecutive_failures(self, email: str) -> int:
        return self.rate_limits.increment_consecutive_failures(email)

    def get_cooldown_remaining(self, email: str) -> float:
        return self.rate_limits.get_cooldown_remaining(email)

    def update_quotas(self, email: str, quotas: Mapping[str, QuotaSnapshot]) -> None:
        """Feed catalog quota snapshots to the strategy, if it tracks quota."""
        tracker = getattr(self.strategy, "quota", None)
        if tracker is None:
            return
        tracker.update_many(email, quotas)

    # =========================================================================
    # NOTIFICATIONS
    # =========================================================================

    def notify_success(self, account: Account, model: Optional[str]) -> None:
        self.rate_limits.reset_consecutive_failures(account.email)
        self.strategy.on_success(account, model)

    def notify_rate_limit(self, account: Account, model: Optional[str]) -> None:
        self.strategy.on_rate_limit(account, model)

    def notify_failure(self, account: Account, model: Optional[str]) -> None:
        self.strategy.on_failure(account, model)

    def notify_abandoned(self, account: Account, model: Optional[str]) -> None:
        self.strategy.on_abandoned(account, model)


class SingleAccountManager(AccountManager):
    """
    Manager for callers with a single identity.

    Same contract as AccountManager with a pool of zero or one account.
    """

    def __init__(self, account: Optional[Account] = None, **kwargs):
        super().__init__([account] if account is not None else [], **kwargs)
