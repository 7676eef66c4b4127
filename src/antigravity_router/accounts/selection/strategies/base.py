# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Base class for account selection strategies.
"""

from abc import ABC, abstractmethod
from typing import Optional, Sequence

from ...rate_limits import RateLimitStore
from ...types import Account, SelectionResult


class BaseStrategy(ABC):
    """
    Common contract for selection strategies.

    Strategies read account state from the shared RateLimitStore and never
    block: ``select_account`` returns immediately with either an account or
    a wait hint.
    """

    def __init__(self, rate_limits: Optional[RateLimitStore] = None):
        self.rate_limits = rate_limits or RateLimitStore()

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    def is_account_usable(self, account: Account, model: Optional[str]) -> bool:
        """Not invalid, enabled, not cooling down and not limited for ``model``."""
        if account is None or not account.enabled:
            return False
        email = account.email
        if self.rate_limits.is_invalid(email):
            return False
        if self.rate_limits.is_cooling_down(email):
            return False
        return not self.rate_limits.is_rate_limited(email, model)

    @abstractmethod
    def select_account(
        self, accounts: Sequence[Account], model: Optional[str]
    ) -> SelectionResult:
        pass

    def on_success(self, account: Account, model: Optional[str]) -> None:
        pass

    def on_rate_limit(self, account: Account, model: Optional[str]) -> None:
        pass

    def on_failure(self, account: Account, model: Optional[str]) -> None:
        pass

    def on_abandoned(self, account: Account, model: Optional[str]) -> None:
        """The selected account was never called; nothing counts against it."""
        pass
