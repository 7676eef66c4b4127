# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Client-side token bucket per account.

Buckets refill continuously at ``tokens_per_minute`` up to ``max_tokens``;
refill is computed on every read, so no background task is needed.
"""

import threading
from dataclasses import dataclass
from typing import Dict, Iterable, Optional

from ...utils import time_utils
from ..config import TokenBucketConfig


@dataclass
class TokenBucketState:
    tokens: float
    last_refill: float  # epoch ms


class TokenBucketTracker:
    def __init__(self, config: Optional[TokenBucketConfig] = None):
        self.config = config or TokenBucketConfig()
        self._buckets: Dict[str, TokenBucketState] = {}
        self._lock = threading.Lock()

    def _refilled(self, account_id: str, now: float) -> float:
        bucket = self._buckets.get(account_id)
        if bucket is None:
            return min(self.config.initial_tokens, self.config.max_tokens)
        minutes = max(0.0, now - bucket.last_refill) / 60_000
        return min(
            self.config.max_tokens,
            bucket.tokens + minutes * self.config.tokens_per_minute,
        )

    def has_tokens(self, account_id: str) -> bool:
        return self.get_tokens(account_id) >= 1

    def consume(self, account_id: str) -> bool:
        """
        Take one token.

        Returns:
            False (and leaves the bucket untouched) when less than one
            token is available.
        """
        now = time_utils.now_ms()
        with self._lock:
            tokens = self._refilled(account_id, now)
            if tokens < 1:
                return False
            self._buckets[account_id] = TokenBucketState(tokens - 1, now)
            return True

    def refund(self, account_id: str) -> None:
        """Give back a token for a request that did not complete."""
        now = time_utils.now_ms()
        with self._lock:
            tokens = self._refilled(account_id, now)
            self._buckets[account_id] = TokenBucketState(
                min(self.config.max_tokens, tokens + 1), now
            )

    def get_tokens(self, account_id: str) -> float:
        with self._lock:
            return self._refilled(account_id, time_utils.now_ms())

    def get_max_tokens(self) -> float:
        return self.config.max_tokens

    def get_min_time_until_token(self, account_ids: Iterable[str]) -> float:
        """
        Shortest time (ms) until any of ``account_ids`` holds a whole token.

        Returns 0 if one already has a token or the list is empty.
        """
        rate = self.config.tokens_per_minute
        min_wait: Optional[float] = None
        for account_id in account_ids:
            tokens = self.get_tokens(account_id)
            if tokens >= 1:
                return 0
            if rate <= 0:
                continue
            wait = (1 - tokens) / rate * 60_000
            if min_wait is None or wait < min_wait:
                min_wait = wait
        return min_wait or 0

    def reset(self, account_id: str) -> None:
        with self._lock:
            self._buckets.pop(account_id, None)

    def clear(self) -> None:
        with self._lock:
            self._buckets.clear()
