# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Health score tracking per account.

Scores move by fixed steps on each outcome and recover passively over time,
always clamped to ``[min_score, max_score]``.
"""

import threading
from dataclasses import dataclass
from typing import Dict, Optional

from ...utils import time_utils
from ..config import HealthScoreConfig


@dataclass
class HealthRecord:
    score: float
    last_updated: float  # epoch ms
    consecutive_failures: int = 0


class HealthTracker:
    """
    Bounded reliability score per account.

    Unseen accounts report the configured initial score.
    """

    def __init__(self, config: Optional[HealthScoreConfig] = None):
        self.config = config or HealthScoreConfig()
        self._records: Dict[str, HealthRecord] = {}
        self._lock = threading.Lock()

    def _clamp(self, score: float) -> float:
        return max(self.config.min_score, min(self.config.max_score, score))

    def _current(self, account_id: str, now: float) -> float:
        record = self._records.get(account_id)
        if record is None:
            return self._clamp(self.config.initial)
        hours = max(0.0, now - record.last_updated) / 3_600_000
        return self._clamp(record.score + hours * self.config.recovery_per_hour)

    def _adjust(self, account_id: str, delta: float, failed: bool) -> float:
        now = time_utils.now_ms()
        with self._lock:
            score = self._clamp(self._current(account_id, now) + delta)
            previous = self._records.get(account_id)
            failures = 0
            if failed:
                failures = (previous.consecutive_failures if previous else 0) + 1
            self._records[account_id] = HealthRecord(
                score=score, last_updated=now, consecutive_failures=failures
            )
            return score

    def record_success(self, account_id: str) -> float:
        return self._adjust(account_id, self.config.success_reward, failed=False)

    def record_rate_limit(self, account_id: str) -> float:
        return self._adjust(account_id, self.config.rate_limit_penalty, failed=True)

    def record_failure(self, account_id: str) -> float:
        return self._adjust(account_id, self.config.failure_penalty, failed=True)

    def get_score(self, account_id: str) -> float:
        with self._lock:
            return self._current(account_id, time_utils.now_ms())

    def is_usable(self, account_id: str) -> bool:
        return self.get_score(account_id) >= self.config.min_usable

    def get_consecutive_failures(self, account_id: str) -> int:
        with self._lock:
            record = self._records.get(account_id)
            return record.consecutive_failures if record else 0

    def reset(self, account_id: str) -> None:
        with self._lock:
            self._records.pop(account_id, None)

    def clear(self) -> None:
        with self._lock:
            self._records.clear()
