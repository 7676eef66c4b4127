# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Interpretation of upstream-reported quota fractions.

Snapshots come from the model catalog (see ``providers.antigravity_catalog``);
this tracker only stores and reads them.
"""

import logging
import threading
from typing import Dict, Mapping, Optional, Tuple

from ...utils import time_utils
from ...utils.credential_formatter import mask_credential
from ..config import QuotaConfig
from ..types import Account, QuotaSnapshot

lib_logger = logging.getLogger("antigravity_router")

# Score multiplier for snapshots older than ``QuotaConfig.stale_ms``
STALE_SCORE_FACTOR = 0.9


class QuotaTracker:
    def __init__(self, config: Optional[QuotaConfig] = None):
        self.config = config or QuotaConfig()
        self._snapshots: Dict[Tuple[str, str], QuotaSnapshot] = {}
        self._lock = threading.Lock()

    # =========================================================================
    # UPDATES
    # =========================================================================

    def update(self, email: str, model: str, snapshot: QuotaSnapshot) -> None:
        if snapshot.fetched_at is None:
            snapshot.fetched_at = time_utils.now_ms()
        with self._lock:
            self._snapshots[(email, model)] = snapshot

    def update_many(self, email: str, quotas: Mapping[str, QuotaSnapshot]) -> None:
        """Replace snapshots for every model reported in one catalog fetch."""
        for model, snapshot in quotas.items():
            self.update(email, model, snapshot)

    def get_snapshot(self, email: str, model: str) -> Optional[QuotaSnapshot]:
        with self._lock:
            return self._snapshots.get((email, model))

    def clear(self) -> None:
        with self._lock:
            self._snapshots.clear()

    # =========================================================================
    # QUERIES
    # =========================================================================

    def get_quota_fraction(self, email: str, model: Optional[str]) -> Optional[float]:
        """
        Remaining fraction, or None if unknown.

        A snapshot with no fraction but a reset time means the upstream has
        stopped reporting the fraction because it is exhausted; this is an
        inferred policy and is reported as 0.0.
        """
        if not model:
            return None
        snapshot = self.get_snapshot(email, model)
        if snapshot is None:
            return None
        if snapshot.remaining_fraction is None:
            if snapshot.reset_time:
                lib_logger.debug(
                    f"Treating missing quota fraction as exhausted for "
                    f"{mask_credential(email)} (model: {model}, "
                    f"resets: {snapshot.reset_time})"
                )
                return 0.0
            return None
        return float(snapshot.remaining_fraction)

    def is_fresh(self, email: str, model: str) -> bool:
        snapshot = self.get_snapshot(email, model)
        if snapshot is None or snapshot.fetched_at is None:
            return False
        return time_utils.now_ms() - snapshot.fetched_at < self.config.stale_ms

    def is_quota_critical(
        self,
        account: Account,
        model: Optional[str],
        threshold_override: Optional[float] = None,
    ) -> bool:
        """True iff a known remaining fraction is below the effective threshold."""
        fraction = self.get_quota_fraction(account.email, model)
        if fraction is None:
            return False
        threshold = (
            threshold_override
            if threshold_override is not None
            else self.config.critical_threshold
        )
        return fraction < threshold

    def is_quota_low(self, account: Account, model: Optional[str]) -> bool:
        fraction = self.get_quota_fraction(account.email, model)
        return fraction is not None and fraction < self.config.low_threshold

    def get_score(self, account: Account, model: Optional[str]) -> float:
        """
        Map the remaining fraction to 0-100.

        Unknown quota gets ``unknown_score``; stale data is discounted.
        """
        fraction = self.get_quota_fraction(account.email, model)
        if fraction is None:
            return self.config.unknown_score
        score = max(0.0, min(1.0, fraction)) * 100
        if not self.is_fresh(account.email, model):
            score *= STALE_SCORE_FACTOR
        return score
