# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

from .health import HealthTracker
from .token_bucket import TokenBucketTracker
from .quota import QuotaTracker

__all__ = ["HealthTracker", "TokenBucketTracker", "QuotaTracker"]
