# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

from .base import BaseStrategy
from .hybrid import HybridStrategy

__all__ = ["BaseStrategy", "HybridStrategy"]
