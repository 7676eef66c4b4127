# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

from .strategies import BaseStrategy, HybridStrategy

__all__ = ["BaseStrategy", "HybridStrategy"]
