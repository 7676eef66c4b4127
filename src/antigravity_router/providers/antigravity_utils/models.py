# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Model family and capability detection from model ids.
"""

import re
from typing import Literal

ModelFamily = Literal["claude", "gemini", "unknown"]

_GEMINI_VERSION_RE = re.compile(r"gemini-(\d+)")


def get_model_family(model: str) -> ModelFamily:
    lower = (model or "").lower()
    if "claude" in lower:
        return "claude"
    if "gemini" in lower:
        return "gemini"
    return "unknown"


def is_thinking_model(model: str) -> bool:
    """
    Whether the model emits thinking parts.

    Claude: only ``*-thinking`` variants. Gemini: ``thinking`` variants and
    every model from major version 3 on.
    """
    lower = (model or "").lower()
    family = get_model_family(lower)
    if family == "claude":
        return "thinking" in lower
    if family == "gemini":
        if "thinking" in lower:
            return True
        match = _GEMINI_VERSION_RE.search(lower)
        return bool(match and int(match.group(1)) >= 3)
    return False
