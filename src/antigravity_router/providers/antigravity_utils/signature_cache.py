# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
In-memory cache of continuation (thought) signatures.

Two maps share one TTL:
- tool-call id -> signature, so a signature stripped by the client can be
  re-attached to the matching ``tool_use`` block on the next request
- signature -> model family, so a thinking block signed by one family is
  not replayed to another
"""

import logging
import threading
from typing import Dict, Optional, Tuple

from ...core.constants import MIN_SIGNATURE_LENGTH, SIGNATURE_CACHE_TTL_MS
from ...utils import time_utils

lib_logger = logging.getLogger("antigravity_router")


def is_valid_signature(signature: Optional[str]) -> bool:
    return isinstance(signature, str) and len(signature) >= MIN_SIGNATURE_LENGTH


class SignatureCache:
    def __init__(self, ttl_ms: float = SIGNATURE_CACHE_TTL_MS):
        self.ttl_ms = ttl_ms
        self._by_tool_id: Dict[str, Tuple[str, float]] = {}
        self._family_by_signature: Dict[str, Tuple[str, float]] = {}
        self._lock = threading.Lock()
        self._last_purge = 0.0

    def _fresh(self, stored_at: float) -> bool:
        return time_utils.now_ms() - stored_at < self.ttl_ms

    # =========================================================================
    # TOOL CALLS
    # =========================================================================

    def cache_tool_signature(self, tool_use_id: str, signature: str) -> None:
        if not tool_use_id or not is_valid_signature(signature):
            return
        with self._lock:
            now = time_utils.now_ms()
            self._by_tool_id[tool_use_id] = (signature, now)
            self._purge_if_due(now)

    def get_tool_signature(self, tool_use_id: str) -> Optional[str]:
        with self._lock:
            entry = self._by_tool_id.get(tool_use_id)
            if entry is None:
                return None
            if not self._fresh(entry[1]):
                del self._by_tool_id[tool_use_id]
                return None
            return entry[0]

    # =========================================================================
    # THINKING
    # =========================================================================

    def cache_thinking_signature(self, signature: str, model_family: str) -> None:
        if not is_valid_signature(signature):
            return
        with self._lock:
            now = time_utils.now_ms()
            self._family_by_signature[signature] = (model_family, now)
            self._purge_if_due(now)

    def get_signature_family(self, signature: str) -> Optional[str]:
        with self._lock:
            entry = self._family_by_signature.get(signature)
            if entry is None:
                return None
            if not self._fresh(entry[1]):
                del self._family_by_signature[signature]
                return None
            return entry[0]

    # =========================================================================
    # MAINTENANCE
    # =========================================================================

    def _purge_locked(self) -> int:
        stale_tools = [k for k, (_, ts) in self._by_tool_id.items() if not self._fresh(ts)]
        stale_sigs = [k for k, (_, ts) in self._family_by_signature.items() if not self._fresh(ts)]
        for key in stale_tools:
            del self._by_tool_id[key]
        for key in stale_sigs:
            del self._family_by_signature[key]
        removed = len(stale_tools) + len(stale_sigs)
        if removed:
            lib_logger.debug(f"Purged {removed} expired signature cache entries")
        return removed

    def _purge_if_due(self, now: float) -> None:
        # Sweep at most once per TTL
        if now - self._last_purge >= self.ttl_ms:
            self._last_purge = now
            self._purge_locked()

    def purge_expired(self) -> int:
        """Drop expired entries from both maps; returns how many went."""
        with self._lock:
            self._last_purge = time_utils.now_ms()
            return self._purge_locked()

    def size(self) -> int:
        with self._lock:
            return len(self._by_tool_id) + len(self._family_by_signature)

    def clear(self) -> None:
        with self._lock:
            self._by_tool_id.clear()
            self._family_by_signature.clear()
