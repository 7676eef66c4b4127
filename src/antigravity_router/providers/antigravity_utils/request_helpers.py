# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

# src/antigravity_router/providers/antigravity_utils/request_helpers.py
"""
Request helper functions for Antigravity API.

Provides utility functions for generating request identifiers, message and
tool-call ids, and the stable session id used for upstream cache affinity.
"""

import hashlib
import secrets
import uuid
from typing import Any, Dict, List, Optional


def generate_request_id() -> str:
    """
    Generate Antigravity request ID in the format: agent-{uuid}.

    Returns:
        Request ID string (e.g., "agent-a1b2c3d4-...")
    """
    return f"agent-{uuid.uuid4()}"


def generate_message_id() -> str:
    """Anthropic-style message id: ``msg_`` + 32 hex characters."""
    return f"msg_{secrets.token_hex(16)}"


def generate_tool_use_id() -> str:
    """Tool-use id for calls the upstream returned without one."""
    return f"toolu_{secrets.token_hex(12)}"


def derive_session_id(seed: str) -> str:
    """
    Derive a stable session id from conversation seed content.

    Same seed always yields the same id. The hash is truncated to 16 hex
    characters; it only serves cache affinity, not security.
    """
    return hashlib.sha256(seed.encode("utf-8")).hexdigest()[:16]


def session_seed(messages: Optional[List[Dict[str, Any]]]) -> Optional[str]:
    """
    Text of the first user message that has any.

    Content may be a plain string or a list of blocks; only text blocks
    count.
    """
    for message in messages or []:
        if message.get("role") != "user":
            continue
        content = message.get("content")
        if isinstance(content, str):
            text = content
        elif isinstance(content, list):
            text = "\n".join(
                block.get("text", "")
                for block in content
                if isinstance(block, dict)
                and block.get("type") == "text"
                and block.get("text")
            )
        else:
            text = ""
        if text:
            return text
    return None


def derive_session_id_from_messages(messages: Optional[List[Dict[str, Any]]]) -> str:
    """
    Session id for a conversation.

    Falls back to a random id when there is no user text to hash.
    """
    seed = session_seed(messages)
    if seed is None:
        return derive_session_id(uuid.uuid4().hex)
    return derive_session_id(seed)
