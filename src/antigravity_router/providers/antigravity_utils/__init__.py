# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

# src/antigravity_router/providers/antigravity_utils/__init__.py
"""
Utility functions for the Antigravity provider.

This package contains helpers shared by the request builder, the transport
and the protocol translators.
"""

from .request_helpers import (
    generate_request_id,
    generate_message_id,
    generate_tool_use_id,
    derive_session_id,
    derive_session_id_from_messages,
    session_seed,
)
from .models import get_model_family, is_thinking_model
from .signature_cache import SignatureCache, is_valid_signature
from .system_instruction import (
    SystemInstructionPolicy,
    IdentityPreamblePolicy,
    PassthroughPolicy,
    policy_for,
)

__all__ = [
    "generate_request_id",
    "generate_message_id",
    "generate_tool_use_id",
    "derive_session_id",
    "derive_session_id_from_messages",
    "session_seed",
    "get_model_family",
    "is_thinking_model",
    "SignatureCache",
    "is_valid_signature",
    "SystemInstructionPolicy",
    "IdentityPreamblePolicy",
    "PassthroughPolicy",
    "policy_for",
]
